#!/usr/bin/env python3
"""
Tests for sheet parsing, dry run, apply and the command line entry point
"""

import pytest
import sys
import os

import pandas as pd

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import recipe_importer
import reconciliation_audit
from config import Settings
from corpus_store import CorpusStore, StoreError
from models import RecipeStatus
from recipe_importer import (RecipeImporter, group_recipe_rows, link_batches, parse_ingredient_row,
                             parse_sheet, split_instructions)

INGREDIENT_ROWS = [
    {"English Name": "Tomato", "Arabic Name": "طماطم", "Amount": "100", "English Unit": "g", "Calories": "18",
     "Protein": "0.9", "Carbs": "3.9", "Fats": "0.2", "FoodGroup": "Vegetables", "SubGroup": "Fruit vegetables"},
    {"English Name": "Rice", "Arabic Name": "أرز", "Amount": "100", "English Unit": "g", "Calories": "130",
     "Protein": "2.7", "Carbs": "28", "Fats": "0.3", "FoodGroup": "Grains", "SubGroup": "Rice"},
    {"English Name": "", "Arabic Name": "خيار", "Amount": "100", "English Unit": "g", "Calories": "15",
     "Protein": "", "Carbs": "", "Fats": "", "FoodGroup": "", "SubGroup": ""},
    {"English Name": "tomato", "Arabic Name": "", "Amount": "50", "English Unit": "g", "Calories": "9",
     "Protein": "", "Carbs": "", "Fats": "", "FoodGroup": "", "SubGroup": ""},
]

SPICE_ROWS = [
    {"English Name": "Salt", "Arabic Name": "ملح", "Amount": "1", "English Unit": "g"},
    {"English Name": "Cumin", "Arabic Name": "كمون", "Amount": "1", "English Unit": "g"},
]

RECIPE_ROWS = [
    {"Recipe Name": "Recipe Name", "Ingredient": "Ingredient", "Quantity": "Quantity", "Unit": "Unit",
     "Preparation Steps": "", "breakfast": ""},
    {"Recipe Name": "Tomato Rice", "Ingredient": "طماطم", "Quantity": "200", "Unit": "g",
     "Preparation Steps": "1. Boil the rice 2. Add tomato", "breakfast": "lunch"},
    {"Recipe Name": "Tomato Rice", "Ingredient": "ارز", "Quantity": "150", "Unit": "g",
     "Preparation Steps": "", "breakfast": ""},
    {"Recipe Name": "Tomato Rice", "Ingredient": "ملح", "Quantity": "", "Unit": "",
     "Preparation Steps": "", "breakfast": ""},
    {"Recipe Name": "Mystery Stew", "Ingredient": "Dragon fruit", "Quantity": "50", "Unit": "g",
     "Preparation Steps": "Simmer", "breakfast": "dinner"},
]


def write_sheets(path):
    pd.DataFrame(INGREDIENT_ROWS).to_csv(path / "food_dataset.csv", index=False)
    pd.DataFrame(SPICE_ROWS).to_csv(path / "spices_dataset.csv", index=False)
    pd.DataFrame(RECIPE_ROWS).to_csv(path / "recipies_dataset.csv", index=False)


class TestSheetParsing:
    """Parsing of the three CSV sheets"""

    def test_ingredient_row(self):
        """Test an ingredient sheet row"""
        ingredient = parse_ingredient_row(INGREDIENT_ROWS[1])
        assert ingredient.name == "Rice" and ingredient.name_alt == "أرز"
        assert ingredient.serving_size == 100 and ingredient.serving_unit == "g"
        assert ingredient.macros.calories == 130 and ingredient.macros.fat == 0.3
        assert (ingredient.food_group, ingredient.subgroup) == ("Grains", "Rice")

    def test_empty_names_and_duplicates(self):
        """Test empty names are dropped and duplicates warned"""
        records, warnings = parse_sheet(pd.DataFrame(INGREDIENT_ROWS), parse_ingredient_row, "ingredients")
        assert [r.name for r in records] == ["Tomato", "Rice"]
        assert records[0].macros.calories == 18
        assert any("1 rows skipped" in w for w in warnings)
        assert any("duplicate" in w for w in warnings)

    def test_group_recipe_rows(self):
        """Test recipe rows grouped by name in sheet order"""
        groups = group_recipe_rows(pd.DataFrame(RECIPE_ROWS))
        assert list(groups) == ["Tomato Rice", "Mystery Stew"]
        tomato_rice = groups["Tomato Rice"]
        assert [l.raw_name for l in tomato_rice.lines] == ["طماطم", "ارز", "ملح"]
        assert tomato_rice.lines[0].quantity == 200.0
        assert tomato_rice.lines[2].quantity is None
        assert tomato_rice.meal_type == "lunch"
        assert groups["Mystery Stew"].meal_type == "dinner"

    def test_split_instructions(self):
        """Test preparation steps split into numbered steps"""
        assert split_instructions("1. Boil the rice 2. Add tomato") == [
            {"step": 1, "instruction": "1. Boil the rice"},
            {"step": 2, "instruction": "2. Add tomato"},
        ]
        assert split_instructions("Simmer") == [{"step": 1, "instruction": "Simmer"}]
        assert split_instructions("") == []

    def test_link_batches_keep_recipes_whole(self):
        """Test link batches never split a recipe"""
        pairs = [("a", [1, 2]), ("b", [3, 4, 5]), ("c", [6]), ("d", [7, 8, 9, 10, 11])]
        batches = link_batches(pairs, 4)
        assert [[rid for rid, _ in batch] for batch in batches] == [["a"], ["b", "c"], ["d"]]


class TestRecipeImporter:
    """Dry run and apply against in-memory SQLite"""

    def setup_method(self):
        self.store = CorpusStore("sqlite:///:memory:")
        self.store.create_schema()

    def importer(self, tmp_path):
        write_sheets(tmp_path)
        return RecipeImporter(Settings(datasets_path=str(tmp_path)), store=self.store)

    def test_dry_run_writes_nothing(self, tmp_path):
        """Test dry run counts without writing"""
        results, fk = self.importer(tmp_path).dry_run()
        by_table = {r.table: r for r in results}
        assert by_table["ingredients"].would_insert == 2
        assert by_table["spices"].would_insert == 2
        assert by_table["recipes"].would_insert == 2
        assert fk.total_lines == 4
        assert (fk.matched_to_ingredient, fk.matched_to_spice) == (2, 1)
        assert fk.unmatched == ["Dragon fruit"]
        assert fk.match_rate == 75.0
        assert self.store.load_ingredients() == []

    def test_dry_run_on_empty_database_creates_no_tables(self, tmp_path):
        """Test a dry run against a database without tables counts everything as new"""
        write_sheets(tmp_path)
        fresh = CorpusStore("sqlite:///:memory:")
        results, _ = RecipeImporter(Settings(datasets_path=str(tmp_path)), store=fresh).dry_run()
        assert [(r.table, r.would_insert, r.would_update) for r in results] == [
            ("ingredients", 2, 0), ("spices", 2, 0), ("recipes", 2, 0)]
        assert not any(r.errors for r in results)
        assert not fresh.has_table("ingredients")
        assert not fresh.has_table("recipes")

    def test_apply(self, tmp_path):
        """Test a full import with links and nutrition"""
        results, unmatched_lines = self.importer(tmp_path).apply()
        by_table = {r.table: r for r in results}
        assert by_table["ingredients"].inserted == 2
        assert by_table["spices"].inserted == 2
        assert by_table["recipes"].inserted == 2
        assert by_table["recipe_ingredients"].inserted == 4
        assert unmatched_lines == 1
        assert not any(r.errors for r in results)

        recipes = {r.name: r for r in self.store.load_recipes()}
        tomato_rice = recipes["Tomato Rice"]
        assert tomato_rice.status == RecipeStatus.COMPLETE
        assert tomato_rice.nutrition_per_serving.calories == 231
        assert tomato_rice.meal_type == ["lunch"]
        assert len(tomato_rice.instructions) == 2
        assert tomato_rice.is_vegan

        stew = recipes["Mystery Stew"]
        assert stew.status == RecipeStatus.NEEDS_REVIEW
        assert stew.admin_notes == "Unmatched ingredients: Dragon fruit"

        links = self.store.links_for_recipe(tomato_rice.id)
        assert [(l.sort_order, l.is_spice, l.is_matched) for l in links] == [
            (1, False, True), (2, False, True), (3, True, True)]

    def test_failed_link_batch_is_counted_as_skipped(self, tmp_path, monkeypatch):
        """Test a failing link batch stores nothing and its links are reported as skipped"""
        write_sheets(tmp_path)
        importer = RecipeImporter(Settings(datasets_path=str(tmp_path), link_chunk_size=1), store=self.store)
        real_replace = self.store.replace_links_many
        calls = []

        def fail_second_batch(pairs):
            calls.append(pairs)
            if len(calls) == 2:
                raise StoreError("connection lost")
            return real_replace(pairs)

        monkeypatch.setattr(self.store, "replace_links_many", fail_second_batch)
        results, _ = importer.apply()
        links = {r.table: r for r in results}["recipe_ingredients"]
        assert len(calls) == 2
        assert links.inserted + links.skipped == 4
        assert links.skipped == sum(len(l) for _, l in calls[1])
        assert len(self.store.load_links()) == links.inserted
        assert len(links.errors) == 1

    def test_apply_creates_schema(self, tmp_path):
        """Test apply creates the tables on a database that has none"""
        write_sheets(tmp_path)
        fresh = CorpusStore("sqlite:///:memory:")
        RecipeImporter(Settings(datasets_path=str(tmp_path)), store=fresh).apply(only=("ingredients",))
        assert fresh.has_table("ingredients")
        assert len(fresh.load_ingredients()) == 2

    def test_apply_twice_is_stable(self, tmp_path):
        """Test a second import only updates"""
        importer = self.importer(tmp_path)
        importer.apply()
        results, _ = importer.apply()
        by_table = {r.table: r for r in results}
        assert by_table["ingredients"].inserted == 0 and by_table["ingredients"].updated == 2
        assert by_table["recipes"].updated == 2
        assert len(self.store.load_links()) == 4

    def test_skip_unmatched(self, tmp_path):
        """Test recipes with unmatched lines can be skipped"""
        results, unmatched_lines = self.importer(tmp_path).apply(skip_unmatched=True)
        assert [r.name for r in self.store.load_recipes()] == ["Tomato Rice"]
        assert unmatched_lines == 0
        assert {r.table: r for r in results}["recipes"].skipped == 1

    def test_only_reference_tables(self, tmp_path):
        """Test importing a single table"""
        self.importer(tmp_path).apply(only=("ingredients",))
        assert len(self.store.load_ingredients()) == 2
        assert self.store.load_spices() == []
        assert self.store.load_recipes() == []

    def test_imported_links_pass_audit(self, tmp_path):
        """Test an import leaves nothing for the audit to fix"""
        self.importer(tmp_path).apply()
        auditor = reconciliation_audit.ReconciliationAuditor(self.store, Settings(datasets_path=str(tmp_path)))
        result = auditor.run_audit()
        assert result.structural_issues == 0
        assert [u.link.raw_name for u in result.unmatched] == ["Dragon fruit"]

    def test_export_unmatched(self, tmp_path):
        """Test the unmatched export CSV"""
        path, count = self.importer(tmp_path).export_unmatched()
        assert count == 1
        df = pd.read_csv(path, keep_default_na=False)
        assert list(df.columns) == recipe_importer.UNMATCHED_EXPORT_COLUMNS
        assert df.loc[0, "Ingredient"] == "Dragon fruit"
        assert df.loc[0, "Quantity"] == 50


class TestCommandLine:
    """Exit codes and report files of the entry points"""

    @pytest.fixture(autouse=True)
    def workspace(self, tmp_path, monkeypatch):
        for name in ["CORPUS_DATABASE_URL", "DATASETS_PATH", "REPORTS_DIR"]:
            monkeypatch.delenv(name, raising=False)
        monkeypatch.chdir(tmp_path)
        write_sheets(tmp_path)
        monkeypatch.setenv("DATASETS_PATH", str(tmp_path))
        monkeypatch.setenv("REPORTS_DIR", str(tmp_path / "reports"))
        self.tmp_path = tmp_path

    def test_missing_database_url_exits_2(self):
        """Test configuration errors exit with 2"""
        assert recipe_importer.main([]) == 2
        assert reconciliation_audit.main([]) == 2

    def test_apply_then_audit(self, monkeypatch):
        """Test import then audit on a SQLite file"""
        monkeypatch.setenv("CORPUS_DATABASE_URL", f"sqlite:///{self.tmp_path / 'corpus.db'}")
        # The stew has an unmatched line
        assert recipe_importer.main(["--apply"]) == 1
        assert (self.tmp_path / "reports" / "import_report.json").exists()
        assert reconciliation_audit.main([]) == 0
        assert (self.tmp_path / "reports" / "audit_report.json").exists()
        assert (self.tmp_path / "reports" / "unmatched_suggestions.csv").exists()

    def test_dry_run_reports_unmatched(self, monkeypatch):
        """Test dry run exit code follows unmatched lines"""
        monkeypatch.setenv("CORPUS_DATABASE_URL", f"sqlite:///{self.tmp_path / 'corpus.db'}")
        assert recipe_importer.main([]) == 1
        assert recipe_importer.main(["--only", "ingredients", "--only", "spices"]) == 0

    def test_export_unmatched(self):
        """Test the export flag writes the CSV"""
        assert recipe_importer.main(["--export-unmatched"]) == 1
        assert (self.tmp_path / "unmatched-recipes.csv").exists()
