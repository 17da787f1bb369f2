#!/usr/bin/env python3
"""
Recipe Importer
Loads the ingredient, spice and recipe sheets (CSV) into the corpus store.

Dry run (default): parse every sheet, validate ingredient references against
the sheets themselves and report what would be inserted or updated.
Apply: upsert ingredients and spices, rebuild the lookup index from the store,
resolve and aggregate every recipe, then upsert recipes and replace their
ingredient links. All writes go through fixed-size chunks; a failing chunk is
reported and the run continues.

Usage:
    recipe-import                      # dry run
    recipe-import --apply
    recipe-import --apply --only recipes --skip-unmatched
    recipe-import --export-unmatched
"""

import argparse
import logging
import os
import re
import sys
from dataclasses import dataclass, field, replace
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from config import ConfigError, Settings, load_settings
from corpus_store import CorpusStore, StoreError, UpsertResult
from ingredient_resolver import classify, resolve_lines
from lookup_index import LookupIndex, build_lookup_index
from models import (Ingredient, Macros, MatchedIngredient, MatchedSpice, RawIngredientLine, Recipe,
                    RecipeIngredientLink, Spice, Unmatched)
from nutrition_calculator import NutritionCalculator
from shared_utils import (clean_text, configure_logging, parse_number, parse_number_or_default,
                          print_banner, process_in_chunks, write_json_report)

logger = logging.getLogger(__name__)

TABLES = ("ingredients", "spices", "recipes")

DEFAULT_MEAL_TYPE = "lunch"
PLACEHOLDER_RECIPE_NAMES = {"recipe name", "اسم الوصفة"}

# Preparation text is split in front of these markers
STEP_MARKERS = re.compile(r"(?=🔥|🍳|🥒|🥚|🥩|🫒|😋|(?<!\d)\d+\.|اولا|ثانيا|ثالثا)")

UNMATCHED_EXPORT_COLUMNS = ["Recipe Name", "Ingredient", "Quantity", "Unit", "Suggested Ingredient Name"]


@dataclass
class SeedResult:
    table: str
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class DryRunResult:
    table: str
    would_insert: int = 0
    would_update: int = 0
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


@dataclass
class FKValidation:
    total_lines: int = 0
    matched_to_ingredient: int = 0
    matched_to_spice: int = 0
    unmatched: List[str] = field(default_factory=list)
    unmatched_details: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.unmatched

    @property
    def match_rate(self) -> float:
        if not self.total_lines:
            return 100.0
        return (self.matched_to_ingredient + self.matched_to_spice) / self.total_lines * 100


@dataclass
class GroupedRecipe:
    name: str
    lines: List[RawIngredientLine] = field(default_factory=list)
    instructions: str = ""
    meal_type: str = DEFAULT_MEAL_TYPE


@dataclass
class RecipeBuild:
    recipe: Recipe
    links: List[RecipeIngredientLink]
    unmatched: List[str]

    @property
    def has_unmatched(self) -> bool:
        return bool(self.unmatched)


# ---------- Sheet parsing ----------

def read_sheet(path: str) -> pd.DataFrame:
    """All cells as text; empty cells as empty strings"""
    df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    df.columns = [str(c).strip() for c in df.columns]
    logger.info(f"Loaded {len(df)} rows from {path}")
    return df


def format_row_sample(row_number: int, row: dict) -> str:
    english = (row.get("English Name") or "").strip() or "n/a"
    arabic = (row.get("Arabic Name") or "").strip() or "n/a"
    amount = (row.get("Amount") or "").strip()
    unit = (row.get("English Unit") or "").strip()
    amount_text = f"{amount} {unit}".strip() if amount else "n/a"
    return f'row {row_number}: en="{english}", ar="{arabic}", amount={amount_text}'


def parse_ingredient_row(row: dict) -> Optional[Ingredient]:
    name = clean_text(row.get("English Name"))
    if not name:
        return None
    return Ingredient(
        id="",
        name=name,
        name_alt=clean_text(row.get("Arabic Name")),
        food_group=clean_text(row.get("FoodGroup")),
        subgroup=clean_text(row.get("SubGroup")),
        serving_size=parse_number_or_default(row.get("Amount"), 100.0),
        serving_unit=clean_text(row.get("English Unit")) or "g",
        macros=Macros(
            calories=parse_number_or_default(row.get("Calories"), 0.0),
            protein=parse_number_or_default(row.get("Protein"), 0.0),
            carbs=parse_number_or_default(row.get("Carbs"), 0.0),
            fat=parse_number_or_default(row.get("Fats"), 0.0),
        ),
    )


def parse_spice_row(row: dict) -> Optional[Spice]:
    name = clean_text(row.get("English Name"))
    if not name:
        return None
    return Spice(id="", name=name, name_alt=clean_text(row.get("Arabic Name")))


def parse_sheet(df: pd.DataFrame, parse_row: Callable[[dict], Optional[object]],
                table: str) -> Tuple[List, List[str]]:
    """
    Parse reference rows; empty-name rows are skipped and reported with their
    CSV row number, and for duplicate names (case-insensitive) the first row wins.
    """
    records = []
    warnings = []
    seen: Dict[str, int] = {}
    empty_rows = []

    for idx, row in enumerate(df.to_dict(orient="records")):
        record = parse_row(row)
        if record is None:
            # +2: header line and 1-based numbering
            empty_rows.append(format_row_sample(idx + 2, row))
            continue
        key = record.name.lower()
        if key in seen:
            seen[key] += 1
            continue
        seen[key] = 1
        records.append(record)

    if empty_rows:
        warnings.append(f"{table}: {len(empty_rows)} rows skipped for empty English name")
        for sample in empty_rows[:10]:
            logger.warning(f"{table}: skipped {sample}")
    duplicates = {name: count for name, count in seen.items() if count > 1}
    if duplicates:
        preview = ", ".join(f"{name} x{count}" for name, count in list(duplicates.items())[:5])
        warnings.append(f"{table}: {len(duplicates)} duplicate names, first row kept ({preview})")
        logger.warning(f"{table}: duplicate names in sheet: {preview}")

    logger.info(f"{table}: parsed {len(records)} records")
    return records, warnings


def group_recipe_rows(df: pd.DataFrame) -> Dict[str, GroupedRecipe]:
    """One entry per recipe name, in sheet order; header rows leaking into the data are skipped"""
    recipes: Dict[str, GroupedRecipe] = {}
    for row in df.to_dict(orient="records"):
        name = clean_text(row.get("Recipe Name"))
        if not name or name.lower() in PLACEHOLDER_RECIPE_NAMES:
            continue

        grouped = recipes.get(name)
        if grouped is None:
            grouped = GroupedRecipe(
                name=name,
                instructions=clean_text(row.get("Preparation Steps")) or "",
                meal_type=clean_text(row.get("breakfast")) or DEFAULT_MEAL_TYPE,
            )
            recipes[name] = grouped

        ingredient = clean_text(row.get("Ingredient"))
        if ingredient:
            grouped.lines.append(RawIngredientLine(
                raw_name=ingredient,
                quantity=parse_number(row.get("Quantity")),
                unit=clean_text(row.get("Unit")),
            ))
    return recipes


def split_instructions(text: str) -> List[dict]:
    if not text or not text.strip():
        return []
    steps = [s.strip() for s in STEP_MARKERS.split(text) if s.strip()]
    if len(steps) > 1:
        return [{"step": i, "instruction": s} for i, s in enumerate(steps, start=1)]
    return [{"step": 1, "instruction": text.strip()}]


def build_recipe(grouped: GroupedRecipe, index: LookupIndex) -> RecipeBuild:
    """Resolve every line, then aggregate nutrition, review status and dietary flags"""
    links = resolve_lines(grouped.lines, index)
    recipe = Recipe(
        id=None,
        name=grouped.name,
        meal_type=[grouped.meal_type],
        instructions=split_instructions(grouped.instructions),
    )
    recipe = NutritionCalculator(index.ingredients_by_id).apply_to_recipe(recipe, links)
    unmatched = []
    for link in links:
        if not link.is_matched and link.raw_name not in unmatched:
            unmatched.append(link.raw_name)
    return RecipeBuild(recipe=recipe, links=links, unmatched=unmatched)


def validate_fks(groups: Dict[str, GroupedRecipe], index: LookupIndex) -> FKValidation:
    result = FKValidation()
    seen = set()
    for name, grouped in groups.items():
        for line in grouped.lines:
            resolution = classify(line.raw_name, index)
            if resolution is None:
                continue
            result.total_lines += 1
            if isinstance(resolution, MatchedSpice):
                result.matched_to_spice += 1
            elif isinstance(resolution, MatchedIngredient):
                result.matched_to_ingredient += 1
            elif line.raw_name not in seen:
                seen.add(line.raw_name)
                result.unmatched.append(line.raw_name)
                result.unmatched_details.append((name, line.raw_name))

    logger.info(f"Total ingredient lines: {result.total_lines}")
    logger.info(f"Matched to ingredients: {result.matched_to_ingredient}")
    logger.info(f"Matched to spices: {result.matched_to_spice}")
    if result.unmatched:
        logger.warning(f"Unmatched ingredient names: {len(result.unmatched)}")
        for recipe_name, raw_name in result.unmatched_details[:20]:
            logger.warning(f"  - {raw_name} (e.g. recipe: {recipe_name})")
        if len(result.unmatched) > 20:
            logger.warning(f"  ... and {len(result.unmatched) - 20} more")
    else:
        logger.info("All ingredient lines matched")
    return result


def index_from_sheets(ingredients: Sequence[Ingredient], spices: Sequence[Spice]) -> LookupIndex:
    """Lookup index over sheet records, with positional ids, for validation without the store"""
    return build_lookup_index(
        [replace(i, id=f"sheet-ingredient-{n}") for n, i in enumerate(ingredients, 1)],
        [replace(s, id=f"sheet-spice-{n}") for n, s in enumerate(spices, 1)],
    )


def link_batches(pairs: Sequence[Tuple[str, List[RecipeIngredientLink]]],
                 max_links: int) -> List[List[Tuple[str, List[RecipeIngredientLink]]]]:
    """Group whole recipes so a batch holds at most `max_links` links (a larger recipe goes alone)"""
    batches = []
    current = []
    count = 0
    for recipe_id, links in pairs:
        if current and count + len(links) > max_links:
            batches.append(current)
            current, count = [], 0
        current.append((recipe_id, links))
        count += len(links)
    if current:
        batches.append(current)
    return batches


class RecipeImporter:
    """Dry-run / apply driver over the three import sheets"""

    def __init__(self, settings: Settings, store: Optional[CorpusStore] = None):
        self.settings = settings
        self.store = store

    # ---------- Sources ----------

    def load_ingredients(self) -> Tuple[List[Ingredient], List[str]]:
        df = read_sheet(self.settings.require_file(self.settings.ingredients_path))
        return parse_sheet(df, parse_ingredient_row, "ingredients")

    def load_spices(self) -> Tuple[List[Spice], List[str]]:
        df = read_sheet(self.settings.require_file(self.settings.spices_path))
        return parse_sheet(df, parse_spice_row, "spices")

    def load_recipe_groups(self) -> Dict[str, GroupedRecipe]:
        df = read_sheet(self.settings.require_file(self.settings.recipes_path))
        groups = group_recipe_rows(df)
        logger.info(f"Parsed {len(groups)} unique recipes from {len(df)} rows")
        return groups

    def sheet_index(self) -> LookupIndex:
        ingredients, _ = self.load_ingredients()
        spices, _ = self.load_spices()
        return index_from_sheets(ingredients, spices)

    def _require_store(self) -> CorpusStore:
        if self.store is None:
            self.store = CorpusStore(self.settings.require_database_url())
        return self.store

    def _writable_store(self) -> CorpusStore:
        """Store with its tables created; only the apply path runs DDL"""
        store = self._require_store()
        store.create_schema()
        return store

    # ---------- Dry run ----------

    def _dry_run_table(self, table: str, names: Sequence[str], warnings: List[str]) -> DryRunResult:
        result = DryRunResult(table=table, warnings=list(warnings))
        try:
            existing = self._require_store().existing_names(table)
        except StoreError as e:
            result.errors.append(f"Database error: {e}")
            return result
        for name in names:
            if name.lower() in existing:
                result.would_update += 1
            else:
                result.would_insert += 1
        logger.info(f"{table}: would insert {result.would_insert}, would update {result.would_update}")
        return result

    def dry_run(self, only: Sequence[str] = TABLES) -> Tuple[List[DryRunResult], Optional[FKValidation]]:
        results = []
        fk = None
        ingredients, ingredient_warnings = self.load_ingredients()
        spices, spice_warnings = self.load_spices()

        if "ingredients" in only:
            results.append(self._dry_run_table("ingredients", [i.name for i in ingredients], ingredient_warnings))
        if "spices" in only:
            results.append(self._dry_run_table("spices", [s.name for s in spices], spice_warnings))
        if "recipes" in only:
            index = index_from_sheets(ingredients, spices)
            groups = self.load_recipe_groups()
            fk = validate_fks(groups, index)
            warnings = []
            if index.collisions:
                warnings.append(f"{len(index.collisions)} lookup keys shared by different records (first kept)")
            if not fk.valid:
                warnings.append(f"{len(fk.unmatched)} ingredient names could not be matched. "
                                f"Examples: {', '.join(fk.unmatched[:5])}")
                warnings.append("Unmatched lines will be stored without a reference and marked for review.")
            affected = {recipe for recipe, _ in fk.unmatched_details}
            logger.info(f"Recipes with all lines matched: {len(groups) - len(affected)}")
            results.append(self._dry_run_table("recipes", list(groups), warnings))
        return results, fk

    # ---------- Apply ----------

    def _seed_reference(self, table: str, records: Sequence, skipped: int,
                        upsert: Callable[[Sequence], UpsertResult]) -> SeedResult:
        totals = UpsertResult()
        report = process_in_chunks(records, self.settings.ingredient_chunk_size,
                                   lambda chunk: totals.merge(upsert(chunk)), label=table)
        result = SeedResult(table=table, inserted=totals.inserted, updated=totals.updated,
                            skipped=skipped + report.failed_items, errors=report.error_messages())
        logger.info(f"{table}: {result.inserted} inserted, {result.updated} updated, {result.skipped} skipped")
        return result

    def seed_ingredients(self) -> SeedResult:
        store = self._writable_store()
        ingredients, _ = self.load_ingredients()
        return self._seed_reference("ingredients", ingredients, 0, store.upsert_ingredients)

    def seed_spices(self) -> SeedResult:
        store = self._writable_store()
        spices, _ = self.load_spices()
        return self._seed_reference("spices", spices, 0, store.upsert_spices)

    def seed_recipes(self, skip_unmatched: bool = False) -> Tuple[SeedResult, SeedResult, int]:
        """Returns the recipe result, the link result and the number of unmatched lines stored"""
        store = self._writable_store()
        groups = self.load_recipe_groups()
        index = build_lookup_index(store.load_ingredients(), store.load_spices())

        builds = []
        skipped_unmatched = 0
        for grouped in groups.values():
            build = build_recipe(grouped, index)
            if skip_unmatched and build.has_unmatched:
                skipped_unmatched += 1
                continue
            builds.append(build)
        if skipped_unmatched:
            logger.info(f"Skipped {skipped_unmatched} recipes with unmatched ingredients")
        unmatched_lines = sum(1 for b in builds for link in b.links if not link.is_matched)
        needs_review = sum(1 for b in builds if b.has_unmatched)
        if needs_review:
            logger.warning(f"{needs_review} recipes have unmatched ingredients (status needs_review); "
                           f"{unmatched_lines} unmatched lines")

        totals = UpsertResult()
        report = process_in_chunks([b.recipe for b in builds], self.settings.recipe_chunk_size,
                                   lambda chunk: totals.merge(store.upsert_recipes(chunk)), label="recipes")
        recipe_result = SeedResult(table="recipes", inserted=totals.inserted, updated=totals.updated,
                                   skipped=report.failed_items + skipped_unmatched,
                                   errors=report.error_messages())

        pairs = [(totals.ids[b.recipe.name], b.links) for b in builds if b.recipe.name in totals.ids]
        link_result = SeedResult(table="recipe_ingredients")
        batches = link_batches(pairs, self.settings.link_chunk_size)

        def replace_batch(chunk):
            link_result.inserted += store.replace_links_many(chunk[0])

        # One link batch per chunk, each batch one transaction
        link_report = process_in_chunks(batches, 1, replace_batch, label="recipe_ingredients")
        link_result.skipped = sum(len(links) for chunk in link_report.errors
                                  for _, links in batches[chunk.chunk_index - 1])
        link_result.errors = link_report.error_messages()
        logger.info(f"recipe_ingredients: {link_result.inserted} links written")
        return recipe_result, link_result, unmatched_lines

    def apply(self, only: Sequence[str] = TABLES,
              skip_unmatched: bool = False) -> Tuple[List[SeedResult], int]:
        results = []
        unmatched_lines = 0
        if "ingredients" in only:
            results.append(self.seed_ingredients())
        if "spices" in only:
            results.append(self.seed_spices())
        if "recipes" in only:
            recipe_result, link_result, unmatched_lines = self.seed_recipes(skip_unmatched)
            results.extend([recipe_result, link_result])
        return results, unmatched_lines

    # ---------- Export ----------

    def export_unmatched(self, output_path: Optional[str] = None) -> Tuple[str, int]:
        """Unmatched recipe lines (against the sheets) as a CSV for data entry"""
        index = self.sheet_index()
        groups = self.load_recipe_groups()
        rows = []
        for name, grouped in groups.items():
            for line in grouped.lines:
                if isinstance(classify(line.raw_name, index), Unmatched):
                    rows.append({
                        "Recipe Name": name,
                        "Ingredient": line.raw_name,
                        "Quantity": "" if line.quantity is None else f"{line.quantity:g}",
                        "Unit": line.unit or "",
                        "Suggested Ingredient Name": "",
                    })

        output_path = output_path or os.path.join(self.settings.datasets_path, "unmatched-recipes.csv")
        os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)
        pd.DataFrame(rows, columns=UNMATCHED_EXPORT_COLUMNS).to_csv(output_path, index=False, encoding="utf-8")
        logger.info(f"Exported {len(rows)} unmatched ingredient lines "
                    f"({len({r['Recipe Name'] for r in rows})} recipes) → {output_path}")
        return output_path, len(rows)


# ---------- Reports ----------

def print_dry_run_summary(results: List[DryRunResult], fk: Optional[FKValidation]) -> None:
    print_banner("DRY RUN SUMMARY")
    for r in results:
        print(f"  {r.table:<20} would insert {r.would_insert:>5}  would update {r.would_update:>5}  "
              f"warnings {len(r.warnings):>3}  errors {len(r.errors):>3}")
    if fk is not None:
        print("\nINGREDIENT REFERENCES:")
        print(f"  Total lines:          {fk.total_lines}")
        print(f"  Matched to foods:     {fk.matched_to_ingredient}")
        print(f"  Matched to spices:    {fk.matched_to_spice}")
        print(f"  Unmatched names:      {len(fk.unmatched)}")
        print(f"  Match rate:           {fk.match_rate:.1f}%")
    warnings = [w for r in results for w in r.warnings]
    if warnings:
        print("\nWARNINGS:")
        for w in warnings[:20]:
            print(f"  - {w}")
        if len(warnings) > 20:
            print(f"  ... and {len(warnings) - 20} more")
    errors = [e for r in results for e in r.errors]
    if errors:
        print("\nERRORS:")
        for e in errors:
            print(f"  - {e}")
    print("=" * 60)


def print_seed_summary(results: List[SeedResult], unmatched_lines: int) -> None:
    print_banner("SEED SUMMARY")
    for r in results:
        print(f"  {r.table:<20} inserted {r.inserted:>5}  updated {r.updated:>5}  "
              f"skipped {r.skipped:>5}  errors {len(r.errors):>3}")
    print(f"\n  Unmatched lines stored for review: {unmatched_lines}")
    errors = [e for r in results for e in r.errors]
    if errors:
        print("\nERRORS:")
        for e in errors:
            print(f"  - {e}")
    print("=" * 60)


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Import ingredient, spice and recipe sheets into the corpus store")
    ap.add_argument("--apply", action="store_true", help="Write to the store (default is a dry run)")
    ap.add_argument("--only", action="append", choices=TABLES,
                    help="Limit to one sheet; repeatable (default: all)")
    ap.add_argument("--skip-unmatched", action="store_true",
                    help="Do not import recipes that have unmatched ingredient lines")
    ap.add_argument("--export-unmatched", action="store_true",
                    help="Write unmatched recipe lines to unmatched-recipes.csv and exit")
    ap.add_argument("--verbose", action="store_true", help="Debug logging")
    args = ap.parse_args(argv)

    configure_logging(args.verbose)
    only = tuple(args.only) if args.only else TABLES

    try:
        settings = load_settings()
        importer = RecipeImporter(settings)

        if args.export_unmatched:
            _, count = importer.export_unmatched()
            return 0 if count == 0 else 1

        settings.require_database_url()
        if args.apply:
            results, unmatched_lines = importer.apply(only, skip_unmatched=args.skip_unmatched)
            print_seed_summary(results, unmatched_lines)
            write_json_report(os.path.join(settings.reports_dir, "import_report.json"), {
                "mode": "apply",
                "tables": [r.__dict__ for r in results],
                "unmatched_lines": unmatched_lines,
            })
            has_errors = any(r.errors for r in results)
            return 1 if has_errors or unmatched_lines else 0

        results, fk = importer.dry_run(only)
        print_dry_run_summary(results, fk)
        write_json_report(os.path.join(settings.reports_dir, "import_report.json"), {
            "mode": "dry_run",
            "tables": [r.__dict__ for r in results],
            "unmatched": fk.unmatched if fk else [],
        })
        has_errors = any(r.errors for r in results)
        return 1 if has_errors or (fk is not None and not fk.valid) else 0

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except StoreError as e:
        logger.error(f"Store error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
