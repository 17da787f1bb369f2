#!/usr/bin/env python3
"""
Reconciliation Audit
Consistency checker / fixer for the recipe_ingredients link table.

Finds:
1. recipes without any ingredient links
2. links pointing at ingredients or spices that no longer exist (orphans)
3. links whose is_matched flag disagrees with their references
4. links carrying both an ingredient and a spice reference
5. unmatched links, each with up to three scored suggestions

Usage:
    recipe-audit                       # dry run, report only
    recipe-audit --fix                 # clear orphans, recompute flags
    recipe-audit --auto-match --min-score 95
    recipe-audit --populate-missing    # re-resolve zero-link recipes from the recipes sheet
"""

import argparse
import logging
import os
import sys
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

import pandas as pd

from config import ConfigError, Settings, load_settings
from corpus_store import CorpusStore, StoreError
from ingredient_resolver import match_score, resolve_lines
from lookup_index import LookupIndex, build_lookup_index
from models import Recipe, RecipeIngredientLink
from nutrition_calculator import NutritionCalculator
from recipe_importer import group_recipe_rows, read_sheet
from shared_utils import ChunkReport, configure_logging, print_banner, process_in_chunks, write_json_report

logger = logging.getLogger(__name__)

# Suggestions at or below this score are noise
MIN_SUGGESTION_SCORE = 30
MAX_SUGGESTIONS = 3
DEFAULT_AUTO_MATCH_SCORE = 90


@dataclass(frozen=True)
class MatchSuggestion:
    id: str
    name: str
    score: int


@dataclass
class UnmatchedLine:
    link: RecipeIngredientLink
    recipe_name: str
    suggestions: List[MatchSuggestion] = field(default_factory=list)


@dataclass
class AuditResult:
    total_recipes: int = 0
    total_links: int = 0
    recipes_without_links: List[Recipe] = field(default_factory=list)
    orphaned_ingredient_refs: List[RecipeIngredientLink] = field(default_factory=list)
    orphaned_spice_refs: List[RecipeIngredientLink] = field(default_factory=list)
    incorrect_flags: List[RecipeIngredientLink] = field(default_factory=list)
    conflicting_refs: List[RecipeIngredientLink] = field(default_factory=list)
    unmatched: List[UnmatchedLine] = field(default_factory=list)
    matched_links: int = 0
    collisions: int = 0

    @property
    def orphaned_refs(self) -> int:
        return len(self.orphaned_ingredient_refs) + len(self.orphaned_spice_refs)

    @property
    def structural_issues(self) -> int:
        """Problems the link table should never have; unmatched lines are a review queue, not an issue"""
        return (len(self.recipes_without_links) + self.orphaned_refs
                + len(self.incorrect_flags) + len(self.conflicting_refs))

    def summary(self) -> Dict[str, int]:
        return {
            "total_recipes": self.total_recipes,
            "total_links": self.total_links,
            "recipes_with_links": self.total_recipes - len(self.recipes_without_links),
            "recipes_without_links": len(self.recipes_without_links),
            "matched_links": self.matched_links,
            "unmatched_links": self.total_links - self.matched_links,
            "orphaned_refs": self.orphaned_refs,
            "incorrect_flags": len(self.incorrect_flags),
            "conflicting_refs": len(self.conflicting_refs),
            "index_collisions": self.collisions,
        }


@dataclass
class FixResult:
    cleared_orphans: int = 0
    fixed_flags: int = 0
    resolved_conflicts: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class AutoMatchResult:
    matched: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


@dataclass
class PopulateResult:
    populated: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


# ---------- Pure audit logic ----------

def suggest_matches(link: RecipeIngredientLink, index: LookupIndex,
                    limit: int = MAX_SUGGESTIONS) -> List[MatchSuggestion]:
    """Best-scoring records from the spice corpus (spice lines) or the ingredient corpus"""
    if link.is_spice:
        scored = [
            MatchSuggestion(s.id, s.name, match_score(link.raw_name, (s.name, s.name_alt), s.aliases))
            for s in index.spices_by_id.values()
        ]
    else:
        scored = [
            MatchSuggestion(i.id, i.name, match_score(link.raw_name, (i.name, i.name_alt)))
            for i in index.ingredients_by_id.values()
        ]
    scored = [s for s in scored if s.score > MIN_SUGGESTION_SCORE]
    scored.sort(key=lambda s: (-s.score, s.name))
    return scored[:limit]


def audit_links(recipes: Sequence[Recipe], links: Sequence[RecipeIngredientLink],
                index: LookupIndex) -> AuditResult:
    result = AuditResult(total_recipes=len(recipes), total_links=len(links),
                         collisions=len(index.collisions))
    recipe_names = {r.id: r.name for r in recipes}
    recipes_with_links = {link.recipe_id for link in links}
    result.recipes_without_links = [r for r in recipes if r.id not in recipes_with_links]

    for link in links:
        if link.is_matched:
            result.matched_links += 1
        if link.ingredient_id is not None and link.ingredient_id not in index.ingredients_by_id:
            result.orphaned_ingredient_refs.append(link)
        if link.spice_id is not None and link.spice_id not in index.spices_by_id:
            result.orphaned_spice_refs.append(link)
        if link.has_conflicting_refs():
            result.conflicting_refs.append(link)
        if link.is_matched != link.expected_match_flag():
            result.incorrect_flags.append(link)
        if link.ingredient_id is None and link.spice_id is None:
            result.unmatched.append(UnmatchedLine(
                link=link,
                recipe_name=recipe_names.get(link.recipe_id, "Unknown"),
                suggestions=suggest_matches(link, index),
            ))

    logger.info(f"Audited {len(links)} links across {len(recipes)} recipes: "
                f"{result.structural_issues} structural issues, {len(result.unmatched)} unmatched")
    return result


def plan_fixes(result: AuditResult) -> Tuple[List[RecipeIngredientLink], FixResult]:
    """
    Corrected copies of every link with a structural problem:
    orphaned references cleared, conflicts resolved in favour of the
    reference agreeing with is_spice, is_matched recomputed.
    """
    counts = FixResult()
    fixed: Dict[str, RecipeIngredientLink] = {}

    def current(link: RecipeIngredientLink) -> RecipeIngredientLink:
        if link.id not in fixed:
            fixed[link.id] = replace(link)
        return fixed[link.id]

    for link in result.orphaned_ingredient_refs:
        current(link).ingredient_id = None
        counts.cleared_orphans += 1
    for link in result.orphaned_spice_refs:
        current(link).spice_id = None
        counts.cleared_orphans += 1
    for link in result.conflicting_refs:
        updated = current(link)
        if updated.has_conflicting_refs():
            if updated.is_spice:
                updated.ingredient_id = None
            else:
                updated.spice_id = None
            counts.resolved_conflicts += 1
    for link in result.incorrect_flags:
        current(link)

    for updated in fixed.values():
        expected = updated.expected_match_flag()
        if updated.is_matched != expected:
            updated.is_matched = expected
            counts.fixed_flags += 1
    return list(fixed.values()), counts


def plan_auto_matches(result: AuditResult, min_score: int = DEFAULT_AUTO_MATCH_SCORE
                      ) -> List[Tuple[RecipeIngredientLink, MatchSuggestion]]:
    """Unmatched lines whose best suggestion scores at least `min_score`"""
    planned = []
    for line in result.unmatched:
        best = line.suggestions[0] if line.suggestions else None
        if best is None or best.score < min_score:
            continue
        updated = replace(line.link, is_matched=True, notes=None)
        if updated.is_spice:
            updated.spice_id = best.id
        else:
            updated.ingredient_id = best.id
        planned.append((updated, best))
    return planned


# ---------- Store-backed driver ----------

class ReconciliationAuditor:

    def __init__(self, store: CorpusStore, settings: Settings):
        self.store = store
        self.settings = settings

    def load_index(self) -> LookupIndex:
        return build_lookup_index(self.store.load_ingredients(), self.store.load_spices())

    def run_audit(self) -> AuditResult:
        index = self.load_index()
        recipes = self.store.load_recipes()
        links = self.store.load_links()
        logger.info(f"Loaded {len(recipes)} recipes, {len(links)} links, "
                    f"{len(index.ingredients_by_id)} ingredients, {len(index.spices_by_id)} spices")
        return audit_links(recipes, links, index)

    def _write_links(self, updates: Sequence[RecipeIngredientLink], label: str) -> ChunkReport:
        return process_in_chunks(updates, self.settings.link_chunk_size,
                                 self.store.apply_link_updates, label=label)

    def apply_fixes(self, result: AuditResult) -> FixResult:
        updates, counts = plan_fixes(result)
        if not updates:
            logger.info("No basic fixes needed")
            return counts
        counts.errors = self._write_links(updates, "fixes").error_messages()
        logger.info(f"Cleared {counts.cleared_orphans} orphaned refs, fixed {counts.fixed_flags} flags, "
                    f"resolved {counts.resolved_conflicts} conflicts")
        self.refresh_nutrition({link.recipe_id for link in updates})
        return counts

    def auto_match(self, result: AuditResult, min_score: int) -> AutoMatchResult:
        planned = plan_auto_matches(result, min_score)
        outcome = AutoMatchResult(skipped=len(result.unmatched) - len(planned))
        logger.info(f"Auto-matching with min score {min_score}: {len(planned)} candidates")
        for link, best in planned:
            logger.info(f"  '{link.raw_name}' -> '{best.name}' ({best.score}%)")
        report = self._write_links([link for link, _ in planned], "auto-match")
        outcome.errors = report.error_messages()
        outcome.matched = report.processed
        if planned:
            self.refresh_nutrition({link.recipe_id for link, _ in planned})
        return outcome

    def populate_missing(self, result: AuditResult) -> PopulateResult:
        """Re-resolve recipes without links from the recipes sheet, only those recipes"""
        outcome = PopulateResult()
        if not result.recipes_without_links:
            logger.info("No recipes with missing ingredient links")
            return outcome

        df = read_sheet(self.settings.require_file(self.settings.recipes_path))
        groups = group_recipe_rows(df)
        index = self.load_index()

        populated_ids = set()
        for recipe in result.recipes_without_links:
            grouped = groups.get(recipe.name)
            if grouped is None or not grouped.lines:
                logger.warning(f"Recipe '{recipe.name}' has no ingredient rows in the sheet; skipping")
                outcome.skipped += 1
                continue
            links = resolve_lines(grouped.lines, index)
            try:
                self.store.replace_links(recipe.id, links)
            except StoreError as e:
                logger.error(f"Failed to populate '{recipe.name}': {e}")
                outcome.errors.append(f"Recipe '{recipe.name}': {e}")
                continue
            matched = sum(1 for link in links if link.is_matched)
            logger.info(f"  {recipe.name}: {len(links)} lines ({matched} matched, {len(links) - matched} unmatched)")
            outcome.populated += 1
            populated_ids.add(recipe.id)

        # Skipped and failed recipes keep their cached nutrition
        self.refresh_nutrition(populated_ids)
        return outcome

    def refresh_nutrition(self, recipe_ids) -> int:
        """Recompute cached nutrition and review status for recipes whose links changed"""
        recipe_ids = {r for r in recipe_ids if r}
        if not recipe_ids:
            return 0
        calculator = NutritionCalculator(self.load_index().ingredients_by_id)
        updated = []
        for recipe_id in recipe_ids:
            recipe = self.store.get_recipe(recipe_id)
            if recipe is None:
                continue
            links = self.store.links_for_recipe(recipe_id)
            updated.append(calculator.apply_to_recipe(recipe, links))
        self.store.update_recipe_nutrition(updated)
        logger.info(f"Refreshed nutrition for {len(updated)} recipes")
        return len(updated)


# ---------- Reports ----------

def print_audit_report(result: AuditResult, verbose: bool = False) -> None:
    s = result.summary()
    print_banner("AUDIT SUMMARY REPORT")
    print(f"  Total recipes:               {s['total_recipes']}")
    print(f"  Total links:                 {s['total_links']}")
    print(f"  Recipes with links:          {s['recipes_with_links']}")
    print(f"  Recipes without links:       {s['recipes_without_links']}")
    if result.total_links:
        print(f"  Matched:                     {s['matched_links']} "
              f"({s['matched_links'] / result.total_links * 100:.1f}%)")
        print(f"  Unmatched:                   {s['unmatched_links']} "
              f"({s['unmatched_links'] / result.total_links * 100:.1f}%)")

    print("\nISSUES:")
    if result.recipes_without_links:
        print(f"  Recipes with no links: {len(result.recipes_without_links)}")
        if verbose or len(result.recipes_without_links) <= 10:
            for r in result.recipes_without_links:
                print(f"    - {r.name} ({r.id})")
    if result.orphaned_refs:
        print(f"  Orphaned references: {result.orphaned_refs}")
        if verbose:
            for link in result.orphaned_ingredient_refs:
                print(f"    - ingredient_id {link.ingredient_id} in link {link.id}")
            for link in result.orphaned_spice_refs:
                print(f"    - spice_id {link.spice_id} in link {link.id}")
    if result.incorrect_flags:
        print(f"  Incorrect is_matched flags: {len(result.incorrect_flags)}")
    if result.conflicting_refs:
        print(f"  Links with both ingredient and spice set: {len(result.conflicting_refs)}")
    if result.collisions:
        print(f"  Lookup keys shared by different records: {result.collisions}")
    if not result.structural_issues:
        print("  No structural issues found")

    if result.unmatched:
        print_banner("UNMATCHED INGREDIENTS")
        shown = result.unmatched if verbose else result.unmatched[:20]
        for line in shown:
            kind = "spice" if line.link.is_spice else "ingredient"
            print(f"  [{kind}] '{line.link.raw_name}' in recipe '{line.recipe_name}'")
            if line.suggestions:
                for m in line.suggestions:
                    print(f"      - {m.name} (score: {m.score}%)")
            else:
                print("      no suggestions")
        if not verbose and len(result.unmatched) > 20:
            print(f"  ... and {len(result.unmatched) - 20} more (use --verbose to see all)")
    print("=" * 60)


def write_suggestions_csv(result: AuditResult, path: str) -> str:
    rows = []
    for line in result.unmatched:
        row = {
            "recipe_name": line.recipe_name,
            "raw_name": line.link.raw_name,
            "is_spice": line.link.is_spice,
            "link_id": line.link.id,
        }
        for n in range(1, MAX_SUGGESTIONS + 1):
            match = line.suggestions[n - 1] if len(line.suggestions) >= n else None
            row[f"suggestion_{n}"] = match.name if match else ""
            row[f"score_{n}"] = match.score if match else ""
        rows.append(row)
    columns = ["recipe_name", "raw_name", "is_spice", "link_id"] + [
        f"{kind}_{n}" for n in range(1, MAX_SUGGESTIONS + 1) for kind in ("suggestion", "score")
    ]
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    pd.DataFrame(rows, columns=columns).to_csv(path, index=False, encoding="utf-8")
    logger.info(f"Wrote {len(rows)} unmatched lines → {path}")
    return path


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Audit and repair recipe ingredient links")
    ap.add_argument("--fix", action="store_true", help="Clear orphaned references and recompute flags")
    ap.add_argument("--auto-match", action="store_true", help="Accept high-confidence suggestions")
    ap.add_argument("--min-score", type=int, default=None,
                    help="Minimum suggestion score for --auto-match (default: AUTO_MATCH_MIN_SCORE or 90)")
    ap.add_argument("--populate-missing", action="store_true",
                    help="Re-resolve recipes without links from the recipes sheet")
    ap.add_argument("--verbose", action="store_true", help="Debug logging and full listings")
    args = ap.parse_args(argv)

    configure_logging(args.verbose)

    try:
        settings = load_settings()
        store = CorpusStore(settings.require_database_url())
        min_score = args.min_score if args.min_score is not None else settings.auto_match_min_score
        auditor = ReconciliationAuditor(store, settings)

        if args.fix or args.auto_match or args.populate_missing:
            logger.info("Running in FIX mode - changes will be applied")
        else:
            logger.info("Running in DRY RUN mode - no changes will be made")

        result = auditor.run_audit()
        print_audit_report(result, args.verbose)
        report = {"summary": result.summary()}

        if args.fix:
            fix = auditor.apply_fixes(result)
            report["fix"] = fix.__dict__
            print_banner("FIXES")
            print(f"  Orphaned refs cleared: {fix.cleared_orphans}")
            print(f"  Matched flags fixed:   {fix.fixed_flags}")
            print(f"  Conflicts resolved:    {fix.resolved_conflicts}")
            for e in fix.errors:
                print(f"  ERROR {e}")

        if args.populate_missing:
            populate = auditor.populate_missing(result)
            report["populate_missing"] = populate.__dict__
            print_banner("POPULATE MISSING")
            print(f"  Populated: {populate.populated}")
            print(f"  Skipped:   {populate.skipped}")
            for e in populate.errors:
                print(f"  ERROR {e}")

        if args.auto_match:
            # Fresh audit so fixes and populated links are considered
            current = auditor.run_audit() if (args.fix or args.populate_missing) else result
            matched = auditor.auto_match(current, min_score)
            report["auto_match"] = {**matched.__dict__, "min_score": min_score}
            print_banner("AUTO-MATCHING")
            print(f"  Matched: {matched.matched}")
            print(f"  Skipped: {matched.skipped}")
            for e in matched.errors:
                print(f"  ERROR {e}")

        final = auditor.run_audit() if (args.fix or args.auto_match or args.populate_missing) else result
        report["remaining"] = final.summary()
        write_json_report(os.path.join(settings.reports_dir, "audit_report.json"), report)
        write_suggestions_csv(final, os.path.join(settings.reports_dir, "unmatched_suggestions.csv"))

        if final.structural_issues:
            logger.warning(f"{final.structural_issues} structural issues remain")
            return 1
        return 0

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 2
    except StoreError as e:
        logger.error(f"Store error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
