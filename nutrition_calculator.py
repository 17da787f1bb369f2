#!/usr/bin/env python3
"""
Nutrition Calculator
Sums per-serving nutrition for a recipe from its resolved ingredient links.

Only matched, non-spice lines count:
    contribution = ingredient.macros x (quantity / serving_size)
A line without a quantity counts as one reference serving. Spices and
unmatched lines contribute nothing; unmatched lines put the recipe up for review.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from models import Ingredient, Macros, Recipe, RecipeIngredientLink, RecipeStatus
from shared_utils import round_half_up, round_int
from text_normalizer import canonical_key

logger = logging.getLogger(__name__)

# Keyword groups for the derived dietary flags (folded key form)
DIET_KEYWORDS = {
    "chicken": ["دجاج", "فراخ", "chicken"],
    "meat": ["لحم", "meat", "beef"],
    "fish": ["سمك", "سلمون", "fish", "salmon"],
    "egg": ["بيض", "egg"],
    "dairy": ["لبن", "حليب", "جبن", "زبادي", "milk", "cheese", "yogurt"],
}
_DIET_PATTERNS = {
    group: re.compile("|".join(canonical_key(k) for k in kws))
    for group, kws in DIET_KEYWORDS.items()
}


def round_nutrition(macros: Macros) -> Macros:
    """Calories to whole units, macros to one decimal"""
    return Macros(
        calories=float(round_int(macros.calories)),
        protein=round_half_up(macros.protein, 1),
        carbs=round_half_up(macros.carbs, 1),
        fat=round_half_up(macros.fat, 1),
    )


def dietary_flags(raw_names: Iterable[str]) -> Dict[str, bool]:
    """
    Derived, not authoritative: keyword tests over the raw ingredient names.
    Gluten cannot be told from names, so is_gluten_free stays False.
    """
    text = " ".join(canonical_key(n) for n in raw_names if n)
    present = {group: bool(p.search(text)) for group, p in _DIET_PATTERNS.items()}
    vegetarian = not (present["chicken"] or present["meat"] or present["fish"])
    return {
        "is_vegetarian": vegetarian,
        "is_vegan": vegetarian and not present["egg"] and not present["dairy"],
        "is_gluten_free": False,
        "is_dairy_free": not present["dairy"],
    }


@dataclass
class NutritionResult:
    nutrition: Macros
    status: RecipeStatus
    admin_notes: Optional[str] = None
    unmatched_names: List[str] = field(default_factory=list)
    ingredient_lines: int = 0
    spice_lines: int = 0

    @property
    def has_unmatched(self) -> bool:
        return bool(self.unmatched_names)


class NutritionCalculator:
    """
    Per-serving nutrition from resolved links against a fixed ingredient map
    """

    def __init__(self, ingredients_by_id: Mapping[str, Ingredient]):
        self.ingredients_by_id = ingredients_by_id

    def line_contribution(self, link: RecipeIngredientLink) -> Macros:
        if link.is_spice or not link.ingredient_id or not link.is_matched:
            return Macros()

        ingredient = self.ingredients_by_id.get(link.ingredient_id)
        if ingredient is None:
            logger.warning(f"Link '{link.raw_name}' points at unknown ingredient {link.ingredient_id}")
            return Macros()

        if link.quantity is None:
            return ingredient.macros

        if not ingredient.serving_size or ingredient.serving_size <= 0:
            logger.warning(f"Ingredient '{ingredient.name}' has serving size {ingredient.serving_size}; "
                           f"line '{link.raw_name}' contributes nothing")
            return Macros()

        return ingredient.macros.scaled(link.quantity / ingredient.serving_size)

    def calculate(self, links: Iterable[RecipeIngredientLink]) -> NutritionResult:
        total = Macros()
        unmatched: List[str] = []
        ingredient_lines = 0
        spice_lines = 0

        for link in links:
            if not link.is_matched:
                if link.raw_name not in unmatched:
                    unmatched.append(link.raw_name)
                continue
            if link.is_spice:
                spice_lines += 1
                continue
            ingredient_lines += 1
            total = total + self.line_contribution(link)

        if unmatched:
            status = RecipeStatus.NEEDS_REVIEW
            notes = f"Unmatched ingredients: {', '.join(unmatched)}"
        else:
            status = RecipeStatus.COMPLETE
            notes = None

        return NutritionResult(
            nutrition=round_nutrition(total),
            status=status,
            admin_notes=notes,
            unmatched_names=unmatched,
            ingredient_lines=ingredient_lines,
            spice_lines=spice_lines,
        )

    def apply_to_recipe(self, recipe: Recipe, links: List[RecipeIngredientLink]) -> Recipe:
        """Recipe with cached nutrition, review status and dietary flags refreshed"""
        result = self.calculate(links)
        if result.has_unmatched:
            logger.warning(f"Recipe '{recipe.name}': {len(result.unmatched_names)} unmatched "
                           f"line(s): {', '.join(result.unmatched_names)}")
        updated = recipe.with_nutrition(result.nutrition, result.status, result.admin_notes)
        for flag, value in dietary_flags(link.raw_name for link in links).items():
            setattr(updated, flag, value)
        return updated
