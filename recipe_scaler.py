#!/usr/bin/env python3
"""
Recipe Scaler
Scales a recipe's cached per-serving nutrition to a calorie target (or an
explicit factor) and produces kitchen-practical ingredient quantities.

Also ranks alternative recipes that can be portioned to the same target and
scores how closely their macro split follows the original.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from config import DEFAULT_MACRO_WEIGHTS, DEFAULT_SCALING_LIMITS
from models import Macros, Recipe, RecipeIngredientLink
from shared_utils import round_for_measuring, round_half_up, round_int

logger = logging.getLogger(__name__)

# kcal per gram
KCAL_PER_G_PROTEIN = 4
KCAL_PER_G_CARBS = 4
KCAL_PER_G_FAT = 9

# Each percentage point of difference in a macro's share costs this many points
MACRO_DIFF_PENALTY = 1.5

SWAP_QUALITY_BANDS = [(80, "excellent"), (60, "good"), (40, "acceptable")]


@dataclass
class ScaledIngredient:
    raw_name: str
    quantity: Optional[float]
    scaled_quantity: Optional[float]
    unit: Optional[str]
    is_spice: bool = False
    is_optional: bool = False
    ingredient_id: Optional[str] = None
    spice_id: Optional[str] = None


@dataclass
class ScaledRecipe:
    recipe_id: Optional[str]
    name: str
    scale_factor: float
    original_calories: float
    scaled_calories: int
    scaled_protein: float
    scaled_carbs: float
    scaled_fat: float
    ingredients: List[ScaledIngredient] = field(default_factory=list)

    @property
    def scaled_nutrition(self) -> Macros:
        return Macros(calories=float(self.scaled_calories), protein=self.scaled_protein,
                      carbs=self.scaled_carbs, fat=self.scaled_fat)


@dataclass
class RecipeAlternative:
    recipe: Recipe
    scale_factor: float
    scaled_calories: float
    macro_similarity: int
    swap_quality: str


def compute_scale_factor(base_calories: float, target_calories: Optional[float] = None,
                         scale_factor: Optional[float] = None) -> float:
    """
    target / base when a target is given and base calories are positive,
    otherwise the explicit factor, otherwise 1.
    """
    if target_calories is not None:
        if target_calories <= 0:
            logger.warning(f"Ignoring non-positive target calories {target_calories}")
        elif base_calories and base_calories > 0:
            return target_calories / base_calories
        else:
            logger.warning("Recipe has no base calories; target calories cannot be applied")

    if scale_factor is not None:
        if scale_factor > 0:
            return float(scale_factor)
        logger.warning(f"Ignoring non-positive scale factor {scale_factor}; using 1")

    return 1.0


def scale_quantity(quantity: Optional[float], factor: float) -> Optional[float]:
    if quantity is None:
        return None
    return round_for_measuring(quantity * factor)


def scale_recipe(recipe: Recipe, links: Sequence[RecipeIngredientLink],
                 target_calories: Optional[float] = None,
                 scale_factor: Optional[float] = None) -> ScaledRecipe:
    base = recipe.nutrition_per_serving
    factor = compute_scale_factor(base.calories, target_calories, scale_factor)

    ingredients = [
        ScaledIngredient(
            raw_name=link.raw_name,
            quantity=link.quantity,
            scaled_quantity=scale_quantity(link.quantity, factor),
            unit=link.unit,
            is_spice=link.is_spice,
            is_optional=link.is_optional,
            ingredient_id=link.ingredient_id,
            spice_id=link.spice_id,
        )
        for link in sorted(links, key=lambda l: l.sort_order)
    ]

    return ScaledRecipe(
        recipe_id=recipe.id,
        name=recipe.name,
        scale_factor=round_half_up(factor, 2),
        original_calories=base.calories,
        scaled_calories=round_int(base.calories * factor),
        scaled_protein=round_half_up(base.protein * factor, 1),
        scaled_carbs=round_half_up(base.carbs * factor, 1),
        scaled_fat=round_half_up(base.fat * factor, 1),
        ingredients=ingredients,
    )


def macro_percentages(macros: Macros) -> Dict[str, int]:
    """Share of calories from protein / carbs / fat, in whole percent"""
    if not macros.calories or macros.calories <= 0:
        return {"protein": 0, "carbs": 0, "fat": 0}
    return {
        "protein": round_int(macros.protein * KCAL_PER_G_PROTEIN / macros.calories * 100),
        "carbs": round_int(macros.carbs * KCAL_PER_G_CARBS / macros.calories * 100),
        "fat": round_int(macros.fat * KCAL_PER_G_FAT / macros.calories * 100),
    }


def macro_similarity(original: Macros, alternative: Macros,
                     weights: Optional[Mapping[str, float]] = None) -> int:
    """0-100; 100 means the same macro split"""
    weights = weights or DEFAULT_MACRO_WEIGHTS
    a = macro_percentages(original)
    b = macro_percentages(alternative)
    total = 0.0
    for macro in ("protein", "carbs", "fat"):
        score = max(0.0, 100 - abs(a[macro] - b[macro]) * MACRO_DIFF_PENALTY)
        total += score * weights.get(macro, 0.0)
    return round_int(total)


def swap_quality(score: float) -> str:
    for threshold, label in SWAP_QUALITY_BANDS:
        if score >= threshold:
            return label
    return "poor"


def _meal_types(recipe: Recipe) -> set:
    return {m.strip().lower() for m in recipe.meal_type or [] if m}


def find_recipe_alternatives(original: Recipe, candidates: Sequence[Recipe],
                             target_calories: Optional[float] = None,
                             limits: Optional[Mapping[str, float]] = None,
                             weights: Optional[Mapping[str, float]] = None,
                             limit: int = 10) -> List[RecipeAlternative]:
    """
    Recipes sharing a meal type with `original` that can be portioned to the
    target within the scaling limits, most natural portion (factor nearest 1) first.
    """
    limits = limits or DEFAULT_SCALING_LIMITS
    min_scale = limits.get("min_scale_factor", DEFAULT_SCALING_LIMITS["min_scale_factor"])
    max_scale = limits.get("max_scale_factor", DEFAULT_SCALING_LIMITS["max_scale_factor"])

    meal_types = _meal_types(original)
    if not meal_types:
        return []

    target = target_calories or original.nutrition_per_serving.calories
    if not target or target <= 0:
        logger.warning(f"No calorie target for alternatives to '{original.name}'")
        return []

    alternatives = []
    for recipe in candidates:
        if recipe.id == original.id or not (_meal_types(recipe) & meal_types):
            continue
        base = recipe.nutrition_per_serving.calories
        if not base or base <= 0:
            continue
        factor = target / base
        if factor < min_scale or factor > max_scale:
            continue
        similarity = macro_similarity(original.nutrition_per_serving, recipe.nutrition_per_serving, weights)
        alternatives.append(RecipeAlternative(
            recipe=recipe,
            scale_factor=round_half_up(factor, 2),
            scaled_calories=target,
            macro_similarity=similarity,
            swap_quality=swap_quality(similarity),
        ))

    alternatives.sort(key=lambda a: (abs(a.scale_factor - 1), a.recipe.name))
    logger.debug(f"{len(alternatives)} alternatives for '{original.name}' at {target} kcal")
    return alternatives[:limit]
