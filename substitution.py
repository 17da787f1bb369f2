#!/usr/bin/env python3
"""
Substitution Recommender
Calorie-equivalent swaps for a matched ingredient from its own food group.
Same-subgroup candidates rank first, then alphabetical by name.
"""

import logging
from dataclasses import dataclass
from typing import List, Mapping, Optional

from models import Ingredient
from shared_utils import round_for_measuring, round_int

logger = logging.getLogger(__name__)

DEFAULT_CANDIDATE_LIMIT = 30


@dataclass(frozen=True)
class SubstitutionOption:
    candidate: Ingredient
    suggested_amount: float
    calorie_diff_percent: int
    same_subgroup: bool = False

    @property
    def is_actionable(self) -> bool:
        """False for degenerate options (no calorie density on either side)"""
        return self.suggested_amount > 0


def target_calories_for(source: Ingredient, target_amount: Optional[float]) -> float:
    """Calories of `target_amount` native units of source; one reference serving when no amount"""
    if target_amount is None:
        return source.macros.calories or 0.0
    return source.calories_per_unit * target_amount


def substitution_option(candidate: Ingredient, target_calories: float,
                        same_subgroup: bool = False) -> SubstitutionOption:
    per_unit = candidate.calories_per_unit
    if per_unit <= 0 or target_calories <= 0:
        return SubstitutionOption(candidate=candidate, suggested_amount=0.0,
                                  calorie_diff_percent=0, same_subgroup=same_subgroup)

    suggested = round_for_measuring(target_calories / per_unit)
    diff = round_int((suggested * per_unit - target_calories) / target_calories * 100)
    return SubstitutionOption(candidate=candidate, suggested_amount=suggested,
                              calorie_diff_percent=diff, same_subgroup=same_subgroup)


def recommend_substitutions(ingredients_by_id: Mapping[str, Ingredient], ingredient_id: str,
                            target_amount: Optional[float] = None,
                            target_unit: Optional[str] = None,
                            limit: int = DEFAULT_CANDIDATE_LIMIT) -> List[SubstitutionOption]:
    source = ingredients_by_id.get(ingredient_id)
    if source is None:
        logger.warning(f"Substitution requested for unknown ingredient {ingredient_id}")
        return []
    if not source.food_group:
        logger.debug(f"'{source.name}' has no food group; no substitutions")
        return []

    if target_unit and source.serving_unit and target_unit.lower() != source.serving_unit.lower():
        logger.warning(f"Target unit '{target_unit}' differs from '{source.name}' serving unit "
                       f"'{source.serving_unit}'; amounts are treated as serving units")

    target_calories = target_calories_for(source, target_amount)

    options = [
        substitution_option(candidate, target_calories,
                            same_subgroup=bool(source.subgroup) and candidate.subgroup == source.subgroup)
        for candidate in ingredients_by_id.values()
        if candidate.id != source.id and candidate.food_group == source.food_group
    ]
    options.sort(key=lambda o: (not o.same_subgroup, o.candidate.name.lower(), o.candidate.id))

    degenerate = sum(1 for o in options if not o.is_actionable)
    if degenerate:
        logger.debug(f"{degenerate} substitution candidate(s) for '{source.name}' have no calorie density")
    return options[:limit] if limit and limit > 0 else options
