#!/usr/bin/env python3
"""
Request-level functions used by the presentation layer.

Each call reads what it needs from the store and computes in memory; nothing
is cached between calls. Results carry either data or an error message.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from config import Settings, load_settings
from corpus_store import CorpusStore, StoreError
from models import Ingredient, Recipe
from recipe_scaler import RecipeAlternative, ScaledRecipe, find_recipe_alternatives, scale_recipe
from substitution import SubstitutionOption, recommend_substitutions

logger = logging.getLogger(__name__)


@dataclass
class ScaledRecipeResult:
    data: Optional[ScaledRecipe] = None
    error: Optional[str] = None


@dataclass
class SubstitutionResult:
    data: Optional[List[SubstitutionOption]] = None
    original: Optional[Ingredient] = None
    error: Optional[str] = None


@dataclass
class AlternativesResult:
    data: Optional[List[RecipeAlternative]] = None
    original: Optional[Recipe] = None
    error: Optional[str] = None


class RecipeService:

    def __init__(self, store: CorpusStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or Settings()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RecipeService":
        settings = settings or load_settings()
        return cls(CorpusStore(settings.require_database_url()), settings)

    def get_scaled_recipe(self, recipe_id: str, target_calories: Optional[float] = None,
                          scale_factor: Optional[float] = None) -> ScaledRecipeResult:
        try:
            recipe = self.store.get_recipe(recipe_id)
            if recipe is None:
                return ScaledRecipeResult(error="Recipe not found")
            links = self.store.links_for_recipe(recipe_id)
        except StoreError as e:
            logger.error(f"Failed to load recipe {recipe_id}: {e}")
            return ScaledRecipeResult(error=str(e))
        return ScaledRecipeResult(data=scale_recipe(recipe, links, target_calories, scale_factor))

    def get_substitution_options(self, ingredient_id: str, target_amount: Optional[float] = None,
                                 target_unit: Optional[str] = None) -> SubstitutionResult:
        try:
            source = self.store.get_ingredient(ingredient_id)
            if source is None:
                return SubstitutionResult(error="Ingredient not found")
            group = self.store.ingredients_in_group(source.food_group) if source.food_group else []
        except StoreError as e:
            logger.error(f"Failed to load substitutions for {ingredient_id}: {e}")
            return SubstitutionResult(error=str(e))

        candidates = {i.id: i for i in group}
        candidates[source.id] = source
        options = recommend_substitutions(candidates, ingredient_id, target_amount, target_unit,
                                          limit=self.settings.substitution_candidate_limit)
        return SubstitutionResult(data=options, original=source)

    def get_recipe_alternatives(self, recipe_id: str, target_calories: Optional[float] = None,
                                limit: int = 10) -> AlternativesResult:
        try:
            original = self.store.get_recipe(recipe_id)
            if original is None:
                return AlternativesResult(error="Recipe not found")
            candidates = self.store.load_recipes()
        except StoreError as e:
            logger.error(f"Failed to load alternatives for {recipe_id}: {e}")
            return AlternativesResult(error=str(e))

        alternatives = find_recipe_alternatives(
            original, candidates, target_calories,
            limits=self.settings.scaling_limits,
            weights=self.settings.macro_similarity_weights,
            limit=limit,
        )
        return AlternativesResult(data=alternatives, original=original)
