#!/usr/bin/env python3
"""
Tests for the request-level scaling, substitution and alternatives functions
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Settings
from corpus_store import CorpusStore
from models import Ingredient, Macros, Recipe, RecipeIngredientLink
from recipe_service import RecipeService


class TestRecipeService:
    """Read operations over the store"""

    def setup_method(self):
        store = CorpusStore("sqlite:///:memory:")
        store.create_schema()
        self.ingredient_ids = store.upsert_ingredients([
            Ingredient(id="", name="White Rice", food_group="Grains", subgroup="Rice", macros=Macros(130, 2.7, 28, 0.3)),
            Ingredient(id="", name="Brown Rice", food_group="Grains", subgroup="Rice", macros=Macros(130, 2.7, 27, 1)),
            Ingredient(id="", name="Oats", food_group="Grains", subgroup="Cereals", macros=Macros(389, 17, 66, 7)),
            Ingredient(id="", name="Apple", food_group="Fruits", macros=Macros(52, 0.3, 14, 0.2)),
        ]).ids
        self.recipe_ids = store.upsert_recipes([
            Recipe(id=None, name="Rice Bowl", meal_type=["lunch"], nutrition_per_serving=Macros(250, 10, 40, 5)),
            Recipe(id=None, name="Oat Bowl", meal_type=["lunch"], nutrition_per_serving=Macros(200, 8, 32, 4)),
            Recipe(id=None, name="Omelette", meal_type=["breakfast"], nutrition_per_serving=Macros(250, 18, 2, 19)),
        ]).ids
        store.replace_links(self.recipe_ids["Rice Bowl"], [
            RecipeIngredientLink(raw_name="White Rice", quantity=150, unit="g", sort_order=1,
                                 ingredient_id=self.ingredient_ids["White Rice"], is_matched=True),
        ])
        self.service = RecipeService(store, Settings(substitution_candidate_limit=30))

    def test_scaled_recipe(self):
        """Test a scaled recipe from the store"""
        result = self.service.get_scaled_recipe(self.recipe_ids["Rice Bowl"], target_calories=500)
        assert result.error is None
        assert result.data.scale_factor == 2.0
        assert result.data.scaled_calories == 500
        assert result.data.ingredients[0].scaled_quantity == 300

    def test_scaled_recipe_not_found(self):
        """Test an unknown recipe id"""
        result = self.service.get_scaled_recipe("missing")
        assert result.data is None and result.error == "Recipe not found"

    def test_substitution_options(self):
        """Test substitution options from the store"""
        result = self.service.get_substitution_options(self.ingredient_ids["White Rice"], target_amount=100)
        assert result.error is None
        assert result.original.name == "White Rice"
        assert [o.candidate.name for o in result.data] == ["Brown Rice", "Oats"]
        assert result.data[0].suggested_amount == 100

    def test_substitution_unknown_ingredient(self):
        """Test an unknown ingredient id"""
        result = self.service.get_substitution_options("missing")
        assert result.error == "Ingredient not found"

    def test_alternatives(self):
        """Test alternatives from the store"""
        result = self.service.get_recipe_alternatives(self.recipe_ids["Rice Bowl"])
        assert result.original.name == "Rice Bowl"
        assert [(a.recipe.name, a.scale_factor) for a in result.data] == [("Oat Bowl", 1.25)]
        assert result.data[0].swap_quality == "excellent"

    def test_alternatives_not_found(self):
        """Test alternatives for an unknown recipe"""
        assert self.service.get_recipe_alternatives("missing").error == "Recipe not found"
