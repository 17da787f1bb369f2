#!/usr/bin/env python3
"""
Tests for recipe nutrition aggregation, review status and dietary flags
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import Ingredient, Macros, Recipe, RecipeIngredientLink, RecipeStatus
from nutrition_calculator import NutritionCalculator, dietary_flags, round_nutrition


def matched(raw_name, ingredient_id, quantity=None, unit="g"):
    return RecipeIngredientLink(raw_name=raw_name, quantity=quantity, unit=unit,
                                ingredient_id=ingredient_id, is_matched=True)


class TestNutritionCalculator:
    """Per-serving nutrition from recipe links"""

    def setup_method(self):
        self.ingredients = {
            "chicken": Ingredient(id="chicken", name="Chicken Breast", serving_size=100,
                                  macros=Macros(165, 31, 0, 3.6)),
            "rice": Ingredient(id="rice", name="Rice", serving_size=100,
                               macros=Macros(130, 2.7, 28, 0.3)),
            "broken": Ingredient(id="broken", name="Broken Serving", serving_size=0,
                                 macros=Macros(500, 10, 10, 10)),
        }
        self.calc = NutritionCalculator(self.ingredients)

    def test_quantity_scales_by_serving_size(self):
        """Test quantities scale by serving size"""
        result = self.calc.calculate([matched("Chicken", "chicken", 150)])
        assert result.nutrition == Macros(248.0, 46.5, 0.0, 5.4)
        assert result.status == RecipeStatus.COMPLETE
        assert result.admin_notes is None

    def test_missing_quantity_counts_one_serving(self):
        """Test a missing quantity counts as one serving"""
        result = self.calc.calculate([matched("Rice", "rice")])
        assert result.nutrition.calories == 130

    def test_sum_and_rounding(self):
        """Test totals are summed then rounded"""
        result = self.calc.calculate([matched("Chicken", "chicken", 150), matched("Rice", "rice")])
        assert result.nutrition.calories == 378
        assert result.nutrition.protein == 49.2
        assert result.nutrition.carbs == 28.0
        assert result.nutrition.fat == 5.7
        assert result.ingredient_lines == 2

    def test_spices_contribute_nothing(self):
        """Test spice lines add no calories"""
        spice = RecipeIngredientLink(raw_name="Salt", quantity=5, is_spice=True,
                                     spice_id="salt", is_matched=True)
        result = self.calc.calculate([matched("Rice", "rice", 100), spice])
        assert result.nutrition.calories == 130
        assert result.spice_lines == 1
        assert result.status == RecipeStatus.COMPLETE

    def test_unmatched_needs_review(self):
        """Test unmatched lines mark the recipe for review"""
        unknown = RecipeIngredientLink(raw_name="xyz-unknown-food", quantity=50)
        result = self.calc.calculate([matched("Rice", "rice", 100), unknown, unknown])
        assert result.nutrition.calories == 130
        assert result.status == RecipeStatus.NEEDS_REVIEW
        assert result.admin_notes == "Unmatched ingredients: xyz-unknown-food"
        assert result.unmatched_names == ["xyz-unknown-food"]
        assert result.has_unmatched

    def test_non_positive_serving_size_contributes_zero(self):
        """Test a zero serving size adds nothing"""
        result = self.calc.calculate([matched("Broken", "broken", 50)])
        assert result.nutrition == Macros()

    def test_unknown_ingredient_id_contributes_zero(self):
        """Test a dangling ingredient id adds nothing"""
        result = self.calc.calculate([matched("Ghost", "no-such-id", 50)])
        assert result.nutrition.calories == 0

    def test_order_independent(self):
        """Test link order does not change the result"""
        links = [matched("Chicken", "chicken", 120), matched("Rice", "rice", 80)]
        forward = self.calc.calculate(links).nutrition
        backward = self.calc.calculate(list(reversed(links))).nutrition
        assert forward == backward

    def test_apply_to_recipe_returns_updated_copy(self):
        """Test the recipe is copied, not modified"""
        recipe = Recipe(id="r1", name="Chicken and Rice", meal_type=["lunch"])
        links = [matched("دجاج", "chicken", 150), matched("Rice", "rice", 100)]
        updated = self.calc.apply_to_recipe(recipe, links)
        assert updated.nutrition_per_serving.calories == 378
        assert updated.status == RecipeStatus.COMPLETE
        assert not updated.is_vegetarian
        assert updated.is_dairy_free
        assert recipe.nutrition_per_serving == Macros()
        assert recipe.status == RecipeStatus.DRAFT


class TestDietaryFlags:
    """Dietary flags from ingredient groups"""

    def test_meat_is_not_vegetarian(self):
        """Test meat clears the vegetarian flag"""
        flags = dietary_flags(["دجاج", "أرز"])
        assert not flags["is_vegetarian"] and not flags["is_vegan"]

    def test_egg_is_vegetarian_not_vegan(self):
        """Test eggs keep vegetarian but clear vegan"""
        flags = dietary_flags(["بيض", "طماطم"])
        assert flags["is_vegetarian"] and not flags["is_vegan"]
        assert flags["is_dairy_free"]

    def test_dairy(self):
        """Test dairy keeps vegetarian but clears vegan and dairy free"""
        flags = dietary_flags(["Whole milk", "Oats"])
        assert flags["is_vegetarian"] and not flags["is_vegan"]
        assert not flags["is_dairy_free"]

    def test_plant_only(self):
        """Test plant ingredients stay vegan, gluten free is never inferred"""
        flags = dietary_flags(["Tomato", "Rice", "Olive oil"])
        assert flags["is_vegetarian"] and flags["is_vegan"] and flags["is_dairy_free"]
        assert flags["is_gluten_free"] is False


def test_round_nutrition_half_up():
    """Test nutrition rounds halves up"""
    rounded = round_nutrition(Macros(100.5, 2.25, 0.05, 1.0))
    assert rounded == Macros(101.0, 2.3, 0.1, 1.0)
