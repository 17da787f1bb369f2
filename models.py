#!/usr/bin/env python3
"""
Domain records shared by the matcher, the nutrition calculator, the scaler,
the substitution recommender and the reconciliation audit.

Reference data (ingredients, spices) is immutable. Recipe ingredient links are
plain mutable records because the importer and the audit rewrite them.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union


class RecipeStatus(str, Enum):
    DRAFT = "draft"
    COMPLETE = "complete"
    NEEDS_REVIEW = "needs_review"
    ERROR = "error"


@dataclass(frozen=True)
class Macros:
    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0

    def scaled(self, multiplier: float) -> "Macros":
        return Macros(
            calories=self.calories * multiplier,
            protein=self.protein * multiplier,
            carbs=self.carbs * multiplier,
            fat=self.fat * multiplier,
        )

    def __add__(self, other: "Macros") -> "Macros":
        return Macros(
            calories=self.calories + other.calories,
            protein=self.protein + other.protein,
            carbs=self.carbs + other.carbs,
            fat=self.fat + other.fat,
        )

    def to_dict(self) -> Dict[str, float]:
        return {
            "calories": self.calories,
            "protein_g": self.protein,
            "carbs_g": self.carbs,
            "fat_g": self.fat,
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Macros":
        """Accepts both the stored `protein_g` keys and the short `protein` keys"""
        data = data or {}

        def pick(*keys) -> float:
            for key in keys:
                value = data.get(key)
                if value is not None:
                    return float(value)
            return 0.0

        return cls(
            calories=pick("calories"),
            protein=pick("protein_g", "protein"),
            carbs=pick("carbs_g", "carbs"),
            fat=pick("fat_g", "fat"),
        )


@dataclass(frozen=True)
class Ingredient:
    id: str
    name: str
    name_alt: Optional[str] = None
    food_group: Optional[str] = None
    subgroup: Optional[str] = None
    serving_size: float = 100.0
    serving_unit: str = "g"
    macros: Macros = field(default_factory=Macros)

    @property
    def calories_per_unit(self) -> float:
        """Calories per one serving unit; 0 when the serving basis is unusable"""
        if not self.serving_size or self.serving_size <= 0:
            return 0.0
        return (self.macros.calories or 0.0) / self.serving_size


@dataclass(frozen=True)
class Spice:
    id: str
    name: str
    name_alt: Optional[str] = None
    aliases: Tuple[str, ...] = ()
    is_default: bool = True


@dataclass(frozen=True)
class RawIngredientLine:
    """An ingredient row as it appears in the import source"""
    raw_name: str
    quantity: Optional[float] = None
    unit: Optional[str] = None


@dataclass
class RecipeIngredientLink:
    """One raw ingredient line of a recipe and what it resolved to"""
    raw_name: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    is_spice: bool = False
    ingredient_id: Optional[str] = None
    spice_id: Optional[str] = None
    is_matched: bool = False
    sort_order: int = 0
    is_optional: bool = False
    notes: Optional[str] = None
    recipe_id: Optional[str] = None
    id: Optional[str] = None

    def expected_match_flag(self) -> bool:
        return (self.ingredient_id is not None) != (self.spice_id is not None)

    def has_conflicting_refs(self) -> bool:
        return self.ingredient_id is not None and self.spice_id is not None


@dataclass
class Recipe:
    id: Optional[str]
    name: str
    meal_type: List[str] = field(default_factory=list)
    instructions: List[dict] = field(default_factory=list)
    nutrition_per_serving: Macros = field(default_factory=Macros)
    is_vegetarian: bool = False
    is_vegan: bool = False
    is_gluten_free: bool = False
    is_dairy_free: bool = False
    status: RecipeStatus = RecipeStatus.DRAFT
    admin_notes: Optional[str] = None
    servings: int = 1

    def with_nutrition(self, nutrition: Macros, status: RecipeStatus,
                       admin_notes: Optional[str]) -> "Recipe":
        return replace(self, nutrition_per_serving=nutrition, status=status, admin_notes=admin_notes)


# Resolution outcome of one raw line: exactly one of these three shapes

@dataclass(frozen=True)
class MatchedIngredient:
    ingredient: Ingredient
    matched_key: str


@dataclass(frozen=True)
class MatchedSpice:
    spice: Spice
    matched_key: str


@dataclass(frozen=True)
class Unmatched:
    reason: str
    likely_spice: bool = False


Resolution = Union[MatchedIngredient, MatchedSpice, Unmatched]
