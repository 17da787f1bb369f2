#!/usr/bin/env python3
"""
Corpus store: SQLAlchemy tables for ingredients, spices, recipes and the
recipe_ingredients junction, plus the reads and chunk-sized writes the
importer, the audit and the serving functions need.

Rows become immutable domain records at this boundary.
"""

import logging
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Set, Tuple

from sqlalchemy import (Boolean, Column, Float, ForeignKey, Integer, JSON, String, Text,
                        UniqueConstraint, create_engine, func, inspect)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from models import Ingredient, Macros, Recipe, RecipeIngredientLink, RecipeStatus, Spice

logger = logging.getLogger(__name__)

Base = declarative_base()


class StoreError(RuntimeError):
    """A read or write against the corpus store failed"""


def new_id() -> str:
    return str(uuid.uuid4())


class IngredientRow(Base):
    __tablename__ = "ingredients"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), unique=True, index=True, nullable=False)
    name_ar = Column(String(200))
    food_group = Column(String(100), index=True)
    subgroup = Column(String(100))
    serving_size = Column(Float, nullable=False, default=100.0)
    serving_unit = Column(String(20), nullable=False, default="g")
    macros = Column(JSON, nullable=False, default=dict)


class SpiceRow(Base):
    __tablename__ = "spices"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), unique=True, index=True, nullable=False)
    name_ar = Column(String(200))
    aliases = Column(JSON, nullable=False, default=list)
    is_default = Column(Boolean, nullable=False, default=True)


class RecipeRow(Base):
    __tablename__ = "recipes"
    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(300), unique=True, index=True, nullable=False)
    meal_type = Column(JSON, nullable=False, default=list)
    instructions = Column(JSON, nullable=False, default=list)
    nutrition_per_serving = Column(JSON, nullable=False, default=dict)
    servings = Column(Integer, nullable=False, default=1)
    is_vegetarian = Column(Boolean, nullable=False, default=False)
    is_vegan = Column(Boolean, nullable=False, default=False)
    is_gluten_free = Column(Boolean, nullable=False, default=False)
    is_dairy_free = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=RecipeStatus.DRAFT.value)
    admin_notes = Column(Text)


class RecipeIngredientRow(Base):
    __tablename__ = "recipe_ingredients"
    __table_args__ = (
        UniqueConstraint("recipe_id", "sort_order", name="uq_recipe_ingredient_order"),
    )
    id = Column(String(36), primary_key=True, default=new_id)
    recipe_id = Column(String(36), ForeignKey("recipes.id", ondelete="CASCADE"), index=True, nullable=False)
    ingredient_id = Column(String(36), ForeignKey("ingredients.id", ondelete="SET NULL"), index=True)
    spice_id = Column(String(36), ForeignKey("spices.id", ondelete="SET NULL"), index=True)
    raw_name = Column(String(300), nullable=False)
    quantity = Column(Float)
    unit = Column(String(50))
    is_spice = Column(Boolean, nullable=False, default=False)
    is_optional = Column(Boolean, nullable=False, default=False)
    is_matched = Column(Boolean, nullable=False, default=False)
    sort_order = Column(Integer, nullable=False)
    notes = Column(Text)


TABLES = {
    "ingredients": IngredientRow,
    "spices": SpiceRow,
    "recipes": RecipeRow,
    "recipe_ingredients": RecipeIngredientRow,
}


@dataclass
class UpsertResult:
    inserted: int = 0
    updated: int = 0
    ids: Dict[str, str] = field(default_factory=dict)

    def merge(self, other: "UpsertResult") -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.ids.update(other.ids)


def _ingredient(row: IngredientRow) -> Ingredient:
    return Ingredient(
        id=row.id,
        name=row.name,
        name_alt=row.name_ar,
        food_group=row.food_group,
        subgroup=row.subgroup,
        serving_size=row.serving_size if row.serving_size is not None else 100.0,
        serving_unit=row.serving_unit or "g",
        macros=Macros.from_dict(row.macros),
    )


def _spice(row: SpiceRow) -> Spice:
    return Spice(
        id=row.id,
        name=row.name,
        name_alt=row.name_ar,
        aliases=tuple(row.aliases or ()),
        is_default=bool(row.is_default),
    )


def _recipe(row: RecipeRow) -> Recipe:
    try:
        status = RecipeStatus(row.status)
    except ValueError:
        status = RecipeStatus.DRAFT
    return Recipe(
        id=row.id,
        name=row.name,
        meal_type=list(row.meal_type or []),
        instructions=list(row.instructions or []),
        nutrition_per_serving=Macros.from_dict(row.nutrition_per_serving),
        is_vegetarian=bool(row.is_vegetarian),
        is_vegan=bool(row.is_vegan),
        is_gluten_free=bool(row.is_gluten_free),
        is_dairy_free=bool(row.is_dairy_free),
        status=status,
        admin_notes=row.admin_notes,
        servings=row.servings or 1,
    )


def _link(row: RecipeIngredientRow) -> RecipeIngredientLink:
    return RecipeIngredientLink(
        raw_name=row.raw_name,
        quantity=row.quantity,
        unit=row.unit,
        is_spice=bool(row.is_spice),
        ingredient_id=row.ingredient_id,
        spice_id=row.spice_id,
        is_matched=bool(row.is_matched),
        sort_order=row.sort_order,
        is_optional=bool(row.is_optional),
        notes=row.notes,
        recipe_id=row.recipe_id,
        id=row.id,
    )


def _link_row(recipe_id: str, link: RecipeIngredientLink) -> RecipeIngredientRow:
    return RecipeIngredientRow(
        id=new_id(),
        recipe_id=recipe_id,
        ingredient_id=link.ingredient_id,
        spice_id=link.spice_id,
        raw_name=link.raw_name,
        quantity=link.quantity,
        unit=link.unit,
        is_spice=link.is_spice,
        is_optional=link.is_optional,
        is_matched=link.is_matched,
        sort_order=link.sort_order,
        notes=link.notes,
    )


class CorpusStore:
    """Thin query layer over one SQLAlchemy engine"""

    def __init__(self, database_url: Optional[str] = None, engine=None):
        if engine is None:
            if not database_url:
                raise StoreError("A database URL or an engine is required")
            kwargs = {}
            if database_url.startswith("sqlite") and ":memory:" in database_url:
                kwargs = {"connect_args": {"check_same_thread": False}, "poolclass": StaticPool}
            engine = create_engine(database_url, **kwargs)
        self.engine = engine
        self.Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """One unit of work; committed on success, rolled back and wrapped as StoreError otherwise"""
        db = self.Session()
        try:
            yield db
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(str(e.__cause__ or e)) from e
        finally:
            db.close()

    def create_schema(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def has_table(self, table: str) -> bool:
        try:
            return inspect(self.engine).has_table(table)
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e

    # ---------- Reads ----------

    def load_ingredients(self) -> List[Ingredient]:
        with self.session() as db:
            return [_ingredient(r) for r in db.query(IngredientRow).order_by(IngredientRow.name)]

    def load_spices(self) -> List[Spice]:
        with self.session() as db:
            return [_spice(r) for r in db.query(SpiceRow).order_by(SpiceRow.name)]

    def load_recipes(self) -> List[Recipe]:
        with self.session() as db:
            return [_recipe(r) for r in db.query(RecipeRow).order_by(RecipeRow.name)]

    def load_links(self) -> List[RecipeIngredientLink]:
        with self.session() as db:
            rows = db.query(RecipeIngredientRow).order_by(RecipeIngredientRow.recipe_id,
                                                          RecipeIngredientRow.sort_order)
            return [_link(r) for r in rows]

    def links_for_recipe(self, recipe_id: str) -> List[RecipeIngredientLink]:
        with self.session() as db:
            rows = (db.query(RecipeIngredientRow)
                    .filter(RecipeIngredientRow.recipe_id == recipe_id)
                    .order_by(RecipeIngredientRow.sort_order))
            return [_link(r) for r in rows]

    def get_recipe(self, recipe_id: str) -> Optional[Recipe]:
        with self.session() as db:
            row = db.get(RecipeRow, recipe_id)
            return _recipe(row) if row else None

    def get_ingredient(self, ingredient_id: str) -> Optional[Ingredient]:
        with self.session() as db:
            row = db.get(IngredientRow, ingredient_id)
            return _ingredient(row) if row else None

    def ingredients_in_group(self, food_group: str) -> List[Ingredient]:
        with self.session() as db:
            rows = db.query(IngredientRow).filter(IngredientRow.food_group == food_group)
            return [_ingredient(r) for r in rows]

    def existing_names(self, table: str) -> Set[str]:
        """Lower-cased names already stored in `table`; empty when the schema does not exist yet"""
        model = TABLES.get(table)
        if model is None or not hasattr(model, "name"):
            raise StoreError(f"Table '{table}' has no name column")
        if not self.has_table(table):
            return set()
        with self.session() as db:
            return {name.lower() for (name,) in db.query(model.name)}

    # ---------- Writes (one transaction per call) ----------

    def _upsert(self, model, values_list: Sequence[dict]) -> UpsertResult:
        """Insert or update by case-insensitive name, the same key the dry run compares"""
        result = UpsertResult()
        with self.session() as db:
            keys = [v["name"].lower() for v in values_list]
            existing = {r.name.lower(): r
                        for r in db.query(model).filter(func.lower(model.name).in_(keys))}
            for values in values_list:
                key = values["name"].lower()
                row = existing.get(key)
                if row is None:
                    row = model(**values)
                    if not row.id:
                        row.id = new_id()
                    db.add(row)
                    existing[key] = row
                    result.inserted += 1
                else:
                    for field_name, value in values.items():
                        if field_name != "id":
                            setattr(row, field_name, value)
                    result.updated += 1
                result.ids[row.name] = row.id
        return result

    def upsert_ingredients(self, ingredients: Sequence[Ingredient]) -> UpsertResult:
        return self._upsert(IngredientRow, [
            {
                "id": i.id or None,
                "name": i.name,
                "name_ar": i.name_alt,
                "food_group": i.food_group,
                "subgroup": i.subgroup,
                "serving_size": i.serving_size,
                "serving_unit": i.serving_unit,
                "macros": i.macros.to_dict(),
            }
            for i in ingredients
        ])

    def upsert_spices(self, spices: Sequence[Spice]) -> UpsertResult:
        return self._upsert(SpiceRow, [
            {
                "id": s.id or None,
                "name": s.name,
                "name_ar": s.name_alt,
                "aliases": list(s.aliases),
                "is_default": s.is_default,
            }
            for s in spices
        ])

    def upsert_recipes(self, recipes: Sequence[Recipe]) -> UpsertResult:
        return self._upsert(RecipeRow, [
            {
                "id": r.id or None,
                "name": r.name,
                "meal_type": list(r.meal_type),
                "instructions": list(r.instructions),
                "nutrition_per_serving": r.nutrition_per_serving.to_dict(),
                "servings": r.servings,
                "is_vegetarian": r.is_vegetarian,
                "is_vegan": r.is_vegan,
                "is_gluten_free": r.is_gluten_free,
                "is_dairy_free": r.is_dairy_free,
                "status": r.status.value,
                "admin_notes": r.admin_notes,
            }
            for r in recipes
        ])

    def replace_links(self, recipe_id: str, links: Sequence[RecipeIngredientLink]) -> int:
        """Replace-all: drop the recipe's links, insert the given ones"""
        return self.replace_links_many([(recipe_id, links)])

    def replace_links_many(self, pairs: Sequence[Tuple[str, Sequence[RecipeIngredientLink]]]) -> int:
        """Replace-all for several recipes in one transaction; nothing is kept if any recipe fails"""
        with self.session() as db:
            for recipe_id, links in pairs:
                db.query(RecipeIngredientRow).filter(RecipeIngredientRow.recipe_id == recipe_id).delete()
                for link in links:
                    db.add(_link_row(recipe_id, link))
                # Later deletes in this session must see these rows
                db.flush()
        return sum(len(links) for _, links in pairs)

    def apply_link_updates(self, updates: Sequence[RecipeIngredientLink]) -> int:
        """Write the reference, flag and note fields of existing links"""
        with self.session() as db:
            for link in updates:
                row = db.get(RecipeIngredientRow, link.id)
                if row is None:
                    raise StoreError(f"Link {link.id} no longer exists")
                row.ingredient_id = link.ingredient_id
                row.spice_id = link.spice_id
                row.is_spice = link.is_spice
                row.is_matched = link.is_matched
                row.notes = link.notes
        return len(updates)

    def update_recipe_nutrition(self, recipes: Sequence[Recipe]) -> int:
        """Refresh cached nutrition, status and notes after links changed"""
        with self.session() as db:
            for recipe in recipes:
                row = db.get(RecipeRow, recipe.id)
                if row is None:
                    continue
                row.nutrition_per_serving = recipe.nutrition_per_serving.to_dict()
                row.status = recipe.status.value
                row.admin_notes = recipe.admin_notes
        return len(recipes)
