#!/usr/bin/env python3
"""
Key -> record indices for the ingredient and spice corpora.

Every lookup variant of every name, alternate-script name and alias is
inserted. The first record to claim a key keeps it; later claimants are not
merged or overwritten. Two different records sharing a full canonical key are
recorded as collisions for data-quality review.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Tuple

from models import Ingredient, Spice
from text_normalizer import lookup_variants

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyCollision:
    kind: str          # "ingredient" | "spice"
    key: str
    kept_id: str
    dropped_id: str


@dataclass(frozen=True)
class LookupIndex:
    ingredient_keys: Mapping[str, Ingredient]
    spice_keys: Mapping[str, Spice]
    ingredients_by_id: Mapping[str, Ingredient]
    spices_by_id: Mapping[str, Spice]
    collisions: Tuple[KeyCollision, ...] = ()

    def find_spice(self, variants: Iterable[str]):
        for key in variants:
            spice = self.spice_keys.get(key)
            if spice is not None:
                return key, spice
        return None, None

    def find_ingredient(self, variants: Iterable[str]):
        for key in variants:
            ingredient = self.ingredient_keys.get(key)
            if ingredient is not None:
                return key, ingredient
        return None, None

    def summary(self) -> Dict[str, int]:
        return {
            "ingredients": len(self.ingredients_by_id),
            "ingredient_keys": len(self.ingredient_keys),
            "spices": len(self.spices_by_id),
            "spice_keys": len(self.spice_keys),
            "collisions": len(self.collisions),
        }


def _ranked_keys(names: Iterable[str]) -> List[List[str]]:
    """Lookup variants of all of a record's names, grouped by variant rank"""
    ranks: List[List[str]] = []
    for name in names:
        if not name:
            continue
        for rank, key in enumerate(lookup_variants(name)):
            while len(ranks) <= rank:
                ranks.append([])
            ranks[rank].append(key)
    return ranks


def _fill(lookup: Dict[str, object], records: List[Tuple[object, List[List[str]]]],
          kind: str, collisions: List[KeyCollision]) -> None:
    # Full keys of every record go in before any record's derived variants, so a
    # singularised or article-stripped form never shadows another record's exact name
    reported = set()
    depth = max((len(ranks) for _, ranks in records), default=0)
    for rank in range(depth):
        for record, ranks in records:
            if rank >= len(ranks):
                continue
            for key in ranks[rank]:
                existing = lookup.get(key)
                if existing is None:
                    lookup[key] = record
                elif rank == 0 and existing.id != record.id and (key, record.id) not in reported:
                    reported.add((key, record.id))
                    collisions.append(KeyCollision(kind=kind, key=key, kept_id=existing.id,
                                                   dropped_id=record.id))


def build_lookup_index(ingredients: Iterable[Ingredient], spices: Iterable[Spice]) -> LookupIndex:
    """Build both indices from scratch; input order decides who wins a shared key"""
    ingredients_by_id: Dict[str, Ingredient] = {}
    spices_by_id: Dict[str, Spice] = {}
    ingredient_records = []
    spice_records = []

    for ingredient in ingredients:
        if ingredient.id in ingredients_by_id:
            continue
        ingredients_by_id[ingredient.id] = ingredient
        ingredient_records.append((ingredient, _ranked_keys((ingredient.name, ingredient.name_alt))))

    for spice in spices:
        if spice.id in spices_by_id:
            continue
        spices_by_id[spice.id] = spice
        names = (spice.name, spice.name_alt) + tuple(spice.aliases or ())
        spice_records.append((spice, _ranked_keys(names)))

    ingredient_keys: Dict[str, Ingredient] = {}
    spice_keys: Dict[str, Spice] = {}
    collisions: List[KeyCollision] = []
    _fill(ingredient_keys, ingredient_records, "ingredient", collisions)
    _fill(spice_keys, spice_records, "spice", collisions)

    logger.info(f"Ingredient lookup: {len(ingredient_keys)} keys for {len(ingredients_by_id)} ingredients")
    logger.info(f"Spice lookup: {len(spice_keys)} keys for {len(spices_by_id)} spices")
    if collisions:
        logger.warning(f"{len(collisions)} lookup keys are shared by different records (first record kept)")
        for c in collisions[:10]:
            logger.warning(f"  {c.kind} key '{c.key}': kept {c.kept_id}, dropped {c.dropped_id}")

    return LookupIndex(
        ingredient_keys=MappingProxyType(ingredient_keys),
        spice_keys=MappingProxyType(spice_keys),
        ingredients_by_id=MappingProxyType(ingredients_by_id),
        spices_by_id=MappingProxyType(spices_by_id),
        collisions=tuple(collisions),
    )
