#!/usr/bin/env python3
"""
Ingredient resolver

Matches one raw recipe-ingredient line against the lookup indices:

1. skip empty names and header placeholders (`Ingredient`, `المكون`)
2. spice index first: a term that is both a seasoning and a foodstuff is a
   spice, and spices carry no macros at typical amounts
3. ingredient index next
4. otherwise unmatched, with a review note

Also home of the 0-100 match score used by the reconciliation audit.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from lookup_index import LookupIndex
from models import (MatchedIngredient, MatchedSpice, RawIngredientLine,
                    RecipeIngredientLink, Resolution, Unmatched)
from shared_utils import round_int
from text_normalizer import canonical_key, is_placeholder, lookup_variants, looks_like_spice, words

logger = logging.getLogger(__name__)

# Match score business rules (tunable, not derived from data)
SCORE_EXACT = 100          # same canonical key as the record's name
SCORE_ALIAS = 95           # same canonical key as one of the record's aliases
SCORE_CONTAINS = 70        # one name contains the other
WORD_OVERLAP_WEIGHT = 60   # scale for the shared-word ratio; stays below SCORE_CONTAINS


def unmatched_note(likely_spice: bool) -> str:
    return f"unmatched {'spice' if likely_spice else 'ingredient'} — needs admin review"


def classify(raw_name: str, index: LookupIndex) -> Optional[Resolution]:
    """Resolve a raw name; None when the line is a placeholder or empty"""
    if is_placeholder(raw_name):
        return None

    variants = lookup_variants(raw_name)

    key, spice = index.find_spice(variants)
    if spice is not None:
        return MatchedSpice(spice=spice, matched_key=key)

    key, ingredient = index.find_ingredient(variants)
    if ingredient is not None:
        return MatchedIngredient(ingredient=ingredient, matched_key=key)

    likely_spice = looks_like_spice(raw_name)
    return Unmatched(reason=unmatched_note(likely_spice), likely_spice=likely_spice)


def link_from_resolution(line: RawIngredientLine, resolution: Resolution,
                         sort_order: int) -> RecipeIngredientLink:
    link = RecipeIngredientLink(
        raw_name=line.raw_name,
        quantity=line.quantity,
        unit=line.unit,
        sort_order=sort_order,
    )
    if isinstance(resolution, MatchedSpice):
        link.is_spice = True
        link.spice_id = resolution.spice.id
        link.is_matched = True
    elif isinstance(resolution, MatchedIngredient):
        link.ingredient_id = resolution.ingredient.id
        link.is_matched = True
    else:
        link.is_spice = resolution.likely_spice
        link.notes = resolution.reason
    return link


def resolve_line(line: RawIngredientLine, index: LookupIndex,
                 sort_order: int) -> Optional[RecipeIngredientLink]:
    resolution = classify(line.raw_name, index)
    if resolution is None:
        logger.debug(f"Skipping placeholder ingredient line: '{line.raw_name}'")
        return None
    link = link_from_resolution(line, resolution, sort_order)
    if link.is_matched:
        logger.debug(f"Matched '{line.raw_name}' -> {'spice' if link.is_spice else 'ingredient'} "
                     f"{link.spice_id or link.ingredient_id}")
    else:
        logger.debug(f"Unmatched '{line.raw_name}'")
    return link


def resolve_lines(lines: Iterable[RawIngredientLine], index: LookupIndex) -> List[RecipeIngredientLink]:
    """Resolve a recipe's lines; sort_order counts the kept lines from 1"""
    links = []
    for line in lines:
        link = resolve_line(line, index, sort_order=len(links) + 1)
        if link is not None:
            links.append(link)
    return links


def match_score(raw_name: str, candidate_names: Sequence[Optional[str]],
                aliases: Sequence[str] = ()) -> int:
    """
    How likely `raw_name` refers to a record with the given names and aliases:
    exact 100, alias 95, containment 70, shared words up to 60, else 0.
    """
    raw = canonical_key(raw_name)
    if not raw:
        return 0
    names = [k for k in (canonical_key(n) for n in candidate_names if n) if k]

    if raw in names:
        return SCORE_EXACT

    for alias in aliases:
        if canonical_key(alias) == raw:
            return SCORE_ALIAS

    for name in names:
        if name in raw or raw in name:
            return SCORE_CONTAINS

    raw_words = words(raw)
    best = 0
    for name in names:
        name_words = words(name)
        common = [w for w in raw_words if w in name_words]
        if common:
            ratio = len(common) / max(len(raw_words), len(name_words))
            best = max(best, round_int(ratio * WORD_OVERLAP_WEIGHT))
    return best
