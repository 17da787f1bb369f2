# text_normalizer.py
"""
Canonical lookup keys for bilingual (Latin / Arabic) ingredient names.

Spelling variants that only differ by tashkeel, accents, hamza seats, the
alef maqsura / yaa pair or taa marbuta must collapse to the same key:

* `زَيْت زَيْتُون`  -> `زيت زيتون`
* `أرز` / `ارز`     -> `ارز`
* `سلطة` / `سلطه`   -> `سلطه`
* `Jalapeño-Pepper` -> `jalapeno pepper`
"""

import re
import unicodedata
from typing import List

TATWEEL = "ـ"

# Orthographic variants of the same letter -> one letter
LETTER_FOLDS = {
    "أ": "ا", "إ": "ا", "آ": "ا", "ٱ": "ا",
    "ى": "ي", "ئ": "ي",
    "ؤ": "و",
    "ة": "ه",
}
_FOLD_TABLE = str.maketrans(LETTER_FOLDS)

_SEPARATORS = re.compile(r"[\s\-_]+")
_PARENS = re.compile(r"\([^)]*\)")
ARABIC_ARTICLE = "ال"

# Header text that leaks into data rows of the import sheets
PLACEHOLDER_NAMES = {"recipe name", "اسم الوصفة", "ingredient", "المكون"}

SPICE_PATTERNS = [
    re.compile(p, re.IGNORECASE) for p in (
        r"ملح|salt",
        r"فلفل|pepper",
        r"كمون|cumin",
        r"بهارات|spice",
        r"قرفه|cinnamon",
        r"زعتر|thyme|oregano",
        r"كركم|turmeric",
        r"بابريكا|paprika",
        r"كزبره جافه|coriander.*dry",
        r"روزماري|rosemary",
        r"كاري|curry",
        r"جنزبيل|ginger",
        r"شطه|chili",
        r"هيل|cardamom",
        r"قرنفل|cloves",
        r"ورق لورا|bay.*leaf",
    )
]


def canonical_key(name: str) -> str:
    """
    Normalize a raw name into its canonical key.

    Steps:
    1. Lowercase
    2. Decompose and drop combining marks (tashkeel, accents) and tatweel
    3. Fold letter variants (alef forms, yaa forms, waw hamza, taa marbuta)
    4. Collapse whitespace / hyphens / underscores to one space; trim
    """
    if not name or not isinstance(name, str):
        return ""

    # NFKD splits hamza seats and madda off their alef/waw/yaa as combining marks
    s = unicodedata.normalize("NFKD", name.lower())
    s = "".join(ch for ch in s if not unicodedata.combining(ch) and ch != TATWEEL)
    s = s.translate(_FOLD_TABLE)
    s = _SEPARATORS.sub(" ", s)
    return s.strip()


def _strip_article(word: str) -> str:
    if word.startswith(ARABIC_ARTICLE) and len(word) > len(ARABIC_ARTICLE) + 1:
        return word[len(ARABIC_ARTICLE):]
    return word


def _singularize(word: str) -> str:
    if len(word) < 4 or not word.isascii():
        return word
    if word.endswith("ies"):
        return word[:-3] + "y"
    if word.endswith("s") and not word.endswith(("ss", "us", "is")):
        return word[:-1]
    return word


def lookup_variants(name: str) -> List[str]:
    """
    All keys under which a name may be found, most specific first.

    1. full canonical key
    2. key without parenthesised remarks
    3. key without the Arabic definite article
    4. key with the last English word singularised
    """
    key = canonical_key(name)
    if not key:
        return []

    variants = [key]

    no_parens = re.sub(r"\s+", " ", _PARENS.sub(" ", key)).strip()
    if no_parens:
        variants.append(no_parens)

    words = no_parens.split() if no_parens else key.split()
    variants.append(" ".join(_strip_article(w) for w in words))

    if words:
        variants.append(" ".join(words[:-1] + [_singularize(words[-1])]))

    seen = set()
    ordered = []
    for v in variants:
        if v and v not in seen:
            seen.add(v)
            ordered.append(v)
    return ordered


def is_placeholder(name: str) -> bool:
    """True for empty names and header text such as `Ingredient` / `المكون`"""
    key = canonical_key(name)
    return not key or key in _PLACEHOLDER_KEYS


def looks_like_spice(name: str) -> bool:
    key = canonical_key(name)
    return any(p.search(key) for p in SPICE_PATTERNS)


def words(key: str) -> List[str]:
    return [w for w in key.split(" ") if w]


_PLACEHOLDER_KEYS = {canonical_key(p) for p in PLACEHOLDER_NAMES}
