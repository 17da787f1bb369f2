#!/usr/bin/env python3
"""
Runtime settings for the import / audit entry points and the serving functions.

Values come from the environment (after `.env.local` and `.env` are loaded)
with optional overrides in config/settings.json.
"""

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

SETTINGS_FILE = os.path.join("config", "settings.json")

DEFAULT_SCALING_LIMITS = {"min_scale_factor": 0.5, "max_scale_factor": 2.0}
DEFAULT_MACRO_WEIGHTS = {"protein": 0.5, "carbs": 0.3, "fat": 0.2}


class ConfigError(RuntimeError):
    """Required configuration is missing; raised before any store write"""


@dataclass(frozen=True)
class Settings:
    database_url: Optional[str] = None
    datasets_path: str = os.path.join("docs", "datasets")
    ingredients_csv: str = "food_dataset.csv"
    spices_csv: str = "spices_dataset.csv"
    recipes_csv: str = "recipies_dataset.csv"
    reports_dir: str = "reports"
    auto_match_min_score: int = 90
    ingredient_chunk_size: int = 100
    recipe_chunk_size: int = 50
    link_chunk_size: int = 200
    substitution_candidate_limit: int = 30
    scaling_limits: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_SCALING_LIMITS))
    macro_similarity_weights: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_MACRO_WEIGHTS))

    @property
    def ingredients_path(self) -> str:
        return os.path.join(self.datasets_path, self.ingredients_csv)

    @property
    def spices_path(self) -> str:
        return os.path.join(self.datasets_path, self.spices_csv)

    @property
    def recipes_path(self) -> str:
        return os.path.join(self.datasets_path, self.recipes_csv)

    def require_database_url(self) -> str:
        if not self.database_url:
            raise ConfigError(
                "Missing CORPUS_DATABASE_URL. Set it in the environment or in .env.local"
            )
        return self.database_url

    def require_file(self, path: str) -> str:
        if not os.path.exists(path):
            raise ConfigError(f"Import source not found: {path} (check DATASETS_PATH)")
        return path


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _load_overrides(path: str) -> dict:
    if not os.path.exists(path):
        return {}
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (json.JSONDecodeError, IOError) as e:
        logger.warning(f"Could not load settings overrides from {path}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def load_settings(settings_file: str = SETTINGS_FILE, load_env_files: bool = True) -> Settings:
    if load_env_files:
        # Existing environment variables win over both files
        load_dotenv(".env.local")
        load_dotenv(".env")

    overrides = _load_overrides(settings_file)
    scaling_limits = dict(DEFAULT_SCALING_LIMITS)
    scaling_limits.update(overrides.get("scaling_limits", {}))
    weights = dict(DEFAULT_MACRO_WEIGHTS)
    weights.update(overrides.get("macro_similarity_weights", {}))

    return Settings(
        database_url=os.getenv("CORPUS_DATABASE_URL") or None,
        datasets_path=os.getenv("DATASETS_PATH", os.path.join("docs", "datasets")),
        ingredients_csv=os.getenv("INGREDIENTS_CSV", "food_dataset.csv"),
        spices_csv=os.getenv("SPICES_CSV", "spices_dataset.csv"),
        recipes_csv=os.getenv("RECIPES_CSV", "recipies_dataset.csv"),
        reports_dir=os.getenv("REPORTS_DIR", "reports"),
        auto_match_min_score=_env_int("AUTO_MATCH_MIN_SCORE", 90),
        ingredient_chunk_size=_env_int("INGREDIENT_CHUNK_SIZE", 100),
        recipe_chunk_size=_env_int("RECIPE_CHUNK_SIZE", 50),
        link_chunk_size=_env_int("LINK_CHUNK_SIZE", 200),
        substitution_candidate_limit=_env_int("SUBSTITUTION_CANDIDATE_LIMIT", 30),
        scaling_limits=scaling_limits,
        macro_similarity_weights=weights,
    )
