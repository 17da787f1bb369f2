#!/usr/bin/env python3
"""
Shared utilities for the import, audit and serving code:
rounding policies, CSV cell parsing, chunked batch writes and report files.
"""

import json
import logging
import math
import os
import re
from dataclasses import dataclass, field
from fractions import Fraction
from typing import Any, Callable, Dict, List, Optional, Sequence, TypeVar

import pandas as pd

logger = logging.getLogger(__name__)

T = TypeVar("T")

LOG_FORMAT = '%(asctime)s - %(levelname)s - %(message)s'

# roundForMeasuring: below this, whole units; at or above, steps of MEASURE_STEP
MEASURE_WHOLE_LIMIT = 10
MEASURE_STEP = 5

_MISSING_MARKERS = {"", "-", "n/a", "nan", "none"}

# First number in a cell: mixed fraction, fraction, decimal or integer
_NUMBER_TOKEN = re.compile(r"-?(?:\d+\s+\d+/\d+|\d+/\d+|\d*\.\d+|\d+)")


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=LOG_FORMAT)


def round_half_up(value: float, ndigits: int = 0) -> float:
    """Round halves away from -inf (x.5 -> x+1), like Math.round in the web app"""
    factor = 10 ** ndigits
    return math.floor(value * factor + 0.5) / factor


def round_int(value: float) -> int:
    return int(round_half_up(value))


def round_for_measuring(value: float) -> float:
    """
    Kitchen-practical rounding:
    * below 10 -> nearest whole unit (7 -> 7, 9.6 -> 10)
    * 10 and up -> nearest multiple of 5 (12 -> 10, 13 -> 15)
    """
    if value < MEASURE_WHOLE_LIMIT:
        return float(round_int(value))
    return float(round_int(value / MEASURE_STEP) * MEASURE_STEP)


def parse_number(value: Any) -> Optional[float]:
    """
    Parse a numeric CSV cell; empty, '-', 'N/A' and junk become None.
    Takes the first number only, so '1-2' is 1 and '1 1/2 cups' is 1.5
    """
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return None if pd.isna(value) else float(value)
    text = str(value).strip()
    if text.lower() in _MISSING_MARKERS:
        return None
    match = _NUMBER_TOKEN.search(text.replace(",", ""))
    if match is None:
        return None
    token = match.group(0)
    if "/" not in token:
        return float(token)
    try:
        negative = token.startswith("-")
        total = sum(Fraction(part) for part in token.lstrip("-").split())
    except (ValueError, ZeroDivisionError):
        return None
    return float(-total if negative else total)


def parse_number_or_default(value: Any, default: float) -> float:
    parsed = parse_number(value)
    return default if parsed is None else parsed


def clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str) and pd.isna(value):
        return None
    text = str(value).strip()
    if not text or text == '-':
        return None
    return text


@dataclass
class ChunkError:
    chunk_index: int
    size: int
    message: str


@dataclass
class ChunkReport:
    label: str
    processed: int = 0
    succeeded_chunks: int = 0
    errors: List[ChunkError] = field(default_factory=list)

    @property
    def failed_items(self) -> int:
        return sum(e.size for e in self.errors)

    def error_messages(self) -> List[str]:
        return [f"{self.label} batch {e.chunk_index} error: {e.message}" for e in self.errors]


def chunked(items: Sequence[T], chunk_size: int) -> List[Sequence[T]]:
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    return [items[i:i + chunk_size] for i in range(0, len(items), chunk_size)]


def process_in_chunks(items: Sequence[T], chunk_size: int,
                      apply_chunk: Callable[[Sequence[T]], None],
                      label: str = "items") -> ChunkReport:
    """
    Apply `apply_chunk` to consecutive groups of at most `chunk_size` items.

    A failing chunk is logged and recorded with its 1-based index; later chunks
    still run and earlier ones stay applied.
    """
    report = ChunkReport(label=label)
    chunks = chunked(list(items), chunk_size)
    for index, chunk in enumerate(chunks, start=1):
        try:
            apply_chunk(chunk)
        except Exception as e:
            logger.error(f"{label}: batch {index}/{len(chunks)} failed ({len(chunk)} rows): {e}")
            report.errors.append(ChunkError(chunk_index=index, size=len(chunk), message=str(e)))
        else:
            report.succeeded_chunks += 1
            report.processed += len(chunk)
        logger.info(f"{label} progress: {min(index * chunk_size, len(items))}/{len(items)}")
    return report


def write_json_report(path: str, payload: Dict[str, Any]) -> str:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
    logger.info(f"Report saved → {path}")
    return path


def print_banner(title: str, width: int = 60) -> None:
    print("\n" + "=" * width)
    print(title)
    print("=" * width)
