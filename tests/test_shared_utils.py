#!/usr/bin/env python3
"""
Tests for rounding policies, CSV cell parsing and chunked writes
"""

import json
import pytest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from shared_utils import (chunked, clean_text, parse_number, parse_number_or_default, process_in_chunks,
                          round_for_measuring, round_half_up, round_int, write_json_report)


class TestRounding:
    """Rounding policies"""

    def test_half_up(self):
        """Test halves round up"""
        assert round_int(0.5) == 1
        assert round_int(2.5) == 3
        assert round_int(-0.5) == 0
        assert round_half_up(0.25, 1) == 0.3

    def test_round_for_measuring(self):
        """Test kitchen rounding below and above 10"""
        cases = [(7, 7), (9.6, 10), (12, 10), (13, 15), (12.5, 15), (0.4, 0), (250, 250)]
        for value, expected in cases:
            assert round_for_measuring(value) == expected, f"{value} -> {expected}"


class TestParsing:
    """CSV cell parsing"""

    def test_parse_number(self):
        """Test numbers and missing markers"""
        assert parse_number("12") == 12.0
        assert parse_number(" 1.5 g") == 1.5
        assert parse_number(3) == 3.0
        for missing in [None, "", "-", "N/A", "abc", float("nan")]:
            assert parse_number(missing) is None, f"{missing!r} should be missing"

    def test_parse_number_fractions_and_ranges(self):
        """Test fractions, mixed numbers and ranges take the first quantity"""
        assert parse_number("1/2") == 0.5
        assert parse_number("1 1/2 cups") == 1.5
        assert parse_number("1-2") == 1.0
        assert parse_number("12 g") == 12.0
        assert parse_number("1,250") == 1250.0
        assert parse_number("1/0") is None

    def test_parse_number_or_default(self):
        """Test the default for missing cells"""
        assert parse_number_or_default("", 100.0) == 100.0
        assert parse_number_or_default("50", 100.0) == 50.0

    def test_clean_text(self):
        """Test text cells are trimmed and blanks dropped"""
        assert clean_text("  Tomato ") == "Tomato"
        assert clean_text("-") is None
        assert clean_text("") is None
        assert clean_text(None) is None
        assert clean_text(float("nan")) is None


class TestChunking:
    """Chunked batch writes"""

    def test_chunked(self):
        """Test chunk sizes"""
        assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
        with pytest.raises(ValueError):
            chunked([1], 0)

    def test_partial_failure_continues(self):
        """Test a failing chunk does not stop the rest"""
        applied = []

        def apply(chunk):
            if 3 in chunk:
                raise RuntimeError("boom")
            applied.extend(chunk)

        report = process_in_chunks([1, 2, 3, 4, 5], 2, apply, label="links")
        assert applied == [1, 2, 5]
        assert report.processed == 3
        assert report.succeeded_chunks == 2
        assert report.failed_items == 2
        assert [e.chunk_index for e in report.errors] == [2]
        assert report.error_messages() == ["links batch 2 error: boom"]

    def test_empty_input(self):
        """Test nothing to process"""
        report = process_in_chunks([], 10, lambda chunk: None)
        assert report.processed == 0 and not report.errors


def test_write_json_report(tmp_path):
    """Test the JSON report file"""
    path = write_json_report(str(tmp_path / "reports" / "out.json"), {"name": "سلطة", "count": 2})
    with open(path, encoding="utf-8") as f:
        assert json.load(f) == {"name": "سلطة", "count": 2}
