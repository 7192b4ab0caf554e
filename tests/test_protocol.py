"""
Unit tests for the numbered merge/split protocol.
"""

import pytest

from pagelingo.errors import ParseError
from pagelingo.protocol import merge, parse_numbered_line, split, strip_code_fence


class TestMerge:
    """Tests for merge()."""

    def test_enumerates_and_flattens_newlines(self):
        assert merge(["Hello", "World\n  again"]) == "1. Hello\n2. World again"


class TestParseNumberedLine:
    """Tests for the accepted number prefixes."""

    @pytest.mark.parametrize(
        "line, expected",
        [
            ("1. Hola", (1, "Hola")),
            ("2) Mundo", (2, "Mundo")),
            ("3: Tres", (3, "Tres")),
            ("4、四", (4, "四")),
            ("[5] Cinco", (5, "Cinco")),
            ("Sin numero", (None, "Sin numero")),
        ],
    )
    def test_prefix_forms(self, line, expected):
        assert parse_numbered_line(line) == expected


class TestSplit:
    """Tests for split()."""

    def test_numbered_response_in_order(self):
        assert split("1. Hola\n2. Mundo", ["Hello", "World"]) == ["Hola", "Mundo"]

    def test_numbers_win_over_line_order(self):
        assert split("2. Mundo\n1. Hola", ["Hello", "World"]) == ["Hola", "Mundo"]

    def test_unnumbered_line_recovered_by_position(self):
        result = split("1. Uno\nDos\n3. Tres", ["One", "Two", "Three"])
        assert result == ["Uno", "Dos", "Tres"]

    def test_absent_line_keeps_original(self):
        result = split("1. Uno\n3. Tres", ["One", "Two", "Three"])
        assert result == ["Uno", "Two", "Tres"]

    def test_short_response_keeps_original_for_missing_tail(self):
        assert split("1. Hola", ["Hello", "World"]) == ["Hola", "World"]

    def test_unnumbered_matching_line_count(self):
        assert split("Hola\nMundo", ["Hello", "World"]) == ["Hola", "Mundo"]

    def test_unnumbered_mismatched_line_count_is_parse_error(self):
        with pytest.raises(ParseError):
            split("Hola Mundo Otra Vez", ["Hello", "World"])

    def test_empty_response_is_parse_error(self):
        with pytest.raises(ParseError):
            split("   ", ["Hello", "World"])

    def test_single_unit_takes_whole_response(self):
        assert split("Hola mundo", ["Hello world"]) == ["Hola mundo"]

    def test_code_fence_is_stripped(self):
        raw = "```text\n1. Hola\n2. Mundo\n```"
        assert strip_code_fence(raw) == "1. Hola\n2. Mundo"
        assert split(raw, ["Hello", "World"]) == ["Hola", "Mundo"]
