"""Unit tests for the line splitter."""
from __future__ import annotations

import pytest

from loglens.splitter import split_lines


def test_complete_lines_and_carry_over() -> None:
    lines, carry = split_lines("", "a\nb\nc")
    assert lines == ["a", "b"]
    assert carry == "c"


def test_trailing_newline_leaves_empty_carry() -> None:
    lines, carry = split_lines("", "abc\n")
    assert lines == ["abc"]
    assert carry == ""


def test_carry_over_is_prefixed() -> None:
    lines, carry = split_lines("hel", "lo\nwor")
    assert lines == ["hello"]
    assert carry == "wor"


def test_no_terminator_accumulates() -> None:
    lines, carry = split_lines("ab", "cd")
    assert lines == []
    assert carry == "abcd"


def test_whitespace_only_lines_are_dropped() -> None:
    lines, carry = split_lines("", "one\n\n   \n\t\ntwo\n")
    assert lines == ["one", "two"]
    assert carry == ""


def test_crlf_split_across_chunks() -> None:
    lines, carry = split_lines("", "first\r")
    assert lines == []
    lines, carry = split_lines(carry, "\nsecond\r\n")
    assert lines == ["first", "second"]
    assert carry == ""


@pytest.mark.parametrize("chunk_size", [1, 2, 3, 5, 7, 64])
def test_chunked_feed_matches_single_split(chunk_size: int) -> None:
    stream = "alpha\nbeta\r\n\n  \ngamma line\ndelta\npartial"
    expected, expected_carry = split_lines("", stream)

    lines, carry = [], ""
    for index in range(0, len(stream), chunk_size):
        new_lines, carry = split_lines(carry, stream[index : index + chunk_size])
        lines.extend(new_lines)

    assert lines == expected
    assert carry == expected_carry == "partial"
