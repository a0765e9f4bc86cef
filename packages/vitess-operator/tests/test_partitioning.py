"""Tests for key range partitioning."""

import pytest

from vitess_operator.partitioning import (
    KeyRange,
    equal_key_ranges,
    equal_shard_names,
    sort_key_ranges,
)


class TestEqualKeyRanges:
    """Tests for equal_key_ranges()."""

    @pytest.mark.parametrize(
        "parts, names",
        [
            (1, ["-"]),
            (2, ["-80", "80-"]),
            (3, ["-55", "55-aa", "aa-"]),
            (4, ["-40", "40-80", "80-c0", "c0-"]),
        ],
    )
    def test_known_splits(self, parts, names):
        """Small splits should match the well-known shard names."""
        assert equal_shard_names(parts) == names

    def test_zero_and_negative_are_unsharded(self):
        """Counts below one should yield the single full range."""
        assert equal_key_ranges(0) == [KeyRange()]
        assert equal_key_ranges(-3) == [KeyRange()]

    @pytest.mark.parametrize("parts", [2, 3, 5, 7, 16, 100, 255, 256, 257, 1000])
    def test_ranges_tile_the_space(self, parts):
        """Ranges should be contiguous, ordered and unbounded at both ends."""
        ranges = equal_key_ranges(parts)

        assert len(ranges) == parts
        assert ranges[0].start == b""
        assert ranges[-1].end == b""
        for prev, nxt in zip(ranges, ranges[1:]):
            assert prev.end == nxt.start
            assert prev.end != b""
        bounds = [kr.end for kr in ranges[:-1]]
        assert bounds == sorted(bounds)
        assert len(set(bounds)) == len(bounds)

    def test_deterministic(self):
        """Repeated calls should return identical ranges."""
        assert equal_key_ranges(7) == equal_key_ranges(7)

    def test_more_than_256_parts_uses_two_bytes(self):
        """257 parts can't be told apart with one byte per bound."""
        ranges = equal_key_ranges(257)
        assert all(len(kr.end) == 2 for kr in ranges[:-1])

    def test_256_parts_uses_one_byte(self):
        """256 parts split exactly on the first byte."""
        names = equal_shard_names(256)
        assert names[0] == "-01"
        assert names[1] == "01-02"
        assert names[-1] == "ff-"


class TestKeyRange:
    """Tests for KeyRange helpers."""

    def test_names(self):
        kr = KeyRange(b"\x40", b"\x80")
        assert kr.name() == "40-80"
        assert kr.safe_name() == "40-80"

    def test_safe_name_marks_unbounded(self):
        assert KeyRange().safe_name() == "x-x"
        assert KeyRange(b"", b"\x80").safe_name() == "x-80"
        assert KeyRange(b"\x80", b"").safe_name() == "80-x"

    def test_contains(self):
        kr = KeyRange(b"\x40", b"\x80")
        assert kr.contains(b"\x40")
        assert kr.contains(b"\x7f\xff")
        assert not kr.contains(b"\x80")
        assert not kr.contains(b"\x3f")
        assert KeyRange().contains(b"\xff\xff")

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("-80", KeyRange(b"", b"\x80")),
            ("40-c0", KeyRange(b"\x40", b"\xc0")),
            ("-", KeyRange()),
            ("0", KeyRange()),
        ],
    )
    def test_parse(self, name, expected):
        assert KeyRange.parse(name) == expected

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            KeyRange.parse("80")
        with pytest.raises(ValueError):
            KeyRange.parse("zz-")

    def test_sort_puts_unbounded_end_last(self):
        ranges = [KeyRange(b"\x80", b""), KeyRange(b"", b"\x80"), KeyRange(b"\x40", b"\x80")]
        assert sort_key_ranges(ranges) == [
            KeyRange(b"", b"\x80"),
            KeyRange(b"\x40", b"\x80"),
            KeyRange(b"\x80", b""),
        ]
