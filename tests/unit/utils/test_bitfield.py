"""Tests for bitfield helpers."""

from __future__ import annotations

import pytest

pytestmark = [pytest.mark.unit]

from swarmfetch.utils.bitfield import count_bits, has_bit, parse_bitfield


class TestParseBitfield:
    def test_big_endian_bits(self):
        # 0b10100000 -> blocks 0 and 2
        assert parse_bitfield(b"\xa0", 8) == {0, 2}

    def test_spare_bits_ignored(self):
        assert parse_bitfield(b"\xff", 3) == {0, 1, 2}

    def test_multi_byte(self):
        assert parse_bitfield(b"\x80\x01", 16) == {0, 15}

    def test_empty(self):
        assert parse_bitfield(b"", 10) == set()
        assert parse_bitfield(b"\xff", 0) == set()


class TestHasBit:
    def test_set_and_unset(self):
        assert has_bit(b"\x40", 1)
        assert not has_bit(b"\x40", 0)

    def test_out_of_range(self):
        assert not has_bit(b"\xff", 8)
        assert not has_bit(b"\xff", -1)
        assert not has_bit(b"", 0)


def test_count_bits():
    assert count_bits(b"\xff\x01") == 9
    assert count_bits(b"") == 0
