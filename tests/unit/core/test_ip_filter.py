"""Tests for eMule-style IP filter parsing."""

from __future__ import annotations

import ipaddress

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.core]

from torrentctl.core.ip_filter import FilterMode, load_ip_filter, parse_line
from torrentctl.utils.exceptions import IPFilterError


class TestParseLine:
    """Single line parsing."""

    def test_block_threshold(self):
        """Access values up to 127 block, higher values allow."""
        blocked = parse_line("1.2.3.0 - 1.2.3.255 127")
        allowed = parse_line("1.2.3.0 - 1.2.3.255 128")
        assert blocked.mode is FilterMode.BLOCK
        assert allowed.mode is FilterMode.ALLOW
        assert blocked.start == ipaddress.IPv4Address("1.2.3.0")
        assert blocked.end == ipaddress.IPv4Address("1.2.3.255")

    def test_trailing_description(self):
        """Text after the access value is ignored."""
        rule = parse_line("10.0.0.0 - 10.255.255.255 100 private range")
        assert rule.mode is FilterMode.BLOCK
        assert rule.contains("10.1.2.3")

    @pytest.mark.parametrize("line", ["", "   ", "# comment", "// comment"])
    def test_skippable(self, line):
        """Blank lines and comments produce no rule."""
        assert parse_line(line) is None

    @pytest.mark.parametrize(
        "line",
        ["1.2.3.4 1.2.3.5 0", "1.2.3.4 - 1.2.3.999 0", "9.0.0.0 - 1.0.0.0 0", "junk"],
    )
    def test_invalid(self, line):
        """Malformed lines raise IPFilterError."""
        with pytest.raises(IPFilterError):
            parse_line(line)

    def test_contains(self):
        """Range membership is inclusive and IPv4 only."""
        rule = parse_line("1.2.3.0 - 1.2.3.10 0")
        assert rule.contains("1.2.3.0")
        assert rule.contains("1.2.3.10")
        assert not rule.contains("1.2.3.11")
        assert not rule.contains("::1")
        assert not rule.contains("not-an-ip")


class TestLoadIPFilter:
    """File loading."""

    def test_skips_bad_lines(self, tmp_path):
        """Malformed lines are counted, not fatal."""
        path = tmp_path / "filter.dat"
        path.write_text(
            "# header\n1.0.0.0 - 1.0.0.255 0\nbroken line\n2.0.0.0 - 2.0.0.255 200\n"
        )
        rules, errors = load_ip_filter(path)
        assert [r.mode for r in rules] == [FilterMode.BLOCK, FilterMode.ALLOW]
        assert errors == 1
        assert rules[0].source == str(path)

    def test_unreadable(self, tmp_path):
        """A missing file raises IPFilterError."""
        with pytest.raises(IPFilterError):
            load_ip_filter(tmp_path / "missing.dat")
