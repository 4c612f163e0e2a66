"""eMule-style IP filter files.

Each line reads ``a.b.c.d - e.f.g.h flags``. An access value of 127 or
lower blocks the range, anything higher allows it. The parsed rules are
handed to the engine, which does the actual filtering.
"""

from __future__ import annotations

import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from torrentctl.utils.exceptions import IPFilterError
from torrentctl.utils.logging_config import get_logger

logger = get_logger(__name__)

BLOCK_THRESHOLD = 127

_LINE_RE = re.compile(
    r"^\s*(?P<start>\d{1,3}(?:\.\d{1,3}){3})\s*-\s*"
    r"(?P<end>\d{1,3}(?:\.\d{1,3}){3})\s+(?P<access>\d+)"
)


class FilterMode(Enum):
    """IP filter modes."""

    BLOCK = "block"
    ALLOW = "allow"


@dataclass
class IPFilterRule:
    """IP filter rule definition."""

    start: ipaddress.IPv4Address
    end: ipaddress.IPv4Address
    mode: FilterMode
    source: str = "manual"

    def contains(self, ip: str) -> bool:
        """Check whether ``ip`` falls inside this range."""
        try:
            addr = ipaddress.ip_address(ip)
        except ValueError:
            return False
        if not isinstance(addr, ipaddress.IPv4Address):
            return False
        return self.start <= addr <= self.end


def parse_line(line: str, source: str = "manual") -> IPFilterRule | None:
    """Parse one filter line.

    Returns:
        The rule, or None for blank lines and comments

    Raises:
        IPFilterError: If the line is not in the expected format

    """
    stripped = line.strip()
    if not stripped or stripped.startswith(("#", "//")):
        return None

    match = _LINE_RE.match(stripped)
    if match is None:
        msg = f"Invalid IP filter line: {stripped!r}"
        raise IPFilterError(msg)

    try:
        start = ipaddress.IPv4Address(match.group("start"))
        end = ipaddress.IPv4Address(match.group("end"))
    except ValueError as e:
        msg = f"Invalid address in IP filter line: {e}"
        raise IPFilterError(msg) from e
    if int(start) > int(end):
        msg = f"Range start must be <= end: {stripped!r}"
        raise IPFilterError(msg)

    access = int(match.group("access"))
    mode = FilterMode.BLOCK if access <= BLOCK_THRESHOLD else FilterMode.ALLOW
    return IPFilterRule(start=start, end=end, mode=mode, source=source)


def load_ip_filter(file_path: str | Path) -> tuple[list[IPFilterRule], int]:
    """Load filter rules from a file.

    Malformed lines are skipped and counted.

    Returns:
        Tuple of (rules, errors)

    Raises:
        IPFilterError: If the file cannot be read

    """
    path = Path(file_path).expanduser()
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        msg = f"Failed to read IP filter file {path}: {e}"
        raise IPFilterError(msg) from e

    rules: list[IPFilterRule] = []
    errors = 0
    for lineno, line in enumerate(text.splitlines(), start=1):
        try:
            rule = parse_line(line, source=str(path))
        except IPFilterError:
            logger.debug("Skipping IP filter line %d in %s", lineno, path)
            errors += 1
            continue
        if rule is not None:
            rules.append(rule)

    logger.info("Loaded %d rules from %s (%d errors)", len(rules), path, errors)
    return rules, errors
