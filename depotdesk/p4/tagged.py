"""Tagged-output parsing — JSON-lines and dotted-field record modes.

Both modes are lenient: a record that cannot be decoded is dropped and
parsing continues with the next one.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

# "... field value" (value may be empty); nested "... ... field" lines do not match
_FIELD_RE = re.compile(r"^\.\.\.\s+(\w+)(?:\s(.*))?$")


class ParseFailure(Exception):
    """A single record or line could not be decoded."""


def split_lines(text: str) -> list[str]:
    """Split *text* on any line-ending convention."""
    return text.replace("\r\n", "\n").replace("\r", "\n").split("\n")


def decode_json_record(line: str) -> dict[str, Any]:
    """Decode one JSON-lines record.

    Raises
    ------
    ParseFailure
        If the line is blank, not JSON, or not a JSON object.
    """
    stripped = line.strip()
    if not stripped:
        raise ParseFailure("blank line")
    try:
        value = json.loads(stripped)
    except json.JSONDecodeError as exc:
        raise ParseFailure(str(exc)) from exc
    if not isinstance(value, dict):
        raise ParseFailure(f"expected an object, got {type(value).__name__}")
    return value


def parse_json_lines(text: str) -> list[dict[str, Any]]:
    """Decode every line of *text* independently, skipping failures."""
    records: list[dict[str, Any]] = []
    for line in split_lines(text):
        try:
            records.append(decode_json_record(line))
        except ParseFailure as exc:
            if line.strip():
                logger.debug("Dropped JSON line %r: %s", line[:80], exc)
    return records


def parse_field_line(line: str) -> tuple[str, str]:
    """Split a ``... field value`` line into its field and value."""
    match = _FIELD_RE.match(line.rstrip("\r"))
    if match is None:
        raise ParseFailure(f"not a field line: {line[:80]!r}")
    return match.group(1), (match.group(2) or "").strip()


def parse_ztag(text: str, primary: str | None = None) -> list[dict[str, str]]:
    """Group dotted-field lines into records.

    A record ends at a blank line, or when *primary* shows up again while
    the current record already holds it.  Bulk queries do not always put
    a blank line between adjacent records, so the second rule is what
    keeps them apart.  Records lacking *primary* are dropped.

    Parameters
    ----------
    text:
        Raw tagged output.
    primary:
        Identifying field of each record (e.g. ``depotFile``).
    """
    records: list[dict[str, str]] = []
    current: dict[str, str] = {}

    def flush() -> None:
        nonlocal current
        if current and (primary is None or primary in current):
            records.append(current)
        elif current:
            logger.debug("Dropped tagged record without %s: %s", primary, current)
        current = {}

    for line in split_lines(text):
        if not line.strip():
            flush()
            continue
        try:
            key, value = parse_field_line(line)
        except ParseFailure:
            continue
        if primary is not None and key == primary and primary in current:
            flush()
        current[key] = value
    flush()

    return records
