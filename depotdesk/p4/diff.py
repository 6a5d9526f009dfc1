"""Unified-diff cleanup.

The tool occasionally emits the same diff twice, repeats a run of file
blocks, or repeats a hunk inside one file.  :func:`normalize_diff` strips
that duplication while leaving legitimate content in its original order.

Pipeline, in check order:

1. Unify line endings and drop banner lines.
2. Trim; empty input yields ``""``.
3. If the text is two identical halves, keep one.
4. Split into file blocks on the file-separator marker.
5. Collapse adjacent identical blocks (stop if anything collapsed).
6. Collapse an exactly periodic block sequence to its first period (stop).
7. Drop repeated hunks within each file block.

The pipeline is re-applied until the text stops changing, so the result
is a fixed point: ``normalize_diff(normalize_diff(x)) == normalize_diff(x)``.
"""

from __future__ import annotations

import re

from depotdesk.config import DIFF_BANNER, FILE_SEPARATOR

_HUNK_MARKER = "@@"
_FILE_HEADER_RE = re.compile(r"^==== (.+?)#\d+", re.MULTILINE)


def unify_line_endings(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def strip_banner(text: str, banner: str = DIFF_BANNER) -> str:
    """Remove lines that consist of exactly *banner*."""
    return "\n".join(line for line in text.split("\n") if line.strip() != banner)


def split_halves(text: str) -> str | None:
    """Return one half of *text* if it is exactly two identical halves."""
    if not text or len(text) % 2:
        return None
    middle = len(text) // 2
    if text[:middle] == text[middle:]:
        return text[:middle]
    return None


def split_blocks(text: str, marker: str = FILE_SEPARATOR) -> list[list[str]]:
    """Split *text* into file-scoped blocks of lines.

    A block starts at every line beginning with *marker*; lines before the
    first marker form their own leading block.
    """
    blocks: list[list[str]] = []
    current: list[str] = []
    for line in text.split("\n"):
        if line.startswith(marker) and current:
            blocks.append(current)
            current = []
        current.append(line)
    if current:
        blocks.append(current)
    return blocks


def _block_key(block: list[str]) -> str:
    return "\n".join(block).rstrip()


def _join_blocks(blocks: list[list[str]]) -> str:
    return "\n".join("\n".join(block) for block in blocks)


def collapse_adjacent(blocks: list[list[str]]) -> list[list[str]]:
    """Drop blocks that repeat the block right before them."""
    kept: list[list[str]] = []
    previous: str | None = None
    for block in blocks:
        key = _block_key(block)
        if key == previous:
            continue
        kept.append(block)
        previous = key
    return kept


def find_period(keys: list[str]) -> int | None:
    """Return the smallest proper period of *keys*, if the sequence has one."""
    count = len(keys)
    for period in range(1, count):
        if count % period:
            continue
        if all(keys[i] == keys[i % period] for i in range(period, count)):
            return period
    return None


def dedupe_hunks(block: list[str]) -> list[str]:
    """Drop exact repeats of a hunk (header plus body) within one file block."""
    kept: list[str] = []
    seen: set[str] = set()
    hunk: list[str] | None = None

    def close() -> None:
        if hunk is None:
            return
        key = "\n".join(hunk).rstrip()
        if key not in seen:
            seen.add(key)
            kept.extend(hunk)

    for line in block:
        if line.startswith(_HUNK_MARKER):
            close()
            hunk = [line]
        elif hunk is None:
            kept.append(line)
        else:
            hunk.append(line)
    close()
    return kept


def _normalize_once(text: str) -> str:
    text = strip_banner(unify_line_endings(text)).strip()
    if not text:
        return ""

    half = split_halves(text)
    if half is not None:
        return half.strip()

    blocks = split_blocks(text)

    collapsed = collapse_adjacent(blocks)
    if len(collapsed) != len(blocks):
        return _join_blocks(collapsed).strip()

    period = find_period([_block_key(block) for block in blocks])
    if period is not None:
        return _join_blocks(blocks[:period]).strip()

    return _join_blocks([dedupe_hunks(block) for block in blocks]).strip()


def normalize_diff(text: str) -> str:
    """Clean *text* of accidental duplication.  Idempotent."""
    current = text
    while True:
        cleaned = _normalize_once(current)
        if cleaned == current:
            return cleaned
        current = cleaned


def file_header(depot_file: str, revision: int, action: str) -> str:
    """The separator line that opens a file block."""
    return f"{FILE_SEPARATOR}{depot_file}#{revision} ({action}) ===="


def files_with_diff(text: str) -> set[str]:
    """Depot paths that already have a file block in *text*."""
    return {match.group(1) for match in _FILE_HEADER_RE.finditer(text)}


def synthesize_add_diff(depot_file: str, revision: int, content: str, action: str = "add") -> str:
    """Render a whole-file addition as a unified-diff block."""
    lines = unify_line_endings(content).split("\n")
    if len(lines) > 1 and lines[-1] == "":
        lines.pop()
    body = "\n".join(f"+{line}" for line in lines)
    return (
        f"{file_header(depot_file, revision, action)}\n"
        f"@@ -0,0 +1,{len(lines)} @@\n"
        f"{body}"
    )
