"""Tests for the unified-diff normalizer and diff block helpers."""

from __future__ import annotations

import pytest

from depotdesk.p4.diff import (
    collapse_adjacent,
    dedupe_hunks,
    file_header,
    files_with_diff,
    find_period,
    normalize_diff,
    split_blocks,
    split_halves,
    synthesize_add_diff,
)

BLOCK_A = "==== //depot/main/a.c#3 (text) ====\n\n@@ -1,2 +1,2 @@\n-int x;\n+long x;\n int y;"
BLOCK_B = "==== //depot/main/b.c#7 (text) ====\n\n@@ -10 +10 @@\n-return 0;\n+return 1;"
BLOCK_C = "==== //depot/main/c.h#1 (text) ====\n\n@@ -3 +3 @@\n-#define N 4\n+#define N 8"


# ---------------------------------------------------------------------------
# normalize_diff
# ---------------------------------------------------------------------------


class TestNormalizeDiff:
    def test_empty_input(self):
        assert normalize_diff("") == ""
        assert normalize_diff("  \n\n ") == ""

    def test_banner_only(self):
        assert normalize_diff("Differences ...\n") == ""

    def test_banner_removed(self):
        assert normalize_diff(f"Differences ...\n\n{BLOCK_A}\n") == BLOCK_A

    def test_crlf_unified(self):
        assert normalize_diff(BLOCK_A.replace("\n", "\r\n")) == BLOCK_A

    def test_duplicated_whole_diff(self):
        assert normalize_diff(f"{BLOCK_A}\n{BLOCK_A}\n") == BLOCK_A

    def test_adjacent_duplicate_block(self):
        text = "\n".join([BLOCK_A, BLOCK_A, BLOCK_B])
        assert normalize_diff(text) == "\n".join([BLOCK_A, BLOCK_B])

    def test_periodic_block_sequence(self):
        text = "\n".join([BLOCK_A, BLOCK_B, BLOCK_A, BLOCK_B])
        assert normalize_diff(text) == "\n".join([BLOCK_A, BLOCK_B])

    def test_distinct_blocks_untouched(self):
        text = "\n".join([BLOCK_A, BLOCK_B, BLOCK_C])
        assert normalize_diff(text) == text

    def test_non_adjacent_repeat_kept(self):
        text = "\n".join([BLOCK_A, BLOCK_B, BLOCK_A])
        assert normalize_diff(text) == text

    def test_duplicate_hunk_within_file(self):
        hunk = "@@ -1 +1 @@\n-a\n+b"
        text = f"==== //depot/x.txt#2 (text) ====\n{hunk}\n{hunk}\n"
        assert normalize_diff(text) == f"==== //depot/x.txt#2 (text) ====\n{hunk}"

    def test_same_hunk_in_different_files_kept(self):
        hunk = "@@ -1 +1 @@\n-a\n+b"
        text = f"==== //depot/x.txt#2 (text) ====\n{hunk}\n==== //depot/y.txt#2 (text) ====\n{hunk}"
        assert normalize_diff(text) == text

    @pytest.mark.parametrize("text", [
        BLOCK_A,
        f"{BLOCK_A}\n{BLOCK_A}",
        "\n".join([BLOCK_A, BLOCK_B, BLOCK_A, BLOCK_B]),
        "\n".join([BLOCK_A, BLOCK_A, BLOCK_B, BLOCK_B, BLOCK_A]),
        f"Differences ...\r\n{BLOCK_C}\r\n{BLOCK_C}",
        "plain text without any file blocks\nsecond line",
    ])
    def test_idempotent(self, text: str):
        once = normalize_diff(text)
        assert normalize_diff(once) == once


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class TestDiffHelpers:
    def test_split_halves(self):
        assert split_halves("abcabc") == "abc"
        assert split_halves("abcabd") is None
        assert split_halves("abcab") is None

    def test_split_blocks_keeps_preamble(self):
        blocks = split_blocks(f"preamble\n{BLOCK_A}\n{BLOCK_B}")
        assert blocks[0] == ["preamble"]
        assert blocks[1][0].startswith("==== //depot/main/a.c")
        assert len(blocks) == 3

    def test_collapse_adjacent_ignores_trailing_whitespace(self):
        blocks = [["==== a", "x", ""], ["==== a", "x"], ["==== b"]]
        assert collapse_adjacent(blocks) == [["==== a", "x", ""], ["==== b"]]

    def test_find_period(self):
        assert find_period(["a", "b", "a", "b"]) == 2
        assert find_period(["a", "a", "a"]) == 1
        assert find_period(["a", "b", "c"]) is None
        assert find_period(["a"]) is None

    def test_dedupe_hunks_keeps_header(self):
        block = ["==== f", "@@ 1", "-x", "@@ 1", "-x", "@@ 2", "-y"]
        assert dedupe_hunks(block) == ["==== f", "@@ 1", "-x", "@@ 2", "-y"]

    def test_file_header(self):
        assert file_header("//depot/a.c", 4, "edit") == "==== //depot/a.c#4 (edit) ===="

    def test_files_with_diff(self):
        assert files_with_diff("\n".join([BLOCK_A, BLOCK_B])) == {
            "//depot/main/a.c",
            "//depot/main/b.c",
        }

    def test_synthesize_add_diff(self):
        diff = synthesize_add_diff("//depot/new.txt", 1, "hello\r\nworld\n")
        assert diff == (
            "==== //depot/new.txt#1 (add) ====\n"
            "@@ -0,0 +1,2 @@\n"
            "+hello\n"
            "+world"
        )

    def test_synthesize_add_diff_without_trailing_newline(self):
        diff = synthesize_add_diff("//depot/one.txt", 1, "only", "move/add")
        assert diff.splitlines() == [
            "==== //depot/one.txt#1 (move/add) ====",
            "@@ -0,0 +1,1 @@",
            "+only",
        ]
