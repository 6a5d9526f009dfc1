"""Tests for tagged (dotted-field and JSON-lines) output parsing."""

from __future__ import annotations

import pytest

from depotdesk.p4.tagged import (
    ParseFailure,
    decode_json_record,
    parse_field_line,
    parse_json_lines,
    parse_ztag,
    split_lines,
)


class TestZtag:
    def test_blank_line_separates_records(self):
        text = (
            "... depotFile //depot/a.c\n"
            "... action edit\n"
            "\n"
            "... depotFile //depot/b.c\n"
            "... action add\n"
        )
        records = parse_ztag(text, primary="depotFile")
        assert records == [
            {"depotFile": "//depot/a.c", "action": "edit"},
            {"depotFile": "//depot/b.c", "action": "add"},
        ]

    def test_adjacent_records_split_on_primary(self):
        text = (
            "... depotFile //depot/a.c\n"
            "... action edit\n"
            "... depotFile //depot/b.c\n"
            "... action add\n"
        )
        records = parse_ztag(text, primary="depotFile")
        assert [r["depotFile"] for r in records] == ["//depot/a.c", "//depot/b.c"]
        assert records[1]["action"] == "add"

    def test_record_without_primary_dropped(self):
        text = "... action edit\n\n... depotFile //depot/a.c\n"
        assert parse_ztag(text, primary="depotFile") == [{"depotFile": "//depot/a.c"}]

    def test_no_primary_keeps_everything(self):
        text = "... a 1\n\n... b 2\r\n"
        assert parse_ztag(text) == [{"a": "1"}, {"b": "2"}]

    def test_empty_value_and_junk_lines(self):
        text = "... Stream //game/main\n... desc\nnot a field\n... ... otherOpen0 bob\n"
        assert parse_ztag(text, primary="Stream") == [{"Stream": "//game/main", "desc": ""}]

    def test_field_line(self):
        assert parse_field_line("... clientFile //ws/a b.c") == ("clientFile", "//ws/a b.c")
        with pytest.raises(ParseFailure):
            parse_field_line("Change 12 created.")


class TestJsonLines:
    def test_bad_lines_are_dropped(self):
        text = '{"depotFile": "//depot/a.c"}\nnot json\n[1, 2]\n\n{"depotFile": "//depot/b.c"}\n'
        assert parse_json_lines(text) == [
            {"depotFile": "//depot/a.c"},
            {"depotFile": "//depot/b.c"},
        ]

    def test_decode_record_errors(self):
        with pytest.raises(ParseFailure):
            decode_json_record("")
        with pytest.raises(ParseFailure):
            decode_json_record("{broken")
        with pytest.raises(ParseFailure):
            decode_json_record('"just a string"')

    def test_split_lines_any_convention(self):
        assert split_lines("a\r\nb\rc\nd") == ["a", "b", "c", "d"]
