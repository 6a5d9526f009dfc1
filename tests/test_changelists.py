"""Tests for changelist queries, describe enrichment, and mutations."""

from __future__ import annotations

import asyncio

from depotdesk.p4 import changelists
from depotdesk.p4.session import Session

PENDING = """Change 120 on 2024/05/01 by alice@alice-main *pending*

\tFix the build

Change 118 on 2024/04/30 by alice@alice-main *pending*

\t[JUNK - Do Not Submit]
"""

DESCRIBE = """Change 120 by alice@alice-main on 2024/05/01 10:11:12 *pending*

\tFix the build

Affected files ...

... //depot/main/a.c#3 edit
... //depot/main/b.c#5 edit
... //depot/main/new.txt#1 add
... //depot/main/old.txt#2 delete

Differences ...

==== //depot/main/a.c#3 (text) ====

@@ -1 +1 @@
-int x;
+long x;
"""

CHANGE_SPEC = """# A Perforce Change Specification.

Change:\t120

Client:\talice-main

User:\talice

Status:\tpending

Description:
\tFix the build
\tsecond line

Files:
\t//depot/main/a.c\t# edit
"""


class StubReviews:
    def __init__(self, links: dict[int, int]) -> None:
        self.links = links
        self.asked: list[int] = []

    async def reviews_for_changes(self, change_ids):
        self.asked.extend(change_ids)
        return self.links


class TestQueries:
    def test_pending_changelists(self, fake, session: Session):
        fake.reply(["changes", "-s", "pending", "-l", "-c", "alice-main"], PENDING)
        result = asyncio.run(changelists.get_changelists(session))
        assert [c.number for c in result] == [0, 120, 118]
        assert result[1].description == "Fix the build"

    def test_info_failure_gives_unknown_default(self, fake, session: Session):
        fake.fail(["info"], "Connect to server failed; check $P4PORT.")
        result = asyncio.run(changelists.get_changelists(session))
        assert len(result) == 1
        assert result[0].number == 0
        assert result[0].user == "unknown"
        assert result[0].client == "unknown"

    def test_review_links_attached(self, fake, session: Session):
        fake.reply(["changes", "-s", "pending", "-l", "-c", "alice-main"], PENDING)
        reviews = StubReviews({120: 4501})
        result = asyncio.run(changelists.get_changelists(session, reviews))
        assert reviews.asked == [120, 118]
        assert result[1].review_id == 4501
        assert result[2].review_id is None
        assert result[0].review_id is None

    def test_submitted_changes(self, fake, session: Session):
        fake.reply(
            ["changes", "-s", "submitted", "-l", "-m", "2", "//depot/main/..."],
            "Change 99 on 2024/03/01 by carol@build\n\n\tRelease 1.2\n\tnotes\n",
        )
        result = asyncio.run(changelists.get_submitted_changes(session, "//depot/main/...", 2))
        assert [(c.number, c.description) for c in result] == [(99, "Release 1.2")]


class TestDescribe:
    def test_supplemental_diffs(self, fake, session: Session):
        fake.reply(["describe", "-du", "120"], DESCRIBE)
        fake.reply(["print", "-q", "//depot/main/new.txt#1"], "hello\nworld\n")
        fake.reply(
            ["diff2", "-du", "//depot/main/b.c#4", "//depot/main/b.c#5"],
            "==== //depot/main/b.c#4 (text) - //depot/main/b.c#5 (text) ==== content\n"
            "@@ -2 +2 @@\n-a\n+b\n",
        )

        result = asyncio.run(changelists.describe_changelist(session, 120))
        lines = result.diff.split("\n")

        assert not result.diff.startswith("Differences ...")
        assert "==== //depot/main/a.c#3 (text) ====" in lines
        assert "==== //depot/main/b.c#5 (edit) ====" in lines
        assert "==== //depot/main/new.txt#1 (add) ====" in lines
        assert "@@ -0,0 +1,2 @@" in lines
        assert "+world" in lines
        assert not fake.called("print", "-q", "//depot/main/old.txt#2")
        assert not fake.called("diff2", "-du", "//depot/main/a.c#2", "//depot/main/a.c#3")

    def test_shelved_uses_shelf_revisions(self, fake, session: Session):
        text = DESCRIBE.replace("Affected files", "Shelved files").split("Differences ...")[0]
        fake.reply(["describe", "-du", "-S", "120"], text)
        fake.reply(["print", "-q", "//depot/main/new.txt@=120"], "shelved body\n")

        result = asyncio.run(changelists.describe_changelist(session, 120, shelved=True))
        assert "+shelved body" in result.diff.split("\n")
        assert fake.called("diff2", "-du", "//depot/main/a.c#3", "//depot/main/a.c@=120")

    def test_describe_failure(self, fake, session: Session):
        result = asyncio.run(changelists.describe_changelist(session, 999))
        assert result.info is None
        assert result.files == []


class TestMutations:
    def test_create_changelist(self, fake, session: Session):
        fake.reply(["change", "-i"], "Change 131 created.\n")
        result = asyncio.run(changelists.create_changelist(session, "New work"))
        assert result.success
        assert result.changelist_number == 131
        assert "Change: new" in fake.calls[-1].stdin
        assert "Description: New work" in fake.calls[-1].stdin

    def test_create_changelist_unparseable(self, fake, session: Session):
        fake.reply(["change", "-i"], "Something odd happened.\n")
        result = asyncio.run(changelists.create_changelist(session, "x"))
        assert not result.success

    def test_junk_changelist_reused(self, fake, session: Session):
        fake.reply(["changes", "-s", "pending", "-l", "-c", "alice-main"], PENDING)
        result = asyncio.run(changelists.get_or_create_junk_changelist(session))
        assert result.changelist_number == 118
        assert not fake.called("change", "-i")

    def test_junk_changelist_created(self, fake, session: Session):
        fake.reply(["changes", "-s", "pending", "-l", "-c", "alice-main"], "")
        fake.reply(["change", "-i"], "Change 140 created.\n")
        result = asyncio.run(changelists.get_or_create_junk_changelist(session))
        assert result.changelist_number == 140
        assert "[JUNK - Do Not Submit]" in fake.calls[-1].stdin

    def test_replace_description(self):
        updated = changelists.replace_description(CHANGE_SPEC, "Better words\nacross lines")
        assert "\tBetter words\n\tacross lines" in updated
        assert "Fix the build" not in updated
        assert "Files:\n\t//depot/main/a.c\t# edit" in updated

    def test_submit_default(self, fake, session: Session):
        fake.reply(["submit", "-d", "Ship it"], "Change 150 submitted.\n")
        result = asyncio.run(changelists.submit(session, 0, "Ship it"))
        assert result.success
        assert "submitted" in result.message

    def test_submit_numbered_updates_description(self, fake, session: Session):
        fake.reply(["change", "-o", "120"], CHANGE_SPEC)
        fake.reply(["change", "-i"], "Change 120 updated.\n")
        fake.reply(["submit", "-c", "120"], "Change 120 submitted.\n")

        result = asyncio.run(changelists.submit(session, 120, "Final words"))
        assert result.success
        update = [c for c in fake.calls if c.args == ("change", "-i")][0]
        assert "\tFinal words" in update.stdin
        assert fake.calls[-1].args == ("submit", "-c", "120")

    def test_submit_failure(self, fake, session: Session):
        fake.fail(["submit", "-d", "x"], "No files to submit from the default changelist.")
        result = asyncio.run(changelists.submit(session, 0, "x"))
        assert not result.success
        assert "No files to submit" in result.message

    def test_shelve_and_unshelve(self, fake, session: Session):
        fake.reply(["shelve", "-f", "-c", "120"], "Change 120 files shelved.\n")
        fake.reply(["unshelve", "-s", "120"], "//depot/main/a.c#3 - unshelved, opened for edit\n")
        assert asyncio.run(changelists.shelve(session, 120)).success
        assert asyncio.run(changelists.unshelve(session, 120)).success

    def test_revert_and_delete_ignores_empty_changelist(self, fake, session: Session):
        fake.fail(["revert", "-c", "118", "//..."], "//... - file(s) not opened on this client.")
        fake.reply(["change", "-d", "118"], "Change 118 deleted.\n")
        result = asyncio.run(changelists.revert_and_delete_changelist(session, 118))
        assert result.success
        assert result.message == "Change 118 deleted."

    def test_revert_and_delete_stops_on_error(self, fake, session: Session):
        fake.fail(["revert", "-c", "118", "//..."], "Access for user 'alice' has not been enabled.")
        result = asyncio.run(changelists.revert_and_delete_changelist(session, 118))
        assert not result.success
        assert not fake.called("change", "-d")
