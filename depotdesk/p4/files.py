"""Opened/shelved file queries and file-level mutations."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from depotdesk.config import REVERT_BATCH_SIZE
from depotdesk.models import (
    ChangelistRef,
    DiffResult,
    FileAction,
    FileStatus,
    OperationResult,
    RevertResult,
)
from depotdesk.p4.diff import normalize_diff
from depotdesk.p4.executor import ExternalToolError
from depotdesk.p4.mapper import bounded_map
from depotdesk.p4.parsers import merge_file_statuses, parse_pending_changes, record_to_file_status
from depotdesk.p4.session import Session
from depotdesk.p4.tagged import split_lines

logger = logging.getLogger(__name__)

# Opened actions reverted unconditionally by revert_unchanged
_AUTO_REVERT_ACTIONS = frozenset({
    FileAction.DELETE.value,
    FileAction.MOVE_DELETE.value,
    FileAction.BRANCH.value,
    FileAction.INTEGRATE.value,
})
_ADD_ACTIONS = frozenset({FileAction.ADD.value, FileAction.MOVE_ADD.value})


def _is_not_opened(exc: ExternalToolError) -> bool:
    text = str(exc).lower()
    return "not opened" in text or "no such file" in text


async def _opened(session: Session) -> list[FileStatus]:
    try:
        records = await session.run_tagged(["fstat", "-Ro", "//..."], primary="depotFile")
    except ExternalToolError as exc:
        if _is_not_opened(exc):
            return []
        raise
    return [record_to_file_status(record) for record in records]


async def _shelved_in(session: Session, changelist: int) -> list[FileStatus]:
    try:
        records = await session.run_tagged(
            ["fstat", "-Rs", "-e", str(changelist), "//..."], primary="depotFile",
        )
    except ExternalToolError as exc:
        logger.debug("No shelved files in %s: %s", changelist, exc)
        return []
    statuses = [record_to_file_status(record, shelved=True) for record in records]
    for status in statuses:
        if status.changelist == "default":
            status.changelist = changelist
    return statuses


async def get_opened_files(session: Session) -> list[FileStatus]:
    """Opened files plus files shelved in numbered pending changelists.

    A path seen in both passes keeps its opened record.
    """
    try:
        opened = await _opened(session)
        info = await session.info()
        pending_text = await session.run(["changes", "-s", "pending", "-c", info.client_name])
    except ExternalToolError as exc:
        logger.warning("Could not list opened files: %s", exc)
        return []

    numbers = [cl.number for cl in parse_pending_changes(pending_text, info) if cl.number]
    shelved = await bounded_map(
        numbers,
        lambda number: _shelved_in(session, number),
        session.settings.query_concurrency,
    )
    return merge_file_statuses(opened, *shelved)


async def _read_local(path: str) -> str:
    def read() -> str:
        return Path(path).read_text(encoding="utf-8", errors="replace")

    try:
        return await asyncio.to_thread(read)
    except OSError:
        return ""


async def get_diff(session: Session, file_path: str) -> DiffResult:
    """Workspace diff for one file with the have-revision and local bodies."""
    try:
        hunks = await session.run(["diff", "-du", file_path])
    except ExternalToolError as exc:
        if _is_not_opened(exc) or "no differing files" in str(exc).lower():
            return DiffResult(file_path=file_path)
        logger.warning("Could not diff %s: %s", file_path, exc)
        return DiffResult(file_path=file_path)

    try:
        old_content = await session.run(["print", "-q", f"{file_path}#have"])
    except ExternalToolError:
        old_content = ""

    local_path = file_path
    if file_path.startswith("//"):
        try:
            records = await session.run_tagged(["where", file_path], primary="depotFile")
            if records:
                local_path = records[0].get("path", "")
        except ExternalToolError:
            local_path = ""
    new_content = await _read_local(local_path) if local_path else ""

    return DiffResult(
        file_path=file_path,
        old_content=old_content,
        new_content=new_content,
        hunks=normalize_diff(hunks),
    )


async def sync(session: Session, file_path: str | None = None) -> OperationResult:
    args = ["sync"]
    if file_path:
        args.append(file_path)
    try:
        output = await session.run(args)
    except ExternalToolError as exc:
        return OperationResult(success=False, message=str(exc))
    logger.info("Synced %s", file_path or "workspace")
    return OperationResult(success=True, message=output.strip() or "Already up to date")


async def revert(session: Session, files: list[str]) -> OperationResult:
    if not files:
        return OperationResult(success=True, message="Nothing to revert")
    try:
        output = await session.run(["revert", *files])
    except ExternalToolError as exc:
        return OperationResult(success=False, message=str(exc))
    logger.info("Reverted %d file(s)", len(files))
    return OperationResult(success=True, message=output.strip())


async def reopen_files(
    session: Session,
    files: list[str],
    changelist: ChangelistRef,
) -> OperationResult:
    """Move opened files into *changelist* (``0`` and ``"default"`` are the same)."""
    target = "default" if changelist in ("default", 0) else str(changelist)
    try:
        output = await session.run(["reopen", "-c", target, *files])
    except ExternalToolError as exc:
        return OperationResult(success=False, message=str(exc))
    return OperationResult(success=True, message=output.strip())


async def _exists_in_depot(session: Session, depot_file: str) -> bool:
    try:
        return bool((await session.run(["files", depot_file])).strip())
    except ExternalToolError:
        return False


async def _revert_batched(session: Session, paths: list[str]) -> int:
    reverted = 0
    for start in range(0, len(paths), REVERT_BATCH_SIZE):
        batch = paths[start:start + REVERT_BATCH_SIZE]
        try:
            await session.run(["revert", *batch])
            reverted += len(batch)
            continue
        except ExternalToolError as exc:
            logger.warning("Batch revert failed, retrying one by one: %s", exc)
        for path in batch:
            try:
                await session.run(["revert", path])
                reverted += 1
            except ExternalToolError as exc:
                logger.warning("Could not revert %s: %s", path, exc)
    return reverted


async def revert_unchanged(session: Session) -> RevertResult:
    """Revert opened files that carry no real change.

    Unchanged edits go first (``revert -a``); then deletes, branches and
    integrations, and adds whose path already exists in the depot.
    """
    messages: list[str] = []
    total = 0

    try:
        output = await session.run(["revert", "-a", "//..."])
        count = sum(1 for line in split_lines(output) if line.strip() and "#" in line)
        total += count
        if count:
            messages.append(f"Reverted {count} unchanged edit file(s)")
    except ExternalToolError as exc:
        if not _is_not_opened(exc):
            logger.warning("Could not revert unchanged edits: %s", exc)

    try:
        opened = await _opened(session)
    except ExternalToolError as exc:
        return RevertResult(success=False, message=str(exc), reverted_count=total)

    targets = [f.depot_file for f in opened if f.action in _AUTO_REVERT_ACTIONS]
    adds = [f.depot_file for f in opened if f.action in _ADD_ACTIONS]
    exists = await bounded_map(
        adds,
        lambda path: _exists_in_depot(session, path),
        session.settings.query_concurrency,
    )
    targets.extend(path for path, present in zip(adds, exists) if present)

    if targets:
        count = await _revert_batched(session, targets)
        total += count
        if count:
            messages.append(f"Reverted {count} other file(s)")

    return RevertResult(
        success=True,
        message="\n".join(messages) or "No unchanged files to revert",
        reverted_count=total,
    )
