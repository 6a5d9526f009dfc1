"""Changelist queries and mutations: list, create, submit, shelve, describe."""

from __future__ import annotations

import logging

from depotdesk.config import DEFAULT_CHANGELIST, JUNK_DESCRIPTION, JUNK_MARKERS
from depotdesk.models import (
    AffectedFile,
    Changelist,
    ChangelistResult,
    ClientInfo,
    DescribeResult,
    OperationResult,
)
from depotdesk.p4.diff import (
    file_header,
    files_with_diff,
    normalize_diff,
    synthesize_add_diff,
    unify_line_endings,
)
from depotdesk.p4.executor import ExternalToolError
from depotdesk.p4.mapper import bounded_map
from depotdesk.p4.parsers import (
    default_changelist,
    parse_created_change,
    parse_describe,
    parse_pending_changes,
    parse_submitted_changes,
    render_spec,
)
from depotdesk.p4.review import ReviewClient
from depotdesk.p4.session import Session

logger = logging.getLogger(__name__)

# Actions whose content cannot be compared against a previous revision
_NO_POINT_DIFF = frozenset({"delete", "move/delete", "branch", "integrate"})


# -- Queries ------------------------------------------------------------------


async def get_changelists(
    session: Session,
    reviews: ReviewClient | None = None,
) -> list[Changelist]:
    """Pending changelists of the workspace, default changelist first.

    When *reviews* is given, linked review ids are attached; a failing
    lookup leaves the list untouched.
    """
    try:
        info = await session.info()
    except ExternalToolError as exc:
        logger.warning("Could not read client info: %s", exc)
        return [default_changelist(ClientInfo(user_name="unknown", client_name="unknown"))]

    try:
        output = await session.run(["changes", "-s", "pending", "-l", "-c", info.client_name])
    except ExternalToolError as exc:
        logger.warning("Could not list pending changelists: %s", exc)
        return [default_changelist(info)]

    changelists = parse_pending_changes(output, info)

    numbered = [cl.number for cl in changelists if cl.number != DEFAULT_CHANGELIST]
    if reviews is not None and numbered:
        links = await reviews.reviews_for_changes(numbered)
        for changelist in changelists:
            changelist.review_id = links.get(changelist.number)

    return changelists


async def get_submitted_changes(
    session: Session,
    depot_path: str,
    max_changes: int = 50,
) -> list[Changelist]:
    """Most recent submitted changelists under *depot_path*."""
    try:
        output = await session.run([
            "changes", "-s", "submitted", "-l", "-m", str(max_changes), depot_path,
        ])
    except ExternalToolError as exc:
        logger.warning("Could not list submitted changes for %s: %s", depot_path, exc)
        return []
    return parse_submitted_changes(output)


def _revision_spec(file: AffectedFile, changelist: int, shelved: bool) -> str:
    if shelved:
        return f"{file.depot_file}@={changelist}"
    return f"{file.depot_file}#{file.revision}"


def _drop_file_headers(text: str) -> str:
    lines = unify_line_endings(text).split("\n")
    return "\n".join(line for line in lines if not line.startswith("==== "))


async def _point_diff(
    session: Session,
    file: AffectedFile,
    changelist: int,
    shelved: bool,
) -> str | None:
    target = _revision_spec(file, changelist, shelved)
    try:
        if file.action in ("add", "move/add"):
            content = await session.run(["print", "-q", target])
            if not content.strip():
                return None
            return synthesize_add_diff(file.depot_file, file.revision, content, file.action)
        if file.revision > 1 or shelved:
            base = f"{file.depot_file}#{file.revision - 1 if not shelved else file.revision}"
            output = await session.run(["diff2", "-du", base, target])
            body = _drop_file_headers(output).strip("\n")
            if not body.strip():
                return None
            return f"{file_header(file.depot_file, file.revision, file.action)}\n{body}"
    except ExternalToolError as exc:
        logger.debug("No point diff for %s: %s", file.depot_file, exc)
    return None


async def describe_changelist(
    session: Session,
    changelist: int,
    shelved: bool = False,
) -> DescribeResult:
    """Describe a changelist with a unified diff covering every listed file.

    Files missing from the tool's own diff section get a supplemental
    comparison: whole-file content for adds, previous-vs-current
    revision for edits.
    """
    args = ["describe", "-du"]
    if shelved:
        args.append("-S")
    args.append(str(changelist))

    try:
        output = await session.run(args)
    except ExternalToolError as exc:
        logger.warning("Could not describe %s: %s", changelist, exc)
        return DescribeResult()
    if not output.strip():
        return DescribeResult()

    result = parse_describe(output)
    covered = files_with_diff(result.diff)
    missing = [
        f for f in result.files
        if f.depot_file not in covered and f.action not in _NO_POINT_DIFF
    ]

    extra = await bounded_map(
        missing,
        lambda f: _point_diff(session, f, changelist, shelved),
        session.settings.query_concurrency,
    )
    blocks = [block for block in extra if block]
    diff = "\n".join([result.diff, *blocks]) if blocks else result.diff

    result.diff = normalize_diff(diff)
    return result


# -- Mutations ----------------------------------------------------------------


async def create_changelist(session: Session, description: str) -> ChangelistResult:
    """Create a numbered pending changelist from a spec on stdin."""
    spec = render_spec({"Change": "new", "Description": description})
    try:
        output = await session.run(["change", "-i"], spec)
    except ExternalToolError as exc:
        return ChangelistResult(success=False, message=str(exc))

    number = parse_created_change(output)
    if number is None:
        return ChangelistResult(success=False, message="Failed to parse changelist number")
    logger.info("Created changelist %d", number)
    return ChangelistResult(success=True, changelist_number=number, message=output.strip())


async def get_or_create_junk_changelist(session: Session) -> ChangelistResult:
    """Reuse a scratch changelist, creating one when none exists."""
    for changelist in await get_changelists(session):
        if changelist.number == DEFAULT_CHANGELIST:
            continue
        lowered = changelist.description.lower()
        if any(marker in lowered for marker in JUNK_MARKERS):
            return ChangelistResult(
                success=True,
                changelist_number=changelist.number,
                message="Found existing junk changelist",
            )
    return await create_changelist(session, JUNK_DESCRIPTION)


def replace_description(spec_text: str, description: str) -> str:
    """Swap the ``Description:`` block of a changelist spec."""
    out: list[str] = []
    skipping = False
    for line in unify_line_endings(spec_text).split("\n"):
        if skipping:
            if line.startswith(("\t", " ")) or not line.strip():
                continue
            skipping = False
        if line.startswith("Description:"):
            out.append("Description:")
            out.extend(f"\t{part}" for part in description.split("\n"))
            out.append("")
            skipping = True
            continue
        out.append(line)
    return "\n".join(out)


async def update_description(session: Session, changelist: int, description: str) -> OperationResult:
    try:
        spec = await session.run(["change", "-o", str(changelist)])
        output = await session.run(["change", "-i"], replace_description(spec, description))
    except ExternalToolError as exc:
        return OperationResult(success=False, message=str(exc))
    return OperationResult(success=True, message=output.strip())


async def submit(session: Session, changelist: int, description: str) -> OperationResult:
    """Submit the default changelist with *description*, or a numbered one."""
    try:
        if changelist == DEFAULT_CHANGELIST:
            output = await session.run(["submit", "-d", description])
        else:
            if description:
                updated = await update_description(session, changelist, description)
                if not updated.success:
                    return updated
            output = await session.run(["submit", "-c", str(changelist)])
    except ExternalToolError as exc:
        return OperationResult(success=False, message=str(exc))
    logger.info("Submitted changelist %s", changelist)
    return OperationResult(success=True, message=output.strip())


async def shelve(session: Session, changelist: int) -> OperationResult:
    try:
        output = await session.run(["shelve", "-f", "-c", str(changelist)])
    except ExternalToolError as exc:
        return OperationResult(success=False, message=str(exc))
    logger.info("Shelved changelist %d", changelist)
    return OperationResult(success=True, message=output.strip())


async def unshelve(session: Session, changelist: int) -> OperationResult:
    try:
        output = await session.run(["unshelve", "-s", str(changelist)])
    except ExternalToolError as exc:
        return OperationResult(success=False, message=str(exc))
    logger.info("Unshelved changelist %d", changelist)
    return OperationResult(success=True, message=output.strip())


async def delete_changelist(session: Session, changelist: int) -> OperationResult:
    """Delete an empty changelist."""
    try:
        output = await session.run(["change", "-d", str(changelist)])
    except ExternalToolError as exc:
        return OperationResult(success=False, message=str(exc))
    return OperationResult(
        success=True,
        message=output.strip() or f"Changelist {changelist} deleted",
    )


async def revert_and_delete_changelist(session: Session, changelist: int) -> OperationResult:
    """Revert every file in *changelist*, then delete it."""
    try:
        await session.run(["revert", "-c", str(changelist), "//..."])
    except ExternalToolError as exc:
        if "not opened" not in str(exc).lower():
            return OperationResult(success=False, message=str(exc))
    return await delete_changelist(session, changelist)
