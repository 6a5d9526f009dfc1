"""Free-text output parsers, one small state machine per output shape.

Each parser takes literal tool output and returns typed records.  Lines
that do not fit the expected shape are skipped rather than reported.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping

from depotdesk.config import DEFAULT_CHANGELIST
from depotdesk.models import (
    AffectedFile,
    AnnotatedLine,
    Changelist,
    ChangelistRef,
    ClientInfo,
    ClientSummary,
    DescribeResult,
    Depot,
    FileStatus,
    Stream,
    StreamType,
    User,
    Workspace,
)
from depotdesk.p4.tagged import split_lines

logger = logging.getLogger(__name__)

_INFO_FIELDS = {
    "User name": "user_name",
    "Client name": "client_name",
    "Client root": "client_root",
    "Server address": "server_address",
    "Server version": "server_version",
}

_CLIENT_LINE_RE = re.compile(r"^Client\s+(\S+)\s+\S+\s+root\s+(.+?)\s+'(.*)'\s*$")

# "Change 12 on 2024/01/01 [12:00:00] by user@ws [*pending*] ['short desc']"
_CHANGE_HEADER_RE = re.compile(
    r"^Change (\d+) on (\S+)(?: (\d{1,2}:\d{2}:\d{2}))? by (\S+?)@(\S+)"
    r"(?: \*(\w+)\*)?(?: '(.*?)'?)?\s*$"
)

# "Change 12 by user@ws on 2024/01/01 12:00:00 [*pending*]"
_DESCRIBE_HEADER_RE = re.compile(
    r"^Change (\d+) by (\S+?)@(\S+) on (\S+)(?: (\d{1,2}:\d{2}:\d{2}))?(?: \*(\w+)\*)?"
)
_FILES_MARKER_RE = re.compile(r"^(?:Affected|Shelved) files \.\.\.\s*$")
_DIFF_MARKER = "Differences ..."
_AFFECTED_FILE_RE = re.compile(r"^\.\.\. (.+)#(\d+) (\S+)")

_ANNOTATE_RE = re.compile(r"^(\d+):\s+(\S+)\s+(\d{4}/\d{2}/\d{2})(?:\s(.*))?$")

_SPEC_FIELD_RE = re.compile(r"^([A-Za-z][\w-]*):\s?(.*)$")

_CREATED_RE = re.compile(r"Change (\d+) created")


# -- info / clients -----------------------------------------------------------


def parse_info(text: str) -> ClientInfo:
    """Parse the ``Key: value`` lines of ``info`` output."""
    values: dict[str, str] = {}
    for line in split_lines(text):
        key, sep, value = line.partition(":")
        if sep and key in _INFO_FIELDS:
            values[_INFO_FIELDS[key]] = value.strip()
    return ClientInfo(**values)


def parse_clients(text: str) -> list[ClientSummary]:
    """Parse ``clients`` listing lines: ``Client <name> <date> root <root> '<desc>'``."""
    clients: list[ClientSummary] = []
    for line in split_lines(text):
        match = _CLIENT_LINE_RE.match(line.strip())
        if match:
            clients.append(ClientSummary(
                name=match.group(1),
                root=match.group(2),
                description=match.group(3).strip(),
            ))
    return clients


# -- changelists --------------------------------------------------------------


def default_changelist(info: ClientInfo) -> Changelist:
    return Changelist(
        number=DEFAULT_CHANGELIST,
        status="pending",
        description="Default changelist",
        user=info.user_name,
        client=info.client_name,
    )


def _finish_description(lines: list[str]) -> str:
    return "\n".join(line.strip() for line in lines).strip()


def parse_change_listing(text: str) -> list[Changelist]:
    """Parse ``changes`` output in short or long (``-l``) form.

    The description is everything between one header and the next,
    including the short quoted form some servers put on the header.
    """
    changelists: list[Changelist] = []
    header: re.Match[str] | None = None
    body: list[str] = []

    def flush() -> None:
        if header is None:
            return
        number, date, time, user, client, status, inline = header.groups()
        lines = ([inline] if inline else []) + body
        changelists.append(Changelist(
            number=int(number),
            status="pending" if status == "pending" else "submitted",
            description=_finish_description(lines),
            user=user,
            client=client,
            date=f"{date} {time}" if time else date,
        ))

    for line in split_lines(text):
        match = _CHANGE_HEADER_RE.match(line)
        if match:
            flush()
            header = match
            body = []
        elif header is not None:
            body.append(line)
    flush()

    return changelists


def parse_pending_changes(text: str, info: ClientInfo) -> list[Changelist]:
    """Pending changelists with the default changelist always first."""
    pending = [cl for cl in parse_change_listing(text) if cl.number != DEFAULT_CHANGELIST]
    return [default_changelist(info), *pending]


def parse_submitted_changes(text: str) -> list[Changelist]:
    """Submitted changelists; only the first description line is kept."""
    changelists = parse_change_listing(text)
    for changelist in changelists:
        changelist.status = "submitted"
        changelist.description = changelist.description.split("\n", 1)[0]
    return changelists


def parse_created_change(text: str) -> int | None:
    """Extract the number from ``Change 123 created.``"""
    match = _CREATED_RE.search(text)
    return int(match.group(1)) if match else None


def parse_describe(text: str) -> DescribeResult:
    """Parse ``describe`` output into header, affected files, and raw diff text."""
    lines = split_lines(text)
    result = DescribeResult()

    state = "start"
    description: list[str] = []
    for index, line in enumerate(lines):
        if state == "start":
            match = _DESCRIBE_HEADER_RE.match(line)
            if match:
                number, user, client, date, time, status = match.groups()
                result.info = Changelist(
                    number=int(number),
                    status="pending" if status == "pending" else "submitted",
                    user=user,
                    client=client,
                    date=f"{date} {time}" if time else date,
                )
                state = "description"
        elif state == "description":
            if _FILES_MARKER_RE.match(line):
                state = "files"
            elif line.startswith(_DIFF_MARKER):
                result.diff = "\n".join(lines[index:])
                break
            elif line.strip():
                description.append(line.lstrip("\t").strip())
        elif state == "files":
            if line.startswith(_DIFF_MARKER):
                result.diff = "\n".join(lines[index:])
                break
            match = _AFFECTED_FILE_RE.match(line)
            if match:
                result.files.append(AffectedFile(
                    depot_file=match.group(1),
                    revision=int(match.group(2)),
                    action=match.group(3),
                ))

    if result.info is not None:
        result.info.description = " ".join(description)
    return result


# -- annotate -----------------------------------------------------------------


def parse_annotate(text: str) -> list[AnnotatedLine]:
    """Parse ``annotate -c -u`` output into densely numbered lines.

    A non-blank line that is neither the ``//`` file header nor an
    annotated line continues the previous record: it takes the next line
    number and inherits the previous attribution.
    """
    result: list[AnnotatedLine] = []
    previous: AnnotatedLine | None = None

    for raw in split_lines(text):
        line = raw.rstrip()
        if not line or line.startswith("//"):
            continue

        match = _ANNOTATE_RE.match(line)
        if match:
            changelist, user, date, content = match.groups()
            previous = AnnotatedLine(
                line_number=len(result) + 1,
                changelist=int(changelist),
                user=user,
                date=date,
                content=content or "",
            )
            result.append(previous)
        elif previous is not None:
            previous = previous.model_copy(update={
                "line_number": len(result) + 1,
                "content": line,
            })
            result.append(previous)
        else:
            logger.debug("Skipped annotate line before first record: %r", line[:80])

    return result


# -- specs --------------------------------------------------------------------


def parse_spec(text: str) -> dict[str, str]:
    """Extract ``Key: value`` fields from a spec form.

    Indented lines continue the previous field (``View:``,
    ``Description:``); comment lines are ignored.
    """
    fields: dict[str, str] = {}
    current: str | None = None

    for line in split_lines(text):
        if not line.strip() or line.lstrip().startswith("#"):
            continue
        if line[0] in " \t":
            if current is not None:
                existing = fields[current]
                value = line.strip()
                fields[current] = f"{existing}\n{value}" if existing else value
            continue
        match = _SPEC_FIELD_RE.match(line)
        if match:
            current = match.group(1)
            fields[current] = match.group(2).strip()
        else:
            current = None

    return fields


def depot_name(path: str) -> str:
    """``//depot/main/...`` -> ``depot``."""
    return path.lstrip("/").split("/", 1)[0]


def _stream_name(path: str) -> str:
    return path.rstrip("/").rsplit("/", 1)[-1]


def spec_to_stream(spec: Mapping[str, str]) -> Stream | None:
    path = spec.get("Stream")
    if not path:
        return None
    return Stream(
        stream=path,
        name=spec.get("Name") or _stream_name(path),
        parent=spec.get("Parent") or "none",
        type=spec.get("Type") or StreamType.DEVELOPMENT.value,
        owner=spec.get("Owner", ""),
        description=spec.get("Description", ""),
        options=spec.get("Options", ""),
        base_parent=spec.get("baseParent") or None,
        depot_name=depot_name(path),
    )


def spec_to_workspace(spec: Mapping[str, str]) -> Workspace | None:
    name = spec.get("Client")
    if not name:
        return None
    return Workspace(
        client=name,
        owner=spec.get("Owner", ""),
        stream=spec.get("Stream", ""),
        root=spec.get("Root", ""),
        host=spec.get("Host", ""),
        description=spec.get("Description", ""),
        access=spec.get("Access", ""),
        update=spec.get("Update", ""),
        options=spec.get("Options") or None,
        submit_options=spec.get("SubmitOptions") or None,
    )


def render_spec(fields: Mapping[str, str | Iterable[str]]) -> str:
    """Render a spec form for ``-i`` input; iterables become indented blocks."""
    out: list[str] = []
    for key, value in fields.items():
        if isinstance(value, str):
            if "\n" in value:
                out.append(f"{key}:")
                out.extend(f"\t{line}" for line in value.split("\n"))
            else:
                out.append(f"{key}: {value}")
        else:
            out.append(f"{key}:")
            out.extend(f"\t{line}" for line in value)
        out.append("")
    return "\n".join(out)


# -- tagged record mapping ----------------------------------------------------


def _changelist_ref(value: str | None) -> ChangelistRef:
    if not value or value == "default":
        return "default"
    try:
        number = int(value)
    except ValueError:
        return "default"
    return "default" if number == DEFAULT_CHANGELIST else number


def record_to_file_status(record: Mapping[str, str], *, shelved: bool = False) -> FileStatus:
    return FileStatus(
        depot_file=record["depotFile"],
        client_file=record.get("clientFile") or record.get("path", ""),
        action=record.get("action") or record.get("headAction") or "edit",
        changelist=_changelist_ref(record.get("change")),
        type=record.get("type") or record.get("headType") or "text",
        shelved=shelved,
    )


def merge_file_statuses(*groups: Iterable[FileStatus]) -> list[FileStatus]:
    """Merge sightings keyed by depot path; the first sighting wins."""
    merged: dict[str, FileStatus] = {}
    for group in groups:
        for status in group:
            merged.setdefault(status.depot_file, status)
    return list(merged.values())


def record_to_stream(record: Mapping[str, str]) -> Stream | None:
    return spec_to_stream({
        "Stream": record.get("Stream", ""),
        "Name": record.get("Name", ""),
        "Parent": record.get("Parent", ""),
        "Type": record.get("Type", ""),
        "Owner": record.get("Owner", ""),
        "Description": record.get("desc") or record.get("Description", ""),
        "Options": record.get("Options", ""),
        "baseParent": record.get("baseParent", ""),
    })


def record_to_workspace(record: Mapping[str, str]) -> Workspace | None:
    return spec_to_workspace({
        "Client": record.get("client") or record.get("Client", ""),
        "Owner": record.get("Owner", ""),
        "Stream": record.get("Stream", ""),
        "Root": record.get("Root", ""),
        "Host": record.get("Host", ""),
        "Description": (record.get("Description") or "").strip(),
        "Access": record.get("Access", ""),
        "Update": record.get("Update", ""),
        "Options": record.get("Options", ""),
        "SubmitOptions": record.get("SubmitOptions", ""),
    })


def record_to_depot(record: Mapping[str, str]) -> Depot | None:
    name = record.get("name") or record.get("Depot")
    if not name:
        return None
    return Depot(
        depot=name,
        type=record.get("type") or record.get("Type") or "local",
        map=record.get("map") or record.get("Map", ""),
        description=(record.get("desc") or record.get("Description") or "").strip(),
    )


def record_to_user(record: Mapping[str, str]) -> User | None:
    name = record.get("User")
    if not name:
        return None
    return User(user=name, email=record.get("Email", ""), full_name=record.get("FullName", ""))


# -- streams ------------------------------------------------------------------


def parse_dirs(text: str) -> list[str]:
    """Directory paths from ``dirs`` output, one per line."""
    return [line.strip() for line in split_lines(text) if line.strip().startswith("//")]


def pseudo_streams(depot: str, dirs: Iterable[str]) -> list[Stream]:
    """Unparented development pseudo-streams for a classic depot's top level."""
    return [
        Stream(
            stream=path,
            name=_stream_name(path),
            parent="none",
            type=StreamType.DEVELOPMENT.value,
            depot_name=depot,
        )
        for path in dirs
    ]


def count_changes(text: str) -> int:
    """Count ``Change <n>`` lines (``interchanges`` output)."""
    return sum(1 for line in split_lines(text) if re.match(r"^Change \d+", line))
