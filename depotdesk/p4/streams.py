"""Stream topology — depots, streams, workspaces, and the composed graph."""

from __future__ import annotations

import asyncio
import logging
from typing import Literal

from depotdesk.models import Depot, Stream, StreamGraph, StreamRelation, Workspace
from depotdesk.p4.executor import ExternalToolError
from depotdesk.p4.mapper import bounded_map
from depotdesk.p4.parsers import (
    count_changes,
    depot_name,
    parse_dirs,
    parse_spec,
    pseudo_streams,
    record_to_depot,
    record_to_stream,
    record_to_workspace,
    spec_to_stream,
    spec_to_workspace,
)
from depotdesk.p4.session import Session

logger = logging.getLogger(__name__)


async def get_depots(session: Session) -> list[Depot]:
    try:
        records = await session.run_tagged(["depots"], primary="name")
    except ExternalToolError as exc:
        logger.warning("Could not list depots: %s", exc)
        return []
    return [depot for depot in map(record_to_depot, records) if depot is not None]


async def get_streams(session: Session, depot: str | None = None) -> list[Stream]:
    """Streams of *depot* (all streams when omitted).

    A classic depot has no stream metadata, so its top-level directories
    stand in as unparented development streams.
    """
    if depot is None:
        args = ["streams"]
    else:
        name = depot_name(depot)
        depots = {d.depot: d for d in await get_depots(session)}
        if name in depots and depots[name].type != "stream":
            return await _classic_streams(session, name)
        args = ["streams", f"//{name}/..."]

    try:
        records = await session.run_tagged(args, primary="Stream")
    except ExternalToolError as exc:
        logger.warning("Could not list streams for %s: %s", depot or "server", exc)
        return []
    return [stream for stream in map(record_to_stream, records) if stream is not None]


async def _classic_streams(session: Session, name: str) -> list[Stream]:
    try:
        output = await session.run(["dirs", f"//{name}/*"])
    except ExternalToolError as exc:
        logger.warning("Could not list directories of //%s: %s", name, exc)
        return []
    return pseudo_streams(name, parse_dirs(output))


async def get_stream_spec(session: Session, stream: str) -> Stream | None:
    try:
        return spec_to_stream(parse_spec(await session.run(["stream", "-o", stream])))
    except ExternalToolError as exc:
        logger.warning("Could not read stream spec %s: %s", stream, exc)
        return None


async def get_all_workspaces(session: Session) -> list[Workspace]:
    try:
        records = await session.run_tagged(["clients"], primary="client")
    except ExternalToolError as exc:
        logger.warning("Could not list workspaces: %s", exc)
        return []
    return [ws for ws in map(record_to_workspace, records) if ws is not None]


async def get_workspaces_by_stream(session: Session, stream: str) -> list[Workspace]:
    try:
        records = await session.run_tagged(["clients", "-S", stream], primary="client")
    except ExternalToolError as exc:
        logger.warning("Could not list workspaces of %s: %s", stream, exc)
        return []
    return [ws for ws in map(record_to_workspace, records) if ws is not None]


async def get_workspace_details(session: Session, client: str) -> Workspace | None:
    try:
        return spec_to_workspace(parse_spec(await session.run(["client", "-o", client])))
    except ExternalToolError as exc:
        logger.warning("Could not read workspace %s: %s", client, exc)
        return None


async def _pending_count(session: Session, args: list[str]) -> int:
    try:
        return count_changes(await session.run(["interchanges", *args]))
    except ExternalToolError as exc:
        # "All revision(s) already integrated" arrives as an error
        logger.debug("interchanges %s: %s", " ".join(args), exc)
        return 0


async def get_interchanges(
    session: Session,
    from_stream: str,
    to_stream: str,
    direction: Literal["merge", "copy"] = "merge",
) -> StreamRelation:
    """Count changes in *from_stream* not yet integrated into *to_stream*."""
    count = await _pending_count(session, [f"{from_stream}/...", f"{to_stream}/..."])
    return StreamRelation(
        from_stream=from_stream,
        to_stream=to_stream,
        direction=direction,
        pending_changes=count,
    )


async def _relations_for(session: Session, stream: Stream) -> list[StreamRelation]:
    merge_down, copy_up = await asyncio.gather(
        _pending_count(session, ["-S", stream.stream]),
        _pending_count(session, ["-r", "-S", stream.stream]),
    )
    relations = [
        StreamRelation(
            from_stream=stream.parent,
            to_stream=stream.stream,
            direction="merge",
            pending_changes=merge_down,
        ),
        StreamRelation(
            from_stream=stream.stream,
            to_stream=stream.parent,
            direction="copy",
            pending_changes=copy_up,
        ),
    ]
    return [relation for relation in relations if relation.pending_changes > 0]


async def _detailed(session: Session, workspace: Workspace) -> Workspace:
    return await get_workspace_details(session, workspace.client) or workspace


async def get_stream_graph(session: Session, depot: str) -> StreamGraph:
    """Streams of *depot* with their workspaces and pending integrations."""
    settings = session.settings
    streams = await get_streams(session, depot)

    async def workspaces_of(stream: Stream) -> list[Workspace]:
        summaries = await get_workspaces_by_stream(session, stream.stream)
        return await bounded_map(
            summaries,
            lambda ws: _detailed(session, ws),
            settings.detail_concurrency,
        )

    parented = [s for s in streams if s.parent and s.parent != "none"]
    per_stream, per_relation = await asyncio.gather(
        bounded_map(streams, workspaces_of, settings.query_concurrency),
        bounded_map(
            parented,
            lambda stream: _relations_for(session, stream),
            settings.query_concurrency,
        ),
    )

    return StreamGraph(
        streams=streams,
        workspaces=[ws for group in per_stream for ws in group],
        relations=[rel for group in per_relation for rel in group],
    )
