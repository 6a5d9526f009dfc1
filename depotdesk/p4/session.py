"""Session — explicit workspace context passed into every operation.

Switching workspace returns a new :class:`Session`; the cached
:class:`~depotdesk.models.ClientInfo` of the old one is never consulted
again.  That cache is the only mutable state shared between calls.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from depotdesk.config import JSON_FLAGS, TAGGED_FLAGS, Settings
from depotdesk.models import ClientInfo, ClientSummary, OperationResult, User
from depotdesk.p4.executor import CommandInvocation, CommandResult, ExternalToolError, P4Executor
from depotdesk.p4.parsers import (
    depot_name,
    parse_clients,
    parse_info,
    parse_spec,
    record_to_user,
    render_spec,
)
from depotdesk.p4.tagged import parse_json_lines, parse_ztag

logger = logging.getLogger(__name__)


class Session:
    """Workspace context plus its per-session info cache.

    Parameters
    ----------
    executor:
        Spawns the command-line tool.
    client:
        Active workspace name, injected as ``-c`` on every call.  ``None``
        lets the tool pick its configured default.
    settings:
        Runtime settings; defaults are used when omitted.
    """

    def __init__(
        self,
        executor: P4Executor,
        client: str | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.executor = executor
        self.client = client
        self.settings = settings or Settings()
        self._info: ClientInfo | None = None

    def __repr__(self) -> str:
        return f"Session(client={self.client!r})"

    def with_client(self, client: str | None) -> Session:
        """Return a fresh session bound to *client*."""
        return Session(self.executor, client, self.settings)

    def invalidate(self) -> None:
        """Drop the cached workspace info."""
        self._info = None

    # -- Command helpers ------------------------------------------------------

    async def run(self, args: Sequence[str], stdin: str | None = None) -> str:
        return await self.executor.run(args, stdin, client=self.client)

    async def execute(self, args: Sequence[str], stdin: str | None = None) -> CommandResult:
        return await self.executor.execute(
            CommandInvocation(args=tuple(args), stdin=stdin, client=self.client)
        )

    async def run_tagged(self, args: Sequence[str], primary: str | None = None) -> list[dict[str, str]]:
        return parse_ztag(await self.run([*TAGGED_FLAGS, *args]), primary)

    async def run_json(self, args: Sequence[str]) -> list[dict]:
        return parse_json_lines(await self.run([*JSON_FLAGS, *args]))

    # -- Info -----------------------------------------------------------------

    async def info(self) -> ClientInfo:
        """Return workspace info, querying the tool on first use only."""
        if self._info is None:
            self._info = parse_info(await self.run(["info"]))
            logger.debug("Cached info for client %s", self._info.client_name)
        return self._info


async def get_info(session: Session) -> ClientInfo:
    return await session.info()


async def list_clients(session: Session) -> list[ClientSummary]:
    """Workspaces owned by the current user; empty on failure."""
    try:
        info = await session.info()
        if not info.user_name:
            return []
        return parse_clients(await session.run(["clients", "-u", info.user_name]))
    except ExternalToolError as exc:
        logger.warning("Could not list clients: %s", exc)
        return []


async def create_client(
    session: Session,
    name: str,
    root: str,
    options: str = "",
    submit_options: str = "",
    stream: str | None = None,
    description: str = "",
) -> OperationResult:
    """Create a workspace from a spec written to the tool's stdin."""
    fields: dict[str, str] = {
        "Client": name,
        "Root": root,
        "Description": description or "Created by depotdesk",
    }
    if options:
        fields["Options"] = options
    if submit_options:
        fields["SubmitOptions"] = submit_options
    if stream:
        fields["Stream"] = stream
    else:
        fields["View"] = f"//depot/... //{name}/..."

    try:
        output = await session.executor.run(["client", "-i"], render_spec(fields))
    except ExternalToolError as exc:
        return OperationResult(success=False, message=str(exc))
    logger.info("Created client %s at %s", name, root)
    return OperationResult(success=True, message=output.strip())


async def get_client_stream(session: Session) -> str | None:
    """Depot path the workspace maps, from ``Stream:`` or the first view line."""
    if not session.client:
        return None
    try:
        spec = parse_spec(await session.run(["client", "-o", session.client]))
    except ExternalToolError as exc:
        logger.warning("Could not read client spec for %s: %s", session.client, exc)
        return None

    stream = spec.get("Stream")
    if stream:
        return f"{stream}/..."
    view = spec.get("View", "")
    if view:
        return view.split("\n", 1)[0].split()[0]
    return None


async def get_current_depot(session: Session) -> str | None:
    path = await get_client_stream(session)
    if not path:
        return None
    return f"//{depot_name(path)}"


async def switch_stream(session: Session, stream: str) -> OperationResult:
    """Point the workspace at *stream*; the session cache is dropped."""
    try:
        output = await session.run(["client", "-s", "-S", stream])
    except ExternalToolError as exc:
        return OperationResult(success=False, message=str(exc))
    session.invalidate()
    logger.info("Switched client %s to stream %s", session.client, stream)
    return OperationResult(success=True, message=output.strip() or f"Switched to {stream}")


async def list_users(session: Session) -> list[User]:
    """Server users, read in JSON-lines mode; empty on failure."""
    try:
        records = await session.run_json(["users"])
    except ExternalToolError as exc:
        logger.warning("Could not list users: %s", exc)
        return []
    return [user for user in map(record_to_user, records) if user is not None]
