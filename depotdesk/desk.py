"""DepotDesk — the single entry point the desktop shell talks to.

Usage::

    from depotdesk import DepotDesk

    desk = DepotDesk()
    await desk.set_client("alice-main")
    files = await desk.get_opened_files()
    diff = await desk.get_diff(files[0].depot_file)
    await desk.reconcile("smart", sink=print)
    graph = await desk.get_stream_graph("//game")

Every method returns a model (or a list of them) and never raises past
this boundary; failures come back as ``success=False`` results or as
empty query results.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from depotdesk.config import Settings, load_settings
from depotdesk.models import (
    AnnotateResult,
    Changelist,
    ChangelistRef,
    ChangelistResult,
    ClientInfo,
    ClientSummary,
    DescribeResult,
    Depot,
    DiffResult,
    FileStatus,
    OperationResult,
    ReconcileMode,
    ReconcileResult,
    RevertResult,
    ReviewResult,
    Stream,
    StreamGraph,
    StreamRelation,
    User,
    Workspace,
)
from depotdesk.p4 import changelists, files, history, review, streams
from depotdesk.p4 import reconcile as reconcile_ops
from depotdesk.p4 import session as session_ops
from depotdesk.p4.executor import ExternalToolError, P4Executor
from depotdesk.p4.reconcile import ProgressSink
from depotdesk.p4.session import Session

logger = logging.getLogger(__name__)


class DepotDesk:
    """The public interface of the integration layer.

    Holds the active :class:`Session`; switching workspace replaces it
    with a new one so no stale workspace info survives the switch.

    Parameters
    ----------
    settings:
        Runtime settings.  Loaded from the environment when omitted.
    client:
        Initial workspace name.
    cwd:
        Working directory for spawned processes.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: str | None = None,
        cwd: str | Path | None = None,
        executor: P4Executor | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        executor = executor or P4Executor(p4_bin=self.settings.p4_bin, cwd=cwd)
        self.session = Session(executor, client, self.settings)
        self._reviews: review.ReviewClient | None = None
        self._reviews_resolved = False

    # -- Workspace context ----------------------------------------------------

    @property
    def client(self) -> str | None:
        return self.session.client

    async def set_client(self, client: str | None) -> OperationResult:
        self.session = self.session.with_client(client)
        self._reviews = None
        self._reviews_resolved = False
        logger.info("Active client is now %s", client)
        return OperationResult(success=True, message=f"Using client {client}")

    async def get_info(self) -> ClientInfo:
        try:
            return await self.session.info()
        except ExternalToolError as exc:
            logger.warning("Could not read client info: %s", exc)
            return ClientInfo()

    async def get_clients(self) -> list[ClientSummary]:
        return await session_ops.list_clients(self.session)

    async def create_client(
        self,
        name: str,
        root: str,
        options: str = "",
        submit_options: str = "",
        stream: str | None = None,
        description: str = "",
    ) -> OperationResult:
        return await session_ops.create_client(
            self.session, name, root, options, submit_options, stream, description,
        )

    async def get_client_stream(self) -> str | None:
        return await session_ops.get_client_stream(self.session)

    async def get_current_depot(self) -> str | None:
        return await session_ops.get_current_depot(self.session)

    async def switch_stream(self, stream: str) -> OperationResult:
        return await session_ops.switch_stream(self.session, stream)

    async def get_users(self) -> list[User]:
        return await session_ops.list_users(self.session)

    # -- Files ----------------------------------------------------------------

    async def get_opened_files(self) -> list[FileStatus]:
        return await files.get_opened_files(self.session)

    async def get_diff(self, file_path: str) -> DiffResult:
        return await files.get_diff(self.session, file_path)

    async def sync(self, file_path: str | None = None) -> OperationResult:
        return await files.sync(self.session, file_path)

    async def revert(self, paths: list[str]) -> OperationResult:
        return await files.revert(self.session, paths)

    async def revert_unchanged(self) -> RevertResult:
        return await files.revert_unchanged(self.session)

    async def reopen_files(self, paths: list[str], changelist: ChangelistRef) -> OperationResult:
        return await files.reopen_files(self.session, paths, changelist)

    # -- Changelists ----------------------------------------------------------

    async def _review_client(self) -> review.ReviewClient | None:
        if not self._reviews_resolved:
            self._reviews = await review.review_client_for(self.session)
            self._reviews_resolved = True
        return self._reviews

    async def get_changelists(self) -> list[Changelist]:
        try:
            reviews = await self._review_client()
        except ExternalToolError as exc:
            logger.warning("Review service lookup failed: %s", exc)
            reviews = None
        return await changelists.get_changelists(self.session, reviews)

    async def get_submitted_changes(self, depot_path: str, max_changes: int = 50) -> list[Changelist]:
        return await changelists.get_submitted_changes(self.session, depot_path, max_changes)

    async def describe_changelist(self, changelist: int, shelved: bool = False) -> DescribeResult:
        return await changelists.describe_changelist(self.session, changelist, shelved)

    async def create_changelist(self, description: str) -> ChangelistResult:
        return await changelists.create_changelist(self.session, description)

    async def get_or_create_junk_changelist(self) -> ChangelistResult:
        return await changelists.get_or_create_junk_changelist(self.session)

    async def update_description(self, changelist: int, description: str) -> OperationResult:
        return await changelists.update_description(self.session, changelist, description)

    async def submit(self, changelist: int, description: str) -> OperationResult:
        return await changelists.submit(self.session, changelist, description)

    async def shelve(self, changelist: int) -> OperationResult:
        return await changelists.shelve(self.session, changelist)

    async def unshelve(self, changelist: int) -> OperationResult:
        return await changelists.unshelve(self.session, changelist)

    async def delete_changelist(self, changelist: int) -> OperationResult:
        return await changelists.delete_changelist(self.session, changelist)

    async def revert_and_delete_changelist(self, changelist: int) -> OperationResult:
        return await changelists.revert_and_delete_changelist(self.session, changelist)

    async def create_review(
        self,
        changelist: int,
        description: str = "",
        reviewers: list[str] | None = None,
    ) -> ReviewResult:
        try:
            client = await self._review_client()
        except ExternalToolError as exc:
            return ReviewResult(success=False, message=str(exc))
        if client is None:
            return ReviewResult(success=False, message="No review service is configured")
        return await client.create_review(changelist, description, reviewers or [])

    # -- History --------------------------------------------------------------

    async def annotate(self, file_path: str) -> AnnotateResult:
        return await history.annotate(self.session, file_path)

    # -- Streams --------------------------------------------------------------

    async def get_depots(self) -> list[Depot]:
        return await streams.get_depots(self.session)

    async def get_streams(self, depot: str | None = None) -> list[Stream]:
        return await streams.get_streams(self.session, depot)

    async def get_stream_spec(self, stream: str) -> Stream | None:
        return await streams.get_stream_spec(self.session, stream)

    async def get_all_workspaces(self) -> list[Workspace]:
        return await streams.get_all_workspaces(self.session)

    async def get_workspaces_by_stream(self, stream: str) -> list[Workspace]:
        return await streams.get_workspaces_by_stream(self.session, stream)

    async def get_workspace_details(self, client: str) -> Workspace | None:
        return await streams.get_workspace_details(self.session, client)

    async def get_interchanges(
        self,
        from_stream: str,
        to_stream: str,
        direction: Literal["merge", "copy"] = "merge",
    ) -> StreamRelation:
        return await streams.get_interchanges(self.session, from_stream, to_stream, direction)

    async def get_stream_graph(self, depot: str) -> StreamGraph:
        return await streams.get_stream_graph(self.session, depot)

    # -- Reconcile ------------------------------------------------------------

    async def reconcile(
        self,
        mode: ReconcileMode | str = ReconcileMode.SMART,
        sink: ProgressSink | None = None,
    ) -> ReconcileResult:
        try:
            mode = ReconcileMode(mode)
        except ValueError:
            return ReconcileResult(
                success=False,
                message=f"Unknown reconcile mode: {mode}",
                mode=ReconcileMode.SMART,
            )
        return await reconcile_ops.reconcile(self.session, mode, sink)
