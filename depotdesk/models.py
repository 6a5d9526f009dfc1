"""Domain records produced by the integration layer.

Every record is query-scoped: it is rebuilt on each refresh and never
mutated in place by the layer that produced it.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal, Union

from pydantic import BaseModel, Field

ChangelistRef = Union[int, Literal["default"]]


class FileAction(str, Enum):
    """Open actions a file can carry in a pending changelist."""

    ADD = "add"
    EDIT = "edit"
    DELETE = "delete"
    BRANCH = "branch"
    MOVE_ADD = "move/add"
    MOVE_DELETE = "move/delete"
    INTEGRATE = "integrate"


class ClientInfo(BaseModel):
    """Identity of the active workspace, cached per session."""

    user_name: str = ""
    client_name: str = ""
    client_root: str = ""
    server_address: str = ""
    server_version: str = ""


class ClientSummary(BaseModel):
    """One row of the workspace listing for the current user."""

    name: str
    root: str = ""
    description: str = ""


class User(BaseModel):
    user: str
    email: str = ""
    full_name: str = ""


class FileStatus(BaseModel):
    """An opened or shelved file.  ``depot_file`` is the identity key."""

    depot_file: str
    client_file: str = ""
    action: str = FileAction.EDIT.value
    changelist: ChangelistRef = "default"
    type: str = "text"
    shelved: bool = False


class Changelist(BaseModel):
    """A pending or submitted changelist.  Number 0 is the default bucket."""

    number: int
    status: Literal["pending", "submitted"] = "pending"
    description: str = ""
    user: str = ""
    client: str = ""
    date: str | None = None
    review_id: int | None = None


class AffectedFile(BaseModel):
    depot_file: str
    revision: int
    action: str


class DescribeResult(BaseModel):
    """Parsed ``describe`` output: header, file list, and diff text."""

    info: Changelist | None = None
    files: list[AffectedFile] = Field(default_factory=list)
    diff: str = ""


class DiffResult(BaseModel):
    file_path: str
    old_content: str = ""
    new_content: str = ""
    hunks: str = ""


class AnnotatedLine(BaseModel):
    line_number: int
    changelist: int
    user: str
    date: str
    content: str = ""


class StreamType(str, Enum):
    MAINLINE = "mainline"
    DEVELOPMENT = "development"
    RELEASE = "release"
    VIRTUAL = "virtual"
    TASK = "task"


class Stream(BaseModel):
    """A branch node in the stream graph."""

    stream: str
    name: str = ""
    parent: str = "none"
    type: str = StreamType.DEVELOPMENT.value
    owner: str = ""
    description: str = ""
    options: str = ""
    base_parent: str | None = None
    depot_name: str | None = None


class Workspace(BaseModel):
    client: str
    owner: str = ""
    stream: str = ""
    root: str = ""
    host: str = ""
    description: str = ""
    access: str = ""
    update: str = ""
    options: str | None = None
    submit_options: str | None = None


class Depot(BaseModel):
    depot: str
    type: str = "local"
    map: str = ""
    description: str = ""


class StreamRelation(BaseModel):
    """Pending integration between two streams.  Only non-zero counts are kept."""

    from_stream: str
    to_stream: str
    direction: Literal["merge", "copy"]
    pending_changes: int = 0


class StreamGraph(BaseModel):
    streams: list[Stream] = Field(default_factory=list)
    workspaces: list[Workspace] = Field(default_factory=list)
    relations: list[StreamRelation] = Field(default_factory=list)


class ReconcileMode(str, Enum):
    SMART = "smart"
    FULL = "full"


class ReconcilePhase(str, Enum):
    SCANNING = "scanning"
    RECONCILING = "reconciling"
    DONE = "done"


class ReconcileProgress(BaseModel):
    """A progress event.  Emitted to a sink, never stored."""

    mode: ReconcileMode
    phase: ReconcilePhase
    completed: int = 0
    total: int = 0
    message: str | None = None


# -- Operation results --------------------------------------------------------


class OperationResult(BaseModel):
    success: bool
    message: str = ""


class ChangelistResult(OperationResult):
    changelist_number: int = 0


class RevertResult(OperationResult):
    reverted_count: int = 0


class AnnotateResult(OperationResult):
    lines: list[AnnotatedLine] = Field(default_factory=list)


class ReviewResult(OperationResult):
    review_id: int | None = None


class ReconcileResult(OperationResult):
    mode: ReconcileMode
    files: list[str] = Field(default_factory=list)
