"""Reconcile orchestration with phased progress reporting.

Each run moves through ``scanning -> reconciling -> done``.  All progress
goes through one :class:`ProgressEmitter`, which refuses to move
backwards and keeps ``completed`` non-decreasing within a phase, so a
subscriber always sees zero or more scanning events, zero or more
reconciling events, then exactly one done event.

Two modes:

- *smart* reconciles a handful of likely source directories in one
  long-running call, reading its output as it streams.
- *full* previews the whole workspace first and refuses to touch more
  than ``Settings.reconcile_limit`` files; otherwise it reconciles the
  candidates in sequential batches.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from depotdesk.models import ReconcileMode, ReconcilePhase, ReconcileProgress, ReconcileResult
from depotdesk.p4.executor import CommandInvocation, CommandResult
from depotdesk.p4.session import Session

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ReconcileProgress], Union[Awaitable[None], None]]

# Directory names that conventionally hold tracked sources
SOURCE_DIRS = frozenset({
    "assets", "packages", "projectsettings",
    "source", "content", "config", "plugins",
    "src", "include", "lib",
})

# Duplicated working copies: "Copy of X", "X - Copy", "X (2)", "X_clone", "X.bak"
_CLONE_DIR_RE = re.compile(
    r"^copy of |[ _-]copy(?: \(\d+\))?$|\(\d+\)$|[ _.-](?:clone|backup|bak|old)\d*$",
    re.IGNORECASE,
)

_FRACTION_RE = re.compile(r"(?<![\w/])(\d+)\s*/\s*(\d+)(?![\w/])")
_RESULT_RE = re.compile(
    r"^(?P<path>.+?)(?:#\d+)? - (?P<verb>opened for|added as|deleted as|moved from|moved into)\b"
)

# Text the tool prints when it fails while still exiting 0
ERROR_MARKERS = (
    "Perforce password (P4PASSWD) invalid or unset",
    "Your session has expired",
    "Connect to server failed",
    "Perforce client error:",
    "Access for user",
)
_NOTHING_TO_RECONCILE = "no file(s) to reconcile"

_RECONCILE_FLAGS = ("-e", "-a", "-d")


class SafetyLimitExceeded(Exception):
    """A full reconcile found more candidates than the configured ceiling."""

    def __init__(self, total: int, limit: int) -> None:
        super().__init__(
            f"{total} files would be reconciled, more than the limit of {limit}; "
            "reconcile a narrower path instead"
        )
        self.total = total
        self.limit = limit


# -- Progress state -----------------------------------------------------------


@dataclass(frozen=True)
class Scanning:
    completed: int = 0
    total: int = 0


@dataclass(frozen=True)
class Reconciling:
    completed: int = 0
    total: int = 0


@dataclass(frozen=True)
class Done:
    completed: int = 0
    total: int = 0


ReconcileState = Union[Scanning, Reconciling, Done]

_PHASES: dict[type, ReconcilePhase] = {
    Scanning: ReconcilePhase.SCANNING,
    Reconciling: ReconcilePhase.RECONCILING,
    Done: ReconcilePhase.DONE,
}
_RANK = {ReconcilePhase.SCANNING: 0, ReconcilePhase.RECONCILING: 1, ReconcilePhase.DONE: 2}


class ProgressEmitter:
    """The single point through which progress reaches a sink."""

    def __init__(self, mode: ReconcileMode, sink: ProgressSink | None = None) -> None:
        self.mode = mode
        self.sink = sink
        self.state: ReconcileState | None = None
        self.events: list[ReconcileProgress] = []

    @property
    def finished(self) -> bool:
        return isinstance(self.state, Done)

    async def advance(self, state: ReconcileState, message: str | None = None) -> bool:
        """Move to *state* and emit it.  Returns False if the move was refused."""
        if self.finished:
            return False
        phase = _PHASES[type(state)]
        if self.state is not None:
            current = _PHASES[type(self.state)]
            if _RANK[phase] < _RANK[current]:
                return False
            if phase == current and state.completed < self.state.completed:
                state = type(state)(completed=self.state.completed, total=state.total)
        self.state = state
        await self._emit(ReconcileProgress(
            mode=self.mode,
            phase=phase,
            completed=state.completed,
            total=state.total,
            message=message,
        ))
        return True

    async def heartbeat(self) -> None:
        """Re-emit the current phase so a subscriber never sees a frozen indicator."""
        if self.finished:
            return
        await self.advance(self.state or Scanning(), "Working...")

    async def _emit(self, event: ReconcileProgress) -> None:
        self.events.append(event)
        if self.sink is None:
            return
        try:
            outcome = self.sink(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.warning("Progress sink failed: %s", exc)


class ProgressQueue:
    """Sink adapter that exposes progress events as an async iterator.

    Iteration stops after the done event.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[ReconcileProgress] = asyncio.Queue()
        self._closed = False

    def __call__(self, event: ReconcileProgress) -> None:
        self._queue.put_nowait(event)

    def __aiter__(self) -> AsyncIterator[ReconcileProgress]:
        return self

    async def __anext__(self) -> ReconcileProgress:
        if self._closed:
            raise StopAsyncIteration
        event = await self._queue.get()
        if event.phase == ReconcilePhase.DONE:
            self._closed = True
        return event


async def _beat(emitter: ProgressEmitter, interval: float) -> None:
    while not emitter.finished:
        await asyncio.sleep(interval)
        await emitter.heartbeat()


# -- Output scanning ----------------------------------------------------------


@dataclass
class OutputScanner:
    """Turn streamed output lines into progress and a list of touched paths."""

    emitter: ProgressEmitter
    files: list[str] = field(default_factory=list)
    scan_completed: int = 0
    scan_total: int = 0
    lines: list[str] = field(default_factory=list)
    preview: bool = False
    """Preview runs only discover candidates, so matches count as scanning."""

    async def feed(self, line: str) -> None:
        self.lines.append(line)
        text = line.strip()
        if not text:
            return

        result = _RESULT_RE.match(text)
        if result is not None:
            path = result.group("path")
            if path not in self.files:
                self.files.append(path)
            done = len(self.files)
            phase = Scanning if self.preview else Reconciling
            await self.emitter.advance(
                phase(completed=done, total=max(done, self.scan_total)),
                f"{result.group('verb')} {path}",
            )
            return

        fraction = _FRACTION_RE.search(text)
        if fraction is not None:
            completed, total = int(fraction.group(1)), int(fraction.group(2))
            if completed <= total:
                self.scan_completed, self.scan_total = completed, total
                await self.emitter.advance(Scanning(completed=completed, total=total), text)

    def error_text(self, result: CommandResult) -> str | None:
        """Embedded failure text, which overrides a zero exit code."""
        combined = f"{result.stdout}\n{result.stderr}"
        for marker in ERROR_MARKERS:
            if marker in combined:
                for line in combined.splitlines():
                    if marker in line:
                        return line.strip()
                return marker
        if result.returncode != 0 and not self.files and _NOTHING_TO_RECONCILE not in combined:
            return result.stderr.strip() or f"reconcile failed with code {result.returncode}"
        return None


async def _stream_reconcile(
    session: Session,
    args: list[str],
    emitter: ProgressEmitter,
    preview: bool = False,
) -> tuple[OutputScanner, CommandResult]:
    scanner = OutputScanner(emitter, preview=preview)
    invocation = CommandInvocation(args=("-I", "reconcile", *args), client=session.client)
    heartbeat = asyncio.ensure_future(_beat(emitter, session.settings.heartbeat_seconds))
    try:
        result = await session.executor.stream(invocation, scanner.feed, scanner.feed)
    finally:
        heartbeat.cancel()
        await asyncio.gather(heartbeat, return_exceptions=True)
    return scanner, result


# -- Candidate discovery ------------------------------------------------------


def is_clone_dir(name: str) -> bool:
    return name.startswith(".") or bool(_CLONE_DIR_RE.search(name))


def smart_globs(root: str | Path) -> list[str]:
    """Likely source directories under *root*, as ``<dir>/...`` patterns.

    Looks at the root and one level below it, skipping directories that
    look like duplicated working copies.  Falls back to the whole root.
    """
    root = Path(root)
    found: list[str] = []

    def children(path: Path) -> list[Path]:
        try:
            return sorted(p for p in path.iterdir() if p.is_dir() and not is_clone_dir(p.name))
        except OSError:
            return []

    for child in children(root):
        if child.name.lower() in SOURCE_DIRS:
            found.append(f"{child.as_posix()}/...")
            continue
        for grandchild in children(child):
            if grandchild.name.lower() in SOURCE_DIRS:
                found.append(f"{grandchild.as_posix()}/...")

    return found or [f"{root.as_posix()}/..."]


def _batches(paths: list[str], size: int) -> list[list[str]]:
    return [paths[i:i + size] for i in range(0, len(paths), size)]


# -- Workflows ----------------------------------------------------------------


async def _run_smart(session: Session, emitter: ProgressEmitter) -> ReconcileResult:
    info = await session.info()
    if not info.client_root:
        return ReconcileResult(
            success=False,
            message="Workspace root is unknown; use full reconcile instead",
            mode=ReconcileMode.SMART,
        )
    globs = await asyncio.to_thread(smart_globs, info.client_root)
    await emitter.advance(Scanning(), f"Scanning {len(globs)} location(s)")

    scanner, result = await _stream_reconcile(session, ["-m", *_RECONCILE_FLAGS, *globs], emitter)
    error = scanner.error_text(result)
    if error:
        return ReconcileResult(success=False, message=error, mode=ReconcileMode.SMART, files=scanner.files)

    count = len(scanner.files)
    logger.info("Smart reconcile opened %d file(s)", count)
    return ReconcileResult(
        success=True,
        message=f"Reconciled {count} file(s)" if count else "Nothing to reconcile",
        mode=ReconcileMode.SMART,
        files=scanner.files,
    )


async def _run_full(session: Session, emitter: ProgressEmitter) -> ReconcileResult:
    settings = session.settings
    info = await session.info()
    scope = f"//{info.client_name}/..." if info.client_name else "//..."
    await emitter.advance(Scanning(), "Previewing workspace changes")

    preview, result = await _stream_reconcile(
        session, ["-n", *_RECONCILE_FLAGS, scope], emitter, preview=True,
    )
    error = preview.error_text(result)
    if error:
        return ReconcileResult(success=False, message=error, mode=ReconcileMode.FULL)

    candidates = list(preview.files)
    total = len(candidates)
    if total > settings.reconcile_limit:
        raise SafetyLimitExceeded(total, settings.reconcile_limit)
    if not candidates:
        return ReconcileResult(success=True, message="Nothing to reconcile", mode=ReconcileMode.FULL)

    opened: list[str] = []
    processed = 0
    # Batches run one after another to bound simultaneous opens on the server
    for batch in _batches(candidates, settings.reconcile_batch_size):
        batch_result = await session.execute(["reconcile", *_RECONCILE_FLAGS, *batch])
        checker = OutputScanner(ProgressEmitter(ReconcileMode.FULL))
        for line in batch_result.stdout.splitlines():
            await checker.feed(line)
        error = checker.error_text(batch_result)
        if error:
            return ReconcileResult(
                success=False, message=error, mode=ReconcileMode.FULL, files=opened,
            )
        for path in checker.files:
            if path not in opened:
                opened.append(path)
        processed += len(batch)
        await emitter.advance(
            Reconciling(completed=processed, total=total),
            f"Reconciled {processed}/{total}",
        )

    logger.info("Full reconcile opened %d file(s) of %d candidate(s)", len(opened), total)
    return ReconcileResult(
        success=True,
        message=f"Reconciled {len(opened)} file(s)",
        mode=ReconcileMode.FULL,
        files=opened,
    )


_WORKFLOWS = {
    ReconcileMode.SMART: _run_smart,
    ReconcileMode.FULL: _run_full,
}


async def reconcile(
    session: Session,
    mode: ReconcileMode | str = ReconcileMode.SMART,
    sink: ProgressSink | None = None,
) -> ReconcileResult:
    """Run a reconcile workflow, reporting progress to *sink*.

    Always returns a result and always finishes with one done event;
    no exception escapes once the workflow has started.

    Raises
    ------
    ValueError
        If *mode* is not a known reconcile mode.
    """
    mode = ReconcileMode(mode)
    emitter = ProgressEmitter(mode, sink)
    try:
        result = await _WORKFLOWS[mode](session, emitter)
    except SafetyLimitExceeded as exc:
        logger.warning("Full reconcile aborted: %s", exc)
        result = ReconcileResult(success=False, message=str(exc), mode=mode)
    except Exception as exc:
        logger.exception("Reconcile (%s) failed", mode.value)
        result = ReconcileResult(success=False, message=str(exc) or type(exc).__name__, mode=mode)

    count = len(result.files)
    await emitter.advance(Done(completed=count, total=count), result.message)
    return result


async def reconcile_smart(session: Session, sink: ProgressSink | None = None) -> ReconcileResult:
    return await reconcile(session, ReconcileMode.SMART, sink)


async def reconcile_full(session: Session, sink: ProgressSink | None = None) -> ReconcileResult:
    return await reconcile(session, ReconcileMode.FULL, sink)
