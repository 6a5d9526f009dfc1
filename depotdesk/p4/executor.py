"""Command executor — run the version-control tool as an asyncio subprocess.

Arguments always travel as a discrete vector; no shell is involved, so
user-controlled path fragments are never reinterpreted.
"""

from __future__ import annotations

import asyncio
import codecs
import inspect
import logging
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from depotdesk.config import DEFAULT_P4_BIN

logger = logging.getLogger(__name__)

LineCallback = Callable[[str], "Awaitable[None] | None"]

_LINE_BREAK = re.compile(r"\r\n|\r|\n")
_READ_SIZE = 4096


class ExternalToolError(Exception):
    """Raised when the tool exits non-zero without producing any output."""

    def __init__(
        self,
        message: str,
        *,
        command: Sequence[str] = (),
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = tuple(command)
        self.returncode = returncode
        self.stderr = stderr


@dataclass(frozen=True)
class CommandInvocation:
    """One call of the tool.  ``client`` is injected as a leading ``-c`` flag."""

    args: tuple[str, ...]
    stdin: str | None = None
    client: str | None = None

    def argv(self, p4_bin: str = DEFAULT_P4_BIN) -> list[str]:
        prefix = ["-c", self.client] if self.client else []
        return [p4_bin, *prefix, *self.args]


@dataclass(frozen=True)
class CommandResult:
    stdout: str
    stderr: str = ""
    returncode: int = 0

    @property
    def usable(self) -> bool:
        """Output on the normal channel is usable even alongside a non-zero exit."""
        return self.returncode == 0 or bool(self.stdout)


class LineBuffer:
    """Accumulate decoded chunks and hand back complete lines.

    ``\\r`` alone counts as a line break because progress indicators
    rewrite the current terminal line with it.
    """

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: str) -> list[str]:
        data = self._pending + chunk
        hold_cr = data.endswith("\r")
        if hold_cr:
            data = data[:-1]
        parts = _LINE_BREAK.split(data)
        self._pending = parts.pop() + ("\r" if hold_cr else "")
        return parts

    def flush(self) -> list[str]:
        rest = self._pending.rstrip("\r")
        self._pending = ""
        return [rest] if rest else []


async def _notify(callback: LineCallback | None, line: str) -> None:
    if callback is None:
        return
    outcome = callback(line)
    if inspect.isawaitable(outcome):
        await outcome


async def _pump(
    reader: asyncio.StreamReader,
    callback: LineCallback | None,
    collected: list[str],
) -> None:
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = LineBuffer()
    while True:
        chunk = await reader.read(_READ_SIZE)
        if not chunk:
            break
        text = decoder.decode(chunk)
        collected.append(text)
        for line in buffer.feed(text):
            await _notify(callback, line)
    tail = decoder.decode(b"", final=True)
    if tail:
        collected.append(tail)
    for line in buffer.feed(tail) + buffer.flush():
        await _notify(callback, line)


@dataclass
class P4Executor:
    """Spawn the tool and collect its output.

    Parameters
    ----------
    p4_bin:
        Executable name or path.
    cwd:
        Working directory for every spawned process.
    env:
        Extra environment; ``None`` inherits the parent environment.
    """

    p4_bin: str = DEFAULT_P4_BIN
    cwd: str | Path | None = None
    env: Mapping[str, str] | None = field(default=None, repr=False)

    async def _spawn(self, argv: list[str], with_stdin: bool) -> asyncio.subprocess.Process:
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.cwd,
                env=dict(self.env) if self.env is not None else None,
                stdin=asyncio.subprocess.PIPE if with_stdin else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise ExternalToolError(
                f"could not start {argv[0]}: {exc}", command=argv,
            ) from exc
        if proc.stdout is None or proc.stderr is None:
            proc.kill()
            raise ExternalToolError(f"no output pipes for {argv[0]}", command=argv)
        return proc

    async def execute(self, invocation: CommandInvocation) -> CommandResult:
        """Run *invocation* to completion and return the raw result."""
        argv = invocation.argv(self.p4_bin)
        logger.debug("exec %s (cwd=%s)", " ".join(argv), self.cwd)
        proc = await self._spawn(argv, invocation.stdin is not None)

        payload = invocation.stdin.encode("utf-8") if invocation.stdin is not None else None
        # communicate() writes and closes stdin before it waits on the pipes
        stdout, stderr = await proc.communicate(payload)
        return CommandResult(
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            returncode=proc.returncode if proc.returncode is not None else -1,
        )

    async def run(
        self,
        args: Sequence[str],
        stdin: str | None = None,
        *,
        client: str | None = None,
    ) -> str:
        """Run the tool and return its standard output.

        Raises
        ------
        ExternalToolError
            If the exit code is non-zero and nothing was written to stdout.
        """
        invocation = CommandInvocation(args=tuple(args), stdin=stdin, client=client)
        result = await self.execute(invocation)
        if not result.usable:
            argv = invocation.argv(self.p4_bin)
            raise ExternalToolError(
                result.stderr.strip() or f"command failed with code {result.returncode}",
                command=argv,
                returncode=result.returncode,
                stderr=result.stderr,
            )
        return result.stdout

    async def stream(
        self,
        invocation: CommandInvocation,
        on_stdout: LineCallback | None = None,
        on_stderr: LineCallback | None = None,
    ) -> CommandResult:
        """Run *invocation*, delivering each complete output line as it arrives."""
        argv = invocation.argv(self.p4_bin)
        logger.debug("stream %s (cwd=%s)", " ".join(argv), self.cwd)
        proc = await self._spawn(argv, invocation.stdin is not None)

        if invocation.stdin is not None and proc.stdin is not None:
            proc.stdin.write(invocation.stdin.encode("utf-8"))
            await proc.stdin.drain()
            proc.stdin.close()

        out_parts: list[str] = []
        err_parts: list[str] = []
        await asyncio.gather(
            _pump(proc.stdout, on_stdout, out_parts),
            _pump(proc.stderr, on_stderr, err_parts),
        )
        returncode = await proc.wait()
        return CommandResult(
            stdout="".join(out_parts),
            stderr="".join(err_parts),
            returncode=returncode,
        )
