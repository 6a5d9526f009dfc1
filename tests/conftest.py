"""Shared fixtures: a scripted stand-in for the command-line tool."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Sequence

import pytest

from depotdesk.config import Settings
from depotdesk.p4.executor import (
    CommandInvocation,
    CommandResult,
    LineBuffer,
    P4Executor,
)
from depotdesk.p4.session import Session

INFO_TEXT = """User name: alice
Client name: alice-main
Client host: build01
Client root: /work/alice
Server address: ssl:perforce.example.com:1666
Server version: P4D/LINUX26X86_64/2023.1/2468153 (2023/06/05)
"""


class FakeExecutor(P4Executor):
    """Replays canned results keyed by the argument tuple (without ``-c``).

    A key may be registered with :meth:`reply`, or as a prefix with
    :meth:`reply_prefix`.  Unregistered calls exit 1 with no output.
    """

    def __init__(self) -> None:
        super().__init__(p4_bin="p4")
        self.replies: dict[tuple[str, ...], CommandResult] = {}
        self.prefixes: list[tuple[tuple[str, ...], CommandResult]] = []
        self.calls: list[CommandInvocation] = []
        self.delay = 0.0

    def reply(self, args: Sequence[str], stdout: str = "", stderr: str = "", returncode: int = 0) -> None:
        self.replies[tuple(args)] = CommandResult(stdout, stderr, returncode)

    def reply_prefix(self, args: Sequence[str], stdout: str = "", stderr: str = "", returncode: int = 0) -> None:
        self.prefixes.append((tuple(args), CommandResult(stdout, stderr, returncode)))

    def fail(self, args: Sequence[str], stderr: str) -> None:
        self.reply(args, "", stderr, 1)

    def lookup(self, args: tuple[str, ...]) -> CommandResult:
        if args in self.replies:
            return self.replies[args]
        for prefix, result in self.prefixes:
            if args[:len(prefix)] == prefix:
                return result
        return CommandResult("", f"unexpected call: {' '.join(args)}", 1)

    def called(self, *head: str) -> list[tuple[str, ...]]:
        return [c.args for c in self.calls if c.args[:len(head)] == head]

    async def execute(self, invocation: CommandInvocation) -> CommandResult:
        self.calls.append(invocation)
        return self.lookup(invocation.args)

    async def stream(self, invocation, on_stdout=None, on_stderr=None) -> CommandResult:
        self.calls.append(invocation)
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.lookup(invocation.args)
        for text, callback in ((result.stdout, on_stdout), (result.stderr, on_stderr)):
            if callback is None:
                continue
            buffer = LineBuffer()
            for line in buffer.feed(text) + buffer.flush():
                outcome = callback(line)
                if inspect.isawaitable(outcome):
                    await outcome
        return result


@pytest.fixture()
def fake() -> FakeExecutor:
    executor = FakeExecutor()
    executor.reply(["info"], INFO_TEXT)
    return executor


@pytest.fixture()
def settings() -> Settings:
    return Settings(heartbeat_seconds=30.0)


@pytest.fixture()
def session(fake: FakeExecutor, settings: Settings) -> Session:
    return Session(fake, "alice-main", settings)


