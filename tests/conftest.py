"""Shared fakes for the gateway tests."""

from __future__ import annotations

from typing import Callable, Optional, Sequence

import pytest

from clawbar.gateway.notify import Notifier
from clawbar.gateway.shell import CommandResult
from clawbar.gateway.status import GatewayStatus, ProbeResult


def ok(output: str = "") -> CommandResult:
    return CommandResult(output=output, ok=True, returncode=0)


def failed(output: str = "", returncode: int = 1) -> CommandResult:
    return CommandResult(output=output, ok=False, returncode=returncode)


NOT_EXECUTED = CommandResult(output=None, ok=False)


class FakeRunner:
    """Stands in for ``run_command``; records every argv it is given.

    ``responses`` maps an argv prefix (tuple) to a result; the longest
    matching prefix wins.  Unmatched commands succeed with no output.
    """

    def __init__(self, responses: dict | None = None) -> None:
        self.responses: dict[tuple, CommandResult] = dict(responses or {})
        self.calls: list[list[str]] = []
        self.kwargs: list[dict] = []

    async def __call__(self, argv: Sequence[str], **kwargs) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        self.kwargs.append(kwargs)
        best: Optional[tuple] = None
        for prefix in self.responses:
            if tuple(argv[: len(prefix)]) == prefix and (best is None or len(prefix) > len(best)):
                best = prefix
        if best is None:
            return ok()
        return self.responses[best]

    def commands(self, program: str) -> list[list[str]]:
        return [argv for argv in self.calls if argv[0] == program]


class RecordingNotifier(Notifier):
    """Keeps every delivered (title, body) pair."""

    def __init__(self, enabled: Callable[[], bool] | bool = True) -> None:
        super().__init__(enabled)
        self.messages: list[tuple[str, str]] = []

    def deliver(self, title: str, body: str) -> None:
        self.messages.append((title, body))

    @property
    def titles(self) -> list[str]:
        return [title for title, _ in self.messages]


class FakeProbe:
    """Port probe whose answer the test sets directly."""

    def __init__(self, result: ProbeResult | None = None, port: int = 18789) -> None:
        self.result = result or ProbeResult.stopped()
        self.port = port
        self.calls = 0

    async def probe(self) -> ProbeResult:
        self.calls += 1
        return self.result

    async def port_available(self) -> bool:
        result = await self.probe()
        return result.status != GatewayStatus.RUNNING


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
