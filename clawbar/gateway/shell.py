"""External tool invocation with an augmented PATH.

GUI and launchd sessions start with a minimal PATH, so every tool the
supervisor runs gets the usual Node/Homebrew/pnpm locations prepended.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Optional, Sequence

logger = logging.getLogger("clawbar.shell")

_EXTRA_PATHS = (
    "/usr/local/bin",
    "/opt/homebrew/bin",
    str(Path.home() / ".local" / "share" / "pnpm"),
    str(Path.home() / ".nvm" / "versions" / "node"),
    "/usr/bin",
)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of an external tool run.

    ``output`` is None when the tool could not be executed at all, which
    callers must keep distinct from a tool that ran and printed nothing.
    """

    output: Optional[str]
    ok: bool
    returncode: Optional[int] = None

    @property
    def executed(self) -> bool:
        return self.returncode is not None


CommandRunner = Callable[..., Awaitable[CommandResult]]


def augmented_path(current: str | None = None) -> str:
    """Return PATH with the common tool locations prepended."""
    if current is None:
        current = os.environ.get("PATH", "/usr/bin:/bin")
    return ":".join(_EXTRA_PATHS) + ":" + current


def augmented_env() -> dict[str, str]:
    env = dict(os.environ)
    env["PATH"] = augmented_path(env.get("PATH"))
    return env


async def run_command(
    argv: Sequence[str],
    cwd: str | Path | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run *argv* to completion, merging stderr into stdout.

    Never raises for tool failures: a binary that is missing, fails to
    start or exceeds *timeout* yields ``CommandResult(None, False)``.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            cwd=str(cwd) if cwd else None,
            env=augmented_env(),
        )
    except OSError as exc:
        logger.debug("could not execute %s: %s", argv[0], exc)
        return CommandResult(output=None, ok=False)

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("%s timed out after %ss", argv[0], timeout)
        proc.kill()
        await proc.wait()
        return CommandResult(output=None, ok=False)

    output = stdout.decode(errors="replace").strip()
    return CommandResult(output=output, ok=proc.returncode == 0, returncode=proc.returncode)
