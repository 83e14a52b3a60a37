"""Gateway liveness — port inspection, health check and session count.

The well-known port is the single source of truth: whichever process is
listening on it *is* the gateway.  Nothing here caches across calls.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

import aiofiles
import aiohttp

from clawbar.config.defaults import GATEWAY_HOST, GATEWAY_PORT, SESSIONS_FILE
from clawbar.gateway.shell import CommandRunner, run_command

logger = logging.getLogger("clawbar.probe")

HEALTH_TIMEOUT = 2.0


class GatewayStatus(str, Enum):
    RUNNING = "Running"
    STOPPED = "Stopped"
    UNKNOWN = "Unknown"


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """A status together with the PID holding the port (Running only)."""

    status: GatewayStatus
    pid: Optional[int] = None

    @classmethod
    def running(cls, pid: int) -> "ProbeResult":
        return cls(GatewayStatus.RUNNING, pid)

    @classmethod
    def stopped(cls) -> "ProbeResult":
        return cls(GatewayStatus.STOPPED)

    @classmethod
    def unknown(cls) -> "ProbeResult":
        return cls(GatewayStatus.UNKNOWN)


def parse_pids(output: str) -> list[int]:
    """Parse ``lsof -t`` output into distinct PIDs, in listed order."""
    pids: list[int] = []
    for line in output.splitlines():
        line = line.strip()
        if not line.isdigit():
            continue
        pid = int(line)
        if pid not in pids:
            pids.append(pid)
    return pids


class StatusProbe:
    """Inspects which process, if any, listens on the gateway port."""

    __slots__ = ("_port", "_run")

    def __init__(self, port: int = GATEWAY_PORT, run: CommandRunner = run_command) -> None:
        self._port = port
        self._run = run

    @property
    def port(self) -> int:
        return self._port

    async def probe(self) -> ProbeResult:
        """Return Running(pid), Stopped, or Unknown if ``lsof`` can't run."""
        result = await self._run(
            ["lsof", "-nP", f"-iTCP:{self._port}", "-sTCP:LISTEN", "-t"],
            timeout=5,
        )
        if not result.executed:
            logger.warning("port inspection failed, status unknown")
            return ProbeResult.unknown()

        pids = parse_pids(result.output or "") if result.ok else []
        if not pids:
            return ProbeResult.stopped()
        if len(pids) > 1:
            logger.debug("port %d held by several pids %s, using %d", self._port, pids, pids[0])
        return ProbeResult.running(pids[0])

    async def port_available(self) -> bool:
        """True unless a listener is confirmed on the port."""
        result = await self.probe()
        return result.status != GatewayStatus.RUNNING


async def check_health(
    host: str = GATEWAY_HOST,
    port: int = GATEWAY_PORT,
    timeout: float = HEALTH_TIMEOUT,
) -> bool:
    """``HEAD /`` on the gateway; True only for a 200 response."""
    url = f"http://{host}:{port}/"
    try:
        async with aiohttp.ClientSession() as session:
            async with session.head(
                url, timeout=aiohttp.ClientTimeout(total=timeout)
            ) as resp:
                return resp.status == 200
    except Exception as exc:
        logger.debug("health check failed: %s", exc)
        return False


async def read_session_count(path: Path = SESSIONS_FILE) -> int:
    """Number of top-level keys in the sessions file; 0 if absent or invalid."""
    if not path.exists():
        return 0
    try:
        async with aiofiles.open(path, "r") as f:
            raw = await f.read()
        data = json.loads(raw)
    except (OSError, ValueError):
        return 0
    return len(data) if isinstance(data, dict) else 0
