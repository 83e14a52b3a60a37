"""Lifecycle backends — one interface over Direct and Managed-service modes.

The controller picks a backend from the persisted :class:`LaunchMode` and
calls ``start`` / ``stop`` / ``restart`` without branching on the mode.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

from clawbar.gateway.errors import BackendError
from clawbar.gateway.paths import ResolvedPaths
from clawbar.gateway.process import ExitCallback, ProcessSupervisor, kill_pid
from clawbar.gateway.service import ServiceManager
from clawbar.gateway.status import StatusProbe

logger = logging.getLogger("clawbar.backends")


class LaunchMode(str, Enum):
    DIRECT = "direct"
    SERVICE = "service"

    @classmethod
    def parse(cls, raw: object) -> "LaunchMode":
        """Unknown or missing values read as Direct."""
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.DIRECT

    @property
    def label(self) -> str:
        return "launchd" if self is LaunchMode.SERVICE else "Direct"


async def wait_for_port_free(
    probe: StatusProbe,
    interval: float = 0.5,
    attempts: int = 20,
) -> bool:
    """Poll until nothing listens on the port; False after *attempts* checks."""
    for attempt in range(attempts):
        if await probe.port_available():
            logger.debug("port available after %d checks", attempt + 1)
            return True
        await asyncio.sleep(interval)
    return await probe.port_available()


class GatewayBackend(ABC):
    """Start/stop/restart semantics shared by both launch modes.

    ``settle_delay`` is how long the controller waits after a successful
    start before refreshing, to give the gateway time to bind its port.
    """

    settle_delay: float = 1.5

    @property
    @abstractmethod
    def installed(self) -> bool:
        """Whether the backend has anything persistent set up."""

    @abstractmethod
    async def start(self, paths: ResolvedPaths) -> None:
        """Bring the gateway up; raise on failure."""

    @abstractmethod
    async def stop(self, pid: Optional[int]) -> None:
        """Bring the gateway down.  *pid* is the last probed port holder."""

    @abstractmethod
    async def restart(self, paths: ResolvedPaths, pid: Optional[int]) -> None:
        """Stop (if needed) and start again."""


class DirectBackend(GatewayBackend):
    """clawbar spawns and owns the gateway process itself."""

    settle_delay = 1.5

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        probe: StatusProbe,
        on_exit: Optional[ExitCallback] = None,
        port_interval: float = 0.5,
        port_timeout: float = 10.0,
    ) -> None:
        self._supervisor = supervisor
        self._probe = probe
        self._on_exit = on_exit
        self._port_interval = port_interval
        self._port_timeout = port_timeout

    @property
    def installed(self) -> bool:
        return False

    @property
    def supervisor(self) -> ProcessSupervisor:
        return self._supervisor

    async def start(self, paths: ResolvedPaths) -> None:
        try:
            await self._supervisor.spawn(paths, on_exit=self._on_exit)
        except OSError as exc:
            raise BackendError(f"Could not start gateway: {exc}") from exc

    async def stop(self, pid: Optional[int]) -> None:
        await self._supervisor.terminate(graceful=True, fallback_pid=pid)

    async def restart(self, paths: ResolvedPaths, pid: Optional[int]) -> None:
        owned = self._supervisor.handle is not None
        await self._supervisor.terminate(graceful=True, fallback_pid=pid)
        if not owned and pid is not None:
            await asyncio.sleep(self._port_interval)

        logger.debug("waiting for port to become available")
        attempts = max(1, int(self._port_timeout / self._port_interval))
        if not await wait_for_port_free(self._probe, self._port_interval, attempts):
            raise BackendError("Port did not become available in time")
        await self.start(paths)


class ManagedServiceBackend(GatewayBackend):
    """launchd owns the gateway; clawbar only installs and kicks it.

    Until the agent is installed, stop/restart fall back to the direct
    backend so a gateway started some other way can still be controlled.
    """

    settle_delay = 2.0

    def __init__(self, service: ServiceManager, fallback: DirectBackend) -> None:
        self._service = service
        self._fallback = fallback

    @property
    def installed(self) -> bool:
        return self._service.is_installed()

    @property
    def service(self) -> ServiceManager:
        return self._service

    async def _ensure_loaded(self) -> None:
        # a bootout leaves the plist on disk but unknown to launchd
        if not await self._service.is_loaded():
            logger.info("service descriptor present but not loaded, bootstrapping")
            await self._service.load()

    async def start(self, paths: ResolvedPaths) -> None:
        if not self.installed:
            await self._service.install(paths)
            return
        await self._ensure_loaded()
        if not await self._service.kickstart(force_restart=True):
            raise BackendError("launchctl kickstart failed")

    async def stop(self, pid: Optional[int]) -> None:
        if not self.installed:
            await self._fallback.stop(pid)
            return
        await self._service.stop()
        # bootout can leave a detached gateway holding the port
        if pid is not None:
            kill_pid(pid)

    async def restart(self, paths: ResolvedPaths, pid: Optional[int]) -> None:
        if not self.installed:
            await self._fallback.restart(paths, pid)
            return
        await self._ensure_loaded()
        if not await self._service.kickstart(force_restart=True):
            raise BackendError("launchctl kickstart failed")
