"""Managed-service mode — a per-user launchd agent that keeps the gateway alive.

The descriptor file under ``~/Library/LaunchAgents`` is the source of
truth for "installed"; whether launchd currently has it loaded is a
separate question.
"""

from __future__ import annotations

import logging
import os
import plistlib
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from clawbar.config.defaults import GATEWAY_LOG, GATEWAY_PORT, LAUNCH_AGENTS_DIR, LAUNCHD_LABEL
from clawbar.gateway.errors import ServiceError
from clawbar.gateway.paths import ResolvedPaths, working_directory
from clawbar.gateway.process import build_command
from clawbar.gateway.shell import CommandRunner, run_command

logger = logging.getLogger("clawbar.service")

_LAUNCHCTL = "launchctl"


@dataclass(frozen=True, slots=True)
class ServiceRegistration:
    """Contents of the launchd descriptor."""

    label: str
    program_arguments: list[str]
    working_directory: Path
    log_path: Path
    run_at_load: bool = True
    keep_alive: bool = True

    @classmethod
    def for_gateway(
        cls,
        paths: ResolvedPaths,
        label: str = LAUNCHD_LABEL,
        log_path: Path = GATEWAY_LOG,
        port: int = GATEWAY_PORT,
    ) -> "ServiceRegistration":
        argv = build_command(paths, port)
        return cls(
            label=label,
            program_arguments=argv,
            working_directory=working_directory(paths.artifact),
            log_path=log_path,
        )

    def to_plist(self) -> bytes:
        """Serialize as an XML property list; plistlib escapes string fields."""
        return plistlib.dumps(
            {
                "Label": self.label,
                "RunAtLoad": self.run_at_load,
                "KeepAlive": self.keep_alive,
                "ProgramArguments": list(self.program_arguments),
                "WorkingDirectory": str(self.working_directory),
                "StandardOutPath": str(self.log_path),
                "StandardErrorPath": str(self.log_path),
            },
            fmt=plistlib.FMT_XML,
        )

    @classmethod
    def from_plist(cls, raw: bytes) -> "ServiceRegistration":
        data = plistlib.loads(raw)
        return cls(
            label=data["Label"],
            program_arguments=list(data.get("ProgramArguments", [])),
            working_directory=Path(data.get("WorkingDirectory", "")),
            log_path=Path(data.get("StandardOutPath", "")),
            run_at_load=bool(data.get("RunAtLoad", False)),
            keep_alive=bool(data.get("KeepAlive", False)),
        )


class ServiceManager:
    """Installs, loads and kicks the gateway's launchd agent."""

    def __init__(
        self,
        label: str = LAUNCHD_LABEL,
        launch_agents_dir: Path = LAUNCH_AGENTS_DIR,
        log_path: Path = GATEWAY_LOG,
        port: int = GATEWAY_PORT,
        run: CommandRunner = run_command,
        uid: Callable[[], int] = os.getuid,
    ) -> None:
        self._label = label
        self._dir = launch_agents_dir
        self._log_path = log_path
        self._port = port
        self._run = run
        self._uid = uid

    # ── Locations ───────────────────────────────────────────────────

    @property
    def label(self) -> str:
        return self._label

    @property
    def plist_path(self) -> Path:
        return self._dir / f"{self._label}.plist"

    @property
    def domain(self) -> str:
        return f"gui/{self._uid()}"

    @property
    def service_target(self) -> str:
        return f"{self.domain}/{self._label}"

    # ── Queries ─────────────────────────────────────────────────────

    def is_installed(self) -> bool:
        return self.plist_path.exists()

    def registration(self) -> ServiceRegistration | None:
        """The descriptor currently on disk, if readable."""
        try:
            return ServiceRegistration.from_plist(self.plist_path.read_bytes())
        except (OSError, plistlib.InvalidFileException, KeyError, ValueError):
            return None

    async def is_loaded(self) -> bool:
        result = await self._run([_LAUNCHCTL, "print", self.service_target], timeout=10)
        return result.ok

    # ── Commands ────────────────────────────────────────────────────

    async def load(self) -> None:
        """Bootstrap the descriptor already on disk into the user domain."""
        result = await self._run(
            [_LAUNCHCTL, "bootstrap", self.domain, str(self.plist_path)], timeout=15
        )
        if not result.ok:
            logger.error("launchctl bootstrap failed: %s", result.output)
            raise ServiceError("Could not load launchd service")

    async def install(self, paths: ResolvedPaths) -> ServiceRegistration:
        """Write the descriptor, load it and force a (re)start.

        Raises a :class:`PathResolutionError` subclass for unresolved paths
        and :class:`ServiceError` when launchd refuses to load it; the
        descriptor is left on disk in that case.
        """
        registration = ServiceRegistration.for_gateway(
            paths, label=self._label, log_path=self._log_path, port=self._port
        )
        self._dir.mkdir(parents=True, exist_ok=True)
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self.plist_path.write_bytes(registration.to_plist())
        logger.info("wrote %s", self.plist_path)

        await self.load()
        if not await self.kickstart(force_restart=True):
            logger.warning("kickstart after install failed")
        return registration

    async def uninstall(self) -> None:
        """Unload (best-effort) and delete the descriptor."""
        result = await self._run([_LAUNCHCTL, "bootout", self.service_target], timeout=15)
        if not result.ok:
            logger.info("bootout before uninstall failed, removing anyway: %s", result.output)
        self.plist_path.unlink(missing_ok=True)
        logger.info("removed %s", self.plist_path)

    async def kickstart(self, force_restart: bool = True) -> bool:
        argv = [_LAUNCHCTL, "kickstart"]
        if force_restart:
            argv.append("-k")
        argv.append(self.service_target)
        result = await self._run(argv, timeout=15)
        if not result.ok:
            logger.error("launchctl kickstart failed: %s", result.output)
        return result.ok

    async def stop(self) -> bool:
        """Unload the agent, leaving the descriptor in place."""
        result = await self._run([_LAUNCHCTL, "bootout", self.service_target], timeout=15)
        logger.debug("launchctl bootout completed: ok=%s", result.ok)
        return result.ok
