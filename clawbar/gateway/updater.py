"""Update & rebuild — stop, sync sources, build, start.

Each stage gates the next.  Source-control problems are logged and the
update carries on; a missing package manager or a failed build aborts
before the gateway is started again, leaving it stopped.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

from clawbar.gateway.backends import wait_for_port_free
from clawbar.gateway.errors import GatewayError
from clawbar.gateway.notify import Notifier
from clawbar.gateway.paths import PathResolver
from clawbar.gateway.shell import CommandRunner, run_command
from clawbar.gateway.status import GatewayStatus, StatusProbe

logger = logging.getLogger("clawbar.update")

StopFn = Callable[[Optional[int]], Awaitable[None]]
# raises GatewayError when the gateway could not be brought back
StartFn = Callable[[], Awaitable[None]]
ProgressFn = Callable[[str], None]

MAINLINE = "main"
REMOTE = "origin"
BUILD_TIMEOUT = 600.0


class UpdateOrchestrator:
    """Runs one update at a time; a second request while busy is ignored."""

    def __init__(
        self,
        probe: StatusProbe,
        resolver: PathResolver,
        notifier: Notifier,
        stop: StopFn,
        start: StartFn,
        progress: ProgressFn | None = None,
        run: CommandRunner = run_command,
        port_interval: float = 0.5,
        port_attempts: int = 20,
        settle_delay: float = 2.0,
    ) -> None:
        self._probe = probe
        self._resolver = resolver
        self._notifier = notifier
        self._stop = stop
        self._start = start
        self._progress = progress or (lambda _text: None)
        self._run = run
        self._port_interval = port_interval
        self._port_attempts = port_attempts
        self._settle_delay = settle_delay
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def run(self, project_dir: Path) -> bool:
        """Run the whole workflow in *project_dir*; True when the gateway was restarted."""
        if self._busy:
            logger.info("update already in progress, ignoring request")
            return False
        self._busy = True
        try:
            return await self._run_stages(project_dir)
        finally:
            self._progress("")
            self._busy = False

    async def _run_stages(self, project_dir: Path) -> bool:
        self._progress("Stopping gateway...")
        await self._stop_gateway()

        self._progress("Pulling latest changes...")
        await self._sync_sources(project_dir)

        self._progress("Building...")
        if not await self._build(project_dir):
            return False

        self._progress("Starting gateway...")
        logger.info("update: starting gateway")
        try:
            await self._start()
        except GatewayError as exc:
            logger.error("update: gateway did not start: %s", exc)
            self._notifier.notify("Update Failed", f"Gateway did not start: {exc}")
            return False
        await asyncio.sleep(self._settle_delay)
        self._notifier.notify("Update Complete", "Clawdbot has been updated and restarted")
        return True

    async def _stop_gateway(self) -> None:
        current = await self._probe.probe()
        if current.status != GatewayStatus.RUNNING:
            logger.info("update: gateway not running, nothing to stop")
            return

        logger.info("update: stopping gateway (pid %s)", current.pid)
        await self._stop(current.pid)
        freed = await wait_for_port_free(self._probe, self._port_interval, self._port_attempts)
        if not freed:
            # the new gateway is launched with --force and takes the port over
            logger.warning("update: port %d still busy, continuing", self._probe.port)

    async def _sync_sources(self, project_dir: Path) -> None:
        logger.info("update: git operations in %s", project_dir)
        branch = await self._run(["git", "branch", "--show-current"], cwd=project_dir, timeout=30)
        current = (branch.output or "").strip() if branch.ok else ""
        logger.info("update: current branch is '%s'", current)

        if current == MAINLINE:
            result = await self._run(["git", "pull"], cwd=project_dir, timeout=120)
            step = "git pull"
        else:
            result = await self._run(["git", "fetch", REMOTE, MAINLINE], cwd=project_dir, timeout=120)
            step = "git fetch"

        if result.ok:
            logger.info("update: %s ok", step)
        else:
            logger.warning("update: %s failed: %s", step, result.output)

    async def _build(self, project_dir: Path) -> bool:
        pnpm = await asyncio.to_thread(self._resolver.resolve_package_manager)
        if pnpm is None:
            logger.error("update: pnpm not found")
            self._notifier.notify("Update Failed", "pnpm not found")
            return False

        logger.info("update: running pnpm build")
        result = await self._run([str(pnpm), "run", "build"], cwd=project_dir, timeout=BUILD_TIMEOUT)
        logger.debug("update: pnpm build output: %s", result.output)
        if not result.ok:
            logger.error("update: build failed (exit %s)", result.returncode)
            self._notifier.notify("Update Failed", "Build failed. Check logs for details.")
            return False
        return True
