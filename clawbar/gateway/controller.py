"""Gateway controller — the single owner of supervisor state.

Everything the presentation layer sees goes through here: it reads the
published :class:`GatewayState` snapshot and issues fire-and-forget
commands.  All mutation happens on one event loop; commands and the
update workflow run as tracked tasks and rejoin only to publish.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Coroutine, Optional

from clawbar.config.config import Config
from clawbar.config.defaults import GATEWAY_HOST, SESSIONS_FILE
from clawbar.gateway.backends import (
    DirectBackend,
    GatewayBackend,
    LaunchMode,
    ManagedServiceBackend,
)
from clawbar.gateway.errors import (
    BackendError,
    GatewayError,
    PathResolutionError,
    ServiceError,
)
from clawbar.gateway.notify import ConsoleNotifier, Notifier
from clawbar.gateway.paths import PathResolver, ResolvedPaths, validate_override, working_directory
from clawbar.gateway.polling import PollingScheduler, PollSession
from clawbar.gateway.process import ProcessHandle, ProcessSupervisor
from clawbar.gateway.service import ServiceManager
from clawbar.gateway.status import (
    GatewayStatus,
    StatusProbe,
    check_health,
    read_session_count,
)
from clawbar.gateway.updater import UpdateOrchestrator

logger = logging.getLogger("clawbar.controller")

STOP_SETTLE = 1.0
UNINSTALL_SETTLE = 1.0


@dataclass(frozen=True, slots=True)
class GatewayState:
    """Snapshot of everything the presentation layer displays."""

    status: GatewayStatus = GatewayStatus.UNKNOWN
    pid: Optional[int] = None
    connected: bool = False
    active_sessions: int = 0
    last_activity: Optional[datetime] = None
    is_refreshing: bool = False
    service_installed: bool = False
    is_updating: bool = False
    update_status: str = ""
    runtime_path: Optional[Path] = None
    artifact_path: Optional[Path] = None
    launch_mode: LaunchMode = LaunchMode.DIRECT
    override_path: Optional[Path] = None


Subscriber = Callable[[GatewayState], None]


class GatewayController:
    """Owns status fields and dispatches commands to the configured backend."""

    def __init__(
        self,
        config: Config,
        probe: StatusProbe | None = None,
        resolver: PathResolver | None = None,
        supervisor: ProcessSupervisor | None = None,
        service: ServiceManager | None = None,
        notifier: Notifier | None = None,
        health: Callable[[], Awaitable[bool]] | None = None,
        sessions_path: Path = SESSIONS_FILE,
        scheduler_options: dict | None = None,
        update_options: dict | None = None,
        settle_delay: float | None = None,
    ) -> None:
        self._config = config
        self._probe = probe or StatusProbe()
        self._resolver = resolver or PathResolver()
        self._supervisor = supervisor or ProcessSupervisor()
        self._service = service or ServiceManager()
        self._notifier = notifier or ConsoleNotifier(lambda: self._config.notifications_enabled)
        self._health = health or (lambda: check_health(port=self._probe.port))
        self._sessions_path = sessions_path
        self._settle_override = settle_delay

        direct = DirectBackend(self._supervisor, self._probe, on_exit=self._on_process_exit)
        self._backends: dict[LaunchMode, GatewayBackend] = {
            LaunchMode.DIRECT: direct,
            LaunchMode.SERVICE: ManagedServiceBackend(self._service, fallback=direct),
        }

        self._scheduler = PollingScheduler(self.refresh, **(scheduler_options or {}))
        self._updater = UpdateOrchestrator(
            probe=self._probe,
            resolver=self._resolver,
            notifier=self._notifier,
            stop=self._stop_for_update,
            start=self._start_for_update,
            progress=lambda text: self._update(update_status=text),
            **(update_options or {}),
        )

        self._state = GatewayState(
            launch_mode=self.launch_mode,
            override_path=config.clawdbot_path,
        )
        self._previous_status = GatewayStatus.UNKNOWN
        self._unexpected_exit: Optional[int] = None
        self._subscribers: list[Subscriber] = []
        self._tasks: set[asyncio.Task] = set()
        self._refresh_lock = asyncio.Lock()

    # ── Factory / lifecycle ─────────────────────────────────────────

    @classmethod
    async def create(cls, config_path: Path | None = None, **kwargs) -> "GatewayController":
        cfg = await Config.load(config_path)
        return cls(cfg, **kwargs)

    async def open(self, poll: bool = True) -> None:
        """Detect paths, take a first reading and (optionally) start polling."""
        self._supervisor.log_path.parent.mkdir(parents=True, exist_ok=True)
        await self.detect_paths()
        await self.refresh()
        if poll:
            self._scheduler.start()

    async def close(self) -> None:
        await self._scheduler.stop()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)

    # ── Published state ─────────────────────────────────────────────

    @property
    def state(self) -> GatewayState:
        return self._state

    @property
    def config(self) -> Config:
        return self._config

    @property
    def scheduler(self) -> PollingScheduler:
        return self._scheduler

    @property
    def launch_mode(self) -> LaunchMode:
        return LaunchMode.parse(self._config.launch_mode)

    @property
    def backend(self) -> GatewayBackend:
        return self._backends[self.launch_mode]

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Call *callback* with every new snapshot; returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _update(self, **changes) -> None:
        new_state = dataclasses.replace(self._state, **changes)
        if new_state == self._state:
            return
        self._state = new_state
        for callback in list(self._subscribers):
            try:
                callback(new_state)
            except Exception as exc:
                logger.error("subscriber error: %s", exc)

    # ── Refresh cycle ───────────────────────────────────────────────

    async def refresh(self) -> GatewayStatus:
        """Probe the port, reconcile state, notify on transitions."""
        async with self._refresh_lock:
            self._update(is_refreshing=True)
            try:
                result = await self._probe.probe()
                self._update(
                    status=result.status,
                    pid=result.pid,
                    service_installed=self._service.is_installed(),
                )
                self._check_for_status_change(result.status)

                if result.status == GatewayStatus.RUNNING:
                    await self._fetch_details()
                else:
                    self._update(connected=False, active_sessions=0)
            finally:
                self._update(is_refreshing=False)
            return result.status

    async def _fetch_details(self) -> None:
        sessions = await read_session_count(self._sessions_path)
        connected = await self._health()
        changes: dict = {"active_sessions": sessions, "connected": connected}
        if connected:
            changes["last_activity"] = datetime.now()
        self._update(**changes)

    def _check_for_status_change(self, status: GatewayStatus) -> None:
        previous, self._previous_status = self._previous_status, status
        if previous == GatewayStatus.RUNNING and status == GatewayStatus.STOPPED:
            if self._unexpected_exit is not None:
                body = f"Clawdbot gateway stopped unexpectedly (exit code {self._unexpected_exit})."
            else:
                body = "Clawdbot gateway has stopped running."
            self._notifier.notify("Gateway Stopped", body)
        elif previous == GatewayStatus.STOPPED and status == GatewayStatus.RUNNING:
            self._notifier.notify("Gateway Started", "Clawdbot gateway is now running.")
        if status == GatewayStatus.STOPPED:
            self._unexpected_exit = None

    def _on_process_exit(self, handle: ProcessHandle, returncode: Optional[int], expected: bool) -> None:
        logger.debug("process %d exited (%s), expected=%s", handle.pid, returncode, expected)
        if not expected:
            self._unexpected_exit = returncode
        self._spawn(self.refresh())

    # ── Paths ───────────────────────────────────────────────────────

    async def detect_paths(self) -> ResolvedPaths:
        override = self._config.clawdbot_path
        paths = await asyncio.to_thread(self._resolver.resolve, override)
        self._update(
            runtime_path=paths.runtime,
            artifact_path=paths.artifact,
            override_path=override,
        )
        return paths

    def validate_override(self, path: str | Path) -> bool:
        return validate_override(path)

    def project_directory(self) -> Optional[Path]:
        """Source checkout for updates: the override, else derived from the artifact."""
        override = self._config.clawdbot_path
        if override is not None:
            return override
        artifact = self._state.artifact_path
        if artifact is None:
            return None
        return working_directory(artifact)

    @property
    def log_path(self) -> Path:
        return self._supervisor.log_path

    @property
    def web_ui_url(self) -> str:
        return f"http://{GATEWAY_HOST}:{self._probe.port}"

    # ── Task plumbing ───────────────────────────────────────────────

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.create_task(self._guard(coro))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @staticmethod
    async def _guard(coro: Coroutine) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("background command failed")

    async def drain(self) -> None:
        """Wait until every outstanding command task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def settle(self) -> GatewayState:
        """Wait for commands and the adaptive poll session to finish."""
        await self.drain()
        await self._scheduler.wait_session()
        await self.drain()
        return self._state

    def _settle(self, default: float) -> float:
        return default if self._settle_override is None else self._settle_override

    # ── Commands (fire-and-forget) ──────────────────────────────────

    def start(self) -> asyncio.Task:
        return self._spawn(self._start())

    def stop(self) -> asyncio.Task:
        return self._spawn(self._stop())

    def restart(self) -> asyncio.Task:
        return self._spawn(self._restart())

    def request_refresh(self) -> asyncio.Task:
        return self._spawn(self.refresh())

    def install_service(self) -> asyncio.Task:
        return self._spawn(self._install_service())

    def uninstall_service(self) -> asyncio.Task:
        return self._spawn(self._uninstall_service())

    def set_launch_mode(self, mode: LaunchMode | str) -> asyncio.Task:
        if not isinstance(mode, LaunchMode):
            mode = LaunchMode.parse(mode)
        return self._spawn(self._set_launch_mode(mode))

    def set_entry_artifact_override(self, path: str | Path | None) -> asyncio.Task:
        return self._spawn(self._set_override(path))

    def update_and_rebuild(self) -> Optional[asyncio.Task]:
        if self._state.is_updating or self._updater.busy:
            logger.info("update already running")
            return None
        project_dir = self.project_directory()
        if project_dir is None:
            self._notifier.notify("Update Failed", "Could not determine clawdbot directory")
            return None
        self._update(is_updating=True)
        return self._spawn(self._update_and_rebuild(project_dir))

    # ── Command bodies ──────────────────────────────────────────────

    async def _start(self) -> None:
        if self._state.status == GatewayStatus.RUNNING:
            logger.debug("start ignored, gateway already running")
            return
        session = self._scheduler.arm(GatewayStatus.RUNNING)
        was_installed = self._service.is_installed()
        try:
            backend = await self._launch(was_installed)
        except ServiceError as exc:
            self._abandon(session)
            title = "Gateway Start Failed" if was_installed else "Installation Failed"
            self._notifier.notify(title, str(exc))
            return
        except (PathResolutionError, BackendError) as exc:
            logger.error("gateway start failed: %s", exc)
            self._abandon(session)
            self._notifier.notify("Gateway Start Failed", str(exc))
            return
        await asyncio.sleep(self._settle(backend.settle_delay))
        await self.refresh()

    async def _launch(self, was_installed: bool) -> GatewayBackend:
        backend = self.backend
        paths = await self.detect_paths()
        await backend.start(paths)
        if self.launch_mode == LaunchMode.SERVICE and not was_installed:
            self._notifier.notify("Service Installed", "Gateway launchd service is now installed and running")
        return backend

    def _abandon(self, session: PollSession) -> None:
        """Cancel *session* unless a later command has already replaced it."""
        if self._scheduler.session is session:
            self._scheduler.cancel()

    async def _stop(self) -> None:
        self._scheduler.arm(GatewayStatus.STOPPED)
        try:
            await self.backend.stop(self._state.pid)
        except GatewayError as exc:
            logger.error("gateway stop failed: %s", exc)
            self._notifier.notify("Gateway Stop Failed", str(exc))
        await asyncio.sleep(self._settle(STOP_SETTLE))
        await self.refresh()

    async def _restart(self) -> None:
        session = self._scheduler.arm(GatewayStatus.RUNNING)
        backend = self.backend
        paths = await self.detect_paths()
        try:
            await backend.restart(paths, self._state.pid)
        except GatewayError as exc:
            logger.error("gateway restart failed: %s", exc)
            self._abandon(session)
            self._notifier.notify("Restart Failed", str(exc))
            return
        await asyncio.sleep(self._settle(backend.settle_delay))
        await self.refresh()

    async def _install_service(self) -> None:
        paths = await self.detect_paths()
        try:
            await self._service.install(paths)
        except GatewayError as exc:
            logger.error("service install failed: %s", exc)
            self._notifier.notify("Installation Failed", str(exc))
            return
        self._update(service_installed=True)
        self._notifier.notify("Service Installed", "Gateway launchd service is now installed and running")
        self._scheduler.arm(GatewayStatus.RUNNING)
        await asyncio.sleep(self._settle(ManagedServiceBackend.settle_delay))
        await self.refresh()

    async def _uninstall_service(self) -> None:
        await self._service.uninstall()
        self._update(service_installed=False)
        self._notifier.notify("Service Uninstalled", "Gateway launchd service has been removed")
        await asyncio.sleep(self._settle(UNINSTALL_SETTLE))
        await self.refresh()

    async def _set_launch_mode(self, mode: LaunchMode) -> None:
        self._config.set("gateway.launch_mode", mode.value)
        await self._config.save()
        self._update(launch_mode=mode)
        logger.info("launch mode set to %s", mode.value)

    async def _set_override(self, path: str | Path | None) -> None:
        raw = str(path).strip() if path else ""
        self._config.set("gateway.clawdbot_path", raw)
        await self._config.save()
        self._resolver.invalidate()
        paths = await self.detect_paths()
        logger.info("clawdbot path set to %r, artifact now %s", raw, paths.artifact)

    async def _update_and_rebuild(self, project_dir: Path) -> None:
        try:
            await self._updater.run(project_dir)
        finally:
            self._update(is_updating=False, update_status="")
        await self.refresh()

    async def _stop_for_update(self, pid: Optional[int]) -> None:
        try:
            await self.backend.stop(pid)
        except GatewayError as exc:
            logger.warning("update: stop failed: %s", exc)

    async def _start_for_update(self) -> None:
        """Bring the gateway back after an update; failures propagate."""
        await self.refresh()
        if self._state.status == GatewayStatus.RUNNING:
            return
        session = self._scheduler.arm(GatewayStatus.RUNNING)
        try:
            await self._launch(self._service.is_installed())
        except GatewayError:
            self._abandon(session)
            raise
