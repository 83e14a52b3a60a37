"""Direct-mode process supervisor — spawn, observe and terminate the gateway.

The supervisor owns at most one child at a time.  The child is detached
into its own session so it outlives a short-lived CLI invocation; its
combined output goes to the gateway log, which is truncated on every
spawn.  A watcher task polls the child and fires a one-shot exit
callback, so exits nobody asked for still reach the controller.

When no owned child exists (e.g. clawbar itself was restarted while the
gateway kept running) termination falls back to signalling the PID that
the port probe found.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, Callable, Optional, Sequence

from clawbar.config.defaults import GATEWAY_LOG, GATEWAY_PORT
from clawbar.gateway.errors import ArtifactMissingError, RuntimeMissingError
from clawbar.gateway.paths import ResolvedPaths, is_script, working_directory
from clawbar.gateway.shell import augmented_env

logger = logging.getLogger("clawbar.process")

# (handle, returncode, expected); expected is False for exits nobody requested.
ExitCallback = Callable[["ProcessHandle", Optional[int], bool], None]


def gateway_arguments(port: int = GATEWAY_PORT) -> list[str]:
    return ["gateway", "--port", str(port), "--force"]


def build_command(
    paths: ResolvedPaths,
    port: int = GATEWAY_PORT,
    args: Sequence[str] | None = None,
) -> list[str]:
    """Program + arguments for launching the gateway with *paths*."""
    if paths.runtime is None:
        raise RuntimeMissingError()
    if paths.artifact is None:
        raise ArtifactMissingError()
    tail = list(args) if args is not None else gateway_arguments(port)
    if is_script(paths.artifact):
        return [str(paths.runtime), str(paths.artifact), *tail]
    return [str(paths.artifact), *tail]


@dataclass(eq=False)
class ProcessHandle:
    """A spawned gateway child owned by the supervisor."""

    process: subprocess.Popen
    log_file: IO[bytes]
    argv: list[str]
    cwd: Path
    on_exit: Optional[ExitCallback] = None
    stop_requested: bool = False
    watcher: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def running(self) -> bool:
        return self.process.poll() is None


class ProcessSupervisor:
    """Owns the directly spawned gateway process."""

    def __init__(
        self,
        log_path: Path = GATEWAY_LOG,
        port: int = GATEWAY_PORT,
        poll_interval: float = 0.1,
        stop_timeout: float = 5.0,
    ) -> None:
        self._log_path = log_path
        self._port = port
        self._poll_interval = poll_interval
        self._stop_timeout = stop_timeout
        self._handle: Optional[ProcessHandle] = None

    @property
    def handle(self) -> Optional[ProcessHandle]:
        return self._handle

    @property
    def log_path(self) -> Path:
        return self._log_path

    async def spawn(
        self,
        paths: ResolvedPaths,
        on_exit: Optional[ExitCallback] = None,
        args: Sequence[str] | None = None,
        work_dir: Path | None = None,
    ) -> ProcessHandle:
        """Launch the gateway and return its handle.

        Raises :class:`RuntimeMissingError` / :class:`ArtifactMissingError`
        when a path is unresolved, or ``OSError`` if the exec itself fails.
        """
        argv = build_command(paths, self._port, args)
        cwd = work_dir or working_directory(paths.artifact)

        logger.debug("executable: %s", argv[0])
        logger.debug("arguments: %s", argv[1:])
        logger.debug("working directory: %s", cwd)

        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        log_file = open(self._log_path, "wb")
        try:
            process = subprocess.Popen(
                argv,
                stdout=log_file,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                cwd=str(cwd),
                env=augmented_env(),
                start_new_session=True,
            )
        except OSError:
            log_file.close()
            raise

        handle = ProcessHandle(
            process=process,
            log_file=log_file,
            argv=argv,
            cwd=cwd,
            on_exit=on_exit,
        )
        handle.watcher = asyncio.create_task(self._watch(handle))
        self._handle = handle
        logger.info("gateway started (pid %d)", handle.pid)
        return handle

    async def terminate(
        self,
        graceful: bool = True,
        fallback_pid: Optional[int] = None,
    ) -> bool:
        """Stop the gateway.

        With an owned live handle: SIGTERM (or SIGKILL when not *graceful*)
        and wait for exit.  Otherwise signal *fallback_pid*, the PID found
        on the port.  Returns False when there was nothing to signal.
        """
        handle = self._handle
        self._handle = None

        if handle is not None and handle.running:
            handle.stop_requested = True
            logger.debug("terminating owned process %d", handle.pid)
            try:
                if graceful:
                    handle.process.terminate()
                else:
                    handle.process.kill()
            except ProcessLookupError:
                pass
            returncode = await self._wait(handle, self._stop_timeout)
            if returncode is None:
                logger.warning("process %d still running after %ss, killing", handle.pid, self._stop_timeout)
                handle.process.kill()
                returncode = await self._wait(handle)
            if handle.watcher is not None:
                await handle.watcher
            logger.info("gateway process %d exited with %s", handle.pid, returncode)
            return True

        if fallback_pid is not None:
            logger.debug("no managed process, signalling pid %d directly", fallback_pid)
            return kill_pid(fallback_pid, signal.SIGTERM if graceful else signal.SIGKILL)

        logger.debug("terminate: nothing to stop")
        return False

    async def _wait(self, handle: ProcessHandle, timeout: float | None = None) -> Optional[int]:
        """Poll *handle* until it exits; None if it is still running after *timeout*."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while True:
            returncode = handle.process.poll()
            if returncode is not None:
                return returncode
            if deadline is not None and loop.time() >= deadline:
                return None
            await asyncio.sleep(self._poll_interval)

    async def _watch(self, handle: ProcessHandle) -> None:
        try:
            returncode = await self._wait(handle)
        finally:
            handle.log_file.close()
        if self._handle is handle:
            self._handle = None
        logger.debug("process %d terminated with status %s", handle.pid, returncode)
        callback, handle.on_exit = handle.on_exit, None
        if callback is not None:
            callback(handle, returncode, handle.stop_requested)


def kill_pid(pid: int, sig: int = signal.SIGTERM) -> bool:
    """Send *sig* to *pid*; False if the process is gone or not ours."""
    try:
        os.kill(pid, sig)
    except (ProcessLookupError, PermissionError) as exc:
        logger.warning("could not signal pid %d: %s", pid, exc)
        return False
    logger.debug("sent signal %d to pid %d", sig, pid)
    return True
