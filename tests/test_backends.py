"""Tests for the Direct and Managed-service lifecycle backends."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from clawbar.gateway.backends import (
    DirectBackend,
    LaunchMode,
    ManagedServiceBackend,
    wait_for_port_free,
)
from clawbar.gateway.errors import BackendError, ServiceError
from clawbar.gateway.paths import ResolvedPaths
from clawbar.gateway.status import ProbeResult
from conftest import FakeProbe

PATHS = ResolvedPaths(Path("/usr/local/bin/node"), Path("/src/clawdbot/dist/index.js"))


def _direct(probe: FakeProbe, supervisor=None) -> DirectBackend:
    supervisor = supervisor or MagicMock(handle=None, terminate=AsyncMock(return_value=True), spawn=AsyncMock())
    return DirectBackend(supervisor, probe, port_interval=0.001, port_timeout=0.01)


class TestLaunchMode:
    def test_parse(self):
        assert LaunchMode.parse("service") is LaunchMode.SERVICE
        assert LaunchMode.parse(" Direct ") is LaunchMode.DIRECT
        assert LaunchMode.parse("bogus") is LaunchMode.DIRECT
        assert LaunchMode.parse(None) is LaunchMode.DIRECT

    def test_labels(self):
        assert LaunchMode.SERVICE.label == "launchd"
        assert LaunchMode.DIRECT.label == "Direct"


class TestWaitForPort:
    @pytest.mark.asyncio
    async def test_frees_up(self):
        probe = FakeProbe(ProbeResult.running(1))
        checks = []

        async def port_available():
            checks.append(1)
            if len(checks) == 3:
                probe.result = ProbeResult.stopped()
            return probe.result.status.value != "Running"

        probe.port_available = port_available
        assert await wait_for_port_free(probe, interval=0, attempts=10) is True
        assert len(checks) == 3

    @pytest.mark.asyncio
    async def test_times_out(self):
        assert await wait_for_port_free(FakeProbe(ProbeResult.running(1)), interval=0, attempts=3) is False


class TestDirectBackend:
    @pytest.mark.asyncio
    async def test_start_spawns(self):
        backend = _direct(FakeProbe())
        await backend.start(PATHS)

        backend.supervisor.spawn.assert_awaited_once()
        assert backend.supervisor.spawn.await_args.args == (PATHS,)

    @pytest.mark.asyncio
    async def test_exec_failure_becomes_backend_error(self):
        supervisor = MagicMock(spawn=AsyncMock(side_effect=PermissionError("denied")))
        backend = _direct(FakeProbe(), supervisor)

        with pytest.raises(BackendError, match="Could not start gateway"):
            await backend.start(PATHS)

    @pytest.mark.asyncio
    async def test_stop_passes_port_holder(self):
        backend = _direct(FakeProbe())
        await backend.stop(4242)

        backend.supervisor.terminate.assert_awaited_once_with(graceful=True, fallback_pid=4242)

    @pytest.mark.asyncio
    async def test_restart_waits_for_port(self):
        backend = _direct(FakeProbe(ProbeResult.stopped()))
        await backend.restart(PATHS, 4242)

        backend.supervisor.terminate.assert_awaited_once()
        backend.supervisor.spawn.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_restart_gives_up_if_port_stays_busy(self):
        backend = _direct(FakeProbe(ProbeResult.running(4242)))

        with pytest.raises(BackendError, match="Port did not become available in time"):
            await backend.restart(PATHS, 4242)
        backend.supervisor.spawn.assert_not_awaited()


class TestManagedServiceBackend:
    def _backend(self, installed: bool, kickstart: bool = True, loaded: bool = True):
        service = MagicMock()
        service.is_installed.return_value = installed
        service.is_loaded = AsyncMock(return_value=loaded)
        service.load = AsyncMock()
        service.install = AsyncMock()
        service.kickstart = AsyncMock(return_value=kickstart)
        service.stop = AsyncMock(return_value=True)
        fallback = MagicMock(stop=AsyncMock(), restart=AsyncMock())
        return ManagedServiceBackend(service, fallback), service, fallback

    @pytest.mark.asyncio
    async def test_start_installs_when_missing(self):
        backend, service, _ = self._backend(installed=False)
        await backend.start(PATHS)

        service.install.assert_awaited_once_with(PATHS)
        service.kickstart.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_kicks_when_installed(self):
        backend, service, _ = self._backend(installed=True)
        await backend.start(PATHS)

        service.kickstart.assert_awaited_once_with(force_restart=True)
        service.install.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_kickstart_failure(self):
        backend, _, _ = self._backend(installed=True, kickstart=False)

        with pytest.raises(BackendError):
            await backend.start(PATHS)

    @pytest.mark.asyncio
    async def test_start_bootstraps_unloaded_descriptor(self):
        backend, service, _ = self._backend(installed=True, loaded=False)
        calls = []
        service.load.side_effect = lambda: calls.append("load")
        service.kickstart.side_effect = lambda **kw: calls.append("kickstart") or True

        await backend.start(PATHS)

        assert calls == ["load", "kickstart"]
        service.install.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_skips_bootstrap_when_loaded(self):
        backend, service, _ = self._backend(installed=True)
        await backend.start(PATHS)

        service.load.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_restart_bootstraps_unloaded_descriptor(self):
        backend, service, fallback = self._backend(installed=True, loaded=False)
        await backend.restart(PATHS, 4242)

        service.load.assert_awaited_once()
        service.kickstart.assert_awaited_once_with(force_restart=True)
        fallback.restart.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_bootstrap_failure_skips_kickstart(self):
        backend, service, _ = self._backend(installed=True, loaded=False)
        service.load.side_effect = ServiceError("Could not load launchd service")

        with pytest.raises(ServiceError):
            await backend.start(PATHS)
        service.kickstart.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_unloads_and_signals(self):
        backend, service, fallback = self._backend(installed=True)
        with patch("clawbar.gateway.backends.kill_pid") as mock_kill:
            await backend.stop(4242)

        service.stop.assert_awaited_once()
        mock_kill.assert_called_once_with(4242)
        fallback.stop.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_uninstalled_falls_back_to_direct(self):
        backend, service, fallback = self._backend(installed=False)

        await backend.stop(4242)
        await backend.restart(PATHS, 4242)

        fallback.stop.assert_awaited_once_with(4242)
        fallback.restart.assert_awaited_once_with(PATHS, 4242)
        service.stop.assert_not_awaited()
