"""Tests for the launchd agent manager."""

import plistlib
from pathlib import Path

import pytest

from clawbar.gateway.errors import ArtifactMissingError, ServiceError
from clawbar.gateway.paths import ResolvedPaths
from clawbar.gateway.service import ServiceManager, ServiceRegistration
from conftest import FakeRunner, failed

PATHS = ResolvedPaths(Path("/usr/local/bin/node"), Path("/Users/me/Dev/clawdbot/dist/index.js"))


def _manager(tmp_path: Path, runner: FakeRunner) -> ServiceManager:
    return ServiceManager(
        launch_agents_dir=tmp_path / "LaunchAgents",
        log_path=tmp_path / "logs" / "gateway.log",
        run=runner,
        uid=lambda: 501,
    )


class TestRegistration:
    def test_descriptor_contents(self, tmp_path):
        registration = ServiceRegistration.for_gateway(PATHS, log_path=tmp_path / "gateway.log")
        data = plistlib.loads(registration.to_plist())

        assert data["Label"] == "com.clawdbot.gateway"
        assert data["ProgramArguments"] == [
            "/usr/local/bin/node",
            "/Users/me/Dev/clawdbot/dist/index.js",
            "gateway",
            "--port",
            "18789",
            "--force",
        ]
        assert data["WorkingDirectory"] == "/Users/me/Dev/clawdbot"
        assert data["RunAtLoad"] is True
        assert data["KeepAlive"] is True
        assert data["StandardOutPath"] == data["StandardErrorPath"] == str(tmp_path / "gateway.log")

    def test_special_characters_are_escaped(self, tmp_path):
        artifact = Path("/Users/me/R&D <tools>/clawdbot/dist/index.js")
        registration = ServiceRegistration.for_gateway(
            ResolvedPaths(Path("/usr/local/bin/node"), artifact), log_path=tmp_path / "gateway.log"
        )
        raw = registration.to_plist()

        assert b"R&amp;D &lt;tools&gt;" in raw
        assert ServiceRegistration.from_plist(raw) == registration

    def test_unresolved_paths(self):
        with pytest.raises(ArtifactMissingError):
            ServiceRegistration.for_gateway(ResolvedPaths(Path("/usr/local/bin/node"), None))


class TestServiceManager:
    def test_locations(self, tmp_path, runner):
        manager = _manager(tmp_path, runner)

        assert manager.plist_path == tmp_path / "LaunchAgents" / "com.clawdbot.gateway.plist"
        assert manager.service_target == "gui/501/com.clawdbot.gateway"

    @pytest.mark.asyncio
    async def test_install_writes_loads_and_kicks(self, tmp_path, runner):
        manager = _manager(tmp_path, runner)

        await manager.install(PATHS)

        assert manager.is_installed()
        assert manager.registration().program_arguments[0] == "/usr/local/bin/node"
        assert runner.calls == [
            ["launchctl", "bootstrap", "gui/501", str(manager.plist_path)],
            ["launchctl", "kickstart", "-k", "gui/501/com.clawdbot.gateway"],
        ]

    @pytest.mark.asyncio
    async def test_load_failure_leaves_descriptor(self, tmp_path):
        runner = FakeRunner({("launchctl", "bootstrap"): failed("Bootstrap failed: 5")})
        manager = _manager(tmp_path, runner)

        with pytest.raises(ServiceError, match="Could not load launchd service"):
            await manager.install(PATHS)

        assert manager.is_installed()
        assert runner.commands("launchctl") == [
            ["launchctl", "bootstrap", "gui/501", str(manager.plist_path)]
        ]

    @pytest.mark.asyncio
    async def test_install_then_uninstall(self, tmp_path, runner):
        manager = _manager(tmp_path, runner)

        await manager.install(PATHS)
        await manager.uninstall()

        assert not manager.is_installed()
        assert not manager.plist_path.exists()
        assert runner.calls[-1] == ["launchctl", "bootout", "gui/501/com.clawdbot.gateway"]

    @pytest.mark.asyncio
    async def test_uninstall_removes_file_even_if_not_loaded(self, tmp_path):
        runner = FakeRunner({("launchctl", "bootout"): failed("No such process")})
        manager = _manager(tmp_path, runner)
        manager.plist_path.parent.mkdir(parents=True)
        manager.plist_path.write_bytes(b"")

        await manager.uninstall()

        assert not manager.is_installed()

    @pytest.mark.asyncio
    async def test_stop_keeps_descriptor(self, tmp_path, runner):
        manager = _manager(tmp_path, runner)
        await manager.install(PATHS)

        assert await manager.stop() is True
        assert manager.is_installed()

    @pytest.mark.asyncio
    async def test_kickstart(self, tmp_path):
        runner = FakeRunner({("launchctl", "kickstart"): failed()})
        manager = _manager(tmp_path, runner)

        assert await manager.kickstart(force_restart=False) is False
        assert runner.calls == [["launchctl", "kickstart", "gui/501/com.clawdbot.gateway"]]

    @pytest.mark.asyncio
    async def test_is_loaded(self, tmp_path):
        runner = FakeRunner({("launchctl", "print"): failed("Could not find service")})
        assert await _manager(tmp_path, runner).is_loaded() is False

    @pytest.mark.asyncio
    async def test_load_bootstraps_existing_descriptor(self, tmp_path, runner):
        manager = _manager(tmp_path, runner)

        await manager.load()

        assert runner.calls == [["launchctl", "bootstrap", "gui/501", str(manager.plist_path)]]

    @pytest.mark.asyncio
    async def test_load_failure(self, tmp_path):
        runner = FakeRunner({("launchctl", "bootstrap"): failed("Bootstrap failed: 5")})

        with pytest.raises(ServiceError):
            await _manager(tmp_path, runner).load()
