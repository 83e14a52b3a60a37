"""Tests for port probing, health check and session counting."""

import json
from unittest.mock import MagicMock, patch

import pytest

from clawbar.gateway.status import (
    GatewayStatus,
    StatusProbe,
    check_health,
    parse_pids,
    read_session_count,
)
from conftest import NOT_EXECUTED, FakeRunner, failed, ok


class TestParsePids:
    def test_single_pid(self):
        assert parse_pids("4242\n") == [4242]

    def test_ignores_noise_and_duplicates(self):
        assert parse_pids("  311\nCOMMAND\n\n311\n512\n") == [311, 512]

    def test_empty_output(self):
        assert parse_pids("") == []


class TestStatusProbe:
    """The port holder decides the status."""

    @pytest.mark.asyncio
    async def test_listener_means_running(self):
        runner = FakeRunner({("lsof",): ok("4242")})
        result = await StatusProbe(run=runner).probe()

        assert result.status == GatewayStatus.RUNNING
        assert result.pid == 4242

    @pytest.mark.asyncio
    async def test_queries_listen_sockets_on_port(self):
        runner = FakeRunner({("lsof",): ok("")})
        await StatusProbe(port=9999, run=runner).probe()

        assert runner.calls == [["lsof", "-nP", "-iTCP:9999", "-sTCP:LISTEN", "-t"]]

    @pytest.mark.asyncio
    async def test_first_listed_pid_wins(self):
        runner = FakeRunner({("lsof",): ok("700\n701")})
        result = await StatusProbe(run=runner).probe()

        assert result.pid == 700

    @pytest.mark.asyncio
    async def test_no_listener_means_stopped(self):
        # lsof exits 1 when nothing matches
        runner = FakeRunner({("lsof",): failed("")})
        result = await StatusProbe(run=runner).probe()

        assert result.status == GatewayStatus.STOPPED
        assert result.pid is None

    @pytest.mark.asyncio
    async def test_tool_failure_means_unknown(self):
        runner = FakeRunner({("lsof",): NOT_EXECUTED})
        result = await StatusProbe(run=runner).probe()

        assert result.status == GatewayStatus.UNKNOWN
        assert result.pid is None

    @pytest.mark.asyncio
    async def test_port_available(self):
        busy = StatusProbe(run=FakeRunner({("lsof",): ok("1")}))
        free = StatusProbe(run=FakeRunner({("lsof",): failed()}))
        unknown = StatusProbe(run=FakeRunner({("lsof",): NOT_EXECUTED}))

        assert await busy.port_available() is False
        assert await free.port_available() is True
        assert await unknown.port_available() is True


class TestSessionCount:
    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        assert await read_session_count(tmp_path / "sessions.json") == 0

    @pytest.mark.asyncio
    async def test_counts_top_level_keys(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text(json.dumps({"a": {}, "b": {}, "c": {"nested": 1}}))

        assert await read_session_count(path) == 3

    @pytest.mark.asyncio
    async def test_invalid_json(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text("{not json")

        assert await read_session_count(path) == 0

    @pytest.mark.asyncio
    async def test_undecodable_bytes(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_bytes(b'{"a": "\xff\xfe"}')

        assert await read_session_count(path) == 0

    @pytest.mark.asyncio
    async def test_non_object_document(self, tmp_path):
        path = tmp_path / "sessions.json"
        path.write_text("[1, 2, 3]")

        assert await read_session_count(path) == 0


class _Response:
    def __init__(self, status):
        self.status = status

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False


class _Session:
    def __init__(self, status=None, error=None):
        self._status = status
        self._error = error
        self.urls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def head(self, url, timeout=None):
        self.urls.append(url)
        if self._error is not None:
            raise self._error
        return _Response(self._status)


class TestHealthCheck:
    @pytest.mark.asyncio
    async def test_200_is_healthy(self):
        session = _Session(status=200)
        with patch("clawbar.gateway.status.aiohttp.ClientSession", MagicMock(return_value=session)):
            assert await check_health("127.0.0.1", 18789) is True
        assert session.urls == ["http://127.0.0.1:18789/"]

    @pytest.mark.asyncio
    async def test_other_status_is_unhealthy(self):
        session = _Session(status=503)
        with patch("clawbar.gateway.status.aiohttp.ClientSession", MagicMock(return_value=session)):
            assert await check_health() is False

    @pytest.mark.asyncio
    async def test_connection_error_is_unhealthy(self):
        session = _Session(error=OSError("connection refused"))
        with patch("clawbar.gateway.status.aiohttp.ClientSession", MagicMock(return_value=session)):
            assert await check_health() is False
