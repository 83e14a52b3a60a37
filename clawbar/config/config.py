"""Preferences for clawbar, persisted as JSON at ``~/.clawbar/config.json``.

Only four keys matter to the supervisor (launch mode, clawdbot override
directory, notifications, debug logging); anything else in the file is
kept as-is so hand edits survive a save.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any

import aiofiles

from clawbar.config.defaults import DEFAULT_CONFIG

logger = logging.getLogger("clawbar.config")

_CLAWBAR_DIR = Path.home() / ".clawbar"
_CONFIG_PATH = _CLAWBAR_DIR / "config.json"

_lock = asyncio.Lock()


def _merged_with_defaults(user: dict) -> dict:
    merged = copy.deepcopy(DEFAULT_CONFIG)
    stack = [(merged, user)]
    while stack:
        target, source = stack.pop()
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                stack.append((target[key], value))
            else:
                target[key] = copy.deepcopy(value)
    return merged


async def _read_user_prefs(path: Path) -> dict:
    """The user's saved preferences; ``{}`` if the file is missing or unusable."""
    if not path.exists():
        return {}
    async with _lock:
        async with aiofiles.open(path, "r") as f:
            raw = await f.read()
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.warning("ignoring unreadable preferences in %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("ignoring preferences in %s: not a JSON object", path)
        return {}
    return data


class Config:
    """clawbar preferences.

    Usage::

        cfg = await Config.load()
        if cfg.get("gateway.launch_mode") == "service":
            ...
        cfg.set("notifications.enabled", False)
        await cfg.save()
    """

    __slots__ = ("_data", "_path")

    def __init__(self, data: dict | None = None, path: Path = _CONFIG_PATH) -> None:
        self._data = data if data is not None else copy.deepcopy(DEFAULT_CONFIG)
        self._path = path

    @classmethod
    async def load(cls, path: Path | None = None) -> "Config":
        path = path or _CONFIG_PATH
        return cls(_merged_with_defaults(await _read_user_prefs(path)), path)

    async def save(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(self._data, indent=2, default=str)
        async with _lock:
            async with aiofiles.open(self._path, "w") as f:
                await f.write(payload)
        logger.debug("preferences saved to %s", self._path)

    async def reset(self) -> None:
        """Drop every saved value and write the defaults back."""
        self._data = copy.deepcopy(DEFAULT_CONFIG)
        await self.save()

    # ── Dotted-key access ───────────────────────────────────────────

    def _parent(self, dotted_key: str, create: bool) -> tuple[dict | None, str]:
        *sections, leaf = dotted_key.split(".")
        node: Any = self._data
        for name in sections:
            child = node.get(name)
            if not isinstance(child, dict):
                if not create:
                    return None, leaf
                child = node[name] = {}
            node = child
        return node, leaf

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Value at e.g. ``gateway.launch_mode``, or *default*."""
        node, leaf = self._parent(dotted_key, create=False)
        if node is None:
            return default
        return node.get(leaf, default)

    def set(self, dotted_key: str, value: Any) -> None:
        node, leaf = self._parent(dotted_key, create=True)
        node[leaf] = value

    @property
    def data(self) -> dict:
        return self._data

    @property
    def path(self) -> Path:
        return self._path

    # ── Supervisor preferences ──────────────────────────────────────

    @property
    def launch_mode(self) -> str:
        return str(self.get("gateway.launch_mode") or "direct")

    @property
    def clawdbot_path(self) -> Path | None:
        """Override directory for the clawdbot checkout; None means auto-detect."""
        raw = str(self.get("gateway.clawdbot_path") or "").strip()
        return Path(raw).expanduser() if raw else None

    @property
    def notifications_enabled(self) -> bool:
        return bool(self.get("notifications.enabled", True))

    @property
    def debug_logging(self) -> bool:
        return bool(self.get("logging.debug", False))

    @staticmethod
    def config_path() -> Path:
        return _CONFIG_PATH
