"""Default preferences and fixed locations for clawbar."""

from __future__ import annotations

from pathlib import Path

# The gateway listens here; the port is also how liveness is detected.
GATEWAY_PORT = 18789
GATEWAY_HOST = "127.0.0.1"

CLAWDBOT_DIR = Path.home() / ".clawdbot"
LOG_DIR = CLAWDBOT_DIR / "logs"
GATEWAY_LOG = LOG_DIR / "gateway.log"
DEBUG_LOG = LOG_DIR / "menubar-debug.log"
SESSIONS_FILE = CLAWDBOT_DIR / "agents" / "main" / "sessions" / "sessions.json"

LAUNCHD_LABEL = "com.clawdbot.gateway"
LAUNCH_AGENTS_DIR = Path.home() / "Library" / "LaunchAgents"

DEFAULT_CONFIG: dict = {
    "gateway": {
        "launch_mode": "direct",  # "direct" or "service"
        "clawdbot_path": "",  # empty = auto-detect
    },
    "notifications": {
        "enabled": True,
    },
    "logging": {
        "debug": False,
    },
}
