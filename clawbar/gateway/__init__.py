"""Gateway supervision — probe, backends, polling and updates."""

from clawbar.gateway.backends import LaunchMode
from clawbar.gateway.status import GatewayStatus, ProbeResult, StatusProbe

__all__ = [
    "GatewayController",
    "GatewayState",
    "GatewayStatus",
    "LaunchMode",
    "ProbeResult",
    "StatusProbe",
]


def __getattr__(name: str):
    """Lazy import the controller and everything it wires together."""
    if name in ("GatewayController", "GatewayState"):
        from clawbar.gateway import controller

        return getattr(controller, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
