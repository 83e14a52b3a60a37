"""Exceptions raised by the gateway backends.

Probes never raise; these surface from commands and are turned into
notifications by the controller.
"""

from __future__ import annotations


class GatewayError(Exception):
    """Base class for gateway supervision failures."""


class PathResolutionError(GatewayError):
    """A required path (runtime or entry artifact) could not be resolved."""


class RuntimeMissingError(PathResolutionError):
    def __init__(self) -> None:
        super().__init__("Could not detect Node.js path")


class ArtifactMissingError(PathResolutionError):
    def __init__(self) -> None:
        super().__init__("Could not detect clawdbot script path")


class ServiceError(GatewayError):
    """The service descriptor was written but could not be loaded."""


class BackendError(GatewayError):
    """A start/stop/restart command could not be carried out."""
