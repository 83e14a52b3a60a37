"""User-facing notifications — a fire-and-forget sink."""

from __future__ import annotations

import logging
from typing import Callable

from rich.console import Console

logger = logging.getLogger("clawbar.notify")


class Notifier:
    """Base sink.  ``enabled`` is re-read on every call so toggling takes effect at once."""

    def __init__(self, enabled: Callable[[], bool] | bool = True) -> None:
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled() if callable(self._enabled) else bool(self._enabled)

    def notify(self, title: str, body: str) -> None:
        if not self.enabled:
            logger.debug("notification suppressed: %s: %s", title, body)
            return
        logger.info("notify: %s: %s", title, body)
        try:
            self.deliver(title, body)
        except Exception as exc:
            logger.warning("notification delivery failed: %s", exc)

    def deliver(self, title: str, body: str) -> None:
        """Hand the message to the presentation layer; no-op by default."""


class ConsoleNotifier(Notifier):
    """Prints notifications through a rich console."""

    def __init__(
        self,
        enabled: Callable[[], bool] | bool = True,
        console: Console | None = None,
    ) -> None:
        super().__init__(enabled)
        self._console = console or Console(stderr=True)

    def deliver(self, title: str, body: str) -> None:
        self._console.print(f"🔔 [bold]{title}[/bold]: {body}")
