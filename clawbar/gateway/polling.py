"""Status polling — a slow background loop plus short adaptive sessions.

The background loop refreshes every 30s for the life of the process.
After a state-changing command the controller arms an adaptive session:
it refreshes every second until the observed status equals the expected
one, giving up after a 30s ceiling.  Arming a session cancels the one
before it, so the last command wins.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from clawbar.gateway.status import GatewayStatus

logger = logging.getLogger("clawbar.polling")

RefreshFn = Callable[[], Awaitable[GatewayStatus]]

BACKGROUND_INTERVAL = 30.0
FAST_INTERVAL = 1.0
FAST_CEILING = 30.0


@dataclass(eq=False)
class PollSession:
    """One adaptive polling run towards *target*."""

    target: GatewayStatus
    interval: float
    deadline: float
    ticks: int = 0
    outcome: Optional[str] = None  # "converged" | "expired" | "superseded"
    task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def active(self) -> bool:
        return self.outcome is None


class PollingScheduler:
    """Drives the periodic and adaptive refresh cycles."""

    def __init__(
        self,
        refresh: RefreshFn,
        background_interval: float = BACKGROUND_INTERVAL,
        fast_interval: float = FAST_INTERVAL,
        fast_ceiling: float = FAST_CEILING,
    ) -> None:
        self._refresh = refresh
        self._background_interval = background_interval
        self._fast_interval = fast_interval
        self._fast_ceiling = fast_ceiling
        self._background: Optional[asyncio.Task] = None
        self._session: Optional[PollSession] = None

    @property
    def session(self) -> Optional[PollSession]:
        """The active adaptive session, if any."""
        if self._session is not None and self._session.active:
            return self._session
        return None

    @property
    def running(self) -> bool:
        return self._background is not None and not self._background.done()

    # ── Background loop ─────────────────────────────────────────────

    def start(self) -> None:
        if self.running:
            return
        self._background = asyncio.create_task(self._background_loop())
        logger.info("polling started (interval=%ss)", self._background_interval)

    async def _background_loop(self) -> None:
        while True:
            await asyncio.sleep(self._background_interval)
            try:
                await self._refresh()
            except Exception as exc:
                logger.error("background refresh error: %s", exc)

    # ── Adaptive sessions ───────────────────────────────────────────

    def arm(self, target: GatewayStatus) -> PollSession:
        """Start fast polling towards *target*, superseding any prior session."""
        self.cancel()
        loop = asyncio.get_running_loop()
        session = PollSession(
            target=target,
            interval=self._fast_interval,
            deadline=loop.time() + self._fast_ceiling,
        )
        session.task = asyncio.create_task(self._run_session(session))
        self._session = session
        logger.debug("fast polling armed, expecting %s", target.value)
        return session

    def cancel(self) -> None:
        session = self._session
        self._session = None
        if session is not None and session.active:
            session.outcome = "superseded"
            if session.task is not None:
                session.task.cancel()

    async def wait_session(self) -> Optional[PollSession]:
        """Wait for the current adaptive session (if any) to finish."""
        session = self._session
        if session is None or session.task is None:
            return session
        try:
            await asyncio.shield(session.task)
        except asyncio.CancelledError:
            if session.outcome != "superseded":
                raise
        return session

    async def _run_session(self, session: PollSession) -> None:
        try:
            remaining = max(0.0, session.deadline - asyncio.get_running_loop().time())
            await asyncio.wait_for(self._tick(session), timeout=remaining)
        except asyncio.TimeoutError:
            session.outcome = "expired"
            logger.debug("fast polling gave up after %ss", self._fast_ceiling)
        finally:
            if self._session is session and session.outcome is None:
                session.outcome = "expired"

    async def _tick(self, session: PollSession) -> None:
        while True:
            await asyncio.sleep(session.interval)
            session.ticks += 1
            try:
                status = await self._refresh()
            except Exception as exc:
                logger.error("fast refresh error: %s", exc)
                continue
            if status == session.target:
                session.outcome = "converged"
                logger.debug("reached %s after %d ticks", status.value, session.ticks)
                return

    async def stop(self) -> None:
        """Cancel the background loop and any adaptive session."""
        self.cancel()
        task, self._background = self._background, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
