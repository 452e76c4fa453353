# Quota tracker: process-wide count of analyses left in the current period.
# State lives in memory only; a restart hands out a full period's capacity again.

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable

from apex_height.models.schemas import QuotaState

logger = logging.getLogger(__name__)


def next_period_boundary(now: datetime, period_seconds: int) -> datetime:
    """Next multiple of ``period_seconds`` counted from local midnight.

    With the default one-hour period this is the top of the next clock hour.
    """
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    elapsed = (now - midnight).total_seconds()
    periods_done = int(elapsed // period_seconds)
    return midnight + timedelta(seconds=(periods_done + 1) * period_seconds)


class QuotaTracker:
    """Thread-safe reserve/refund counter with a periodic reset task."""

    def __init__(
        self,
        capacity: int = 20,
        period_seconds: int = 3600,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        if capacity < 0:
            raise ValueError("capacity must be >= 0")
        if period_seconds <= 0:
            raise ValueError("period_seconds must be > 0")
        self.capacity = capacity
        self.period_seconds = period_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._remaining = capacity
        self._period_reset_at = next_period_boundary(clock(), period_seconds)
        self._task: asyncio.Task | None = None

    # -- counter ----------------------------------------------------------------

    def try_reserve(self) -> bool:
        with self._lock:
            if self._remaining <= 0:
                logger.warning("Quota exhausted: rejecting analysis until %s", self._period_reset_at)
                return False
            self._remaining -= 1
            remaining = self._remaining
        logger.info("Quota unit reserved. Remaining this period: %d", remaining)
        return True

    def refund(self) -> None:
        # Capped: a refund landing after a reset must not push past capacity.
        with self._lock:
            self._remaining = min(self._remaining + 1, self.capacity)
            remaining = self._remaining
        logger.info("Quota unit refunded. Remaining this period: %d", remaining)

    def current_remaining(self) -> int:
        with self._lock:
            return self._remaining

    def snapshot(self) -> QuotaState:
        with self._lock:
            return QuotaState(
                remaining=self._remaining,
                capacity=self.capacity,
                period_reset_at=self._period_reset_at,
            )

    def reset(self, boundary: datetime | None = None) -> None:
        """Refill to capacity. ``boundary`` is the reset instant being honoured, if scheduled."""
        now = self._clock()
        if boundary is not None and boundary > now:
            now = boundary
        with self._lock:
            self._remaining = self.capacity
            self._period_reset_at = next_period_boundary(now, self.period_seconds)
            next_reset = self._period_reset_at
        logger.info("Quota reset to %d. Next reset at %s", self.capacity, next_reset)

    # -- scheduling -------------------------------------------------------------

    def seconds_until_reset(self) -> float:
        with self._lock:
            target = self._period_reset_at
        return max(0.0, (target - self._clock()).total_seconds())

    async def _reset_loop(self) -> None:
        while True:
            with self._lock:
                boundary = self._period_reset_at
            await asyncio.sleep(self.seconds_until_reset())
            self.reset(boundary)

    def start(self) -> None:
        """Launch the reset task on the running event loop (idempotent)."""
        if self._task is not None and not self._task.done():
            return
        # Realign to the clock; the tracker may have been built long before startup.
        with self._lock:
            self._period_reset_at = next_period_boundary(self._clock(), self.period_seconds)
        logger.info(
            "Quota tracker started with capacity %d. Next reset in %d minutes.",
            self.capacity, round(self.seconds_until_reset() / 60),
        )
        self._task = asyncio.get_running_loop().create_task(self._reset_loop())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
