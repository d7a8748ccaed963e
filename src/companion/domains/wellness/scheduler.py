"""Periodic re-evaluation: correlations, goals, insights, alert retries.

A single asyncio task runs one tick per interval. Each tick yields to the
event loop between steps; :meth:`ReevaluationScheduler.trigger` cancels a
tick in flight and starts a fresh one, so a stale pass never finishes after
a newer one began.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from datetime import datetime, timedelta

from companion.core.storage.backend import StoreUnavailable
from companion.domains.wellness.domain_logic.models import utcnow
from companion.domains.wellness.service import WellnessCompanion

logger = logging.getLogger(__name__)


class ReevaluationScheduler:
    """Drives :meth:`WellnessCompanion.reevaluation_steps` on an interval.

    Usage::

        scheduler = ReevaluationScheduler(companion, interval_seconds=900)
        scheduler.start()
        ...
        await scheduler.stop()
    """

    def __init__(
        self,
        companion: WellnessCompanion,
        interval_seconds: float = 900,
        *,
        sample_retention_days: int | None = 365,
    ) -> None:
        self._companion = companion
        self._interval = interval_seconds
        self._retention_days = sample_retention_days
        self._loop_task: asyncio.Task | None = None
        self._tick_task: asyncio.Task | None = None
        self.completed_ticks = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def tick(self, now: datetime | None = None) -> bool:
        """Run every step once. Returns False if a store failure cut it short."""
        now = now or utcnow()
        for name, step in self._companion.reevaluation_steps():
            try:
                step(now)
            except StoreUnavailable:
                logger.warning("Store unavailable during %s; retrying next interval", name)
                return False
            except Exception:
                logger.exception("Re-evaluation step %s failed", name)
            await asyncio.sleep(0)

        if self._retention_days:
            purged = self._companion.store.purge_before(now - timedelta(days=self._retention_days))
            if purged:
                logger.info("Purged %d sample(s) past retention", purged)

        self.completed_ticks += 1
        return True

    async def trigger(self, now: datetime | None = None) -> bool:
        """Start a tick now, cancelling one already in flight."""
        await self._cancel_tick()
        self._tick_task = asyncio.create_task(self.tick(now))
        try:
            return await self._tick_task
        except asyncio.CancelledError:
            # Superseded by a newer trigger; only propagate our own cancellation
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            return False

    async def _cancel_tick(self) -> None:
        task, self._tick_task = self._tick_task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.info("Cancelled in-flight re-evaluation")

    async def run_forever(self) -> None:
        logger.info("Re-evaluation every %ss", self._interval)
        while True:
            await self.trigger()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self._interval <= 0:
            logger.info("Periodic re-evaluation disabled")
            return
        if not self.running:
            self._loop_task = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        task, self._loop_task = self._loop_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._cancel_tick()
