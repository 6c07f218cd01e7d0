"""
Recurring sync timer.

Runs one reconciliation cycle immediately, then one every interval, until
stopped. Stopping never interrupts a cycle in flight: the loop finishes the
current cycle and exits before starting another.
"""

import asyncio
import logging
import signal
from typing import Optional

from src.crm_sync.models import CycleStats, SyncContext
from src.crm_sync.reconciler import CrmReconciler

logger = logging.getLogger(__name__)


class ContinuousSync:
    """
    asyncio timer around ``CrmReconciler.run_cycle``.

    Attributes:
        reconciler: Engine running each cycle
        context: Engine context carried across cycles
        interval_seconds: Pause between the end of one cycle and the next
        cycles_run: Number of completed cycles
    """

    def __init__(self, reconciler: CrmReconciler, context: SyncContext, interval_minutes: float = 5):
        self.reconciler = reconciler
        self.context = context
        self.interval_seconds = interval_minutes * 60
        self.cycles_run = 0
        self.last_stats: Optional[CycleStats] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def stopping(self) -> bool:
        return self._stop_event is not None and self._stop_event.is_set()

    def stop(self) -> None:
        """Request shutdown. The cycle in flight, if any, runs to completion."""
        if self._stop_event is None:
            self._stop_event = asyncio.Event()
        if not self._stop_event.is_set():
            logger.info("Stop requested, finishing current cycle")
            self._stop_event.set()

    def install_signal_handlers(self) -> None:
        """Route SIGINT and SIGTERM to ``stop``. No-op where unsupported."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.stop)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handlers not supported for {sig.name}")

    async def run_once(self) -> CycleStats:
        self.last_stats = await self.reconciler.run_cycle(self.context)
        self.cycles_run += 1
        return self.last_stats

    async def start(self) -> int:
        """
        Run cycles until ``stop`` is called.

        Returns:
            Number of cycles completed
        """
        if self._stop_event is None:
            self._stop_event = asyncio.Event()

        logger.info(f"Continuous sync started, interval {self.interval_seconds / 60:g} minute(s)")
        while not self._stop_event.is_set():
            await self.run_once()
            if self._stop_event.is_set():
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Continuous sync stopped after {self.cycles_run} cycle(s)")
        return self.cycles_run
