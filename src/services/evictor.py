import asyncio
import contextlib
import enum
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

from src.core.exceptions import InvalidKeyError, NotFoundError, StorageFailedError
from src.services.storage import Store

logger = structlog.get_logger()


class EvictorState(enum.Enum):
    IDLE = "idle"
    SWEEPING = "sweeping"


@dataclass(frozen=True)
class SweepReport:
    scanned: int = 0
    deleted: int = 0
    failed: int = 0
    skipped: bool = False


class Evictor:
    """Deletes stored files older than ``ttl`` seconds.

    ``start()`` runs one sweep right away and then one every ``interval``
    seconds until ``stop()`` is called. Sweeps never overlap.
    """

    def __init__(
        self,
        store: Store,
        ttl: float,
        interval: float = 3600.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl = ttl
        self.interval = interval
        self._clock = clock
        self._state = EvictorState.IDLE
        self._sweep_lock = threading.Lock()
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> EvictorState:
        return self._state

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def sweep(self, now: float | None = None) -> SweepReport:
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("sweep_skipped_already_running")
            return SweepReport(skipped=True)
        self._state = EvictorState.SWEEPING
        try:
            return self._sweep(self._clock() if now is None else now)
        finally:
            self._state = EvictorState.IDLE
            self._sweep_lock.release()

    def _sweep(self, now: float) -> SweepReport:
        scanned = deleted = failed = 0
        for key, meta in self.store.enumerate_all():
            scanned += 1
            age = now - meta.modified_at
            if age <= self.ttl:
                continue
            try:
                self.store.delete(key)
            except (NotFoundError, InvalidKeyError, StorageFailedError) as e:
                failed += 1
                logger.error("expired_file_delete_failed", key=key, error=repr(e.__cause__ or e))
                continue
            deleted += 1
            logger.info("expired_file_deleted", key=key, age_hours=round(age / 3600, 1))

        report = SweepReport(scanned=scanned, deleted=deleted, failed=failed)
        logger.info("sweep_completed", scanned=scanned, deleted=deleted, failed=failed)
        return report

    async def run_sweep(self) -> SweepReport:
        return await asyncio.to_thread(self.sweep)

    async def _loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.run_sweep()
            except Exception as e:
                logger.error("sweep_failed", error=str(e))
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop(self._stop_event))
        logger.info("evictor_started", ttl_hours=round(self.ttl / 3600, 2), interval=self.interval)

    async def stop(self) -> None:
        if self._task is None or self._stop_event is None:
            return
        self._stop_event.set()
        try:
            await self._task
        finally:
            self._task = None
            self._stop_event = None
        logger.info("evictor_stopped")
