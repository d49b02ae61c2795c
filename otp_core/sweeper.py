"""
Retention Sweeper
=================
Periodic batch purge of OTP records past the retention horizon.

Records are never deleted on use; the sweep is the only path that removes
them, so the audit trail survives for ``retention_hours`` after expiry.
"""

import asyncio
import time
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Deque, List, Optional

import structlog

from .config import OTPConfig
from .errors import StoreError, TransientError
from .metrics import OTP_SWEEP_DELETED
from .otp.models import OTPStatus, utc_now
from .stores.base import RecordStore

logger = structlog.get_logger(__name__)


class SweepInProgressError(RuntimeError):
    """Raised when a sweep is requested while another one is running."""
    pass


@dataclass
class SweepResult:
    """Outcome of one sweep invocation."""
    started_at: datetime
    deleted_count: int = 0
    skipped_count: int = 0
    duration_ms: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class RetentionSweeper:
    """
    Deletes records whose ``expires_at`` is older than the retention window.

    Deletes at most ``batch_size`` records per invocation and continues past
    individual row failures.
    """

    def __init__(
        self,
        records: RecordStore,
        config: Optional[OTPConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        history_size: int = 100,
    ):
        self.records = records
        self.config = config or OTPConfig()
        self._clock = clock
        self._history: Deque[SweepResult] = deque(maxlen=history_size)
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_result(self) -> Optional[SweepResult]:
        return self._history[-1] if self._history else None

    @property
    def history(self) -> List[SweepResult]:
        return list(self._history)

    async def sweep(self, batch_size: Optional[int] = None) -> SweepResult:
        """
        Run one retention sweep.

        Args:
            batch_size: Max records to delete (default from config)

        Raises:
            ValueError: batch_size is below 1
            SweepInProgressError: Another sweep is running
            TransientError: Expired records could not be listed
        """
        if batch_size is None:
            batch_size = self.config.sweep_batch_size
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        if self._running:
            raise SweepInProgressError("Retention sweep already running")

        self._running = True
        now = self._clock()
        cutoff = now - self.config.retention
        result = SweepResult(started_at=now)
        start = time.perf_counter()

        try:
            try:
                candidates = await self.records.find_expired(cutoff, batch_size)
            except StoreError as e:
                result.errors.append(str(e))
                logger.error("Retention sweep could not list records", error=str(e))
                raise TransientError("Record store unavailable during sweep") from e

            for record in candidates:
                if record.effective_status(now) == OTPStatus.ACTIVE:
                    result.skipped_count += 1
                    continue
                try:
                    if await self.records.delete(record.id):
                        result.deleted_count += 1
                except StoreError as e:
                    result.errors.append(f"{record.id}: {e}")
                    logger.warning("Failed to delete OTP record", otp_id=record.id, error=str(e))
        finally:
            result.duration_ms = round((time.perf_counter() - start) * 1000, 2)
            self._history.append(result)
            self._running = False

        OTP_SWEEP_DELETED.inc(result.deleted_count)
        logger.info(
            "Retention sweep completed",
            deleted=result.deleted_count,
            skipped=result.skipped_count,
            errors=len(result.errors),
            duration_ms=result.duration_ms,
        )
        return result

    def start(self, interval_seconds: Optional[int] = None) -> asyncio.Task:
        """Start the scheduled sweep loop on the running event loop."""
        if self._task is not None and not self._task.done():
            return self._task

        interval = interval_seconds or self.config.sweep_interval_seconds
        logger.info("Starting retention sweeper", interval_seconds=interval)
        self._task = asyncio.create_task(self._run_forever(interval))
        return self._task

    async def stop(self) -> None:
        """Cancel the scheduled loop and wait for it to exit."""
        if self._task is None:
            return
        logger.info("Stopping retention sweeper")
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run_forever(self, interval: float) -> None:
        while True:
            try:
                await self.sweep()
            except SweepInProgressError:
                logger.warning("Retention sweep already running, skipping this cycle")
            except TransientError as e:
                logger.error("Retention sweep failed", error=str(e))
            await asyncio.sleep(interval)
