"""Reconciler — periodic sweep that re-checks stale pending payments with the provider.

Self-heals lost webhooks. Uses the same ``PaymentService.transition`` as the
webhook path, so it can never regress or resurrect a terminal record.
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from redis.exceptions import RedisError

from payflow.core.config import Settings, get_settings
from payflow.core.exceptions import ProviderUnavailable
from payflow.core.locking import RunLease
from payflow.metrics.cloudwatch import emit_payment_event
from payflow.schemas.payments import PaymentStatus, TransitionSource
from payflow.services.payment_service import PaymentService

logger = structlog.get_logger(__name__)

LEASE_NAME = "reconciler"


@dataclass(frozen=True)
class ReconcileReport:
    selected: int = 0
    applied: int = 0
    unchanged: int = 0
    failed: int = 0


class Reconciler:
    def __init__(self, payments: PaymentService, batch_size: int = 50, min_age: timedelta = timedelta(minutes=10)):
        self.payments = payments
        self.store = payments.store
        self.batch_size = batch_size
        self.min_age = min_age

    async def run_once(self) -> ReconcileReport:
        """One pass over the oldest stale pending records. Never raises per record."""
        cutoff = datetime.now(UTC) - self.min_age
        records = await self.store.find_stale_pending(cutoff, self.batch_size)
        applied = unchanged = failed = 0

        for record in records:
            log = logger.bind(payment_id=record.id, provider=record.provider)
            try:
                adapter = self.payments.adapter_for(record.provider)
                status = await adapter.get_status(record.provider_reference)
                if status is PaymentStatus.PENDING:
                    unchanged += 1
                    continue
                if await self.payments.transition(record.id, status, TransitionSource.RECONCILER):
                    applied += 1
                    log.info("reconcile_applied", new_status=status.value)
                else:
                    unchanged += 1
            except ProviderUnavailable as e:
                failed += 1
                log.warning("reconcile_provider_unavailable", error=e.message)
            except Exception as e:
                failed += 1
                log.error("reconcile_record_failed", error=str(e), error_type=type(e).__name__, exc_info=True)

        report = ReconcileReport(selected=len(records), applied=applied, unchanged=unchanged, failed=failed)
        logger.info(
            "reconcile_run_complete",
            selected=report.selected,
            applied=report.applied,
            unchanged=report.unchanged,
            failed=report.failed,
        )
        emit_payment_event("reconcile_run", value=float(report.applied))
        return report


class ReconcilerScheduler:
    """Runs ``Reconciler.run_once`` on a timer as a cancellable asyncio task.

    Usage:
        scheduler = ReconcilerScheduler(reconciler, interval=timedelta(hours=6))
        scheduler.start()
        ...
        await scheduler.stop()

    A tick that finds the previous run still in flight is skipped. When a Redis
    ``RunLease`` is supplied, only the replica holding it sweeps.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        interval: timedelta,
        initial_delay: float | None = None,
        lease: RunLease | None = None,
    ):
        self.reconciler = reconciler
        self.interval = interval
        # First run soon after boot, but never sooner than a tenth of the interval
        self.initial_delay = (
            initial_delay if initial_delay is not None else min(60.0, interval.total_seconds() / 10)
        )
        self.lease = lease
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self.last_report: ReconcileReport | None = None

    @classmethod
    def from_settings(
        cls, payments: PaymentService, redis_client=None, settings: Settings | None = None
    ) -> "ReconcilerScheduler":
        settings = settings or get_settings()
        reconciler = Reconciler(
            payments,
            batch_size=settings.reconciler_batch_size,
            min_age=timedelta(minutes=settings.reconciler_min_age_minutes),
        )
        interval = timedelta(minutes=settings.reconciler_interval_minutes)
        lease = (
            RunLease(redis_client, LEASE_NAME, ttl=settings.reconciler_lease_ttl_seconds)
            if redis_client is not None
            else None
        )
        return cls(
            reconciler,
            interval=interval,
            initial_delay=min(float(settings.reconciler_initial_delay_seconds), interval.total_seconds() / 10),
            lease=lease,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="payment-reconciler")
        logger.info(
            "reconciler_started",
            interval_seconds=self.interval.total_seconds(),
            initial_delay_seconds=self.initial_delay,
            lease=self.lease is not None,
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("reconciler_stopped")

    async def _loop(self) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            await self.tick()
            await asyncio.sleep(self.interval.total_seconds())

    async def tick(self) -> ReconcileReport | None:
        """Run one sweep unless one is already running here or on another replica."""
        if self._lock.locked():
            logger.info("reconcile_skipped", reason="run_in_progress")
            return None

        async with self._lock:
            if self.lease is not None:
                try:
                    if not await self.lease.acquire():
                        logger.info("reconcile_skipped", reason="lease_held_elsewhere")
                        return None
                except RedisError as e:
                    # Without Redis we still have the in-process guard
                    logger.warning("reconcile_lease_unavailable", error=str(e))

            try:
                self.last_report = await self.reconciler.run_once()
                return self.last_report
            except Exception as e:
                logger.error("reconcile_run_failed", error=str(e), error_type=type(e).__name__, exc_info=True)
                return None
            finally:
                if self.lease is not None:
                    try:
                        await self.lease.release()
                    except RedisError as e:
                        logger.warning("reconcile_lease_release_failed", error=str(e))
