"""PaymentStore — persistence for payment records, the webhook ledger, and the notification log.

Status writes go through ``compare_and_set_status`` only. It issues a single
conditional UPDATE guarded by ``status = 'pending'``, so two writers racing on
the same record cannot both win and a terminal record is never touched.
"""

from datetime import UTC, datetime

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payflow.core.exceptions import DuplicatePayment
from payflow.db.models.payment_notification import PaymentNotification
from payflow.db.models.payment_record import PaymentRecord
from payflow.db.models.webhook_event import WebhookEvent
from payflow.schemas.payments import PaymentStatus, TransitionSource

logger = structlog.get_logger(__name__)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class PaymentStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ── Payment records ─────────────────────────────────────────────

    async def insert(self, record: PaymentRecord) -> PaymentRecord:
        """Persist a new pending record.

        Raises:
            DuplicatePayment: another pending record for the same order and
                provider was inserted first (partial unique index)
        """
        async with self.session_factory() as session:
            session.add(record)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.warning(
                    "payment_insert_conflict",
                    order_id=record.order_id,
                    provider=record.provider,
                )
                raise DuplicatePayment(record.order_id, record.provider) from None
            await session.refresh(record)
            return record

    async def get(self, payment_id: str) -> PaymentRecord | None:
        async with self.session_factory() as session:
            return await session.get(PaymentRecord, payment_id)

    async def get_by_reference(self, provider: str, provider_reference: str) -> PaymentRecord | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PaymentRecord).where(
                    PaymentRecord.provider == provider,
                    PaymentRecord.provider_reference == provider_reference,
                )
            )
            return result.scalar_one_or_none()

    async def find_pending(self, order_id: str, provider: str) -> PaymentRecord | None:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PaymentRecord).where(
                    PaymentRecord.order_id == order_id,
                    PaymentRecord.provider == provider,
                    PaymentRecord.status == PaymentStatus.PENDING.value,
                )
            )
            return result.scalars().first()

    async def find_stale_pending(self, created_before: datetime, limit: int) -> list[PaymentRecord]:
        """Pending records created before ``created_before``, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(PaymentRecord)
                .where(
                    PaymentRecord.status == PaymentStatus.PENDING.value,
                    PaymentRecord.created_at < created_before,
                )
                .order_by(PaymentRecord.created_at.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def compare_and_set_status(
        self,
        payment_id: str,
        new_status: PaymentStatus,
        source: TransitionSource,
    ) -> PaymentRecord | None:
        """Move a pending record to ``new_status``.

        Returns the updated row only to the caller whose UPDATE matched; None
        when the record is unknown or already terminal. The row is read inside
        the same transaction, so a failed read rolls the status change back.
        """
        now = datetime.now(UTC)
        values = {
            "status": new_status.value,
            "status_source": source.value,
            "updated_at": now,
        }
        if new_status is PaymentStatus.PAID:
            values["paid_at"] = now

        async with self.session_factory() as session:
            result = await session.execute(
                update(PaymentRecord)
                .where(
                    PaymentRecord.id == payment_id,
                    PaymentRecord.status == PaymentStatus.PENDING.value,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                return None
            record = await session.get(PaymentRecord, payment_id)
            await session.commit()
            return record

    # ── Webhook ledger ──────────────────────────────────────────────

    async def claim_event(
        self,
        provider: str,
        provider_event_id: str,
        payload_hash: str,
        provider_reference: str | None = None,
        status: str | None = None,
    ) -> bool:
        """Return True if the event is new (claimed). False if already seen."""
        async with self.session_factory() as session:
            try:
                session.add(
                    WebhookEvent(
                        provider=provider,
                        provider_event_id=provider_event_id,
                        payload_hash=payload_hash,
                        provider_reference=provider_reference,
                        status=status,
                    )
                )
                await session.commit()
                return True
            except IntegrityError:
                await session.rollback()
                return False

    async def release_event(self, provider: str, provider_event_id: str) -> None:
        """Drop a claim so a redelivery of the same event is processed again."""
        async with self.session_factory() as session:
            await session.execute(
                delete(WebhookEvent).where(
                    WebhookEvent.provider == provider,
                    WebhookEvent.provider_event_id == provider_event_id,
                )
            )
            await session.commit()

    async def get_event(self, provider: str, provider_event_id: str) -> WebhookEvent | None:
        async with self.session_factory() as session:
            return await session.get(WebhookEvent, (provider, provider_event_id))

    # ── Notification log ────────────────────────────────────────────

    async def record_notification(
        self,
        payment_id: str,
        notification_type: str,
        status: str,
        recipient: str | None = None,
        error_message: str | None = None,
    ) -> None:
        async with self.session_factory() as session:
            session.add(
                PaymentNotification(
                    payment_id=payment_id,
                    notification_type=notification_type,
                    recipient=recipient,
                    status=status,
                    error_message=error_message,
                )
            )
            await session.commit()

    async def list_notifications(self, payment_id: str) -> list[PaymentNotification]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(PaymentNotification)
                .where(PaymentNotification.payment_id == payment_id)
                .order_by(PaymentNotification.id.asc())
            )
            return list(result.scalars().all())
