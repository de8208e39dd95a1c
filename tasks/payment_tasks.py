"""
tasks/payment_tasks.py
Celery tasks for payment lifecycle operations.

reconcile_pending_payments re-runs confirm() for authorizations that are
still pending some minutes after checkout. A client that closed the tab
before the confirm callback still ends up paid. confirm() is idempotent,
so overlapping runs (or a late webhook) never double-credit earnings.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pybreaker import CircuitBreakerError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from config.settings import settings
from services.payment import service as payment_service
from services.payment.gateway import PaymentGateway, get_payment_gateway
from shared.exceptions import UpstreamError
from shared.models.models import Booking, BookingStatus, PaymentStatus
from tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def reconcile(
    db: AsyncSession,
    gateway: PaymentGateway,
    older_than_minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Confirm every pending, uncancelled booking whose authorization was opened
    more than `older_than_minutes` ago. One gateway failure does not stop the run;
    an open breaker does, and the rest are left for the next run as "skipped".
    """
    older_than_minutes = older_than_minutes or settings.PAYMENT_RECONCILE_AFTER_MINUTES
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(minutes=older_than_minutes)

    result = await db.execute(
        select(Booking.payment_intent_id).where(
            Booking.payment_status == PaymentStatus.PENDING,
            Booking.status == BookingStatus.PENDING,
            Booking.payment_intent_id.is_not(None),
            Booking.created_at < cutoff,
        )
    )
    authorization_ids = list(result.scalars().all())

    stats = {"checked": len(authorization_ids), "applied": 0, "failed": 0, "skipped": 0}
    for position, authorization_id in enumerate(authorization_ids):
        try:
            _, _, applied = await payment_service.confirm(db, gateway, authorization_id)
        except UpstreamError as e:
            logger.warning(f"Reconcile: gateway error for {authorization_id}: {e.detail}")
            stats["failed"] += 1
            continue
        except CircuitBreakerError:
            stats["skipped"] = len(authorization_ids) - position
            logger.warning(
                f"Reconcile: payment gateway breaker open, leaving {stats['skipped']} for the next run"
            )
            break
        if applied:
            stats["applied"] += 1

    logger.info(f"Reconciled pending payments: {stats}")
    return stats


async def _reconcile_once() -> dict:
    # Each task run has its own event loop, so no pooled connections are shared
    engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    try:
        async with session_factory() as db:
            return await reconcile(db, get_payment_gateway())
    finally:
        await engine.dispose()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def reconcile_pending_payments(self):
    """Periodic: confirm stale pending authorizations. Idempotent."""
    try:
        return asyncio.run(_reconcile_once())
    except Exception as exc:
        logger.error(f"reconcile_pending_payments failed: {str(exc)}")
        raise self.retry(exc=exc)
