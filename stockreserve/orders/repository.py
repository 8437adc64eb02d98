from typing import Any, Dict, Optional
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from stockreserve.common.utils import now
from stockreserve.schema.full_schema import PaymentEventStatus, PaymentWebhookEvent


async def get_webhook_event(session: AsyncSession, provider: str, provider_event_id: str) -> Optional[Dict[str, Any]]:
    stmt = select(PaymentWebhookEvent.id, PaymentWebhookEvent.status, PaymentWebhookEvent.processed_at).where(
        PaymentWebhookEvent.provider == provider,
        PaymentWebhookEvent.provider_event_id == provider_event_id)
    res = await session.execute(stmt)
    ev = res.one_or_none()
    return dict(ev._mapping) if ev else None


async def mark_webhook_received(session: AsyncSession, provider: str, provider_event_id: str, payload: dict,
                                order_id: Optional[str] = None, action: Optional[str] = None) -> int:
    """Caller commits. A duplicate (provider, event id) raises IntegrityError on flush."""
    ev = PaymentWebhookEvent(provider=provider, provider_event_id=provider_event_id, order_id=order_id,
                             action=action, payload=payload, status=PaymentEventStatus.RECEIVED.value)
    session.add(ev)
    await session.flush()
    return ev.id


async def mark_webhook_processed(session: AsyncSession, ev_id: int, status: PaymentEventStatus,
                                 last_error: Optional[str] = None) -> None:
    await session.execute(
        update(PaymentWebhookEvent)
        .where(PaymentWebhookEvent.id == ev_id)
        .values(status=status.value, processed_at=now(), last_error=last_error)
        .execution_options(synchronize_session=False)
    )
