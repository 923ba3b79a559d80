from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from issuelink.core.time import utcnow
from issuelink.models.webhook_event import EVENT_RECEIVED, WebhookEvent


def record_delivery(
    db: Session,
    *,
    provider: str,
    delivery_id: str,
    event_name: str,
    payload: dict,
) -> WebhookEvent | None:
    """Insert a delivery; None means the (provider, delivery_id) key already exists."""

    row = WebhookEvent(
        provider=provider,
        delivery_id=delivery_id,
        event_name=event_name,
        payload=payload,
        status=EVENT_RECEIVED,
        received_at=utcnow(),
    )
    db.add(row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return None
    db.refresh(row)
    return row


def get_delivery(db: Session, *, provider: str, delivery_id: str) -> WebhookEvent | None:
    stmt = (
        select(WebhookEvent)
        .where(WebhookEvent.provider == provider, WebhookEvent.delivery_id == delivery_id)
        .execution_options(populate_existing=True)
    )
    return db.execute(stmt).scalars().first()


def reclaim_stale_delivery(db: Session, *, event_id: uuid.UUID, stale_before: datetime) -> bool:
    """Take over a delivery stuck in 'received' (its handler died before acking).

    Conditional on the old received_at so only one redelivery wins.
    """

    stmt = (
        update(WebhookEvent)
        .where(
            WebhookEvent.id == event_id,
            WebhookEvent.status == EVENT_RECEIVED,
            WebhookEvent.received_at < stale_before,
        )
        .values(received_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def release_delivery(db: Session, *, event_id: uuid.UUID) -> bool:
    """Drop an unfinished delivery so the provider's retry is processed afresh."""

    stmt = (
        delete(WebhookEvent)
        .where(WebhookEvent.id == event_id, WebhookEvent.status == EVENT_RECEIVED)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def finish_delivery(
    db: Session,
    *,
    event_id: uuid.UUID,
    status: str,
    board_id: str | None = None,
    project_id: uuid.UUID | None = None,
    error: str | None = None,
) -> None:
    stmt = (
        update(WebhookEvent)
        .where(WebhookEvent.id == event_id)
        .values(status=status, board_id=board_id, project_id=project_id, error=error, processed_at=utcnow())
    )
    db.execute(stmt)
    db.commit()


def count_by_status(db: Session, *, status: str) -> int:
    stmt = select(func.count()).select_from(WebhookEvent).where(WebhookEvent.status == status)
    return int(db.execute(stmt).scalar_one())
