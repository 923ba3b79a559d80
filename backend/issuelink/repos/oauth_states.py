from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from issuelink.core.time import as_aware_utc, utcnow
from issuelink.models.oauth_state import PURPOSE_LINK, OAuthState


@dataclass(frozen=True)
class ConsumedState:
    """Snapshot of a consumed OAuthState row (the row itself is gone)."""

    provider: str
    user_id: uuid.UUID | None
    purpose: str
    destination: str
    expires_at: datetime


def create_state(
    db: Session,
    *,
    provider: str,
    state: str,
    expires_at: datetime,
    user_id: uuid.UUID | None = None,
    purpose: str = PURPOSE_LINK,
    destination: str = "/dashboard",
) -> OAuthState:
    row = OAuthState(
        user_id=user_id,
        provider=provider,
        state=state,
        purpose=purpose,
        destination=destination,
        expires_at=expires_at,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def consume_state(db: Session, *, state: str) -> ConsumedState | None:
    """Atomically take a state out of the store.

    Returns None when the state is unknown or another request consumed it
    first; the DELETE row count decides, so concurrent callbacks with the same
    state cannot both succeed. Expiry is left to the caller.
    """

    row = db.execute(select(OAuthState).where(OAuthState.state == state)).scalars().first()
    if row is None:
        return None
    snapshot = ConsumedState(
        provider=row.provider,
        user_id=row.user_id,
        purpose=row.purpose,
        destination=row.destination,
        expires_at=as_aware_utc(row.expires_at),
    )
    result = db.execute(delete(OAuthState).where(OAuthState.id == row.id))
    db.commit()
    if result.rowcount != 1:
        return None
    return snapshot


def delete_expired_states(db: Session, *, now: datetime | None = None) -> int:
    if now is None:
        now = utcnow()
    # SQLite hands back naive timestamps; let the database do the comparison.
    stmt = delete(OAuthState).where(OAuthState.expires_at < now).execution_options(synchronize_session=False)
    result = db.execute(stmt)
    db.commit()
    return result.rowcount
