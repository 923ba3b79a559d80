from __future__ import annotations

import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from issuelink.core.time import as_aware_utc, utcnow
from issuelink.crypto.fernet import decrypt_str, encrypt_str
from issuelink.models.token_handoff import TokenHandoff


def create_handoff(db: Session, *, ttl: timedelta, now: datetime | None = None) -> TokenHandoff:
    if now is None:
        now = utcnow()
    row = TokenHandoff(created_at=now, updated_at=now, expires_at=now + ttl)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def write_handoff(db: Session, *, write_key: uuid.UUID, access_token: str, now: datetime | None = None) -> bool:
    """Fill an empty, unexpired handoff. False when the key is unknown, spent or expired."""

    if now is None:
        now = utcnow()
    stmt = (
        update(TokenHandoff)
        .where(
            TokenHandoff.write_key == write_key,
            TokenHandoff.encrypted_access_token.is_(None),
            TokenHandoff.expires_at > now,
        )
        .values(encrypted_access_token=encrypt_str(access_token), updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


def take_handoff(db: Session, *, read_key: uuid.UUID, now: datetime | None = None) -> str | None:
    """Read a written handoff and delete it in the same step.

    Only the caller whose DELETE removes the row gets the token, so two readers
    racing on one read_key cannot both see it. Expired rows are dropped unread.
    """

    if now is None:
        now = utcnow()
    row = (
        db.execute(
            select(TokenHandoff)
            .where(TokenHandoff.read_key == read_key, TokenHandoff.encrypted_access_token.is_not(None))
            .execution_options(populate_existing=True)
        )
        .scalars()
        .first()
    )
    if row is None:
        return None
    ciphertext = row.encrypted_access_token
    expired = as_aware_utc(row.expires_at) <= now

    stmt = (
        delete(TokenHandoff)
        .where(TokenHandoff.read_key == read_key, TokenHandoff.encrypted_access_token.is_not(None))
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    db.commit()
    if result.rowcount != 1 or expired:
        return None
    return decrypt_str(ciphertext)


def delete_expired_handoffs(db: Session, *, now: datetime | None = None) -> int:
    if now is None:
        now = utcnow()
    stmt = delete(TokenHandoff).where(TokenHandoff.expires_at < now).execution_options(synchronize_session=False)
    result = db.execute(stmt)
    db.commit()
    return result.rowcount
