"""Credential store: one Account per (user, provider), written only by upsert."""

from __future__ import annotations

import uuid

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from issuelink.core.time import utcnow
from issuelink.crypto.fernet import decrypt_str, encrypt_str
from issuelink.models.account import ACCOUNT_ACTIVE, ACCOUNT_REVOKED, Account
from issuelink.providers.base import Credential


def get_account(
    db: Session,
    *,
    user_id: uuid.UUID,
    provider: str,
    for_update: bool = False,
) -> Account | None:
    # populate_existing: another request may have rewritten the row since this
    # session last loaded it.
    stmt = (
        select(Account)
        .where(Account.user_id == user_id, Account.provider == provider)
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().first()


def list_accounts(db: Session, *, user_id: uuid.UUID) -> list[Account]:
    stmt = select(Account).where(Account.user_id == user_id).order_by(Account.provider)
    return list(db.execute(stmt).scalars().all())


def upsert_account(
    db: Session,
    *,
    user_id: uuid.UUID,
    provider: str,
    credential: Credential,
    provider_account_id: str | None = None,
    keep_refresh_token: bool = False,
) -> Account:
    """Insert or update the Account keyed on (user_id, provider).

    With keep_refresh_token, a credential without a refresh token leaves the
    stored one in place (refresh responses that do not rotate).
    """

    now = utcnow()
    values: dict = {
        "encrypted_access_token": encrypt_str(credential.access_token),
        "scopes": credential.scope,
        "token_type": credential.token_type,
        "expires_at": credential.expires_at,
        "status": ACCOUNT_ACTIVE,
        "updated_at": now,
    }
    if credential.refresh_token or not keep_refresh_token:
        values["encrypted_refresh_token"] = encrypt_str(credential.refresh_token) if credential.refresh_token else None
    if provider_account_id is not None:
        values["provider_account_id"] = provider_account_id

    existing = get_account(db, user_id=user_id, provider=provider)
    if existing is None:
        row = Account(user_id=user_id, provider=provider, created_at=now, **values)
        db.add(row)
        try:
            db.commit()
        except IntegrityError:
            # Lost an insert race for the same key; fall through and update the winner.
            db.rollback()
        else:
            db.refresh(row)
            return row

    _update_by_key(db, user_id=user_id, provider=provider, values=values)
    row = get_account(db, user_id=user_id, provider=provider)
    assert row is not None
    return row


def _update_by_key(db: Session, *, user_id: uuid.UUID, provider: str, values: dict) -> None:
    stmt = update(Account).where(Account.user_id == user_id, Account.provider == provider).values(**values)
    db.execute(stmt)
    db.commit()


def mark_revoked(db: Session, *, user_id: uuid.UUID, provider: str) -> None:
    stmt = (
        update(Account)
        .where(Account.user_id == user_id, Account.provider == provider)
        .values(status=ACCOUNT_REVOKED, updated_at=utcnow())
    )
    db.execute(stmt)
    db.commit()


def delete_account(db: Session, *, user_id: uuid.UUID, provider: str) -> None:
    stmt = delete(Account).where(Account.user_id == user_id, Account.provider == provider)
    db.execute(stmt)
    db.commit()


def credential_of(account: Account) -> Credential:
    """Decrypt an Account into a Credential. Raises ValueError if the key rotated."""

    return Credential(
        access_token=decrypt_str(account.encrypted_access_token),
        refresh_token=decrypt_str(account.encrypted_refresh_token) if account.encrypted_refresh_token else None,
        expires_at=account.expires_at,
        scope=account.scopes,
        token_type=account.token_type,
    )
