from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from issuelink.core.errors import (
    InvalidGrant,
    MalformedResponse,
    ProviderUnavailable,
    ReauthRequired,
    TemporarilyUnavailable,
)
from issuelink.core.settings import Settings
from issuelink.core.time import as_aware_utc, utcnow
from issuelink.models.account import ACCOUNT_REVOKED, Account
from issuelink.providers.base import Credential, ProviderAdapter
from issuelink.providers.registry import ProviderRegistry
from issuelink.repos.accounts import credential_of, get_account, mark_revoked, upsert_account
from issuelink.services.locks import KeyedLocks

logger = logging.getLogger(__name__)


class TokenRefresher:
    """Hands out credentials that are not about to expire.

    Refreshes are serialized per (user, provider): with single-use refresh
    token rotation (Jira, GitHub Apps) two parallel refreshes would burn each
    other's new refresh token.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        locks: KeyedLocks,
        *,
        margin_seconds: int = 60,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.registry = registry
        self.locks = locks
        self.margin = timedelta(seconds=margin_seconds)
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    @classmethod
    def from_settings(cls, registry: ProviderRegistry, locks: KeyedLocks, settings: Settings) -> TokenRefresher:
        return cls(
            registry,
            locks,
            margin_seconds=settings.refresh_margin_seconds,
            max_attempts=settings.refresh_max_attempts,
            backoff_seconds=settings.refresh_backoff_seconds,
        )

    def ensure_fresh(
        self,
        db: Session,
        *,
        user_id: uuid.UUID,
        provider: str,
        now: datetime | None = None,
    ) -> Credential:
        adapter = self.registry.get(provider)
        if now is None:
            now = utcnow()

        account = get_account(db, user_id=user_id, provider=adapter.name)
        self._check_usable(account, adapter.name)
        if self._is_fresh(account, now):
            return self._decrypt(account)

        with self.locks.hold((user_id, adapter.name)):
            try:
                return self._refresh_locked(db, adapter, user_id=user_id, now=now)
            except BaseException:
                # Drops the row lock taken by the FOR UPDATE re-read.
                db.rollback()
                raise

    def get_access_token(self, db: Session, *, user_id: uuid.UUID, provider: str) -> str:
        return self.ensure_fresh(db, user_id=user_id, provider=provider).access_token

    def _refresh_locked(self, db: Session, adapter: ProviderAdapter, *, user_id: uuid.UUID, now: datetime) -> Credential:
        account = get_account(db, user_id=user_id, provider=adapter.name, for_update=True)
        self._check_usable(account, adapter.name)
        if self._is_fresh(account, now):
            # Another holder refreshed while we waited.
            return self._decrypt(account)

        current = self._decrypt(account)
        if not current.refresh_token:
            raise ReauthRequired(f"{adapter.name} token expired and cannot be refreshed", provider=adapter.name)

        try:
            refreshed = self._refresh_with_retry(adapter, current.refresh_token)
        except InvalidGrant as e:
            mark_revoked(db, user_id=user_id, provider=adapter.name)
            logger.warning("Refresh grant rejected; %s account revoked for user=%s", adapter.name, user_id)
            raise ReauthRequired(f"{adapter.name} authorization was revoked; reconnect required", provider=adapter.name) from e

        if refreshed.expires_at is not None and as_aware_utc(refreshed.expires_at) <= now:
            logger.error("%s refresh returned an already expired token", adapter.name)
            raise MalformedResponse(f"{adapter.name} refresh returned an expired token", provider=adapter.name)

        account = upsert_account(
            db,
            user_id=user_id,
            provider=adapter.name,
            credential=refreshed,
            keep_refresh_token=True,
        )
        logger.info("Refreshed %s token for user=%s", adapter.name, user_id)
        return self._decrypt(account)

    def _refresh_with_retry(self, adapter: ProviderAdapter, refresh_token: str) -> Credential:
        for attempt in range(1, self.max_attempts + 1):
            try:
                return adapter.refresh(refresh_token)
            except ProviderUnavailable as e:
                if attempt >= self.max_attempts:
                    logger.error("%s refresh failed after %d attempts: %s", adapter.name, attempt, e)
                    raise TemporarilyUnavailable(
                        f"{adapter.name} is unavailable; try again later", provider=adapter.name
                    ) from e
                delay = self.backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "%s refresh unavailable, retrying in %.2fs (attempt %d/%d)",
                    adapter.name,
                    delay,
                    attempt,
                    self.max_attempts,
                )
                self.sleep(delay)
        raise AssertionError("unreachable")

    def _is_fresh(self, account: Account, now: datetime) -> bool:
        if account.expires_at is None:
            return True
        return as_aware_utc(account.expires_at) > now + self.margin

    @staticmethod
    def _check_usable(account: Account | None, provider: str) -> None:
        if account is None:
            raise ReauthRequired(f"{provider} is not connected", provider=provider)
        if account.status == ACCOUNT_REVOKED:
            raise ReauthRequired(f"{provider} authorization was revoked; reconnect required", provider=provider)

    @staticmethod
    def _decrypt(account: Account) -> Credential:
        try:
            return credential_of(account)
        except ValueError as e:
            raise ReauthRequired(f"{account.provider} token cannot be decrypted; reconnect required") from e
