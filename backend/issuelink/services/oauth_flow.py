"""Authorization-code flow controller.

A flow moves Start -> AwaitingCallback -> Succeeded | Failed | Expired. The
AwaitingCallback state lives only in the oauth_states table, so a flow
survives a process restart between the redirect and the callback, and a state
value can be consumed once at most.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlparse

from sqlalchemy.orm import Session

from issuelink.core.errors import CoreError, InvalidGrant, InvalidState, MalformedResponse
from issuelink.core.security import new_state_token
from issuelink.core.settings import Settings, callback_uri
from issuelink.core.time import utcnow
from issuelink.models.oauth_state import PURPOSE_LINK, PURPOSE_SIGNIN
from issuelink.providers.base import Credential, ProviderAdapter, ProviderIdentity
from issuelink.providers.registry import ProviderRegistry
from issuelink.repos.accounts import upsert_account
from issuelink.repos.oauth_states import consume_state, create_state, delete_expired_states
from issuelink.repos.users import upsert_user
from issuelink.services.locks import KeyedLocks

logger = logging.getLogger(__name__)

DEFAULT_DESTINATION = "/dashboard"


class FlowStatus(str, enum.Enum):
    AWAITING_CALLBACK = "awaiting_callback"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"


class ExpiredState(InvalidState):
    """The state existed but its TTL lapsed before the callback arrived."""


@dataclass(frozen=True)
class CompletedFlow:
    provider: str
    user_id: uuid.UUID
    purpose: str
    destination: str
    login: str | None = None
    status: FlowStatus = FlowStatus.SUCCEEDED


def safe_destination(destination: str | None, settings: Settings) -> str:
    """Keep post-auth redirects on our own UI: relative paths or the web origin."""

    if not destination or "\\" in destination:
        return DEFAULT_DESTINATION
    parsed = urlparse(destination)
    if not parsed.scheme and not parsed.netloc:
        return destination if destination.startswith("/") and not destination.startswith("//") else DEFAULT_DESTINATION
    web = urlparse(settings.web_base_url)
    if (parsed.scheme, parsed.netloc) == (web.scheme, web.netloc):
        return destination
    return DEFAULT_DESTINATION


class OAuthFlowController:
    def __init__(self, registry: ProviderRegistry, settings: Settings, locks: KeyedLocks | None = None):
        self.registry = registry
        self.settings = settings
        # Shared with TokenRefresher so a relink and a refresh never interleave.
        self.locks = locks if locks is not None else KeyedLocks()

    def start(
        self,
        db: Session,
        *,
        provider: str,
        user_id: uuid.UUID | None,
        destination: str | None = None,
        purpose: str = PURPOSE_LINK,
        now: datetime | None = None,
    ) -> str:
        """Persist a fresh state and return the provider authorize URL."""

        adapter = self.registry.get(provider)
        if purpose == PURPOSE_LINK and user_id is None:
            raise ValueError("Linking a provider requires a signed-in user")
        if now is None:
            now = utcnow()

        delete_expired_states(db, now=now)
        state = new_state_token()
        create_state(
            db,
            provider=adapter.name,
            state=state,
            user_id=user_id,
            purpose=purpose,
            destination=safe_destination(destination, self.settings),
            expires_at=now + timedelta(minutes=self.settings.oauth_state_ttl_minutes),
        )
        logger.info("OAuth flow started provider=%s purpose=%s user=%s", adapter.name, purpose, user_id)
        return adapter.build_authorize_url(state, callback_uri(self.settings, adapter.name))

    def complete(
        self,
        db: Session,
        *,
        provider: str,
        code: str | None,
        state: str | None,
        error: str | None = None,
        session_user_id: uuid.UUID | None = None,
        now: datetime | None = None,
    ) -> CompletedFlow:
        """Consume the state, exchange the code and persist the Account.

        Raises InvalidState (including ExpiredState), InvalidGrant,
        ProviderUnavailable or MalformedResponse. Nothing is written to the
        credential store unless the exchange succeeded.
        """

        adapter = self.registry.get(provider)
        if now is None:
            now = utcnow()

        if not state:
            raise self._failed(adapter, InvalidState("Missing OAuth state", provider=adapter.name))
        pending = consume_state(db, state=state)
        if pending is None:
            raise self._failed(adapter, InvalidState("Unknown or already used OAuth state", provider=adapter.name))
        if pending.provider != adapter.name:
            raise self._failed(adapter, InvalidState("OAuth state belongs to another provider", provider=adapter.name))
        if pending.expires_at <= now:
            raise self._failed(adapter, ExpiredState("OAuth state expired", provider=adapter.name), FlowStatus.EXPIRED)
        if pending.purpose == PURPOSE_LINK and session_user_id is not None and session_user_id != pending.user_id:
            raise self._failed(adapter, InvalidState("OAuth state belongs to another user", provider=adapter.name))

        if error:
            raise self._failed(adapter, InvalidGrant(f"Authorization denied: {error}", provider=adapter.name))
        if not code:
            raise self._failed(adapter, InvalidGrant("Missing authorization code", provider=adapter.name))

        try:
            credential = adapter.exchange_code(code, callback_uri(self.settings, adapter.name))
        except CoreError as e:
            raise self._failed(adapter, e)

        if pending.purpose == PURPOSE_SIGNIN:
            return self._complete_signin(db, adapter, credential, destination=pending.destination)

        assert pending.user_id is not None
        identity = self._identity_or_none(adapter, credential)
        with self.locks.hold((pending.user_id, adapter.name)):
            upsert_account(
                db,
                user_id=pending.user_id,
                provider=adapter.name,
                credential=credential,
                provider_account_id=identity.account_id if identity else None,
            )
        logger.info("OAuth flow succeeded provider=%s user=%s", adapter.name, pending.user_id)
        return CompletedFlow(
            provider=adapter.name,
            user_id=pending.user_id,
            purpose=pending.purpose,
            destination=pending.destination,
        )

    def _complete_signin(
        self, db: Session, adapter: ProviderAdapter, credential: Credential, *, destination: str
    ) -> CompletedFlow:
        try:
            identity = adapter.fetch_identity(credential.access_token)
        except CoreError as e:
            raise self._failed(adapter, e)
        if identity is None or not identity.login:
            raise self._failed(adapter, MalformedResponse("Sign-in provider returned no login", provider=adapter.name))

        user = upsert_user(db, login=identity.login, name=identity.name)
        with self.locks.hold((user.id, adapter.name)):
            upsert_account(
                db,
                user_id=user.id,
                provider=adapter.name,
                credential=credential,
                provider_account_id=identity.account_id,
            )
        logger.info("Sign-in succeeded provider=%s login=%s", adapter.name, user.login)
        return CompletedFlow(
            provider=adapter.name,
            user_id=user.id,
            purpose=PURPOSE_SIGNIN,
            destination=destination,
            login=user.login,
        )

    @staticmethod
    def _identity_or_none(adapter: ProviderAdapter, credential: Credential) -> ProviderIdentity | None:
        # Identity is informational for linked providers; the link stands without it.
        try:
            return adapter.fetch_identity(credential.access_token)
        except CoreError as e:
            logger.warning("Could not fetch %s identity after link: %s", adapter.name, e.kind)
            return None

    @staticmethod
    def _failed(adapter: ProviderAdapter, err: CoreError, status: FlowStatus = FlowStatus.FAILED) -> CoreError:
        log = logger.error if isinstance(err, MalformedResponse) else logger.warning
        log("OAuth flow %s provider=%s kind=%s: %s", status.value, adapter.name, err.kind, err)
        return err
