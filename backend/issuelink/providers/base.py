"""Provider adapter interface.

Every provider (GitHub, Jira, Linear, Zendesk) implements the same capability
set: authorize URL, code exchange, refresh, webhook verification and webhook
parsing. Adapters only talk HTTP to their provider; persistence belongs to the
callers.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import requests

from issuelink.core.errors import InvalidGrant, MalformedResponse, ProviderMisconfigured, ProviderUnavailable
from issuelink.core.time import utcnow

ISSUE_CREATED = "issue_created"
ISSUE_UPDATED = "issue_updated"
ISSUE_DELETED = "issue_deleted"
LABEL_CHANGED = "label_changed"
IGNORED = "ignored"

# Token endpoint error codes that mean the grant itself is dead.
_INVALID_GRANT_CODES = {"invalid_grant", "bad_verification_code", "bad_refresh_token"}


@dataclass(frozen=True)
class Credential:
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scope: str = ""
    token_type: str = "Bearer"


@dataclass(frozen=True)
class ProviderIdentity:
    account_id: str
    login: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class VerifiedEvent:
    provider: str
    delivery_id: str
    event_name: str
    payload: dict


@dataclass(frozen=True)
class DomainEvent:
    provider: str
    kind: str  # issue_created|issue_updated|issue_deleted|label_changed|ignored
    board_id: str | None = None
    external_issue_id: str | None = None
    title: str = ""
    description: str = ""
    labels: tuple[str, ...] = field(default_factory=tuple)


class ProviderAdapter(ABC):
    name: str = ""
    timeout: float = 15.0

    def __init__(self, *, client_id: str, client_secret: str, webhook_secret: str = "", timeout: float = 15.0):
        self.client_id = client_id
        self.client_secret = client_secret
        self.webhook_secret = webhook_secret
        self.timeout = timeout
        self._session = requests.Session()
        self._session.headers.update({"Accept": "application/json"})

    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    @abstractmethod
    def build_authorize_url(self, state: str, redirect_uri: str) -> str:
        ...

    @abstractmethod
    def exchange_code(self, code: str, redirect_uri: str) -> Credential:
        ...

    @abstractmethod
    def refresh(self, refresh_token: str) -> Credential:
        ...

    @abstractmethod
    def verify_webhook(self, raw_payload: bytes, headers: Mapping[str, str]) -> VerifiedEvent:
        """Return the verified event or raise Unauthenticated."""

    @abstractmethod
    def parse_webhook(self, event: VerifiedEvent) -> DomainEvent:
        ...

    def fetch_identity(self, access_token: str) -> ProviderIdentity | None:
        return None

    # -- shared helpers -------------------------------------------------

    def _post_token(self, url: str, *, data: dict | None = None, json_body: dict | None = None) -> dict:
        try:
            resp = self._session.post(url, data=data, json=json_body, timeout=self.timeout)
        except requests.Timeout as e:
            raise ProviderUnavailable(f"{self.name} token endpoint timed out", provider=self.name) from e
        except requests.ConnectionError as e:
            raise ProviderUnavailable(f"{self.name} token endpoint unreachable", provider=self.name) from e
        return self._token_payload(resp)

    def _token_payload(self, resp: requests.Response) -> dict:
        if resp.status_code >= 500 or resp.status_code == 429:
            raise ProviderUnavailable(f"{self.name} token endpoint returned {resp.status_code}", provider=self.name)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponse(f"{self.name} token endpoint returned non-JSON", provider=self.name) from e
        if not isinstance(data, dict):
            raise MalformedResponse(f"{self.name} token endpoint returned {type(data).__name__}", provider=self.name)

        # GitHub reports grant errors with a 200 and an "error" field.
        error = data.get("error")
        if error or resp.status_code >= 400:
            code = error if isinstance(error, str) else ""
            msg = data.get("error_description") or code or f"HTTP {resp.status_code}"
            if code in _INVALID_GRANT_CODES:
                raise InvalidGrant(f"{self.name} rejected the grant: {msg}", provider=self.name)
            # invalid_client, redirect_uri_mismatch and the like: fix the app, keep the account.
            raise ProviderMisconfigured(f"{self.name} token endpoint refused the client: {msg}", provider=self.name)
        return data

    def _get_json(self, url: str, *, access_token: str) -> dict | list:
        try:
            resp = self._session.get(url, headers={"Authorization": f"Bearer {access_token}"}, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as e:
            raise ProviderUnavailable(f"{self.name} API unreachable", provider=self.name) from e
        if resp.status_code >= 500 or resp.status_code == 429:
            raise ProviderUnavailable(f"{self.name} API returned {resp.status_code}", provider=self.name)
        if resp.status_code in (401, 403):
            raise InvalidGrant(f"{self.name} API rejected the access token", provider=self.name)
        try:
            resp.raise_for_status()
            return resp.json()
        except (requests.HTTPError, ValueError) as e:
            raise MalformedResponse(f"{self.name} API returned an unexpected response", provider=self.name) from e

    def _credential(self, data: dict) -> Credential:
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise MalformedResponse(f"{self.name} token response has no access_token", provider=self.name)
        expires_at = None
        if data.get("expires_in") not in (None, ""):
            try:
                expires_at = utcnow() + timedelta(seconds=int(data["expires_in"]))
            except (TypeError, ValueError) as e:
                raise MalformedResponse(f"{self.name} token response has a bad expires_in", provider=self.name) from e
        scope = data.get("scope") or ""
        if isinstance(scope, list):
            scope = " ".join(str(s) for s in scope)
        return Credential(
            access_token=access_token,
            refresh_token=data.get("refresh_token") or None,
            expires_at=expires_at,
            scope=str(scope),
            token_type=data.get("token_type") or "Bearer",
        )


def hmac_sha256(secret: str, message: bytes) -> bytes:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()


def body_fingerprint(raw_payload: bytes) -> str:
    # Stand-in delivery id when a provider sends none: exact re-deliveries still collide.
    return "sha256:" + hashlib.sha256(raw_payload).hexdigest()


def header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup that also works for plain dicts."""

    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for k, v in headers.items():
            if k.lower() == lowered:
                return v
        return ""
    return value


def load_payload(provider: str, raw_payload: bytes) -> dict:
    try:
        data = json.loads(raw_payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedResponse(f"{provider} webhook body is not JSON", provider=provider) from e
    if not isinstance(data, dict):
        raise MalformedResponse(f"{provider} webhook body is not an object", provider=provider)
    return data
