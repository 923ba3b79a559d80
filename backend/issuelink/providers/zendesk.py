from __future__ import annotations

import base64
import hmac
from collections.abc import Mapping
from urllib.parse import urlencode

from issuelink.core.errors import MalformedResponse, Unauthenticated
from issuelink.providers.base import (
    IGNORED,
    ISSUE_CREATED,
    ISSUE_DELETED,
    ISSUE_UPDATED,
    LABEL_CHANGED,
    Credential,
    DomainEvent,
    ProviderAdapter,
    VerifiedEvent,
    body_fingerprint,
    header,
    hmac_sha256,
    load_payload,
)

_EVENT_PREFIX = "zen:event-type:"

_EVENTS = {
    "ticket.created": ISSUE_CREATED,
    "ticket.status_changed": ISSUE_UPDATED,
    "ticket.subject_changed": ISSUE_UPDATED,
    "ticket.description_changed": ISSUE_UPDATED,
    "ticket.priority_changed": ISSUE_UPDATED,
    "ticket.tags_changed": LABEL_CHANGED,
    "ticket.soft_deleted": ISSUE_DELETED,
    "ticket.permanently_deleted": ISSUE_DELETED,
}


class ZendeskAdapter(ProviderAdapter):
    name = "zendesk"
    scope = "read write"

    def __init__(self, *, subdomain: str, **kwargs):
        super().__init__(**kwargs)
        self.subdomain = subdomain

    def is_configured(self) -> bool:
        return bool(self.subdomain) and super().is_configured()

    @property
    def base_url(self) -> str:
        return f"https://{self.subdomain}.zendesk.com"

    def build_authorize_url(self, state: str, redirect_uri: str) -> str:
        q = urlencode(
            {
                "response_type": "code",
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "scope": self.scope,
                "state": state,
            }
        )
        return f"{self.base_url}/oauth/authorizations/new?{q}"

    def exchange_code(self, code: str, redirect_uri: str) -> Credential:
        data = self._post_token(
            f"{self.base_url}/oauth/tokens",
            json_body={
                "grant_type": "authorization_code",
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": redirect_uri,
                "scope": self.scope,
            },
        )
        return self._credential(data)

    def refresh(self, refresh_token: str) -> Credential:
        data = self._post_token(
            f"{self.base_url}/oauth/tokens",
            json_body={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
        )
        return self._credential(data)

    def verify_webhook(self, raw_payload: bytes, headers: Mapping[str, str]) -> VerifiedEvent:
        if not self.webhook_secret:
            raise Unauthenticated("Zendesk webhook secret is not configured", provider=self.name)
        signature = header(headers, "X-Zendesk-Webhook-Signature")
        timestamp = header(headers, "X-Zendesk-Webhook-Signature-Timestamp")
        if not signature or not timestamp:
            raise Unauthenticated("Zendesk webhook signature headers missing", provider=self.name)
        # Zendesk signs timestamp + body and sends the digest base64-encoded.
        expected = base64.b64encode(hmac_sha256(self.webhook_secret, timestamp.encode("utf-8") + raw_payload))
        if not hmac.compare_digest(signature.encode("utf-8"), expected):
            raise Unauthenticated("Zendesk webhook signature mismatch", provider=self.name)

        payload = load_payload(self.name, raw_payload)
        event_type = str(payload.get("type") or "")
        return VerifiedEvent(
            provider=self.name,
            delivery_id=str(payload.get("id") or "") or body_fingerprint(raw_payload),
            event_name=event_type.removeprefix(_EVENT_PREFIX),
            payload=payload,
        )

    def parse_webhook(self, event: VerifiedEvent) -> DomainEvent:
        kind = _EVENTS.get(event.event_name)
        if kind is None:
            return DomainEvent(provider=self.name, kind=IGNORED)

        detail = event.payload.get("detail")
        if not isinstance(detail, dict) or detail.get("id") is None:
            raise MalformedResponse("Zendesk ticket event has no detail.id", provider=self.name)
        account_id = event.payload.get("account_id")
        if account_id is None:
            raise MalformedResponse("Zendesk ticket event has no account_id", provider=self.name)

        return DomainEvent(
            provider=self.name,
            kind=kind,
            board_id=str(account_id),
            external_issue_id=str(detail["id"]),
            title=detail.get("subject") or "",
            description=detail.get("description") or "",
            labels=tuple(str(t) for t in detail.get("tags") or []),
        )
