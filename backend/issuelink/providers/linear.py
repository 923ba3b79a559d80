from __future__ import annotations

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

AUTHORIZE_URL = "https://linear.app/oauth/authorize"
TOKEN_URL = "https://api.linear.app/oauth/token"

_ACTIONS = {
    "create": ISSUE_CREATED,
    "update": ISSUE_UPDATED,
    "remove": ISSUE_DELETED,
}


class LinearAdapter(ProviderAdapter):
    name = "linear"
    scope = "read,write"

    def build_authorize_url(self, state: str, redirect_uri: str) -> str:
        q = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "response_type": "code",
                "scope": self.scope,
                "state": state,
                "prompt": "consent",
            }
        )
        return f"{AUTHORIZE_URL}?{q}"

    def exchange_code(self, code: str, redirect_uri: str) -> Credential:
        data = self._post_token(
            TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        return self._credential(data)

    def refresh(self, refresh_token: str) -> Credential:
        data = self._post_token(
            TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
            },
        )
        return self._credential(data)

    def verify_webhook(self, raw_payload: bytes, headers: Mapping[str, str]) -> VerifiedEvent:
        if not self.webhook_secret:
            raise Unauthenticated("Linear webhook secret is not configured", provider=self.name)
        signature = header(headers, "Linear-Signature")
        expected = hmac_sha256(self.webhook_secret, raw_payload).hex()
        if not signature or not hmac.compare_digest(signature, expected):
            raise Unauthenticated("Linear webhook signature mismatch", provider=self.name)

        payload = load_payload(self.name, raw_payload)
        return VerifiedEvent(
            provider=self.name,
            delivery_id=header(headers, "Linear-Delivery") or body_fingerprint(raw_payload),
            event_name=f"{payload.get('type') or ''}.{payload.get('action') or ''}",
            payload=payload,
        )

    def parse_webhook(self, event: VerifiedEvent) -> DomainEvent:
        entity, _, action = event.event_name.partition(".")
        if entity != "Issue" or action not in _ACTIONS:
            return DomainEvent(provider=self.name, kind=IGNORED)

        data = event.payload.get("data")
        if not isinstance(data, dict) or not data.get("id"):
            raise MalformedResponse("Linear issue event has no data.id", provider=self.name)
        team_id = data.get("teamId") or (data.get("team") or {}).get("id")
        if not team_id:
            raise MalformedResponse("Linear issue event has no team", provider=self.name)

        kind = _ACTIONS[action]
        updated_from = event.payload.get("updatedFrom") or {}
        if kind == ISSUE_UPDATED and set(updated_from) - {"updatedAt"} == {"labelIds"}:
            kind = LABEL_CHANGED

        labels = data.get("labels") or []
        return DomainEvent(
            provider=self.name,
            kind=kind,
            board_id=str(team_id),
            external_issue_id=str(data["id"]),
            title=data.get("title") or "",
            description=data.get("description") or "",
            labels=tuple(lbl.get("name", "") for lbl in labels if isinstance(lbl, dict)),
        )
