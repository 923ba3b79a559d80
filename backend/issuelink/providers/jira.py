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
    ProviderIdentity,
    VerifiedEvent,
    body_fingerprint,
    header,
    load_payload,
)

AUTHORIZE_URL = "https://auth.atlassian.com/authorize"
TOKEN_URL = "https://auth.atlassian.com/oauth/token"
RESOURCES_URL = "https://api.atlassian.com/oauth/token/accessible-resources"

_EVENTS = {
    "jira:issue_created": ISSUE_CREATED,
    "jira:issue_updated": ISSUE_UPDATED,
    "jira:issue_deleted": ISSUE_DELETED,
}


class JiraAdapter(ProviderAdapter):
    name = "jira"
    # offline_access is what makes Atlassian hand out a (rotating) refresh token.
    scope = "read:jira-work write:jira-work read:jira-user offline_access"

    def build_authorize_url(self, state: str, redirect_uri: str) -> str:
        q = urlencode(
            {
                "audience": "api.atlassian.com",
                "client_id": self.client_id,
                "scope": self.scope,
                "redirect_uri": redirect_uri,
                "state": state,
                "response_type": "code",
                "prompt": "consent",
            }
        )
        return f"{AUTHORIZE_URL}?{q}"

    def exchange_code(self, code: str, redirect_uri: str) -> Credential:
        data = self._post_token(
            TOKEN_URL,
            json_body={
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
            json_body={
                "grant_type": "refresh_token",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": refresh_token,
            },
        )
        return self._credential(data)

    def fetch_identity(self, access_token: str) -> ProviderIdentity | None:
        # The cloud id addresses the user's Jira site in every later API call.
        resources = self._get_json(RESOURCES_URL, access_token=access_token)
        if not isinstance(resources, list):
            raise MalformedResponse("Jira accessible-resources is not a list", provider=self.name)
        if not resources:
            return None
        first = resources[0]
        return ProviderIdentity(account_id=str(first.get("id")), name=first.get("name"))

    def verify_webhook(self, raw_payload: bytes, headers: Mapping[str, str]) -> VerifiedEvent:
        if not self.webhook_secret:
            raise Unauthenticated("Jira webhook secret is not configured", provider=self.name)
        auth = header(headers, "Authorization")
        if not hmac.compare_digest(auth.encode("utf-8"), f"Bearer {self.webhook_secret}".encode("utf-8")):
            raise Unauthenticated("Jira webhook bearer secret mismatch", provider=self.name)

        payload = load_payload(self.name, raw_payload)
        return VerifiedEvent(
            provider=self.name,
            delivery_id=header(headers, "X-Atlassian-Webhook-Identifier") or body_fingerprint(raw_payload),
            event_name=str(payload.get("webhookEvent") or ""),
            payload=payload,
        )

    def parse_webhook(self, event: VerifiedEvent) -> DomainEvent:
        kind = _EVENTS.get(event.event_name)
        if kind is None:
            return DomainEvent(provider=self.name, kind=IGNORED)

        issue = event.payload.get("issue")
        if not isinstance(issue, dict) or not issue.get("key"):
            raise MalformedResponse("Jira issue event has no issue", provider=self.name)
        fields = issue.get("fields") or {}
        project = fields.get("project") or {}
        if not project.get("key"):
            raise MalformedResponse("Jira issue event has no project key", provider=self.name)

        if kind == ISSUE_UPDATED:
            items = (event.payload.get("changelog") or {}).get("items") or []
            if items and all(item.get("field") == "labels" for item in items):
                kind = LABEL_CHANGED

        description = fields.get("description")
        return DomainEvent(
            provider=self.name,
            kind=kind,
            board_id=str(project["key"]),
            external_issue_id=str(issue["key"]),
            title=fields.get("summary") or "",
            # Jira Cloud v3 sends Atlassian Document Format; keep plain strings only.
            description=description if isinstance(description, str) else "",
            labels=tuple(str(lbl) for lbl in fields.get("labels") or []),
        )
