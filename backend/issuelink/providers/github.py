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
    hmac_sha256,
    load_payload,
)

AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
TOKEN_URL = "https://github.com/login/oauth/access_token"
API_URL = "https://api.github.com"

_ISSUE_ACTIONS = {
    "opened": ISSUE_CREATED,
    "edited": ISSUE_UPDATED,
    "reopened": ISSUE_UPDATED,
    "closed": ISSUE_UPDATED,
    "deleted": ISSUE_DELETED,
    "labeled": LABEL_CHANGED,
    "unlabeled": LABEL_CHANGED,
}


class GitHubAdapter(ProviderAdapter):
    name = "github"
    scope = "read:user repo"

    def build_authorize_url(self, state: str, redirect_uri: str) -> str:
        q = urlencode(
            {
                "client_id": self.client_id,
                "redirect_uri": redirect_uri,
                "scope": self.scope,
                "state": state,
                "allow_signup": "false",
            }
        )
        return f"{AUTHORIZE_URL}?{q}"

    def exchange_code(self, code: str, redirect_uri: str) -> Credential:
        data = self._post_token(
            TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
            },
        )
        # OAuth App tokens carry no expires_in; GitHub App user tokens expire after 8h.
        return self._credential(data)

    def refresh(self, refresh_token: str) -> Credential:
        data = self._post_token(
            TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
        )
        return self._credential(data)

    def fetch_identity(self, access_token: str) -> ProviderIdentity | None:
        viewer = self._get_json(f"{API_URL}/user", access_token=access_token)
        if not isinstance(viewer, dict) or not viewer.get("login") or viewer.get("id") is None:
            raise MalformedResponse("GitHub /user response has no login", provider=self.name)
        return ProviderIdentity(account_id=str(viewer["id"]), login=str(viewer["login"]), name=viewer.get("name"))

    def verify_webhook(self, raw_payload: bytes, headers: Mapping[str, str]) -> VerifiedEvent:
        if not self.webhook_secret:
            raise Unauthenticated("GitHub webhook secret is not configured", provider=self.name)
        signature = header(headers, "X-Hub-Signature-256")
        expected = "sha256=" + hmac_sha256(self.webhook_secret, raw_payload).hex()
        if not signature or not hmac.compare_digest(signature, expected):
            raise Unauthenticated("GitHub webhook signature mismatch", provider=self.name)

        payload = load_payload(self.name, raw_payload)
        event_name = header(headers, "X-GitHub-Event")
        action = payload.get("action")
        if action:
            event_name = f"{event_name}.{action}"
        return VerifiedEvent(
            provider=self.name,
            delivery_id=header(headers, "X-GitHub-Delivery") or body_fingerprint(raw_payload),
            event_name=event_name,
            payload=payload,
        )

    def parse_webhook(self, event: VerifiedEvent) -> DomainEvent:
        payload = event.payload
        repo = payload.get("repository") or {}
        board_id = repo.get("full_name")
        base, _, action = event.event_name.partition(".")
        if base != "issues" or action not in _ISSUE_ACTIONS:
            return DomainEvent(provider=self.name, kind=IGNORED, board_id=board_id)

        issue = payload.get("issue")
        if not isinstance(issue, dict) or issue.get("number") is None:
            raise MalformedResponse("GitHub issues event has no issue", provider=self.name)
        return DomainEvent(
            provider=self.name,
            kind=_ISSUE_ACTIONS[action],
            board_id=board_id,
            external_issue_id=str(issue["number"]),
            title=issue.get("title") or "",
            description=issue.get("body") or "",
            labels=tuple(lbl.get("name", "") for lbl in issue.get("labels") or [] if isinstance(lbl, dict)),
        )
