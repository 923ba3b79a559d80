import base64
import hashlib
import hmac
import json

import pytest
import requests

from conftest import WEBHOOK_SECRET, github_issue_body, github_signature
from issuelink.core.errors import (
    InvalidGrant,
    MalformedResponse,
    ProviderMisconfigured,
    ProviderUnavailable,
    Unauthenticated,
)
from issuelink.providers.base import ISSUE_CREATED, ISSUE_DELETED, ISSUE_UPDATED, LABEL_CHANGED, IGNORED
from issuelink.providers.github import GitHubAdapter
from issuelink.providers.jira import JiraAdapter
from issuelink.providers.linear import LinearAdapter
from issuelink.providers.zendesk import ZendeskAdapter


def _response(status: int, body: bytes) -> requests.Response:
    r = requests.Response()
    r.status_code = status
    r._content = body
    return r


def _github(secret: str = WEBHOOK_SECRET) -> GitHubAdapter:
    return GitHubAdapter(client_id="cid", client_secret="csecret", webhook_secret=secret)


def test_github_webhook_signature_verifies_and_parses():
    body = github_issue_body("labeled", labels=["bug", "ui"])
    adapter = _github()
    verified = adapter.verify_webhook(
        body,
        {
            "X-Hub-Signature-256": github_signature(body),
            "X-GitHub-Delivery": "72d3162e-cc78-11e3-81ab-4c9367dc0958",
            "X-GitHub-Event": "issues",
        },
    )
    assert verified.delivery_id == "72d3162e-cc78-11e3-81ab-4c9367dc0958"
    assert verified.event_name == "issues.labeled"

    event = adapter.parse_webhook(verified)
    assert event.kind == LABEL_CHANGED
    assert event.board_id == "acme/web"
    assert event.external_issue_id == "7"
    assert event.labels == ("bug", "ui")


def test_github_webhook_rejects_bad_or_missing_signature():
    body = github_issue_body()
    adapter = _github()
    with pytest.raises(Unauthenticated):
        adapter.verify_webhook(body, {"X-Hub-Signature-256": github_signature(body, "other"), "X-GitHub-Event": "issues"})
    with pytest.raises(Unauthenticated):
        adapter.verify_webhook(body, {"X-GitHub-Event": "issues"})
    with pytest.raises(Unauthenticated):
        _github(secret="").verify_webhook(body, {"X-Hub-Signature-256": github_signature(body)})


def test_github_delivery_id_falls_back_to_body_hash():
    body = github_issue_body()
    verified = _github().verify_webhook(body, {"x-hub-signature-256": github_signature(body), "x-github-event": "issues"})
    assert verified.delivery_id == "sha256:" + hashlib.sha256(body).hexdigest()


def test_github_non_issue_events_are_ignored():
    body = json.dumps({"zen": "Design for failure.", "repository": {"full_name": "acme/web"}}).encode("utf-8")
    adapter = _github()
    verified = adapter.verify_webhook(body, {"X-Hub-Signature-256": github_signature(body), "X-GitHub-Event": "ping"})
    assert adapter.parse_webhook(verified).kind == IGNORED


def test_jira_webhook_bearer_secret_and_label_only_changelog():
    adapter = JiraAdapter(client_id="c", client_secret="s", webhook_secret=WEBHOOK_SECRET)
    body = json.dumps(
        {
            "webhookEvent": "jira:issue_updated",
            "issue": {"key": "WEB-12", "fields": {"summary": "Crash", "project": {"key": "WEB"}, "labels": ["p1"]}},
            "changelog": {"items": [{"field": "labels", "fromString": "", "toString": "p1"}]},
        }
    ).encode("utf-8")

    with pytest.raises(Unauthenticated):
        adapter.verify_webhook(body, {"Authorization": "Bearer nope"})

    verified = adapter.verify_webhook(
        body, {"Authorization": f"Bearer {WEBHOOK_SECRET}", "X-Atlassian-Webhook-Identifier": "jira-1"}
    )
    assert verified.delivery_id == "jira-1"
    event = adapter.parse_webhook(verified)
    assert event.kind == LABEL_CHANGED
    assert (event.board_id, event.external_issue_id, event.labels) == ("WEB", "WEB-12", ("p1",))


def test_jira_issue_without_project_is_malformed():
    adapter = JiraAdapter(client_id="c", client_secret="s", webhook_secret=WEBHOOK_SECRET)
    body = json.dumps({"webhookEvent": "jira:issue_created", "issue": {"key": "WEB-1", "fields": {}}}).encode("utf-8")
    verified = adapter.verify_webhook(body, {"Authorization": f"Bearer {WEBHOOK_SECRET}"})
    with pytest.raises(MalformedResponse):
        adapter.parse_webhook(verified)


def test_linear_webhook_signature_and_actions():
    adapter = LinearAdapter(client_id="c", client_secret="s", webhook_secret=WEBHOOK_SECRET)
    body = json.dumps(
        {
            "action": "update",
            "type": "Issue",
            "data": {"id": "lin-9", "teamId": "team-1", "title": "Flaky test", "labels": [{"name": "ci"}]},
            "updatedFrom": {"labelIds": [], "updatedAt": "2026-01-01T00:00:00Z"},
        }
    ).encode("utf-8")
    sig = hmac.new(WEBHOOK_SECRET.encode("utf-8"), body, hashlib.sha256).hexdigest()

    with pytest.raises(Unauthenticated):
        adapter.verify_webhook(body, {"Linear-Signature": "0" * 64})

    verified = adapter.verify_webhook(body, {"Linear-Signature": sig, "Linear-Delivery": "lin-d-1"})
    assert verified.event_name == "Issue.update"
    event = adapter.parse_webhook(verified)
    assert event.kind == LABEL_CHANGED
    assert event.board_id == "team-1"
    assert event.labels == ("ci",)

    removed = json.dumps({"action": "remove", "type": "Issue", "data": {"id": "lin-9", "teamId": "team-1"}}).encode()
    sig = hmac.new(WEBHOOK_SECRET.encode("utf-8"), removed, hashlib.sha256).hexdigest()
    assert adapter.parse_webhook(adapter.verify_webhook(removed, {"Linear-Signature": sig})).kind == ISSUE_DELETED


def test_zendesk_webhook_signs_timestamp_and_body():
    adapter = ZendeskAdapter(subdomain="acme", client_id="c", client_secret="s", webhook_secret=WEBHOOK_SECRET)
    body = json.dumps(
        {
            "id": "zd-evt-1",
            "type": "zen:event-type:ticket.created",
            "account_id": 10001,
            "detail": {"id": "35436", "subject": "Printer on fire", "tags": ["hardware"]},
        }
    ).encode("utf-8")
    ts = "2026-10-19T10:00:00Z"
    sig = base64.b64encode(hmac.new(WEBHOOK_SECRET.encode("utf-8"), ts.encode("utf-8") + body, hashlib.sha256).digest())

    with pytest.raises(Unauthenticated):
        adapter.verify_webhook(body, {"X-Zendesk-Webhook-Signature": sig.decode()})

    verified = adapter.verify_webhook(
        body,
        {"X-Zendesk-Webhook-Signature": sig.decode(), "X-Zendesk-Webhook-Signature-Timestamp": ts},
    )
    assert verified.delivery_id == "zd-evt-1"
    event = adapter.parse_webhook(verified)
    assert event.kind == ISSUE_CREATED
    assert (event.board_id, event.external_issue_id, event.labels) == ("10001", "35436", ("hardware",))


def test_authorize_urls_carry_state_and_callback():
    github = _github()
    url = github.build_authorize_url("st4te", "http://testserver/api/auth/github/callback")
    assert url.startswith("https://github.com/login/oauth/authorize?")
    assert "state=st4te" in url

    jira = JiraAdapter(client_id="c", client_secret="s")
    url = jira.build_authorize_url("st4te", "http://testserver/api/auth/jira/callback")
    assert "audience=api.atlassian.com" in url
    assert "offline_access" in url

    zendesk = ZendeskAdapter(subdomain="acme", client_id="c", client_secret="s")
    assert zendesk.build_authorize_url("s", "cb").startswith("https://acme.zendesk.com/oauth/authorizations/new?")
    assert not ZendeskAdapter(subdomain="", client_id="c", client_secret="s").is_configured()


def test_token_exchange_parses_expiry(monkeypatch):
    adapter = _github()
    body = json.dumps({"access_token": "gho_x", "refresh_token": "ghr_x", "expires_in": 28800, "scope": "repo"})
    monkeypatch.setattr(adapter._session, "post", lambda *a, **kw: _response(200, body.encode("utf-8")))

    cred = adapter.exchange_code("code", "cb")
    assert cred.access_token == "gho_x"
    assert cred.refresh_token == "ghr_x"
    assert cred.expires_at is not None


@pytest.mark.parametrize(
    "status,body,expected",
    [
        (200, b'{"error": "bad_verification_code", "error_description": "The code passed is incorrect"}', InvalidGrant),
        (400, b'{"error": "invalid_grant"}', InvalidGrant),
        (401, b'{"error": "invalid_client"}', ProviderMisconfigured),
        (200, b'{"error": "incorrect_client_credentials"}', ProviderMisconfigured),
        (400, b'{"error": "unauthorized_client"}', ProviderMisconfigured),
        (403, b"{}", ProviderMisconfigured),
        (503, b"upstream down", ProviderUnavailable),
        (429, b"{}", ProviderUnavailable),
        (200, b"<html>oops</html>", MalformedResponse),
        (200, b'{"token_type": "bearer"}', MalformedResponse),
    ],
)
def test_token_endpoint_errors_are_classified(monkeypatch, status, body, expected):
    adapter = _github()
    monkeypatch.setattr(adapter._session, "post", lambda *a, **kw: _response(status, body))
    with pytest.raises(expected):
        adapter.refresh("ghr_x")


def test_token_endpoint_timeout_is_unavailable(monkeypatch):
    adapter = _github()

    def boom(*a, **kw):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(adapter._session, "post", boom)
    with pytest.raises(ProviderUnavailable) as exc:
        adapter.exchange_code("code", "cb")
    assert exc.value.retryable


def test_issue_state_changes_map_to_updates():
    adapter = _github()
    for action, kind in [("opened", ISSUE_CREATED), ("closed", ISSUE_UPDATED), ("deleted", ISSUE_DELETED)]:
        body = github_issue_body(action)
        verified = adapter.verify_webhook(body, {"X-Hub-Signature-256": github_signature(body), "X-GitHub-Event": "issues"})
        assert adapter.parse_webhook(verified).kind == kind
