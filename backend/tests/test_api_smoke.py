from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from issuelink.core.cookies import SESSION_COOKIE_NAME
from issuelink.core.errors import InvalidGrant
from issuelink.core.security import issue_session
from issuelink.core.time import utcnow
from issuelink.providers.base import Credential
from issuelink.repos.accounts import credential_of, get_account, upsert_account
from issuelink.repos.users import upsert_user


def _state_of(location: str) -> str:
    return parse_qs(urlparse(location).query)["state"][0]


def _sign_in(client, session_factory, login: str = "octocat"):
    db = session_factory()
    user = upsert_user(db, login=login)
    user_id = user.id
    db.close()
    token, _claims = issue_session(user_id=user_id, login=login)
    client.cookies.set(SESSION_COOKIE_NAME, token)
    return user_id


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}
    assert r.headers["x-content-type-options"] == "nosniff"


def test_signin_callback_sets_session_cookie(client, session_factory):
    r = client.get("/api/auth/signin", params={"redirect": "/projects"}, follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"].startswith("https://github.com/login/oauth/authorize?")
    state = _state_of(r.headers["location"])

    cb = client.get("/api/auth/github/callback", params={"code": "c0de", "state": state}, follow_redirects=False)
    assert cb.status_code == 302
    assert cb.headers["location"] == "http://localhost:5173/projects"
    set_cookie = (cb.headers.get("set-cookie") or "").lower()
    assert f"{SESSION_COOKIE_NAME}=" in set_cookie
    assert "httponly" in set_cookie
    assert "samesite=lax" in set_cookie
    assert "max-age=" in set_cookie

    expires = client.get("/api/session/expires")
    assert expires.status_code == 200
    assert 0 < expires.json()["expires_in"] <= 8 * 3600 * 1000

    conns = client.get("/api/dashboard/connections")
    assert conns.status_code == 200
    by = {c["provider"]: c for c in conns.json()}
    assert set(by) == {"github", "jira", "linear", "zendesk"}
    assert by["github"]["connected"] is True
    assert by["github"]["provider_account_id"] == "583231"
    assert by["jira"]["connected"] is False

    # The state was consumed by the first callback.
    replay = client.get("/api/auth/github/callback", params={"code": "c0de", "state": state}, follow_redirects=False)
    assert replay.status_code == 400
    assert replay.json()["error"]["kind"] == "InvalidState"


def test_callback_without_state_is_rejected(client):
    r = client.get("/api/auth/github/callback", params={"code": "c0de"}, follow_redirects=False)
    assert r.status_code == 400
    assert r.json()["error"]["kind"] == "InvalidState"


def test_link_provider_requires_session(client, session_factory):
    r = client.get("/api/auth/jira/start", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"] == "http://localhost:5173/auth/signin"

    _sign_in(client, session_factory)
    r = client.get("/api/auth/jira/start", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"].startswith("https://auth.atlassian.com/authorize?")

    r = client.get("/api/auth/gitlab/start", follow_redirects=False)
    assert r.status_code == 404


def test_dashboard_refuses_logins_off_the_allow_list(client, session_factory):
    _sign_in(client, session_factory, login="mallory")
    r = client.get("/api/dashboard/connections", follow_redirects=False)
    assert r.status_code == 302
    assert r.headers["location"].endswith("/auth/signin")

    r = client.delete("/api/dashboard/connections/github")
    assert r.status_code == 401
    assert r.json() == {"detail": "Not authenticated"}


def test_tampered_session_cookie_reads_as_signed_out(client):
    client.cookies.set(SESSION_COOKIE_NAME, "gAAAAABtampered")
    assert client.get("/api/session/expires").json() == {"expires_in": 0}
    assert client.post("/api/token/refresh").status_code == 401


def test_token_refresh_route(client, session_factory, github):
    user_id = _sign_in(client, session_factory)
    db = session_factory()
    upsert_account(
        db,
        user_id=user_id,
        provider="github",
        credential=Credential(access_token="gho_old", refresh_token="ghr_old", expires_at=utcnow() + timedelta(seconds=5)),
    )
    github.refresh_results = [
        Credential(access_token="gho_new", refresh_token="ghr_new", expires_at=utcnow() + timedelta(hours=8))
    ]

    r = client.post("/api/token/refresh", params={"provider": "github"})
    assert r.status_code == 200
    assert r.json() == {"success": True}
    assert SESSION_COOKIE_NAME in (r.headers.get("set-cookie") or "")
    assert credential_of(get_account(db, user_id=user_id, provider="github")).access_token == "gho_new"
    db.close()


def test_token_refresh_failure_reports_errors(client, session_factory, github):
    user_id = _sign_in(client, session_factory)
    db = session_factory()
    upsert_account(
        db,
        user_id=user_id,
        provider="github",
        credential=Credential(access_token="gho_old", refresh_token="ghr_old", expires_at=utcnow() - timedelta(minutes=1)),
    )
    db.close()
    github.refresh_results = [InvalidGrant("bad_refresh_token")]

    r = client.post("/api/token/refresh")
    assert r.status_code == 500
    assert r.json()["kind"] == "ReauthRequired"
    assert r.json()["errors"]

    assert client.post("/api/token/refresh", params={"provider": "gitlab"}).status_code == 404


def test_forget_provider_connection(client, session_factory):
    user_id = _sign_in(client, session_factory)
    db = session_factory()
    upsert_account(db, user_id=user_id, provider="linear", credential=Credential(access_token="lin_x"))

    r = client.delete("/api/dashboard/connections/linear")
    assert r.status_code == 200
    assert get_account(db, user_id=user_id, provider="linear") is None
    db.close()


def test_signout_clears_cookie(client, session_factory):
    _sign_in(client, session_factory)
    r = client.post("/api/auth/signout")
    assert r.status_code == 200
    assert f'{SESSION_COOKIE_NAME}=""' in r.headers["set-cookie"] or "max-age=0" in r.headers["set-cookie"].lower()


def test_settings_rejects_wildcard_allowed_origins(monkeypatch, env):
    monkeypatch.setenv("ALLOWED_ORIGINS", "*")

    from issuelink.core.settings import get_settings, parse_allowed_origins

    get_settings.cache_clear()
    with pytest.raises(ValueError):
        parse_allowed_origins(get_settings())
