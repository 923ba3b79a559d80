import base64
import hashlib
import hmac
import json
import threading
import time
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from issuelink.core.time import utcnow
from issuelink.providers.base import Credential, ProviderIdentity
from issuelink.providers.github import GitHubAdapter
from issuelink.providers.jira import JiraAdapter
from issuelink.providers.linear import LinearAdapter
from issuelink.providers.registry import ProviderRegistry
from issuelink.providers.zendesk import ZendeskAdapter

WEBHOOK_SECRET = "whsec-test"


def _fernet_key(seed: bytes) -> str:
    return base64.urlsafe_b64encode(seed * 32).decode("utf-8")


class ScriptedGitHub(GitHubAdapter):
    """GitHub adapter whose token endpoint and /user are scripted; webhooks stay real."""

    def __init__(self):
        super().__init__(client_id="gh-client", client_secret="gh-secret", webhook_secret=WEBHOOK_SECRET)
        self.exchange_result: Credential | Exception = Credential(
            access_token="gho_first",
            refresh_token="ghr_first",
            expires_at=utcnow() + timedelta(hours=8),
            scope="read:user repo",
        )
        # Consumed in order; the last entry repeats.
        self.refresh_results: list[Credential | Exception] = []
        self.refresh_delay = 0.0
        self.identity = ProviderIdentity(account_id="583231", login="octocat", name="The Octocat")
        self.exchanges: list[str] = []
        self.refreshes: list[str] = []
        self._calls = threading.Lock()

    def exchange_code(self, code, redirect_uri):
        self.exchanges.append(code)
        if isinstance(self.exchange_result, Exception):
            raise self.exchange_result
        return self.exchange_result

    def refresh(self, refresh_token):
        with self._calls:
            self.refreshes.append(refresh_token)
            result = self.refresh_results.pop(0) if len(self.refresh_results) > 1 else self.refresh_results[0]
        if self.refresh_delay:
            time.sleep(self.refresh_delay)
        if isinstance(result, Exception):
            raise result
        return result

    def fetch_identity(self, access_token):
        return self.identity


def github_signature(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return "sha256=" + hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def github_issue_body(action: str = "opened", *, repo: str = "acme/web", number: int = 7, labels=()) -> bytes:
    return json.dumps(
        {
            "action": action,
            "repository": {"full_name": repo},
            "issue": {
                "number": number,
                "title": "Login button is misaligned",
                "body": "Shifted 4px on Safari",
                "labels": [{"name": n} for n in labels],
            },
        }
    ).encode("utf-8")


@pytest.fixture
def env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("FERNET_KEY", _fernet_key(b"1"))
    monkeypatch.setenv("SESSION_KEY", _fernet_key(b"2"))
    monkeypatch.setenv("WEB_BASE_URL", "http://localhost:5173")
    monkeypatch.setenv("APP_BASE_URL", "http://testserver")
    monkeypatch.setenv("DASHBOARD_USERS", "octocat, Hubot")
    monkeypatch.setenv("GITHUB_CLIENT_ID", "gh-client")
    monkeypatch.setenv("GITHUB_CLIENT_SECRET", "gh-secret")

    from issuelink.core.settings import get_settings

    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def session_factory(env):
    from issuelink.db.base import Base
    import issuelink.models  # noqa: F401

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def github():
    return ScriptedGitHub()


@pytest.fixture
def registry(github):
    return ProviderRegistry(
        {
            "github": github,
            "jira": JiraAdapter(client_id="jira-client", client_secret="jira-secret", webhook_secret=WEBHOOK_SECRET),
            "linear": LinearAdapter(
                client_id="lin-client", client_secret="lin-secret", webhook_secret=WEBHOOK_SECRET
            ),
            "zendesk": ZendeskAdapter(
                subdomain="acme", client_id="zd-client", client_secret="zd-secret", webhook_secret=WEBHOOK_SECRET
            ),
        }
    )


@pytest.fixture
def app(env, session_factory, registry):
    from issuelink.db.session import get_db
    from issuelink.main import create_app

    app = create_app()
    app.state.registry = registry

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app, base_url="http://testserver")
