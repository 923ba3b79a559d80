import threading
from contextlib import contextmanager
from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from issuelink.core.errors import InvalidGrant, InvalidState, ProviderUnavailable
from issuelink.core.time import utcnow
from issuelink.models.oauth_state import PURPOSE_SIGNIN
from issuelink.providers.base import Credential
from issuelink.repos.accounts import credential_of, get_account, list_accounts, upsert_account
from issuelink.repos.users import get_user_by_login, upsert_user
from issuelink.services.locks import KeyedLocks
from issuelink.services.oauth_flow import ExpiredState, OAuthFlowController, safe_destination


def _state_of(url: str) -> str:
    return parse_qs(urlparse(url).query)["state"][0]


@pytest.fixture
def controller(registry, env):
    return OAuthFlowController(registry, env)


@pytest.fixture
def user(db):
    return upsert_user(db, login="octocat")


def test_state_is_single_use(db, controller, github, user):
    url = controller.start(db, provider="github", user_id=user.id)
    state = _state_of(url)
    assert "redirect_uri=http%3A%2F%2Ftestserver%2Fapi%2Fauth%2Fgithub%2Fcallback" in url

    done = controller.complete(db, provider="github", code="c0de", state=state)
    assert done.user_id == user.id
    assert done.destination == "/dashboard"

    account = get_account(db, user_id=user.id, provider="github")
    assert account is not None
    assert account.provider_account_id == "583231"
    assert credential_of(account).access_token == "gho_first"
    assert account.encrypted_access_token != "gho_first"

    with pytest.raises(InvalidState):
        controller.complete(db, provider="github", code="c0de", state=state)
    assert github.exchanges == ["c0de"]


def test_unknown_and_missing_state_rejected(db, controller, github):
    with pytest.raises(InvalidState):
        controller.complete(db, provider="github", code="c0de", state="never-issued")
    with pytest.raises(InvalidState):
        controller.complete(db, provider="github", code="c0de", state=None)
    assert github.exchanges == []


def test_expired_state_rejected_without_exchange(db, controller, github, user):
    issued = utcnow() - timedelta(minutes=11)
    state = _state_of(controller.start(db, provider="github", user_id=user.id, now=issued))

    with pytest.raises(ExpiredState):
        controller.complete(db, provider="github", code="c0de", state=state)
    assert github.exchanges == []
    assert get_account(db, user_id=user.id, provider="github") is None


def test_state_is_bound_to_its_provider(db, controller, github, user):
    state = _state_of(controller.start(db, provider="github", user_id=user.id))
    with pytest.raises(InvalidState):
        controller.complete(db, provider="jira", code="c0de", state=state)
    # Consumed by the failed attempt.
    with pytest.raises(InvalidState):
        controller.complete(db, provider="github", code="c0de", state=state)


def test_state_is_bound_to_the_starting_user(db, controller, user):
    other = upsert_user(db, login="hubot")
    state = _state_of(controller.start(db, provider="github", user_id=user.id))
    with pytest.raises(InvalidState):
        controller.complete(db, provider="github", code="c0de", state=state, session_user_id=other.id)


@pytest.mark.parametrize("failure", [InvalidGrant("bad_verification_code"), ProviderUnavailable("timeout")])
def test_failed_exchange_persists_nothing(db, controller, github, user, failure):
    github.exchange_result = failure
    state = _state_of(controller.start(db, provider="github", user_id=user.id))
    with pytest.raises(type(failure)):
        controller.complete(db, provider="github", code="c0de", state=state)
    assert list_accounts(db, user_id=user.id) == []


def test_provider_denial_is_invalid_grant(db, controller, github, user):
    state = _state_of(controller.start(db, provider="github", user_id=user.id))
    with pytest.raises(InvalidGrant):
        controller.complete(db, provider="github", code=None, state=state, error="access_denied")
    assert github.exchanges == []


def test_reconnect_upserts_single_account(db, controller, github, user):
    for code in ("first", "second"):
        state = _state_of(controller.start(db, provider="github", user_id=user.id))
        controller.complete(db, provider="github", code=code, state=state)
    assert len(list_accounts(db, user_id=user.id)) == 1


class RecordingLocks(KeyedLocks):
    def __init__(self):
        super().__init__()
        self.keys = []

    @contextmanager
    def hold(self, key):
        self.keys.append(key)
        with super().hold(key):
            yield


def test_relink_waits_for_the_account_lock(db, session_factory, registry, env, github, user):
    user_id = user.id
    locks = KeyedLocks()
    controller = OAuthFlowController(registry, env, locks)
    upsert_account(
        db, user_id=user_id, provider="github", credential=Credential(access_token="gho_old", refresh_token="ghr_old")
    )
    state = _state_of(controller.start(db, provider="github", user_id=user_id))
    done = []

    def relink():
        session = session_factory()
        try:
            done.append(controller.complete(session, provider="github", code="c0de", state=state))
        finally:
            session.close()

    with locks.hold((user_id, "github")):
        worker = threading.Thread(target=relink)
        worker.start()
        worker.join(timeout=0.3)
        assert worker.is_alive()
        assert credential_of(get_account(db, user_id=user_id, provider="github")).access_token == "gho_old"

    worker.join(timeout=5)
    assert not worker.is_alive()
    assert len(done) == 1
    assert credential_of(get_account(db, user_id=user_id, provider="github")).access_token == "gho_first"
    assert len(locks) == 0


def test_signin_upsert_holds_the_account_lock(db, registry, env):
    locks = RecordingLocks()
    controller = OAuthFlowController(registry, env, locks)
    url = controller.start(db, provider="github", user_id=None, purpose=PURPOSE_SIGNIN)
    done = controller.complete(db, provider="github", code="c0de", state=_state_of(url))
    assert locks.keys == [(done.user_id, "github")]


def test_signin_creates_user_and_links_github(db, controller):
    url = controller.start(db, provider="github", user_id=None, purpose=PURPOSE_SIGNIN, destination="/projects/1")
    done = controller.complete(db, provider="github", code="c0de", state=_state_of(url))

    assert done.purpose == PURPOSE_SIGNIN
    assert done.login == "octocat"
    assert done.destination == "/projects/1"
    created = get_user_by_login(db, "octocat")
    assert created is not None and created.id == done.user_id
    assert get_account(db, user_id=done.user_id, provider="github") is not None


def test_linking_requires_a_user(db, controller):
    with pytest.raises(ValueError):
        controller.start(db, provider="jira", user_id=None)


def test_safe_destination(env):
    assert safe_destination(None, env) == "/dashboard"
    assert safe_destination("/projects/3?tab=todos", env) == "/projects/3?tab=todos"
    assert safe_destination("http://localhost:5173/settings", env) == "http://localhost:5173/settings"
    assert safe_destination("https://evil.example/phish", env) == "/dashboard"
    assert safe_destination("//evil.example", env) == "/dashboard"
    assert safe_destination("/\\evil.example", env) == "/dashboard"
