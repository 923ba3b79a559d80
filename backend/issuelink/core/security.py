from __future__ import annotations

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from issuelink.core.settings import get_settings
from issuelink.core.time import as_aware_utc, utcnow
from issuelink.crypto.fernet import open_json, seal_json


@dataclass(frozen=True)
class SessionClaims:
    user_id: uuid.UUID
    login: str
    expires_at: datetime


def new_state_token() -> str:
    # URL-safe; travels through the provider's redirect untouched.
    return secrets.token_urlsafe(32)


def issue_session(*, user_id: uuid.UUID, login: str, now: datetime | None = None) -> tuple[str, SessionClaims]:
    settings = get_settings()
    if now is None:
        now = utcnow()
    claims = SessionClaims(
        user_id=user_id,
        login=login.lower(),
        # Whole seconds so the claims match what read_session() reconstructs.
        expires_at=(as_aware_utc(now) + timedelta(hours=settings.session_max_age_hours)).replace(microsecond=0),
    )
    token = seal_json(
        {"uid": str(claims.user_id), "login": claims.login, "exp": int(claims.expires_at.timestamp())},
        key=settings.session_key,
    )
    return token, claims


def read_session(token: str | None) -> SessionClaims | None:
    """Open a session token. Anything that fails to verify reads as no session."""

    if not token:
        return None
    try:
        data = open_json(token, key=get_settings().session_key)
        return SessionClaims(
            user_id=uuid.UUID(data["uid"]),
            login=str(data["login"]).lower(),
            expires_at=datetime.fromtimestamp(int(data["exp"]), tz=timezone.utc),
        )
    except (ValueError, KeyError, TypeError):
        return None
