"""Access decisions for dashboard routes.

Pure: computed from the opened session claims and the allow-list handed in at
construction, with no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from issuelink.core.security import SessionClaims
from issuelink.core.time import millis_between, utcnow

NO_SESSION = "NoSession"
EXPIRED = "Expired"
NOT_ALLOW_LISTED = "NotAllowListed"


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> GateDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> GateDecision:
        return cls(allowed=False, reason=reason)


class SessionGate:
    def __init__(self, allow_list: frozenset[str]):
        self.allow_list = frozenset(login.lower() for login in allow_list)

    def authorize(self, session: SessionClaims | None, *, now: datetime | None = None) -> GateDecision:
        if session is None:
            return GateDecision.deny(NO_SESSION)
        # Checked before expiry: an unlisted login is refused the same way whatever else holds.
        if session.login.lower() not in self.allow_list:
            return GateDecision.deny(NOT_ALLOW_LISTED)
        return self.check_live(session, now=now)

    def check_live(self, session: SessionClaims | None, *, now: datetime | None = None) -> GateDecision:
        if session is None:
            return GateDecision.deny(NO_SESSION)
        if self.milliseconds_to_expiry(session, now=now) <= 0:
            return GateDecision.deny(EXPIRED)
        return GateDecision.allow()

    @staticmethod
    def milliseconds_to_expiry(session: SessionClaims | None, *, now: datetime | None = None) -> int:
        if session is None:
            return 0
        if now is None:
            now = utcnow()
        return millis_between(now, session.expires_at)
