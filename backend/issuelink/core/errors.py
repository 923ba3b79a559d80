"""Error taxonomy shared by the adapters, the OAuth controller, the refresh
service and the webhook pipeline.

Every error carries a stable ``kind`` so routes can render a structured body
without inspecting exception classes.
"""

from __future__ import annotations


class CoreError(RuntimeError):
    kind = "CoreError"
    retryable = False

    def __init__(self, message: str = "", *, provider: str | None = None):
        super().__init__(message or self.kind)
        self.provider = provider

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": str(self)}


class InvalidState(CoreError):
    """OAuth state absent, replayed, forged or expired."""

    kind = "InvalidState"


class InvalidGrant(CoreError):
    """Code or refresh token rejected by the provider."""

    kind = "InvalidGrant"


class ReauthRequired(CoreError):
    kind = "ReauthRequired"


class ProviderUnavailable(CoreError):
    kind = "ProviderUnavailable"
    retryable = True


class TemporarilyUnavailable(CoreError):
    """ProviderUnavailable that outlasted the retry budget."""

    kind = "TemporarilyUnavailable"


class MalformedResponse(CoreError):
    kind = "MalformedResponse"


class ProviderMisconfigured(CoreError):
    """Token endpoint refused our client (id, secret, redirect URI); the grant is untouched."""

    kind = "ProviderMisconfigured"


class Unauthenticated(CoreError):
    """Webhook signature or secret check failed."""

    kind = "Unauthenticated"


class UnknownProvider(CoreError):
    kind = "UnknownProvider"
