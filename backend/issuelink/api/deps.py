from __future__ import annotations

from fastapi import Depends, Request

from issuelink.core.cookies import SESSION_COOKIE_NAME
from issuelink.core.security import SessionClaims, read_session
from issuelink.core.settings import get_settings
from issuelink.providers.registry import ProviderRegistry
from issuelink.services.oauth_flow import OAuthFlowController
from issuelink.services.session_gate import SessionGate
from issuelink.services.tokens import TokenRefresher
from issuelink.services.webhooks import WebhookPipeline


class AccessDenied(Exception):
    """Raised by the gate dependencies; rendered without revealing the reason."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_session_gate(request: Request) -> SessionGate:
    return request.app.state.session_gate


def get_session_claims(request: Request) -> SessionClaims | None:
    return read_session(request.cookies.get(SESSION_COOKIE_NAME))


def require_session(
    claims: SessionClaims | None = Depends(get_session_claims),
    gate: SessionGate = Depends(get_session_gate),
) -> SessionClaims:
    """A live session; no allow-list check."""

    decision = gate.check_live(claims)
    if not decision.allowed:
        raise AccessDenied(decision.reason or "")
    assert claims is not None
    return claims


def require_dashboard_user(
    claims: SessionClaims | None = Depends(get_session_claims),
    gate: SessionGate = Depends(get_session_gate),
) -> SessionClaims:
    """A live session whose login is on the dashboard allow-list."""

    decision = gate.authorize(claims)
    if not decision.allowed:
        raise AccessDenied(decision.reason or "")
    assert claims is not None
    return claims


def get_oauth_controller(request: Request, registry: ProviderRegistry = Depends(get_registry)) -> OAuthFlowController:
    return OAuthFlowController(registry, get_settings(), request.app.state.refresh_locks)


def get_token_refresher(request: Request, registry: ProviderRegistry = Depends(get_registry)) -> TokenRefresher:
    # Locks live on the app so every request shares them.
    return TokenRefresher.from_settings(registry, request.app.state.refresh_locks, get_settings())


def get_webhook_pipeline(registry: ProviderRegistry = Depends(get_registry)) -> WebhookPipeline:
    return WebhookPipeline(registry, reclaim_after_seconds=get_settings().webhook_reclaim_seconds)


async def raw_body(request: Request) -> bytes:
    # Signatures cover the exact bytes, so the body is never re-serialized.
    return await request.body()
