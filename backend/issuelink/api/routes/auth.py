from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from issuelink.api.deps import get_oauth_controller, get_registry, get_session_claims, require_session
from issuelink.api.errors import error_response
from issuelink.core.cookies import clear_session_cookie, set_session_cookie
from issuelink.core.errors import CoreError, UnknownProvider
from issuelink.core.security import SessionClaims, issue_session
from issuelink.core.settings import get_settings
from issuelink.core.time import millis_between, utcnow
from issuelink.db.session import get_db
from issuelink.models.oauth_state import PURPOSE_SIGNIN
from issuelink.providers.registry import ProviderRegistry
from issuelink.services.oauth_flow import OAuthFlowController

router = APIRouter(prefix="/auth", tags=["auth"])

SIGNIN_PROVIDER = "github"


def _absolute(destination: str) -> str:
    # Stored destinations are either web-origin URLs or paths on the web UI.
    if destination.startswith("/"):
        return f"{get_settings().web_base_url.rstrip('/')}{destination}"
    return destination


def _ensure_configured(registry: ProviderRegistry, provider: str) -> None:
    try:
        adapter = registry.get(provider)
    except UnknownProvider:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown provider")
    if not adapter.is_configured():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{adapter.name} OAuth is not configured")


@router.get("/signin")
def signin(
    redirect: str | None = None,
    db: Session = Depends(get_db),
    registry: ProviderRegistry = Depends(get_registry),
    controller: OAuthFlowController = Depends(get_oauth_controller),
) -> RedirectResponse:
    _ensure_configured(registry, SIGNIN_PROVIDER)
    url = controller.start(db, provider=SIGNIN_PROVIDER, user_id=None, destination=redirect, purpose=PURPOSE_SIGNIN)
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.post("/signout")
def signout(response: Response) -> dict:
    clear_session_cookie(response)
    return {"ok": True}


@router.get("/{provider}/start")
def start(
    provider: str,
    redirect: str | None = None,
    db: Session = Depends(get_db),
    auth: SessionClaims = Depends(require_session),
    registry: ProviderRegistry = Depends(get_registry),
    controller: OAuthFlowController = Depends(get_oauth_controller),
) -> RedirectResponse:
    _ensure_configured(registry, provider)
    url = controller.start(db, provider=provider, user_id=auth.user_id, destination=redirect)
    return RedirectResponse(url=url, status_code=status.HTTP_302_FOUND)


@router.get("/{provider}/callback")
def callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    db: Session = Depends(get_db),
    claims: SessionClaims | None = Depends(get_session_claims),
    controller: OAuthFlowController = Depends(get_oauth_controller),
):
    try:
        done = controller.complete(
            db,
            provider=provider,
            code=code,
            state=state,
            error=error_description or error,
            session_user_id=claims.user_id if claims is not None else None,
        )
    except CoreError as e:
        return error_response(e)

    resp = RedirectResponse(url=_absolute(done.destination), status_code=status.HTTP_302_FOUND)
    if done.purpose == PURPOSE_SIGNIN:
        assert done.login is not None
        token, session = issue_session(user_id=done.user_id, login=done.login)
        max_age = max(0, millis_between(utcnow(), session.expires_at) // 1000)
        set_session_cookie(resp, token, max_age=max_age)
    return resp
