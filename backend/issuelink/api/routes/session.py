from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from issuelink.api.deps import get_session_claims, get_session_gate, get_token_refresher, require_session
from issuelink.api.errors import error_response
from issuelink.core.cookies import set_session_cookie
from issuelink.core.errors import CoreError, UnknownProvider
from issuelink.core.security import SessionClaims, issue_session
from issuelink.core.time import millis_between, utcnow
from issuelink.db.session import get_db
from issuelink.services.session_gate import SessionGate
from issuelink.services.tokens import TokenRefresher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["session"])


class ExpiresResponse(BaseModel):
    expires_in: int


class RefreshResponse(BaseModel):
    success: bool


@router.get("/session/expires", response_model=ExpiresResponse)
def session_expires(
    claims: SessionClaims | None = Depends(get_session_claims),
    gate: SessionGate = Depends(get_session_gate),
) -> ExpiresResponse:
    return ExpiresResponse(expires_in=gate.milliseconds_to_expiry(claims))


@router.post("/token/refresh", response_model=RefreshResponse)
def refresh_token(
    response: Response,
    provider: str = "github",
    db: Session = Depends(get_db),
    auth: SessionClaims = Depends(require_session),
    refresher: TokenRefresher = Depends(get_token_refresher),
):
    try:
        refresher.ensure_fresh(db, user_id=auth.user_id, provider=provider)
    except UnknownProvider as e:
        return error_response(e)
    except CoreError as e:
        logger.warning("Token refresh failed provider=%s user=%s kind=%s", provider, auth.user_id, e.kind)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"errors": [str(e)], "kind": e.kind},
        )

    # A successful refresh also rolls the session forward.
    token, session = issue_session(user_id=auth.user_id, login=auth.login)
    set_session_cookie(response, token, max_age=max(0, millis_between(utcnow(), session.expires_at) // 1000))
    return RefreshResponse(success=True)
