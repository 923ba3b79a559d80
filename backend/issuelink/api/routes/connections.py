from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlalchemy.orm import Session

from issuelink.api.deps import require_dashboard_user
from issuelink.core.security import SessionClaims
from issuelink.db.session import get_db
from issuelink.providers.registry import PROVIDERS
from issuelink.repos.accounts import delete_account, list_accounts

router = APIRouter(prefix="/dashboard/connections", tags=["connections"])


class ConnectionOut(BaseModel):
    provider: str
    connected: bool
    status: str | None = None
    scopes: str = ""
    updated_at: datetime | None = None
    expires_at: datetime | None = None
    provider_account_id: str | None = None


@router.get("", response_model=list[ConnectionOut])
def get_connections(
    db: Session = Depends(get_db),
    auth: SessionClaims = Depends(require_dashboard_user),
) -> list[ConnectionOut]:
    by = {r.provider: r for r in list_accounts(db, user_id=auth.user_id)}
    out: list[ConnectionOut] = []
    for provider in PROVIDERS:
        r = by.get(provider)
        out.append(
            ConnectionOut(
                provider=provider,
                connected=r is not None,
                status=r.status if r else None,
                scopes=r.scopes if r else "",
                updated_at=r.updated_at if r else None,
                expires_at=r.expires_at if r else None,
                provider_account_id=r.provider_account_id if r else None,
            )
        )
    return out


@router.delete("/{provider}")
def forget_provider(
    provider: str,
    db: Session = Depends(get_db),
    auth: SessionClaims = Depends(require_dashboard_user),
) -> dict:
    provider = provider.lower()
    if provider not in PROVIDERS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown provider")
    delete_account(db, user_id=auth.user_id, provider=provider)
    return {"ok": True}
