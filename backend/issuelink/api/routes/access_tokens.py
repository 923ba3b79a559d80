"""Access-token handoff between two clients that share no session.

One side creates a read/write key pair and passes the write key along; the
other side posts the token once; the first side collects it once.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from issuelink.core.settings import get_settings
from issuelink.db.session import get_db
from issuelink.repos.token_handoffs import create_handoff, delete_expired_handoffs, take_handoff, write_handoff

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth/accessToken", tags=["auth"])


class HandoffWrite(BaseModel):
    accessToken: str = Field(min_length=1)


def _not_found() -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"errors": ["Not Found"]})


@router.post("")
def create_access_token_handoff(db: Session = Depends(get_db)) -> dict:
    delete_expired_handoffs(db)
    row = create_handoff(db, ttl=timedelta(minutes=get_settings().token_handoff_ttl_minutes))
    return {"data": {"readKey": str(row.read_key), "writeKey": str(row.write_key)}}


@router.post("/{key}")
def write_access_token(key: uuid.UUID, payload: HandoffWrite, db: Session = Depends(get_db)):
    if not write_handoff(db, write_key=key, access_token=payload.accessToken):
        logger.info("Rejected handoff write: unknown, spent or expired key")
        return _not_found()
    return {"data": {}}


@router.get("/{key}")
def read_access_token(key: uuid.UUID, db: Session = Depends(get_db)):
    token = take_handoff(db, read_key=key)
    if token is None:
        return _not_found()
    return {"data": {"accessToken": token}}
