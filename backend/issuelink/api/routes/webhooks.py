from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from issuelink.api.deps import get_webhook_pipeline, raw_body
from issuelink.api.errors import error_response
from issuelink.core.errors import CoreError, MalformedResponse
from issuelink.db.session import get_db
from issuelink.services.webhooks import IngestOutcome, WebhookPipeline

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{provider}")
def receive_webhook(
    provider: str,
    request: Request,
    body: bytes = Depends(raw_body),
    db: Session = Depends(get_db),
    pipeline: WebhookPipeline = Depends(get_webhook_pipeline),
) -> JSONResponse:
    try:
        result = pipeline.ingest(db, provider=provider, raw_payload=body, headers=request.headers)
    except MalformedResponse as e:
        return error_response(e, status_code=status.HTTP_400_BAD_REQUEST)
    except CoreError as e:
        return error_response(e)

    if result.outcome == IngestOutcome.IN_FLIGHT:
        # Not acknowledged: the provider retries until the first attempt settles.
        return JSONResponse(status_code=status.HTTP_409_CONFLICT, content={"status": "in_flight"})
    if result.outcome == IngestOutcome.UNROUTABLE:
        return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"status": "parked"})
    return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ok"})
