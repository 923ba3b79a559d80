from __future__ import annotations

from fastapi import status
from fastapi.responses import JSONResponse

from issuelink.core.errors import CoreError

_STATUS_BY_KIND = {
    "InvalidState": status.HTTP_400_BAD_REQUEST,
    "InvalidGrant": status.HTTP_400_BAD_REQUEST,
    "ProviderUnavailable": status.HTTP_502_BAD_GATEWAY,
    "MalformedResponse": status.HTTP_502_BAD_GATEWAY,
    "ProviderMisconfigured": status.HTTP_502_BAD_GATEWAY,
    "Unauthenticated": status.HTTP_401_UNAUTHORIZED,
    "UnknownProvider": status.HTTP_404_NOT_FOUND,
}


def error_response(err: CoreError, *, status_code: int | None = None) -> JSONResponse:
    code = status_code or _STATUS_BY_KIND.get(err.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    return JSONResponse(status_code=code, content={"error": err.to_dict()})
