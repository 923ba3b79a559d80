from __future__ import annotations

import logging

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware
from starlette.requests import Request
from starlette.responses import Response

from issuelink.api.deps import AccessDenied
from issuelink.api.router import router as api_router
from issuelink.core.logging import configure_logging
from issuelink.core.settings import get_settings, parse_allow_list, parse_allowed_hosts, parse_allowed_origins
from issuelink.providers.registry import build_registry
from issuelink.services.locks import KeyedLocks
from issuelink.services.session_gate import SessionGate

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    settings = get_settings()
    configure_logging(settings)

    app = FastAPI(
        title="IssueLink",
        version="0.1.0",
        docs_url="/api/docs" if settings.app_env == "dev" else None,
        redoc_url="/api/redoc" if settings.app_env == "dev" else None,
        openapi_url="/api/openapi.json" if settings.app_env == "dev" else None,
    )
    app.state.registry = build_registry(settings)
    app.state.session_gate = SessionGate(parse_allow_list(settings))
    app.state.refresh_locks = KeyedLocks()

    app.add_middleware(TrustedHostMiddleware, allowed_hosts=parse_allowed_hosts(settings))

    app.add_middleware(
        CORSMiddleware,
        allow_origins=parse_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        resp: Response = await call_next(request)
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        return resp

    @app.exception_handler(AccessDenied)
    async def _access_denied(request: Request, exc: AccessDenied) -> Response:
        # The reason stays in the log; clients only learn they must sign in.
        logger.info("Access denied path=%s reason=%s", request.url.path, exc.reason)
        if request.method == "GET":
            signin = f"{get_settings().web_base_url.rstrip('/')}/auth/signin"
            return RedirectResponse(url=signin, status_code=status.HTTP_302_FOUND)
        return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"detail": "Not authenticated"})

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
