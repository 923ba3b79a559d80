from __future__ import annotations

from fastapi import Response

from issuelink.core.settings import get_settings


SESSION_COOKIE_NAME = "issuelink_session"


def set_session_cookie(resp: Response, token: str, *, max_age: int) -> None:
    settings = get_settings()
    resp.set_cookie(
        key=SESSION_COOKIE_NAME,
        value=token,
        max_age=max_age,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        path="/",
    )


def clear_session_cookie(resp: Response) -> None:
    settings = get_settings()
    resp.delete_cookie(key=SESSION_COOKIE_NAME, path="/", samesite="lax", secure=settings.cookie_secure)
