from typing import Any

from fastapi import Response

from capacita.auth import jwt_handler
from capacita.core.config import Settings

SECONDS_PER_DAY = 24 * 60 * 60


def issue_session(response: Response, user: dict[str, Any], settings: Settings) -> str:
    token = jwt_handler.create_access_token(jwt_handler.build_claims(user), settings)
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        max_age=settings.jwt_expires_days * SECONDS_PER_DAY,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
    return token


def clear_session(response: Response, settings: Settings) -> None:
    # Stateless: a bearer token already handed out stays valid until it expires.
    response.delete_cookie(
        key=settings.auth_cookie_name,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )
