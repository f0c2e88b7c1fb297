import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from capacita.auth import jwt_handler
from capacita.core.config import Settings, get_settings
from capacita.core.errors import AuthenticationRequired, InvalidToken

security = HTTPBearer(auto_error=False)


def get_current_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    settings: Settings = Depends(get_settings),
) -> dict:
    token = credentials.credentials if credentials else request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise AuthenticationRequired()

    try:
        payload = jwt_handler.decode_access_token(token, settings)
    except jwt.InvalidTokenError as exc:
        raise InvalidToken() from exc

    if not payload.get("id"):
        raise InvalidToken()
    return payload
