from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from capacita.core.config import Settings

CLAIM_FIELDS = ("id", "email", "tipoUsuario", "nome")


def build_claims(user: dict[str, Any]) -> dict[str, Any]:
    return {
        "id": user["id"],
        "email": user["email"],
        "tipoUsuario": user.get("tipoUsuario"),
        "nome": user.get("nome") or user.get("nomeEmpresa"),
    }


def create_access_token(claims: dict[str, Any], settings: Settings, expires_days: int | None = None) -> str:
    expire_days = expires_days or settings.jwt_expires_days
    issued_at = datetime.now(timezone.utc)
    payload = {**claims, "iat": issued_at, "exp": issued_at + timedelta(days=expire_days)}
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str, settings: Settings) -> dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
