"""HTTP error types shared by storage, identity and route helpers.

Each error is an ``HTTPException`` so it can be raised from any layer and is
rendered by the application as ``{"error": detail, "details"?: [...]}``.
"""

from typing import Any

from fastapi import HTTPException, status


class PortalError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Erro interno do servidor'

    def __init__(self, detail: str | None = None, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(status_code=self.status_code, detail=detail or self.default_detail)
        self.details = details


class PayloadValidationError(PortalError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Dados inválidos'


class AuthenticationRequired(PortalError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Token de acesso requerido'


class InvalidCredentials(PortalError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Email ou senha incorretos'


class InvalidToken(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Token inválido'


class AccessDenied(PortalError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'Acesso negado.'


class NotFoundError(PortalError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Registro não encontrado'


class DuplicateResourceError(PortalError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Registro já existe'


class PersistenceError(PortalError):
    """Store read/write failure. The cause is logged where it happens, never sent to clients."""


def format_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, str]]:
    details = []
    for error in errors:
        location = [str(part) for part in error.get('loc', ()) if part != 'body']
        message = error.get('msg', '')
        if message.startswith('Value error, '):
            message = message[len('Value error, '):]
        details.append({'field': '.'.join(location), 'message': message})
    return details
