from typing import Any

from fastapi import APIRouter, Body, Depends, Response, status
from pydantic import BaseModel, field_validator

from capacita.auth import identity
from capacita.auth.dependencies import get_current_claims
from capacita.auth.jwt_handler import CLAIM_FIELDS
from capacita.auth.session import clear_session, issue_session
from capacita.core.config import Settings, get_settings
from capacita.storage import CollectionStore, get_store

router = APIRouter(tags=['auth'])


class LoginRequest(BaseModel):
    email: str
    senha: str

    @field_validator('email', 'senha')
    @classmethod
    def validate_present(cls, value: str) -> str:
        if not value.strip():
            raise ValueError('Email e senha são obrigatórios')
        return value


def build_registration(payload: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    envelope = identity.parse_payload(identity.AccountRegistration, payload)
    fields = envelope.model_dump()
    kind = envelope.tipoUsuario

    if kind == identity.COMPANY_KIND:
        fields.setdefault('nomeEmpresa', envelope.nome)
        registration = identity.parse_payload(identity.CompanyRegistration, fields)
    else:
        registration = identity.parse_payload(identity.StudentRegistration, fields)

    data = registration.model_dump()
    data['nome'] = envelope.nome
    return kind, data


@router.post('/auth/register', status_code=status.HTTP_201_CREATED)
def register(
    response: Response,
    payload: dict[str, Any] = Body(...),
    store: CollectionStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    kind, data = build_registration(payload)
    user = identity.register_account(store, kind, data, settings.bcrypt_rounds)
    token = issue_session(response, user, settings)
    return {'message': 'Usuário registrado com sucesso', 'user': user, 'token': token}


@router.post('/auth/login')
@router.post('/login')
def login(
    data: LoginRequest,
    response: Response,
    store: CollectionStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    user = identity.authenticate(store, data.email, data.senha)
    token = issue_session(response, user, settings)
    return {'message': 'Login realizado com sucesso', 'user': user, 'token': token}


@router.post('/auth/logout')
@router.post('/logout')
def logout(response: Response, settings: Settings = Depends(get_settings)):
    clear_session(response, settings)
    return {'message': 'Logout realizado com sucesso'}


@router.get('/auth/me')
def me(claims: dict = Depends(get_current_claims), store: CollectionStore = Depends(get_store)):
    return {'user': identity.find_active_user(store, claims['id'])}


@router.get('/auth/verify')
def verify(claims: dict = Depends(get_current_claims)):
    return {'valid': True, 'user': {field_name: claims.get(field_name) for field_name in CLAIM_FIELDS}}
