from typing import Any

from fastapi import APIRouter, Body, Depends, Response

from capacita.auth import identity
from capacita.auth.dependencies import get_current_claims
from capacita.auth.session import clear_session
from capacita.core.config import Settings, get_settings
from capacita.core.errors import AccessDenied
from capacita.storage import CollectionStore, get_store

router = APIRouter(tags=['users'])


def ensure_owner(claims: dict, user_id: str) -> None:
    if claims.get('id') != user_id:
        raise AccessDenied()


@router.get('/profile')
def get_profile(claims: dict = Depends(get_current_claims), store: CollectionStore = Depends(get_store)):
    return identity.find_active_user(store, claims['id'])


@router.put('/profile')
def update_profile(
    payload: dict[str, Any] = Body(...),
    claims: dict = Depends(get_current_claims),
    store: CollectionStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    return identity.update_account(store, claims['id'], payload, settings.bcrypt_rounds)


@router.delete('/profile')
def deactivate_profile(
    response: Response,
    claims: dict = Depends(get_current_claims),
    store: CollectionStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    identity.deactivate_account(store, claims['id'])
    clear_session(response, settings)
    return {'message': 'Conta desativada com sucesso'}


@router.put('/users/{user_id}')
@router.patch('/users/{user_id}')
def update_user(
    user_id: str,
    payload: dict[str, Any] = Body(...),
    claims: dict = Depends(get_current_claims),
    store: CollectionStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    ensure_owner(claims, user_id)
    user = identity.update_account(store, user_id, payload, settings.bcrypt_rounds)
    return {'message': 'Perfil atualizado com sucesso', 'user': user}


@router.get('/users/{user_id}/history')
def get_user_history(
    user_id: str,
    claims: dict = Depends(get_current_claims),
    store: CollectionStore = Depends(get_store),
):
    ensure_owner(claims, user_id)
    return identity.list_change_history(store, user_id)
