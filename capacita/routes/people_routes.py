from fastapi import APIRouter, Depends, Response, status

from capacita.auth import identity
from capacita.auth.session import issue_session
from capacita.core.config import Settings, get_settings
from capacita.core.records import public_view
from capacita.storage import COMPANIES, STUDENTS, CollectionStore, get_store

router = APIRouter(tags=['people'])


def active_records(records: list[dict]) -> list[dict]:
    return [public_view(record) for record in records if record.get('ativo', True)]


@router.post('/students', status_code=status.HTTP_201_CREATED)
def create_student(
    data: identity.StudentRegistration,
    response: Response,
    store: CollectionStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    user = identity.register_account(store, identity.STUDENT_KIND, data.model_dump(), settings.bcrypt_rounds)
    token = issue_session(response, user, settings)
    return {'message': 'Cadastro realizado com sucesso', 'user': user, 'token': token}


@router.get('/students')
def list_students(store: CollectionStore = Depends(get_store)):
    return active_records(store.read(STUDENTS))


@router.post('/companies', status_code=status.HTTP_201_CREATED)
def create_company(
    data: identity.CompanyRegistration,
    response: Response,
    store: CollectionStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    user = identity.register_account(store, identity.COMPANY_KIND, data.model_dump(), settings.bcrypt_rounds)
    token = issue_session(response, user, settings)
    return {'message': 'Cadastro realizado com sucesso', 'user': user, 'token': token}


@router.get('/companies')
def list_companies(store: CollectionStore = Depends(get_store)):
    return active_records(store.read(COMPANIES))
