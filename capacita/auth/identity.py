"""Candidate and company accounts.

Every account lives in the ``users`` collection (the only copy holding the
password hash) and is mirrored, without the hash, into ``students`` or
``companies`` depending on ``tipoUsuario``. Both copies are always written in
the same store transaction.
"""

import logging
import re
import secrets
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from capacita.auth.passwords import DEFAULT_ROUNDS, hash_password, verify_password
from capacita.core.errors import (
    DuplicateResourceError,
    InvalidCredentials,
    NotFoundError,
    PayloadValidationError,
    format_validation_errors,
)
from capacita.core.records import find_index, generate_id, public_view, utc_timestamp
from capacita.storage import CHANGE_HISTORY, COMPANIES, STUDENTS, USERS, CollectionStore

logger = logging.getLogger(__name__)

STUDENT_KIND = 'atirador'
COMPANY_KIND = 'empregador'
KIND_COLLECTIONS = {STUDENT_KIND: STUDENTS, COMPANY_KIND: COMPANIES}
MIRROR_TYPES = {STUDENT_KIND: 'candidato', COMPANY_KIND: 'empresa'}

STUDENT_PROFILE_FIELDS = (
    'nome',
    'sexo',
    'situacaoMilitar',
    'tiroGuerra',
    'isAtirador',
    'cidade',
    'email',
    'telefone',
    'idade',
    'escolaridade',
    'habilidades',
    'experiencia',
    'formacao',
)
COMPANY_PROFILE_FIELDS = (
    'nomeEmpresa',
    'sexo',
    'cnpj',
    'cidade',
    'telefone',
    'email',
    'setor',
    'informacoes',
)
PROFILE_FIELDS = {STUDENT_KIND: STUDENT_PROFILE_FIELDS, COMPANY_KIND: COMPANY_PROFILE_FIELDS}

SEX_OPTIONS = {'masculino', 'feminino'}
SERVING_STATUS = 'matriculado e servindo'
OTHER_TIRO_DE_GUERRA = 'Outro TG'

MIN_PASSWORD_LENGTH = 6
PASSWORD_PATTERN = re.compile(r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)')
EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')
PHONE_PATTERN = re.compile(r'^\(\d{2}\)\s\d{4,5}-\d{4}$')
PERSON_NAME_PATTERN = re.compile(r'^[a-zA-ZÀ-ÿ\s]+$')


def _required(value: str | None, message: str) -> str:
    normalized = (value or '').strip()
    if not normalized:
        raise ValueError(message)
    return normalized


def normalize_email(value: str | None) -> str:
    normalized = _required(value, 'Email é obrigatório').lower()
    if not EMAIL_PATTERN.match(normalized):
        raise ValueError('Email inválido')
    return normalized


def check_password_policy(value: str | None) -> str:
    if not value or len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Senha deve ter pelo menos {MIN_PASSWORD_LENGTH} caracteres')
    if not PASSWORD_PATTERN.match(value):
        raise ValueError('Senha deve conter pelo menos uma letra minúscula, uma maiúscula e um número')
    return value


def normalize_phone(value: str | None) -> str:
    normalized = (value or '').strip()
    if normalized and not PHONE_PATTERN.match(normalized):
        raise ValueError('Telefone deve estar no formato (XX) XXXXX-XXXX')
    return normalized


def normalize_sex(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in SEX_OPTIONS:
        raise ValueError('Sexo deve ser masculino ou feminino')
    return normalized


def normalize_person_name(value: str | None) -> str:
    normalized = _required(value, 'Nome é obrigatório')
    if not 2 <= len(normalized) <= 100:
        raise ValueError('Nome deve ter entre 2 e 100 caracteres')
    if not PERSON_NAME_PATTERN.match(normalized):
        raise ValueError('Nome deve conter apenas letras e espaços')
    return normalized


def normalize_company_name(value: str | None) -> str:
    normalized = _required(value, 'Nome da empresa é obrigatório')
    if not 2 <= len(normalized) <= 100:
        raise ValueError('Nome da empresa deve ter entre 2 e 100 caracteres')
    return normalized


def normalize_skills(value: str | None) -> str:
    normalized = (value or '').strip()
    if not 10 <= len(normalized) <= 1000:
        raise ValueError('Habilidades devem ter entre 10 e 1000 caracteres')
    return normalized


def cnpj_digits(value: str | None) -> str:
    return re.sub(r'\D', '', value or '')


def is_atirador(fields: dict[str, Any]) -> bool:
    tiro_guerra = fields.get('tiroGuerra')
    return bool(
        fields.get('sexo') == 'masculino'
        and fields.get('situacaoMilitar') == SERVING_STATUS
        and tiro_guerra
        and tiro_guerra != OTHER_TIRO_DE_GUERRA
    )


class StudentRegistration(BaseModel):
    nome: str
    email: str
    senha: str
    telefone: str
    cidade: str
    habilidades: str
    idade: int | None = None
    escolaridade: str | None = None
    experiencia: str | None = None
    formacao: str | None = None
    sexo: str | None = None
    situacaoMilitar: str | None = None
    tiroGuerra: str | None = None

    @field_validator('nome')
    @classmethod
    def validate_nome(cls, value: str) -> str:
        return normalize_person_name(value)

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('senha')
    @classmethod
    def validate_senha(cls, value: str) -> str:
        return check_password_policy(value)

    @field_validator('telefone')
    @classmethod
    def validate_telefone(cls, value: str) -> str:
        return normalize_phone(_required(value, 'Telefone é obrigatório'))

    @field_validator('cidade')
    @classmethod
    def validate_cidade(cls, value: str) -> str:
        return _required(value, 'Cidade é obrigatória')

    @field_validator('habilidades')
    @classmethod
    def validate_habilidades(cls, value: str) -> str:
        return normalize_skills(value)

    @field_validator('sexo')
    @classmethod
    def validate_sexo(cls, value: str | None) -> str | None:
        return normalize_sex(value)


class CompanyRegistration(BaseModel):
    nomeEmpresa: str
    email: str
    senha: str
    cidade: str
    nome: str | None = None
    cnpj: str | None = None
    setor: str | None = None
    telefone: str | None = None
    informacoes: str | None = None
    sexo: str | None = None

    @field_validator('nomeEmpresa')
    @classmethod
    def validate_nome_empresa(cls, value: str) -> str:
        return normalize_company_name(value)

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('senha')
    @classmethod
    def validate_senha(cls, value: str) -> str:
        return check_password_policy(value)

    @field_validator('cidade')
    @classmethod
    def validate_cidade(cls, value: str) -> str:
        return _required(value, 'Cidade é obrigatória')

    @field_validator('telefone')
    @classmethod
    def validate_telefone(cls, value: str | None) -> str:
        return normalize_phone(value)

    @field_validator('cnpj')
    @classmethod
    def validate_cnpj(cls, value: str | None) -> str:
        return (value or '').strip()

    @field_validator('sexo')
    @classmethod
    def validate_sexo(cls, value: str | None) -> str | None:
        return normalize_sex(value)


class AccountRegistration(BaseModel):
    """Envelope of the unified registration; kind-specific fields travel as extras."""

    model_config = ConfigDict(extra='allow')

    nome: str
    email: str
    senha: str
    tipoUsuario: Literal['atirador', 'empregador']
    sexo: str

    @field_validator('nome')
    @classmethod
    def validate_nome(cls, value: str) -> str:
        return _required(value, 'Nome é obrigatório')

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return normalize_email(value)

    @field_validator('senha')
    @classmethod
    def validate_senha(cls, value: str) -> str:
        return check_password_policy(value)

    @field_validator('sexo')
    @classmethod
    def validate_sexo(cls, value: str) -> str:
        return normalize_sex(value)


class ProfileUpdate(BaseModel):
    """Fields shared by both kinds. Unknown and protected fields are dropped."""

    email: str | None = None
    senha: str | None = None
    cidade: str | None = None
    sexo: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return None if value is None else normalize_email(value)

    @field_validator('senha')
    @classmethod
    def validate_senha(cls, value: str | None) -> str | None:
        return None if value is None else check_password_policy(value)

    @field_validator('cidade')
    @classmethod
    def validate_cidade(cls, value: str | None) -> str | None:
        return None if value is None else _required(value, 'Cidade é obrigatória')

    @field_validator('sexo')
    @classmethod
    def validate_sexo(cls, value: str | None) -> str | None:
        return normalize_sex(value)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude_none=True)


class StudentProfileUpdate(ProfileUpdate):
    nome: str | None = None
    telefone: str | None = None
    habilidades: str | None = None
    idade: int | None = None
    escolaridade: str | None = None
    experiencia: str | None = None
    formacao: str | None = None
    situacaoMilitar: str | None = None
    tiroGuerra: str | None = None

    @field_validator('nome')
    @classmethod
    def validate_nome(cls, value: str | None) -> str | None:
        return None if value is None else normalize_person_name(value)

    @field_validator('telefone')
    @classmethod
    def validate_telefone(cls, value: str | None) -> str | None:
        return None if value is None else normalize_phone(_required(value, 'Telefone é obrigatório'))

    @field_validator('habilidades')
    @classmethod
    def validate_habilidades(cls, value: str | None) -> str | None:
        return None if value is None else normalize_skills(value)


class CompanyProfileUpdate(ProfileUpdate):
    nome: str | None = None
    nomeEmpresa: str | None = None
    cnpj: str | None = None
    telefone: str | None = None
    setor: str | None = None
    informacoes: str | None = None

    @field_validator('nome')
    @classmethod
    def validate_nome(cls, value: str | None) -> str | None:
        return None if value is None else _required(value, 'Nome é obrigatório')

    @field_validator('nomeEmpresa')
    @classmethod
    def validate_nome_empresa(cls, value: str | None) -> str | None:
        return None if value is None else normalize_company_name(value)

    @field_validator('cnpj')
    @classmethod
    def validate_cnpj(cls, value: str | None) -> str | None:
        return None if value is None else value.strip()

    @field_validator('telefone')
    @classmethod
    def validate_telefone(cls, value: str | None) -> str | None:
        return None if value is None else normalize_phone(value)


UPDATE_MODELS: dict[str, type[ProfileUpdate]] = {
    STUDENT_KIND: StudentProfileUpdate,
    COMPANY_KIND: CompanyProfileUpdate,
}


def parse_payload(model: type[BaseModel], payload: dict[str, Any]) -> BaseModel:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise PayloadValidationError(details=format_validation_errors(exc.errors())) from exc


def _same_email(record: dict[str, Any], email: str) -> bool:
    return (record.get('email') or '').strip().lower() == email


def ensure_unique_email(records: list[dict[str, Any]], email: str, exclude_id: str | None = None) -> None:
    for record in records:
        if record.get('id') != exclude_id and _same_email(record, email):
            raise DuplicateResourceError('Este email já está cadastrado')


def ensure_unique_cnpj(companies: list[dict[str, Any]], cnpj: str, exclude_id: str | None = None) -> None:
    digits = cnpj_digits(cnpj)
    if not digits:
        return
    for company in companies:
        if company.get('id') != exclude_id and cnpj_digits(company.get('cnpj')) == digits:
            raise DuplicateResourceError('Já existe uma empresa cadastrada com este CNPJ')


def build_mirror(user: dict[str, Any]) -> dict[str, Any]:
    kind = user['tipoUsuario']
    mirror = {'id': user['id']}
    mirror.update({field_name: user.get(field_name) for field_name in PROFILE_FIELDS[kind]})
    mirror.update(
        tipo=MIRROR_TYPES[kind],
        dataRegistro=user.get('dataRegistro'),
        ultimaAtualizacao=user.get('ultimaAtualizacao'),
        ativo=user.get('ativo', True),
    )
    return mirror


def sync_mirror(mirrors: list[dict[str, Any]], user: dict[str, Any]) -> None:
    mirror = build_mirror(user)
    index = find_index(mirrors, user['id'])
    if index is None:
        logger.warning('Mirror record for user %s was missing and has been recreated', user['id'])
        mirrors.append(mirror)
    else:
        mirrors[index] = {**mirrors[index], **mirror}


def register_account(
    store: CollectionStore,
    kind: str,
    fields: dict[str, Any],
    rounds: int = DEFAULT_ROUNDS,
) -> dict[str, Any]:
    mirror_collection = KIND_COLLECTIONS[kind]
    email = fields['email']
    now = utc_timestamp()

    user: dict[str, Any] = {
        'id': generate_id(),
        'nome': fields.get('nome') or fields.get('nomeEmpresa'),
        'email': email,
        'senha': hash_password(fields['senha'], rounds),
        'tipoUsuario': kind,
    }
    for field_name in PROFILE_FIELDS[kind]:
        user.setdefault(field_name, fields.get(field_name))
    user.update(
        isAtirador=kind == STUDENT_KIND and is_atirador(fields),
        dataRegistro=now,
        ultimaAtualizacao=now,
        ativo=True,
    )

    with store.transaction(USERS, mirror_collection) as collections:
        ensure_unique_email(collections[USERS], email)
        ensure_unique_email(collections[mirror_collection], email)
        if kind == COMPANY_KIND:
            ensure_unique_cnpj(collections[COMPANIES], user.get('cnpj') or '')

        collections[USERS].append(user)
        collections[mirror_collection].append(build_mirror(user))

    logger.info('Registered %s account %s', kind, user['id'])
    return public_view(user)


def authenticate(store: CollectionStore, email: str, senha: str) -> dict[str, Any]:
    normalized = (email or '').strip().lower()
    user = next(
        (record for record in store.load(USERS) if _same_email(record, normalized) and record.get('ativo', True)),
        None,
    )
    if user is None or not verify_password(senha, user.get('senha', '')):
        raise InvalidCredentials()

    with store.transaction(USERS) as collections:
        users = collections[USERS]
        index = find_index(users, user['id'])
        if index is None:
            raise InvalidCredentials()
        users[index]['ultimoLogin'] = utc_timestamp()
        user = users[index]

    logger.info('User %s logged in', user['id'])
    return public_view(user)


def find_active_user(store: CollectionStore, user_id: str) -> dict[str, Any]:
    users = store.load(USERS)
    index = find_index(users, user_id)
    if index is None or not users[index].get('ativo', True):
        raise NotFoundError('Usuário não encontrado')
    return public_view(users[index])


def _diff(current: dict[str, Any], changes: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {
        key: {'old': current.get(key), 'new': value}
        for key, value in changes.items()
        if key != 'senha' and current.get(key) != value
    }


def update_account(
    store: CollectionStore,
    user_id: str,
    changes: dict[str, Any],
    rounds: int = DEFAULT_ROUNDS,
) -> dict[str, Any]:
    # tipoUsuario never changes, so the kind can be resolved before locking.
    kind = find_active_user(store, user_id).get('tipoUsuario')
    update = parse_payload(UPDATE_MODELS.get(kind, ProfileUpdate), changes)
    changes = update.changes()
    if 'senha' in changes:
        changes['senha'] = hash_password(changes['senha'], rounds)

    with store.transaction(USERS, STUDENTS, COMPANIES, CHANGE_HISTORY) as collections:
        users = collections[USERS]
        index = find_index(users, user_id)
        if index is None or not users[index].get('ativo', True):
            raise NotFoundError('Usuário não encontrado.')

        current = users[index]
        mirror_collection = KIND_COLLECTIONS.get(kind)

        if 'email' in changes:
            ensure_unique_email(users, changes['email'], exclude_id=user_id)
            if mirror_collection:
                ensure_unique_email(collections[mirror_collection], changes['email'], exclude_id=user_id)
        if kind == COMPANY_KIND and changes.get('cnpj'):
            ensure_unique_cnpj(collections[COMPANIES], changes['cnpj'], exclude_id=user_id)

        field_changes = _diff(current, changes)
        updated = {**current, **changes}
        if kind == COMPANY_KIND and 'nomeEmpresa' in changes and 'nome' not in changes:
            updated['nome'] = changes['nomeEmpresa']
        if kind == STUDENT_KIND:
            updated['isAtirador'] = is_atirador(updated)
        updated['ultimaAtualizacao'] = utc_timestamp()
        users[index] = updated

        if mirror_collection:
            sync_mirror(collections[mirror_collection], updated)

        if field_changes:
            collections[CHANGE_HISTORY].append({
                'id': secrets.token_hex(16),
                'userId': user_id,
                'tipoUsuario': kind,
                'alteradoEm': updated['ultimaAtualizacao'],
                'alteracoes': field_changes,
            })

    logger.info('Updated account %s (%d fields changed)', user_id, len(field_changes))
    return public_view(updated)


def deactivate_account(store: CollectionStore, user_id: str) -> dict[str, Any]:
    with store.transaction(USERS, STUDENTS, COMPANIES) as collections:
        users = collections[USERS]
        index = find_index(users, user_id)
        if index is None or not users[index].get('ativo', True):
            raise NotFoundError('Usuário não encontrado.')

        users[index] = {**users[index], 'ativo': False, 'ultimaAtualizacao': utc_timestamp()}
        mirror_collection = KIND_COLLECTIONS.get(users[index].get('tipoUsuario'))
        if mirror_collection:
            sync_mirror(collections[mirror_collection], users[index])

    logger.info('Deactivated account %s', user_id)
    return public_view(users[index])


def list_change_history(store: CollectionStore, user_id: str) -> list[dict[str, Any]]:
    return [entry for entry in store.load(CHANGE_HISTORY) if entry.get('userId') == user_id]
