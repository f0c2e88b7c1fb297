import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from capacita.auth import identity
from capacita.auth.passwords import hash_password, verify_password
from capacita.storage import CHANGE_HISTORY, COMPANIES, STUDENTS, USERS


def _student_fields(**overrides) -> dict:
    fields = {
        'nome': 'Carlos Souza',
        'email': 'carlos@example.com',
        'senha': 'Segura123',
        'telefone': '(82) 98888-7777',
        'cidade': 'Arapiraca',
        'habilidades': 'Logística e direção defensiva',
    }
    fields.update(overrides)
    return identity.StudentRegistration(**fields).model_dump()


def _company_fields(**overrides) -> dict:
    fields = {
        'nomeEmpresa': 'Mercado Bom Preço',
        'email': 'rh@bompreco.com',
        'senha': 'Mercado123',
        'cidade': 'Arapiraca',
        'cnpj': '11.222.333/0001-44',
    }
    fields.update(overrides)
    return identity.CompanyRegistration(**fields).model_dump()


@pytest.mark.parametrize(
    ('fields', 'expected'),
    [
        ({'sexo': 'masculino', 'situacaoMilitar': 'matriculado e servindo', 'tiroGuerra': 'TG 07-009'}, True),
        ({'sexo': 'feminino', 'situacaoMilitar': 'matriculado e servindo', 'tiroGuerra': 'TG 07-009'}, False),
        ({'sexo': 'masculino', 'situacaoMilitar': 'dispensado', 'tiroGuerra': 'TG 07-009'}, False),
        ({'sexo': 'masculino', 'situacaoMilitar': 'matriculado e servindo', 'tiroGuerra': 'Outro TG'}, False),
        ({'sexo': 'masculino', 'situacaoMilitar': 'matriculado e servindo', 'tiroGuerra': ''}, False),
        ({'sexo': 'masculino', 'situacaoMilitar': 'matriculado e servindo'}, False),
    ],
)
def test_is_atirador(fields: dict, expected: bool) -> None:
    assert identity.is_atirador(fields) is expected


def test_student_registration_normalizes_email() -> None:
    registration = identity.StudentRegistration(
        nome=' Ana Silva ',
        email=' ANA@X.COM ',
        senha='Abcdef1',
        telefone='(82) 99999-9999',
        cidade='Arapiraca',
        habilidades='Excel, atendimento ao público',
    )

    assert registration.nome == 'Ana Silva'
    assert registration.email == 'ana@x.com'


@pytest.mark.parametrize('senha', ['Ab1', 'abcdef1', 'ABCDEF1', 'Abcdefg'])
def test_student_registration_rejects_weak_passwords(senha: str) -> None:
    with pytest.raises(ValidationError):
        _student_fields(senha=senha)


@pytest.mark.parametrize(
    ('field_name', 'value'),
    [
        ('telefone', '82999999999'),
        ('habilidades', 'Excel'),
        ('nome', 'Ana 123'),
        ('email', 'ana.example.com'),
        ('cidade', '   '),
        ('sexo', 'outro'),
    ],
)
def test_student_registration_rejects_invalid_fields(field_name: str, value: str) -> None:
    with pytest.raises(ValidationError):
        _student_fields(**{field_name: value})


def test_company_registration_accepts_missing_optional_fields() -> None:
    registration = identity.CompanyRegistration(
        nomeEmpresa='Oficina Dois Irmãos',
        email='oficina@example.com',
        senha='Oficina1',
        cidade='Arapiraca',
    )

    assert registration.cnpj is None
    assert registration.telefone is None


def test_register_account_writes_user_and_student_mirror(store) -> None:
    user = identity.register_account(store, identity.STUDENT_KIND, _student_fields(), rounds=4)

    users = store.read(USERS)
    students = store.read(STUDENTS)
    assert 'senha' not in user
    assert [record['id'] for record in users] == [user['id']]
    assert [record['id'] for record in students] == [user['id']]
    assert verify_password('Segura123', users[0]['senha'])
    assert 'senha' not in students[0]
    assert students[0]['tipo'] == 'candidato'
    assert users[0]['ativo'] is True


def test_register_account_flags_atirador(store) -> None:
    fields = _student_fields(sexo='masculino', situacaoMilitar='matriculado e servindo', tiroGuerra='TG 07-009')

    user = identity.register_account(store, identity.STUDENT_KIND, fields, rounds=4)

    assert user['isAtirador'] is True
    assert store.read(STUDENTS)[0]['isAtirador'] is True


def test_register_account_rejects_duplicate_email_case_insensitively(store) -> None:
    identity.register_account(store, identity.STUDENT_KIND, _student_fields(), rounds=4)

    with pytest.raises(HTTPException) as exception_info:
        identity.register_account(
            store,
            identity.STUDENT_KIND,
            _student_fields(email='CARLOS@EXAMPLE.COM'),
            rounds=4,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Este email já está cadastrado'
    assert len(store.read(USERS)) == 1
    assert len(store.read(STUDENTS)) == 1


def test_register_account_rejects_email_used_by_other_kind(store) -> None:
    identity.register_account(store, identity.COMPANY_KIND, _company_fields(), rounds=4)

    with pytest.raises(HTTPException) as exception_info:
        identity.register_account(store, identity.STUDENT_KIND, _student_fields(email='rh@bompreco.com'), rounds=4)

    assert exception_info.value.status_code == 409
    assert store.read(STUDENTS) == []


def test_register_account_rejects_duplicate_cnpj(store) -> None:
    identity.register_account(store, identity.COMPANY_KIND, _company_fields(), rounds=4)

    with pytest.raises(HTTPException) as exception_info:
        identity.register_account(
            store,
            identity.COMPANY_KIND,
            _company_fields(email='outro@bompreco.com'),
            rounds=4,
        )

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail == 'Já existe uma empresa cadastrada com este CNPJ'
    assert len(store.read(COMPANIES)) == 1


def test_register_account_allows_companies_without_cnpj(store) -> None:
    identity.register_account(store, identity.COMPANY_KIND, _company_fields(cnpj=None), rounds=4)
    identity.register_account(
        store,
        identity.COMPANY_KIND,
        _company_fields(cnpj=None, email='filial@bompreco.com'),
        rounds=4,
    )

    assert len(store.read(COMPANIES)) == 2


@pytest.mark.parametrize('cnpj', ['11222333000144', '11.222.333/0001-44', ' 11 222 333 0001 44 '])
def test_ensure_unique_cnpj_compares_digits_only(cnpj: str) -> None:
    companies = [{'id': 'c1', 'cnpj': '11.222.333/0001-44'}]

    with pytest.raises(HTTPException) as exception_info:
        identity.ensure_unique_cnpj(companies, cnpj)

    assert exception_info.value.status_code == 409
    identity.ensure_unique_cnpj(companies, cnpj, exclude_id='c1')


def test_authenticate_stamps_last_login(store) -> None:
    created = identity.register_account(store, identity.STUDENT_KIND, _student_fields(), rounds=4)

    user = identity.authenticate(store, ' Carlos@Example.com ', 'Segura123')

    assert user['id'] == created['id']
    assert 'senha' not in user
    assert store.read(USERS)[0]['ultimoLogin'] == user['ultimoLogin']


@pytest.mark.parametrize(('email', 'senha'), [('carlos@example.com', 'Errada123'), ('ninguem@example.com', 'Segura123')])
def test_authenticate_rejects_bad_credentials(store, email: str, senha: str) -> None:
    identity.register_account(store, identity.STUDENT_KIND, _student_fields(), rounds=4)

    with pytest.raises(HTTPException) as exception_info:
        identity.authenticate(store, email, senha)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Email ou senha incorretos'


def test_authenticate_rejects_deactivated_account(store) -> None:
    created = identity.register_account(store, identity.STUDENT_KIND, _student_fields(), rounds=4)
    identity.deactivate_account(store, created['id'])

    with pytest.raises(HTTPException) as exception_info:
        identity.authenticate(store, 'carlos@example.com', 'Segura123')

    assert exception_info.value.status_code == 401
    assert store.read(STUDENTS)[0]['ativo'] is False


def test_update_account_syncs_mirror_and_records_history(store) -> None:
    created = identity.register_account(store, identity.STUDENT_KIND, _student_fields(), rounds=4)

    updated = identity.update_account(
        store,
        created['id'],
        {'cidade': 'Maceió', 'sexo': 'masculino', 'situacaoMilitar': 'matriculado e servindo', 'tiroGuerra': 'TG 07-009'},
        rounds=4,
    )

    assert updated['cidade'] == 'Maceió'
    assert updated['isAtirador'] is True
    student = store.read(STUDENTS)[0]
    assert student['cidade'] == 'Maceió'
    assert student['isAtirador'] is True

    history = store.read(CHANGE_HISTORY)
    assert len(history) == 1
    assert history[0]['userId'] == created['id']
    assert history[0]['alteracoes']['cidade'] == {'old': 'Arapiraca', 'new': 'Maceió'}


def test_update_account_rehashes_password_without_recording_it(store) -> None:
    created = identity.register_account(store, identity.STUDENT_KIND, _student_fields(), rounds=4)

    identity.update_account(store, created['id'], {'senha': 'NovaSenha9'}, rounds=4)

    assert identity.authenticate(store, 'carlos@example.com', 'NovaSenha9')['id'] == created['id']
    assert store.read(CHANGE_HISTORY) == []


def test_update_account_rejects_email_taken_by_another_user(store) -> None:
    identity.register_account(store, identity.STUDENT_KIND, _student_fields(), rounds=4)
    other = identity.register_account(
        store,
        identity.STUDENT_KIND,
        _student_fields(email='maria@example.com', nome='Maria Lima'),
        rounds=4,
    )

    with pytest.raises(HTTPException) as exception_info:
        identity.update_account(store, other['id'], {'email': 'carlos@example.com'}, rounds=4)

    assert exception_info.value.status_code == 409
    assert store.read(USERS)[1]['email'] == 'maria@example.com'


def test_update_account_recreates_missing_mirror(store) -> None:
    created = identity.register_account(store, identity.COMPANY_KIND, _company_fields(), rounds=4)
    store.write(COMPANIES, [])

    identity.update_account(store, created['id'], {'setor': 'Varejo'}, rounds=4)

    companies = store.read(COMPANIES)
    assert [company['id'] for company in companies] == [created['id']]
    assert companies[0]['setor'] == 'Varejo'


def test_update_account_rejects_cnpj_of_another_company(store) -> None:
    identity.register_account(store, identity.COMPANY_KIND, _company_fields(), rounds=4)
    other = identity.register_account(
        store,
        identity.COMPANY_KIND,
        _company_fields(email='rh@outra.com', cnpj='99.888.777/0001-66'),
        rounds=4,
    )

    with pytest.raises(HTTPException) as exception_info:
        identity.update_account(store, other['id'], {'cnpj': '11222333000144'}, rounds=4)

    assert exception_info.value.status_code == 409
    assert store.read(COMPANIES)[1]['cnpj'] == '99.888.777/0001-66'


@pytest.mark.parametrize(
    ('changes', 'field_name'),
    [
        ({'telefone': ''}, 'telefone'),
        ({'habilidades': 'curto'}, 'habilidades'),
        ({'nome': 'Carlos 123'}, 'nome'),
    ],
)
def test_update_account_validates_student_fields(store, changes: dict, field_name: str) -> None:
    created = identity.register_account(store, identity.STUDENT_KIND, _student_fields(), rounds=4)

    with pytest.raises(HTTPException) as exception_info:
        identity.update_account(store, created['id'], changes, rounds=4)

    assert exception_info.value.status_code == 400
    assert exception_info.value.details[0]['field'] == field_name
    assert store.read(USERS)[0]['telefone'] == '(82) 98888-7777'


def test_update_account_drops_fields_of_the_other_kind(store) -> None:
    created = identity.register_account(store, identity.STUDENT_KIND, _student_fields(), rounds=4)

    updated = identity.update_account(store, created['id'], {'cnpj': '11.222.333/0001-44', 'setor': 'Varejo'}, rounds=4)

    assert 'cnpj' not in updated
    assert 'setor' not in updated
    assert store.read(CHANGE_HISTORY) == []


def test_update_account_returns_not_found_for_unknown_user(store) -> None:
    with pytest.raises(HTTPException) as exception_info:
        identity.update_account(store, 'missing', {'cidade': 'Maceió'}, rounds=4)

    assert exception_info.value.status_code == 404


def test_password_hash_round_trip() -> None:
    hashed = hash_password('Abcdef1', rounds=4)

    assert hashed != 'Abcdef1'
    assert verify_password('Abcdef1', hashed) is True
    assert verify_password('abcdef1', hashed) is False
    assert verify_password('Abcdef1', 'not-a-bcrypt-hash') is False
