import pytest
from fastapi.testclient import TestClient

from capacita.core.config import Settings
from capacita.main import create_app
from capacita.storage import JsonFileStore

TEST_SECRET = 'capacita-test-secret-key-for-hs256-signing'


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(data_dir=str(tmp_path / 'data'), jwt_secret_key=TEST_SECRET, bcrypt_rounds=4)


@pytest.fixture
def store(settings: Settings) -> JsonFileStore:
    file_store = JsonFileStore(settings.data_dir)
    file_store.initialize()
    return file_store


@pytest.fixture
def client(settings: Settings, store: JsonFileStore):
    with TestClient(create_app(settings, store)) as test_client:
        yield test_client


@pytest.fixture
def student_payload() -> dict:
    return {
        'nome': 'Ana Silva',
        'email': 'ana@x.com',
        'senha': 'Abcdef1',
        'telefone': '(82) 99999-9999',
        'cidade': 'Arapiraca',
        'habilidades': 'Excel, atendimento ao público',
    }


@pytest.fixture
def company_payload() -> dict:
    return {
        'nomeEmpresa': 'Padaria Central',
        'email': 'contato@padariacentral.com.br',
        'senha': 'Padaria123',
        'cidade': 'Arapiraca',
        'cnpj': '12.345.678/0001-90',
        'setor': 'Alimentação',
        'telefone': '(82) 3521-0000',
    }


@pytest.fixture
def course_payload() -> dict:
    return {
        'title': 'Excel Básico',
        'category': 'Informática',
        'description': 'Planilhas, fórmulas e gráficos para o primeiro emprego.',
        'imageUrl': 'https://cdn.example.com/excel.png',
        'courseUrl': 'https://cursos.example.com/excel',
        'page': 'primeiroemprego.html',
    }
