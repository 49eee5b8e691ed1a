import pytest
from werkzeug.security import generate_password_hash

from gala_votacao.app import create_app
from gala_votacao.models import db

TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'DATA_STORE': 'sql',
    'RATE_LIMIT_BACKEND': 'memory',
    'JWT_SECRET': 'gala-test-secret-with-enough-bytes-0123456789',
    'DEBUG_ERRORS': False,
    'FRONTEND_URL': None,
    'ALLOWED_ORIGIN': '',
}

DEVICE = 'device_abc123XYZ'
ADMIN_EMAIL = 'admin@gala.com.br'
ADMIN_PASSWORD = 'segredo123'


def fast_hash(password):
    return generate_password_hash(password, method='pbkdf2:sha256:1000')


@pytest.fixture
def app():
    app = create_app(dict(TEST_CONFIG))
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return app.extensions['gala_votacao']['store']


@pytest.fixture
def seeded(store):
    """Two active categories, one closed category, and their candidates. Voting is open."""
    store.insert('categorias', [
        {'id': 1, 'nome': 'Melhor Artista', 'icone': 'fa-star', 'cor': '#FFD700', 'ativo': True},
        {'id': 2, 'nome': 'Revelação', 'icone': 'fa-bolt', 'cor': '#00AAFF', 'ativo': True},
        {'id': 3, 'nome': 'Categoria Encerrada', 'icone': 'fa-lock', 'cor': '#999999', 'ativo': False},
    ])
    store.insert('candidatos', [
        {'id': 10, 'categoria_id': 1, 'nome': 'Ana Souza', 'biografia': 'Cantora. ' * 40, 'ativo': True},
        {'id': 11, 'categoria_id': 1, 'nome': 'Bruno Lima', 'biografia': 'Ator', 'ativo': True},
        {'id': 12, 'categoria_id': 1, 'nome': 'Carla Dias', 'ativo': False},
        {'id': 20, 'categoria_id': 2, 'nome': 'Diego Rocha', 'ativo': True},
        {'id': 30, 'categoria_id': 3, 'nome': 'Eva Martins', 'ativo': True},
        {'id': 40, 'categoria_id': 99, 'nome': 'Sem Categoria Real', 'ativo': True},
    ])
    store.set_config('votacao_ativa', 'true')
    store.set_config('mostrar_confete', 'true')
    return store


@pytest.fixture
def admins(store):
    rows = store.insert('administradores', [
        {'nome': 'Maria Admin', 'email': ADMIN_EMAIL, 'senha_hash': fast_hash(ADMIN_PASSWORD),
         'nivel_acesso': 'super', 'ativo': True},
        {'nome': 'João Inativo', 'email': 'inativo@gala.com.br', 'senha_hash': fast_hash(ADMIN_PASSWORD),
         'nivel_acesso': 'admin', 'ativo': False},
    ])
    return {row['email']: row for row in rows}
