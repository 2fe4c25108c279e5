import pytest

from app import create_app
from config import TestingConfig
from models import db, Priority
from repository import SqlUserRepository, CreateUserPayload

LOREM = {'name': 'Lorem Ipsum', 'email': 'lorem@ipsum.com', 'password': 'l0r3mIpsum'}
DOLOR = {'name': 'Dolor Sit', 'email': 'dolor@sit.com', 'password': 'd0l0rSitAmet'}


@pytest.fixture()
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def session(app):
    """db.session inside an app context, for repository-level tests."""
    with app.app_context():
        yield db.session


@pytest.fixture()
def make_user(session):
    repo = SqlUserRepository(session)

    def _make(email, name='Lorem Ipsum'):
        return repo.create_user(CreateUserPayload(name=name, email=email, password_hash='not-a-real-hash'))

    return _make


def register(client, user):
    return client.post('/register', json=user)


def login(client, user):
    return client.post('/login', json={'email': user['email'], 'password': user['password']})


def auth_headers(client, user):
    register(client, user)
    token = login(client, user).get_json()['token']
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture()
def lorem_headers(client):
    return auth_headers(client, LOREM)


@pytest.fixture()
def dolor_headers(client):
    return auth_headers(client, DOLOR)


def task_body(**overrides):
    body = {
        'name': 'Lorem ipsum',
        'priority': Priority.LOW.value,
        'description': 'Dolor et',
    }
    body.update(overrides)
    return body
