import pytest

from app import app as flask_app, reset_demo_data
from models import db

PASSWORD = 'Passw0rd!'


@pytest.fixture
def app():
    flask_app.config.update(TESTING=True, SEED_DEMO_DATA=True)
    with flask_app.app_context():
        reset_demo_data()
        db.session.remove()
        yield flask_app
        db.session.remove()


@pytest.fixture
def client(app):
    return app.test_client()


def login(client, email):
    response = client.post('/api/auth/signin', json={'email': email, 'password': PASSWORD})
    assert response.status_code == 200, response.get_json()
    return response.get_json()['user']


@pytest.fixture
def as_staff(client):
    login(client, 'nurse.linh@gmail.com')
    return client


@pytest.fixture
def as_admin(client):
    login(client, 'admin.helicare@gmail.com')
    return client


@pytest.fixture
def as_family(client):
    login(client, 'mary.doe@gmail.com')
    return client


@pytest.fixture
def as_resident(client):
    login(client, 'john.doe@gmail.com')
    return client
