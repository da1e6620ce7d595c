import json

import pytest
import requests

from labloom import create_app, db
from labloom.config import Config
from labloom.services.local_store import LocalNoteStore, MemoryKeyValueStore
from labloom.services.remote_store import RemoteNoteStore

REMOTE_URL = 'http://remote.test'


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'


class ClientResponse:
    """The parts of requests.Response the remote store client reads."""

    def __init__(self, status_code, text):
        self.status_code = status_code
        self.text = text

    def json(self):
        return json.loads(self.text)


class FlaskClientSession:
    """Routes RemoteNoteStore calls into a Flask test client.

    Setting ``offline`` makes every call fail like an unreachable server.
    """

    def __init__(self, client, base_url=REMOTE_URL):
        self.client = client
        self.base_url = base_url
        self.offline = False
        self.calls = []

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.calls.append((method, url, params))
        if self.offline:
            raise requests.ConnectionError('connection refused')
        path = url[len(self.base_url):] if url.startswith(self.base_url) else url
        response = self.client.open(path, method=method, query_string=params, json=json, headers=headers)
        return ClientResponse(response.status_code, response.get_data(as_text=True))


class CannedSession:
    """Answers every request with the same status and body."""

    def __init__(self, status_code, text):
        self.status_code = status_code
        self.text = text

    def request(self, method, url, **kwargs):
        return ClientResponse(self.status_code, self.text)


@pytest.fixture
def app():
    app = create_app(TestingConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def remote_session(client):
    return FlaskClientSession(client)


@pytest.fixture
def remote(remote_session):
    return RemoteNoteStore(REMOTE_URL, session=remote_session)


@pytest.fixture
def local_store():
    return LocalNoteStore(MemoryKeyValueStore())
