"""Shared test fixtures for the tracker stores, server and client."""

import sys
from pathlib import Path
from urllib.parse import urlsplit

import pytest
import requests

# Ensure tracker/ and tracker_server.py are importable without installing
sys.path.insert(0, str(Path(__file__).parent.parent))

from tracker.client import TrackerClient
from tracker.config import Config
from tracker.memory_store import MemoryStore
from tracker.store import SQLiteStore

API_KEY = "test-secret"


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteStore(str(tmp_path / "tracker.db"))


@pytest.fixture
def memory_store():
    return MemoryStore(seed=False)


@pytest.fixture(params=["sqlite", "memory"])
def store(request, tmp_path):
    """Every store-contract test runs against both backends."""
    if request.param == "sqlite":
        return SQLiteStore(str(tmp_path / "tracker.db"))
    return MemoryStore(seed=False)


@pytest.fixture
def owner(store):
    return store.create_user("owner@example.com", "Owner")


@pytest.fixture
def project(store, owner):
    return store.create_project(owner.id, "Board")


@pytest.fixture
def todo(project):
    """The "To Do" column of the default project."""
    return project.columns[1]


@pytest.fixture
def config(tmp_path):
    cfg = Config(
        storage="sqlite",
        db_path=str(tmp_path / "server.db"),
        uploads_dir=str(tmp_path / "uploads"),
        api_secret=API_KEY,
    )
    return cfg


@pytest.fixture
def app(config):
    from tracker_server import create_app

    app = create_app(config)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def http(app):
    """Flask test client that sends the API key on every request."""
    client = app.test_client()
    client.environ_base["HTTP_X_API_KEY"] = API_KEY
    return client


class FlaskSession:
    """requests.Session stand-in that routes calls into a Flask test client."""

    def __init__(self, app):
        self.client = app.test_client()
        self.calls = []

    def request(self, method, url, headers=None, auth=None, timeout=None,
                params=None, json=None, data=None, files=None):
        path = urlsplit(url).path
        self.calls.append((method, path))
        kwargs = {"headers": headers or {}, "query_string": params, "auth": auth}
        if json is not None:
            kwargs["json"] = json
        if files:
            form = dict(data or {})
            for key, (name, fileobj, mimetype) in files.items():
                form[key] = (fileobj, name, mimetype)
            kwargs["data"] = form
            kwargs["content_type"] = "multipart/form-data"

        resp = self.client.open(path, method=method, **kwargs)
        r = requests.Response()
        r.status_code = resp.status_code
        r.reason = resp.status.split(" ", 1)[-1]
        r._content = resp.get_data()
        r.headers.update(dict(resp.headers))
        r.url = url
        return r


@pytest.fixture
def remote(app):
    """TrackerClient wired to the test app through FlaskSession."""
    return TrackerClient("http://tracker.test", api_key=API_KEY, session=FlaskSession(app))


@pytest.fixture
def anonymous_remote(app):
    return TrackerClient("http://tracker.test", session=FlaskSession(app))
