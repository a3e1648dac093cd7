import json
from contextlib import contextmanager
from datetime import date

import pytest

from app import create_app
from errors import StorageUnavailable
from record_store import RecordStore

TODAY = date(2024, 5, 1)


class MemorySlot:
    """Storage slot kept in a dict, for store tests that do not need Flask."""

    def __init__(self, initial=None):
        self.values = dict(initial or {})
        self.writes = 0

    def read(self, key):
        return self.values.get(key)

    def write(self, key, value):
        self.values[key] = value
        self.writes += 1

    def stored(self, key='EDUNEXUS_ERP_DB'):
        return json.loads(self.values[key])


class BrokenSlot:
    """A slot whose backing storage is gone."""

    def read(self, key):
        raise StorageUnavailable(f"Could not read storage slot '{key}'")

    def write(self, key, value):
        raise StorageUnavailable(f"Could not write storage slot '{key}': quota exceeded")


class FlakySlot(MemorySlot):
    """A dict slot whose next few reads or writes fail."""

    def __init__(self, initial=None, read_failures=0, write_failures=0):
        super().__init__(initial)
        self.read_failures = read_failures
        self.write_failures = write_failures

    def read(self, key):
        if self.read_failures:
            self.read_failures -= 1
            raise StorageUnavailable(f"Could not read storage slot '{key}'")
        return super().read(key)

    def write(self, key, value):
        if self.write_failures:
            self.write_failures -= 1
            raise StorageUnavailable(f"Could not write storage slot '{key}': quota exceeded")
        super().write(key, value)


@pytest.fixture()
def slot():
    return MemorySlot()


@pytest.fixture()
def store(slot):
    return RecordStore(slot, today=lambda: TODAY)


def make_store(document):
    """Store over a slot that already holds ``document`` (a dict or a raw string)."""
    raw = document if isinstance(document, str) else json.dumps(document)
    slot = MemorySlot({'EDUNEXUS_ERP_DB': raw})
    return RecordStore(slot, today=lambda: TODAY), slot


@pytest.fixture()
def app():
    app = create_app('testing')
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def stored(app):
    """Open the app's record store, freshly loaded, in an app context of its own."""
    @contextmanager
    def open_store():
        with app.app_context():
            store = app.extensions['record_store']
            store.load()
            yield store
    return open_store


def login(client, username='admin', password='admin123'):
    return client.post('/login', data={'username': username, 'password': password})


@pytest.fixture()
def admin_client(client):
    response = login(client)
    assert response.status_code == 302
    return client
