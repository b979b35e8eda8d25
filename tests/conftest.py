"""Shared fixtures: recording peers, in-memory stores, a hub and an app."""
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from agora.auth import AuthManager
from agora.catalog_log import InMemoryCatalogLog
from agora.credentials import InMemoryCredentialStore
from agora.hub import RealtimeHub
from agora.main import create_app
from agora.message_log import InMemoryMessageLog
from agora.storage import Stores


class RecordingPeer:
    """Hub peer that keeps every event it is sent."""

    def __init__(self, peer_id, username=None):
        self.peer_id = peer_id
        self.username = username
        self.sent = []

    async def send(self, event, data):
        self.sent.append((event, data))

    def last(self, event):
        for name, data in reversed(self.sent):
            if name == event:
                return data
        return None

    def events(self, event):
        return [data for name, data in self.sent if name == event]


class BrokenPeer(RecordingPeer):
    async def send(self, event, data):
        raise ConnectionError("socket closed")


class FailingCatalogLog(InMemoryCatalogLog):
    """Catalog log whose writes fail until ``fail`` is switched off."""

    def __init__(self):
        super().__init__()
        self.fail = True
        self.attempts = 0

    async def append_batch(self, items):
        self.attempts += 1
        if self.fail:
            raise OSError("disk full")
        await super().append_batch(items)


class FailingMessageLog(InMemoryMessageLog):
    def __init__(self):
        super().__init__()
        self.fail = True

    async def append(self, entry):
        if self.fail:
            raise OSError("connection reset")
        await super().append(entry)


class FakeClock:
    def __init__(self):
        self.current = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.current

    def advance(self, seconds):
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def message_log():
    return InMemoryMessageLog()


@pytest.fixture
def catalog_log():
    return InMemoryCatalogLog()


@pytest.fixture
def hub(message_log, catalog_log):
    return RealtimeHub(message_log, catalog_log)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth(clock):
    return AuthManager(InMemoryCredentialStore(), secret_key="test-secret", idle_timeout=60, now=clock)


@pytest.fixture
def stores():
    return Stores(
        credentials=InMemoryCredentialStore(),
        messages=InMemoryMessageLog(),
        catalog=InMemoryCatalogLog(),
    )


@pytest.fixture
def app(tmp_path, stores):
    return create_app(project_dir=str(tmp_path), stores=stores)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def register_and_login(client, username="alice", password="pw1", email="a@x.com"):
    client.post(
        "/register",
        data={"username": username, "password": password, "email": email},
        follow_redirects=False,
    )
    return client.post(
        "/login",
        data={"username": username, "password": password},
        follow_redirects=False,
    )
