"""Integration tests against a real MongoDB. Set AGORA_TEST_MONGO_URI to run them."""
import os
import uuid

import pytest

from agora.credentials import MongoCredentialStore
from agora.errors import DuplicateUser
from agora.events import ChatMessage
from agora.message_log import MongoMessageLog

MONGODB_URI = os.environ.get("AGORA_TEST_MONGO_URI")
pytestmark = pytest.mark.skipif(not MONGODB_URI, reason="AGORA_TEST_MONGO_URI not set")


@pytest.fixture
def db_name():
    return f"agora_test_{uuid.uuid4().hex[:8]}"


@pytest.mark.asyncio
async def test_mongo_credential_store(db_name):
    store = MongoCredentialStore(MONGODB_URI, db_name)
    try:
        await store.ping()
        await store.create("alice", "pw1", "a@x.com")
        with pytest.raises(DuplicateUser):
            await store.create("alice", "pw2", "b@x.com")

        user = await store.find_by_username("alice")
        assert user.email == "a@x.com"
        assert await store.verify_password(user, "pw1")
        assert await store.find_by_username("nobody") is None
    finally:
        await store._client.drop_database(db_name)
        await store.close()


@pytest.mark.asyncio
async def test_mongo_message_log_keeps_append_order(db_name):
    log = MongoMessageLog(MONGODB_URI, db_name)
    try:
        for text in ["one", "two", "three"]:
            await log.append(ChatMessage(author="alice", content=text))

        transcript = await log.list_all()
        assert [m["content"] for m in transcript] == ["one", "two", "three"]
        assert all("_id" not in m and m["timestamp"].endswith("+00:00") for m in transcript)
    finally:
        await log._client.drop_database(db_name)
        await log.close()
