"""
Agora - Message Log
=====================
Append-only store of chat messages.

    await log.append(ChatMessage(author="alice", content="hi"))
    transcript = await log.list_all()   # list of dicts, insertion order

``append`` stamps the message with the current UTC time. ``list_all``
returns plain JSON-ready dicts (ISO timestamps, no storage ids) so the
transcript can be broadcast as is.
"""

import logging
from datetime import datetime, timezone

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from agora.errors import StorageConnectionFailure
from agora.events import ChatMessage

logger = logging.getLogger(__name__)


def _to_document(entry: ChatMessage) -> dict:
    doc = entry.model_dump(exclude={"timestamp"})
    doc["timestamp"] = datetime.now(timezone.utc)
    return doc


def _to_payload(doc: dict) -> dict:
    payload = {k: v for k, v in doc.items() if k != "_id"}
    ts = payload.get("timestamp")
    if isinstance(ts, datetime):
        payload["timestamp"] = ts.isoformat()
    return payload


class MessageLog:
    """Interface shared by all message log backends."""

    async def append(self, entry: ChatMessage) -> None:
        raise NotImplementedError

    async def list_all(self) -> list[dict]:
        raise NotImplementedError

    async def ping(self) -> None:
        """Raise StorageConnectionFailure if the backend is unreachable."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryMessageLog(MessageLog):
    """Message log kept in a list for the lifetime of the process."""

    def __init__(self):
        self._docs: list[dict] = []

    async def append(self, entry: ChatMessage) -> None:
        self._docs.append(_to_document(entry))

    async def list_all(self) -> list[dict]:
        return [_to_payload(doc) for doc in self._docs]


class MongoMessageLog(MessageLog):
    """Message log backed by a MongoDB ``messages`` collection."""

    def __init__(self, mongo_uri: str, mongo_db: str, collection: str = "messages"):
        # Aware datetimes so transcripts carry the UTC offset like the memory backend
        self._client = AsyncIOMotorClient(mongo_uri, tz_aware=True)
        self._coll = self._client[mongo_db][collection]

    async def append(self, entry: ChatMessage) -> None:
        await self._coll.insert_one(_to_document(entry))

    async def list_all(self) -> list[dict]:
        # ObjectIds grow with insertion time, so _id order is append order
        cursor = self._coll.find({}, {"_id": 0}).sort("_id", 1)
        return [_to_payload(doc) async for doc in cursor]

    async def ping(self) -> None:
        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            raise StorageConnectionFailure("message log (MongoDB)", e) from e

    async def close(self) -> None:
        self._client.close()
