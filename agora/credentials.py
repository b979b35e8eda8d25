"""
Agora - Credential Store
==========================
Holds registered users: username, email and a bcrypt password hash.

Two interchangeable backends are provided:

    InMemoryCredentialStore  - process-local dict, used by tests and the
                               "memory" storage backend
    MongoCredentialStore     - MongoDB collection accessed through motor

Both expose the same async interface:

    await store.find_by_username("alice")   -> User | None
    await store.create("alice", "pw", "a@x.com")  -> User  (DuplicateUser if taken)
    await store.verify_password(user, "pw")  -> bool

bcrypt runs in a worker thread so hashing never blocks the event loop.

Plaintext passwords never leave ``create``; only the hash is stored.
"""

import asyncio
import logging
from dataclasses import dataclass

import bcrypt
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from agora.errors import DuplicateUser, StorageConnectionFailure

logger = logging.getLogger(__name__)


@dataclass
class User:
    """A registered user as stored by the credential store."""
    username: str
    email: str
    password_hash: str

    def public(self) -> dict:
        """Profile fields safe to hand to clients (no hash, no ids)."""
        return {"username": self.username, "email": self.email}


def hash_password(password: str) -> str:
    """Hash a plaintext password with a fresh bcrypt salt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    """Check a plaintext password against a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in storage
        return False


async def hash_password_async(password: str) -> str:
    return await asyncio.to_thread(hash_password, password)


async def check_password_async(password: str, password_hash: str) -> bool:
    return await asyncio.to_thread(check_password, password, password_hash)


class CredentialStore:
    """Interface shared by all credential store backends."""

    async def find_by_username(self, username: str) -> User | None:
        raise NotImplementedError

    async def create(self, username: str, password: str, email: str) -> User:
        raise NotImplementedError

    async def verify_password(self, user: User, password: str) -> bool:
        return await check_password_async(password, user.password_hash)

    async def ping(self) -> None:
        """Raise StorageConnectionFailure if the backend is unreachable."""

    async def close(self) -> None:
        """Release backend resources."""


class InMemoryCredentialStore(CredentialStore):
    """Credential store kept in a dict keyed by username."""

    def __init__(self):
        self._users: dict[str, User] = {}

    async def find_by_username(self, username: str) -> User | None:
        return self._users.get(username)

    async def create(self, username: str, password: str, email: str) -> User:
        if username in self._users:
            raise DuplicateUser(username)
        password_hash = await hash_password_async(password)
        # Another registration may have finished while hashing
        if username in self._users:
            raise DuplicateUser(username)
        user = User(username=username, email=email, password_hash=password_hash)
        self._users[username] = user
        return user


class MongoCredentialStore(CredentialStore):
    """
    Credential store backed by a MongoDB ``users`` collection.

    Uniqueness of ``username`` is enforced by a unique index, so two
    concurrent registrations of the same name cannot both succeed.
    """

    def __init__(self, mongo_uri: str, mongo_db: str, collection: str = "users"):
        self._client = AsyncIOMotorClient(mongo_uri)
        self._coll = self._client[mongo_db][collection]
        self._index_ready = False

    async def _ensure_index(self) -> None:
        if not self._index_ready:
            await self._coll.create_index("username", unique=True)
            self._index_ready = True

    async def find_by_username(self, username: str) -> User | None:
        doc = await self._coll.find_one({"username": username}, {"_id": 0})
        if doc is None:
            return None
        return User(
            username=doc["username"],
            email=doc.get("email", ""),
            password_hash=doc["password"],
        )

    async def create(self, username: str, password: str, email: str) -> User:
        await self._ensure_index()
        user = User(username=username, email=email, password_hash=await hash_password_async(password))
        try:
            await self._coll.insert_one({
                "username": user.username,
                "email": user.email,
                "password": user.password_hash,
            })
        except DuplicateKeyError:
            raise DuplicateUser(username)
        logger.info("Registered user %s", username)
        return user

    async def ping(self) -> None:
        try:
            await self._client.admin.command("ping")
        except PyMongoError as e:
            raise StorageConnectionFailure("credential store (MongoDB)", e) from e

    async def close(self) -> None:
        self._client.close()
