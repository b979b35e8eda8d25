"""
Agora - Storage Wiring
========================
Builds the three store collaborators from configuration and checks that
they are reachable at startup.

    storage.backend = "memory"   -> in-process users and chat
    storage.backend = "mongodb"  -> users and chat in MongoDB (motor)
    storage.catalog_url = None   -> sqlite file data/products.sqlite3
    storage.catalog_url = "memory" -> in-process catalog log
    storage.catalog_url = "<sqlalchemy async url>" -> that database
"""

import logging
import os
from dataclasses import dataclass

from agora.catalog_log import CatalogLog, InMemoryCatalogLog, SqlCatalogLog
from agora.credentials import CredentialStore, InMemoryCredentialStore, MongoCredentialStore
from agora.errors import StorageConnectionFailure
from agora.message_log import InMemoryMessageLog, MessageLog, MongoMessageLog

logger = logging.getLogger(__name__)


@dataclass
class Stores:
    credentials: CredentialStore
    messages: MessageLog
    catalog: CatalogLog

    def all(self) -> list:
        return [self.credentials, self.messages, self.catalog]


def build_stores(storage_config: dict, data_dir: str) -> Stores:
    """
    Create store instances for the ``storage`` config section.

    Raises:
        ValueError: If the backend name is unknown.
    """
    backend = storage_config.get("backend", "memory")
    if backend == "memory":
        credentials = InMemoryCredentialStore()
        messages = InMemoryMessageLog()
    elif backend == "mongodb":
        uri = storage_config["mongo_uri"]
        db = storage_config["mongo_db"]
        credentials = MongoCredentialStore(uri, db)
        messages = MongoMessageLog(uri, db)
    else:
        raise ValueError(f"Unknown storage backend '{backend}'")

    catalog_url = storage_config.get("catalog_url")
    if catalog_url == "memory":
        catalog = InMemoryCatalogLog()
    else:
        if not catalog_url:
            catalog_url = "sqlite+aiosqlite:///" + os.path.join(data_dir, "products.sqlite3")
        catalog = SqlCatalogLog(catalog_url)

    logger.info("Storage: users/chat=%s, catalog=%s", backend, catalog_url or "sqlite")
    return Stores(credentials=credentials, messages=messages, catalog=catalog)


async def check_connections(stores: Stores, fail_fast: bool = False) -> list[StorageConnectionFailure]:
    """
    Ping every store.

    Unreachable stores are logged and the app keeps running in a degraded
    state, unless ``fail_fast`` is set.

    Returns:
        The failures encountered (empty when everything is reachable).

    Raises:
        StorageConnectionFailure: On the first failure when ``fail_fast`` is True.
    """
    failures = []
    for store in stores.all():
        try:
            await store.ping()
        except StorageConnectionFailure as e:
            if fail_fast:
                raise
            logger.error("%s - continuing without it", e.message)
            failures.append(e)
    return failures


async def close_stores(stores: Stores) -> None:
    for store in stores.all():
        await store.close()
