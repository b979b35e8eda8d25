"""
Agora - Realtime Hub
======================
Relays catalog and chat events between every connected peer and the
backing stores.

A peer is anything with a ``peer_id``, a ``username`` and an async
``send(event, data)`` method. In production peers wrap FastAPI WebSockets
(see websocket.py); tests use plain recording objects.

Event flow:
    connect(peer)              -> peer gets "products" snapshot + "messages" transcript
    catalog_update(peer, e)    -> products.append(e), persist, broadcast "products"
    chat_message(peer, m)      -> message_log.append(m), list_all(), broadcast "messages"
    disconnect(peer)           -> peer leaves the live set

Persistence policy:
    "best_effort" - store failures are logged and recorded as PersistResult,
                    the broadcast always happens. Catalog writes run in
                    background tasks, so broadcast and persistence may
                    complete in either order.
    "strict"      - store failures raise PersistenceFailure to the caller
                    and nothing is broadcast.

Catalog persistence is incremental: the hub remembers how many leading
entries of ``products`` are already in the catalog log and only appends the
rest. A failed batch stays pending and goes out with the next update.

All state is mutated on the single asyncio event loop; the catalog lock
only serialises the awaits of concurrent persistence tasks.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Protocol

from pymongo.errors import PyMongoError
from sqlalchemy.exc import SQLAlchemyError

from agora import events
from agora.catalog_log import CatalogLog
from agora.errors import PersistenceFailure
from agora.events import CatalogEntry, ChatMessage
from agora.message_log import MessageLog

logger = logging.getLogger(__name__)

BEST_EFFORT = "best_effort"
STRICT = "strict"
PERSISTENCE_POLICIES = (BEST_EFFORT, STRICT)

# Errors a store may raise that count as a persistence failure
STORE_ERRORS = (PyMongoError, SQLAlchemyError, OSError, PersistenceFailure)


class Peer(Protocol):
    peer_id: str
    username: str | None

    async def send(self, event: str, data: Any) -> None: ...


@dataclass
class PersistResult:
    """Outcome of one persistence attempt."""
    operation: str
    ok: bool
    count: int = 0
    error: str | None = None


class RealtimeHub:
    """
    Live connection set plus the shared ``products`` sequence.

    Attributes:
        products:           Every catalog entry received, in arrival order.
        persisted_count:    Length of the ``products`` prefix known to be
                            in the catalog log.
        results:            Most recent PersistResults, newest last.
    """

    def __init__(
        self,
        message_log: MessageLog,
        catalog_log: CatalogLog,
        persistence_policy: str = BEST_EFFORT,
        result_history: int = 100,
    ):
        if persistence_policy not in PERSISTENCE_POLICIES:
            raise ValueError(
                f"Unknown persistence policy '{persistence_policy}', "
                f"expected one of {PERSISTENCE_POLICIES}"
            )
        self.message_log = message_log
        self.catalog_log = catalog_log
        self.persistence_policy = persistence_policy

        self.products: list[dict[str, Any]] = []
        self.persisted_count: int = 0
        self.results: deque[PersistResult] = deque(maxlen=result_history)

        self._peers: dict[str, Peer] = {}
        self._catalog_lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

    @property
    def strict(self) -> bool:
        return self.persistence_policy == STRICT

    @property
    def peer_count(self) -> int:
        """Return the number of currently connected peers."""
        return len(self._peers)

    def is_connected(self, peer: Peer) -> bool:
        return peer.peer_id in self._peers

    # -- Connection lifecycle --------------------------------------------------

    async def connect(self, peer: Peer) -> None:
        """
        Add a peer to the live set and send it the current state.

        The peer receives the ``products`` snapshot first, then the full
        chat transcript read from the message log. If the transcript cannot
        be read the peer stays connected without it.
        """
        self._peers[peer.peer_id] = peer
        logger.info("Peer %s connected (user=%s, peers=%d)",
                    peer.peer_id, peer.username, self.peer_count)

        await peer.send(events.PRODUCTS, list(self.products))

        try:
            transcript = await self.message_log.list_all()
        except STORE_ERRORS as e:
            logger.error("Could not read chat transcript for %s: %s", peer.peer_id, e)
            return
        await peer.send(events.MESSAGES, transcript)

    def disconnect(self, peer: Peer) -> None:
        """Remove a peer from the live set. Unknown peers are ignored."""
        if self._peers.pop(peer.peer_id, None) is not None:
            logger.info("Peer %s disconnected (peers=%d)", peer.peer_id, self.peer_count)

    async def broadcast(self, event: str, data: Any) -> None:
        """
        Send one event to every live peer.

        Peers whose send fails are dropped from the live set, the rest still
        receive the event.
        """
        dropped = []
        for peer in list(self._peers.values()):
            try:
                await peer.send(event, data)
            except Exception as e:
                logger.warning("Dropping peer %s after failed send: %s", peer.peer_id, e)
                dropped.append(peer)
        for peer in dropped:
            self.disconnect(peer)

    # -- Catalog ---------------------------------------------------------------

    async def catalog_update(self, peer: Peer, entry: CatalogEntry | dict) -> None:
        """
        Append a product, persist it and broadcast the full product list.

        Raises:
            PersistenceFailure: Only under the strict policy, when the catalog
                log rejects the write. ``products`` is left unchanged and
                nothing is broadcast.
        """
        payload = entry.to_payload() if isinstance(entry, CatalogEntry) else dict(entry)

        if self.strict:
            async with self._catalog_lock:
                self.products.append(payload)
                try:
                    await self._flush_catalog()
                except PersistenceFailure:
                    self.products.pop()
                    raise
        else:
            self.products.append(payload)
            task = asyncio.create_task(self._persist_catalog())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        logger.debug("Catalog update from %s, %d products", peer.peer_id, len(self.products))
        await self.broadcast(events.PRODUCTS, list(self.products))

    async def _persist_catalog(self) -> None:
        async with self._catalog_lock:
            try:
                await self._flush_catalog()
            except PersistenceFailure:
                # Already logged and recorded; the batch stays pending
                pass

    async def _flush_catalog(self) -> None:
        """
        Write the not-yet-persisted tail of ``products``. Caller holds the lock.

        Raises:
            PersistenceFailure: If the catalog log rejects the batch.
        """
        batch = self.products[self.persisted_count:]
        if not batch:
            return
        try:
            await self.catalog_log.ensure_schema()
            await self.catalog_log.append_batch(batch)
        except STORE_ERRORS as e:
            logger.error("Persisting %d catalog entries failed: %s", len(batch), e)
            self._record(PersistResult("catalog", ok=False, count=len(batch), error=str(e)))
            raise PersistenceFailure("catalog", e) from e
        self.persisted_count += len(batch)
        self._record(PersistResult("catalog", ok=True, count=len(batch)))

    # -- Chat ------------------------------------------------------------------

    async def chat_message(self, peer: Peer, entry: ChatMessage) -> None:
        """
        Store a chat message, re-read the transcript and broadcast it.

        The broadcast carries whatever ``list_all()`` returns after the
        append, so concurrent messages appear in storage order.

        Raises:
            PersistenceFailure: Only under the strict policy.
        """
        if entry.author is None and peer.username:
            entry = entry.model_copy(update={"author": peer.username})

        try:
            await self.message_log.append(entry)
        except STORE_ERRORS as e:
            self._record(PersistResult("chat", ok=False, count=1, error=str(e)))
            logger.error("Persisting chat message from %s failed: %s", peer.peer_id, e)
            if self.strict:
                raise PersistenceFailure("chat", e) from e
        else:
            self._record(PersistResult("chat", ok=True, count=1))

        try:
            transcript = await self.message_log.list_all()
        except STORE_ERRORS as e:
            logger.error("Reading chat transcript failed: %s", e)
            if self.strict:
                raise PersistenceFailure("chat transcript", e) from e
            return

        await self.broadcast(events.MESSAGES, transcript)

    # -- Housekeeping ----------------------------------------------------------

    def _record(self, result: PersistResult) -> PersistResult:
        self.results.append(result)
        return result

    async def drain(self) -> None:
        """Wait for all outstanding background persistence tasks."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
