"""
Agora - Realtime Event Models
===============================
Pydantic models for the payloads travelling over the WebSocket channel.

Inbound envelopes (client -> server) are a tagged union on ``type``:

    {"type": "update-products", "data": {...any product fields...}}
    {"type": "update-chat",     "data": {"author": "alice", "content": "hi"}}

Outbound envelopes (server -> client) use the same shape plus a timestamp:

    {"type": "products", "data": [...], "timestamp": "2026-02-08T12:00:00+00:00"}
    {"type": "messages", "data": [...], "timestamp": "..."}
    {"type": "error",    "data": {"error": "...", "message": "..."}, "timestamp": "..."}
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# Outbound event names
PRODUCTS = "products"
MESSAGES = "messages"
ERROR = "error"

# Inbound event names
UPDATE_PRODUCTS = "update-products"
UPDATE_CHAT = "update-chat"


class ChatMessage(BaseModel):
    """One chat line. ``timestamp`` is assigned by the message log."""
    author: str | None = Field(default=None, max_length=100)
    content: str = Field(..., min_length=1)
    timestamp: datetime | None = None


class CatalogEntry(BaseModel):
    """A product record. Open schema: every field is kept as sent."""
    model_config = ConfigDict(extra="allow")

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump()


class UpdateProducts(BaseModel):
    type: Literal["update-products"]
    data: CatalogEntry


class UpdateChat(BaseModel):
    type: Literal["update-chat"]
    data: ChatMessage


InboundEvent = Annotated[Union[UpdateProducts, UpdateChat], Field(discriminator="type")]

_inbound_adapter = TypeAdapter(InboundEvent)


def parse_inbound(raw: str | bytes) -> UpdateProducts | UpdateChat:
    """
    Parse and validate a raw WebSocket frame into an inbound event.

    Raises:
        pydantic.ValidationError: If the frame is not valid JSON, names an
            unknown event type or carries an invalid payload.
    """
    return _inbound_adapter.validate_json(raw)
