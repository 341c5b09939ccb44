"""Canonical <-> wire transformers.

Pure functions, one implementation per dialect. ``to_wire`` validates the
canonical request first and raises ``TransformError`` for malformed input.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from switchyard.transforms import native, openai_compat
from switchyard.transforms.base import Dialect, WireRequest
from switchyard.types import validate_request

if TYPE_CHECKING:
    from switchyard.types import CanonicalRequest, CanonicalResponse, Message, StreamChunk

_DIALECTS = {
    Dialect.NATIVE: native,
    Dialect.OPENAI_COMPAT: openai_compat,
}


def to_wire(dialect: Dialect, request: CanonicalRequest) -> WireRequest:
    """Translate a canonical request into *dialect*'s request body."""
    validate_request(request)
    wire: WireRequest = _DIALECTS[dialect].to_wire(request)
    return wire


def from_wire(dialect: Dialect, payload: dict[str, Any]) -> CanonicalResponse:
    """Translate a complete *dialect* response into a canonical response."""
    response: CanonicalResponse = _DIALECTS[dialect].from_wire(payload)
    return response


def chunk_from_wire(dialect: Dialect, payload: dict[str, Any]) -> StreamChunk:
    """Decode one streamed *dialect* chunk."""
    chunk: StreamChunk = _DIALECTS[dialect].chunk_from_wire(payload)
    return chunk


def messages_from_wire(dialect: Dialect, body: dict[str, Any]) -> tuple[Message, ...]:
    """Recover the conversation carried by a *dialect* request body."""
    messages: tuple[Message, ...] = _DIALECTS[dialect].messages_from_wire(body)
    return messages


__all__ = [
    "Dialect",
    "WireRequest",
    "chunk_from_wire",
    "from_wire",
    "messages_from_wire",
    "to_wire",
]
