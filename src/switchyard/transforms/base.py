"""Shared transformer types and helpers."""

from __future__ import annotations

from dataclasses import dataclass
import enum
from typing import Any

from switchyard.types import FinishReason, Message


class Dialect(str, enum.Enum):
    """Wire JSON shapes understood by the transformers."""

    NATIVE = "native"
    OPENAI_COMPAT = "openai-compat"


@dataclass(frozen=True)
class WireRequest:
    """A request body in one dialect, plus any clamping warnings."""

    dialect: Dialect
    body: dict[str, Any]
    warnings: tuple[str, ...] = ()


def clamp(
    value: float | None,
    *,
    low: float | None,
    high: float | None,
    label: str,
    warnings: list[str],
) -> float | None:
    """Clamp *value* into [low, high], recording a warning when it moves."""
    if value is None:
        return None
    clamped = value
    if low is not None and clamped < low:
        clamped = low
    if high is not None and clamped > high:
        clamped = high
    if clamped != value:
        warnings.append(f"{label}={value} out of range, clamped to {clamped}")
    return clamped


def is_empty(message: Message) -> bool:
    """Whether a message has nothing worth sending.

    Tool results are never empty: dropping one would orphan the tool call
    it answers.
    """
    if message.role == "tool":
        return False
    return not message.text.strip() and not message.images and not message.tool_calls


def get_field(payload: Any, *names: str, default: Any = None) -> Any:
    """Read the first present key among *names* (snake_case or camelCase)."""
    if not isinstance(payload, dict):
        return default
    for name in names:
        if name in payload and payload[name] is not None:
            return payload[name]
    return default


def finish_reason_or_other(value: Any, table: dict[str, FinishReason]) -> FinishReason:
    if not isinstance(value, str):
        return FinishReason.OTHER
    return table.get(value.lower(), FinishReason.OTHER)
