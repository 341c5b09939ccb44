"""Separate reasoning text from user-facing content in a token stream.

One ``ThinkingStreamProcessor`` per stream. It is fed decoded chunks and
returns typed events; ``finish()`` flushes whatever is still buffered, so a
reasoning marker that never closes cannot stall the stream.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import logging
import re
from typing import TYPE_CHECKING, Any

from switchyard.capabilities import ReasoningSpec
from switchyard.types import (
    FinishReason,
    StreamChunk,
    ThinkingToken,
    ToolCall,
    ToolCallEvent,
    Usage,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from switchyard.types import StreamEvent, ToolCallDelta

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Processing..."
SUBJECT_MAX_CHARS = 50

_TAG_RE = re.compile(r"<[^>]*>|\[[^\]]*\]")


def subject_hint(text: str) -> str:
    """Short display line for a reasoning span: its first non-empty line."""
    for line in text.splitlines():
        line = _TAG_RE.sub("", line).strip()
        if not line:
            continue
        if len(line) > SUBJECT_MAX_CHARS:
            return line[: SUBJECT_MAX_CHARS - 3] + "..."
        return line
    return DEFAULT_SUBJECT


def coalesce(events: Iterable[StreamEvent]) -> list[StreamEvent]:
    """Merge adjacent thinking tokens of the same kind.

    The processor emits text as soon as it arrives, so token boundaries
    follow the upstream chunking. Re-chunking the same stream is guaranteed
    to yield the same coalesced sequence of kinds and text.
    Compare streams in this form, not token by token.
    """
    merged: list[StreamEvent] = []
    for event in events:
        prev = merged[-1] if merged else None
        if (
            isinstance(event, ThinkingToken)
            and isinstance(prev, ThinkingToken)
            and prev.kind == event.kind
        ):
            merged[-1] = ThinkingToken(
                kind=prev.kind,
                text=prev.text + event.text,
                subject_hint=prev.subject_hint or event.subject_hint,
            )
        else:
            merged.append(event)
    return merged


@dataclass
class _PendingToolCall:
    index: int
    id: str = ""
    name: str = ""
    fragments: list[str] = field(default_factory=list)
    parsed: Mapping[str, Any] | None = None

    def build(self) -> ToolCall:
        name = self.name or "unknown_tool"
        arguments: str | Mapping[str, Any]
        if self.parsed is not None:
            arguments = self.parsed
        else:
            arguments = "".join(self.fragments) or "{}"
        return ToolCall(
            id=self.id or f"call_{self.index}_{name}",
            name=name,
            arguments=arguments,
        )


class ThinkingStreamProcessor:
    """Per-stream state machine: idle, reasoning, content.

    ``native`` capabilities arrive pre-separated on the wire and are only
    re-tagged. ``pattern`` capabilities are scanned for marker pairs; text is
    withheld from an unmatched opener (or a tail that could still grow into
    one) until more input arrives or the stream ends. ``none`` passes content
    straight through.
    """

    def __init__(self, reasoning: ReasoningSpec | None = None) -> None:
        self.reasoning = reasoning or ReasoningSpec()
        self.finish_reason: FinishReason | None = None
        self.usage: Usage | None = None
        self._buffer = ""
        self._native_subject: str | None = None
        self._pending: dict[int, _PendingToolCall] = {}
        self._completed: list[_PendingToolCall] = []
        self._finished = False

    @property
    def buffered(self) -> str:
        """Text withheld while waiting for a marker to complete."""
        return self._buffer

    def feed(self, chunk: StreamChunk | str) -> list[StreamEvent]:
        """Consume one chunk and return the events it releases."""
        if self._finished:
            raise RuntimeError("ThinkingStreamProcessor already finished")
        if isinstance(chunk, str):
            chunk = StreamChunk(content=chunk)

        if chunk.finish_reason is not None:
            self.finish_reason = chunk.finish_reason
        if chunk.usage is not None:
            self.usage = chunk.usage
        for delta in chunk.tool_calls:
            self._accumulate(delta)

        events: list[StreamEvent] = []
        if chunk.reasoning:
            if self._native_subject is None:
                self._native_subject = subject_hint(chunk.reasoning)
            events.append(
                ThinkingToken("reasoning", chunk.reasoning, self._native_subject)
            )
        if chunk.content:
            self._native_subject = None
            if self.reasoning.type == "pattern":
                self._buffer += chunk.content
                events.extend(self._scan())
            else:
                events.append(ThinkingToken("content", chunk.content))
        return events

    def finish(self) -> list[StreamEvent]:
        """Flush buffered text as content and emit assembled tool calls."""
        if self._finished:
            return []
        self._finished = True
        events: list[StreamEvent] = []
        if self._buffer:
            logger.debug(
                "Flushing %d buffered chars as content at stream end", len(self._buffer)
            )
            events.append(ThinkingToken("content", self._buffer))
            self._buffer = ""
        for pending in self._drain_tool_calls():
            events.append(ToolCallEvent(pending.build()))
        return events

    # ------------------------------------------------------------------ pattern

    def _scan(self) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        markers = self.reasoning.markers
        while self._buffer:
            buf = self._buffer
            match: re.Match[str] | None = None
            for marker in markers:
                m = marker.pattern.search(buf)
                if m is not None and (match is None or m.start() < match.start()):
                    match = m
            opener_at = min(
                (i for i in (buf.find(mk.opener) for mk in markers) if i >= 0),
                default=-1,
            )

            if match is not None and opener_at >= match.start():
                if match.start() > 0:
                    events.append(ThinkingToken("content", buf[: match.start()]))
                text = match.group(1)
                if text:
                    events.append(ThinkingToken("reasoning", text, subject_hint(text)))
                self._buffer = buf[match.end() :]
                continue

            if opener_at >= 0:
                # Unclosed opener: release what precedes it and wait.
                if opener_at > 0:
                    events.append(ThinkingToken("content", buf[:opener_at]))
                self._buffer = buf[opener_at:]
                break

            hold = self._partial_opener_len(buf)
            release = buf[: len(buf) - hold]
            if release:
                events.append(ThinkingToken("content", release))
            self._buffer = buf[len(buf) - hold :]
            break
        return events

    def _partial_opener_len(self, buf: str) -> int:
        """Length of the longest buffer tail that is a proper prefix of an opener."""
        longest = 0
        for marker in self.reasoning.markers:
            opener = marker.opener
            for k in range(min(len(opener) - 1, len(buf)), longest, -1):
                if buf.endswith(opener[:k]):
                    longest = k
                    break
        return longest

    # --------------------------------------------------------------- tool calls

    def _accumulate(self, delta: ToolCallDelta) -> None:
        pending = self._pending.get(delta.index)
        if pending is not None and delta.id and pending.id and delta.id != pending.id:
            # Same slot reused for a new call.
            self._completed.append(pending)
            pending = None
        if pending is None:
            pending = _PendingToolCall(index=delta.index)
            self._pending[delta.index] = pending
        if delta.id and not pending.id:
            pending.id = delta.id
        if delta.name and not pending.name:
            pending.name = delta.name
        if isinstance(delta.arguments, Mapping):
            pending.parsed = delta.arguments
        elif delta.arguments:
            pending.fragments.append(delta.arguments)

    def _drain_tool_calls(self) -> list[_PendingToolCall]:
        calls = [*self._completed, *sorted(self._pending.values(), key=lambda p: p.index)]
        self._completed, self._pending = [], {}
        return calls


def separate_reasoning(
    text: str, reasoning: ReasoningSpec
) -> tuple[str | None, str]:
    """Split a complete response text into ``(reasoning, content)``."""
    if reasoning.type != "pattern" or not text:
        return None, text
    processor = ThinkingStreamProcessor(reasoning)
    events = [*processor.feed(text), *processor.finish()]
    thoughts = [e.text for e in events if isinstance(e, ThinkingToken) and e.kind == "reasoning"]
    content = "".join(
        e.text for e in events if isinstance(e, ThinkingToken) and e.kind == "content"
    )
    return ("\n\n".join(thoughts) or None), content
