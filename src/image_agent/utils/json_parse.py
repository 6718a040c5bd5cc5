"""Streaming JSON assembly for tool-call arguments.

Providers stream a tool call's arguments as partial text spread over many
deltas. ``ToolCallAccumulator`` buffers those fragments per call and decides
when each call is complete: once its text is a balanced, parseable JSON
object, or when the provider sends a finish signal.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from partial_json_parser import loads as partial_loads

from image_agent.errors import ProviderError
from image_agent.models import ToolCall


def parse_streaming_json(partial: str) -> dict[str, Any]:
    """Parse potentially incomplete JSON from streaming tool call args.

    Uses three-tier fallback:
    1. Standard json.loads() for complete JSON
    2. partial_json_parser for incomplete JSON
    3. Empty dict fallback
    """
    if not partial or not partial.strip():
        return {}
    try:
        result = json.loads(partial)
        return result if isinstance(result, dict) else {}
    except json.JSONDecodeError:
        pass
    try:
        result = partial_loads(partial)
    except Exception:
        return {}
    return result if isinstance(result, dict) else {}


def is_balanced(text: str) -> bool:
    """True when every brace/bracket opened outside a string is closed.

    Whitespace-only text counts as unbalanced; providers send ``{}`` for a call
    with no arguments.
    """
    depth = 0
    in_string = False
    escaped = False
    seen_open = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            depth += 1
            seen_open = True
        elif ch in "}]":
            depth -= 1
            if depth < 0:
                return False
    return seen_open and depth == 0 and not in_string


@dataclass
class _PendingCall:
    index: int
    id: str = ""
    name: str = ""
    buffer: str = ""
    completed: bool = False


@dataclass
class ToolCallAccumulator:
    """Buffers tool-call fragments per call and emits completed calls.

    Fragments are keyed by the provider's stream index; the call id and name
    usually arrive on the first fragment only.

    Example:
        acc = ToolCallAccumulator()
        acc.add(0, call_id="call_1", name="resize_image", fragment='{"width"')
        acc.add(0, fragment=": 512}")   # returns the completed ToolCall
        calls = acc.finish()            # all calls, in stream order
    """

    _calls: dict[int, _PendingCall] = field(default_factory=dict)

    def add(
        self,
        index: int,
        call_id: str | None = None,
        name: str | None = None,
        fragment: str | None = None,
    ) -> ToolCall | None:
        """Add one fragment. Returns the ToolCall if this fragment completed it."""
        pending = self._calls.get(index)
        if pending is None:
            pending = _PendingCall(index=index)
            self._calls[index] = pending
        if call_id:
            pending.id = call_id
        if name:
            pending.name += name
        if not fragment:
            return None
        if pending.completed:
            if fragment.strip():
                raise ProviderError(
                    f"Received argument text for tool call '{pending.id or index}' after it was complete",
                    call_id=pending.id,
                )
            return None
        pending.buffer += fragment
        if is_balanced(pending.buffer) and self._parses(pending.buffer):
            pending.completed = True
            return self._build(pending)
        return None

    def preview(self, index: int) -> dict[str, Any]:
        """Best-effort parse of a call's arguments so far."""
        pending = self._calls.get(index)
        return parse_streaming_json(pending.buffer) if pending else {}

    def finish(self, index: int | None = None) -> list[ToolCall]:
        """Complete one call (``index``) or all calls on a provider finish signal.

        Raises ProviderError if any argument text is still unbalanced.
        """
        targets = [self._calls[index]] if index is not None and index in self._calls else (
            list(self._calls.values()) if index is None else []
        )
        for pending in targets:
            if pending.completed:
                continue
            if pending.buffer.strip() and not (is_balanced(pending.buffer) and self._parses(pending.buffer)):
                raise ProviderError(
                    f"Stream ended with malformed arguments for tool call '{pending.id or pending.index}'",
                    call_id=pending.id,
                )
            pending.completed = True
        return self.calls()

    def calls(self) -> list[ToolCall]:
        """All completed calls in stream order."""
        return [
            self._build(p)
            for _, p in sorted(self._calls.items())
            if p.completed
        ]

    @property
    def pending(self) -> bool:
        return any(not p.completed for p in self._calls.values())

    def __len__(self) -> int:
        return len(self._calls)

    @staticmethod
    def _parses(text: str) -> bool:
        try:
            return isinstance(json.loads(text), dict)
        except json.JSONDecodeError:
            return False

    @staticmethod
    def _build(pending: _PendingCall) -> ToolCall:
        if not pending.name:
            raise ProviderError(f"Tool call at index {pending.index} has no function name")
        return ToolCall.from_raw(
            id=pending.id or f"call_{pending.index}",
            name=pending.name,
            raw_arguments=pending.buffer or "{}",
        )
