"""Centralized argument parsing for tool handlers.

Handlers receive plain JSON-like arguments; the helpers here turn them
into model types (ranges, filters, BBT positions, event batches) and
raise :class:`ValidationError` on anything out of range.  Also provides
the ``OpContext`` shared by every handler that works on one session.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from midi_file_mcp.errors import ValidationError
from midi_file_mcp.model.query import TickRange, EventFilter
from midi_file_mcp.model.sequence import EVENT_TYPES, Event, Sequence, Track
from midi_file_mcp.model.timing import Bbt, Timeline
from midi_file_mcp.serialization.payload import event_from_dict, read_int
from midi_file_mcp.server.repository import Session, SessionRepository


@dataclass
class OpContext:
    """Shared state passed to every session handler."""

    repo: SessionRepository
    session: Session
    timeline: Timeline = field(init=False)

    def __post_init__(self) -> None:
        self.timeline = Timeline(self.session.sequence)

    @property
    def sequence(self) -> Sequence:
        return self.session.sequence

    def track(self, track_id: Any) -> Track:
        return self.sequence.get_track(require_int("trackId", track_id, low=0))

    def touch(self) -> None:
        self.repo.mark_dirty(self.session)


def require_int(
    label: str,
    value: Any,
    low: int | None = None,
    high: int | None = None,
) -> int:
    return read_int({label: value}, label, low, high)


def require_path(label: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{label} must be a non-empty path")
    return value


def parse_range(data: dict[str, Any] | None) -> TickRange | None:
    """``{startTicks?, endTicks?}`` -> TickRange; ``None`` passes through."""
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValidationError("range must be an object")
    start = read_int(data, "startTicks", 0, default=None)
    end = read_int(data, "endTicks", 0, default=None)
    if start is not None and end is not None and end < start:
        raise ValidationError(f"endTicks must be >= startTicks (got {start}-{end})")
    return TickRange(start_ticks=start, end_ticks=end)


def _int_list(data: dict[str, Any], key: str, low: int, high: int) -> list[int] | None:
    values = data.get(key)
    if values is None:
        return None
    if not isinstance(values, list):
        raise ValidationError(f"{key} must be a list")
    return [require_int(key, v, low, high) for v in values]


def parse_filter(data: dict[str, Any] | None) -> EventFilter | None:
    """``{types?, noteNumbers?, ccNumbers?, channels?}`` -> EventFilter."""
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValidationError("filter must be an object")
    types = data.get("types")
    if types is not None:
        if not isinstance(types, list):
            raise ValidationError("types must be a list")
        unknown = [t for t in types if t not in EVENT_TYPES]
        if unknown:
            raise ValidationError(
                f"Unknown event type: {unknown[0]!r} (expected note, cc or pitchbend)"
            )
    return EventFilter(
        types=types,
        note_numbers=_int_list(data, "noteNumbers", 0, 127),
        cc_numbers=_int_list(data, "ccNumbers", 0, 127),
        channels=_int_list(data, "channels", 0, 15),
    )


def parse_bbt(data: dict[str, Any] | None) -> Bbt | None:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValidationError("bbt must be an object")
    return Bbt(
        bar=read_int(data, "bar", 1),
        beat=read_int(data, "beat", 1),
        tick=read_int(data, "tick", 0, default=0),
    )


def parse_events(items: Any, event_type: str | None = None) -> list[Event]:
    """Parse a whole batch up front, so a bad entry rejects the call unchanged."""
    if not isinstance(items, list):
        raise ValidationError("events must be a list")
    events: list[Event] = []
    for index, item in enumerate(items):
        try:
            event = event_from_dict(item, event_type)
        except ValidationError as exc:
            raise ValidationError(
                f"events[{index}]: {exc}", suggestion=exc.suggestion
            ) from exc
        if event_type is not None and event.type != event_type:
            raise ValidationError(f"events[{index}]: expected a {event_type} event")
        events.append(event)
    return events
