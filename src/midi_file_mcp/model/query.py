"""Range / filter selection, ordering and paging over a track's events.

A selection is the intersection of a tick range and an event filter.
``None`` for any part means 'any'.
"""

from __future__ import annotations

from dataclasses import dataclass

from midi_file_mcp.errors import ValidationError
from midi_file_mcp.model.sequence import Event, Note, Sequence, Track, resolve_channel

DEFAULT_PAGE_SIZE = 512
MAX_PAGE_SIZE = 5000


@dataclass
class TickRange:
    """Half-open tick window: ``start_ticks`` inclusive, ``end_ticks`` exclusive."""

    start_ticks: int | None = None
    end_ticks: int | None = None

    def contains(self, tick: int) -> bool:
        if self.start_ticks is not None and tick < self.start_ticks:
            return False
        return not (self.end_ticks is not None and tick >= self.end_ticks)


@dataclass
class EventFilter:
    """Intersecting constraints on event type, note/controller number and channel.

    ``note_numbers`` only constrains notes and ``cc_numbers`` only constrains
    control changes; use ``types`` to exclude the other kinds.
    """

    types: list[str] | None = None
    note_numbers: list[int] | None = None
    cc_numbers: list[int] | None = None
    channels: list[int] | None = None

    def matches(self, event: Event, channel: int) -> bool:
        if self.types is not None and event.type not in self.types:
            return False
        if event.type == "note" and self.note_numbers is not None:
            if event.pitch not in self.note_numbers:
                return False
        if event.type == "cc" and self.cc_numbers is not None:
            if event.number not in self.cc_numbers:
                return False
        if self.channels is not None and channel not in self.channels:
            return False
        return True


def selects(
    event: Event,
    track: Track,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> bool:
    """True when *event* lies in *tick_range* and passes *event_filter*."""
    if tick_range is not None and not tick_range.contains(event.tick):
        return False
    if event_filter is None:
        return True
    return event_filter.matches(event, resolve_channel(event, track))


# ---------------------------------------------------------------------------
# Collection
# ---------------------------------------------------------------------------

def select_notes(
    track: Track,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> list[Note]:
    """Notes of *track* passing the selection, in stored order."""
    return [n for n in track.notes if selects(n, track, tick_range, event_filter)]


def collect_events(
    track: Track,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> list[Event]:
    """All selected events of *track*, ascending by tick.

    Sorting is stable: at equal ticks notes come before control changes,
    which come before pitch bends.
    """
    events: list[Event] = []
    events.extend(select_notes(track, tick_range, event_filter))
    events.extend(
        cc for cc in track.iter_control_changes()
        if selects(cc, track, tick_range, event_filter)
    )
    events.extend(
        pb for pb in track.pitch_bends
        if selects(pb, track, tick_range, event_filter)
    )
    events.sort(key=lambda e: e.tick)
    return events


@dataclass
class EventPage:
    total: int
    next_offset: int | None
    events: list[Event]


def paginate(
    events: list[Event],
    offset: int | None = None,
    limit: int | None = None,
) -> EventPage:
    """Slice *events* into one page; ``total`` counts events before paging."""
    start = 0 if offset is None else offset
    page_size = DEFAULT_PAGE_SIZE if limit is None else limit
    if start < 0:
        raise ValidationError(f"offset must be >= 0 (got {start})")
    if not 1 <= page_size <= MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be 1-{MAX_PAGE_SIZE} (got {page_size})")
    end = start + page_size
    return EventPage(
        total=len(events),
        next_offset=end if end < len(events) else None,
        events=events[start:end],
    )


# ---------------------------------------------------------------------------
# Whole-sequence summaries
# ---------------------------------------------------------------------------

def count_notes(sequence: Sequence, tick_range: TickRange | None = None) -> int:
    return sum(len(select_notes(t, tick_range)) for t in sequence.tracks)


def diff_sequences(
    a: Sequence,
    b: Sequence,
    tick_range: TickRange | None = None,
) -> dict[str, int]:
    """Compare cardinalities only: track counts and in-range note counts."""
    return {
        "tracksA": len(a.tracks),
        "tracksB": len(b.tracks),
        "notesA": count_notes(a, tick_range),
        "notesB": count_notes(b, tick_range),
    }


def collect_issues(sequence: Sequence) -> list[dict[str, str]]:
    """Report out-of-range values that the codec could not represent."""
    issues: list[dict[str, str]] = []

    def issue(kind: str, message: str) -> None:
        issues.append({"type": kind, "message": message})

    for track in sequence.tracks:
        for note in track.notes:
            if note.start_tick < 0:
                issue("note", "negative ticks")
            if note.duration_ticks <= 0:
                issue("note", "non-positive duration")
            if not 0 <= note.pitch <= 127:
                issue("note", "midi out of range")
            if not 0.0 <= note.velocity <= 1.0:
                issue("note", "velocity out of range")
        for number, changes in track.control_changes.items():
            if not 0 <= number <= 127:
                issue("cc", "cc out of range")
            for cc in changes:
                if cc.tick < 0:
                    issue("cc", "negative ticks")
                if not 0.0 <= cc.value <= 1.0:
                    issue("cc", "cc value out of range")
        for pb in track.pitch_bends:
            if pb.tick < 0:
                issue("pitchbend", "negative ticks")
            if not -1.0 <= pb.value <= 1.0:
                issue("pitchbend", "pitchbend out of range")
    return issues
