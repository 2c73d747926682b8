"""Note and controller transforms over one track.

Every transform takes the same ``tick_range`` / ``event_filter`` selection
as the query engine and never touches events outside it.  Parameters are
validated before any event is changed.  Removals replace the track's
collections with filtered copies instead of splicing them in place.

Each function returns the number of events it changed or removed.
"""

from __future__ import annotations

import logging
import random
from collections import defaultdict
from dataclasses import replace

from midi_file_mcp.errors import ValidationError
from midi_file_mcp.lib.scales import build_scale
from midi_file_mcp.model.query import (
    EventFilter,
    TickRange,
    collect_events,
    select_notes,
    selects,
)
from midi_file_mcp.model.sequence import (
    Track,
    clamp_pitch,
    clamp_unit,
    resolve_channel,
)
from midi_file_mcp.model.timing import Timeline, grid_to_ticks, round_half_up

logger = logging.getLogger(__name__)

SCALE_STRATEGIES = ("nearest", "up", "down")
OVERLAP_MODES = ("trim", "remove")


def _require_unit(name: str, value: float) -> float:
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be within 0-1 (got {value})")
    return float(value)


# ---------------------------------------------------------------------------
# Timing
# ---------------------------------------------------------------------------

def quantize(
    track: Track,
    ppq: int,
    grid: str | int,
    strength: float = 1.0,
    swing: float = 0.0,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    """Pull note starts toward *grid*; odd grid slots are pushed late by *swing*."""
    grid_ticks = grid_to_ticks(grid, ppq)
    strength = _require_unit("strength", strength)
    swing = _require_unit("swing", swing)

    notes = select_notes(track, tick_range, event_filter)
    for note in notes:
        grid_index = round_half_up(note.start_tick / grid_ticks)
        target = grid_index * grid_ticks
        if swing and grid_index % 2 == 1:
            target += round_half_up(grid_ticks / 2 * swing)
        moved = note.start_tick + (target - note.start_tick) * strength
        note.start_tick = max(0, round_half_up(moved))
    _resort(track)
    logger.debug("quantize grid=%d strength=%.2f: %d notes", grid_ticks, strength, len(notes))
    return len(notes)


def humanize(
    track: Track,
    timeline: Timeline,
    timing_ms: float = 0.0,
    velocity: float | None = None,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
    rng: random.Random | None = None,
) -> int:
    """Jitter note starts by up to ±*timing_ms* and velocities by ±*velocity*.

    The timing offset is applied in seconds, so its size in ticks follows
    the tempo map.
    """
    if timing_ms < 0:
        raise ValidationError(f"timingMs must be >= 0 (got {timing_ms})")
    if velocity is not None:
        velocity = _require_unit("velocity", velocity)
    rng = rng or random.Random()
    timing_seconds = timing_ms / 1000.0

    notes = select_notes(track, tick_range, event_filter)
    for note in notes:
        if timing_seconds:
            offset = rng.uniform(-timing_seconds, timing_seconds)
            base = timeline.ticks_to_seconds(note.start_tick)
            note.start_tick = max(0, timeline.seconds_to_ticks(base + offset))
        if velocity is not None:
            note.velocity = clamp_unit(note.velocity + rng.uniform(-velocity, velocity))
    _resort(track)
    return len(notes)


def legato(
    track: Track,
    gap_ticks: int = 0,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    """Stretch each selected note up to the next selected note's start, minus *gap_ticks*.

    Notes are chained in start order regardless of pitch; the last note
    keeps its duration.
    """
    if gap_ticks < 0:
        raise ValidationError(f"gapTicks must be >= 0 (got {gap_ticks})")
    notes = sorted(select_notes(track, tick_range, event_filter), key=lambda n: n.start_tick)
    for current, following in zip(notes, notes[1:]):
        current.duration_ticks = max(1, following.start_tick - current.start_tick - gap_ticks)
    return max(0, len(notes) - 1)


# ---------------------------------------------------------------------------
# Pitch
# ---------------------------------------------------------------------------

def transpose(
    track: Track,
    semitones: int,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    if isinstance(semitones, bool) or int(semitones) != semitones:
        raise ValidationError(f"semitones must be an integer (got {semitones!r})")
    notes = select_notes(track, tick_range, event_filter)
    for note in notes:
        note.pitch = clamp_pitch(note.pitch + int(semitones))
    return len(notes)


def constrain_pitch(pitch: int, allowed: frozenset[int], strategy: str) -> int:
    """Move *pitch* to the closest in-scale pitch within 0-127.

    ``up`` / ``down`` search one direction only, falling back to the other
    direction at the edge of the MIDI range.  ``nearest`` takes the closer
    candidate; a tie goes down.
    """
    if pitch % 12 in allowed:
        return pitch

    def search(step: int) -> int | None:
        for i in range(1, 12):
            candidate = pitch + step * i
            if not 0 <= candidate <= 127:
                return None
            if candidate % 12 in allowed:
                return candidate
        return None

    up = search(1)
    down = search(-1)
    if strategy == "up":
        choice = up if up is not None else down
    elif strategy == "down":
        choice = down if down is not None else up
    elif up is None or down is None:
        choice = up if down is None else down
    else:
        choice = up if up - pitch < pitch - down else down
    return pitch if choice is None else choice


def constrain_to_scale(
    track: Track,
    key: str,
    scale: str,
    strategy: str = "nearest",
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    """Snap out-of-scale notes to *key* / *scale*; returns the count moved."""
    allowed = build_scale(key, scale)
    if strategy not in SCALE_STRATEGIES:
        raise ValidationError(
            f"strategy must be one of {', '.join(SCALE_STRATEGIES)} (got {strategy!r})"
        )
    moved = 0
    for note in select_notes(track, tick_range, event_filter):
        new_pitch = clamp_pitch(constrain_pitch(note.pitch, allowed, strategy))
        if new_pitch != note.pitch:
            note.pitch = new_pitch
            moved += 1
    return moved


# ---------------------------------------------------------------------------
# Clean-up
# ---------------------------------------------------------------------------

def fix_overlaps(
    track: Track,
    mode: str = "trim",
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    """Resolve overlapping notes of the same pitch and channel.

    One left-to-right pass per (pitch, channel) group compares each note
    with the next one.  ``trim`` shortens the earlier note to end at the
    later start; ``remove`` drops the later note.  Chains deeper than a
    pair are not iterated to a fixed point.
    """
    if mode not in OVERLAP_MODES:
        raise ValidationError(f"mode must be trim or remove (got {mode!r})")

    groups: dict[tuple[int, int], list] = defaultdict(list)
    for note in select_notes(track, tick_range, event_filter):
        groups[(note.pitch, resolve_channel(note, track))].append(note)

    fixed = 0
    removed: set[int] = set()
    for group in groups.values():
        group.sort(key=lambda n: n.start_tick)
        for current, following in zip(group, group[1:]):
            if current.end_tick <= following.start_tick:
                continue
            fixed += 1
            if mode == "trim":
                current.duration_ticks = max(1, following.start_tick - current.start_tick)
            else:
                removed.add(id(following))

    if removed:
        track.notes = [n for n in track.notes if id(n) not in removed]
    return fixed


def trim_notes(
    track: Track,
    min_duration: int = 1,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    """Remove selected notes shorter than *min_duration* ticks."""
    if min_duration < 1:
        raise ValidationError(f"minDuration must be >= 1 (got {min_duration})")
    kept = [
        n for n in track.notes
        if not selects(n, track, tick_range, event_filter)
        or n.duration_ticks >= min_duration
    ]
    removed = len(track.notes) - len(kept)
    track.notes = kept
    return removed


# ---------------------------------------------------------------------------
# Removal / copy
# ---------------------------------------------------------------------------

def remove_notes(
    track: Track,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    kept = [n for n in track.notes if not selects(n, track, tick_range, event_filter)]
    removed = len(track.notes) - len(kept)
    track.notes = kept
    return removed


def remove_control_changes(
    track: Track,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    remaining: dict[int, list] = {}
    removed = 0
    for number, changes in track.control_changes.items():
        kept = [c for c in changes if not selects(c, track, tick_range, event_filter)]
        removed += len(changes) - len(kept)
        if kept:
            remaining[number] = kept
    track.control_changes = remaining
    return removed


def remove_pitch_bends(
    track: Track,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    kept = [p for p in track.pitch_bends if not selects(p, track, tick_range, event_filter)]
    removed = len(track.pitch_bends) - len(kept)
    track.pitch_bends = kept
    return removed


def remove_events(
    track: Track,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    return (
        remove_notes(track, tick_range, event_filter)
        + remove_control_changes(track, tick_range, event_filter)
        + remove_pitch_bends(track, tick_range, event_filter)
    )


def copy_events(
    source: Track,
    destination: Track,
    delta_ticks: int = 0,
    tick_range: TickRange | None = None,
    event_filter: EventFilter | None = None,
) -> int:
    """Copy selected events of *source* into *destination*, shifted by *delta_ticks*.

    Shifted ticks are clamped at 0.  Copies keep their channel overrides.
    """
    events = collect_events(source, tick_range, event_filter)
    for event in events:
        if event.type == "note":
            shifted = replace(event, start_tick=max(0, event.start_tick + delta_ticks))
        else:
            shifted = replace(event, tick=max(0, event.tick + delta_ticks))
        destination.add_event(shifted)
    return len(events)


def _resort(track: Track) -> None:
    track.notes.sort(key=lambda n: n.start_tick)
