"""Op handlers for tracks and raw events: add/remove/props, insert, remove, copy."""

from __future__ import annotations

from typing import Any

import pretty_midi

from midi_file_mcp.errors import ValidationError
from midi_file_mcp.model import transforms
from midi_file_mcp.model.sequence import Track
from midi_file_mcp.server.formatter import format_payload, format_result
from midi_file_mcp.server.resolvers import (
    OpContext,
    parse_events,
    parse_filter,
    parse_range,
    require_int,
)


# ---------------------------------------------------------------------------
# Tracks
# ---------------------------------------------------------------------------

def _track_summary(index: int, track: Track) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "trackId": index,
        "name": track.name,
        "channel": track.channel,
        "program": track.program,
        "instrumentName": (
            pretty_midi.program_to_instrument_name(track.program)
            if track.program is not None else None
        ),
        "noteCount": len(track.notes),
    }
    if track.notes:
        low = min(n.pitch for n in track.notes)
        high = max(n.pitch for n in track.notes)
        summary["pitchRange"] = [
            pretty_midi.note_number_to_name(low),
            pretty_midi.note_number_to_name(high),
        ]
    return summary


def op_get_tracks(ctx: OpContext) -> str:
    return format_payload([
        _track_summary(index, track) for index, track in enumerate(ctx.sequence.tracks)
    ])


def _optional(label: str, value: Any, high: int) -> int | None:
    return None if value is None else require_int(label, value, 0, high)


def op_add_track(
    ctx: OpContext,
    name: str | None = None,
    channel: int | None = None,
    program: int | None = None,
) -> str:
    track_id = ctx.sequence.add_track(
        name=name or "",
        channel=_optional("channel", channel, 15),
        program=_optional("program", program, 127),
    )
    ctx.touch()
    return format_payload({"trackId": track_id})


def op_remove_track(ctx: OpContext, track_id: int) -> str:
    ctx.sequence.remove_track(require_int("trackId", track_id, low=0))
    ctx.touch()
    return format_result(True, f"removed track {track_id}")


def op_set_track_props(
    ctx: OpContext,
    track_id: int,
    name: str | None = None,
    channel: int | None = None,
    program: int | None = None,
) -> str:
    """Update only the properties that are given."""
    track = ctx.track(track_id)
    channel = _optional("channel", channel, 15)
    program = _optional("program", program, 127)
    if name is not None:
        track.name = name
    if channel is not None:
        track.channel = channel
    if program is not None:
        track.program = program
    ctx.touch()
    return format_result(True, "ok")


# ---------------------------------------------------------------------------
# Insert
# ---------------------------------------------------------------------------

def op_insert_events(
    ctx: OpContext,
    track_id: int,
    events: list[dict[str, Any]] | None = None,
    notes: list[dict[str, Any]] | None = None,
    cc: list[dict[str, Any]] | None = None,
    pitchbends: list[dict[str, Any]] | None = None,
) -> str:
    """Insert a mixed batch; ``notes`` / ``cc`` / ``pitchbends`` imply their type."""
    track = ctx.track(track_id)
    batch = []
    if events is not None:
        batch.extend(parse_events(events))
    if notes is not None:
        batch.extend(parse_events(notes, "note"))
    if cc is not None:
        batch.extend(parse_events(cc, "cc"))
    if pitchbends is not None:
        batch.extend(parse_events(pitchbends, "pitchbend"))
    if not batch:
        raise ValidationError(
            "insert_events requires at least one of: events, notes, cc, pitchbends"
        )
    for event in batch:
        track.add_event(event)
    ctx.touch()
    return format_result(True, "ok")


def op_insert_cc(ctx: OpContext, track_id: int, events: list[dict[str, Any]]) -> str:
    track = ctx.track(track_id)
    for event in parse_events(events, "cc"):
        track.add_cc(event)
    ctx.touch()
    return format_result(True, "ok")


def op_insert_pitchbend(ctx: OpContext, track_id: int, events: list[dict[str, Any]]) -> str:
    track = ctx.track(track_id)
    for event in parse_events(events, "pitchbend"):
        track.add_pitch_bend(event)
    ctx.touch()
    return format_result(True, "ok")


# ---------------------------------------------------------------------------
# Remove / copy
# ---------------------------------------------------------------------------

def op_remove_events(
    ctx: OpContext,
    track_id: int,
    range: dict[str, Any] | None = None,
    filter: dict[str, Any] | None = None,
) -> str:
    track = ctx.track(track_id)
    removed = transforms.remove_events(track, parse_range(range), parse_filter(filter))
    ctx.touch()
    return format_result(True, f"removed {removed}")


def op_remove_cc(
    ctx: OpContext,
    track_id: int,
    range: dict[str, Any] | None = None,
    filter: dict[str, Any] | None = None,
) -> str:
    track = ctx.track(track_id)
    removed = transforms.remove_control_changes(
        track, parse_range(range), parse_filter(filter)
    )
    ctx.touch()
    return format_result(True, f"removed {removed}")


def op_remove_pitchbend(
    ctx: OpContext,
    track_id: int,
    range: dict[str, Any] | None = None,
) -> str:
    track = ctx.track(track_id)
    removed = transforms.remove_pitch_bends(track, parse_range(range))
    ctx.touch()
    return format_result(True, f"removed {removed}")


def op_copy_events(
    ctx: OpContext,
    src_track_id: int,
    dst_track_id: int,
    delta_ticks: int = 0,
    range: dict[str, Any] | None = None,
    filter: dict[str, Any] | None = None,
) -> str:
    source = ctx.track(src_track_id)
    destination = ctx.track(dst_track_id)
    copied = transforms.copy_events(
        source,
        destination,
        delta_ticks=require_int("deltaTicks", delta_ticks),
        tick_range=parse_range(range),
        event_filter=parse_filter(filter),
    )
    ctx.touch()
    return format_result(True, f"copied {copied}")
