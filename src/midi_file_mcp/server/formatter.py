"""Compact response formatting for tool outputs."""

from __future__ import annotations

import json
from typing import Any

from midi_file_mcp.errors import MidiMcpError
from midi_file_mcp.model.sequence import Sequence
from midi_file_mcp.model.timing import ticks_to_seconds


def format_result(
    success: bool,
    message: str,
    suggestion: str | None = None,
) -> str:
    """Format a status line.

    Success: ``message`` as-is (``ok``, ``noop``, ``closed <id>``)
    Error:   ``! message`` with optional ``  try: suggestion``
    """
    if success:
        return message
    line = f"! {message}"
    if suggestion:
        line += f"\n  try: {suggestion}"
    return line


def format_payload(payload: Any) -> str:
    """Serialize a success payload as JSON."""
    return json.dumps(payload, ensure_ascii=False)


def format_error(exc: MidiMcpError) -> str:
    """``! <kind>: <message>``"""
    return format_result(False, f"{exc.kind}: {exc}", exc.suggestion)


def sequence_end_tick(sequence: Sequence) -> int:
    end = 0
    for track in sequence.tracks:
        for note in track.notes:
            end = max(end, note.end_tick)
        for cc in track.iter_control_changes():
            end = max(end, cc.tick)
        for pb in track.pitch_bends:
            end = max(end, pb.tick)
    return end


def summarize(sequence: Sequence) -> dict[str, Any]:
    """Whole-sequence statistics used by reports."""
    end_tick = sequence_end_tick(sequence)
    return {
        "name": sequence.name,
        "ppq": sequence.ppq,
        "tracks": len(sequence.tracks),
        "notes": sequence.note_count(),
        "controlChanges": sum(
            len(changes)
            for t in sequence.tracks
            for changes in t.control_changes.values()
        ),
        "pitchBends": sum(len(t.pitch_bends) for t in sequence.tracks),
        "endTicks": end_tick,
        "durationSeconds": round(
            ticks_to_seconds(end_tick, sequence.tempo_map, sequence.ppq), 3
        ),
    }


def format_report_text(
    midi_id: str,
    sequence: Sequence,
    issues: list[dict[str, str]],
) -> str:
    """Plain-text report: stats, maps, track list, validation issues."""
    stats = summarize(sequence)
    minutes = int(stats["durationSeconds"]) // 60
    seconds = stats["durationSeconds"] - minutes * 60

    lines = [
        f"MIDI report: {midi_id}",
        f"Name: {sequence.name or '(untitled)'}",
        f"PPQ: {sequence.ppq}",
        f"Duration: {minutes}:{seconds:05.2f} ({stats['endTicks']} ticks)",
        f"Events: {stats['notes']} notes, {stats['controlChanges']} cc, "
        f"{stats['pitchBends']} bend",
        "Tempo map:",
    ]
    lines.extend(f"  {tc.tick}: {tc.bpm:g} bpm" for tc in sequence.tempo_map)
    lines.append("Time signatures:")
    lines.extend(
        f"  {ts.tick}: {ts.numerator}/{ts.denominator}"
        for ts in sequence.time_signatures
    )
    lines.append(f"Tracks ({len(sequence.tracks)}):")
    for index, track in enumerate(sequence.tracks):
        channel = "-" if track.channel is None else track.channel
        program = "-" if track.program is None else track.program
        lines.append(
            f"  {index}. {track.name or '(unnamed)'} (ch:{channel} prog:{program}) "
            f"| {len(track.notes)} notes"
        )
    if issues:
        lines.append(f"Issues ({len(issues)}):")
        lines.extend(f"  [{i['type']}] {i['message']}" for i in issues)
    else:
        lines.append("Issues: none")
    return "\n".join(lines) + "\n"
