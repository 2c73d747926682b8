"""JSON-shaped payloads: events, timeline entries and composition descriptions.

Keys follow the tool contract (camelCase): a note is
``{"type": "note", "midi", "ticks", "durationTicks", "velocity"}``, a
control change ``{"type": "cc", "number", "value", "ticks"}``, a pitch
bend ``{"type": "pitchbend", "value", "ticks"}``; any of them may carry
a ``channel`` override.
"""

from __future__ import annotations

from typing import Any

from midi_file_mcp.errors import FormatError, ValidationError
from midi_file_mcp.model.sequence import (
    DEFAULT_PPQ,
    MAX_PPQ,
    ControlChange,
    Event,
    Note,
    PitchBend,
    Sequence,
    TempoChange,
    TimeSignature,
    validate_tempo,
    validate_time_signature,
)

_MISSING = object()


# ---------------------------------------------------------------------------
# Field readers
# ---------------------------------------------------------------------------

def read_int(
    data: dict[str, Any],
    key: str,
    low: int | None = None,
    high: int | None = None,
    default: Any = _MISSING,
) -> Any:
    """Read an integer field, enforcing the inclusive bounds *low* / *high*."""
    value = data.get(key)
    if value is None:
        if default is _MISSING:
            raise ValidationError(f"{key} is required")
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value != int(value):
        raise ValidationError(f"{key} must be an integer (got {value!r})")
    value = int(value)
    if low is not None and value < low:
        raise ValidationError(f"{key} must be >= {low} (got {value})")
    if high is not None and value > high:
        raise ValidationError(f"{key} must be <= {high} (got {value})")
    return value


def read_number(
    data: dict[str, Any],
    key: str,
    low: float | None = None,
    high: float | None = None,
    default: Any = _MISSING,
) -> Any:
    value = data.get(key)
    if value is None:
        if default is _MISSING:
            raise ValidationError(f"{key} is required")
        return default
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{key} must be a number (got {value!r})")
    if low is not None and value < low:
        raise ValidationError(f"{key} must be >= {low} (got {value})")
    if high is not None and value > high:
        raise ValidationError(f"{key} must be <= {high} (got {value})")
    return float(value)


def _first_present(data: dict[str, Any], *keys: str) -> str:
    for key in keys:
        if data.get(key) is not None:
            return key
    return keys[0]


def _require_mapping(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError(f"{what} must be an object")
    return value


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

def event_from_dict(data: dict[str, Any], event_type: str | None = None) -> Event:
    """Parse one event payload.  *event_type* fills in a missing ``type``."""
    data = _require_mapping(data, "event")
    kind = data.get("type", event_type)
    channel = read_int(data, "channel", 0, 15, default=None)

    if kind == "note":
        return Note(
            pitch=read_int(data, _first_present(data, "midi", "pitch", "noteNumber"), 0, 127),
            start_tick=read_int(data, _first_present(data, "ticks", "startTick"), 0),
            duration_ticks=read_int(data, _first_present(data, "durationTicks", "duration"), 1),
            velocity=read_number(data, "velocity", 0.0, 1.0, default=0.8),
            channel=channel,
        )
    if kind == "cc":
        value = read_number(data, "value", 0.0, 127.0)
        if value > 1:
            # 7-bit controller value
            value = min(1.0, value / 127)
        return ControlChange(
            number=read_int(data, "number", 0, 127),
            value=value,
            tick=read_int(data, "ticks", 0),
            channel=channel,
        )
    if kind == "pitchbend":
        return PitchBend(
            value=read_number(data, "value", -1.0, 1.0),
            tick=read_int(data, "ticks", 0),
            channel=channel,
        )
    raise ValidationError(f"Unknown event type: {kind!r} (expected note, cc or pitchbend)")


def event_to_dict(event: Event) -> dict[str, Any]:
    if event.type == "note":
        data: dict[str, Any] = {
            "type": "note",
            "midi": event.pitch,
            "ticks": event.start_tick,
            "durationTicks": event.duration_ticks,
            "velocity": event.velocity,
        }
    elif event.type == "cc":
        data = {"type": "cc", "number": event.number, "value": event.value, "ticks": event.tick}
    else:
        data = {"type": "pitchbend", "value": event.value, "ticks": event.tick}
    if event.channel is not None:
        data["channel"] = event.channel
    return data


# ---------------------------------------------------------------------------
# Timeline entries
# ---------------------------------------------------------------------------

def tempo_from_dict(data: dict[str, Any]) -> TempoChange:
    data = _require_mapping(data, "tempo change")
    tc = TempoChange(tick=read_int(data, "ticks", 0), bpm=read_number(data, "bpm"))
    validate_tempo(tc)
    return tc


def tempo_to_dict(tc: TempoChange) -> dict[str, Any]:
    return {"ticks": tc.tick, "bpm": tc.bpm}


def time_signature_from_dict(data: dict[str, Any]) -> TimeSignature:
    """Accept ``{ticks, numerator, denominator}`` or ``{ticks, timeSignature: [n, d]}``."""
    data = _require_mapping(data, "time signature")
    pair = data.get("timeSignature")
    if pair is not None:
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValidationError("timeSignature must be a [numerator, denominator] pair")
        data = {"ticks": data.get("ticks"), "numerator": pair[0], "denominator": pair[1]}
    ts = TimeSignature(
        tick=read_int(data, "ticks", 0),
        numerator=read_int(data, "numerator", 1),
        denominator=read_int(data, "denominator", 1),
    )
    validate_time_signature(ts)
    return ts


def time_signature_to_dict(ts: TimeSignature) -> dict[str, Any]:
    return {
        "ticks": ts.tick,
        "numerator": ts.numerator,
        "denominator": ts.denominator,
        "timeSignature": [ts.numerator, ts.denominator],
    }


def timeline_to_dict(sequence: Sequence) -> dict[str, Any]:
    return {
        "ppq": sequence.ppq,
        "tempos": [tempo_to_dict(tc) for tc in sequence.tempo_map],
        "timeSignatures": [time_signature_to_dict(ts) for ts in sequence.time_signatures],
    }


# ---------------------------------------------------------------------------
# Composition description
# ---------------------------------------------------------------------------

def sequence_from_composition(data: Any) -> Sequence:
    """Build a Sequence from a composition description.

    ``{ppq?, tempos?, timeSignatures?, tracks?: [{name?, channel?,
    programNumber?, events?}]}``; missing maps default to 120 bpm, 4/4.
    """
    if not isinstance(data, dict):
        raise FormatError("composition must be a JSON object")

    sequence = Sequence.create(ppq=read_int(data, "ppq", 1, MAX_PPQ, default=DEFAULT_PPQ))
    sequence.name = str(data.get("name") or "")
    tempos = data.get("tempos") or []
    if tempos:
        sequence.set_tempo_map([tempo_from_dict(t) for t in tempos])
    sigs = data.get("timeSignatures") or []
    if sigs:
        sequence.set_time_signatures([time_signature_from_dict(ts) for ts in sigs])

    for index, track_def in enumerate(data.get("tracks") or []):
        track_def = _require_mapping(track_def, f"tracks[{index}]")
        program_key = _first_present(track_def, "programNumber", "instrument", "program")
        track_id = sequence.add_track(
            name=str(track_def.get("name") or ""),
            channel=read_int(track_def, "channel", 0, 15, default=None),
            program=read_int(track_def, program_key, 0, 127, default=None),
        )
        track = sequence.tracks[track_id]
        for ev in track_def.get("events") or []:
            track.add_event(event_from_dict(ev))

    return sequence
