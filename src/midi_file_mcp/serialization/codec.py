"""Encode a Sequence to Standard MIDI File bytes and decode it back via mido.

Usage::

    from midi_file_mcp.serialization.codec import decode, encode

    raw = encode(sequence)
    sequence = decode(raw)

Layout: type-1 file, track 0 is the conductor track (name, tempo map,
time signatures), instrument tracks follow in order.  All timing inside
mido tracks uses delta ticks; the helpers below bridge to absolute ticks.
"""

from __future__ import annotations

from collections import defaultdict
from io import BytesIO

import mido

from midi_file_mcp.errors import FormatError
from midi_file_mcp.model.sequence import (
    ControlChange,
    Note,
    PitchBend,
    Sequence,
    TempoChange,
    TimeSignature,
    Track,
    clamp,
    resolve_channel,
)

_BEND_RANGE = 8192

# Order of messages sharing one tick: release before re-attack
_PRIORITY = {
    "note_off": 0,
    "program_change": 1,
    "control_change": 2,
    "pitchwheel": 3,
    "note_on": 4,
}


# ---------------------------------------------------------------------------
# Tick conversion utilities
# ---------------------------------------------------------------------------

def absolute_to_delta(
    messages: list[tuple[int, mido.Message]],
) -> mido.MidiTrack:
    """Convert (absolute_tick, message) pairs to a track with delta times.

    Pairs are sorted by tick, then by message priority; the sort is stable
    so callers control the order of equal-priority messages.
    """
    ordered = sorted(
        messages,
        key=lambda pair: (pair[0], _PRIORITY.get(pair[1].type, -1)),
    )
    prev = 0
    track = mido.MidiTrack()
    for abs_tick, msg in ordered:
        track.append(msg.copy(time=abs_tick - prev))
        prev = abs_tick
    track.append(mido.MetaMessage("end_of_track", time=0))
    return track


def delta_to_absolute(
    track: mido.MidiTrack,
) -> list[tuple[int, mido.Message]]:
    """Walk a track converting delta times to (absolute_tick, message) pairs."""
    result: list[tuple[int, mido.Message]] = []
    abs_tick = 0
    for msg in track:
        abs_tick += msg.time
        result.append((abs_tick, msg))
    return result


def _to_7bit(value: float) -> int:
    return clamp(round(value * 127), 0, 127)


def _to_bend(value: float) -> int:
    return clamp(round(value * _BEND_RANGE), -_BEND_RANGE, _BEND_RANGE - 1)


# ---------------------------------------------------------------------------
# Encode
# ---------------------------------------------------------------------------

def _conductor_track(sequence: Sequence) -> mido.MidiTrack:
    messages: list[tuple[int, mido.Message]] = [
        (0, mido.MetaMessage("track_name", name=sequence.name)),
    ]
    for tc in sequence.tempo_map:
        messages.append(
            (tc.tick, mido.MetaMessage("set_tempo", tempo=mido.bpm2tempo(tc.bpm)))
        )
    for ts in sequence.time_signatures:
        messages.append((
            ts.tick,
            mido.MetaMessage(
                "time_signature",
                numerator=ts.numerator,
                denominator=ts.denominator,
                clocks_per_click=24,
                notated_32nd_notes_per_beat=8,
            ),
        ))
    return absolute_to_delta(messages)


def _instrument_track(track: Track) -> mido.MidiTrack:
    messages: list[tuple[int, mido.Message]] = [
        (0, mido.MetaMessage("track_name", name=track.name)),
    ]
    if track.channel is not None:
        messages.append((0, mido.MetaMessage("channel_prefix", channel=track.channel)))
    if track.program is not None:
        channel = track.channel if track.channel is not None else 0
        messages.append(
            (0, mido.Message("program_change", channel=channel, program=track.program))
        )

    for note in track.notes:
        channel = resolve_channel(note, track)
        pitch = clamp(note.pitch, 0, 127)
        # note_on with velocity 0 would read back as a note_off
        velocity = max(1, _to_7bit(note.velocity))
        messages.append((
            note.start_tick,
            mido.Message("note_on", channel=channel, note=pitch, velocity=velocity),
        ))
        messages.append((
            note.start_tick + max(1, note.duration_ticks),
            mido.Message("note_off", channel=channel, note=pitch, velocity=0),
        ))

    for cc in track.iter_control_changes():
        messages.append((
            cc.tick,
            mido.Message(
                "control_change",
                channel=resolve_channel(cc, track),
                control=cc.number,
                value=_to_7bit(cc.value),
            ),
        ))

    for pb in track.pitch_bends:
        messages.append((
            pb.tick,
            mido.Message(
                "pitchwheel",
                channel=resolve_channel(pb, track),
                pitch=_to_bend(pb.value),
            ),
        ))

    return absolute_to_delta(messages)


def encode(sequence: Sequence) -> bytes:
    """Serialize *sequence* to SMF bytes via BytesIO."""
    mid = mido.MidiFile(type=1, ticks_per_beat=sequence.ppq)
    mid.tracks.append(_conductor_track(sequence))
    for track in sequence.tracks:
        mid.tracks.append(_instrument_track(track))
    buf = BytesIO()
    mid.save(file=buf)
    return buf.getvalue()


# ---------------------------------------------------------------------------
# Decode
# ---------------------------------------------------------------------------

def _has_channel_messages(track: mido.MidiTrack) -> bool:
    return any(not msg.is_meta and hasattr(msg, "channel") for msg in track)


def _track_channel(messages: list[tuple[int, mido.Message]]) -> int | None:
    """A channel_prefix meta if present, else the first channel message's channel."""
    for _, msg in messages:
        if msg.type == "channel_prefix":
            return msg.channel
    for _, msg in messages:
        if not msg.is_meta and hasattr(msg, "channel"):
            return msg.channel
    return None


def _decode_track(track: mido.MidiTrack) -> Track:
    """Build a Track, pairing note_on/note_off FIFO per (pitch, channel).

    note_on with velocity=0 counts as note_off.  A note still sounding at
    the end of the track is closed at the track's last tick.
    """
    messages = delta_to_absolute(track)
    result = Track(channel=_track_channel(messages))
    pending: dict[tuple[int, int], list[tuple[int, int]]] = defaultdict(list)
    notes: list[tuple[int, int, int, int, int]] = []  # (on, off, pitch, vel, ch)
    last_tick = 0

    for tick, msg in messages:
        last_tick = tick
        if msg.type == "track_name" and not result.name:
            result.name = msg.name
            continue
        if msg.is_meta or not hasattr(msg, "channel"):
            continue

        if msg.type == "note_on" and msg.velocity > 0:
            pending[(msg.note, msg.channel)].append((tick, msg.velocity))
        elif msg.type in ("note_off", "note_on"):
            key = (msg.note, msg.channel)
            if pending[key]:
                on_tick, velocity = pending[key].pop(0)  # FIFO
                notes.append((on_tick, tick, msg.note, velocity, msg.channel))
        elif msg.type == "program_change":
            if result.program is None:
                result.program = msg.program
        elif msg.type == "control_change":
            result.add_cc(ControlChange(
                number=msg.control,
                value=msg.value / 127,
                tick=tick,
                channel=_override(msg.channel, result),
            ))
        elif msg.type == "pitchwheel":
            result.add_pitch_bend(PitchBend(
                value=msg.pitch / _BEND_RANGE,
                tick=tick,
                channel=_override(msg.channel, result),
            ))

    for (pitch, channel), starts in pending.items():
        for on_tick, velocity in starts:
            notes.append((on_tick, last_tick, pitch, velocity, channel))

    notes.sort(key=lambda n: (n[0], n[2]))
    for on_tick, off_tick, pitch, velocity, channel in notes:
        result.add_note(Note(
            pitch=pitch,
            start_tick=on_tick,
            duration_ticks=max(1, off_tick - on_tick),
            velocity=velocity / 127,
            channel=_override(channel, result),
        ))
    return result


def _override(channel: int, track: Track) -> int | None:
    return None if channel == track.channel else channel


def decode(raw: bytes) -> Sequence:
    """Parse SMF bytes into a :class:`Sequence`.

    Raises :class:`FormatError` for anything mido cannot parse.
    """
    try:
        mid = mido.MidiFile(file=BytesIO(raw))
    except (OSError, EOFError, ValueError, KeyError, IndexError, TypeError) as exc:
        raise FormatError(f"Malformed MIDI data: {exc}") from exc

    if not isinstance(mid.ticks_per_beat, int) or mid.ticks_per_beat < 1:
        raise FormatError(f"Unsupported MIDI time division: {mid.ticks_per_beat}")

    sequence = Sequence(ppq=mid.ticks_per_beat)

    # Conductor metas may live in any track (type 0 keeps everything in one)
    for index, track in enumerate(mid.tracks):
        for tick, msg in delta_to_absolute(track):
            if msg.type == "set_tempo":
                if msg.tempo < 1:
                    raise FormatError(f"Invalid tempo at tick {tick}: {msg.tempo}")
                sequence.tempo_map.append(
                    TempoChange(tick=tick, bpm=round(mido.tempo2bpm(msg.tempo), 6))
                )
            elif msg.type == "time_signature":
                sequence.time_signatures.append(
                    TimeSignature(
                        tick=tick,
                        numerator=msg.numerator,
                        denominator=msg.denominator,
                    )
                )
            elif msg.type == "track_name" and index == 0 and not sequence.name:
                sequence.name = msg.name

    tracks = list(mid.tracks)
    if len(tracks) > 1 and not _has_channel_messages(tracks[0]):
        tracks = tracks[1:]
    elif len(tracks) == 1 and not _has_channel_messages(tracks[0]):
        tracks = []
    for track in tracks:
        sequence.tracks.append(_decode_track(track))

    sequence.ensure_maps()
    return sequence
