"""In-memory model for an editable MIDI sequence.

All timing is stored as absolute ticks. Conversion to/from seconds and
bar/beat/tick positions is handled by the timing module.

Events form a tagged union via a ``type`` string discriminant on each
dataclass (``"note"``, ``"cc"``, ``"pitchbend"``).  Consumers dispatch on
``event.type``; every event exposes ``tick`` and an optional ``channel``
override.
"""

from __future__ import annotations

from bisect import insort
from dataclasses import dataclass, field
from typing import Union

from midi_file_mcp.errors import NotFoundError, ValidationError

DEFAULT_PPQ = 480
DEFAULT_BPM = 120.0
DEFAULT_TIME_SIGNATURE = (4, 4)

EVENT_TYPES = ("note", "cc", "pitchbend")

# Standard MIDI File limits: tempo is a 24-bit microseconds-per-quarter
# value, the numerator one byte, the time division a positive 15-bit word.
MAX_TEMPO_US = 0xFFFFFF
MIN_BPM = 60_000_000 / MAX_TEMPO_US
MAX_BPM = 60_000_000.0
MAX_NUMERATOR = 255
MAX_DENOMINATOR = 2 ** 255
MAX_PPQ = 0x7FFF


# ---------------------------------------------------------------------------
# Value clamping
# ---------------------------------------------------------------------------

def clamp(value, low, high):
    return max(low, min(high, value))


def clamp_pitch(pitch: int) -> int:
    return clamp(int(pitch), 0, 127)


def clamp_unit(value: float) -> float:
    """Clamp velocity / controller values into [0, 1]."""
    return clamp(float(value), 0.0, 1.0)


def clamp_bend(value: float) -> float:
    return clamp(float(value), -1.0, 1.0)


# ---------------------------------------------------------------------------
# Events (tagged union via ``type`` discriminant)
# ---------------------------------------------------------------------------

@dataclass
class Note:
    type: str = field(default="note", init=False)
    pitch: int = 60  # 0-127
    start_tick: int = 0
    duration_ticks: int = 1  # >= 1
    velocity: float = 0.8  # 0.0-1.0
    channel: int | None = None  # override of the track channel

    @property
    def tick(self) -> int:
        return self.start_tick

    @property
    def end_tick(self) -> int:
        return self.start_tick + self.duration_ticks


@dataclass
class ControlChange:
    type: str = field(default="cc", init=False)
    number: int = 0  # controller 0-127
    value: float = 0.0  # 0.0-1.0
    tick: int = 0
    channel: int | None = None


@dataclass
class PitchBend:
    type: str = field(default="pitchbend", init=False)
    value: float = 0.0  # -1.0-1.0
    tick: int = 0
    channel: int | None = None


Event = Union[Note, ControlChange, PitchBend]


# ---------------------------------------------------------------------------
# Timeline entries
# ---------------------------------------------------------------------------

@dataclass
class TempoChange:
    tick: int
    bpm: float


@dataclass
class TimeSignature:
    tick: int
    numerator: int
    denominator: int  # actual value (4, not power-of-2 exponent)


# ---------------------------------------------------------------------------
# Track / Sequence
# ---------------------------------------------------------------------------

@dataclass
class Track:
    name: str = ""
    channel: int | None = None  # default channel (0-15)
    program: int | None = None  # GM program (0-127)
    notes: list[Note] = field(default_factory=list)
    control_changes: dict[int, list[ControlChange]] = field(default_factory=dict)
    pitch_bends: list[PitchBend] = field(default_factory=list)

    def add_note(self, note: Note) -> Note:
        insort(self.notes, note, key=lambda n: n.start_tick)
        return note

    def add_cc(self, cc: ControlChange) -> ControlChange:
        insort(
            self.control_changes.setdefault(cc.number, []),
            cc,
            key=lambda c: c.tick,
        )
        return cc

    def add_pitch_bend(self, pb: PitchBend) -> PitchBend:
        insort(self.pitch_bends, pb, key=lambda p: p.tick)
        return pb

    def add_event(self, event: Event) -> Event:
        if event.type == "note":
            return self.add_note(event)
        if event.type == "cc":
            return self.add_cc(event)
        return self.add_pitch_bend(event)

    def iter_control_changes(self):
        """Yield every control change, grouped by ascending controller number."""
        for number in sorted(self.control_changes):
            yield from self.control_changes[number]


def resolve_channel(event: Event, track: Track) -> int:
    """Effective channel: event override, else track channel, else 0."""
    if event.channel is not None:
        return event.channel
    if track.channel is not None:
        return track.channel
    return 0


def _is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


def validate_ppq(ppq: int) -> None:
    if not isinstance(ppq, int) or isinstance(ppq, bool) or not 1 <= ppq <= MAX_PPQ:
        raise ValidationError(f"ppq must be an integer 1-{MAX_PPQ} (got {ppq!r})")


def validate_tempo(tc: TempoChange) -> None:
    if tc.tick < 0:
        raise ValidationError(f"tempo tick must be >= 0 (got {tc.tick})")
    if not MIN_BPM <= tc.bpm <= MAX_BPM:
        raise ValidationError(
            f"bpm must be between {MIN_BPM:.4f} and {MAX_BPM:g} (got {tc.bpm})"
        )


def validate_time_signature(ts: TimeSignature) -> None:
    if ts.tick < 0:
        raise ValidationError(f"time signature tick must be >= 0 (got {ts.tick})")
    if not 1 <= ts.numerator <= MAX_NUMERATOR:
        raise ValidationError(
            f"numerator must be 1-{MAX_NUMERATOR} (got {ts.numerator})"
        )
    if not _is_power_of_two(ts.denominator) or ts.denominator > MAX_DENOMINATOR:
        raise ValidationError(
            f"denominator must be a power of two (got {ts.denominator})"
        )


def _unique_by_tick(entries: list) -> list:
    """Sort by tick keeping the last entry given for any repeated tick."""
    by_tick = {}
    for entry in entries:
        by_tick[entry.tick] = entry
    return [by_tick[t] for t in sorted(by_tick)]


@dataclass
class Sequence:
    ppq: int = DEFAULT_PPQ  # ticks per quarter note, fixed for the lifetime
    name: str = ""
    tempo_map: list[TempoChange] = field(default_factory=list)
    time_signatures: list[TimeSignature] = field(default_factory=list)
    tracks: list[Track] = field(default_factory=list)

    # --- Factory ---

    @classmethod
    def create(
        cls,
        ppq: int = DEFAULT_PPQ,
        bpm: float = DEFAULT_BPM,
        time_sig: tuple[int, int] = DEFAULT_TIME_SIGNATURE,
        name: str = "",
    ) -> Sequence:
        validate_ppq(ppq)
        tempo = TempoChange(tick=0, bpm=bpm)
        sig = TimeSignature(tick=0, numerator=time_sig[0], denominator=time_sig[1])
        validate_tempo(tempo)
        validate_time_signature(sig)
        return cls(ppq=ppq, name=name, tempo_map=[tempo], time_signatures=[sig])

    # --- Header maintenance ---

    def ensure_maps(self) -> None:
        """Keep both maps non-empty, sorted ascending and unique by tick."""
        if self.tempo_map:
            self.tempo_map = _unique_by_tick(self.tempo_map)
        else:
            self.tempo_map = [TempoChange(tick=0, bpm=DEFAULT_BPM)]
        if self.time_signatures:
            self.time_signatures = _unique_by_tick(self.time_signatures)
        else:
            num, den = DEFAULT_TIME_SIGNATURE
            self.time_signatures = [
                TimeSignature(tick=0, numerator=num, denominator=den)
            ]

    def set_tempo_map(self, changes: list[TempoChange]) -> None:
        for tc in changes:
            validate_tempo(tc)
        self.tempo_map = list(changes)
        self.ensure_maps()

    def set_time_signatures(self, changes: list[TimeSignature]) -> None:
        for ts in changes:
            validate_time_signature(ts)
        self.time_signatures = list(changes)
        self.ensure_maps()

    # --- Track CRUD ---

    def get_track(self, track_id: int) -> Track:
        if not isinstance(track_id, int) or not 0 <= track_id < len(self.tracks):
            hint = f"a trackId from 0 to {len(self.tracks) - 1}" if self.tracks else "add_track"
            raise NotFoundError(f"trackId not found: {track_id}", suggestion=hint)
        return self.tracks[track_id]

    def add_track(
        self,
        name: str = "",
        channel: int | None = None,
        program: int | None = None,
    ) -> int:
        """Append a track and return its index."""
        self.tracks.append(Track(name=name, channel=channel, program=program))
        return len(self.tracks) - 1

    def remove_track(self, track_id: int) -> Track:
        track = self.get_track(track_id)
        del self.tracks[track_id]
        return track

    # --- Helpers ---

    def note_count(self) -> int:
        return sum(len(t.notes) for t in self.tracks)
