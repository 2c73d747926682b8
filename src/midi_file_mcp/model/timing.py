"""Timing conversions between ticks, bar/beat/tick positions, and seconds.

All public helpers accept lists of ``TimeSignature`` / ``TempoChange``
from the Sequence model; they are sorted here, so callers don't need to
pre-sort.  ``Timeline`` binds the helpers to one sequence.

Bar numbering: every time-signature change starts a new bar at its own
tick.  When a change does not fall on a barline, the bar that it cuts
short still counts as a bar.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass

from midi_file_mcp.errors import ValidationError
from midi_file_mcp.model.sequence import (
    DEFAULT_BPM,
    DEFAULT_TIME_SIGNATURE,
    Sequence,
    TempoChange,
    TimeSignature,
)


@dataclass
class Bbt:
    """A 1-based bar/beat position plus a tick offset into the beat."""

    bar: int
    beat: int
    tick: int = 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def round_half_up(value: float) -> int:
    """Round .5 toward +infinity (``round()`` would round half to even)."""
    return math.floor(value + 0.5)


def ticks_per_beat(ppq: int, denominator: int) -> int:
    """Ticks for one beat given *denominator*.

    For 4/4 a beat is a quarter note => ppq.
    For 6/8 a beat is an eighth note  => ppq / 2.
    General: round(ppq * 4 / denominator), never below 1.
    """
    return max(1, round_half_up(ppq * 4 / denominator))


def _sorted_sigs(time_sigs: list[TimeSignature]) -> list[TimeSignature]:
    sigs = sorted(time_sigs, key=lambda ts: ts.tick)
    if not sigs:
        num, den = DEFAULT_TIME_SIGNATURE
        sigs = [TimeSignature(tick=0, numerator=num, denominator=den)]
    return sigs


def _sorted_tempos(tempo_map: list[TempoChange]) -> list[TempoChange]:
    tempos = sorted(tempo_map, key=lambda t: t.tick)
    if not tempos:
        tempos = [TempoChange(tick=0, bpm=DEFAULT_BPM)]
    return tempos


def _signature_segments(time_sigs: list[TimeSignature], ppq: int):
    """Yield ``(start, end, ticks_per_beat, ticks_per_bar)`` per signature.

    The first signature governs from tick 0; the last one has ``end=None``
    and extends to infinity.
    """
    sigs = _sorted_sigs(time_sigs)
    for i, sig in enumerate(sigs):
        start = 0 if i == 0 else sig.tick
        end = sigs[i + 1].tick if i + 1 < len(sigs) else None
        tpb = ticks_per_beat(ppq, sig.denominator)
        yield start, end, tpb, tpb * sig.numerator


def _bars_in_segment(start: int, end: int, ticks_per_bar: int) -> int:
    """Bars that start inside [start, end), a trailing partial bar included."""
    return max(0, -(-(end - start) // ticks_per_bar))


# ---------------------------------------------------------------------------
# BBT <-> Ticks
# ---------------------------------------------------------------------------

def bbt_to_ticks(bbt: Bbt, time_sigs: list[TimeSignature], ppq: int) -> int:
    """Convert a 1-based bar/beat/tick position to absolute ticks.

    ``bbt.tick`` is an offset from the start of the beat and is not
    range-checked against the beat length.
    """
    if bbt.bar < 1 or bbt.beat < 1 or bbt.tick < 0:
        raise ValidationError(
            f"bbt requires bar>=1, beat>=1, tick>=0 (got {bbt.bar}.{bbt.beat}.{bbt.tick})"
        )

    first_bar = 1
    for start, end, tpb, tpbar in _signature_segments(time_sigs, ppq):
        if end is not None:
            bars = _bars_in_segment(start, end, tpbar)
            if bbt.bar >= first_bar + bars:
                # Target is beyond this region
                first_bar += bars
                continue
        # Target bar starts in this region (or the last region, extrapolated)
        bar_start = start + (bbt.bar - first_bar) * tpbar
        return bar_start + (bbt.beat - 1) * tpb + bbt.tick

    # Unreachable: the last segment is unbounded
    raise AssertionError("time signature walk ended without a final segment")


def ticks_to_bbt(tick: int, time_sigs: list[TimeSignature], ppq: int) -> Bbt:
    """Convert an absolute tick to a 1-based :class:`Bbt`."""
    if tick < 0:
        raise ValidationError(f"ticks must be >= 0 (got {tick})")

    first_bar = 1
    for start, end, tpb, tpbar in _signature_segments(time_sigs, ppq):
        if end is not None and tick >= end:
            first_bar += _bars_in_segment(start, end, tpbar)
            continue
        bars, remainder = divmod(tick - start, tpbar)
        beat_0, sub = divmod(remainder, tpb)
        return Bbt(bar=first_bar + bars, beat=beat_0 + 1, tick=sub)

    raise AssertionError("time signature walk ended without a final segment")


# ---------------------------------------------------------------------------
# Ticks <-> Seconds
# ---------------------------------------------------------------------------

def ticks_to_seconds(tick: float, tempo_map: list[TempoChange], ppq: int) -> float:
    """Convert absolute *tick* to seconds using the tempo map."""
    tempos = _sorted_tempos(tempo_map)

    seconds = 0.0
    for i, tc in enumerate(tempos):
        start = 0 if i == 0 else tc.tick
        next_tick = tempos[i + 1].tick if i + 1 < len(tempos) else None
        secs_per_tick = 60.0 / (tc.bpm * ppq)

        if next_tick is not None and tick >= next_tick:
            # Entire region before the next tempo change
            seconds += (next_tick - start) * secs_per_tick
        else:
            # Tick falls in this region (or this is the last tempo entry)
            seconds += (tick - start) * secs_per_tick
            return seconds

    return seconds


def seconds_to_ticks(seconds: float, tempo_map: list[TempoChange], ppq: int) -> int:
    """Convert *seconds* to the nearest absolute tick using the tempo map."""
    tempos = _sorted_tempos(tempo_map)

    remaining = seconds
    for i, tc in enumerate(tempos):
        start = 0 if i == 0 else tc.tick
        secs_per_tick = 60.0 / (tc.bpm * ppq)
        next_tick = tempos[i + 1].tick if i + 1 < len(tempos) else None

        if next_tick is not None:
            region_duration = (next_tick - start) * secs_per_tick
            if remaining > region_duration:
                remaining -= region_duration
                continue

        # This region covers the remaining seconds
        return round_half_up(start + remaining / secs_per_tick)

    raise AssertionError("tempo walk ended without a final segment")


# ---------------------------------------------------------------------------
# Quarter notes / grids
# ---------------------------------------------------------------------------

def quarter_notes_to_ticks(quarter_notes: float, ppq: int) -> int:
    return round_half_up(quarter_notes * ppq)


_GRID_RE = re.compile(r"^1/(\d+)$")


def grid_to_ticks(grid: str | int, ppq: int) -> int:
    """Resolve a quantize grid: a tick count or a ``"1/N"`` note fraction."""
    if isinstance(grid, bool):
        raise ValidationError(f"Unsupported grid: {grid!r}")
    if isinstance(grid, (int, float)):
        if grid != int(grid) or grid < 1:
            raise ValidationError(f"grid ticks must be a positive integer (got {grid})")
        return int(grid)
    m = _GRID_RE.match(grid.strip())
    if m and int(m.group(1)) > 0:
        return max(1, round_half_up(ppq * 4 / int(m.group(1))))
    raise ValidationError(
        f"Unsupported grid: {grid!r}", suggestion="1/4, 1/8, 1/16 or a tick count"
    )


# ---------------------------------------------------------------------------
# Timeline — helpers bound to one sequence
# ---------------------------------------------------------------------------

class Timeline:
    """Tick/second/BBT conversions over one sequence's tempo and meter maps."""

    def __init__(self, sequence: Sequence) -> None:
        self.sequence = sequence

    @property
    def ppq(self) -> int:
        return self.sequence.ppq

    def ticks_to_seconds(self, tick: float) -> float:
        return ticks_to_seconds(tick, self.sequence.tempo_map, self.ppq)

    def seconds_to_ticks(self, seconds: float) -> int:
        return seconds_to_ticks(seconds, self.sequence.tempo_map, self.ppq)

    def bbt_to_ticks(self, bbt: Bbt) -> int:
        return bbt_to_ticks(bbt, self.sequence.time_signatures, self.ppq)

    def ticks_to_bbt(self, tick: int) -> Bbt:
        return ticks_to_bbt(tick, self.sequence.time_signatures, self.ppq)

    def quarter_notes_to_ticks(self, quarter_notes: float) -> int:
        return quarter_notes_to_ticks(quarter_notes, self.ppq)

    def to_ticks(
        self,
        bbt: Bbt | None = None,
        quarter_notes: float | None = None,
        seconds: float | None = None,
    ) -> int:
        """Convert exactly one of *bbt*, *quarter_notes*, *seconds* to ticks."""
        given = [
            name for name, value in (
                ("bbt", bbt), ("quarterNotes", quarter_notes), ("seconds", seconds),
            )
            if value is not None
        ]
        if len(given) != 1:
            raise ValidationError(
                "Provide exactly one of: bbt, quarterNotes, seconds"
            )
        if bbt is not None:
            return self.bbt_to_ticks(bbt)
        if quarter_notes is not None:
            if quarter_notes < 0:
                raise ValidationError(f"quarterNotes must be >= 0 (got {quarter_notes})")
            return self.quarter_notes_to_ticks(quarter_notes)
        if seconds < 0:
            raise ValidationError(f"seconds must be >= 0 (got {seconds})")
        return self.seconds_to_ticks(seconds)
