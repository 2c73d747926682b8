"""Tests for note transforms and removal/copy helpers."""

from __future__ import annotations

import random

import pytest

from midi_file_mcp.errors import ValidationError
from midi_file_mcp.lib.scales import build_scale, key_to_pitch_class
from midi_file_mcp.model import transforms
from midi_file_mcp.model.query import EventFilter, TickRange
from midi_file_mcp.model.sequence import ControlChange, Note, PitchBend, Sequence, TempoChange, Track
from midi_file_mcp.model.timing import Timeline

PPQ = 480


def _notes(*specs) -> Track:
    """Track from (pitch, start, duration) tuples."""
    track = Track(channel=0)
    for pitch, start, duration in specs:
        track.add_note(Note(pitch=pitch, start_tick=start, duration_ticks=duration))
    return track


def _starts(track: Track) -> list[int]:
    return [n.start_tick for n in track.notes]


# ---------------------------------------------------------------------------
# quantize
# ---------------------------------------------------------------------------


class TestQuantize:
    def test_full_strength_snaps(self):
        track = _notes((60, 130, 10), (62, 250, 10), (64, 470, 10))
        transforms.quantize(track, PPQ, "1/8")
        assert _starts(track) == [240, 240, 480]

    def test_idempotent_at_full_strength(self):
        track = _notes((60, 13, 10), (62, 377, 10), (64, 901, 10), (65, 1555, 10))
        transforms.quantize(track, PPQ, "1/16")
        once = _starts(track)
        transforms.quantize(track, PPQ, "1/16")
        assert _starts(track) == once

    def test_zero_strength_is_noop(self):
        track = _notes((60, 13, 10), (62, 377, 10))
        transforms.quantize(track, PPQ, "1/4", strength=0.0)
        assert _starts(track) == [13, 377]

    def test_half_strength(self):
        track = _notes((60, 100, 10))
        transforms.quantize(track, PPQ, 480, strength=0.5)
        # target 0, halfway from 100
        assert _starts(track) == [50]

    def test_swing_pushes_odd_slots(self):
        track = _notes((60, 0, 10), (62, 240, 10), (64, 480, 10))
        transforms.quantize(track, PPQ, "1/8", swing=0.5)
        assert _starts(track) == [0, 240 + 60, 480]

    def test_respects_range(self):
        track = _notes((60, 10, 10), (62, 1930, 10))
        transforms.quantize(track, PPQ, "1/4", tick_range=TickRange(1000, None))
        assert _starts(track) == [10, 1920]

    def test_invalid_strength_leaves_track(self):
        track = _notes((60, 10, 10))
        with pytest.raises(ValidationError):
            transforms.quantize(track, PPQ, "1/4", strength=1.5)
        assert _starts(track) == [10]

    def test_bad_grid(self):
        with pytest.raises(ValidationError, match="grid"):
            transforms.quantize(_notes(), PPQ, "triplet")


# ---------------------------------------------------------------------------
# humanize (statistical)
# ---------------------------------------------------------------------------


class TestHumanize:
    def setup_method(self):
        self.timeline = Timeline(Sequence.create(ppq=PPQ, bpm=120.0))

    def test_timing_within_bounds(self):
        track = _notes(*[(60, 4800, 10)] * 200)
        transforms.humanize(track, self.timeline, timing_ms=10.0, rng=random.Random(7))
        # 10 ms at 120 bpm / ppq 480 = 9.6 ticks
        assert all(4790 <= s <= 4810 for s in _starts(track))
        assert len(set(_starts(track))) > 1

    def test_never_negative(self):
        track = _notes(*[(60, 0, 10)] * 100)
        transforms.humanize(track, self.timeline, timing_ms=50.0)
        assert min(_starts(track)) >= 0

    def test_velocity_within_bounds(self):
        track = _notes(*[(60, 0, 10)] * 200)
        transforms.humanize(track, self.timeline, velocity=0.1)
        velocities = [n.velocity for n in track.notes]
        assert all(0.7 - 1e-9 <= v <= 0.9 + 1e-9 for v in velocities)
        assert _starts(track) == [0] * 200

    def test_velocity_clamped(self):
        track = Track()
        for _ in range(100):
            track.add_note(Note(velocity=0.99))
        transforms.humanize(track, self.timeline, velocity=1.0)
        assert all(0.0 <= n.velocity <= 1.0 for n in track.notes)

    def test_offset_follows_tempo(self):
        seq = Sequence.create(ppq=PPQ, bpm=120.0)
        seq.set_tempo_map([TempoChange(0, 120.0), TempoChange(4800, 60.0)])
        timeline = Timeline(seq)
        fast = _notes(*[(60, 1200, 10)] * 200)
        slow = _notes(*[(60, 9600, 10)] * 200)
        transforms.humanize(fast, timeline, timing_ms=20.0, rng=random.Random(11))
        transforms.humanize(slow, timeline, timing_ms=20.0, rng=random.Random(11))
        fast_offsets = [s - 1200 for s in _starts(fast)]
        slow_offsets = [s - 9600 for s in _starts(slow)]
        # 20 ms is 19.2 ticks at 120 bpm and 9.6 ticks at 60 bpm
        assert max(abs(o) for o in fast_offsets) > 12
        assert all(abs(o) <= 10 for o in slow_offsets)
        # same draws, so each slow offset is half the matching fast one
        for f, s in zip(sorted(fast_offsets), sorted(slow_offsets)):
            assert abs(f - 2 * s) <= 2

    def test_negative_timing_rejected(self):
        with pytest.raises(ValidationError):
            transforms.humanize(_notes(), self.timeline, timing_ms=-1)


# ---------------------------------------------------------------------------
# pitch
# ---------------------------------------------------------------------------


class TestTranspose:
    def test_shift_and_clamp(self):
        track = _notes((60, 0, 1), (120, 10, 1), (3, 20, 1))
        transforms.transpose(track, 12)
        assert [n.pitch for n in track.notes] == [72, 127, 15]
        transforms.transpose(track, -24)
        assert [n.pitch for n in track.notes] == [48, 103, 0]

    def test_filter(self):
        track = _notes((60, 0, 1), (62, 10, 1))
        transforms.transpose(track, 1, event_filter=EventFilter(note_numbers=[62]))
        assert [n.pitch for n in track.notes] == [60, 63]

    def test_non_integer_rejected(self):
        with pytest.raises(ValidationError):
            transforms.transpose(_notes(), 1.5)


class TestScales:
    def test_c_major(self):
        assert build_scale("C", "major") == frozenset({0, 2, 4, 5, 7, 9, 11})

    def test_flat_key_alias(self):
        assert key_to_pitch_class("Bb") == key_to_pitch_class("A#") == 10

    def test_case_insensitive(self):
        assert build_scale("d", "Dorian") == build_scale("D", "dorian")

    def test_unknown_key(self):
        with pytest.raises(ValidationError, match="Unknown key"):
            build_scale("H", "major")

    def test_unknown_scale(self):
        with pytest.raises(ValidationError, match="Unknown scale"):
            build_scale("C", "bebop")


class TestConstrainToScale:
    c_major = build_scale("C", "major")

    def test_nearest_tie_goes_down(self):
        assert transforms.constrain_pitch(61, self.c_major, "nearest") == 60

    def test_up(self):
        assert transforms.constrain_pitch(61, self.c_major, "up") == 62

    def test_down(self):
        assert transforms.constrain_pitch(66, self.c_major, "down") == 65

    def test_in_scale_untouched(self):
        assert transforms.constrain_pitch(64, self.c_major, "up") == 64

    def test_up_falls_back_at_top(self):
        # 127 is G; in C# major G is not allowed and nothing lies above
        allowed = build_scale("C#", "major")
        result = transforms.constrain_pitch(127, allowed, "up")
        assert result < 127
        assert result % 12 in allowed

    @pytest.mark.parametrize("strategy", ["nearest", "up", "down"])
    @pytest.mark.parametrize("key, scale", [("C", "major"), ("A", "minor"), ("F#", "mixolydian")])
    def test_closure(self, key, scale, strategy):
        allowed = build_scale(key, scale)
        track = _notes(*[(p, p, 1) for p in range(128)])
        transforms.constrain_to_scale(track, key, scale, strategy)
        assert all(n.pitch % 12 in allowed for n in track.notes)
        assert transforms.constrain_to_scale(track, key, scale, strategy) == 0

    def test_returns_moved_count(self):
        track = _notes((60, 0, 1), (61, 1, 1), (63, 2, 1))
        assert transforms.constrain_to_scale(track, "C", "major") == 2

    def test_bad_strategy(self):
        with pytest.raises(ValidationError):
            transforms.constrain_to_scale(_notes((61, 0, 1)), "C", "major", "sideways")


# ---------------------------------------------------------------------------
# clean-up
# ---------------------------------------------------------------------------


class TestFixOverlaps:
    def test_trim(self):
        track = _notes((60, 0, 500), (60, 480, 100), (62, 0, 1000))
        assert transforms.fix_overlaps(track, "trim") == 1
        durations = {(n.pitch, n.start_tick): n.duration_ticks for n in track.notes}
        assert durations[(60, 0)] == 480
        assert durations[(62, 0)] == 1000

    def test_remove(self):
        track = _notes((60, 0, 500), (60, 480, 100))
        transforms.fix_overlaps(track, "remove")
        assert [(n.start_tick, n.duration_ticks) for n in track.notes] == [(0, 500)]

    def test_different_channels_do_not_overlap(self):
        track = _notes((60, 0, 500))
        track.add_note(Note(pitch=60, start_tick=100, duration_ticks=100, channel=3))
        assert transforms.fix_overlaps(track, "trim") == 0

    def test_same_start_trims_to_minimum(self):
        track = _notes((60, 0, 500), (60, 0, 200))
        transforms.fix_overlaps(track, "trim")
        assert sorted(n.duration_ticks for n in track.notes) == [1, 200]

    def test_pairs_not_overlapping_after_trim(self):
        track = _notes((60, 0, 1000), (60, 100, 1000), (60, 200, 1000))
        transforms.fix_overlaps(track, "trim")
        notes = sorted(track.notes, key=lambda n: n.start_tick)
        for current, following in zip(notes, notes[1:]):
            assert current.end_tick <= following.start_tick

    def test_bad_mode(self):
        with pytest.raises(ValidationError):
            transforms.fix_overlaps(_notes(), "merge")


class TestLegato:
    def test_chains_regardless_of_pitch(self):
        track = _notes((60, 0, 10), (72, 480, 10), (48, 960, 10))
        transforms.legato(track)
        assert [n.duration_ticks for n in track.notes] == [480, 480, 10]

    def test_gap(self):
        track = _notes((60, 0, 10), (62, 480, 10))
        transforms.legato(track, gap_ticks=30)
        assert track.notes[0].duration_ticks == 450

    def test_minimum_duration(self):
        track = _notes((60, 0, 10), (62, 5, 10))
        transforms.legato(track, gap_ticks=100)
        assert track.notes[0].duration_ticks == 1


class TestTrimNotes:
    def test_removes_short_selected_notes(self):
        track = _notes((60, 0, 5), (62, 10, 50), (64, 2000, 5))
        removed = transforms.trim_notes(track, 10, tick_range=TickRange(0, 1000))
        assert removed == 1
        assert [n.start_tick for n in track.notes] == [10, 2000]

    def test_min_duration_validated(self):
        with pytest.raises(ValidationError):
            transforms.trim_notes(_notes(), 0)


# ---------------------------------------------------------------------------
# removal / copy
# ---------------------------------------------------------------------------


def _mixed() -> Track:
    track = _notes((60, 0, 10), (62, 500, 10))
    track.add_cc(ControlChange(number=1, value=0.1, tick=0))
    track.add_cc(ControlChange(number=11, value=0.2, tick=500))
    track.add_pitch_bend(PitchBend(value=0.3, tick=500))
    return track


class TestRemoveAndCopy:
    def test_remove_events_in_range(self):
        track = _mixed()
        assert transforms.remove_events(track, TickRange(400, None)) == 3
        assert _starts(track) == [0]
        assert list(track.control_changes) == [1]
        assert track.pitch_bends == []

    def test_remove_cc_by_number(self):
        track = _mixed()
        transforms.remove_control_changes(track, event_filter=EventFilter(cc_numbers=[11]))
        assert list(track.control_changes) == [1]
        assert len(track.notes) == 2

    def test_copy_shifts_and_clamps(self):
        source = _mixed()
        destination = Track(channel=4)
        copied = transforms.copy_events(source, destination, delta_ticks=-100)
        assert copied == 5
        assert _starts(destination) == [0, 400]
        assert destination.pitch_bends[0].tick == 400
        # copies are independent of the source
        destination.notes[0].pitch = 1
        assert source.notes[0].pitch == 60
