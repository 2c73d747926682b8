"""Tests for the server layer: handlers, argument parsing, formatting, tool boundary."""

from __future__ import annotations

import json

import pytest
from fastmcp import FastMCP

from midi_file_mcp.errors import NotFoundError, PathSecurityError, StateError, ValidationError
from midi_file_mcp.serialization.codec import decode
from midi_file_mcp.server import ops_editing, ops_meta, ops_transform, queries, sessions
from midi_file_mcp.server.formatter import format_error, format_result
from midi_file_mcp.server.resolvers import OpContext, parse_events, parse_filter, parse_range
from midi_file_mcp.server.tools import guarded, register_tools


def _json(result: str):
    assert not result.startswith("!"), result
    return json.loads(result)


NOTE = {"type": "note", "midi": 60, "ticks": 0, "durationTicks": 480}


# -----------------------------------------------------------------------
# Formatting / boundary
# -----------------------------------------------------------------------


class TestFormatting:
    def test_success_passthrough(self):
        assert format_result(True, "ok") == "ok"

    def test_failure_with_hint(self):
        assert format_result(False, "oops", "try this") == "! oops\n  try: try this"

    def test_error_kind(self):
        assert format_error(NotFoundError("midiId not found: x")) == "! NotFound: midiId not found: x"

    def test_error_carries_suggestion(self):
        exc = ValidationError("Unknown scale: blues", suggestion="major, minor")
        assert format_error(exc) == "! ValidationError: Unknown scale: blues\n  try: major, minor"


class TestGuarded:
    def test_domain_error(self):
        def fail():
            raise ValidationError("limit must be 1-5000 (got 0)")

        assert guarded(fail) == "! ValidationError: limit must be 1-5000 (got 0)"

    def test_unexpected_error(self):
        def boom():
            raise RuntimeError("kaput")

        assert guarded(boom) == "! InternalError: kaput"

    def test_register_tools(self, repo):
        register_tools(FastMCP("test"), repo)


# -----------------------------------------------------------------------
# Argument parsing
# -----------------------------------------------------------------------


class TestResolvers:
    def test_range(self):
        r = parse_range({"startTicks": 10})
        assert (r.start_ticks, r.end_ticks) == (10, None)
        assert parse_range(None) is None

    def test_inverted_range(self):
        with pytest.raises(ValidationError):
            parse_range({"startTicks": 10, "endTicks": 5})

    def test_filter(self):
        f = parse_filter({"types": ["note"], "channels": [1, 2]})
        assert f.types == ["note"]
        assert f.channels == [1, 2]

    @pytest.mark.parametrize("data", [
        {"types": ["sysex"]},
        {"channels": [16]},
        {"noteNumbers": [-1]},
        {"ccNumbers": "7"},
    ])
    def test_bad_filter(self, data):
        with pytest.raises(ValidationError):
            parse_filter(data)

    def test_batch_error_names_index(self):
        with pytest.raises(ValidationError, match=r"events\[1\]"):
            parse_events([NOTE, {"type": "note", "midi": 999, "ticks": 0, "durationTicks": 1}])

    def test_batch_type_mismatch(self):
        with pytest.raises(ValidationError):
            parse_events([NOTE], "cc")


# -----------------------------------------------------------------------
# Session lifecycle
# -----------------------------------------------------------------------


class TestSessionLifecycle:
    def _create(self, repo, path="song.mid"):
        composition = {"tracks": [{"name": "Lead", "channel": 0, "events": [NOTE]}]}
        return _json(sessions.session_create(repo, path, composition=composition))

    def test_create_open_commit(self, repo, project_root):
        created = self._create(repo, "out/nested/song.mid")
        assert (project_root / "out" / "nested" / "song.mid").is_file()
        assert created["filePath"].endswith("song.mid")

        opened = _json(sessions.session_open(repo, "default", "out/nested/song.mid"))
        midi_id = opened["midiId"]
        assert sessions.session_commit(repo, midi_id) == "noop"

        with repo.locked(midi_id) as session:
            ops_transform.op_transpose(OpContext(repo, session), 0, 5)
        assert sessions.session_commit(repo, midi_id) == "ok"
        saved = decode((project_root / "out" / "nested" / "song.mid").read_bytes())
        assert saved.tracks[0].notes[0].pitch == 65

    def test_create_from_file(self, repo, project_root):
        (project_root / "comp.json").write_text(json.dumps({"ppq": 96}), encoding="utf-8")
        _json(sessions.session_create(repo, "c.mid", composition_file="comp.json"))
        assert decode((project_root / "c.mid").read_bytes()).ppq == 96

    def test_create_requires_exactly_one_source(self, repo):
        with pytest.raises(ValidationError, match="not both"):
            sessions.session_create(repo, "x.mid", composition={}, composition_file="c.json")
        with pytest.raises(ValidationError, match="required"):
            sessions.session_create(repo, "x.mid")

    def test_create_rejects_unwritable_ppq(self, repo, project_root):
        with pytest.raises(ValidationError, match="ppq"):
            sessions.session_create(repo, "big.mid", composition={"ppq": 40000})
        assert not (project_root / "big.mid").exists()

    def test_create_escape_rejected(self, repo):
        with pytest.raises(PathSecurityError):
            sessions.session_create(repo, "../x.mid", composition={})

    def test_open_missing_file(self, repo):
        with pytest.raises(NotFoundError):
            sessions.session_open(repo, "default", "missing.mid")

    def test_commit_without_path(self, repo, ctx):
        with pytest.raises(StateError):
            sessions.session_commit(repo, ctx.session.id)

    def test_save_as_clears_dirty(self, repo, ctx, project_root):
        ctx.touch()
        result = _json(sessions.session_save_as(repo, ctx.session.id, "saved.mid"))
        assert result["path"] == str(project_root.resolve() / "saved.mid")
        assert not ctx.session.dirty
        assert sessions.session_commit(repo, ctx.session.id) == "noop"

    def test_backup_restore_revert(self, repo, ctx):
        backup_id = _json(sessions.session_backup(repo, ctx.session.id))["backupId"]
        ops_editing.op_remove_track(ctx, 1)
        assert sessions.session_revert(repo, ctx.session.id) == "ok"
        assert len(ctx.session.sequence.tracks) == 2
        restored = _json(sessions.session_restore(repo, backup_id))["midiId"]
        assert restored != ctx.session.id

    def test_close(self, repo, ctx):
        midi_id = ctx.session.id
        assert sessions.session_close(repo, midi_id) == f"closed {midi_id}"
        with pytest.raises(NotFoundError):
            repo.get_session(midi_id)

    def test_list_projects(self, repo):
        assert _json(sessions.session_list_projects(repo))[0]["id"] == "default"


# -----------------------------------------------------------------------
# Timeline handlers
# -----------------------------------------------------------------------


class TestTimelineHandlers:
    def test_get_timeline(self, ctx):
        data = _json(ops_meta.op_get_timeline(ctx))
        assert data["ppq"] == 480
        assert data["tempos"] == [{"ticks": 0, "bpm": 120.0}]
        assert data["timeSignatures"][0]["timeSignature"] == [4, 4]

    def test_to_ticks_and_back(self, ctx):
        assert _json(ops_meta.op_to_ticks(ctx, bbt={"bar": 2, "beat": 1}))["ticks"] == 1920
        assert _json(ops_meta.op_to_ticks(ctx, seconds=0.5))["ticks"] == 480
        assert _json(ops_meta.op_to_bbt(ctx, 2500)) == {"bar": 2, "beat": 2, "tick": 100}

    def test_to_ticks_needs_one(self, ctx):
        with pytest.raises(ValidationError):
            ops_meta.op_to_ticks(ctx)

    def test_set_timeline_keeps_absent_kind(self, ctx):
        ops_meta.op_set_timeline(ctx, [{"type": "tempo", "ticks": 0, "bpm": 90}])
        assert ctx.sequence.tempo_map[0].bpm == 90.0
        assert ctx.sequence.time_signatures[0].numerator == 4
        assert ctx.session.dirty

    def test_set_time_signatures_validates_all_first(self, ctx):
        with pytest.raises(ValidationError):
            ops_meta.op_set_time_signatures(ctx, [
                {"ticks": 0, "numerator": 3, "denominator": 4},
                {"ticks": 960, "numerator": 3, "denominator": 6},
            ])
        assert ctx.sequence.time_signatures[0].numerator == 4
        assert not ctx.session.dirty

    def test_set_tempo_map_empty_resets(self, ctx):
        ops_meta.op_set_tempo_map(ctx, [])
        assert _json(ops_meta.op_get_tempo_map(ctx))["tempos"] == [{"ticks": 0, "bpm": 120.0}]

    @pytest.mark.parametrize("bpm", [2, 3.5, 60_000_001])
    def test_tempo_outside_file_range_rejected(self, repo, ctx, bpm):
        with pytest.raises(ValidationError, match="bpm must be between"):
            ops_meta.op_set_tempo_map(ctx, [{"ticks": 0, "bpm": bpm}])
        assert not ctx.session.dirty
        assert "backupId" in _json(sessions.session_backup(repo, ctx.session.id))

    def test_slowest_writable_tempo_saves(self, repo, ctx, project_root):
        assert ops_meta.op_set_tempo_map(ctx, [{"ticks": 0, "bpm": 3.6}]) == "ok"
        _json(sessions.session_save_as(repo, ctx.session.id, "slow.mid"))
        saved = decode((project_root / "slow.mid").read_bytes())
        assert saved.tempo_map[0].bpm == pytest.approx(3.6, abs=1e-4)

    def test_numerator_over_255_rejected(self, repo, ctx):
        with pytest.raises(ValidationError, match="numerator must be 1-255"):
            ops_meta.op_set_timeline(ctx, [
                {"type": "timeSignature", "ticks": 0, "numerator": 300, "denominator": 4},
            ])
        assert ctx.sequence.time_signatures[0].numerator == 4
        assert "backupId" in _json(sessions.session_backup(repo, ctx.session.id))


# -----------------------------------------------------------------------
# Track / event handlers
# -----------------------------------------------------------------------


class TestTrackHandlers:
    def test_get_tracks(self, ctx):
        tracks = _json(ops_editing.op_get_tracks(ctx))
        assert tracks[0]["name"] == "Piano"
        assert tracks[0]["instrumentName"] == "Acoustic Grand Piano"
        assert tracks[0]["pitchRange"] == ["C4", "C5"]
        assert tracks[1]["noteCount"] == 0
        assert "pitchRange" not in tracks[1]

    def test_add_and_set_props(self, ctx):
        track_id = _json(ops_editing.op_add_track(ctx, name="Pad", channel=5))["trackId"]
        assert track_id == 2
        ops_editing.op_set_track_props(ctx, track_id, program=88)
        track = ctx.sequence.tracks[2]
        assert (track.name, track.channel, track.program) == ("Pad", 5, 88)

    def test_bad_channel(self, ctx):
        with pytest.raises(ValidationError):
            ops_editing.op_set_track_props(ctx, 0, channel=16)

    def test_unknown_track(self, ctx):
        with pytest.raises(NotFoundError, match="trackId not found: 9"):
            ops_editing.op_remove_track(ctx, 9)

    def test_unknown_track_suggests_range(self, ctx):
        result = guarded(lambda: ops_editing.op_remove_track(ctx, 9))
        assert result == "! NotFound: trackId not found: 9\n  try: a trackId from 0 to 1"


class TestEventHandlers:
    def test_insert_and_page(self, ctx):
        ops_editing.op_insert_events(
            ctx, 1,
            notes=[{"midi": 40 + i, "ticks": i * 10, "durationTicks": 5} for i in range(10)],
            cc=[{"number": 1, "value": 64, "ticks": 3}],
        )
        page = _json(queries.query_events(ctx, 1, offset=0, limit=4))
        assert page["total"] == 11
        assert page["nextOffset"] == 4
        assert [e["ticks"] for e in page["events"]] == [0, 3, 10, 20]

    def test_insert_batch_is_all_or_nothing(self, ctx):
        with pytest.raises(ValidationError):
            ops_editing.op_insert_events(ctx, 1, events=[NOTE, {"type": "note", "midi": 60}])
        assert ctx.sequence.tracks[1].notes == []
        assert not ctx.session.dirty

    def test_insert_requires_something(self, ctx):
        with pytest.raises(ValidationError, match="at least one"):
            ops_editing.op_insert_events(ctx, 1)

    def test_insert_cc_and_pitchbend(self, ctx):
        ops_editing.op_insert_cc(ctx, 1, [{"number": 7, "value": 0.5, "ticks": 0}])
        ops_editing.op_insert_pitchbend(ctx, 1, [{"value": 0.25, "ticks": 0}])
        events = _json(queries.query_all_events(ctx, 1))
        assert [e["type"] for e in events["events"]] == ["cc", "pitchbend"]
        assert events["nextOffset"] is None

    def test_remove_and_copy(self, ctx):
        ops_editing.op_copy_events(ctx, 0, 1, delta_ticks=1920, filter={"types": ["note"]})
        assert [n.start_tick for n in ctx.sequence.tracks[1].notes] == [1920, 2400, 2880, 3840]
        assert ops_editing.op_remove_events(ctx, 1, range={"startTicks": 3000}) == "removed 1"
        assert ops_editing.op_remove_cc(ctx, 0) == "removed 2"
        assert ops_editing.op_remove_pitchbend(ctx, 0) == "removed 1"

    def test_bad_limit(self, ctx):
        with pytest.raises(ValidationError):
            queries.query_events(ctx, 0, limit=0)


# -----------------------------------------------------------------------
# Transform handlers
# -----------------------------------------------------------------------


class TestTransformHandlers:
    def test_noop_still_marks_dirty(self, ctx):
        ops_transform.op_transpose(ctx, 0, 3, range={"startTicks": 100000})
        assert ctx.session.dirty
        assert [n.pitch for n in ctx.sequence.tracks[0].notes] == [60, 64, 67, 72]

    def test_failed_transform_leaves_clean(self, ctx):
        with pytest.raises(ValidationError):
            ops_transform.op_quantize(ctx, 0, "1/4", strength=2.0)
        assert not ctx.session.dirty

    def test_each_transform_runs(self, ctx):
        assert ops_transform.op_quantize(ctx, 0, "1/8", swing=0.2) == "ok"
        assert ops_transform.op_humanize(ctx, 0, timing_ms=5, velocity=0.05) == "ok"
        assert ops_transform.op_constrain_to_scale(ctx, 0, "D", "dorian", "up") == "ok"
        assert ops_transform.op_fix_overlaps(ctx, 0, "remove") == "ok"
        assert ops_transform.op_legato(ctx, 0, gap_ticks=10) == "ok"
        assert ops_transform.op_trim_notes(ctx, 0, min_duration=2) == "ok"

    def test_unknown_scale(self, ctx):
        with pytest.raises(ValidationError, match="Unknown scale"):
            ops_transform.op_constrain_to_scale(ctx, 0, "C", "blues")

    def test_unknown_scale_suggests_names(self, ctx):
        result = guarded(lambda: ops_transform.op_constrain_to_scale(ctx, 0, "C", "blues"))
        message, hint = result.split("\n")
        assert message == "! ValidationError: Unknown scale: blues"
        assert hint.startswith("  try: major, ")
        assert "mixolydian" in hint

    def test_bad_grid_suggests_fractions(self, ctx):
        result = guarded(lambda: ops_transform.op_quantize(ctx, 0, "triplet"))
        assert result.endswith("\n  try: 1/4, 1/8, 1/16 or a tick count")


# -----------------------------------------------------------------------
# Analysis
# -----------------------------------------------------------------------


class TestAnalysis:
    def test_validate_clean(self, ctx):
        assert _json(queries.query_validate(ctx)) == []

    def test_diff(self, repo, ctx):
        other = repo.restore(repo.backup(ctx.session).id)
        ops_editing.op_remove_track(ctx, 1)
        result = _json(queries.query_diff(repo, ctx.session.id, other.id))
        assert result == {"tracksA": 1, "tracksB": 2, "notesA": 4, "notesB": 4}

    @pytest.mark.parametrize("fmt", ["json", "txt"])
    def test_export_report(self, ctx, project_root, fmt):
        path = _json(queries.query_export_report(ctx, fmt))["filePath"]
        expected = project_root.resolve() / "reports" / f"midi-report-{ctx.session.id}.{fmt}"
        assert path == str(expected)
        text = expected.read_text(encoding="utf-8")
        if fmt == "json":
            assert json.loads(text)["summary"]["notes"] == 4
        else:
            assert "Piano" in text

    def test_export_report_twice(self, ctx):
        queries.query_export_report(ctx, "txt")
        queries.query_export_report(ctx, "txt")

    def test_bad_format(self, ctx):
        with pytest.raises(ValidationError):
            queries.query_export_report(ctx, "pdf")
