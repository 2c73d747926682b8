"""FastMCP tool registrations for midi-file-mcp.

Every tool takes structured arguments and returns either a JSON payload or
a short status line.  Errors never escape as exceptions: a
:class:`MidiMcpError` is rendered as ``! <kind>: <message>``.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Literal

from fastmcp import FastMCP

from midi_file_mcp.errors import MidiMcpError
from midi_file_mcp.server import ops_editing, ops_meta, ops_transform, queries, sessions
from midi_file_mcp.server.formatter import format_error, format_result
from midi_file_mcp.server.repository import SessionRepository
from midi_file_mcp.server.resolvers import OpContext

logger = logging.getLogger(__name__)

Json = dict[str, Any]


def guarded(call: Callable[[], str]) -> str:
    """Run one tool body, turning exceptions into ``!`` error lines."""
    try:
        return call()
    except MidiMcpError as exc:
        logger.info("tool error %s: %s", exc.kind, exc)
        return format_error(exc)
    except Exception as exc:
        logger.exception("unexpected tool failure")
        return format_result(False, f"InternalError: {exc}")


def register_tools(mcp: FastMCP, repo: SessionRepository) -> None:
    """Register all MIDI editing tools on *mcp*, backed by *repo*."""

    def on_session(midi_id: str, handler: Callable[..., str], *args: Any, **kwargs: Any) -> str:
        def call() -> str:
            with repo.locked(midi_id) as session:
                return handler(OpContext(repo, session), *args, **kwargs)
        return guarded(call)

    # -- Session lifecycle -----------------------------------------------------

    @mcp.tool
    def list_projects() -> str:
        """List available projects."""
        return guarded(lambda: sessions.session_list_projects(repo))

    @mcp.tool
    def open_midi(projectId: str, relativePath: str) -> str:
        """Open a MIDI file by project-relative path; returns {midiId, path}."""
        return guarded(lambda: sessions.session_open(repo, projectId, relativePath))

    @mcp.tool
    def close_midi(midiId: str) -> str:
        """Close an open MIDI session."""
        return guarded(lambda: sessions.session_close(repo, midiId))

    @mcp.tool
    def save_as(midiId: str, relativePath: str, projectId: str | None = None) -> str:
        """Save MIDI to a relative path and make it the session's path."""
        return guarded(lambda: sessions.session_save_as(repo, midiId, relativePath, projectId))

    @mcp.tool
    def commit(midiId: str) -> str:
        """Write unsaved changes back to the original path ('noop' when clean)."""
        return guarded(lambda: sessions.session_commit(repo, midiId))

    @mcp.tool
    def backup(midiId: str) -> str:
        """Snapshot the session in memory; returns {backupId}."""
        return guarded(lambda: sessions.session_backup(repo, midiId))

    @mcp.tool
    def restore(backupId: str) -> str:
        """Open a backup as a new session; returns {midiId}."""
        return guarded(lambda: sessions.session_restore(repo, backupId))

    @mcp.tool
    def revert(midiId: str) -> str:
        """Reset the session to its last backup."""
        return guarded(lambda: sessions.session_revert(repo, midiId))

    @mcp.tool
    def create_midi(
        outputPath: str,
        projectId: str = "default",
        composition: Json | None = None,
        composition_file: str | None = None,
    ) -> str:
        """Create a MIDI file from a composition object or a JSON file; returns {filePath}."""
        return guarded(lambda: sessions.session_create(
            repo, outputPath, projectId, composition, composition_file,
        ))

    # -- Timeline --------------------------------------------------------------

    @mcp.tool
    def get_timeline(midiId: str) -> str:
        """Get ppq, tempo map and time signatures."""
        return on_session(midiId, ops_meta.op_get_timeline)

    @mcp.tool
    def to_ticks(
        midiId: str,
        bbt: Json | None = None,
        quarterNotes: float | None = None,
        seconds: float | None = None,
    ) -> str:
        """Convert exactly one of bbt {bar, beat, tick}, quarterNotes or seconds to ticks."""
        return on_session(midiId, ops_meta.op_to_ticks, bbt, quarterNotes, seconds)

    @mcp.tool
    def to_bbt(midiId: str, ticks: int) -> str:
        """Convert ticks to {bar, beat, tick}."""
        return on_session(midiId, ops_meta.op_to_bbt, ticks)

    @mcp.tool
    def get_tempo_map(midiId: str) -> str:
        """Get tempo changes."""
        return on_session(midiId, ops_meta.op_get_tempo_map)

    @mcp.tool
    def set_tempo_map(midiId: str, changes: list[Json]) -> str:
        """Replace tempo changes: [{ticks, bpm}]."""
        return on_session(midiId, ops_meta.op_set_tempo_map, changes)

    @mcp.tool
    def get_time_signatures(midiId: str) -> str:
        """Get time signature changes."""
        return on_session(midiId, ops_meta.op_get_time_signatures)

    @mcp.tool
    def set_time_signatures(midiId: str, changes: list[Json]) -> str:
        """Replace time signature changes: [{ticks, numerator, denominator}]."""
        return on_session(midiId, ops_meta.op_set_time_signatures, changes)

    @mcp.tool
    def set_timeline(midiId: str, changes: list[Json]) -> str:
        """Apply mixed changes: {type: tempo, ticks, bpm} | {type: timeSignature, ticks, numerator, denominator}."""
        return on_session(midiId, ops_meta.op_set_timeline, changes)

    # -- Tracks ----------------------------------------------------------------

    @mcp.tool
    def get_tracks(midiId: str) -> str:
        """List tracks with channel, program, GM instrument name and note count."""
        return on_session(midiId, ops_editing.op_get_tracks)

    @mcp.tool
    def add_track(
        midiId: str,
        name: str | None = None,
        channel: int | None = None,
        instrument: int | None = None,
    ) -> str:
        """Add a track; returns {trackId}."""
        return on_session(midiId, ops_editing.op_add_track, name, channel, instrument)

    @mcp.tool
    def remove_track(midiId: str, trackId: int) -> str:
        """Remove a track; later track ids shift down by one."""
        return on_session(midiId, ops_editing.op_remove_track, trackId)

    @mcp.tool
    def set_track_props(
        midiId: str,
        trackId: int,
        name: str | None = None,
        channel: int | None = None,
        instrument: int | None = None,
    ) -> str:
        """Update track name, channel or GM program."""
        return on_session(
            midiId, ops_editing.op_set_track_props, trackId, name, channel, instrument,
        )

    # -- Events ----------------------------------------------------------------

    @mcp.tool
    def get_events(
        midiId: str,
        trackId: int,
        range: Json | None = None,
        filter: Json | None = None,
        offset: int | None = None,
        limit: int | None = None,
    ) -> str:
        """Page through a track's events; returns {total, nextOffset, events}."""
        return on_session(
            midiId, queries.query_events, trackId, range, filter, offset, limit,
        )

    @mcp.tool
    def get_all_events(
        midiId: str,
        trackId: int,
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """All matching events of a track, without paging."""
        return on_session(midiId, queries.query_all_events, trackId, range, filter)

    @mcp.tool
    def insert_events(
        midiId: str,
        trackId: int,
        events: list[Json] | None = None,
        notes: list[Json] | None = None,
        cc: list[Json] | None = None,
        pitchbends: list[Json] | None = None,
    ) -> str:
        """Insert notes, control changes and pitch bends."""
        return on_session(
            midiId, ops_editing.op_insert_events, trackId, events, notes, cc, pitchbends,
        )

    @mcp.tool
    def insert_cc(midiId: str, trackId: int, events: list[Json]) -> str:
        """Insert control changes: [{number, value, ticks}]."""
        return on_session(midiId, ops_editing.op_insert_cc, trackId, events)

    @mcp.tool
    def insert_pitchbend(midiId: str, trackId: int, events: list[Json]) -> str:
        """Insert pitch bends: [{value, ticks}]."""
        return on_session(midiId, ops_editing.op_insert_pitchbend, trackId, events)

    @mcp.tool
    def remove_events(
        midiId: str,
        trackId: int,
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """Remove matching events of every type."""
        return on_session(midiId, ops_editing.op_remove_events, trackId, range, filter)

    @mcp.tool
    def remove_cc(
        midiId: str,
        trackId: int,
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """Remove matching control changes."""
        return on_session(midiId, ops_editing.op_remove_cc, trackId, range, filter)

    @mcp.tool
    def remove_pitchbend(midiId: str, trackId: int, range: Json | None = None) -> str:
        """Remove pitch bends in range."""
        return on_session(midiId, ops_editing.op_remove_pitchbend, trackId, range)

    @mcp.tool
    def copy_events(
        midiId: str,
        srcTrackId: int,
        dstTrackId: int,
        deltaTicks: int = 0,
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """Copy matching events to another track, shifted by deltaTicks."""
        return on_session(
            midiId, ops_editing.op_copy_events,
            srcTrackId, dstTrackId, deltaTicks, range, filter,
        )

    # -- Transforms ------------------------------------------------------------

    @mcp.tool
    def quantize(
        midiId: str,
        trackId: int,
        grid: str | int,
        strength: float | None = None,
        swing: float | None = None,
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """Quantize note starts to a grid ('1/16' or ticks) with strength and swing 0-1."""
        return on_session(
            midiId, ops_transform.op_quantize,
            trackId, grid, strength, swing, range, filter,
        )

    @mcp.tool
    def humanize(
        midiId: str,
        trackId: int,
        timingMs: float | None = None,
        velocity: float | None = None,
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """Randomize note timing (±timingMs) and velocity (±velocity)."""
        return on_session(
            midiId, ops_transform.op_humanize,
            trackId, timingMs, velocity, range, filter,
        )

    @mcp.tool
    def transpose(
        midiId: str,
        trackId: int,
        semitones: int,
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """Transpose notes by semitones, clamped to 0-127."""
        return on_session(
            midiId, ops_transform.op_transpose, trackId, semitones, range, filter,
        )

    @mcp.tool
    def constrain_to_scale(
        midiId: str,
        trackId: int,
        key: str,
        scale: str,
        strategy: Literal["nearest", "up", "down"] = "nearest",
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """Move out-of-scale notes into key/scale (major, minor, dorian, mixolydian, ...)."""
        return on_session(
            midiId, ops_transform.op_constrain_to_scale,
            trackId, key, scale, strategy, range, filter,
        )

    @mcp.tool
    def fix_overlaps(
        midiId: str,
        trackId: int,
        mode: Literal["trim", "remove"] = "trim",
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """Trim or remove overlapping notes of the same pitch and channel."""
        return on_session(
            midiId, ops_transform.op_fix_overlaps, trackId, mode, range, filter,
        )

    @mcp.tool
    def legato(
        midiId: str,
        trackId: int,
        gapTicks: int | None = None,
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """Extend each note to the next note's start minus gapTicks."""
        return on_session(
            midiId, ops_transform.op_legato, trackId, gapTicks, range, filter,
        )

    @mcp.tool
    def trim_notes(
        midiId: str,
        trackId: int,
        minDuration: int | None = None,
        range: Json | None = None,
        filter: Json | None = None,
    ) -> str:
        """Remove notes shorter than minDuration ticks."""
        return on_session(
            midiId, ops_transform.op_trim_notes, trackId, minDuration, range, filter,
        )

    # -- Analysis --------------------------------------------------------------

    @mcp.tool
    def validate(midiId: str) -> str:
        """Validate MIDI for common issues; returns [{type, message}]."""
        return on_session(midiId, queries.query_validate)

    @mcp.tool
    def diff(midiIdA: str, midiIdB: str, range: Json | None = None) -> str:
        """Compare track and note counts of two sessions."""
        return guarded(lambda: queries.query_diff(repo, midiIdA, midiIdB, range))

    @mcp.tool
    def export_report(midiId: str, format: Literal["json", "txt"] = "json") -> str:
        """Write a validation report under reports/; returns {filePath}."""
        return on_session(midiId, queries.query_export_report, format)
