"""Shared test fixtures for midi-file-mcp."""

from __future__ import annotations

from pathlib import Path

import pytest

from midi_file_mcp.model.sequence import ControlChange, Note, PitchBend, Sequence
from midi_file_mcp.server.repository import SessionRepository
from midi_file_mcp.server.resolvers import OpContext


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    root = tmp_path / "project"
    root.mkdir()
    return root


@pytest.fixture
def repo(project_root: Path) -> SessionRepository:
    """Repository with one ``default`` project rooted in a temp directory."""
    return SessionRepository({"default": project_root})


@pytest.fixture
def sequence() -> Sequence:
    """120 bpm, 4/4, ppq 480; a Piano track (ch 0) and an empty Bass track (ch 1)."""
    seq = Sequence.create(name="Test Song")
    piano = seq.tracks[seq.add_track("Piano", channel=0, program=0)]
    piano.add_note(Note(pitch=60, start_tick=0, duration_ticks=480, velocity=100 / 127))
    piano.add_note(Note(pitch=64, start_tick=480, duration_ticks=480, velocity=90 / 127))
    piano.add_note(Note(pitch=67, start_tick=960, duration_ticks=480, velocity=80 / 127))
    piano.add_note(Note(pitch=72, start_tick=1920, duration_ticks=960, velocity=70 / 127))
    piano.add_cc(ControlChange(number=64, value=127 / 127, tick=0))
    piano.add_cc(ControlChange(number=64, value=0.0, tick=1800))
    piano.add_pitch_bend(PitchBend(value=0.5, tick=240))
    seq.add_track("Bass", channel=1, program=33)
    return seq


@pytest.fixture
def ctx(repo: SessionRepository, sequence: Sequence) -> OpContext:
    """An open, clean session over the fixture sequence."""
    session = repo.add_session(sequence, project_id="default")
    return OpContext(repo, session)
