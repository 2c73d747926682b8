"""Session lifecycle handlers: open, close, save, commit, backup, restore, revert, create."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from midi_file_mcp.errors import FormatError, NotFoundError, StateError, ValidationError
from midi_file_mcp.serialization.codec import decode, encode
from midi_file_mcp.serialization.payload import sequence_from_composition
from midi_file_mcp.server.formatter import format_payload, format_result
from midi_file_mcp.server.repository import SessionRepository
from midi_file_mcp.server.resolvers import require_path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------

def read_bytes(path: Path) -> bytes:
    if not path.is_file():
        raise NotFoundError(f"file not found: {path.name}")
    return path.read_bytes()


def read_text(path: Path) -> str:
    if not path.is_file():
        raise NotFoundError(f"file not found: {path.name}")
    return path.read_text(encoding="utf-8")


def write_bytes(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    logger.info("wrote %d bytes to %s", len(data), path)


def write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.info("wrote report %s", path)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def session_list_projects(repo: SessionRepository) -> str:
    return format_payload(repo.list_projects())


def session_open(repo: SessionRepository, project_id: str, relative_path: str) -> str:
    path = repo.resolve_path(project_id, require_path("relativePath", relative_path))
    sequence = decode(read_bytes(path))
    session = repo.add_session(sequence, project_id=project_id, file_path=path)
    return format_payload({"midiId": session.id, "path": str(path)})


def session_close(repo: SessionRepository, midi_id: str) -> str:
    repo.close_session(midi_id)
    return format_result(True, f"closed {midi_id}")


def session_save_as(
    repo: SessionRepository,
    midi_id: str,
    relative_path: str,
    project_id: str | None = None,
) -> str:
    """Write to a new path and retarget the session there."""
    with repo.locked(midi_id) as session:
        target_project = project_id or session.project_id
        path = repo.resolve_path(target_project, require_path("relativePath", relative_path))
        write_bytes(path, encode(session.sequence))
        session.project_id = target_project
        session.file_path = path
        session.dirty = False
    return format_payload({"midiId": midi_id, "path": str(path)})


def session_commit(repo: SessionRepository, midi_id: str) -> str:
    with repo.locked(midi_id) as session:
        if session.file_path is None:
            raise StateError(f"No original path for this midiId: {midi_id}")
        if not session.dirty:
            return format_result(True, "noop")
        write_bytes(session.file_path, encode(session.sequence))
        session.dirty = False
    return format_result(True, "ok")


def session_backup(repo: SessionRepository, midi_id: str) -> str:
    with repo.locked(midi_id) as session:
        backup = repo.backup(session)
    return format_payload({"backupId": backup.id})


def session_restore(repo: SessionRepository, backup_id: str) -> str:
    session = repo.restore(backup_id)
    return format_payload({"midiId": session.id})


def session_revert(repo: SessionRepository, midi_id: str) -> str:
    with repo.locked(midi_id) as session:
        repo.revert(session)
    return format_result(True, "ok")


def session_create(
    repo: SessionRepository,
    output_path: str,
    project_id: str = "default",
    composition: dict[str, Any] | None = None,
    composition_file: str | None = None,
) -> str:
    """Build a sequence from a composition description and write it as SMF."""
    if composition is not None and composition_file is not None:
        raise ValidationError("Provide either composition or composition_file, not both")
    require_path("outputPath", output_path)

    data = composition
    if composition_file is not None:
        source = repo.resolve_path(project_id, require_path("composition_file", composition_file))
        try:
            data = json.loads(read_text(source))
        except json.JSONDecodeError as exc:
            raise FormatError(f"composition_file is not valid JSON: {exc.msg}") from exc
    if data is None:
        raise ValidationError("composition or composition_file required")

    sequence = sequence_from_composition(data)
    target = repo.resolve_path(project_id, output_path)
    write_bytes(target, encode(sequence))
    return format_payload({"filePath": str(target)})
