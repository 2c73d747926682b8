"""In-memory registry of open sequences (sessions) and their backups.

The repository owns identifier generation, the dirty flag, path
sandboxing against an explicit project registry, and the
backup / restore / revert lifecycle.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from midi_file_mcp.errors import (
    NotFoundError,
    PathSecurityError,
    StateError,
    ValidationError,
)
from midi_file_mcp.model.sequence import Sequence
from midi_file_mcp.serialization.codec import decode, encode

logger = logging.getLogger(__name__)


@dataclass
class Session:
    id: str
    project_id: str
    sequence: Sequence
    file_path: Path | None = None
    dirty: bool = False
    last_backup_id: str | None = None


@dataclass(frozen=True)
class Backup:
    """Immutable serialized snapshot, independent of the live sequence."""

    id: str
    project_id: str
    file_path: Path | None
    raw_bytes: bytes


def _base36(n: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    out = ""
    while True:
        n, r = divmod(n, 36)
        out = digits[r] + out
        if not n:
            return out


class SessionRepository:
    """Maps opaque ids to Sessions and Backups for a set of project roots."""

    def __init__(self, projects: dict[str, str | Path]) -> None:
        if not projects:
            raise ValidationError("at least one project root is required")
        self.projects: dict[str, Path] = {
            name: Path(root).expanduser().resolve() for name, root in projects.items()
        }
        self.sessions: dict[str, Session] = {}
        self.backups: dict[str, Backup] = {}
        self._issued: set[str] = set()
        self._locks: dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    # -- ids -----------------------------------------------------------------

    def new_id(self, prefix: str) -> str:
        """Time-based id with a random suffix; never repeats within this repository."""
        with self._registry_lock:
            while True:
                candidate = (
                    f"{prefix}_{_base36(time.time_ns() // 1_000_000)}_{uuid.uuid4().hex[:6]}"
                )
                if candidate not in self._issued:
                    self._issued.add(candidate)
                    return candidate

    # -- projects / paths ------------------------------------------------------

    def list_projects(self) -> list[dict[str, str]]:
        return [{"id": name, "path": str(root)} for name, root in self.projects.items()]

    def project_root(self, project_id: str) -> Path:
        root = self.projects.get(project_id)
        if root is None:
            raise NotFoundError(
                f"projectId not found: {project_id}",
                suggestion=", ".join(self.projects),
            )
        return root

    def resolve_path(self, project_id: str, relative_path: str) -> Path:
        """Resolve *relative_path* under the project root; refuse anything outside it."""
        root = self.project_root(project_id)
        target = (root / relative_path).resolve()
        if target != root and root not in target.parents:
            raise PathSecurityError(f"Path escapes project root: {relative_path}")
        return target

    # -- sessions ------------------------------------------------------------

    def add_session(
        self,
        sequence: Sequence,
        project_id: str,
        file_path: Path | None = None,
    ) -> Session:
        self.project_root(project_id)
        session = Session(
            id=self.new_id("midi"),
            project_id=project_id,
            sequence=sequence,
            file_path=file_path,
        )
        self.sessions[session.id] = session
        logger.info("opened session %s (%s)", session.id, file_path or "unsaved")
        return session

    def get_session(self, session_id: str) -> Session:
        session = self.sessions.get(session_id)
        if session is None:
            raise NotFoundError(f"midiId not found: {session_id}")
        return session

    def close_session(self, session_id: str) -> Session:
        session = self.get_session(session_id)
        del self.sessions[session_id]
        self._locks.pop(session_id, None)
        logger.info("closed session %s", session_id)
        return session

    @contextmanager
    def locked(self, session_id: str):
        """Hold the per-session lock; yields the Session."""
        self.get_session(session_id)
        with self._registry_lock:
            lock = self._locks.setdefault(session_id, threading.RLock())
        with lock:
            yield self.get_session(session_id)

    def mark_dirty(self, session: Session) -> None:
        """Flag unsaved changes and re-normalize the header maps."""
        session.dirty = True
        session.sequence.ensure_maps()

    # -- backups -------------------------------------------------------------

    def get_backup(self, backup_id: str) -> Backup:
        backup = self.backups.get(backup_id)
        if backup is None:
            raise NotFoundError(f"backupId not found: {backup_id}")
        return backup

    def backup(self, session: Session) -> Backup:
        backup = Backup(
            id=self.new_id("backup"),
            project_id=session.project_id,
            file_path=session.file_path,
            raw_bytes=encode(session.sequence),
        )
        self.backups[backup.id] = backup
        session.last_backup_id = backup.id
        logger.info("backup %s of session %s", backup.id, session.id)
        return backup

    def restore(self, backup_id: str) -> Session:
        """Decode a backup into a brand-new session."""
        backup = self.get_backup(backup_id)
        return self.add_session(
            decode(backup.raw_bytes),
            project_id=backup.project_id,
            file_path=backup.file_path,
        )

    def revert(self, session: Session) -> None:
        """Replace the session's sequence with its last backup and clear dirty."""
        if session.last_backup_id is None:
            raise StateError(f"no backup for this midiId: {session.id}")
        backup = self.get_backup(session.last_backup_id)
        session.sequence = decode(backup.raw_bytes)
        session.sequence.ensure_maps()
        session.dirty = False
        logger.info("reverted session %s to %s", session.id, backup.id)
