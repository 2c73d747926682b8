"""Custom exception hierarchy for midi-file-mcp."""

from __future__ import annotations


class MidiMcpError(Exception):
    """Base exception for all midi-file-mcp errors.

    *suggestion* is an optional hint rendered as a ``try:`` line.
    """

    kind = "Error"

    def __init__(self, message: str = "", suggestion: str | None = None) -> None:
        super().__init__(message)
        self.suggestion = suggestion


class NotFoundError(MidiMcpError, KeyError):
    """Unknown session, backup, track or project id."""

    kind = "NotFound"

    def __str__(self) -> str:
        # KeyError.__str__ would wrap the message in quotes
        return str(self.args[0]) if self.args else ""


class ValidationError(MidiMcpError, ValueError):
    """Invalid user input (range, missing alternative, unknown name, etc.).

    Subclasses both MidiMcpError and ValueError so plain ``except ValueError``
    handlers keep working.
    """

    kind = "ValidationError"


class PathSecurityError(MidiMcpError):
    """A resolved path escapes its project root."""

    kind = "PathSecurityError"


class FormatError(MidiMcpError):
    """Malformed MIDI bytes or composition data."""

    kind = "FormatError"


class StateError(MidiMcpError):
    """Invalid operation given the current session state."""

    kind = "StateError"
