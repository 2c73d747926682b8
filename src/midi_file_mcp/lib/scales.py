"""Key names and scale interval tables for pitch-class constraints."""

from __future__ import annotations

from midi_file_mcp.errors import ValidationError

KEY_NAMES: list[str] = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

_FLAT_ALIASES: dict[str, str] = {
    "Db": "C#",
    "Eb": "D#",
    "Gb": "F#",
    "Ab": "G#",
    "Bb": "A#",
}

SCALES: dict[str, list[int]] = {
    "major": [0, 2, 4, 5, 7, 9, 11],
    "ionian": [0, 2, 4, 5, 7, 9, 11],
    "minor": [0, 2, 3, 5, 7, 8, 10],
    "aeolian": [0, 2, 3, 5, 7, 8, 10],
    "dorian": [0, 2, 3, 5, 7, 9, 10],
    "phrygian": [0, 1, 3, 5, 7, 8, 10],
    "lydian": [0, 2, 4, 6, 7, 9, 11],
    "mixolydian": [0, 2, 4, 5, 7, 9, 10],
    "locrian": [0, 1, 3, 5, 6, 8, 10],
}


def key_to_pitch_class(key: str) -> int:
    """Return the pitch class (0-11) of a key root such as ``"C#"`` or ``"Bb"``."""
    name = key.strip()
    name = name[:1].upper() + name[1:].lower()
    name = _FLAT_ALIASES.get(name, name)
    if name not in KEY_NAMES:
        raise ValidationError(
            f"Unknown key: {key}", suggestion="a root such as C, F#, Bb"
        )
    return KEY_NAMES.index(name)


def get_intervals(scale: str) -> list[int] | None:
    """Return the interval array for a scale name, or None if unknown."""
    return SCALES.get(scale.strip().lower())


def build_scale(key: str, scale: str) -> frozenset[int]:
    """Allowed pitch classes for *key* + *scale*."""
    root = key_to_pitch_class(key)
    intervals = get_intervals(scale)
    if intervals is None:
        raise ValidationError(
            f"Unknown scale: {scale}", suggestion=", ".join(SCALES)
        )
    return frozenset((root + i) % 12 for i in intervals)
