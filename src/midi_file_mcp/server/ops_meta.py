"""Op handlers for timeline metadata: tempo map, time signatures, tick conversions."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from midi_file_mcp.errors import ValidationError
from midi_file_mcp.serialization.payload import (
    read_number,
    tempo_from_dict,
    tempo_to_dict,
    time_signature_from_dict,
    time_signature_to_dict,
    timeline_to_dict,
)
from midi_file_mcp.server.formatter import format_payload, format_result
from midi_file_mcp.server.resolvers import OpContext, parse_bbt, require_int


def op_get_timeline(ctx: OpContext) -> str:
    return format_payload(timeline_to_dict(ctx.sequence))


def op_to_ticks(
    ctx: OpContext,
    bbt: dict[str, Any] | None = None,
    quarter_notes: float | None = None,
    seconds: float | None = None,
) -> str:
    numbers = {"quarterNotes": quarter_notes, "seconds": seconds}
    ticks = ctx.timeline.to_ticks(
        bbt=parse_bbt(bbt),
        quarter_notes=read_number(numbers, "quarterNotes", default=None),
        seconds=read_number(numbers, "seconds", default=None),
    )
    return format_payload({"ticks": ticks})


def op_to_bbt(ctx: OpContext, ticks: int) -> str:
    bbt = ctx.timeline.ticks_to_bbt(require_int("ticks", ticks, low=0))
    return format_payload(asdict(bbt))


# -- Tempo ---------------------------------------------------------------------

def op_get_tempo_map(ctx: OpContext) -> str:
    return format_payload({"tempos": [tempo_to_dict(tc) for tc in ctx.sequence.tempo_map]})


def op_set_tempo_map(ctx: OpContext, changes: list[dict[str, Any]]) -> str:
    """Replace the whole tempo map; an empty list resets to 120 bpm."""
    tempos = [tempo_from_dict(c) for c in _require_list(changes)]
    ctx.sequence.set_tempo_map(tempos)
    ctx.touch()
    return format_result(True, "ok")


# -- Time signatures -------------------------------------------------------------

def op_get_time_signatures(ctx: OpContext) -> str:
    return format_payload({
        "timeSignatures": [
            time_signature_to_dict(ts) for ts in ctx.sequence.time_signatures
        ],
    })


def op_set_time_signatures(ctx: OpContext, changes: list[dict[str, Any]]) -> str:
    """Replace the whole time-signature map; an empty list resets to 4/4."""
    sigs = [time_signature_from_dict(c) for c in _require_list(changes)]
    ctx.sequence.set_time_signatures(sigs)
    ctx.touch()
    return format_result(True, "ok")


def op_set_timeline(ctx: OpContext, changes: list[dict[str, Any]]) -> str:
    """Apply a mixed list of ``{type: tempo|timeSignature, ...}`` changes.

    A map with no entries in *changes* is left as it is.
    """
    tempos = []
    sigs = []
    for index, change in enumerate(_require_list(changes)):
        kind = change.get("type") if isinstance(change, dict) else None
        if kind == "tempo":
            tempos.append(tempo_from_dict(change))
        elif kind == "timeSignature":
            sigs.append(time_signature_from_dict(change))
        else:
            raise ValidationError(
                f"changes[{index}].type must be tempo or timeSignature (got {kind!r})"
            )
    if tempos:
        ctx.sequence.set_tempo_map(tempos)
    if sigs:
        ctx.sequence.set_time_signatures(sigs)
    ctx.touch()
    return format_result(True, "ok")


def _require_list(changes: Any) -> list:
    if not isinstance(changes, list):
        raise ValidationError("changes must be a list")
    return changes
