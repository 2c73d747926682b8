"""Op handlers for note transforms.

Each handler resolves the track, range and filter, runs the transform
and marks the session dirty, even when nothing matched.
"""

from __future__ import annotations

import logging
from typing import Any

from midi_file_mcp.model import transforms
from midi_file_mcp.serialization.payload import read_number
from midi_file_mcp.server.formatter import format_result
from midi_file_mcp.server.resolvers import (
    OpContext,
    parse_filter,
    parse_range,
    require_int,
)

logger = logging.getLogger(__name__)

Selection = dict[str, Any] | None


def _number(label: str, value: Any, default: float | None) -> float | None:
    return read_number({label: value}, label, default=default)


def _finish(ctx: OpContext, name: str, count: int) -> str:
    ctx.touch()
    logger.debug("%s on %s: %d notes", name, ctx.session.id, count)
    return format_result(True, "ok")


def op_quantize(
    ctx: OpContext,
    track_id: int,
    grid: str | int,
    strength: float | None = None,
    swing: float | None = None,
    range: Selection = None,
    filter: Selection = None,
) -> str:
    track = ctx.track(track_id)
    count = transforms.quantize(
        track,
        ctx.sequence.ppq,
        grid,
        strength=_number("strength", strength, 1.0),
        swing=_number("swing", swing, 0.0),
        tick_range=parse_range(range),
        event_filter=parse_filter(filter),
    )
    return _finish(ctx, "quantize", count)


def op_humanize(
    ctx: OpContext,
    track_id: int,
    timing_ms: float | None = None,
    velocity: float | None = None,
    range: Selection = None,
    filter: Selection = None,
) -> str:
    track = ctx.track(track_id)
    count = transforms.humanize(
        track,
        ctx.timeline,
        timing_ms=_number("timingMs", timing_ms, 0.0),
        velocity=_number("velocity", velocity, None),
        tick_range=parse_range(range),
        event_filter=parse_filter(filter),
    )
    return _finish(ctx, "humanize", count)


def op_transpose(
    ctx: OpContext,
    track_id: int,
    semitones: int,
    range: Selection = None,
    filter: Selection = None,
) -> str:
    track = ctx.track(track_id)
    count = transforms.transpose(
        track,
        require_int("semitones", semitones),
        tick_range=parse_range(range),
        event_filter=parse_filter(filter),
    )
    return _finish(ctx, "transpose", count)


def op_constrain_to_scale(
    ctx: OpContext,
    track_id: int,
    key: str,
    scale: str,
    strategy: str = "nearest",
    range: Selection = None,
    filter: Selection = None,
) -> str:
    track = ctx.track(track_id)
    count = transforms.constrain_to_scale(
        track,
        key,
        scale,
        strategy=strategy,
        tick_range=parse_range(range),
        event_filter=parse_filter(filter),
    )
    return _finish(ctx, "constrain_to_scale", count)


def op_fix_overlaps(
    ctx: OpContext,
    track_id: int,
    mode: str = "trim",
    range: Selection = None,
    filter: Selection = None,
) -> str:
    track = ctx.track(track_id)
    count = transforms.fix_overlaps(
        track,
        mode=mode,
        tick_range=parse_range(range),
        event_filter=parse_filter(filter),
    )
    return _finish(ctx, "fix_overlaps", count)


def op_legato(
    ctx: OpContext,
    track_id: int,
    gap_ticks: int | None = None,
    range: Selection = None,
    filter: Selection = None,
) -> str:
    track = ctx.track(track_id)
    gap = 0 if gap_ticks is None else require_int("gapTicks", gap_ticks, low=0)
    count = transforms.legato(
        track,
        gap_ticks=gap,
        tick_range=parse_range(range),
        event_filter=parse_filter(filter),
    )
    return _finish(ctx, "legato", count)


def op_trim_notes(
    ctx: OpContext,
    track_id: int,
    min_duration: int | None = None,
    range: Selection = None,
    filter: Selection = None,
) -> str:
    track = ctx.track(track_id)
    minimum = 1 if min_duration is None else require_int("minDuration", min_duration, low=1)
    count = transforms.trim_notes(
        track,
        min_duration=minimum,
        tick_range=parse_range(range),
        event_filter=parse_filter(filter),
    )
    return _finish(ctx, "trim_notes", count)
