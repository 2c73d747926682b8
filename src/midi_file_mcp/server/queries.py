"""Query handlers for read-only operations: events, validation, diff, reports."""

from __future__ import annotations

import json
from typing import Any

from midi_file_mcp.errors import ValidationError
from midi_file_mcp.model.query import collect_events, collect_issues, diff_sequences, paginate
from midi_file_mcp.serialization.payload import event_to_dict
from midi_file_mcp.server.formatter import format_payload, format_report_text, summarize
from midi_file_mcp.server.repository import SessionRepository
from midi_file_mcp.server.resolvers import (
    OpContext,
    parse_filter,
    parse_range,
    require_int,
)
from midi_file_mcp.server.sessions import write_text

REPORT_FORMATS = ("json", "txt")


def query_events(
    ctx: OpContext,
    track_id: int,
    range: dict[str, Any] | None = None,
    filter: dict[str, Any] | None = None,
    offset: int | None = None,
    limit: int | None = None,
) -> str:
    """One page of a track's events, ascending by tick."""
    track = ctx.track(track_id)
    events = collect_events(track, parse_range(range), parse_filter(filter))
    page = paginate(
        events,
        offset=None if offset is None else require_int("offset", offset),
        limit=None if limit is None else require_int("limit", limit),
    )
    return format_payload({
        "total": page.total,
        "nextOffset": page.next_offset,
        "events": [event_to_dict(e) for e in page.events],
    })


def query_all_events(
    ctx: OpContext,
    track_id: int,
    range: dict[str, Any] | None = None,
    filter: dict[str, Any] | None = None,
) -> str:
    track = ctx.track(track_id)
    events = collect_events(track, parse_range(range), parse_filter(filter))
    return format_payload({
        "total": len(events),
        "nextOffset": None,
        "events": [event_to_dict(e) for e in events],
    })


def query_validate(ctx: OpContext) -> str:
    return format_payload(collect_issues(ctx.sequence))


def query_diff(
    repo: SessionRepository,
    midi_id_a: str,
    midi_id_b: str,
    range: dict[str, Any] | None = None,
) -> str:
    a = repo.get_session(midi_id_a)
    b = repo.get_session(midi_id_b)
    return format_payload(diff_sequences(a.sequence, b.sequence, parse_range(range)))


def query_export_report(ctx: OpContext, format: str = "json") -> str:
    """Write ``reports/midi-report-<midiId>.<format>`` under the project root."""
    if format not in REPORT_FORMATS:
        raise ValidationError(f"format must be json or txt (got {format!r})")
    session = ctx.session
    issues = collect_issues(ctx.sequence)
    if format == "json":
        text = json.dumps(
            {"midiId": session.id, "summary": summarize(ctx.sequence), "issues": issues},
            indent=2,
        )
    else:
        text = format_report_text(session.id, ctx.sequence, issues)
    path = ctx.repo.resolve_path(
        session.project_id, f"reports/midi-report-{session.id}.{format}"
    )
    write_text(path, text)
    return format_payload({"filePath": str(path)})
