"""API routes for the telemetry receiver: event batches from the app under test."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from harness.events.store import EventStore
from harness.models import EventData, TelemetryEvent

logger = logging.getLogger("mobile-harness.receiver")

router = APIRouter(prefix="/m", tags=["telemetry"])

UNKNOWN_EVENT_NAME = "UNKNOWN"


class EventListResponse(BaseModel):
    events: list[TelemetryEvent]
    total: int


def _get_store(request: Request) -> EventStore:
    return request.app.state.event_store


def _parse_time(raw: Any) -> datetime:
    if isinstance(raw, str) and raw:
        try:
            return datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparsable event_time %r, using receive time", raw)
    return datetime.now(timezone.utc)


def batch_events(payload: Any) -> list[Any]:
    """The ``events`` array of a batch; anything else counts as no events."""
    if not isinstance(payload, dict):
        return []
    raw_events = payload.get("events")
    return raw_events if isinstance(raw_events, list) else []


def build_events(
    payload: dict[str, Any],
    first_num: int,
    *,
    uri: str,
    remote_address: str | None,
    headers: dict[str, str],
    query: dict[str, str],
) -> list[TelemetryEvent]:
    """Turn one ``{"meta": ..., "events": [...]}`` batch into stored events.

    Numbers are assigned from *first_num* in delivery order. The raw event,
    including any client-side ``event_num``, is kept in the envelope body.
    """
    meta = payload.get("meta")
    raw_events = batch_events(payload)
    events: list[TelemetryEvent] = []
    for offset, raw in enumerate(raw_events):
        raw_dict = raw if isinstance(raw, dict) else {"value": raw}
        name = raw_dict.get("name")
        events.append(TelemetryEvent(
            event_time=_parse_time(raw_dict.get("event_time")),
            event_num=first_num + offset,
            name=name if isinstance(name, str) and name else UNKNOWN_EVENT_NAME,
            data=EventData(
                uri=uri,
                remote_address=remote_address,
                headers=headers,
                query=query,
                body=json.dumps({"meta": meta, "event": raw}),
            ),
        ))
    return events


@router.post("/batch")
async def receive_batch(request: Request) -> PlainTextResponse:
    """Accept a batch of application events and append them to the log."""
    resumed = request.app.state.receiver_resumed
    if not resumed.is_set():
        logger.debug("Receiver paused, holding batch")
        await resumed.wait()

    raw = await request.body()
    try:
        payload = json.loads(raw or b"{}")
    except (ValueError, RecursionError):
        return PlainTextResponse("Bad JSON", status_code=400)
    if not isinstance(payload, dict):
        payload = {}

    store = _get_store(request)
    count = len(batch_events(payload))
    first_num = store.reserve(count) if count else store.next_event_num()
    events = build_events(
        payload,
        first_num,
        uri=str(request.url.path) + (f"?{request.url.query}" if request.url.query else ""),
        remote_address=request.client.host if request.client else None,
        headers=dict(request.headers),
        query=dict(request.query_params),
    )
    store.add_events(events)
    return PlainTextResponse("OK")


@router.get("/events", response_model=EventListResponse)
async def list_events(
    request: Request,
    name: str | None = None,
    limit: int = Query(default=100, ge=1, le=10_000),
) -> EventListResponse:
    """List received events, newest last."""
    store = _get_store(request)
    events = store.events_named(name) if name else store.events()
    return EventListResponse(events=events[-limit:], total=len(events))


@router.delete("/events")
async def clear_events(request: Request) -> JSONResponse:
    store = _get_store(request)
    cleared = store.size
    store.clear()
    return JSONResponse({"cleared": cleared})
