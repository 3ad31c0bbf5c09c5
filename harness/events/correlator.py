"""Wait for telemetry events and extract click targets from their payloads."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

from harness.config import DEFAULT_EVENT_POLLING_INTERVAL, DEFAULT_TIMEOUT_EVENT_EXPECTATION
from harness.events.store import EventStore
from harness.matching.json_matcher import (
    contains_all,
    contains_json_data,
    extract_event_data,
    load_pattern,
    parse_search,
)
from harness.models import (
    ConsumptionScope,
    EventNotFoundError,
    EventPosition,
    ItemNameMissingError,
    ItemNotFoundError,
    PartialMatchError,
    TelemetryEvent,
)

logger = logging.getLogger("mobile-harness.events")


def serialize_event_data(event: TelemetryEvent) -> str | None:
    """JSON text of an event's request envelope, or None if it has none."""
    if event.data is None:
        return None
    return event.data.model_dump_json()


def event_matches(event: TelemetryEvent, name: str, pattern: str | None) -> bool:
    if event.name != name:
        return False
    if pattern is None:
        return True
    data_json = serialize_event_data(event)
    return data_json is not None and contains_json_data(data_json, pattern)


class EventCorrelator:
    """Correlates UI actions with telemetry arriving in an EventStore.

    Every accepted event is consumed at most once across the session. Two
    waits for the same event name with different patterns therefore compete:
    whichever polls first takes the event. ``ConsumptionScope.WAITER`` lets a
    wait accept an event without taking it away from others.
    """

    def __init__(
        self,
        store: EventStore,
        poll_interval: float = DEFAULT_EVENT_POLLING_INTERVAL,
        scope: ConsumptionScope = ConsumptionScope.SESSION,
    ) -> None:
        self.store = store
        self.poll_interval = poll_interval
        self.scope = scope
        self._jobs: list[asyncio.Task[TelemetryEvent]] = []

    @property
    def pending_checks(self) -> int:
        return sum(1 for job in self._jobs if not job.done())

    # ------------------------------------------------------------------
    # Waiting
    # ------------------------------------------------------------------

    def _accept(self, event: TelemetryEvent, scope: ConsumptionScope) -> bool:
        if scope == ConsumptionScope.WAITER:
            return True
        return self.store.try_consume(event.event_num)

    async def _poll(
        self,
        name: str,
        pattern: str | None,
        timeout: float,
        origin: int,
        scope: ConsumptionScope,
        label: str,
    ) -> TelemetryEvent:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        seen: set[int] = set()
        same_name = 0

        while True:
            for event in self.store.events_since(origin):
                if scope == ConsumptionScope.SESSION and self.store.is_consumed(event.event_num):
                    continue
                if event.name != name:
                    continue
                seen.add(event.event_num)
                if not event_matches(event, name, pattern):
                    same_name += 1
                    continue
                if self._accept(event, scope):
                    logger.info(
                        "Expected event '%s' found (#%d%s)",
                        name, event.event_num, ", by data" if pattern else "",
                    )
                    return event
            if loop.time() >= deadline:
                break
            await asyncio.sleep(self.poll_interval)

        what = f"'{name}' with data '{pattern}'" if pattern else f"'{name}'"
        message = f"Expected event {what} not received within {timeout} seconds{label}"
        if pattern and same_name:
            raise PartialMatchError(
                f"{message}: {len(seen)} '{name}' event(s) arrived but none matched the data",
                event_name=name, pattern=pattern, timeout=timeout, scanned=len(seen),
            )
        raise EventNotFoundError(
            message, event_name=name, pattern=pattern, timeout=timeout, scanned=len(seen),
        )

    async def await_event(
        self,
        name: str,
        pattern_or_path: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_EVENT_EXPECTATION,
        scope: ConsumptionScope | None = None,
    ) -> TelemetryEvent:
        """Block until an unconsumed event named *name* matching the pattern arrives.

        The whole log is scanned on every poll, including events that arrived
        before the call. *pattern_or_path* may name a file holding the pattern.
        """
        pattern = load_pattern(pattern_or_path)
        return await self._poll(name, pattern, timeout, 0, scope or self.scope, "")

    def await_event_background(
        self,
        name: str,
        pattern_or_path: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_EVENT_EXPECTATION,
        scope: ConsumptionScope | None = None,
    ) -> asyncio.Task[TelemetryEvent]:
        """Start a wait that only sees events appended after this call.

        Failures are deferred until :meth:`await_all_background_checks`.
        """
        pattern = load_pattern(pattern_or_path)
        origin = self.store.size
        task = asyncio.create_task(
            self._poll(name, pattern, timeout, origin, scope or self.scope, " (background)"),
            name=f"event-check:{name}",
        )
        self._jobs.append(task)
        logger.debug("Background check for '%s' scheduled from index %d", name, origin)
        return task

    async def await_all_background_checks(self) -> None:
        """Drain and await every background wait, raising the first failure."""
        jobs, self._jobs = self._jobs, []
        if not jobs:
            return
        results = await asyncio.gather(*jobs, return_exceptions=True)
        failures = [r for r in results if isinstance(r, BaseException)]
        for extra in failures[1:]:
            logger.error("Additional background event check failed: %s", extra)
        if failures:
            raise failures[0]

    async def cancel_background_checks(self) -> None:
        """Cancel outstanding background waits without reporting their outcome."""
        jobs, self._jobs = self._jobs, []
        for job in jobs:
            job.cancel()
        await asyncio.gather(*jobs, return_exceptions=True)

    # ------------------------------------------------------------------
    # Click-from-event
    # ------------------------------------------------------------------

    def _matching_events(self, name: str, pattern: str) -> list[TelemetryEvent]:
        return [e for e in self.store.events() if event_matches(e, name, pattern)]

    async def find_item_name(
        self,
        name: str,
        pattern_or_path: str,
        position: EventPosition = EventPosition.FIRST,
        timeout: float = DEFAULT_TIMEOUT_EVENT_EXPECTATION,
        item_pattern: str | None = None,
    ) -> str:
        """Wait for a matching event and return the ``name`` of its target item.

        With ``FIRST`` the event taken by the wait is used; with ``LAST`` the
        newest matching event in the log. The event is unwrapped to
        ``event.data.items``; the first item containing every key/value of
        *item_pattern* (the event pattern by default) is selected.
        """
        pattern = load_pattern(pattern_or_path)
        picked = await self.await_event(name, pattern, timeout)
        if position == EventPosition.LAST:
            picked = (self._matching_events(name, pattern) or [picked])[-1]

        data = extract_event_data(serialize_event_data(picked) or "")
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise PartialMatchError(
                f"Event '{name}' #{picked.event_num} has no event.data.items array",
                event_name=name, pattern=pattern, timeout=timeout, scanned=1,
            )

        search = parse_search(load_pattern(item_pattern) or pattern) or {}
        item = _first_item(items, search)
        if item is None:
            raise ItemNotFoundError(
                f"No item in event '{name}' #{picked.event_num} matches {json.dumps(search)}",
                event_name=name, pattern=pattern, timeout=timeout, scanned=len(items),
            )

        item_name = item.get("name")
        if not isinstance(item_name, str):
            raise ItemNameMissingError(
                f"Item matched in event '{name}' #{picked.event_num} has no string 'name' field",
                event_name=name, pattern=pattern, timeout=timeout, scanned=len(items),
            )
        logger.info("Event '%s' #%d selects item '%s'", name, picked.event_num, item_name)
        return item_name


def _first_item(items: list[Any], search: dict[str, Any]) -> dict[str, Any] | None:
    for item in items:
        if isinstance(item, dict) and contains_all(item, search):
            return item
    return None
