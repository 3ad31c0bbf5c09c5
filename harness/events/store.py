"""Append-only telemetry event log with at-most-once consumption markers.

Readers take snapshots of the log without locking; the log only grows.
The consumed-marker set is shared by every waiter, and ``try_consume`` is the
one place where it changes.
"""

from __future__ import annotations

import logging
import threading

from harness.models import TelemetryEvent

logger = logging.getLogger("mobile-harness.events")


class EventStore:
    """Ordered event log shared by the telemetry receiver and the correlator."""

    def __init__(self) -> None:
        self._events: list[TelemetryEvent] = []
        self._numbers: set[int] = set()
        self._consumed: set[int] = set()
        self._reserved = 0
        # Guards appends and marker insertion. The receiver may run on another
        # thread when it is served outside the test's event loop.
        self._lock = threading.Lock()

    @property
    def size(self) -> int:
        return len(self._events)

    def add_events(self, events: list[TelemetryEvent]) -> int:
        """Append events in delivery order, skipping already-known numbers.

        Returns the number of events actually appended.
        """
        added = 0
        with self._lock:
            for event in events:
                if event.event_num in self._numbers:
                    continue
                self._numbers.add(event.event_num)
                self._events.append(event)
                added += 1
                logger.info(
                    "Event received: #%d %s at %s",
                    event.event_num, event.name, event.event_time.isoformat(),
                )
        return added

    def next_event_num(self) -> int:
        """The number the next appended event should carry."""
        with self._lock:
            last = self.last_event.event_num if self.last_event else 0
            return max(last, self._reserved) + 1

    def reserve(self, count: int) -> int:
        """Return the first of *count* consecutive numbers for a new batch.

        Numbers are strictly increasing across calls even before the batch is
        appended.
        """
        with self._lock:
            last = self.last_event.event_num if self.last_event else 0
            first = max(last, self._reserved) + 1
            self._reserved = first + count - 1
            return first

    def events(self) -> list[TelemetryEvent]:
        """Snapshot of the whole log."""
        return list(self._events)

    def events_since(self, index: int) -> list[TelemetryEvent]:
        """Snapshot of the events appended at or after position *index*."""
        return self._events[index:]

    def events_named(self, name: str) -> list[TelemetryEvent]:
        return [e for e in self._events if e.name == name]

    @property
    def last_event(self) -> TelemetryEvent | None:
        return self._events[-1] if self._events else None

    def try_consume(self, event_num: int) -> bool:
        """Atomically mark an event as consumed.

        Returns True only for the caller that inserted the marker.
        """
        with self._lock:
            if event_num in self._consumed:
                return False
            self._consumed.add(event_num)
            return True

    def is_consumed(self, event_num: int) -> bool:
        return event_num in self._consumed

    def clear(self) -> None:
        """Drop every event and marker. Used between test cases."""
        with self._lock:
            self._events.clear()
            self._numbers.clear()
            self._consumed.clear()
            self._reserved = 0
