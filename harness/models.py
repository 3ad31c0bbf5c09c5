"""Core data models, enums and the error taxonomy shared by every component."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Platform(str, enum.Enum):
    """Target platform of the automation session."""

    ANDROID = "android"
    IOS = "ios"

    @classmethod
    def parse(cls, value: str | None) -> Platform:
        """Parse a platform name, falling back to Android for unknown values."""
        if value and value.strip().lower() == "ios":
            return cls.IOS
        return cls.ANDROID


class Strategy(str, enum.Enum):
    """WebDriver / Appium locator strategies."""

    XPATH = "xpath"
    ACCESSIBILITY_ID = "accessibility id"
    ANDROID_UIAUTOMATOR = "-android uiautomator"
    IOS_CLASS_CHAIN = "-ios class chain"
    IOS_PREDICATE = "-ios predicate string"
    CSS_SELECTOR = "css selector"
    ID = "id"
    CLASS_NAME = "class name"


class ScrollDirection(str, enum.Enum):
    DOWN = "down"
    UP = "up"
    LEFT = "left"
    RIGHT = "right"

    @property
    def is_vertical(self) -> bool:
        return self in (ScrollDirection.DOWN, ScrollDirection.UP)


class EventPosition(str, enum.Enum):
    """Which of several matching events a click-from-event uses."""

    FIRST = "first"
    LAST = "last"


class ConsumptionScope(str, enum.Enum):
    """How an accepted event is marked.

    SESSION: the event becomes unavailable to every later wait (default).
    WAITER: the event is accepted without setting the shared marker.
    """

    SESSION = "session"
    WAITER = "waiter"


class Query(BaseModel):
    """A concrete element query: a strategy plus its expression."""

    model_config = ConfigDict(frozen=True)

    using: str
    value: str

    def __str__(self) -> str:
        return f"{self.using}={self.value}"


class Point(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: int
    y: int


class Rect(BaseModel):
    """Bounding rectangle in device pixels."""

    x: float = 0
    y: float = 0
    width: float
    height: float


# ---------------------------------------------------------------------------
# Telemetry
# ---------------------------------------------------------------------------


class EventData(BaseModel):
    """Request envelope captured by the telemetry receiver.

    ``body`` is the JSON text ``{"meta": ..., "event": ...}`` where ``event`` is
    the raw event object posted by the application.
    """

    uri: str = ""
    remote_address: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    query: dict[str, str] = Field(default_factory=dict)
    body: str = ""


class TelemetryEvent(BaseModel):
    """A sequence-numbered application event stored in the event log."""

    event_time: datetime
    event_num: int
    name: str
    data: EventData | None = None


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class HarnessError(Exception):
    """Base class for every failure raised by the harness."""

    def __init__(self, message: str, **detail: Any) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotFoundError(HarnessError):
    """Nothing matched within the time and scroll budget."""


class ElementNotFoundError(NotFoundError):
    """An element could not be resolved.

    ``reason`` is the cause recorded for the last query tried:
    ``no_query``, ``no_elements``, ``ordinal_out_of_range``, ``not_visible``
    or ``protocol_error``.
    """

    def __init__(
        self,
        message: str,
        *,
        queries: list[Query] | None = None,
        failed: list[str] | None = None,
        scrolls: int = 0,
        timeout: float = 0,
        last_error: BaseException | None = None,
        reason: str = "no_elements",
    ) -> None:
        super().__init__(
            message,
            queries=queries or [],
            failed=failed or [],
            scrolls=scrolls,
            timeout=timeout,
            reason=reason,
        )
        self.queries = queries or []
        self.failed = failed or []
        self.scrolls = scrolls
        self.timeout = timeout
        self.last_error = last_error
        self.reason = reason


class EventNotFoundError(NotFoundError):
    """No unconsumed event with the given name and pattern arrived in time."""

    def __init__(
        self,
        message: str,
        *,
        event_name: str,
        pattern: str | None = None,
        timeout: float = 0,
        scanned: int = 0,
    ) -> None:
        super().__init__(
            message, event_name=event_name, pattern=pattern,
            timeout=timeout, scanned=scanned,
        )
        self.event_name = event_name
        self.pattern = pattern
        self.timeout = timeout
        self.scanned = scanned


class PartialMatchError(EventNotFoundError):
    """Events with the name arrived but their payload did not satisfy the pattern."""


class ItemNotFoundError(PartialMatchError):
    """The matched event carries no ``items`` element satisfying the item pattern."""


class ItemNameMissingError(PartialMatchError):
    """The matching item has no string ``name`` field."""


class MisconfigurationError(HarnessError, ValueError):
    """Invalid argument or argument combination. Never retried."""


class ProtocolError(HarnessError):
    """The automation protocol call itself failed."""

    def __init__(
        self,
        message: str,
        *,
        tool: str = "webdriver",
        status: int | None = None,
        error: str | None = None,
    ) -> None:
        super().__init__(message, tool=tool, status=status, error=error)
        self.tool = tool
        self.status = status
        self.error = error
