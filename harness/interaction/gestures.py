"""Swipe/scroll geometry and W3C pointer action sequences.

Pure geometry plus device-command issuance; no retries here.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from harness.config import DEFAULT_SCROLL_COEFFICIENT, DEFAULT_SWIPE_COEFFICIENT
from harness.device.webdriver_client import ElementHandle, WebDriverClient
from harness.models import MisconfigurationError, Point, Rect, ScrollDirection

logger = logging.getLogger("mobile-harness.gestures")

POINTER_ID = "finger1"
DWELL_MS = 500  # hold before moving so the gesture is a scroll, not a fling
MOVE_MS = 500


def _round(v: float) -> int:
    """Round half up, matching the coordinates the device side expects."""
    return math.floor(v + 0.5)


def validate_capacity(capacity: float) -> None:
    if not (0 < capacity <= 1.0):
        raise MisconfigurationError(
            f"scroll capacity={capacity} is outside the allowed range (0.0; 1.0]",
        )


def compute_swipe(
    bounds: Rect,
    direction: ScrollDirection,
    capacity: float,
    coefficient: float = DEFAULT_SWIPE_COEFFICIENT,
) -> tuple[Point, Point]:
    """Start and end points of a swipe inside an element's bounds.

    The gesture covers ``capacity`` of the element along the scroll axis,
    inset by ``1 - coefficient`` from each end.
    """
    validate_capacity(capacity)
    if direction.is_vertical:
        height = bounds.height * capacity
        center_x = _round(bounds.x + bounds.width / 2)
        near = bounds.y + height * (1 - coefficient)
        far = bounds.y + height * coefficient
        start_y, end_y = (far, near) if direction == ScrollDirection.DOWN else (near, far)
        return Point(x=center_x, y=_round(start_y)), Point(x=center_x, y=_round(end_y))

    width = bounds.width * capacity
    center_y = _round(bounds.y + bounds.height / 2)
    near = bounds.x + width * (1 - coefficient)
    far = bounds.x + width * coefficient
    start_x, end_x = (far, near) if direction == ScrollDirection.RIGHT else (near, far)
    return Point(x=_round(start_x), y=center_y), Point(x=_round(end_x), y=center_y)


def compute_scroll(
    viewport: Rect,
    direction: ScrollDirection,
    capacity: float,
    coefficient: float = DEFAULT_SCROLL_COEFFICIENT,
) -> tuple[Point, Point]:
    """Start and end points of a full-screen scroll.

    A DOWN scroll starts at ``coefficient`` of the scrolled extent and drags
    to the top edge; UP starts at ``1 - coefficient`` and drags to the far end.
    """
    validate_capacity(capacity)
    if direction.is_vertical:
        height = viewport.height * capacity
        center_x = _round(viewport.width / 2)
        if direction == ScrollDirection.DOWN:
            start_y, end_y = height * coefficient, 0.0
        else:
            start_y, end_y = height * (1 - coefficient), height
        return Point(x=center_x, y=_round(start_y)), Point(x=center_x, y=_round(end_y))

    width = viewport.width * capacity
    center_y = _round(viewport.height / 2)
    if direction == ScrollDirection.RIGHT:
        start_x, end_x = width * coefficient, 0.0
    else:
        start_x, end_x = width * (1 - coefficient), width
    return Point(x=_round(start_x), y=center_y), Point(x=_round(end_x), y=center_y)


def _pointer(actions: list[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{
        "type": "pointer",
        "id": POINTER_ID,
        "parameters": {"pointerType": "touch"},
        "actions": actions,
    }]


def swipe_actions(start: Point, end: Point) -> list[dict[str, Any]]:
    """Move (instant), down, dwell, move (animated), up."""
    return _pointer([
        {"type": "pointerMove", "duration": 0, "x": start.x, "y": start.y},
        {"type": "pointerDown", "button": 0},
        {"type": "pause", "duration": DWELL_MS},
        {"type": "pointerMove", "duration": MOVE_MS, "x": end.x, "y": end.y},
        {"type": "pointerUp", "button": 0},
    ])


def tap_actions(point: Point) -> list[dict[str, Any]]:
    return _pointer([
        {"type": "pointerMove", "duration": 0, "x": point.x, "y": point.y},
        {"type": "pointerDown", "button": 0},
        {"type": "pointerUp", "button": 0},
    ])


async def perform_swipe(client: WebDriverClient, start: Point, end: Point) -> None:
    await client.perform_actions(swipe_actions(start, end))
    await client.release_actions()


async def perform_tap(client: WebDriverClient, point: Point) -> None:
    await client.perform_actions(tap_actions(point))
    await client.release_actions()


async def scroll_screen(
    client: WebDriverClient,
    count: int,
    capacity: float,
    direction: ScrollDirection,
    coefficient: float = DEFAULT_SCROLL_COEFFICIENT,
) -> None:
    """Scroll the whole viewport *count* times."""
    validate_capacity(capacity)
    if count <= 0:
        return
    viewport = await client.window_rect()
    start, end = compute_scroll(viewport, direction, capacity, coefficient)
    for _ in range(count):
        logger.debug("Scroll %s: %s -> %s", direction.value, start, end)
        await perform_swipe(client, start, end)


async def swipe_element(
    client: WebDriverClient,
    element: ElementHandle,
    count: int,
    capacity: float,
    direction: ScrollDirection,
    coefficient: float = DEFAULT_SWIPE_COEFFICIENT,
) -> None:
    """Swipe *count* times inside *element*'s bounds."""
    validate_capacity(capacity)
    if count <= 0:
        return
    bounds = await element.rect()
    start, end = compute_swipe(bounds, direction, capacity, coefficient)
    for _ in range(count):
        logger.debug("Swipe %s in %r: %s -> %s", direction.value, element, start, end)
        await perform_swipe(client, start, end)
