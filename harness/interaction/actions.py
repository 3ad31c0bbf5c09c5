"""MobileActions: the public interaction surface used by test code.

Each click variant has its own entry point:

- ``click(locator)``: a Locator
- ``click_text(text=... | contains=...)``: a locator synthesized from text
- ``click_from_event(name, pattern)``: a locator synthesized from the item
  named in a matching telemetry event

Every public method runs inside a ``step`` reporting span.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import re
from typing import Any, Awaitable, Callable, Union

from harness.config import HarnessConfig
from harness.device.webdriver_client import ElementHandle, WebDriverClient
from harness.events.correlator import EventCorrelator
from harness.interaction import gestures
from harness.interaction.alerts import AlertHandler
from harness.interaction.resolver import ElementResolver
from harness.interaction.steps import step
from harness.locators import locator as q
from harness.locators.locator import Locator
from harness.models import (
    EventPosition,
    MisconfigurationError,
    Platform,
    Point,
    ScrollDirection,
    TelemetryEvent,
)

logger = logging.getLogger("mobile-harness.actions")

WaitCondition = Callable[[], Union[bool, Awaitable[bool]]]

# Scroll defaults for click-from-event: the target is usually just below the fold
EVENT_CLICK_SCROLL_COUNT = 1
EVENT_CLICK_SCROLL_CAPACITY = 0.7

# Android key names accepted by perform_native_action, as KEYCODE_* values
ANDROID_KEYCODES = {
    "home": 3,
    "back": 4,
    "tab": 61,
    "space": 62,
    "enter": 66,
    "del": 67,
    "search": 84,
}


def _digits(text: str) -> int | None:
    digits = re.sub(r"\D+", "", text)
    return int(digits) if digits else None


class MobileActions:
    """High-level, step-reported UI actions for one session.

    Resolution keyword arguments (``pre_delay``, ``search_timeout``,
    ``poll_interval``, ``max_scrolls``, ``scroll_capacity``,
    ``scroll_direction``) default to the session config.
    """

    def __init__(
        self,
        client: WebDriverClient,
        config: HarnessConfig,
        correlator: EventCorrelator,
        resolver: ElementResolver | None = None,
    ) -> None:
        self.client = client
        self.config = config
        self.correlator = correlator
        self.resolver = resolver or ElementResolver(client, config)

    @property
    def platform(self) -> Platform:
        return self.config.platform

    async def _resolve(self, locator: Locator, ordinal: int | None, **opts: Any) -> ElementHandle:
        return await self.resolver.resolve(locator, ordinal, **opts)

    @staticmethod
    def _text_locator(text: str | None, contains: str | None) -> Locator:
        if text and contains:
            raise MisconfigurationError("'text' and 'contains' are mutually exclusive")
        if not text and not contains:
            raise MisconfigurationError("either 'text' or 'contains' is required")
        return Locator.by_text(text) if text else Locator.by_contains(contains or "")

    # ------------------------------------------------------------------
    # Clicks
    # ------------------------------------------------------------------

    async def click(self, locator: Locator, ordinal: int | None = None, **opts: Any) -> None:
        async with step(f"Click {locator.describe(self.platform)}", self.client):
            element = await self._resolve(locator, ordinal, **opts)
            await element.click()

    async def click_text(
        self,
        text: str | None = None,
        contains: str | None = None,
        ordinal: int | None = None,
        **opts: Any,
    ) -> None:
        """Click an element whose text equals *text* or contains *contains*."""
        locator = self._text_locator(text, contains)
        async with step(f"Click text {text or contains!r}", self.client):
            element = await self._resolve(locator, ordinal, **opts)
            await element.click()

    async def click_from_event(
        self,
        event_name: str,
        pattern: str,
        position: EventPosition = EventPosition.FIRST,
        event_timeout: float | None = None,
        **opts: Any,
    ) -> str:
        """Click the item named by a matching event's ``event.data.items``.

        Returns the clicked item's name.
        """
        opts.setdefault("max_scrolls", EVENT_CLICK_SCROLL_COUNT)
        opts.setdefault("scroll_capacity", EVENT_CLICK_SCROLL_CAPACITY)
        timeout = self.config.timeout_event_expectation if event_timeout is None else event_timeout
        async with step(f"Click item from event '{event_name}'", self.client):
            item_name = await self.correlator.find_item_name(
                event_name, pattern, position, timeout,
            )
            locator = Locator(android=q.text(item_name), ios=q.label(item_name))
            element = await self._resolve(locator, None, **opts)
            await element.click()
            return item_name

    # ------------------------------------------------------------------
    # Visibility and input
    # ------------------------------------------------------------------

    async def check_visible(
        self, locator: Locator, ordinal: int | None = None, **opts: Any,
    ) -> ElementHandle:
        async with step(f"Check visible {locator.describe(self.platform)}", self.client):
            return await self._resolve(locator, ordinal, **opts)

    async def check_visible_text(
        self,
        text: str | None = None,
        contains: str | None = None,
        ordinal: int | None = None,
        **opts: Any,
    ) -> ElementHandle:
        locator = self._text_locator(text, contains)
        async with step(f"Check visible text {text or contains!r}", self.client):
            return await self._resolve(locator, ordinal, **opts)

    async def type_text(
        self, locator: Locator, value: str, ordinal: int | None = None, **opts: Any,
    ) -> None:
        async with step(f"Type {value!r} into {locator.describe(self.platform)}", self.client):
            element = await self._resolve(locator, ordinal, **opts)
            await element.set_value(value)

    async def get_text(self, locator: Locator, ordinal: int | None = None, **opts: Any) -> str:
        async with step(f"Get text of {locator.describe(self.platform)}", self.client):
            element = await self._resolve(locator, ordinal, **opts)
            return await element.text()

    async def get_number(
        self, locator: Locator, ordinal: int | None = None, **opts: Any,
    ) -> int | None:
        """Digits of the element's text as an int (e.g. a price), or None."""
        return _digits(await self.get_text(locator, ordinal, **opts))

    async def get_attribute_value(
        self, locator: Locator, attribute: str, ordinal: int | None = None, **opts: Any,
    ) -> str:
        async with step(f"Get '{attribute}' of {locator.describe(self.platform)}", self.client):
            element = await self._resolve(locator, ordinal, **opts)
            value = await element.attribute(attribute)
            return "" if value is None else str(value)

    # ------------------------------------------------------------------
    # Taps
    # ------------------------------------------------------------------

    async def tap_area(
        self,
        x: int,
        y: int,
        pre_delay: float | None = None,
        wait_condition: WaitCondition | None = None,
    ) -> None:
        """Tap screen coordinates.

        With *wait_condition*, poll it (up to *pre_delay*) before tapping;
        otherwise wait for the UI to settle for *pre_delay*.
        """
        delay = self.config.timeout_before_expectation if pre_delay is None else pre_delay
        async with step(f"Tap ({x}, {y})", self.client):
            if wait_condition is not None:
                await self._poll_condition(wait_condition, delay)
            elif delay > 0:
                await self.resolver.wait_for_ui_stable(delay)
            await gestures.perform_tap(self.client, Point(x=x, y=y))

    async def _poll_condition(self, condition: WaitCondition, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            result = condition()
            if inspect.isawaitable(result):
                result = await result
            if result:
                return True
            await asyncio.sleep(self.config.polling_interval)
        return False

    async def tap_element_area(
        self, locator: Locator, x: int, y: int, ordinal: int | None = None, **opts: Any,
    ) -> None:
        """Tap at an offset from the element's top-left corner."""
        async with step(f"Tap ({x}, {y}) in {locator.describe(self.platform)}", self.client):
            element = await self._resolve(locator, ordinal, **opts)
            origin = await element.location()
            await gestures.perform_tap(self.client, Point(x=origin.x + x, y=origin.y + y))

    # ------------------------------------------------------------------
    # Scrolls and swipes
    # ------------------------------------------------------------------

    async def scroll(
        self, direction: ScrollDirection, count: int | None = None, capacity: float | None = None,
    ) -> None:
        count = self.config.scroll_count if count is None else count
        capacity = self.config.scroll_capacity if capacity is None else capacity
        async with step(f"Scroll {direction.value} x{count}", self.client):
            await gestures.scroll_screen(
                self.client, count, capacity, direction, self.config.scroll_coefficient,
            )

    async def scroll_down(self, count: int | None = None, capacity: float | None = None) -> None:
        await self.scroll(ScrollDirection.DOWN, count, capacity)

    async def scroll_up(self, count: int | None = None, capacity: float | None = None) -> None:
        await self.scroll(ScrollDirection.UP, count, capacity)

    async def scroll_left(self, count: int | None = None, capacity: float | None = None) -> None:
        await self.scroll(ScrollDirection.LEFT, count, capacity)

    async def scroll_right(self, count: int | None = None, capacity: float | None = None) -> None:
        await self.scroll(ScrollDirection.RIGHT, count, capacity)

    async def swipe(
        self,
        locator: Locator,
        direction: ScrollDirection,
        count: int | None = None,
        capacity: float | None = None,
    ) -> None:
        count = self.config.scroll_count if count is None else count
        capacity = self.config.scroll_capacity if capacity is None else capacity
        gestures.validate_capacity(capacity)
        async with step(
            f"Swipe {direction.value} x{count} in {locator.describe(self.platform)}", self.client,
        ):
            element = await self._resolve(locator, None)
            await gestures.swipe_element(
                self.client, element, count, capacity, direction, self.config.swipe_coefficient,
            )

    async def swipe_down(self, locator: Locator, count: int | None = None, capacity: float | None = None) -> None:
        await self.swipe(locator, ScrollDirection.DOWN, count, capacity)

    async def swipe_up(self, locator: Locator, count: int | None = None, capacity: float | None = None) -> None:
        await self.swipe(locator, ScrollDirection.UP, count, capacity)

    async def swipe_left(self, locator: Locator, count: int | None = None, capacity: float | None = None) -> None:
        await self.swipe(locator, ScrollDirection.LEFT, count, capacity)

    async def swipe_right(self, locator: Locator, count: int | None = None, capacity: float | None = None) -> None:
        await self.swipe(locator, ScrollDirection.RIGHT, count, capacity)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def check_has_event(
        self, event_name: str, pattern_or_path: str | None = None, timeout: float | None = None,
    ) -> TelemetryEvent:
        timeout = self.config.timeout_event_expectation if timeout is None else timeout
        async with step(f"Check event '{event_name}'"):
            return await self.correlator.await_event(event_name, pattern_or_path, timeout)

    def check_has_event_background(
        self, event_name: str, pattern_or_path: str | None = None, timeout: float | None = None,
    ) -> asyncio.Task[TelemetryEvent]:
        """Start a deferred event check; collect it with :meth:`await_all_event_checks`."""
        timeout = self.config.timeout_event_expectation if timeout is None else timeout
        logger.info("STEP Check event '%s' (background)", event_name)
        return self.correlator.await_event_background(event_name, pattern_or_path, timeout)

    async def await_all_event_checks(self) -> None:
        async with step("Await background event checks"):
            await self.correlator.await_all_background_checks()

    # ------------------------------------------------------------------
    # Device
    # ------------------------------------------------------------------

    async def open_deeplink(self, url: str) -> None:
        async with step(f"Open deeplink {url}", self.client):
            if self.config.is_android():
                args = {"url": url, "package": self.config.app_package}
            else:
                args = {"url": url, "bundleId": self.config.bundle_id}
            await self.client.execute("mobile: deepLink", [args])

    async def perform_native_action(
        self, android_key: int | str | None = None, ios_key: str | None = None,
    ) -> None:
        """Press a hardware/system key: a keycode on Android, typed keys on iOS."""
        async with step("Native action", self.client):
            if self.config.is_android():
                if android_key is None:
                    raise MisconfigurationError("android_key is required on Android")
                keycode = android_key if isinstance(android_key, int) else ANDROID_KEYCODES.get(
                    android_key.lower(),
                )
                if keycode is None:
                    raise MisconfigurationError(f"Unknown Android key {android_key!r}")
                await self.client.execute("mobile: pressKey", [{"keycode": keycode}])
                return
            if not ios_key:
                raise MisconfigurationError("ios_key is required on iOS")
            await self.client.press_keys(ios_key)

    async def tap_enter(self) -> None:
        await self.perform_native_action(android_key="enter", ios_key="\n")

    def alert(self, timeout: float | None = None) -> AlertHandler:
        timeout = self.config.timeout_expectation if timeout is None else timeout
        return AlertHandler(self.client, timeout, self.config.polling_interval)
