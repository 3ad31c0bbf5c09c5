"""Element resolution: stabilize, search alternatives, pick ordinal, scroll, retry.

Each ``resolve`` call runs its own small state machine:

    Searching -> (ScrollAndRetry)* -> Found | Exhausted

Per-query failures (no elements, ordinal out of range, element not visible,
transient protocol errors) are recorded and only surface, aggregated, once
the scroll budget is exhausted.
"""

from __future__ import annotations

import asyncio
import logging
import time

from harness.config import HarnessConfig
from harness.device.webdriver_client import ElementHandle, WebDriverClient
from harness.interaction.gestures import scroll_screen, validate_capacity
from harness.locators.locator import Locator
from harness.models import (
    ElementNotFoundError,
    MisconfigurationError,
    ProtocolError,
    Query,
    ScrollDirection,
)

logger = logging.getLogger("mobile-harness.resolver")


class _QueryFailure(Exception):
    """One alternative failed for this pass; carries the diagnostic reason."""

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class ElementResolver:
    """Resolves Locators to ElementHandles against one automation session."""

    def __init__(self, client: WebDriverClient, config: HarnessConfig) -> None:
        self.client = client
        self.config = config

    async def wait_for_ui_stable(self, timeout: float, poll_interval: float | None = None) -> bool:
        """Poll the page source until two consecutive reads are identical.

        Best effort: returns False when *timeout* elapses first. A zero
        timeout issues no device call.
        """
        if timeout <= 0:
            return True
        interval = poll_interval if poll_interval is not None else self.config.polling_interval
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        previous = await self.client.page_source()
        while loop.time() < deadline:
            await asyncio.sleep(interval)
            current = await self.client.page_source()
            if current == previous:
                return True
            previous = current
        logger.debug("UI still changing after %.1fs", timeout)
        return False

    async def find_all(
        self, query: Query, timeout: float, poll_interval: float,
    ) -> list[ElementHandle]:
        """Search until at least one element is returned or *timeout* elapses.

        At least one search is always issued. A transient ProtocolError is
        retried; if no search ever succeeded, the last one is raised.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        last_error: ProtocolError | None = None
        while True:
            try:
                elements = await self.client.find_elements(query.using, query.value)
                if elements:
                    return elements
                last_error = None
            except ProtocolError as e:
                last_error = e
                logger.debug("Search %s failed: %s", query, e)
            if loop.time() + poll_interval > deadline:
                break
            await asyncio.sleep(poll_interval)
        if last_error is not None:
            raise last_error
        return []

    async def _try_query(
        self, query: Query, ordinal: int, search_timeout: float, poll_interval: float,
    ) -> ElementHandle:
        try:
            elements = await self.find_all(query, search_timeout, poll_interval)
        except ProtocolError as e:
            raise _QueryFailure(str(e), "protocol_error") from e
        if not elements:
            raise _QueryFailure("elements not found", "no_elements")
        if ordinal > len(elements):
            raise _QueryFailure(
                f"element {ordinal} out of range (found {len(elements)})",
                "ordinal_out_of_range",
            )
        element = elements[ordinal - 1]
        try:
            displayed = await element.is_displayed()
        except ProtocolError as e:
            raise _QueryFailure(str(e), "protocol_error") from e
        if not displayed:
            raise _QueryFailure("element found but not visible", "not_visible")
        return element

    async def resolve(
        self,
        locator: Locator,
        ordinal: int | None = None,
        pre_delay: float | None = None,
        search_timeout: float | None = None,
        poll_interval: float | None = None,
        max_scrolls: int | None = None,
        scroll_capacity: float | None = None,
        scroll_direction: ScrollDirection | None = None,
    ) -> ElementHandle:
        """Resolve *locator* to a visible element.

        ``ordinal`` is 1-based; None means the first match. Arguments left as
        None take the session defaults.
        """
        cfg = self.config
        pre_delay = cfg.timeout_before_expectation if pre_delay is None else pre_delay
        search_timeout = cfg.timeout_expectation if search_timeout is None else search_timeout
        poll_interval = cfg.polling_interval if poll_interval is None else poll_interval
        max_scrolls = cfg.scroll_count if max_scrolls is None else max_scrolls
        scroll_capacity = cfg.scroll_capacity if scroll_capacity is None else scroll_capacity
        scroll_direction = scroll_direction or cfg.scroll_direction

        validate_capacity(scroll_capacity)
        index = 1 if ordinal is None else ordinal
        if index < 1:
            raise MisconfigurationError(f"ordinal must be 1 or greater, got {ordinal}")

        start = time.perf_counter()
        await self.wait_for_ui_stable(pre_delay, poll_interval)

        queries = locator.get_all(cfg.platform) or []
        attempted: list[Query] = []
        failed: list[str] = []
        last_failure: _QueryFailure | None = None
        scrolls = 0

        if not queries:
            # Scrolling cannot help a locator with nothing to search for
            raise self._exhausted(attempted, failed, scrolls, search_timeout, None)

        while True:
            for query in queries:
                attempted.append(query)
                try:
                    element = await self._try_query(query, index, search_timeout, poll_interval)
                except _QueryFailure as f:
                    last_failure = f
                    failed.append(str(query))
                    continue
                if failed:
                    logger.info(
                        "Locators not found: %s. Matched with: %s", ", ".join(failed), query,
                    )
                logger.info(
                    "[PERF] resolve %s: %.0fms (scrolls=%d)",
                    query, (time.perf_counter() - start) * 1000, scrolls,
                )
                return element

            if scrolls < max_scrolls:
                await scroll_screen(
                    self.client, 1, scroll_capacity, scroll_direction, cfg.scroll_coefficient,
                )
                scrolls += 1
                continue

            raise self._exhausted(
                attempted, failed, scrolls, search_timeout, last_failure,
            )

    @staticmethod
    def _exhausted(
        attempted: list[Query],
        failed: list[str],
        scrolls: int,
        timeout: float,
        last_failure: _QueryFailure | None,
    ) -> ElementNotFoundError:
        if failed:
            tried = (
                f"Locators not found: {', '.join(failed)} "
                f"out of {', '.join(str(q) for q in attempted)}"
            )
        elif attempted:
            tried = f"Tried locators: {', '.join(str(q) for q in attempted)}"
        else:
            tried = "No locators for the current platform"
        message = f"Elements not found within '{timeout}' seconds after '{scrolls}' scrolls. {tried}"
        if last_failure is not None:
            message += f". Cause: {last_failure}"
        cause = last_failure.__cause__ if last_failure is not None else None
        return ElementNotFoundError(
            message,
            queries=attempted,
            failed=failed,
            scrolls=scrolls,
            timeout=timeout,
            last_error=cause if isinstance(cause, BaseException) else None,
            reason=last_failure.reason if last_failure is not None else "no_query",
        )
