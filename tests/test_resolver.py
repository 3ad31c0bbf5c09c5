"""Tests for ElementResolver: alternatives, ordinals, scrolling and diagnostics."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from harness.config import HarnessConfig
from harness.interaction.resolver import ElementResolver
from harness.locators.locator import Locator
from harness.models import (
    ElementNotFoundError,
    MisconfigurationError,
    Platform,
    ProtocolError,
    Query,
    Rect,
)

Q1 = Query(using="xpath", value="//missing")
Q2 = Query(using="xpath", value="//item")


def _element(name: str, displayed: bool = True) -> MagicMock:
    el = MagicMock(name=name)
    el.is_displayed = AsyncMock(return_value=displayed)
    return el


def _client(find_results=None, find_side_effect=None) -> MagicMock:
    client = MagicMock()
    if find_side_effect is not None:
        client.find_elements = AsyncMock(side_effect=find_side_effect)
    else:
        client.find_elements = AsyncMock(return_value=find_results or [])
    client.page_source = AsyncMock(return_value="<hierarchy/>")
    client.window_rect = AsyncMock(return_value=Rect(width=1080, height=2400))
    client.perform_actions = AsyncMock()
    client.release_actions = AsyncMock()
    return client


def _resolver(client, **overrides) -> ElementResolver:
    settings = {"platform": Platform.ANDROID, "polling_interval": 0.01, **overrides}
    config = HarnessConfig(**settings)
    return ElementResolver(client, config)


# ---------------------------------------------------------------------------
# Successful resolution
# ---------------------------------------------------------------------------


class TestResolve:
    @pytest.mark.asyncio
    async def test_second_alternative_with_ordinal(self):
        """First alternative empty, second returns three: ordinal 2 is picked."""
        items = [_element("a"), _element("b"), _element("c")]
        client = _client(find_side_effect=[[], items])
        resolver = _resolver(client)

        el = await resolver.resolve(
            Locator.by_android_locators([Q1, Q2]), ordinal=2, search_timeout=0,
        )

        assert el is items[1]
        assert client.find_elements.await_count == 2
        client.find_elements.assert_any_await("xpath", "//missing")
        client.find_elements.assert_any_await("xpath", "//item")
        client.perform_actions.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_default_ordinal_is_first(self):
        items = [_element("a"), _element("b")]
        resolver = _resolver(_client(find_results=items))
        el = await resolver.resolve(Locator(android=Q2), search_timeout=0)
        assert el is items[0]

    @pytest.mark.asyncio
    async def test_found_after_one_scroll(self):
        item = _element("a")
        client = _client(find_side_effect=[[], [item]])
        resolver = _resolver(client)

        el = await resolver.resolve(Locator(android=Q2), search_timeout=0, max_scrolls=3)

        assert el is item
        assert client.perform_actions.await_count == 1
        assert client.release_actions.await_count == 1

    @pytest.mark.asyncio
    async def test_transient_protocol_error_is_retried(self):
        item = _element("a")
        client = _client(find_side_effect=[ProtocolError("stale"), [item]])
        resolver = _resolver(client)
        el = await resolver.resolve(Locator(android=Q2), search_timeout=1, poll_interval=0.01)
        assert el is item

    @pytest.mark.asyncio
    async def test_platform_selects_queries(self):
        item = _element("a")
        client = _client(find_results=[item])
        resolver = _resolver(client, platform=Platform.IOS)
        await resolver.resolve(Locator(android=Q1, ios=Q2), search_timeout=0)
        client.find_elements.assert_awaited_once_with("xpath", "//item")


# ---------------------------------------------------------------------------
# Exhaustion and diagnostics
# ---------------------------------------------------------------------------


class TestExhausted:
    @pytest.mark.asyncio
    async def test_ordinal_out_of_range(self):
        resolver = _resolver(_client(find_results=[_element("a"), _element("b")]))
        with pytest.raises(ElementNotFoundError) as exc_info:
            await resolver.resolve(Locator(android=Q2), ordinal=5, search_timeout=0)
        err = exc_info.value
        assert err.reason == "ordinal_out_of_range"
        assert "element 5 out of range (found 2)" in str(err)

    @pytest.mark.asyncio
    async def test_no_elements(self):
        resolver = _resolver(_client(find_results=[]))
        with pytest.raises(ElementNotFoundError) as exc_info:
            await resolver.resolve(Locator.by_android_locators([Q1, Q2]), search_timeout=0)
        err = exc_info.value
        assert err.reason == "no_elements"
        assert err.failed == [str(Q1), str(Q2)]
        assert "after '0' scrolls" in str(err)
        assert "xpath=//missing" in str(err)

    @pytest.mark.asyncio
    async def test_not_visible(self):
        resolver = _resolver(_client(find_results=[_element("a", displayed=False)]))
        with pytest.raises(ElementNotFoundError) as exc_info:
            await resolver.resolve(Locator(android=Q2), search_timeout=0)
        assert exc_info.value.reason == "not_visible"
        assert "not visible" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_protocol_error_is_cause(self):
        boom = ProtocolError("session gone", status=404, error="invalid session id")
        resolver = _resolver(_client(find_side_effect=boom))
        with pytest.raises(ElementNotFoundError) as exc_info:
            await resolver.resolve(Locator(android=Q2), search_timeout=0)
        err = exc_info.value
        assert err.reason == "protocol_error"
        assert err.last_error is boom

    @pytest.mark.asyncio
    async def test_scroll_budget(self):
        client = _client(find_results=[])
        resolver = _resolver(client)
        with pytest.raises(ElementNotFoundError) as exc_info:
            await resolver.resolve(Locator(android=Q2), search_timeout=0, max_scrolls=2)
        assert exc_info.value.scrolls == 2
        assert client.find_elements.await_count == 3
        assert client.perform_actions.await_count == 2
        assert "after '2' scrolls" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_no_query_for_platform(self):
        client = _client()
        resolver = _resolver(client)
        with pytest.raises(ElementNotFoundError) as exc_info:
            await resolver.resolve(Locator(ios=Q2), search_timeout=5, max_scrolls=3)
        assert exc_info.value.reason == "no_query"
        client.find_elements.assert_not_awaited()
        client.perform_actions.assert_not_awaited()


# ---------------------------------------------------------------------------
# Argument validation
# ---------------------------------------------------------------------------


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("capacity", [0, -0.5, 1.5])
    async def test_capacity_out_of_range(self, capacity):
        client = _client(find_results=[_element("a")])
        resolver = _resolver(client)
        with pytest.raises(MisconfigurationError):
            await resolver.resolve(Locator(android=Q2), scroll_capacity=capacity)
        client.find_elements.assert_not_awaited()
        client.page_source.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ordinal_below_one(self):
        client = _client(find_results=[_element("a")])
        resolver = _resolver(client)
        with pytest.raises(MisconfigurationError):
            await resolver.resolve(Locator(android=Q2), ordinal=0)
        client.find_elements.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_misconfiguration_is_value_error(self):
        resolver = _resolver(_client())
        with pytest.raises(ValueError):
            await resolver.resolve(Locator(android=Q2), scroll_capacity=2)


# ---------------------------------------------------------------------------
# UI stabilization
# ---------------------------------------------------------------------------


class TestWaitForUiStable:
    @pytest.mark.asyncio
    async def test_zero_timeout_makes_no_call(self):
        client = _client()
        assert await _resolver(client).wait_for_ui_stable(0) is True
        client.page_source.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_identical_reads(self):
        client = _client()
        assert await _resolver(client).wait_for_ui_stable(1, poll_interval=0.01) is True
        assert client.page_source.await_count == 2

    @pytest.mark.asyncio
    async def test_changing_source_times_out(self):
        client = _client()
        counter = iter(range(10_000))
        client.page_source = AsyncMock(side_effect=lambda: f"<h n='{next(counter)}'/>")
        assert await _resolver(client).wait_for_ui_stable(0.05, poll_interval=0.01) is False

    @pytest.mark.asyncio
    async def test_pre_delay_stabilizes_before_search(self):
        client = _client(find_results=[_element("a")])
        resolver = _resolver(client)
        await resolver.resolve(Locator(android=Q2), pre_delay=1, poll_interval=0.01, search_timeout=0)
        assert client.page_source.await_count == 2
