"""Tests for WebDriverClient: request shapes, element references and errors."""

from __future__ import annotations

import json

import httpx
import pytest

from harness.device.webdriver_client import (
    LEGACY_ELEMENT_KEY,
    W3C_ELEMENT_KEY,
    ElementHandle,
    WebDriverClient,
    element_id_from,
)
from harness.models import ProtocolError, Rect


class Recorder:
    """MockTransport handler that records requests and replies from a route table."""

    def __init__(self, routes: dict[tuple[str, str], tuple[int, object]]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        if key not in self.routes:
            return httpx.Response(404, json={"value": {"error": "unknown command", "message": str(key)}})
        status, value = self.routes[key]
        return httpx.Response(status, json={"value": value})

    def body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content or b"null")


def _client(routes, session_id: str | None = "s1") -> tuple[WebDriverClient, Recorder]:
    recorder = Recorder(routes)
    client = WebDriverClient("http://appium:4723/", transport=httpx.MockTransport(recorder))
    client.session_id = session_id
    return client, recorder


# ---------------------------------------------------------------------------
# Element references
# ---------------------------------------------------------------------------


class TestElementIdFrom:
    def test_w3c_key(self):
        assert element_id_from({W3C_ELEMENT_KEY: "abc"}) == "abc"

    def test_legacy_key(self):
        assert element_id_from({LEGACY_ELEMENT_KEY: "def"}) == "def"

    def test_malformed(self):
        with pytest.raises(ProtocolError):
            element_id_from({"id": "x"})


# ---------------------------------------------------------------------------
# Session lifecycle
# ---------------------------------------------------------------------------


class TestSession:
    @pytest.mark.asyncio
    async def test_create_session(self):
        client, rec = _client({("POST", "/session"): (200, {"sessionId": "new-session-id"})}, None)
        caps = {"platformName": "Android"}
        session_id = await client.create_session(caps)
        assert session_id == "new-session-id"
        assert client.session_id == "new-session-id"
        assert rec.body() == {"capabilities": {"alwaysMatch": caps, "firstMatch": [{}]}}
        await client.close()

    @pytest.mark.asyncio
    async def test_create_session_without_id(self):
        client, _ = _client({("POST", "/session"): (200, {})}, None)
        with pytest.raises(ProtocolError, match="no sessionId"):
            await client.create_session({})
        await client.close()

    @pytest.mark.asyncio
    async def test_close_deletes_session(self):
        client, rec = _client({("DELETE", "/session/s1"): (200, None)})
        await client.close()
        assert client.session_id is None
        assert rec.requests[0].method == "DELETE"

    @pytest.mark.asyncio
    async def test_command_without_session(self):
        client, rec = _client({}, None)
        with pytest.raises(ProtocolError, match="No active WebDriver session"):
            await client.page_source()
        assert rec.requests == []
        await client.close()


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    @pytest.mark.asyncio
    async def test_find_elements(self):
        client, rec = _client({
            ("POST", "/session/s1/elements"): (200, [{W3C_ELEMENT_KEY: "e1"}, {W3C_ELEMENT_KEY: "e2"}]),
        })
        elements = await client.find_elements("xpath", "//a")
        assert elements == [ElementHandle(client, "e1"), ElementHandle(client, "e2")]
        assert rec.body() == {"using": "xpath", "value": "//a"}

    @pytest.mark.asyncio
    async def test_find_elements_empty(self):
        client, _ = _client({("POST", "/session/s1/elements"): (200, [])})
        assert await client.find_elements("xpath", "//none") == []

    @pytest.mark.asyncio
    async def test_window_rect(self):
        client, _ = _client({
            ("GET", "/session/s1/window/rect"): (200, {"x": 0, "y": 0, "width": 1080, "height": 2400}),
        })
        assert await client.window_rect() == Rect(x=0, y=0, width=1080, height=2400)

    @pytest.mark.asyncio
    async def test_perform_and_release_actions(self):
        client, rec = _client({
            ("POST", "/session/s1/actions"): (200, None),
            ("DELETE", "/session/s1/actions"): (200, None),
        })
        await client.perform_actions([{"type": "pointer", "id": "finger1", "actions": []}])
        await client.release_actions()
        assert rec.body(0) == {"actions": [{"type": "pointer", "id": "finger1", "actions": []}]}
        assert rec.requests[1].method == "DELETE"

    @pytest.mark.asyncio
    async def test_press_keys(self):
        client, rec = _client({
            ("POST", "/session/s1/actions"): (200, None),
            ("DELETE", "/session/s1/actions"): (200, None),
        })
        await client.press_keys("ab")
        source = rec.body(0)["actions"][0]
        assert source["type"] == "key"
        assert [a["type"] for a in source["actions"]] == ["keyDown", "keyUp", "keyDown", "keyUp"]
        assert [a["value"] for a in source["actions"]] == ["a", "a", "b", "b"]

    @pytest.mark.asyncio
    async def test_execute(self):
        client, rec = _client({("POST", "/session/s1/execute/sync"): (200, "done")})
        result = await client.execute("mobile: pressKey", [{"keycode": 66}])
        assert result == "done"
        assert rec.body() == {"script": "mobile: pressKey", "args": [{"keycode": 66}]}

    @pytest.mark.asyncio
    async def test_alert_commands(self):
        client, rec = _client({
            ("GET", "/session/s1/alert/text"): (200, "Allow location?"),
            ("POST", "/session/s1/alert/accept"): (200, None),
            ("POST", "/session/s1/alert/dismiss"): (200, None),
        })
        assert await client.alert_text() == "Allow location?"
        await client.accept_alert()
        await client.dismiss_alert()
        assert [r.url.path for r in rec.requests[1:]] == [
            "/session/s1/alert/accept", "/session/s1/alert/dismiss",
        ]


class TestElementHandle:
    @pytest.mark.asyncio
    async def test_state_and_geometry(self):
        client, _ = _client({
            ("GET", "/session/s1/element/e1/displayed"): (200, True),
            ("GET", "/session/s1/element/e1/text"): (200, "Buy"),
            ("GET", "/session/s1/element/e1/rect"): (200, {"x": 10, "y": 20, "width": 30, "height": 40}),
            ("GET", "/session/s1/element/e1/attribute/enabled"): (200, "true"),
        })
        el = ElementHandle(client, "e1")
        assert await el.is_displayed() is True
        assert await el.text() == "Buy"
        assert (await el.location()).x == 10
        assert await el.size() == (30, 40)
        assert await el.attribute("enabled") == "true"

    @pytest.mark.asyncio
    async def test_set_value_clears_first(self):
        client, rec = _client({
            ("POST", "/session/s1/element/e1/clear"): (200, None),
            ("POST", "/session/s1/element/e1/value"): (200, None),
        })
        await ElementHandle(client, "e1").set_value("hi")
        assert [r.url.path for r in rec.requests] == [
            "/session/s1/element/e1/clear", "/session/s1/element/e1/value",
        ]
        assert rec.body(1) == {"text": "hi", "value": ["h", "i"]}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class TestErrors:
    @pytest.mark.asyncio
    async def test_w3c_error_response(self):
        client, _ = _client({
            ("POST", "/session/s1/element/e1/click"): (
                404, {"error": "stale element reference", "message": "gone"},
            ),
        })
        with pytest.raises(ProtocolError) as exc_info:
            await ElementHandle(client, "e1").click()
        err = exc_info.value
        assert err.status == 404
        assert err.error == "stale element reference"
        assert err.tool == "webdriver"

    @pytest.mark.asyncio
    async def test_transport_failure(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = WebDriverClient("http://appium:4723", transport=httpx.MockTransport(refuse))
        client.session_id = "s1"
        with pytest.raises(ProtocolError, match="Ensure the automation server is running"):
            await client.page_source()
