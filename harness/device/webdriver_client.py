"""WebDriverClient: async HTTP client for a W3C / Appium automation server.

Only the capability set the harness needs is exposed: element search,
element state and geometry, value mutation, pointer actions, page source,
alerts and ``mobile:`` script execution.

One command is in flight per session at a time; the automation protocol is
not safe for concurrent use on a single session.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from harness.models import Point, ProtocolError, Rect

logger = logging.getLogger("mobile-harness.webdriver")

WEBDRIVER_TIMEOUT = 30.0  # seconds for ordinary commands
SESSION_TIMEOUT = 300.0  # session creation installs and launches the app

# W3C element reference key, plus the legacy JSONWP key some drivers still send
W3C_ELEMENT_KEY = "element-6066-11e4-a52e-4f735466cecf"
LEGACY_ELEMENT_KEY = "ELEMENT"


def element_id_from(ref: dict[str, Any]) -> str:
    """Extract the element id from a W3C or legacy element reference."""
    element_id = ref.get(W3C_ELEMENT_KEY) or ref.get(LEGACY_ELEMENT_KEY)
    if not element_id:
        raise ProtocolError(f"Malformed element reference: {ref!r}")
    return element_id


class ElementHandle:
    """A resolved element. Valid only for the interaction that resolved it."""

    def __init__(self, client: WebDriverClient, element_id: str) -> None:
        self.client = client
        self.element_id = element_id

    def __repr__(self) -> str:
        return f"ElementHandle({self.element_id[:8]})"

    def __eq__(self, other: object) -> bool:
        return isinstance(other, ElementHandle) and other.element_id == self.element_id

    def __hash__(self) -> int:
        return hash(self.element_id)

    async def click(self) -> None:
        await self.client.element_command("POST", self.element_id, "/click", json={})

    async def text(self) -> str:
        return await self.client.element_command("GET", self.element_id, "/text") or ""

    async def rect(self) -> Rect:
        value = await self.client.element_command("GET", self.element_id, "/rect")
        return Rect(**value)

    async def location(self) -> Point:
        r = await self.rect()
        return Point(x=int(r.x), y=int(r.y))

    async def size(self) -> tuple[float, float]:
        r = await self.rect()
        return r.width, r.height

    async def is_displayed(self) -> bool:
        value = await self.client.element_command("GET", self.element_id, "/displayed")
        return bool(value)

    async def attribute(self, name: str) -> str | None:
        return await self.client.element_command("GET", self.element_id, f"/attribute/{name}")

    async def clear(self) -> None:
        await self.client.element_command("POST", self.element_id, "/clear", json={})

    async def set_value(self, value: str) -> None:
        """Replace the element's content with *value*."""
        await self.clear()
        await self.client.element_command(
            "POST", self.element_id, "/value", json={"text": value, "value": list(value)},
        )


class WebDriverClient:
    """Speaks the W3C WebDriver HTTP protocol to an Appium server."""

    def __init__(
        self,
        base_url: str,
        capabilities: dict[str, Any] | None = None,
        *,
        timeout: float = WEBDRIVER_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.capabilities = capabilities or {}
        self.timeout = timeout
        self.session_id: str | None = None
        self._http = httpx.AsyncClient(base_url=self.base_url, transport=transport)
        self._lock = asyncio.Lock()

    async def close(self) -> None:
        """Delete the session (if any) and close the HTTP client."""
        if self.session_id:
            try:
                await self.delete_session()
            except ProtocolError as e:
                logger.warning("Session delete failed during close: %s", e)
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _session_path(self, path: str) -> str:
        if not self.session_id:
            raise ProtocolError("No active WebDriver session")
        return f"/session/{self.session_id}{path}"

    async def _request(
        self,
        method: str,
        path: str,
        use_session: bool = True,
        timeout: float | None = None,
        json: Any = None,
    ) -> Any:
        """Issue one command and return its ``value``.

        Transport failures and W3C error responses raise ProtocolError.
        """
        url = self._session_path(path) if use_session else path
        start = time.perf_counter()
        async with self._lock:
            try:
                resp = await self._http.request(
                    method, url, json=json, timeout=timeout or self.timeout,
                )
            except httpx.HTTPError as exc:
                raise ProtocolError(
                    f"WebDriver {method} {path} failed ({type(exc).__name__}). "
                    "Ensure the automation server is running.",
                )
        logger.debug(
            "%s %s -> %d (%.0fms)", method, path, resp.status_code,
            (time.perf_counter() - start) * 1000,
        )

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        value = payload.get("value") if isinstance(payload, dict) else None

        if resp.status_code >= 400:
            error = message = None
            if isinstance(value, dict):
                error = value.get("error")
                message = value.get("message")
            raise ProtocolError(
                f"WebDriver {method} {path} failed (status {resp.status_code}): "
                f"{error or 'unknown error'}: {message or resp.text[:200]}",
                status=resp.status_code,
                error=error,
            )
        return value

    async def element_command(
        self, method: str, element_id: str, path: str, json: Any = None,
    ) -> Any:
        return await self._request(method, f"/element/{element_id}{path}", json=json)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    async def create_session(self, capabilities: dict[str, Any] | None = None) -> str:
        caps = capabilities if capabilities is not None else self.capabilities
        value = await self._request(
            "POST", "/session", use_session=False, timeout=SESSION_TIMEOUT,
            json={"capabilities": {"alwaysMatch": caps, "firstMatch": [{}]}},
        )
        session_id = (value or {}).get("sessionId", "")
        if not session_id:
            raise ProtocolError("Session creation returned no sessionId")
        self.session_id = session_id
        logger.info("WebDriver session created: %s", session_id[:8])
        return session_id

    async def delete_session(self) -> None:
        if not self.session_id:
            return
        session_id = self.session_id
        try:
            await self._request("DELETE", "")
        finally:
            self.session_id = None
        logger.info("WebDriver session deleted: %s", session_id[:8])

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def find_elements(self, using: str, value: str) -> list[ElementHandle]:
        refs = await self._request("POST", "/elements", json={"using": using, "value": value})
        return [ElementHandle(self, element_id_from(ref)) for ref in refs or []]

    async def page_source(self) -> str:
        return await self._request("GET", "/source") or ""

    async def window_rect(self) -> Rect:
        value = await self._request("GET", "/window/rect")
        return Rect(**value)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    async def perform_actions(self, actions: list[dict[str, Any]]) -> None:
        await self._request("POST", "/actions", json={"actions": actions})

    async def release_actions(self) -> None:
        await self._request("DELETE", "/actions")

    async def press_keys(self, text: str) -> None:
        """Type *text* with a W3C key input source (keyDown/keyUp per character)."""
        key_actions: list[dict[str, Any]] = []
        for ch in text:
            key_actions.append({"type": "keyDown", "value": ch})
            key_actions.append({"type": "keyUp", "value": ch})
        await self.perform_actions([{"type": "key", "id": "keyboard", "actions": key_actions}])
        await self.release_actions()

    async def execute(self, script: str, args: list[Any] | None = None) -> Any:
        """Run a script, typically an Appium ``mobile:`` extension command."""
        return await self._request(
            "POST", "/execute/sync", json={"script": script, "args": args or []},
        )

    # ------------------------------------------------------------------
    # Alerts
    # ------------------------------------------------------------------

    async def alert_text(self) -> str:
        return await self._request("GET", "/alert/text") or ""

    async def accept_alert(self) -> None:
        await self._request("POST", "/alert/accept", json={})

    async def dismiss_alert(self) -> None:
        await self._request("POST", "/alert/dismiss", json={})
