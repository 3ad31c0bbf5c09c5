"""System alert handling with polling until the alert is actionable."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from harness.device.webdriver_client import WebDriverClient
from harness.models import NotFoundError, ProtocolError

logger = logging.getLogger("mobile-harness.alerts")

T = TypeVar("T")


class AlertHandler:
    """Accept, dismiss or read the current native alert."""

    def __init__(self, client: WebDriverClient, timeout: float, poll_interval: float) -> None:
        self.client = client
        self.timeout = max(0.0, timeout)
        self.poll_interval = poll_interval

    async def _until(self, action: Callable[[], Awaitable[T]], what: str) -> T:
        """Retry *action* until it succeeds; NotFoundError once the timeout passes."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        while True:
            try:
                return await action()
            except ProtocolError as e:
                last_error = e
            if loop.time() + self.poll_interval > deadline:
                break
            await asyncio.sleep(self.poll_interval)
        raise NotFoundError(
            f"No alert to {what} within {self.timeout} seconds: {last_error}",
            timeout=self.timeout,
        )

    async def is_present(self) -> bool:
        try:
            await self._until(self.client.alert_text, "read")
        except NotFoundError:
            return False
        return True

    async def accept(self) -> None:
        await self._until(self.client.accept_alert, "accept")
        logger.info("Alert accepted")

    async def dismiss(self) -> None:
        await self._until(self.client.dismiss_alert, "dismiss")
        logger.info("Alert dismissed")

    async def text(self) -> str:
        return await self._until(self.client.alert_text, "read")
