"""HarnessSession: the explicit session context for one test case.

Holds the collaborators every interaction needs (config, automation client,
event store, correlator, resolver) so nothing is looked up globally.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from harness.config import HarnessConfig, load_config
from harness.device.emulator import EmulatorManager
from harness.device.webdriver_client import WebDriverClient
from harness.events.correlator import EventCorrelator
from harness.events.store import EventStore
from harness.interaction.actions import MobileActions
from harness.interaction.resolver import ElementResolver
from harness.main import TelemetryServer

logger = logging.getLogger("mobile-harness.session")


class HarnessSession:
    """Wires the harness components together for one automation session."""

    def __init__(
        self,
        config: HarnessConfig | None = None,
        client: WebDriverClient | None = None,
        store: EventStore | None = None,
        server: TelemetryServer | None = None,
        emulator: EmulatorManager | None = None,
    ) -> None:
        self.config = config or load_config()
        self.client = client or WebDriverClient(self.config.appium_url, self.config.capabilities())
        self.store = store if store is not None else EventStore()
        self.server = server
        self.emulator = emulator
        self.correlator = EventCorrelator(self.store, self.config.event_polling_interval)
        self.resolver = ElementResolver(self.client, self.config)
        self.actions = MobileActions(self.client, self.config, self.correlator, self.resolver)

    @asynccontextmanager
    async def open(self, start_receiver: bool = True) -> AsyncIterator[MobileActions]:
        """Start the receiver and automation session; yield the actions.

        On exit every background event check is collected before teardown,
        so their failures are raised rather than lost. Whatever was started
        is torn down even when a later startup step fails.
        """
        body_failed = False
        try:
            if self.emulator is not None and self.config.emulator_auto_start:
                await self.emulator.start()
            if start_receiver:
                if self.server is None:
                    self.server = TelemetryServer(
                        self.store, port=self.config.telemetry_port,
                        advertise_host=self.config.telemetry_host,
                    )
                await self.server.start()
            await self.client.create_session()
            yield self.actions
        except BaseException:
            body_failed = True
            # The case already failed; its error takes precedence
            await self.correlator.cancel_background_checks()
            raise
        finally:
            try:
                if not body_failed:
                    await self.correlator.await_all_background_checks()
            finally:
                await self._teardown()

    async def _teardown(self) -> None:
        await self.client.close()
        if self.server is not None:
            await self.server.stop()
        if self.emulator is not None and self.config.emulator_auto_shutdown:
            await self.emulator.stop()
        self.store.clear()
        logger.info("Session closed")
