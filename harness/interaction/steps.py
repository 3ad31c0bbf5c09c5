"""Reporting spans wrapped around each public interaction."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator

from harness.device.webdriver_client import WebDriverClient
from harness.models import HarnessError

logger = logging.getLogger("mobile-harness.steps")

_SOURCE_LOG_LIMIT = 20_000  # characters of page source kept in a failure log


@asynccontextmanager
async def step(title: str, client: WebDriverClient | None = None) -> AsyncIterator[None]:
    """Log a named step with its duration; always closes, re-raises failures.

    When *client* is given, a failing step also logs the current page source
    at DEBUG level for post-mortem inspection.
    """
    start = time.perf_counter()
    logger.info("STEP %s", title)
    try:
        yield
    except Exception as e:
        elapsed = (time.perf_counter() - start) * 1000
        logger.error("STEP FAILED %s after %.0fms: %s", title, elapsed, e)
        if client is not None and client.session_id:
            try:
                source = await client.page_source()
                logger.debug("Page source at failure of '%s':\n%s", title, source[:_SOURCE_LOG_LIMIT])
            except HarnessError as capture_error:
                logger.debug("Could not capture page source: %s", capture_error)
        raise
    logger.info("[PERF] step %s: %.0fms", title, (time.perf_counter() - start) * 1000)
