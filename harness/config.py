"""Harness configuration: defaults, .properties loading and environment overrides."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from harness.models import Platform, ScrollDirection

logger = logging.getLogger("mobile-harness.config")

DEFAULT_TIMEOUT_BEFORE_EXPECTATION = 0.0  # seconds of UI-stabilization wait
DEFAULT_TIMEOUT_EXPECTATION = 10.0  # seconds of element search per query
DEFAULT_TIMEOUT_EVENT_EXPECTATION = 15.0  # seconds of event wait
DEFAULT_POLLING_INTERVAL = 1.0  # seconds between element polls
DEFAULT_EVENT_POLLING_INTERVAL = 0.5  # seconds between event-log scans
DEFAULT_SCROLL_COUNT = 0
DEFAULT_SCROLL_CAPACITY = 1.0
DEFAULT_SCROLL_DIRECTION = ScrollDirection.DOWN
DEFAULT_SCROLL_COEFFICIENT = 0.75  # full-viewport inset
DEFAULT_SWIPE_COEFFICIENT = 0.95  # element-local inset
DEFAULT_TELEMETRY_PORT = 8000

_TRUE = {"true", "1", "yes", "y", "on"}
_FALSE = {"false", "0", "no", "n", "off"}
_LINE_RE = re.compile(r"^([^=:\s]+)\s*(?:=|:|\s)\s*(.*)$")


@dataclass
class HarnessConfig:
    """Session-wide settings. Every default can be overridden per call."""

    platform: Platform = Platform.ANDROID
    appium_url: str = "http://localhost:4723"

    android_version: str = "16"
    ios_version: str = "18.4"
    android_device_name: str = "WBA16"
    ios_device_name: str = "iPhone 16 Plus"
    android_app_name: str = "android.apk"
    ios_app_name: str = "ios.app"
    app_package: str = "com.dev"
    app_activity: str = "MainActivity"
    bundle_id: str = "MOBILEAPP.DEV"

    ios_auto_accept_alerts: bool = False
    ios_auto_dismiss_alerts: bool = False
    android_headless: bool = True
    emulator_auto_start: bool = True
    emulator_auto_shutdown: bool = True

    timeout_before_expectation: float = DEFAULT_TIMEOUT_BEFORE_EXPECTATION
    timeout_expectation: float = DEFAULT_TIMEOUT_EXPECTATION
    timeout_event_expectation: float = DEFAULT_TIMEOUT_EVENT_EXPECTATION
    polling_interval: float = DEFAULT_POLLING_INTERVAL
    event_polling_interval: float = DEFAULT_EVENT_POLLING_INTERVAL
    scroll_count: int = DEFAULT_SCROLL_COUNT
    scroll_capacity: float = DEFAULT_SCROLL_CAPACITY
    scroll_direction: ScrollDirection = DEFAULT_SCROLL_DIRECTION
    scroll_coefficient: float = DEFAULT_SCROLL_COEFFICIENT
    swipe_coefficient: float = DEFAULT_SWIPE_COEFFICIENT

    telemetry_host: str = "127.0.0.1"
    telemetry_port: int = DEFAULT_TELEMETRY_PORT

    apps_dir: str = "apps"
    source_path: Path | None = field(default=None, repr=False)

    def is_android(self) -> bool:
        return self.platform == Platform.ANDROID

    def is_ios(self) -> bool:
        return self.platform == Platform.IOS

    def app_name(self) -> str:
        return self.android_app_name if self.is_android() else self.ios_app_name

    def app_path(self) -> Path:
        return Path(self.apps_dir) / self.app_name()

    def capabilities(self) -> dict[str, Any]:
        """W3C capabilities for a new automation session."""
        if self.is_android():
            return {
                "platformName": "Android",
                "appium:automationName": "UiAutomator2",
                "appium:platformVersion": self.android_version,
                "appium:deviceName": self.android_device_name,
                "appium:appPackage": self.app_package,
                "appium:appActivity": self.app_activity,
                "appium:app": str(self.app_path().resolve()),
                "appium:autoGrantPermissions": True,
            }
        return {
            "platformName": "iOS",
            "appium:automationName": "XCUITest",
            "appium:platformVersion": self.ios_version,
            "appium:deviceName": self.ios_device_name,
            "appium:bundleId": self.bundle_id,
            "appium:app": str(self.app_path().resolve()),
            "appium:autoAcceptAlerts": self.ios_auto_accept_alerts,
            "appium:autoDismissAlerts": self.ios_auto_dismiss_alerts,
        }


def parse_properties(text: str) -> dict[str, str]:
    """Parse ``key=value``, ``key: value`` and ``key value`` lines.

    Blank lines and lines starting with ``#`` or ``;`` are skipped.
    """
    props: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(("#", ";")):
            continue
        m = _LINE_RE.match(line)
        if m:
            props[m.group(1).strip()] = m.group(2).strip()
    return props


def env_property(name: str) -> str | None:
    """Look up an environment override by exact, UPPER_SNAKE or lower_snake name."""
    if name in os.environ:
        return os.environ[name]
    snake = re.sub(r"[.\s-]+", "_", name)
    for candidate in (snake.upper(), snake.lower()):
        if candidate in os.environ:
            return os.environ[candidate]
    return None


def parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    s = value.strip().lower()
    if s in _TRUE:
        return True
    if s in _FALSE:
        return False
    return default


def resolve_config_path(cwd: Path | None = None) -> Path | None:
    """Find the properties file, most specific candidate first. None if absent."""
    cwd = cwd or Path.cwd()
    env_path = os.environ.get("CONFIG_PATH", "").strip()
    profile = os.environ.get("TEST_PROFILE", "").strip() or ("ci" if os.environ.get("CI") else "")

    candidates: list[Path] = []
    if env_path:
        candidates.append(Path(env_path))
    candidates.append(cwd / "tests" / "config" / "tests.local.properties")
    if profile:
        candidates.append(cwd / "tests" / "config" / f"tests.{profile}.properties")
    candidates.append(cwd / "tests" / "config" / "tests.properties")
    candidates.append(cwd / "tests.local.properties")
    if profile:
        candidates.append(cwd / f"tests.{profile}.properties")
    candidates.append(cwd / "tests.properties")

    for path in candidates:
        if path.is_file():
            return path
    return None


def load_config(path: str | Path | None = None) -> HarnessConfig:
    """Build a HarnessConfig from a properties file plus environment overrides.

    A missing or unreadable file is not fatal: defaults are used.
    """
    config_path = Path(path) if path else resolve_config_path()
    props: dict[str, str] = {}
    if config_path is None:
        logger.warning("No tests.properties found, using defaults")
    else:
        try:
            props = parse_properties(config_path.read_text(encoding="utf-8"))
            logger.info("Configuration loaded from %s", config_path)
        except OSError as e:
            logger.warning("Failed to read config file %s: %s", config_path, e)

    def prop(name: str, default: str) -> str:
        value = env_property(name)
        if value is None:
            value = props.get(name)
        return default if value is None else value

    def prop_bool(name: str, default: bool) -> bool:
        value = env_property(name)
        return parse_bool(value if value is not None else props.get(name), default)

    def prop_int(name: str, default: int) -> int:
        try:
            return int(prop(name, str(default)))
        except ValueError:
            return default

    def prop_float(name: str, default: float) -> float:
        try:
            return float(prop(name, str(default)))
        except ValueError:
            return default

    try:
        direction = ScrollDirection(prop("scroll.direction", DEFAULT_SCROLL_DIRECTION.value).lower())
    except ValueError:
        direction = DEFAULT_SCROLL_DIRECTION

    return HarnessConfig(
        platform=Platform.parse(prop("platform", "ANDROID")),
        appium_url=prop("appium.url", "http://localhost:4723").rstrip("/"),
        android_version=prop("android.version", "16"),
        ios_version=prop("ios.version", "18.4"),
        android_device_name=prop("android.device.name", "WBA16"),
        ios_device_name=prop("ios.device.name", "iPhone 16 Plus"),
        android_app_name=prop("android.app.name", "android.apk"),
        ios_app_name=prop("ios.app.name", "ios.app"),
        app_package=prop("app.package", "com.dev"),
        app_activity=prop("app.activity", "MainActivity"),
        bundle_id=prop("bundle.id", "MOBILEAPP.DEV"),
        ios_auto_accept_alerts=prop_bool("ios.auto_accept_alerts", False),
        ios_auto_dismiss_alerts=prop_bool("ios.auto_dismiss_alerts", False),
        android_headless=prop_bool("android.headless.mode", True),
        emulator_auto_start=prop_bool("emulator.auto.start", True),
        emulator_auto_shutdown=prop_bool("emulator.auto.shutdown", True),
        timeout_before_expectation=prop_float(
            "timeout.before.expectation", DEFAULT_TIMEOUT_BEFORE_EXPECTATION,
        ),
        timeout_expectation=prop_float("timeout.expectation", DEFAULT_TIMEOUT_EXPECTATION),
        timeout_event_expectation=prop_float(
            "timeout.event.expectation", DEFAULT_TIMEOUT_EVENT_EXPECTATION,
        ),
        polling_interval=prop_float("polling.interval", DEFAULT_POLLING_INTERVAL),
        scroll_count=prop_int("scroll.count", DEFAULT_SCROLL_COUNT),
        scroll_capacity=prop_float("scroll.capacity", DEFAULT_SCROLL_CAPACITY),
        scroll_direction=direction,
        scroll_coefficient=prop_float("scroll.coefficient", DEFAULT_SCROLL_COEFFICIENT),
        swipe_coefficient=prop_float("swipe.coefficient", DEFAULT_SWIPE_COEFFICIENT),
        telemetry_host=prop("telemetry.host", "127.0.0.1"),
        telemetry_port=prop_int("telemetry.port", DEFAULT_TELEMETRY_PORT),
        apps_dir=prop("apps.dir", "apps"),
        source_path=config_path,
    )
