"""EmulatorManager: boot and shut down the Android emulator or iOS simulator.

Start and stop are guarded by a plain busy flag. It is not reentrant: a start
or stop issued while another is running fails immediately.
"""

from __future__ import annotations

import asyncio
import json
import logging

from harness.config import HarnessConfig
from harness.models import MisconfigurationError, Platform, ProtocolError

logger = logging.getLogger("mobile-harness.emulator")

COMMAND_TIMEOUT = 30.0  # seconds per adb/simctl invocation
EMULATOR_STARTUP_TIMEOUT = 60.0  # until the emulator shows up in `adb devices`
EMULATOR_BOOT_TIMEOUT = 120.0  # until sys.boot_completed=1
BOOT_POLL_INTERVAL = 2.0


def parse_adb_devices(output: str) -> str | None:
    """First ``emulator-NNNN`` serial in the ``device`` state, if any."""
    for line in output.splitlines():
        parts = line.split()
        if len(parts) >= 2 and parts[0].startswith("emulator-") and parts[1] == "device":
            return parts[0]
    return None


def find_simulator(devices_json: str, name: str, booted_only: bool = False) -> str | None:
    """UDID of the simulator called *name* in ``simctl list --json`` output."""
    try:
        parsed = json.loads(devices_json)
    except ValueError:
        return None
    for runtime_devices in (parsed.get("devices") or {}).values():
        for device in runtime_devices:
            if device.get("name") != name:
                continue
            if booted_only and device.get("state") != "Booted":
                continue
            return device.get("udid")
    return None


class EmulatorManager:
    """Lifecycle of the virtual device named in the config."""

    def __init__(self, config: HarnessConfig) -> None:
        self.config = config
        self._busy = False
        self._proc: asyncio.subprocess.Process | None = None

    @property
    def busy(self) -> bool:
        return self._busy

    async def _run(
        self, tool: str, *args: str, timeout: float = COMMAND_TIMEOUT, check: bool = True,
    ) -> tuple[int, str, str]:
        """Run a command and return (returncode, stdout, stderr).

        Raises ProtocolError on timeout, a missing binary, or (with *check*)
        a non-zero exit code.
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                tool, *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise ProtocolError(f"'{tool}' not found on PATH", tool=tool)
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise ProtocolError(f"{tool} {' '.join(args)} timed out after {timeout}s", tool=tool)
        out, err = stdout.decode(), stderr.decode()
        if check and proc.returncode != 0:
            raise ProtocolError(
                f"{tool} {args[0] if args else ''} failed: {err.strip()}", tool=tool,
            )
        return proc.returncode or 0, out, err

    async def start(self) -> None:
        self._acquire("start")
        try:
            if self.config.platform == Platform.ANDROID:
                await self._start_android()
            else:
                await self._start_ios()
        finally:
            self._busy = False

    async def stop(self) -> None:
        self._acquire("stop")
        try:
            if self.config.platform == Platform.ANDROID:
                await self._stop_android()
            else:
                await self._stop_ios()
        finally:
            self._busy = False

    def _acquire(self, operation: str) -> None:
        if self._busy:
            raise MisconfigurationError(
                f"Cannot {operation} the emulator: another start/stop is in progress",
            )
        self._busy = True

    # ------------------------------------------------------------------
    # Android
    # ------------------------------------------------------------------

    async def running_emulator_id(self) -> str | None:
        _, out, _ = await self._run("adb", "devices")
        return parse_adb_devices(out)

    async def is_responsive(self, serial: str) -> bool:
        code, out, _ = await self._run("adb", "-s", serial, "shell", "pm", "list", "packages", check=False)
        return code == 0 and "package:" in out

    async def _wait_for_boot(self, serial: str) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + EMULATOR_BOOT_TIMEOUT
        while loop.time() < deadline:
            _, out, _ = await self._run(
                "adb", "-s", serial, "shell", "getprop", "sys.boot_completed", check=False,
            )
            if out.strip() == "1" and await self.is_responsive(serial):
                logger.info("Emulator %s booted", serial)
                return
            await asyncio.sleep(BOOT_POLL_INTERVAL)
        raise ProtocolError(
            f"Emulator {serial} did not boot within {EMULATOR_BOOT_TIMEOUT}s", tool="adb",
        )

    async def _start_android(self) -> None:
        name = self.config.android_device_name
        _, avds, _ = await self._run("emulator", "-list-avds")
        if name not in [line.strip() for line in avds.splitlines()]:
            raise ProtocolError(f"AVD '{name}' not found", tool="emulator")

        existing = await self.running_emulator_id()
        if existing:
            if await self.is_responsive(existing):
                logger.info("Emulator already running: %s", existing)
                return
            logger.warning("Emulator %s not responding, restarting", existing)
            await self._kill_android(existing)

        args = [
            "-avd", name, "-no-snapshot-load", "-no-boot-anim",
            "-gpu", "swiftshader_indirect", "-no-audio",
        ]
        if self.config.android_headless:
            args.append("-no-window")
        logger.info("Starting emulator: emulator %s", " ".join(args))
        self._proc = await asyncio.create_subprocess_exec(
            "emulator", *args,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + EMULATOR_STARTUP_TIMEOUT
        serial = None
        while loop.time() < deadline:
            if self._proc.returncode not in (None, 0):
                raise ProtocolError(
                    f"Emulator process exited with code {self._proc.returncode}", tool="emulator",
                )
            serial = await self.running_emulator_id()
            if serial:
                break
            await asyncio.sleep(BOOT_POLL_INTERVAL)
        if not serial:
            self._proc.kill()
            raise ProtocolError(
                f"Emulator did not appear within {EMULATOR_STARTUP_TIMEOUT}s", tool="emulator",
            )

        try:
            await self._wait_for_boot(serial)
        except ProtocolError:
            await self._kill_android(serial)
            raise

    async def _kill_android(self, serial: str) -> None:
        await self._run("adb", "-s", serial, "emu", "kill", check=False)
        await asyncio.sleep(BOOT_POLL_INTERVAL)
        if await self.running_emulator_id() is not None:
            logger.warning("Emulator survived 'adb emu kill', killing qemu")
            await self._run("killall", "-9", "qemu-system-x86_64", check=False)

    async def _stop_android(self) -> None:
        serial = await self.running_emulator_id()
        if not serial:
            logger.info("No Android emulator running")
            return
        logger.info("Stopping emulator %s", serial)
        await self._kill_android(serial)
        if await self.running_emulator_id() is not None:
            raise ProtocolError(f"Emulator {serial} could not be stopped", tool="adb")

    # ------------------------------------------------------------------
    # iOS
    # ------------------------------------------------------------------

    async def _simulators(self) -> str:
        _, out, _ = await self._run("xcrun", "simctl", "list", "devices", "--json")
        return out

    async def _start_ios(self) -> None:
        name = self.config.ios_device_name
        devices = await self._simulators()
        if find_simulator(devices, name, booted_only=True):
            logger.info("Simulator '%s' already booted", name)
            return
        udid = find_simulator(devices, name)
        if not udid:
            raise ProtocolError(f"Simulator '{name}' not found", tool="simctl")
        logger.info("Booting simulator %s (%s)", name, udid[:8])
        await self._run("xcrun", "simctl", "boot", udid)
        await self._run("xcrun", "simctl", "bootstatus", udid, "-b", timeout=EMULATOR_BOOT_TIMEOUT)

    async def _stop_ios(self) -> None:
        udid = find_simulator(await self._simulators(), self.config.ios_device_name, booted_only=True)
        if not udid:
            logger.info("No booted simulator named '%s'", self.config.ios_device_name)
            return
        await self._run("xcrun", "simctl", "shutdown", udid)
        logger.info("Simulator %s shut down", udid[:8])
