"""Network helpers: local address detection and port selection."""

from __future__ import annotations

import ipaddress
import socket

DEFAULT_TELEMETRY_PORT = 8000
MAX_PORT_SCAN = 20

SITE_LOCAL_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def is_site_local(address: str) -> bool:
    """True for RFC 1918 IPv4 addresses (10/8, 172.16/12, 192.168/16)."""
    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        return False
    return ip.version == 4 and any(ip in network for network in SITE_LOCAL_NETWORKS)


def get_local_address() -> str | None:
    """The site-local IPv4 address a device on the same network can reach.

    Asks the OS which interface would route outward; no packet is sent.
    """
    candidates: list[str] = []
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect(("10.255.255.255", 1))
            candidates.append(s.getsockname()[0])
    except OSError:
        pass
    try:
        candidates.extend(socket.gethostbyname_ex(socket.gethostname())[2])
    except OSError:
        pass
    for address in candidates:
        if is_site_local(address):
            return address
    return None


def is_port_available(port: int, host: str = "127.0.0.1") -> bool:
    """Check if a port is available for binding."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            s.bind((host, port))
            return True
    except OSError:
        return False


def find_available_port(
    preferred: int,
    host: str = "127.0.0.1",
    max_attempts: int = MAX_PORT_SCAN,
    exclude: set[int] | None = None,
) -> int:
    """Find an available port, starting from preferred and scanning upward.

    Raises:
        RuntimeError: If no available port is found within max_attempts.
    """
    exclude = exclude or set()
    for offset in range(max_attempts):
        port = preferred + offset
        if port in exclude:
            continue
        if is_port_available(port, host):
            return port
    raise RuntimeError(
        f"No available port found in range {preferred}-{preferred + max_attempts - 1}"
    )


def get_free_port(host: str = "127.0.0.1", default: int = DEFAULT_TELEMETRY_PORT) -> int:
    """Let the OS pick an unused port; *default* if binding fails."""
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind((host, 0))
            return s.getsockname()[1]
    except OSError:
        return default
