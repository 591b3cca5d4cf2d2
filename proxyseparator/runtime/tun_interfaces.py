"""Discovery of the network interface a TUN device comes up as."""

from __future__ import annotations

import socket
import sys
import time
from typing import AbstractSet, Optional
from urllib.parse import urlsplit

_POLL_INTERVAL = 0.1


def _current_system() -> str:
    if sys.platform == "darwin":
        return "darwin"
    if sys.platform.startswith("win"):
        return "windows"
    return sys.platform


def device_hint(device: str) -> str:
    """Interface name implied by a device spec such as ``utun7`` or ``tun://utun7``."""
    if "://" not in device:
        return device.strip()
    try:
        netloc = urlsplit(device).netloc
    except ValueError:
        return ""
    return netloc.rpartition("@")[2].strip()


def interface_score(name: str, system: Optional[str] = None) -> int:
    """How likely ``name`` is to be our TUN interface on ``system``; higher is likelier."""
    lower = name.lower()
    system = system or _current_system()
    if system == "darwin":
        if lower.startswith("utun"):
            return 100
        return 50 if "tun" in lower else 0
    if system == "windows":
        if "proxyseparator" in lower:
            return 100
        if "wintun" in lower:
            return 80
        return 50 if "tun" in lower else 0
    return 50 if "tun" in lower else 0


def find_new_interface(
    before: AbstractSet[str], after: AbstractSet[str], system: Optional[str] = None
) -> Optional[str]:
    """The best-scoring interface present in ``after`` but not ``before``, or None."""
    candidates = set(after) - set(before)
    if not candidates:
        return None
    return min(candidates, key=lambda name: (-interface_score(name, system), name))


def snapshot_interfaces() -> set[str]:
    """Names of the network interfaces present now; empty if they cannot be listed."""
    try:
        return {name for _, name in socket.if_nameindex()}
    except OSError:
        return set()


def wait_for_interface(before: AbstractSet[str], device: str, timeout: float = 5.0) -> str:
    """Wait for the TUN interface to appear and return its name.

    Falls back to the device hint after ``timeout`` seconds; raises LookupError
    when there is neither a new interface nor a hint.
    """
    hint = device_hint(device)
    deadline = time.monotonic() + timeout
    while True:
        after = snapshot_interfaces()
        if hint and hint in after:
            return hint
        name = find_new_interface(before, after)
        if name:
            return name
        if time.monotonic() > deadline:
            break
        time.sleep(_POLL_INTERVAL)
    if hint:
        return hint
    raise LookupError(f"unable to determine TUN interface for {device!r}")