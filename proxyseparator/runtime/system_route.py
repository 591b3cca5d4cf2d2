"""Dialing through the operating system's own routes and resolver."""

from __future__ import annotations

import ipaddress
import socket
import subprocess
import sys
from typing import Callable, Iterable, Optional

Dial = Callable[[str], socket.socket]
Lookup = Callable[[str], list]

_DIAL_TIMEOUT = 10.0


def _split_host_port(addr: str) -> Optional[tuple[str, str]]:
    colon = addr.rfind(":")
    if colon < 0:
        return None
    if addr.startswith("["):
        end = addr.find("]")
        if end < 0 or end + 1 != colon:
            return None
        return addr[1:end], addr[colon + 1 :]
    host = addr[:colon]
    if ":" in host or "[" in host or "]" in host:
        return None
    return host, addr[colon + 1 :]


def _join_host_port(host: str, port: str) -> str:
    return f"[{host}]:{port}" if ":" in host else f"{host}:{port}"


def _is_ip(text: str) -> bool:
    if "%" in text:
        return False
    try:
        ipaddress.ip_address(text)
    except ValueError:
        return False
    return True


def _default_dial(addr: str) -> socket.socket:
    split = _split_host_port(addr)
    if split is None or not split[1].isdigit():
        raise OSError(f"invalid address {addr!r}")
    host, port = split
    return socket.create_connection((host, int(port)), timeout=_DIAL_TIMEOUT)


def parse_dscacheutil_output(output: str) -> list[str]:
    """Extract unique IPv4 and IPv6 addresses, in order, from ``dscacheutil`` output."""
    addresses: list[str] = []
    for line in output.splitlines():
        line = line.strip()
        for key in ("ip_address:", "ipv6_address:"):
            if line.startswith(key):
                ip = line[len(key) :].strip()
                if _is_ip(ip) and ip not in addresses:
                    addresses.append(ip)
    return addresses


def lookup_system_route_addrs(host: str) -> list[str]:
    """Resolve ``host`` with the system directory service; empty outside macOS."""
    if sys.platform != "darwin":
        return []
    try:
        completed = subprocess.run(
            ["dscacheutil", "-q", "host", "-a", "name", host],
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        raise OSError(f"lookup host with dscacheutil: {exc}") from exc
    addresses = parse_dscacheutil_output(completed.stdout)
    if not addresses:
        raise OSError(f"no system-route address found for {host!r}")
    return addresses


def dial_system_route(
    addr: str,
    dial: Dial = _default_dial,
    lookup: Lookup = lookup_system_route_addrs,
) -> socket.socket:
    """Dial ``addr``; if that fails for a host name, retry its system-resolved addresses."""
    try:
        return dial(addr)
    except OSError as first_error:
        split = _split_host_port(addr)
        if split is None or _is_ip(split[0]):
            raise
        host, port = split
        try:
            addresses = lookup(host)
        except OSError:
            raise first_error from None
        if not addresses:
            raise

        last_error: OSError = first_error
        for ip in addresses:
            try:
                return dial(_join_host_port(ip, port))
            except OSError as exc:
                last_error = exc
        raise last_error from None


def dial_system_route_candidates(
    candidates: Iterable[str], dial: Dial = _default_dial
) -> socket.socket:
    """Dial each candidate in turn and return the first connection that succeeds."""
    last_error: Optional[OSError] = None
    for candidate in candidates:
        try:
            return dial(candidate)
        except OSError as exc:
            last_error = exc
    if last_error is not None:
        raise last_error
    raise ConnectionError("no system-route candidates available")