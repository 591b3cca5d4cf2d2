"""Reachability and protocol probing of upstream proxies."""

from __future__ import annotations

import socket
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional, Union

_PROBE_TIMEOUT = 2.0


class Protocol(str, Enum):
    """Upstream proxy protocol."""

    AUTO = "auto"
    SOCKS5 = "socks5"
    HTTP = "http"
    DIRECT = "direct"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


def _join_host_port(host: str, port: str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


@dataclass
class UpstreamConfig:
    """Where an upstream proxy listens and which protocol it speaks."""

    host: str = ""
    port: int = 0
    protocol: Union[Protocol, str] = Protocol.AUTO

    def address(self) -> str:
        """The ``host:port`` form of the upstream address."""
        return _join_host_port(self.host, str(self.port))


@dataclass
class UpstreamHealth:
    """Result of probing an upstream."""

    reachable: bool = False
    protocol: Protocol = Protocol.UNKNOWN
    last_success_at: Optional[datetime] = None
    rtt_ms: int = 0
    consecutive_failures: int = 0


def _protocol_of(cfg: UpstreamConfig) -> Protocol:
    if not cfg.protocol:
        return Protocol.AUTO
    try:
        return Protocol(cfg.protocol)
    except ValueError:
        return Protocol.AUTO


def _connect(cfg: UpstreamConfig) -> socket.socket:
    sock = socket.create_connection((cfg.host, cfg.port), timeout=_PROBE_TIMEOUT)
    sock.settimeout(_PROBE_TIMEOUT)
    return sock


def _read_exact(sock: socket.socket, size: int) -> bytes:
    data = bytearray()
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            raise ConnectionError("connection closed before enough data arrived")
        data.extend(chunk)
    return bytes(data)


def _read_line(sock: socket.socket) -> bytes:
    with sock.makefile("rb") as reader:
        line = reader.readline()
    if not line.endswith(b"\n"):
        raise ConnectionError("connection closed before end of line")
    return line


def system_route_health() -> UpstreamHealth:
    """Health of the system route, which is always considered reachable."""
    return UpstreamHealth(
        reachable=True,
        protocol=Protocol.DIRECT,
        last_success_at=datetime.now().astimezone(),
        rtt_ms=0,
    )


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def probe_upstream(cfg: UpstreamConfig) -> UpstreamHealth:
    """Check that the upstream accepts connections and detect its protocol."""
    start = time.monotonic()
    protocol = _protocol_of(cfg)

    if protocol is Protocol.DIRECT:
        health = system_route_health()
        health.rtt_ms = _elapsed_ms(start)
        return health

    try:
        with _connect(cfg):
            pass
    except OSError:
        return UpstreamHealth(protocol=Protocol.UNKNOWN, consecutive_failures=1)

    health = UpstreamHealth(
        reachable=True,
        protocol=Protocol.UNKNOWN,
        rtt_ms=_elapsed_ms(start),
        last_success_at=datetime.now().astimezone(),
    )

    detectors: list[tuple[Callable[[UpstreamConfig], None], Protocol]]
    if protocol is Protocol.SOCKS5:
        detectors = [(detect_socks5, Protocol.SOCKS5)]
    elif protocol is Protocol.HTTP:
        detectors = [(detect_http_proxy, Protocol.HTTP)]
    else:
        detectors = [(detect_socks5, Protocol.SOCKS5), (detect_http_proxy, Protocol.HTTP)]

    for detect, detected in detectors:
        try:
            detect(cfg)
        except OSError:
            continue
        health.protocol = detected
        return health
    return health


def detect_socks5(cfg: UpstreamConfig) -> None:
    """Raise OSError unless the upstream answers a SOCKS5 greeting."""
    with _connect(cfg) as sock:
        sock.sendall(b"\x05\x01\x00")
        response = _read_exact(sock, 2)
    if response[0] != 0x05:
        raise ConnectionError("not socks5")


def detect_http_proxy(cfg: UpstreamConfig) -> None:
    """Raise OSError unless the upstream answers a CONNECT with an HTTP status line."""
    with _connect(cfg) as sock:
        sock.sendall(b"CONNECT 127.0.0.1:1 HTTP/1.1\r\nHost: 127.0.0.1:1\r\n\r\n")
        line = _read_line(sock)
    if not line.startswith(b"HTTP/"):
        raise ConnectionError("not http proxy")