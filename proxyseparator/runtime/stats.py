"""Traffic and session counters for the running proxy."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..rules.types import RouteTarget


@dataclass(frozen=True)
class TrafficStats:
    """Point-in-time view of traffic counters and rates."""

    mode: str = ""
    started_at: Optional[datetime] = None
    active_sessions: int = 0
    total_sessions: int = 0
    rx_bytes: int = 0
    tx_bytes: int = 0
    company_bytes: int = 0
    personal_bytes: int = 0
    rx_bytes_per_second: float = 0.0
    tx_bytes_per_second: float = 0.0
    company_bytes_per_second: float = 0.0
    personal_bytes_per_second: float = 0.0


class StatsTracker:
    """Thread-safe accumulator of sessions and transferred bytes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at: Optional[datetime] = None
        self._active = 0
        self._total = 0
        self._rx = 0
        self._tx = 0
        self._company = 0
        self._personal = 0
        self._last_snapshot_at = time.monotonic()
        self._last_rx = 0
        self._last_tx = 0
        self._last_company = 0
        self._last_personal = 0
        self._last_computed = TrafficStats()

    def start(self, mode: str) -> None:
        """Reset every counter and mark the start of a new run."""
        with self._lock:
            self._started_at = datetime.now().astimezone()
            self._active = 0
            self._total = 0
            self._rx = 0
            self._tx = 0
            self._company = 0
            self._personal = 0
            self._last_snapshot_at = time.monotonic()
            self._last_rx = 0
            self._last_tx = 0
            self._last_company = 0
            self._last_personal = 0
            self._last_computed = TrafficStats(mode=mode, started_at=self._started_at)

    def stop(self) -> None:
        """Drop the active session count; totals are kept."""
        with self._lock:
            self._active = 0

    def session_started(self) -> None:
        with self._lock:
            self._active += 1
            self._total += 1

    def session_ended(self) -> None:
        with self._lock:
            self._active -= 1

    def add_rx(self, n: int, target: str) -> None:
        """Count received bytes for a route target."""
        with self._lock:
            self._rx += n
            self._add_target(n, target)

    def add_tx(self, n: int, target: str) -> None:
        """Count sent bytes for a route target."""
        with self._lock:
            self._tx += n
            self._add_target(n, target)

    def _add_target(self, n: int, target: str) -> None:
        if target == RouteTarget.COMPANY:
            self._company += n
        elif target == RouteTarget.PERSONAL:
            self._personal += n

    def snapshot(self, mode: str) -> TrafficStats:
        """Return current totals and the rates since the previous snapshot."""
        with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_snapshot_at
            if elapsed <= 0:
                elapsed = 1.0
            stats = TrafficStats(
                mode=mode,
                started_at=self._started_at,
                active_sessions=self._active,
                total_sessions=self._total,
                rx_bytes=self._rx,
                tx_bytes=self._tx,
                company_bytes=self._company,
                personal_bytes=self._personal,
                rx_bytes_per_second=(self._rx - self._last_rx) / elapsed,
                tx_bytes_per_second=(self._tx - self._last_tx) / elapsed,
                company_bytes_per_second=(self._company - self._last_company) / elapsed,
                personal_bytes_per_second=(self._personal - self._last_personal) / elapsed,
            )
            self._last_snapshot_at = now
            self._last_rx = self._rx
            self._last_tx = self._tx
            self._last_company = self._company
            self._last_personal = self._personal
            self._last_computed = stats
            return stats