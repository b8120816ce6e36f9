"""In-memory per-address statistics, periodically written to the database."""

from __future__ import annotations

import dataclasses
import sqlite3
import threading
import time
from ipaddress import IPv4Address, IPv6Address, ip_address

from aegisfw.errors import DatabaseError
from aegisfw.store_model import IpStats

_UPSERT = (
    "INSERT INTO ip_stats "
    "(ip, first_seen, last_seen, total_packets, blocked_count, alert_count, risk_score) "
    "VALUES (?, ?, ?, ?, ?, ?, ?) "
    "ON CONFLICT(ip) DO UPDATE SET "
    "last_seen = excluded.last_seen, "
    "total_packets = total_packets + excluded.total_packets, "
    "blocked_count = blocked_count + excluded.blocked_count, "
    "alert_count = alert_count + excluded.alert_count, "
    "risk_score = excluded.risk_score"
)

EMA_ALPHA = 0.1


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class IpStatsCache:
    """A thread-safe cache of statistics keyed by source address."""

    def __init__(self) -> None:
        self._stats: dict[IPv4Address | IPv6Address, IpStats] = {}
        self._lock = threading.Lock()

    def record_packet(self, ip: str | IPv4Address | IPv6Address, blocked: bool, score: int) -> None:
        """Count one packet from ``ip``; a positive ``score`` counts as an alert.

        The risk score is an exponential moving average seeded with the first
        positive score seen.
        """
        address = ip_address(ip)
        now = _now_ms()
        with self._lock:
            stats = self._stats.get(address)
            if stats is None:
                stats = self._stats[address] = IpStats(first_seen=now, last_seen=now)
            stats.last_seen = now
            stats.total_packets += 1
            if blocked:
                stats.blocked_count += 1
            if score > 0:
                stats.alert_count += 1
                if stats.rolling_risk_score == 0:
                    stats.rolling_risk_score = score
                else:
                    stats.rolling_risk_score = int(
                        stats.rolling_risk_score * (1 - EMA_ALPHA) + score * EMA_ALPHA
                    )

    def get(self, ip: str | IPv4Address | IPv6Address) -> IpStats | None:
        """A copy of the statistics for ``ip``, or None if it was never seen."""
        with self._lock:
            stats = self._stats.get(ip_address(ip))
            return None if stats is None else dataclasses.replace(stats)

    def flush(self, conn: sqlite3.Connection) -> None:
        """Add the counters to the database and reset them in memory."""
        with self._lock:
            rows = [
                (
                    str(address),
                    stats.first_seen,
                    stats.last_seen,
                    stats.total_packets,
                    stats.blocked_count,
                    stats.alert_count,
                    stats.rolling_risk_score,
                )
                for address, stats in self._stats.items()
            ]
            try:
                with conn:
                    conn.executemany(_UPSERT, rows)
            except sqlite3.Error as exc:
                raise DatabaseError(str(exc)) from exc
            for stats in self._stats.values():
                stats.total_packets = 0
                stats.blocked_count = 0
                stats.alert_count = 0