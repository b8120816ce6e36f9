"""Storing, de-duplicating and querying firewall events."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from aegisfw.errors import DatabaseError
from aegisfw.store_model import Event, EventKind, EventQuery, Severity

DEDUP_WINDOW_MS = 60_000

_FIND_DUPLICATE = (
    "SELECT id FROM events "
    "WHERE src_ip = ? AND dst_ip = ? AND dst_port IS ? "
    "AND reason_code IS ? AND last_seen > ? LIMIT 1"
)
_BUMP = "UPDATE events SET hit_count = hit_count + 1, last_seen = ? WHERE id = ?"
_INSERT = (
    "INSERT INTO events "
    "(ts, severity, kind, src_ip, dst_ip, src_port, dst_port, protocol, "
    "rule_id, detector, score, hit_count, first_seen, last_seen, "
    "reason_code, reason_desc, raw_meta) "
    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
)
_SELECT = (
    "SELECT id, ts, severity, kind, src_ip, dst_ip, src_port, dst_port, protocol, "
    "rule_id, detector, score, hit_count, first_seen, last_seen, "
    "reason_code, reason_desc, raw_meta FROM events WHERE 1=1"
)


@contextmanager
def _database_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise DatabaseError(str(exc)) from exc


def _row_to_event(row: tuple[Any, ...]) -> Event:
    (
        event_id, ts, severity, kind, src_ip, dst_ip, src_port, dst_port, protocol,
        rule_id, detector, score, hit_count, first_seen, last_seen,
        reason_code, reason_desc, raw_meta,
    ) = row
    return Event(
        id=event_id,
        ts=ts,
        severity=Severity.from_str(severity) or Severity.INFO,
        kind=EventKind.from_str(kind) or EventKind.BLOCK,
        src_ip=src_ip,
        dst_ip=dst_ip,
        src_port=src_port,
        dst_port=dst_port,
        protocol=protocol,
        rule_id=rule_id,
        detector=detector,
        score=score,
        hit_count=hit_count,
        first_seen=first_seen,
        last_seen=last_seen,
        reason_code=reason_code,
        reason_desc=reason_desc,
        raw_meta=raw_meta,
    )


class EventWriter:
    """Inserts events, folding repeats into a hit count, and queries them.

    An event repeats an earlier one when source, destination, destination
    port and reason code agree and the earlier one was last seen within the
    past 60 seconds of the new event's timestamp.
    """

    def insert(self, conn: sqlite3.Connection, event: Event) -> int:
        """Store one event and return the id of the row it landed in."""
        with _database_errors(), conn:
            return self._insert_one(conn, event)

    def insert_batch(self, conn: sqlite3.Connection, events: Iterable[Event]) -> list[int]:
        """Store several events in one transaction; return their row ids."""
        events = list(events)
        if not events:
            return []
        with _database_errors(), conn:
            return [self._insert_one(conn, event) for event in events]

    def query(self, conn: sqlite3.Connection, q: EventQuery) -> list[Event]:
        """Return matching events, newest first."""
        clauses = [_SELECT]
        params: list[Any] = []
        if q.since_ms is not None:
            clauses.append("AND ts >= ?")
            params.append(q.since_ms)
        if q.until_ms is not None:
            clauses.append("AND ts <= ?")
            params.append(q.until_ms)
        if q.severity is not None:
            clauses.append("AND severity = ?")
            params.append(Severity(q.severity).label)
        clauses.append("ORDER BY ts DESC")
        if q.limit is not None:
            clauses.append("LIMIT ?")
            params.append(int(q.limit))
        with _database_errors():
            rows = conn.execute(" ".join(clauses), params).fetchall()
        return [_row_to_event(row) for row in rows]

    @staticmethod
    def _insert_one(conn: sqlite3.Connection, event: Event) -> int:
        cutoff = event.ts - DEDUP_WINDOW_MS
        existing = conn.execute(
            _FIND_DUPLICATE,
            (event.src_ip, event.dst_ip, event.dst_port, event.reason_code, cutoff),
        ).fetchone()
        if existing is not None:
            conn.execute(_BUMP, (event.ts, existing[0]))
            return existing[0]
        cursor = conn.execute(
            _INSERT,
            (
                event.ts,
                Severity(event.severity).label,
                EventKind(event.kind).value,
                event.src_ip,
                event.dst_ip,
                event.src_port,
                event.dst_port,
                event.protocol,
                event.rule_id,
                event.detector,
                event.score,
                event.hit_count,
                event.first_seen,
                event.last_seen,
                event.reason_code,
                event.reason_desc,
                event.raw_meta,
            ),
        )
        return cursor.lastrowid