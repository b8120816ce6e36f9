"""Tamper-evident audit log built as an HMAC-SHA256 chain."""

from __future__ import annotations

import hashlib
import hmac
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager

from aegisfw.errors import AuditChainViolation, DatabaseError
from aegisfw.store_model import AuditEntry


@contextmanager
def _database_errors() -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise DatabaseError(str(exc)) from exc


class AuditLog:
    """Appends to and verifies the audit log chain.

    Each entry's HMAC covers ``"{prev_hash}|{ts}|{actor}|{action}|{detail}"``
    where ``prev_hash`` is the previous entry's HMAC, or the genesis hash for
    the first entry. Changing any entry breaks the chain.
    """

    def __init__(self, hmac_key: bytes, genesis_hash: str) -> None:
        self._hmac_key = bytes(hmac_key)
        self._genesis_hash = genesis_hash

    def append(
        self,
        conn: sqlite3.Connection,
        actor: str,
        action: str,
        target_id: str | None = None,
        detail: str | None = None,
    ) -> AuditEntry:
        """Add an entry chained to the last one and return it."""
        with _database_errors():
            prev_hash = self._last_hmac(conn)
            ts = time.time_ns() // 1_000_000
            entry_hmac = self._compute_hmac(prev_hash, ts, actor, action, detail or "")
            with conn:
                cursor = conn.execute(
                    "INSERT INTO audit_log "
                    "(ts, actor, action, target_id, detail, prev_hash, entry_hmac) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (ts, actor, action, target_id, detail, prev_hash, entry_hmac),
                )
        return AuditEntry(
            id=cursor.lastrowid,
            ts=ts,
            actor=actor,
            action=action,
            target_id=target_id,
            detail=detail,
            prev_hash=prev_hash,
            entry_hmac=entry_hmac,
        )

    def verify_chain(self, conn: sqlite3.Connection) -> int:
        """Check the whole chain in order and return the number of entries.

        Raises AuditChainViolation at the first broken entry.
        """
        with _database_errors():
            rows = conn.execute(
                "SELECT id, ts, actor, action, detail, prev_hash, entry_hmac "
                "FROM audit_log ORDER BY id ASC"
            ).fetchall()

        expected_prev = self._genesis_hash
        for entry_id, ts, actor, action, detail, prev_hash, entry_hmac in rows:
            if prev_hash != expected_prev:
                raise AuditChainViolation(
                    entry_id,
                    f"prev_hash mismatch: expected {expected_prev}, got {prev_hash}",
                )
            expected_hmac = self._compute_hmac(prev_hash, ts, actor, action, detail or "")
            if not hmac.compare_digest(str(entry_hmac).encode(), expected_hmac.encode()):
                raise AuditChainViolation(
                    entry_id, "HMAC verification failed — entry may have been tampered"
                )
            expected_prev = entry_hmac
        return len(rows)

    def _last_hmac(self, conn: sqlite3.Connection) -> str:
        row = conn.execute(
            "SELECT entry_hmac FROM audit_log ORDER BY id DESC LIMIT 1"
        ).fetchone()
        return self._genesis_hash if row is None else row[0]

    def _compute_hmac(
        self, prev_hash: str, ts: int, actor: str, action: str, detail: str
    ) -> str:
        message = f"{prev_hash}|{ts}|{actor}|{action}|{detail}".encode("utf-8")
        return hmac.new(self._hmac_key, message, hashlib.sha256).hexdigest()