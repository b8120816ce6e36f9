"""Records kept by the event store: events, per-IP statistics and audit entries."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum, StrEnum


class Severity(IntEnum):
    """Event severity, ordered from least to most severe."""

    INFO = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        """The lower-case name used in storage."""
        return self.name.lower()

    def __str__(self) -> str:
        return self.label

    @classmethod
    def from_str(cls, text: str) -> Severity | None:
        """Look a severity up by its stored label; None if there is none."""
        return _SEVERITY_LABELS.get(text)


_SEVERITY_LABELS = {member.label: member for member in Severity}


class EventKind(StrEnum):
    """What kind of firewall event was recorded."""

    BLOCK = "block"
    ALLOW = "allow"
    ALERT = "alert"
    ANOMALY = "anomaly"

    @classmethod
    def from_str(cls, text: str) -> EventKind | None:
        """Look a kind up by its stored label; None if there is none."""
        try:
            return cls(text)
        except ValueError:
            return None


@dataclass(kw_only=True)
class Event:
    """A firewall event record. ``id`` is None until the event is stored.

    Timestamps are Unix milliseconds.
    """

    id: int | None = None
    ts: int
    severity: Severity
    kind: EventKind
    src_ip: str
    dst_ip: str
    src_port: int | None = None
    dst_port: int | None = None
    protocol: str | None = None
    rule_id: str | None = None
    detector: str | None = None
    score: int | None = None
    hit_count: int = 1
    first_seen: int
    last_seen: int
    reason_code: str | None = None
    reason_desc: str | None = None
    raw_meta: str | None = None


@dataclass
class IpStats:
    """Aggregate statistics for one source address."""

    first_seen: int = 0
    last_seen: int = 0
    total_packets: int = 0
    blocked_count: int = 0
    alert_count: int = 0
    rolling_risk_score: int = 0


@dataclass(kw_only=True)
class AuditEntry:
    """An entry in the tamper-evident audit log."""

    id: int | None = None
    ts: int
    actor: str
    action: str
    target_id: str | None = None
    detail: str | None = None
    prev_hash: str
    entry_hmac: str


@dataclass
class EventQuery:
    """Filters for event retrieval; unset fields do not filter."""

    since_ms: int | None = None
    until_ms: int | None = None
    severity: Severity | None = None
    src_ip_prefix: str | None = None
    fts_query: str | None = None
    limit: int | None = None
    page_token: str | None = None