"""Per-source token-bucket rate limiting."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from ipaddress import IPv4Address, IPv6Address

from aegisfw.detection_model import (
    DecodedPacket,
    DetectionContext,
    DetectionEvent,
    Detector,
    DetectorResult,
    FlowState,
)
from aegisfw.rules_model import BlockReason
from aegisfw.store_model import Severity

RATE_EXCEEDED_SCORE = 60


@dataclass
class _TokenBucket:
    tokens: float
    last_refill: float
    rate: float
    capacity: float

    def try_consume(self, now: float) -> bool:
        elapsed = max(0.0, now - self.last_refill)
        self.tokens = min(self.tokens + elapsed * self.rate, self.capacity)
        self.last_refill = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False


class RateLimiter(Detector):
    """Flags a source once it sends faster than ``rate`` packets per second,
    allowing bursts of up to ``capacity`` packets."""

    name = "rate_limiter"
    weight = 1.0

    def __init__(self, rate: float = 1000.0, capacity: float = 2000.0) -> None:
        self._rate = float(rate)
        self._capacity = float(capacity)
        self._buckets: dict[IPv4Address | IPv6Address, _TokenBucket] = {}
        self._lock = threading.Lock()

    def inspect(
        self, packet: DecodedPacket, flow: FlowState, ctx: DetectionContext
    ) -> DetectorResult:
        now = time.monotonic()
        with self._lock:
            bucket = self._buckets.get(packet.src_ip)
            if bucket is None:
                bucket = _TokenBucket(self._capacity, now, self._rate, self._capacity)
                self._buckets[packet.src_ip] = bucket
            allowed = bucket.try_consume(now)
        if allowed:
            return DetectorResult.clean()
        reason = BlockReason(
            code="rate_exceeded",
            description=(
                f"Source IP {packet.src_ip} exceeded rate limit of {self._rate:.0f} pkt/s"
            ),
        )
        return DetectorResult(
            score=RATE_EXCEEDED_SCORE,
            reason=reason,
            event=DetectionEvent(
                detector=self.name,
                severity=Severity.MEDIUM,
                reason=reason,
                metadata={"rate_per_sec": self._rate},
            ),
        )