"""Detecting sources that contact many distinct ports in a short time."""

from __future__ import annotations

import threading
import time
from collections import deque
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

PORT_SCAN_SCORE = 80


class PortScanDetector(Detector):
    """Flags a source once it has contacted ``threshold`` distinct destination
    ports within a sliding window of ``window_secs`` seconds."""

    name = "port_scan"
    weight = 1.5

    def __init__(self, window_secs: float = 60, threshold: int = 20) -> None:
        self._window = window_secs
        self._threshold = threshold
        self._windows: dict[IPv4Address | IPv6Address, deque[tuple[float, int]]] = {}
        self._lock = threading.Lock()

    def inspect(
        self, packet: DecodedPacket, flow: FlowState, ctx: DetectionContext
    ) -> DetectorResult:
        if packet.dst_port is None:
            return DetectorResult.clean()
        now = time.monotonic()
        cutoff = now - self._window
        with self._lock:
            seen = self._windows.setdefault(packet.src_ip, deque())
            while seen and seen[0][0] < cutoff:
                seen.popleft()
            seen.append((now, packet.dst_port))
            distinct = len({port for _, port in seen})
        if distinct < self._threshold:
            return DetectorResult.clean()
        reason = BlockReason(
            code="port_scan",
            description=f"{distinct} distinct ports contacted within {self._window:g}s",
        )
        return DetectorResult(
            score=PORT_SCAN_SCORE,
            reason=reason,
            event=DetectionEvent(
                detector=self.name,
                severity=Severity.HIGH,
                reason=reason,
                metadata={"distinct_ports": distinct},
            ),
        )