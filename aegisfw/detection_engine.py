"""Runs the detectors over each packet and combines their scores into a verdict."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass

from aegisfw.detection_model import (
    DecodedPacket,
    DetectionContext,
    DetectionVerdict,
    Detector,
    FlowKey,
    VerdictAction,
)
from aegisfw.flow_table import FlowTable
from aegisfw.rules_model import Protocol

_PROTOCOL_NUMBERS = {
    Protocol.TCP: 6,
    Protocol.UDP: 17,
    Protocol.ICMP: 1,
    Protocol.ANY: 0,
}


@dataclass(frozen=True)
class EngineConfig:
    """Score thresholds and flow table size."""

    threshold_block: int = 70
    threshold_monitor: int = 40
    flow_table_capacity: int = 500_000


class DetectionEngine:
    """Owns the flow table and the detectors; ``process_packet`` is the entry point."""

    def __init__(self, detectors: Iterable[Detector], config: EngineConfig | None = None) -> None:
        config = config or EngineConfig()
        self._detectors = tuple(detectors)
        self._flow_table = FlowTable(config.flow_table_capacity)
        self._ctx = DetectionContext(
            threshold_block=config.threshold_block,
            threshold_monitor=config.threshold_monitor,
        )
        self._flow_lock = threading.Lock()

    @property
    def flow_table(self) -> FlowTable:
        return self._flow_table

    def process_packet(self, packet: DecodedPacket) -> DetectionVerdict:
        """Update the packet's flow, run every detector and return the verdict.

        The final score is the weighted average of the detectors' scores,
        capped at 100.
        """
        key = FlowKey(
            src_ip=packet.src_ip,
            dst_ip=packet.dst_ip,
            src_port=packet.src_port or 0,
            dst_port=packet.dst_port or 0,
            proto=_PROTOCOL_NUMBERS[packet.protocol],
        )
        with self._flow_lock:
            flow = self._flow_table.get_or_create(key)
            if packet.tcp_flags is not None:
                flow.update_tcp_flags(packet.tcp_flags)
            if packet.payload:
                flow.append_payload(packet.payload)
            snapshot = flow.snapshot()

        results = [
            (detector, detector.inspect(packet, snapshot, self._ctx))
            for detector in self._detectors
        ]
        weighted_sum = sum(result.score * detector.weight for detector, result in results)
        weight_sum = sum(detector.weight for detector, _ in results)
        if weight_sum > 0:
            final_score = max(0, int(min(weighted_sum / weight_sum, 100.0)))
        else:
            final_score = 0

        if final_score >= self._ctx.threshold_block:
            action = VerdictAction.BLOCK
        elif final_score >= self._ctx.threshold_monitor:
            action = VerdictAction.MONITOR
        else:
            action = VerdictAction.ALLOW

        events = [result.event for _, result in results if result.event is not None]
        return DetectionVerdict(action=action, final_score=final_score, events=events)