"""Detecting flows with far more SYNs than ACKs."""

from __future__ import annotations

from dataclasses import dataclass

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

SYN_FLOOD_SCORE = 90


@dataclass
class SynFloodDetector(Detector):
    """Flags a flow once it has at least ``min_syn_count`` SYNs and a
    SYN/(ACK+1) ratio of at least ``syn_ratio_threshold``."""

    syn_ratio_threshold: float = 3.0
    min_syn_count: int = 10

    name = "syn_flood"
    weight = 2.0

    def inspect(
        self, packet: DecodedPacket, flow: FlowState, ctx: DetectionContext
    ) -> DetectorResult:
        if flow.syn_count < self.min_syn_count:
            return DetectorResult.clean()
        ratio = flow.syn_count / (flow.ack_count + 1)
        if ratio < self.syn_ratio_threshold:
            return DetectorResult.clean()
        reason = BlockReason(
            code="syn_flood",
            description=(
                f"SYN/ACK ratio {ratio:.1f} ({flow.syn_count}:{flow.ack_count}) "
                f"exceeds threshold {self.syn_ratio_threshold:.1f}"
            ),
        )
        return DetectorResult(
            score=SYN_FLOOD_SCORE,
            reason=reason,
            event=DetectionEvent(
                detector=self.name,
                severity=Severity.CRITICAL,
                reason=reason,
                metadata={
                    "syn_count": flow.syn_count,
                    "ack_count": flow.ack_count,
                    "ratio": ratio,
                },
            ),
        )