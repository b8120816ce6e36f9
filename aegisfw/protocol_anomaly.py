"""Detecting invalid TCP flag combinations used by scanners."""

from __future__ import annotations

from aegisfw.detection_model import (
    DecodedPacket,
    DetectionContext,
    DetectionEvent,
    Detector,
    DetectorResult,
    FlowState,
    TcpFlags,
)
from aegisfw.rules_model import BlockReason, Protocol
from aegisfw.store_model import Severity


def _classify(flags: TcpFlags) -> tuple[str, str, int] | None:
    # All-flags-set also satisfies the narrower SYN+RST and SYN+FIN checks,
    # so it comes first.
    if all((flags.syn, flags.ack, flags.fin, flags.rst, flags.psh, flags.urg)):
        return "xmas_scan", "All TCP flags set (Xmas scan)", 75
    if flags.syn and flags.rst:
        return "syn_rst", "SYN+RST combination is invalid", 70
    if flags.syn and flags.fin:
        return "syn_fin", "SYN+FIN combination is invalid", 70
    if not any((flags.syn, flags.ack, flags.fin, flags.rst, flags.psh, flags.urg)):
        return "null_scan", "All TCP flags clear (null scan)", 60
    return None


class ProtocolAnomalyDetector(Detector):
    """Flags TCP packets with Xmas, SYN+RST, SYN+FIN or null flag patterns."""

    name = "protocol_anomaly"
    weight = 1.2

    def inspect(
        self, packet: DecodedPacket, flow: FlowState, ctx: DetectionContext
    ) -> DetectorResult:
        if packet.protocol is not Protocol.TCP or packet.tcp_flags is None:
            return DetectorResult.clean()
        anomaly = _classify(packet.tcp_flags)
        if anomaly is None:
            return DetectorResult.clean()
        code, description, score = anomaly
        reason = BlockReason(code=code, description=description)
        return DetectorResult(
            score=score,
            reason=reason,
            event=DetectionEvent(
                detector=self.name,
                severity=Severity.MEDIUM,
                reason=reason,
                metadata=None,
            ),
        )