"""Blocking traffic from addresses on a reputation block list."""

from __future__ import annotations

from collections.abc import Iterable
from ipaddress import IPv4Address, IPv6Address, ip_address

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

REPUTATION_SCORE = 100


class IpReputationDetector(Detector):
    """Flags packets whose source address is on the block list."""

    name = "ip_reputation"
    weight = 1.5

    def __init__(self) -> None:
        self._blocklist: frozenset[IPv4Address | IPv6Address] = frozenset()

    def swap_blocklist(self, ips: Iterable[str | IPv4Address | IPv6Address]) -> None:
        """Replace the whole block list in one step."""
        self._blocklist = frozenset(ip_address(ip) for ip in ips)

    def load_from_str(self, content: str) -> None:
        """Replace the block list with one address per line; bad lines are skipped."""
        addresses = set()
        for line in content.splitlines():
            try:
                addresses.add(ip_address(line.strip()))
            except ValueError:
                continue
        self.swap_blocklist(addresses)

    def inspect(
        self, packet: DecodedPacket, flow: FlowState, ctx: DetectionContext
    ) -> DetectorResult:
        if packet.src_ip not in self._blocklist:
            return DetectorResult.clean()
        reason = BlockReason(
            code="ip_reputation",
            description=f"Source IP {packet.src_ip} is on the reputation block list",
        )
        return DetectorResult(
            score=REPUTATION_SCORE,
            reason=reason,
            event=DetectionEvent(
                detector=self.name,
                severity=Severity.CRITICAL,
                reason=reason,
                metadata={"src_ip": str(packet.src_ip)},
            ),
        )