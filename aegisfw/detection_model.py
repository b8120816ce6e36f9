"""Packets, flow state and results shared by the detection engine and detectors."""

from __future__ import annotations

import copy
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from ipaddress import IPv4Address, IPv6Address, ip_address
from typing import Any

from aegisfw.rules_model import BlockReason, Direction, Protocol
from aegisfw.store_model import Severity

IpAddress = IPv4Address | IPv6Address

MAX_PAYLOAD_BUF = 65536


@dataclass(frozen=True)
class TcpFlags:
    """TCP control flags from a packet header."""

    syn: bool = False
    ack: bool = False
    fin: bool = False
    rst: bool = False
    psh: bool = False
    urg: bool = False


@dataclass
class DecodedPacket:
    """A decoded L3/L4 packet ready for detection."""

    src_ip: IpAddress
    dst_ip: IpAddress
    src_port: int | None
    dst_port: int | None
    protocol: Protocol
    direction: Direction
    tcp_flags: TcpFlags | None = None
    payload: bytes = b""
    packet_len: int = 0

    def __post_init__(self) -> None:
        self.src_ip = ip_address(self.src_ip)
        self.dst_ip = ip_address(self.dst_ip)
        self.protocol = Protocol(self.protocol)
        self.direction = Direction(self.direction)
        self.payload = bytes(self.payload)


@dataclass(frozen=True)
class FlowKey:
    """Five-tuple flow identifier; ``proto`` is the IANA protocol number."""

    src_ip: IpAddress
    dst_ip: IpAddress
    src_port: int
    dst_port: int
    proto: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "src_ip", ip_address(self.src_ip))
        object.__setattr__(self, "dst_ip", ip_address(self.dst_ip))


@dataclass
class FlowState:
    """Mutable per-flow detection state; times are monotonic seconds."""

    syn_count: int = 0
    ack_count: int = 0
    rst_count: int = 0
    fin_count: int = 0
    payload_buf: bytearray = field(default_factory=bytearray)
    first_seen: float = field(default_factory=time.monotonic)
    last_seen: float = -1.0

    def __post_init__(self) -> None:
        if self.last_seen < 0:
            self.last_seen = self.first_seen

    def update_tcp_flags(self, flags: TcpFlags) -> None:
        """Count the SYN, ACK, RST and FIN flags set on a packet."""
        self.last_seen = time.monotonic()
        self.syn_count += flags.syn
        self.ack_count += flags.ack
        self.rst_count += flags.rst
        self.fin_count += flags.fin

    def append_payload(self, data: bytes) -> None:
        """Append payload bytes, dropping whatever goes past 64 KiB."""
        remaining = max(0, MAX_PAYLOAD_BUF - len(self.payload_buf))
        self.payload_buf += data[:remaining]

    def is_closed(self) -> bool:
        """True once the flow saw a RST or FINs from both sides."""
        return self.rst_count > 0 or self.fin_count >= 2

    def snapshot(self) -> FlowState:
        """An independent copy of this state."""
        return copy.deepcopy(self)


@dataclass(frozen=True)
class DetectionContext:
    """Score thresholds for one evaluation."""

    threshold_block: int = 70
    threshold_monitor: int = 40


@dataclass(frozen=True)
class DetectionEvent:
    """Emitted when a detector fires."""

    detector: str
    severity: Severity
    reason: BlockReason
    metadata: Any = None


@dataclass(frozen=True)
class DetectorResult:
    """One detector's finding: a risk score from 0 to 100."""

    score: int = 0
    reason: BlockReason | None = None
    event: DetectionEvent | None = None

    @classmethod
    def clean(cls) -> DetectorResult:
        """Nothing suspicious found."""
        return cls()


class VerdictAction(Enum):
    """What the engine decided for a packet."""

    BLOCK = "block"
    MONITOR = "monitor"
    ALLOW = "allow"


@dataclass(frozen=True)
class DetectionVerdict:
    """The engine's combined verdict for one packet."""

    action: VerdictAction
    final_score: int
    events: list[DetectionEvent] = field(default_factory=list)


class Detector(ABC):
    """A synchronous detector; ``weight`` sets its share of the combined score."""

    name: str = "detector"
    weight: float = 1.0

    @abstractmethod
    def inspect(
        self, packet: DecodedPacket, flow: FlowState, ctx: DetectionContext
    ) -> DetectorResult:
        """Score one packet given its flow's state."""