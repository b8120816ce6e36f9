"""Data model for firewall rules and the packets they are matched against."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import StrEnum
from ipaddress import (
    IPv4Address,
    IPv4Network,
    IPv6Address,
    IPv6Network,
    ip_address,
    ip_network,
)
from typing import Union

IpNetwork = Union[IPv4Network, IPv6Network]
IpAddress = Union[IPv4Address, IPv6Address]

MAX_PORT = 65535


@dataclass(frozen=True)
class BlockReason:
    """Why traffic was blocked: a stable code and a readable description."""

    code: str
    description: str


class Direction(StrEnum):
    """Traffic direction relative to the host."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"
    FORWARD = "forward"


class Protocol(StrEnum):
    """Supported network protocols."""

    TCP = "tcp"
    UDP = "udp"
    ICMP = "icmp"
    ANY = "any"


def _is_port(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 <= value <= MAX_PORT


@dataclass(frozen=True)
class PortRange:
    """A single port (``end`` is None) or an inclusive port range."""

    start: int
    end: int | None = None

    def __post_init__(self) -> None:
        if not _is_port(self.start):
            raise ValueError(f"invalid port: {self.start!r}")
        if self.end is not None and not _is_port(self.end):
            raise ValueError(f"invalid port: {self.end!r}")

    @classmethod
    def single(cls, port: int) -> PortRange:
        return cls(port)

    @property
    def is_single(self) -> bool:
        return self.end is None

    def contains(self, port: int) -> bool:
        if self.end is None:
            return port == self.start
        return self.start <= port <= self.end

    def __contains__(self, port: int) -> bool:
        return self.contains(port)


class RateLimitUnit(StrEnum):
    """What rate limiting counts."""

    PACKETS = "packets"
    BYTES = "bytes"


class RateLimitScope(StrEnum):
    """Scope of rate limit enforcement."""

    PER_SRC_IP = "per_src_ip"
    PER_CONNECTION = "per_connection"
    GLOBAL = "global"


class ExceedAction(StrEnum):
    """What happens when a rate limit is exceeded."""

    DROP = "drop"
    REJECT = "reject"
    LOG = "log"


@dataclass(frozen=True)
class RateLimitPolicy:
    """Token-bucket rate limit policy."""

    rate: int = 100
    burst: int = 200
    unit: RateLimitUnit = RateLimitUnit.PACKETS
    scope: RateLimitScope = RateLimitScope.PER_SRC_IP
    on_exceed: ExceedAction = ExceedAction.DROP


class ActionKind(StrEnum):
    """The kinds of action a rule can take."""

    ALLOW = "allow"
    BLOCK = "block"
    REJECT = "reject"
    LOG = "log"
    RATE_LIMIT = "rate_limit"


@dataclass(frozen=True)
class Action:
    """What to do when a rule matches; rate limiting carries a policy."""

    kind: ActionKind
    rate_limit: RateLimitPolicy | None = None

    def __post_init__(self) -> None:
        kind = ActionKind(self.kind)
        object.__setattr__(self, "kind", kind)
        if kind is ActionKind.RATE_LIMIT and self.rate_limit is None:
            raise ValueError("a rate_limit action needs a policy")
        if kind is not ActionKind.RATE_LIMIT and self.rate_limit is not None:
            raise ValueError(f"a {kind.value} action takes no policy")


class MatchKind(StrEnum):
    """The field a match condition tests."""

    SRC_IP = "src_ip"
    DST_IP = "dst_ip"
    SRC_PORT = "src_port"
    DST_PORT = "dst_port"
    PROTOCOL = "protocol"
    DIRECTION = "direction"


_IP_KINDS = (MatchKind.SRC_IP, MatchKind.DST_IP)
_PORT_KINDS = (MatchKind.SRC_PORT, MatchKind.DST_PORT)


@dataclass(frozen=True)
class Match:
    """One condition of a rule; all conditions of a rule must hold.

    Strings are accepted for networks, protocols and directions, and plain
    integers for ports; they are converted on construction.
    """

    kind: MatchKind
    value: IpNetwork | PortRange | Protocol | Direction

    def __post_init__(self) -> None:
        kind = MatchKind(self.kind)
        value = self.value
        if kind in _IP_KINDS:
            if isinstance(value, str):
                value = ip_network(value, strict=False)
            elif not isinstance(value, (IPv4Network, IPv6Network)):
                raise TypeError(f"{kind.value} needs a network, got {value!r}")
        elif kind in _PORT_KINDS:
            if isinstance(value, int) and not isinstance(value, bool):
                value = PortRange(value)
            elif not isinstance(value, PortRange):
                raise TypeError(f"{kind.value} needs a port or range, got {value!r}")
        elif kind is MatchKind.PROTOCOL:
            value = Protocol(value)
        else:
            value = Direction(value)
        object.__setattr__(self, "kind", kind)
        object.__setattr__(self, "value", value)


@dataclass
class Rule:
    """A complete firewall rule. Lower priority values are evaluated first."""

    id: str
    priority: int
    name: str
    action: Action
    enabled: bool = True
    matches: list[Match] = field(default_factory=list)
    log: bool = False

    @classmethod
    def default_allow(cls) -> Rule:
        """An enabled allow-all rule with a fresh random id."""
        return cls(
            id=str(uuid.uuid4()),
            priority=100,
            name="default-allow",
            action=Action(ActionKind.ALLOW),
        )


@dataclass(frozen=True)
class PacketInfo:
    """The packet fields the rule engine matches against."""

    src_ip: IpAddress
    dst_ip: IpAddress
    src_port: int | None
    dst_port: int | None
    protocol: Protocol
    direction: Direction

    def __post_init__(self) -> None:
        object.__setattr__(self, "src_ip", ip_address(self.src_ip))
        object.__setattr__(self, "dst_ip", ip_address(self.dst_ip))
        object.__setattr__(self, "protocol", Protocol(self.protocol))
        object.__setattr__(self, "direction", Direction(self.direction))