"""Decoding raw IP-layer packets into detection packets."""

from __future__ import annotations

from collections.abc import Buffer
from ipaddress import IPv4Address, IPv6Address

from aegisfw.detection_model import DecodedPacket, TcpFlags
from aegisfw.rules_model import Direction, Protocol

_IPV4_MIN_HEADER = 20
_IPV6_HEADER = 40

_PROTO_ICMP = 1
_PROTO_TCP = 6
_PROTO_UDP = 17
_PROTO_ICMPV6 = 58

_IPV6_HOP_BY_HOP = 0
_IPV6_ROUTING = 43
_IPV6_FRAGMENT = 44
_IPV6_AUTH = 51
_IPV6_DEST_OPTS = 60
_IPV6_EXTENSIONS = frozenset(
    {_IPV6_HOP_BY_HOP, _IPV6_ROUTING, _IPV6_FRAGMENT, _IPV6_AUTH, _IPV6_DEST_OPTS}
)

_TCP_FIN = 0x01
_TCP_SYN = 0x02
_TCP_RST = 0x04
_TCP_PSH = 0x08
_TCP_ACK = 0x10
_TCP_URG = 0x20


class DecodeError(Exception):
    """A packet could not be parsed or has a structure that is not supported."""


def _parse_error(detail: str) -> DecodeError:
    return DecodeError(f"failed to parse IP packet: {detail}")


def _unsupported() -> DecodeError:
    return DecodeError("unsupported IP version or packet structure")


def _parse_ipv4(data: bytes) -> tuple[IPv4Address, IPv4Address, int, bytes, bool]:
    if len(data) < _IPV4_MIN_HEADER:
        raise _parse_error(f"IPv4 header needs {_IPV4_MIN_HEADER} bytes, got {len(data)}")
    header_len = (data[0] & 0x0F) * 4
    if header_len < _IPV4_MIN_HEADER:
        raise _parse_error(f"IPv4 header length {header_len} is too small")
    total_len = int.from_bytes(data[2:4], "big")
    if total_len < header_len:
        raise _parse_error(f"IPv4 total length {total_len} is below header length {header_len}")
    if len(data) < total_len:
        raise _parse_error(f"IPv4 total length {total_len} exceeds packet size {len(data)}")
    flags_fragment = int.from_bytes(data[6:8], "big")
    fragmented = bool(flags_fragment & 0x2000 or flags_fragment & 0x1FFF)
    source = IPv4Address(data[12:16])
    destination = IPv4Address(data[16:20])
    return source, destination, data[9], data[header_len:total_len], fragmented


def _parse_ipv6(data: bytes) -> tuple[IPv6Address, IPv6Address, int, bytes, bool]:
    if len(data) < _IPV6_HEADER:
        raise _parse_error(f"IPv6 header needs {_IPV6_HEADER} bytes, got {len(data)}")
    end = _IPV6_HEADER + int.from_bytes(data[4:6], "big")
    if len(data) < end:
        raise _parse_error(f"IPv6 payload length exceeds packet size {len(data)}")
    next_header = data[6]
    source = IPv6Address(data[8:24])
    destination = IPv6Address(data[24:40])
    body = data[_IPV6_HEADER:end]
    fragmented = False
    while next_header in _IPV6_EXTENSIONS:
        if len(body) < 8:
            raise _parse_error("IPv6 extension header is truncated")
        following = body[0]
        if next_header == _IPV6_FRAGMENT:
            size = 8
            offset = int.from_bytes(body[2:4], "big") >> 3
            if offset or body[3] & 0x01:
                fragmented = True
        elif next_header == _IPV6_AUTH:
            size = (body[1] + 2) * 4
        else:
            size = (body[1] + 1) * 8
        if len(body) < size:
            raise _parse_error("IPv6 extension header is truncated")
        body = body[size:]
        next_header = following
    return source, destination, next_header, body, fragmented


def _parse_tcp(body: bytes) -> tuple[int, int, TcpFlags, bytes]:
    if len(body) < 20:
        raise _parse_error(f"TCP header needs 20 bytes, got {len(body)}")
    header_len = (body[12] >> 4) * 4
    if header_len < 20:
        raise _parse_error(f"TCP data offset {header_len} is too small")
    if len(body) < header_len:
        raise _parse_error(f"TCP header length {header_len} exceeds segment size {len(body)}")
    bits = body[13]
    flags = TcpFlags(
        syn=bool(bits & _TCP_SYN),
        ack=bool(bits & _TCP_ACK),
        fin=bool(bits & _TCP_FIN),
        rst=bool(bits & _TCP_RST),
        psh=bool(bits & _TCP_PSH),
        urg=bool(bits & _TCP_URG),
    )
    src_port = int.from_bytes(body[0:2], "big")
    dst_port = int.from_bytes(body[2:4], "big")
    return src_port, dst_port, flags, body[header_len:]


def _parse_udp(body: bytes) -> tuple[int, int, bytes]:
    if len(body) < 8:
        raise _parse_error(f"UDP header needs 8 bytes, got {len(body)}")
    length = int.from_bytes(body[4:6], "big")
    if length == 0:
        payload = body[8:]
    elif length < 8 or length > len(body):
        raise _parse_error(f"UDP length {length} does not fit the datagram")
    else:
        payload = body[8:length]
    return int.from_bytes(body[0:2], "big"), int.from_bytes(body[2:4], "big"), payload


def decode_ip_packet(raw: Buffer, direction: Direction) -> DecodedPacket:
    """Decode a raw IP packet (no Ethernet header).

    The caller supplies ``direction``, for example from the hook the packet
    was captured at. Raises DecodeError on malformed or unsupported packets.
    """
    data = bytes(raw)
    direction = Direction(direction)
    if not data:
        raise _parse_error("packet is empty")
    version = data[0] >> 4
    if version == 4:
        src_ip, dst_ip, proto, body, fragmented = _parse_ipv4(data)
    elif version == 6:
        src_ip, dst_ip, proto, body, fragmented = _parse_ipv6(data)
    else:
        raise _parse_error(f"unsupported IP version {version}")
    if fragmented:
        raise _unsupported()

    common = {"src_ip": src_ip, "dst_ip": dst_ip, "direction": direction, "packet_len": len(data)}
    if proto == _PROTO_TCP:
        src_port, dst_port, flags, payload = _parse_tcp(body)
        return DecodedPacket(
            src_port=src_port,
            dst_port=dst_port,
            protocol=Protocol.TCP,
            tcp_flags=flags,
            payload=payload,
            **common,
        )
    if proto == _PROTO_UDP:
        src_port, dst_port, payload = _parse_udp(body)
        return DecodedPacket(
            src_port=src_port,
            dst_port=dst_port,
            protocol=Protocol.UDP,
            payload=payload,
            **common,
        )
    if proto in (_PROTO_ICMP, _PROTO_ICMPV6):
        if len(body) < 8:
            raise _parse_error(f"ICMP header needs 8 bytes, got {len(body)}")
        return DecodedPacket(
            src_port=None,
            dst_port=None,
            protocol=Protocol.ICMP,
            payload=body[8:],
            **common,
        )
    raise _unsupported()