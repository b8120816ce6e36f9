import struct
from ipaddress import IPv6Address, ip_address

import pytest

from aegisfw.decoder import DecodeError, decode_ip_packet
from aegisfw.rules_model import Direction, Protocol


def ipv4_header(src, dst, proto, payload_len, flags_fragment=0x4000):
    return struct.pack(
        "!BBHHHBBH4s4s",
        0x45,
        0,
        20 + payload_len,
        1,
        flags_fragment,
        64,
        proto,
        0,
        bytes(src),
        bytes(dst),
    )


def tcp_segment(src_port, dst_port, flags, payload=b""):
    return struct.pack("!HHIIBBHHH", src_port, dst_port, 0, 0, 0x50, flags, 0xFFFF, 0, 0) + payload


def make_tcp_syn_packet(src, dst, src_port, dst_port, payload=b""):
    segment = tcp_segment(src_port, dst_port, 0x02, payload)
    return ipv4_header(src, dst, 6, len(segment)) + segment


def make_udp_packet(src, dst, src_port, dst_port, payload=b""):
    datagram = struct.pack("!HHHH", src_port, dst_port, 8 + len(payload), 0) + payload
    return ipv4_header(src, dst, 17, len(datagram)) + datagram


def test_decode_tcp_syn_extracts_ips_and_ports():
    pkt = decode_ip_packet(make_tcp_syn_packet([1, 2, 3, 4], [5, 6, 7, 8], 12345, 80), Direction.INBOUND)
    assert str(pkt.src_ip) == "1.2.3.4"
    assert str(pkt.dst_ip) == "5.6.7.8"
    assert pkt.src_port == 12345
    assert pkt.dst_port == 80
    assert pkt.protocol is Protocol.TCP
    assert pkt.packet_len == 40


def test_decode_tcp_syn_flag_set():
    pkt = decode_ip_packet(make_tcp_syn_packet([1, 2, 3, 4], [5, 6, 7, 8], 1024, 443), Direction.INBOUND)
    assert pkt.tcp_flags is not None
    assert pkt.tcp_flags.syn
    assert not pkt.tcp_flags.ack
    assert not pkt.tcp_flags.rst
    assert not pkt.tcp_flags.fin


def test_decode_tcp_payload():
    raw = make_tcp_syn_packet([1, 2, 3, 4], [5, 6, 7, 8], 1024, 80, b"hello")
    pkt = decode_ip_packet(raw, Direction.INBOUND)
    assert pkt.payload == b"hello"
    assert pkt.packet_len == 45


def test_decode_udp_extracts_ports():
    pkt = decode_ip_packet(make_udp_packet([10, 0, 0, 1], [10, 0, 0, 2], 5000, 53), Direction.OUTBOUND)
    assert pkt.src_port == 5000
    assert pkt.dst_port == 53
    assert pkt.protocol is Protocol.UDP
    assert pkt.tcp_flags is None


def test_decode_udp_payload():
    raw = make_udp_packet([10, 0, 0, 1], [10, 0, 0, 2], 5000, 53, b"query")
    assert decode_ip_packet(raw, Direction.OUTBOUND).payload == b"query"


def test_decode_invalid_bytes_returns_error():
    with pytest.raises(DecodeError):
        decode_ip_packet(b"\xff" * 4, Direction.INBOUND)


def test_decode_empty_returns_error():
    with pytest.raises(DecodeError):
        decode_ip_packet(b"", Direction.INBOUND)


def test_decode_direction_preserved():
    pkt = decode_ip_packet(make_tcp_syn_packet([1, 2, 3, 4], [5, 6, 7, 8], 100, 200), Direction.OUTBOUND)
    assert pkt.direction is Direction.OUTBOUND


def test_decode_icmp():
    icmp = bytes([8, 0, 0, 0, 0, 1, 0, 1]) + b"ping"
    raw = ipv4_header([1, 1, 1, 1], [2, 2, 2, 2], 1, len(icmp)) + icmp
    pkt = decode_ip_packet(raw, Direction.INBOUND)
    assert pkt.protocol is Protocol.ICMP
    assert pkt.src_port is None
    assert pkt.dst_port is None
    assert pkt.payload == b"ping"


def test_decode_ipv6_udp():
    src = IPv6Address("2001:db8::1")
    dst = IPv6Address("2001:db8::2")
    datagram = struct.pack("!HHHH", 4000, 53, 8, 0)
    raw = struct.pack("!IHBB16s16s", 0x60000000, len(datagram), 17, 64, src.packed, dst.packed) + datagram
    pkt = decode_ip_packet(raw, Direction.INBOUND)
    assert pkt.src_ip == ip_address("2001:db8::1")
    assert pkt.dst_ip == ip_address("2001:db8::2")
    assert pkt.dst_port == 53
    assert pkt.protocol is Protocol.UDP


def test_truncated_packet_fails():
    raw = make_tcp_syn_packet([1, 2, 3, 4], [5, 6, 7, 8], 100, 200)
    with pytest.raises(DecodeError):
        decode_ip_packet(raw[:30], Direction.INBOUND)


def test_fragmented_packet_is_unsupported():
    segment = tcp_segment(1, 2, 0x02)
    raw = ipv4_header([1, 2, 3, 4], [5, 6, 7, 8], 6, len(segment), flags_fragment=0x2000) + segment
    with pytest.raises(DecodeError, match="unsupported"):
        decode_ip_packet(raw, Direction.INBOUND)


def test_unknown_transport_is_unsupported():
    body = b"\x00" * 8
    raw = ipv4_header([1, 2, 3, 4], [5, 6, 7, 8], 47, len(body)) + body
    with pytest.raises(DecodeError, match="unsupported"):
        decode_ip_packet(raw, Direction.INBOUND)