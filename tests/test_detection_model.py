import dataclasses
from ipaddress import ip_address

import pytest

from aegisfw.detection_model import (
    DecodedPacket,
    DetectionContext,
    DetectionEvent,
    Detector,
    DetectorResult,
    FlowKey,
    FlowState,
    TcpFlags,
)
from aegisfw.rules_model import BlockReason, Direction, Protocol
from aegisfw.store_model import Severity


def make_packet() -> DecodedPacket:
    return DecodedPacket(
        src_ip="1.2.3.4",
        dst_ip="5.6.7.8",
        src_port=12345,
        dst_port=80,
        protocol=Protocol.TCP,
        direction=Direction.INBOUND,
        tcp_flags=TcpFlags(syn=True),
        payload=b"hello",
        packet_len=60,
    )


def test_flow_state_update_tcp_flags():
    state = FlowState()
    state.update_tcp_flags(TcpFlags(syn=True))
    state.update_tcp_flags(TcpFlags(syn=True))
    assert state.syn_count == 2
    assert state.ack_count == 0


def test_flow_state_append_payload_caps_at_64k():
    state = FlowState()
    chunk = bytes(1024)
    for _ in range(64):
        state.append_payload(chunk)
    assert len(state.payload_buf) == 65536
    state.append_payload(chunk)
    assert len(state.payload_buf) == 65536


def test_append_payload_truncates_partial_chunk():
    state = FlowState()
    state.append_payload(bytes(65000))
    state.append_payload(b"x" * 1000)
    assert len(state.payload_buf) == 65536
    assert state.payload_buf[-536:] == b"x" * 536


def test_flow_state_is_closed_after_rst():
    state = FlowState()
    state.update_tcp_flags(TcpFlags(rst=True))
    assert state.is_closed() is True


def test_flow_state_closed_after_two_fins():
    state = FlowState()
    state.update_tcp_flags(TcpFlags(fin=True))
    assert state.is_closed() is False
    state.update_tcp_flags(TcpFlags(fin=True, ack=True))
    assert state.is_closed() is True


def test_snapshot_is_independent():
    state = FlowState()
    state.append_payload(b"abc")
    snap = state.snapshot()
    state.append_payload(b"def")
    state.update_tcp_flags(TcpFlags(syn=True))
    assert snap.payload_buf == bytearray(b"abc")
    assert snap.syn_count == 0


def test_detector_result_clean_has_zero_score():
    result = DetectorResult.clean()
    assert result.score == 0
    assert result.reason is None
    assert result.event is None


def test_detection_context_defaults():
    ctx = DetectionContext()
    assert ctx.threshold_block == 70
    assert ctx.threshold_monitor == 40


def test_flow_key_is_hashable():
    key = FlowKey("1.2.3.4", "5.6.7.8", 1234, 80, 6)
    table = {key: 42}
    assert table[FlowKey(ip_address("1.2.3.4"), "5.6.7.8", 1234, 80, 6)] == 42


def test_decoded_packet_can_be_copied():
    packet = make_packet()
    other = dataclasses.replace(packet, protocol=Protocol.UDP)
    assert other.src_ip == packet.src_ip
    assert packet.protocol is Protocol.TCP
    assert other.protocol is Protocol.UDP


def test_decoded_packet_converts_fields():
    packet = make_packet()
    assert packet.src_ip == ip_address("1.2.3.4")
    assert packet.payload == b"hello"


def test_detector_subclass_uses_defaults():
    class Fixed(Detector):
        name = "fixed"

        def inspect(self, packet, flow, ctx):
            reason = BlockReason("fixed", "always fires")
            return DetectorResult(50, reason, DetectionEvent(self.name, Severity.LOW, reason))

    detector = Fixed()
    result = detector.inspect(make_packet(), FlowState(), DetectionContext())
    assert detector.weight == 1.0
    assert result.score == 50
    assert result.event.detector == "fixed"


def test_detector_is_abstract():
    with pytest.raises(TypeError):
        Detector()