import time

from aegisfw.detection_model import DecodedPacket, DetectionContext, FlowState, TcpFlags
from aegisfw.port_scan import PortScanDetector
from aegisfw.rules_model import Direction, Protocol
from aegisfw.store_model import Severity


def make_packet(src_ip, dst_port):
    return DecodedPacket(
        src_ip=src_ip,
        dst_ip="10.0.0.1",
        src_port=50000,
        dst_port=dst_port,
        protocol=Protocol.TCP,
        direction=Direction.INBOUND,
        tcp_flags=TcpFlags(),
        payload=b"",
        packet_len=40,
    )


def inspect(detector, src_ip, port):
    return detector.inspect(make_packet(src_ip, port), FlowState(), DetectionContext())


def test_port_scan_triggers_above_threshold():
    detector = PortScanDetector(60, 5)
    for port in range(80, 86):
        inspect(detector, "1.2.3.4", port)
    result = inspect(detector, "1.2.3.4", 99)
    assert result.score == 80
    assert result.reason.code == "port_scan"
    assert result.reason.description == "7 distinct ports contacted within 60s"
    assert result.event.severity is Severity.HIGH
    assert result.event.metadata == {"distinct_ports": 7}


def test_port_scan_does_not_trigger_below_threshold():
    detector = PortScanDetector(60, 20)
    for port in range(80, 85):
        inspect(detector, "2.3.4.5", port)
    assert inspect(detector, "2.3.4.5", 85).score == 0


def test_port_scan_different_ips_tracked_separately():
    detector = PortScanDetector(60, 4)
    for port in (80, 443):
        inspect(detector, "10.0.0.1", port)
    for port in (80, 81, 82, 83):
        inspect(detector, "10.0.0.2", port)
    assert inspect(detector, "10.0.0.1", 8080).score == 0
    assert inspect(detector, "10.0.0.2", 8080).score == 80


def test_port_scan_triggers_at_exact_threshold():
    detector = PortScanDetector(60, 3)
    for port in (80, 443, 8080):
        inspect(detector, "7.8.9.0", port)
    assert inspect(detector, "7.8.9.0", 8080).score == 80


def test_packet_without_port_passes():
    detector = PortScanDetector(60, 1)
    packet = make_packet("1.1.1.1", None)
    assert detector.inspect(packet, FlowState(), DetectionContext()).score == 0


def test_old_ports_leave_the_window():
    detector = PortScanDetector(window_secs=0.05, threshold=3)
    inspect(detector, "4.4.4.4", 1)
    inspect(detector, "4.4.4.4", 2)
    time.sleep(0.1)
    assert inspect(detector, "4.4.4.4", 3).score == 0
    inspect(detector, "4.4.4.4", 4)
    assert inspect(detector, "4.4.4.4", 5).score == 80