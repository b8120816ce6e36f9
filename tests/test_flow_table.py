import time

import pytest

from aegisfw.flow_table import FlowTable
from aegisfw.detection_model import FlowKey


def key(src_port, dst_port):
    return FlowKey(
        src_ip="1.2.3.4",
        dst_ip="5.6.7.8",
        src_port=src_port,
        dst_port=dst_port,
        proto=6,
    )


def test_get_or_create_same_key_returns_same_state():
    table = FlowTable(1000)
    a = table.get_or_create(key(1234, 80))
    b = table.get_or_create(key(1234, 80))
    assert a is b


def test_different_keys_return_different_states():
    table = FlowTable(1000)
    a = table.get_or_create(key(1, 80))
    b = table.get_or_create(key(2, 80))
    assert a is not b


def test_entry_count_increments():
    table = FlowTable(1000)
    table.get_or_create(key(1, 80))
    table.get_or_create(key(2, 80))
    assert len(table) == 2


def test_invalidate_removes_entry_and_resets_state():
    table = FlowTable(1000)
    k = key(7777, 443)
    first = table.get_or_create(k)
    first.syn_count = 99
    table.invalidate(k)
    second = table.get_or_create(k)
    assert second is not first
    assert second.syn_count == 0


def test_flow_state_mutations_visible_across_handles():
    table = FlowTable(1000)
    k = key(9000, 443)
    a = table.get_or_create(k)
    b = table.get_or_create(k)
    a.syn_count = 42
    assert b.syn_count == 42


def test_capacity_evicts_least_recently_used():
    table = FlowTable(2)
    first = table.get_or_create(key(1, 80))
    table.get_or_create(key(2, 80))
    table.get_or_create(key(1, 80))  # refresh key 1
    table.get_or_create(key(3, 80))
    assert len(table) == 2
    assert table.get_or_create(key(1, 80)) is first


def test_capacity_evicts_oldest_when_untouched():
    table = FlowTable(2)
    first = table.get_or_create(key(1, 80))
    table.get_or_create(key(2, 80))
    table.get_or_create(key(3, 80))
    assert table.get_or_create(key(1, 80)) is not first


def test_idle_flows_expire():
    table = FlowTable(100, time_to_idle=0.05)
    first = table.get_or_create(key(5, 80))
    time.sleep(0.1)
    assert len(table) == 0
    assert table.get_or_create(key(5, 80)) is not first


def test_invalid_settings_rejected():
    with pytest.raises(ValueError):
        FlowTable(-1)
    with pytest.raises(ValueError):
        FlowTable(10, time_to_idle=0)