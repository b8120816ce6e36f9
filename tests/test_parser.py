import pytest

from aegisfw.errors import (
    RulesConflictError,
    RulesFileNotFound,
    RulesParseError,
    RulesValidationError,
)
from aegisfw.parser import parse_rules_file, parse_rules_toml, rule_from_dict
from aegisfw.rules_model import (
    ActionKind,
    ExceedAction,
    Match,
    MatchKind,
    PortRange,
    Protocol,
    RateLimitPolicy,
    RateLimitScope,
    RateLimitUnit,
)

VALID_TOML = """
[[rules]]
id = "a1b2c3d4-e5f6-7890-abcd-ef1234567890"
priority = 10
name = "Allow SSH"
enabled = true
action = { type = "allow" }
log = false

  [[rules.matches]]
  type = "src_ip"
  value = "192.168.1.0/24"

  [[rules.matches]]
  type = "dst_port"
  value = 22

  [[rules.matches]]
  type = "protocol"
  value = "tcp"
"""


def test_parse_valid_toml():
    rules = parse_rules_toml(VALID_TOML)
    assert len(rules) == 1
    assert rules[0].name == "Allow SSH"
    assert rules[0].priority == 10
    assert rules[0].enabled is True
    assert len(rules[0].matches) == 3
    assert rules[0].matches[0] == Match(MatchKind.SRC_IP, "192.168.1.0/24")
    assert rules[0].matches[1].value == PortRange(22)
    assert rules[0].matches[2].value is Protocol.TCP


def test_parse_invalid_toml_returns_error():
    with pytest.raises(RulesParseError):
        parse_rules_toml("this is not toml ][")


def test_parse_rule_with_out_of_range_priority_fails():
    toml = """
[[rules]]
id = "a1b2c3d4-e5f6-7890-abcd-ef1234567891"
priority = 99999
name = "Bad priority"
action = { type = "allow" }
"""
    with pytest.raises(RulesValidationError) as info:
        parse_rules_toml(toml)
    assert "99999" in str(info.value)


def test_parse_duplicate_ids_fails():
    toml = """
[[rules]]
id = "same-id"
priority = 1
name = "Rule 1"
action = { type = "allow" }

[[rules]]
id = "same-id"
priority = 2
name = "Rule 2"
action = { type = "block" }
"""
    with pytest.raises(RulesConflictError) as info:
        parse_rules_toml(toml)
    assert "position 0" in info.value.detail
    assert "position 1" in info.value.detail


def test_parse_rate_limit_action():
    toml = """
[[rules]]
id = "rl-rule"
priority = 50
name = "Rate limit HTTP"
log = true

  [rules.action]
  type = "rate_limit"
  rate = 100
  burst = 200
  unit = "packets"
  scope = "per_src_ip"
  on_exceed = "drop"
"""
    rules = parse_rules_toml(toml)
    assert len(rules) == 1
    assert rules[0].action.kind is ActionKind.RATE_LIMIT
    assert rules[0].action.rate_limit == RateLimitPolicy(
        rate=100,
        burst=200,
        unit=RateLimitUnit.PACKETS,
        scope=RateLimitScope.PER_SRC_IP,
        on_exceed=ExceedAction.DROP,
    )
    assert rules[0].log is True


def test_rate_limit_requires_rate():
    toml = """
[[rules]]
id = "r"
priority = 1
name = "n"
action = { type = "rate_limit", burst = 5 }
"""
    with pytest.raises(RulesParseError):
        parse_rules_toml(toml)


def test_rules_sorted_by_priority():
    toml = """
[[rules]]
id = "late"
priority = 20
name = "Late"
action = { type = "block" }

[[rules]]
id = "early"
priority = 5
name = "Early"
action = { type = "allow" }
"""
    assert [r.id for r in parse_rules_toml(toml)] == ["early", "late"]


def test_empty_name_fails():
    toml = """
[[rules]]
id = "blank"
priority = 1
name = "   "
action = { type = "allow" }
"""
    with pytest.raises(RulesValidationError) as info:
        parse_rules_toml(toml)
    assert info.value.id == "blank"


def test_empty_document_has_no_rules():
    assert parse_rules_toml("") == []


@pytest.mark.parametrize(
    "body",
    [
        'id = "x"\npriority = 1\nname = "n"',
        'id = "x"\npriority = -1\nname = "n"\naction = { type = "allow" }',
        'id = "x"\npriority = 1\nname = "n"\naction = { type = "explode" }',
        'id = "x"\npriority = 1\nname = "n"\naction = { type = "allow" }\n'
        'matches = [{ type = "protocol", value = "sctp" }]',
        'id = "x"\npriority = 1\nname = "n"\naction = { type = "allow" }\n'
        'matches = [{ type = "dst_port", value = 70000 }]',
        'id = "x"\npriority = 1\nname = "n"\naction = { type = "allow" }\n'
        'matches = [{ type = "src_ip", value = "nope" }]',
    ],
)
def test_schema_errors_are_parse_errors(body):
    with pytest.raises(RulesParseError):
        parse_rules_toml("[[rules]]\n" + body + "\n")


def test_port_range_table():
    toml = """
[[rules]]
id = "range"
priority = 1
name = "Range"
action = { type = "allow" }
matches = [{ type = "dst_port", value = { start = 8000, end = 8999 } }]
"""
    assert parse_rules_toml(toml)[0].matches[0].value == PortRange(8000, 8999)


def test_rule_from_dict_defaults():
    rule = rule_from_dict({"id": "x", "priority": 1, "name": "n", "action": {"type": "block"}})
    assert rule.enabled is True
    assert rule.log is False
    assert rule.matches == []
    assert rule.action.kind is ActionKind.BLOCK


def test_parse_rules_file(tmp_path):
    path = tmp_path / "rules.toml"
    path.write_text(VALID_TOML, encoding="utf-8")
    assert parse_rules_file(path)[0].name == "Allow SSH"


def test_parse_rules_file_missing(tmp_path):
    missing = tmp_path / "absent.toml"
    with pytest.raises(RulesFileNotFound) as info:
        parse_rules_file(missing)
    assert info.value.path == str(missing)