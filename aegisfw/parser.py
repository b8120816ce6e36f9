"""Parse and validate rules from TOML."""

from __future__ import annotations

import tomllib
from enum import StrEnum
from os import PathLike
from pathlib import Path
from typing import Any, TypeVar

from aegisfw.errors import (
    RulesConflictError,
    RulesFileNotFound,
    RulesParseError,
    RulesValidationError,
)
from aegisfw.rules_model import (
    Action,
    ActionKind,
    ExceedAction,
    Match,
    MatchKind,
    PortRange,
    RateLimitPolicy,
    RateLimitScope,
    RateLimitUnit,
    Rule,
)

MAX_PRIORITY = 65535
_U32_MAX = 2**32 - 1
_U16_MAX = 2**16 - 1
_REQUIRED = object()
_TYPE_NAMES = {str: "a string", int: "an integer", bool: "a boolean", dict: "a table", list: "an array"}

E = TypeVar("E", bound=StrEnum)


def parse_rules_toml(toml_str: str) -> list[Rule]:
    """Parse a TOML document into rules sorted by ascending priority."""
    try:
        document = tomllib.loads(toml_str)
    except tomllib.TOMLDecodeError as exc:
        raise RulesParseError(str(exc)) from exc

    raw_rules = document.get("rules", [])
    if not isinstance(raw_rules, list):
        raise RulesParseError("`rules` must be an array of tables")

    rules = []
    for position, entry in enumerate(raw_rules):
        try:
            rules.append(rule_from_dict(entry))
        except RulesParseError as exc:
            raise RulesParseError(f"rules[{position}]: {exc.detail}") from exc
    return _validate(rules)


def parse_rules_file(path: str | PathLike[str]) -> list[Rule]:
    """Read and parse a rules file from disk."""
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError):
        raise RulesFileNotFound(str(path)) from None
    return parse_rules_toml(content)


def rule_from_dict(data: Any) -> Rule:
    """Build a rule from one decoded TOML table."""
    if not isinstance(data, dict):
        raise RulesParseError("a rule must be a table")
    rule_id = _get(data, "id", str)
    priority = _get_int(data, "priority", _U32_MAX)
    name = _get(data, "name", str)
    enabled = _get(data, "enabled", bool, True)
    log = _get(data, "log", bool, False)
    raw_matches = _get(data, "matches", list, [])
    action = _action_from_dict(_get(data, "action", dict))
    matches = [_match_from_dict(entry) for entry in raw_matches]
    return Rule(
        id=rule_id,
        priority=priority,
        name=name,
        action=action,
        enabled=enabled,
        matches=matches,
        log=log,
    )


def _has_type(value: Any, kind: type) -> bool:
    if kind is int:
        return isinstance(value, int) and not isinstance(value, bool)
    return isinstance(value, kind)


def _get(table: dict[str, Any], key: str, kind: type, default: Any = _REQUIRED) -> Any:
    if key not in table:
        if default is _REQUIRED:
            raise RulesParseError(f"missing field `{key}`")
        return default
    value = table[key]
    if not _has_type(value, kind):
        raise RulesParseError(f"invalid type for `{key}`: expected {_TYPE_NAMES[kind]}")
    return value


def _get_int(table: dict[str, Any], key: str, maximum: int, default: Any = _REQUIRED) -> int:
    value = _get(table, key, int, default)
    if not 0 <= value <= maximum:
        raise RulesParseError(f"`{key}` value {value} is out of range 0..={maximum}")
    return value


def _get_enum(table: dict[str, Any], key: str, enum_type: type[E], default: E) -> E:
    raw = _get(table, key, str, None)
    if raw is None:
        return default
    try:
        return enum_type(raw)
    except ValueError:
        raise RulesParseError(f"unknown variant `{raw}` for `{key}`") from None


def _action_from_dict(table: dict[str, Any]) -> Action:
    kind_name = _get(table, "type", str)
    try:
        kind = ActionKind(kind_name)
    except ValueError:
        raise RulesParseError(f"unknown action type `{kind_name}`") from None
    if kind is not ActionKind.RATE_LIMIT:
        return Action(kind)
    policy = RateLimitPolicy(
        rate=_get_int(table, "rate", _U32_MAX),
        burst=_get_int(table, "burst", _U32_MAX),
        unit=_get_enum(table, "unit", RateLimitUnit, RateLimitUnit.PACKETS),
        scope=_get_enum(table, "scope", RateLimitScope, RateLimitScope.PER_SRC_IP),
        on_exceed=_get_enum(table, "on_exceed", ExceedAction, ExceedAction.DROP),
    )
    return Action(kind, policy)


def _port_range(value: Any) -> PortRange:
    if _has_type(value, int):
        if not 0 <= value <= _U16_MAX:
            raise RulesParseError(f"port {value} is out of range 0..={_U16_MAX}")
        return PortRange(value)
    if isinstance(value, dict):
        return PortRange(_get_int(value, "start", _U16_MAX), _get_int(value, "end", _U16_MAX))
    raise RulesParseError(f"{value!r} is neither a port nor a port range")


def _match_from_dict(table: Any) -> Match:
    if not isinstance(table, dict):
        raise RulesParseError("a match must be a table")
    kind_name = _get(table, "type", str)
    try:
        kind = MatchKind(kind_name)
    except ValueError:
        raise RulesParseError(f"unknown match type `{kind_name}`") from None
    if "value" not in table:
        raise RulesParseError("missing field `value`")
    value = table["value"]
    if kind in (MatchKind.SRC_PORT, MatchKind.DST_PORT):
        value = _port_range(value)
    try:
        return Match(kind, value)
    except (TypeError, ValueError) as exc:
        raise RulesParseError(f"invalid `{kind_name}` value {value!r}: {exc}") from None


def _validate(rules: list[Rule]) -> list[Rule]:
    seen: dict[str, int] = {}
    for position, rule in enumerate(rules):
        if rule.priority > MAX_PRIORITY:
            raise RulesValidationError(
                rule.id, f"priority {rule.priority} exceeds maximum {MAX_PRIORITY}"
            )
        first = seen.get(rule.id)
        if first is not None:
            raise RulesConflictError(
                rule.id,
                rules[first].id,
                f"duplicate rule ID (first seen at position {first}, "
                f"repeated at position {position})",
            )
        seen[rule.id] = position
        if not rule.name.strip():
            raise RulesValidationError(rule.id, "rule name must not be empty")
    return sorted(rules, key=lambda rule: rule.priority)