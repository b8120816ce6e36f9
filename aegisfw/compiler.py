"""Compile rules into an nftables JSON ruleset for atomic application."""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

from aegisfw.backend import Ruleset
from aegisfw.rules_model import ActionKind, IpNetwork, Match, MatchKind, Protocol, Rule

_TABLE = "aegis"
_CHAIN = "input"

_VERDICTS: dict[ActionKind, dict[str, Any]] = {
    ActionKind.ALLOW: {"accept": None},
    ActionKind.BLOCK: {"drop": None},
    ActionKind.REJECT: {"reject": {"type": "tcp reset"}},
    # Logging and rate limiting pass traffic in the compiled ruleset.
    ActionKind.LOG: {"accept": None},
    ActionKind.RATE_LIMIT: {"accept": None},
}


def compile_rules(rules: Iterable[Rule], version: str) -> Ruleset:
    """Build a ruleset that recreates the aegis table with every enabled rule."""
    statements: list[dict[str, Any]] = [
        {"flush": {"ruleset": None}},
        {"add": {"table": {"family": "inet", "name": _TABLE}}},
        {
            "add": {
                "chain": {
                    "family": "inet",
                    "table": _TABLE,
                    "name": _CHAIN,
                    "type": "filter",
                    "hook": "input",
                    "prio": 0,
                    "policy": "accept",
                }
            }
        },
    ]
    statements.extend(_compile_rule(rule) for rule in rules if rule.enabled)
    document = json.dumps(
        {"nftables": statements},
        separators=(",", ":"),
        sort_keys=True,
        ensure_ascii=False,
    )
    return Ruleset(nftables_json=document, version=version)


def _equals(left: dict[str, Any], right: Any) -> dict[str, Any]:
    return {"match": {"op": "==", "left": left, "right": right}}


def _payload(protocol: str, field: str) -> dict[str, Any]:
    return {"payload": {"protocol": protocol, "field": field}}


def _prefix(network: IpNetwork) -> dict[str, Any]:
    return {"prefix": {"addr": str(network.network_address), "len": network.prefixlen}}


def _compile_match(condition: Match) -> dict[str, Any] | None:
    value = condition.value
    match condition.kind:
        case MatchKind.DST_PORT:
            right = value.start if value.is_single else {"range": [value.start, value.end]}
            return _equals(_payload("tcp", "dport"), right)
        case MatchKind.SRC_IP:
            return _equals(_payload("ip", "saddr"), _prefix(value))
        case MatchKind.DST_IP:
            return _equals(_payload("ip", "daddr"), _prefix(value))
        case MatchKind.PROTOCOL if value in (Protocol.TCP, Protocol.UDP):
            return _equals({"meta": {"key": "l4proto"}}, value.value)
    # Direction, source ports and other protocols are not compiled.
    return None


def _compile_rule(rule: Rule) -> dict[str, Any]:
    exprs = [expr for expr in map(_compile_match, rule.matches) if expr is not None]
    if rule.log:
        exprs.append({"log": {"prefix": f"[aegis:{rule.id}] "}})
    exprs.append(_VERDICTS[rule.action.kind])
    return {
        "add": {
            "rule": {
                "family": "inet",
                "table": _TABLE,
                "chain": _CHAIN,
                "comment": rule.id,
                "expr": exprs,
            }
        }
    }