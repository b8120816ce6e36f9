"""First-match evaluation of packets against an ordered rule set."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from aegisfw.rules_model import Action, Match, MatchKind, PacketInfo, Protocol, Rule


@dataclass(frozen=True)
class Verdict:
    """The outcome of evaluating a packet: the matching rule's action."""

    action: Action
    rule_id: str | None
    log: bool


def _condition_matches(condition: Match, packet: PacketInfo) -> bool:
    value = condition.value
    match condition.kind:
        case MatchKind.SRC_IP:
            return packet.src_ip in value
        case MatchKind.DST_IP:
            return packet.dst_ip in value
        case MatchKind.SRC_PORT:
            return packet.src_port is not None and value.contains(packet.src_port)
        case MatchKind.DST_PORT:
            return packet.dst_port is not None and value.contains(packet.dst_port)
        case MatchKind.PROTOCOL:
            return value is Protocol.ANY or value is packet.protocol
        case MatchKind.DIRECTION:
            return value is packet.direction
    return False


class RuleEngine:
    """Rules sorted by ascending priority, evaluated first match wins."""

    def __init__(self, rules: Iterable[Rule]) -> None:
        self._rules = sorted(rules, key=lambda rule: rule.priority)

    @property
    def rules(self) -> tuple[Rule, ...]:
        return tuple(self._rules)

    def evaluate(self, packet: PacketInfo) -> Verdict | None:
        """Return the first enabled matching rule's verdict, or None."""
        for rule in self._rules:
            if rule.enabled and all(_condition_matches(m, packet) for m in rule.matches):
                return Verdict(action=rule.action, rule_id=rule.id, log=rule.log)
        return None