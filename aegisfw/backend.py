"""The abstraction over the kernel firewall backend."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class Ruleset:
    """A compiled, ordered set of rules ready to be applied to a backend."""

    nftables_json: str
    version: str


class FirewallBackend(ABC):
    """A kernel firewall that can apply, flush and list rulesets."""

    @abstractmethod
    async def apply_ruleset(self, ruleset: Ruleset) -> None:
        """Apply a complete ruleset atomically: all rules apply or none do."""

    @abstractmethod
    async def flush(self) -> None:
        """Remove all rules, failing closed."""

    @abstractmethod
    async def list_active(self) -> str:
        """Return the active ruleset as nftables JSON."""