"""Exception hierarchy for the firewall backend, rule handling and storage."""

from __future__ import annotations


class CoreError(Exception):
    """Base class for firewall backend errors."""


class NftablesFailed(CoreError):
    """The nftables command reported a failure."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"nftables command failed: {detail}")
        self.detail = detail


class EmptyRuleset(CoreError):
    """A ruleset with no content was supplied."""

    def __init__(self) -> None:
        super().__init__("ruleset is empty")


class InvalidRule(CoreError):
    """A rule was rejected by the backend."""

    def __init__(self, id: str, reason: str) -> None:
        super().__init__(f"rule {id} is invalid: {reason}")
        self.id = id
        self.reason = reason


class BackendUnavailable(CoreError):
    """The firewall backend cannot be reached."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"backend is not available: {detail}")
        self.detail = detail


class RulesError(Exception):
    """Base class for rule parsing, validation and watching errors."""


class RulesParseError(RulesError):
    """The rules document could not be parsed."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"failed to parse rules TOML: {detail}")
        self.detail = detail


class RulesValidationError(RulesError):
    """A rule parsed correctly but holds an invalid value."""

    def __init__(self, id: str, reason: str) -> None:
        super().__init__(f"rule '{id}' is invalid: {reason}")
        self.id = id
        self.reason = reason


class RulesConflictError(RulesError):
    """Two rules conflict with each other."""

    def __init__(self, id: str, other_id: str, detail: str) -> None:
        super().__init__(f"rule '{id}' conflicts with rule '{other_id}': {detail}")
        self.id = id
        self.other_id = other_id
        self.detail = detail


class RulesFileNotFound(RulesError):
    """The rules file could not be read."""

    def __init__(self, path: str) -> None:
        super().__init__(f"rules file not found: {path}")
        self.path = path


class WatcherError(RulesError):
    """The rules file watcher could not be started."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"watcher error: {detail}")
        self.detail = detail


class StoreError(Exception):
    """Base class for storage errors."""


class DatabaseError(StoreError):
    """The database engine reported an error."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"database error: {detail}")
        self.detail = detail


class MigrationError(StoreError):
    """A schema migration failed."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"migration failed: {detail}")
        self.detail = detail


class AuditChainViolation(StoreError):
    """The audit log HMAC chain is broken at a given entry."""

    def __init__(self, entry_id: int, detail: str) -> None:
        super().__init__(f"audit chain integrity violation at entry {entry_id}: {detail}")
        self.entry_id = entry_id
        self.detail = detail


class CorruptionError(StoreError):
    """The database file cannot be read."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"database file is corrupt: {detail}")
        self.detail = detail


class KeyDerivationError(StoreError):
    """Deriving a key from the machine secret failed."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"key derivation failed: {detail}")
        self.detail = detail