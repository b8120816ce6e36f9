"""Opening the SQLite store and deriving its keys."""

from __future__ import annotations

import secrets
import sqlite3
from dataclasses import dataclass, field
from os import PathLike

from aegisfw.errors import CorruptionError, DatabaseError, KeyDerivationError

ARGON2_MEM_KIB = 65536
ARGON2_TIME = 3
ARGON2_PARALLELISM = 4
KEY_LEN = 32

_PRAGMAS = """
PRAGMA journal_mode = WAL;
PRAGMA synchronous = NORMAL;
PRAGMA cache_size = -65536;
PRAGMA mmap_size = 268435456;
PRAGMA temp_store = MEMORY;
PRAGMA wal_autocheckpoint = 1000;
PRAGMA foreign_keys = ON;
PRAGMA page_size = 4096;
"""


@dataclass(frozen=True)
class DbKey:
    """A 32-byte database encryption key."""

    material: bytes = field(repr=False)

    def __post_init__(self) -> None:
        if len(self.material) != KEY_LEN:
            raise ValueError(f"a database key is {KEY_LEN} bytes, got {len(self.material)}")

    @classmethod
    def derive(cls, machine_secret: bytes, domain_salt: str) -> DbKey:
        """Derive a key from the machine secret with Argon2id.

        ``domain_salt`` keeps keys for different purposes apart.
        """
        try:
            from cryptography.exceptions import UnsupportedAlgorithm
            from cryptography.hazmat.primitives.kdf.argon2 import Argon2id
        except ImportError as exc:
            raise KeyDerivationError(f"Argon2id is not available: {exc}") from exc
        try:
            kdf = Argon2id(
                salt=domain_salt.encode("utf-8"),
                length=KEY_LEN,
                iterations=ARGON2_TIME,
                lanes=ARGON2_PARALLELISM,
                memory_cost=ARGON2_MEM_KIB,
            )
            return cls(kdf.derive(bytes(machine_secret)))
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            raise KeyDerivationError(str(exc)) from exc

    @classmethod
    def random(cls) -> DbKey:
        """An ephemeral random key, for tests only."""
        return cls(secrets.token_bytes(KEY_LEN))

    def hex(self) -> str:
        return self.material.hex()


def open_database(path: str | PathLike[str], key: DbKey) -> sqlite3.Connection:
    """Open a SQLite database and apply the store's PRAGMAs.

    The key PRAGMA only takes effect on SQLCipher builds; plain SQLite
    ignores it.
    """
    try:
        conn = sqlite3.connect(path)
    except sqlite3.Error as exc:
        raise DatabaseError(str(exc)) from exc
    try:
        conn.executescript(f"PRAGMA key = \"x'{key.hex()}'\";")
        conn.executescript(_PRAGMAS)
    except sqlite3.Error as exc:
        conn.close()
        raise DatabaseError(str(exc)) from exc
    try:
        conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
    except sqlite3.Error as exc:
        conn.close()
        raise CorruptionError(
            "failed to read schema — wrong key or corrupt database"
        ) from exc
    return conn