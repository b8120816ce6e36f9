import pytest

from aegisfw.db import KEY_LEN, DbKey, open_database
from aegisfw.errors import DatabaseError, StoreError


@pytest.fixture
def conn(tmp_path):
    connection = open_database(tmp_path / "test.db", DbKey.random())
    yield connection
    connection.close()


def test_open_encrypted_database_succeeds(conn):
    assert conn.execute("SELECT 1").fetchone()[0] == 1


def test_wal_journal_mode_is_set(conn):
    assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"


def test_foreign_keys_are_enforced(conn):
    assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1


def test_tables_survive_reopening(tmp_path):
    path = tmp_path / "persist.db"
    key = DbKey.random()
    first = open_database(path, key)
    first.execute("CREATE TABLE items (name TEXT)")
    first.execute("INSERT INTO items VALUES ('kept')")
    first.commit()
    first.close()

    second = open_database(path, key)
    try:
        assert second.execute("SELECT name FROM items").fetchall() == [("kept",)]
    finally:
        second.close()


def test_missing_directory_is_a_database_error(tmp_path):
    with pytest.raises(DatabaseError):
        open_database(tmp_path / "absent" / "test.db", DbKey.random())


def test_garbage_file_is_rejected(tmp_path):
    path = tmp_path / "garbage.db"
    path.write_bytes(b"this is not a database file " * 200)
    with pytest.raises(StoreError):
        open_database(path, DbKey.random())


def test_random_keys_have_key_length_and_differ():
    first = DbKey.random()
    second = DbKey.random()
    assert len(first.material) == KEY_LEN
    assert len(first.hex()) == KEY_LEN * 2
    assert first != second


def test_hex_matches_material():
    key = DbKey(bytes(range(32)))
    assert bytes.fromhex(key.hex()) == key.material


def test_key_of_wrong_length_is_rejected():
    with pytest.raises(ValueError):
        DbKey(b"short")


def test_repr_hides_key_material():
    key = DbKey(bytes(range(32)))
    assert key.hex() not in repr(key)
    assert repr(key.material) not in repr(key)


def test_derive_is_deterministic_and_separated_by_salt():
    machine_secret = b"secret"
    db_key = DbKey.derive(machine_secret, "aegis-db-key")
    again = DbKey.derive(machine_secret, "aegis-db-key")
    hmac_key = DbKey.derive(machine_secret, "aegis-hmac-key")
    assert len(db_key.material) == KEY_LEN
    assert db_key == again
    assert db_key != hmac_key