import sqlite3

import pytest

from nest_sync.database import SUPPORTED_SCHEMA_VERSION, ensure_schema_and_migrate


def test_fresh_database_gets_tables_and_user_version(tmp_path):
    db_file = str(tmp_path / "fresh.db")

    ensure_schema_and_migrate(db_file)

    conn = sqlite3.connect(db_file)
    ver = conn.execute("PRAGMA user_version").fetchone()[0]
    assert ver == SUPPORTED_SCHEMA_VERSION

    tables = {r[0] for r in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert 'device_status' in tables
    assert 'nest_credentials' in tables
    conn.close()


def test_migration_is_idempotent_and_keeps_rows(tmp_path):
    db_file = str(tmp_path / "twice.db")
    ensure_schema_and_migrate(db_file)

    conn = sqlite3.connect(db_file)
    conn.execute("INSERT INTO device_status (kind, device_id, name) VALUES (?,?,?)", ('setpoint', '00000001', 'Hall'))
    conn.commit()
    conn.close()

    ensure_schema_and_migrate(db_file)

    conn = sqlite3.connect(db_file)
    rows = conn.execute("SELECT kind, device_id, name FROM device_status").fetchall()
    conn.close()
    assert rows == [('setpoint', '00000001', 'Hall')]


def test_newer_schema_version_is_refused(tmp_path):
    db_file = str(tmp_path / "future.db")
    conn = sqlite3.connect(db_file)
    conn.execute(f"PRAGMA user_version = {SUPPORTED_SCHEMA_VERSION + 1}")
    conn.commit()
    conn.close()

    with pytest.raises(RuntimeError):
        ensure_schema_and_migrate(db_file)
