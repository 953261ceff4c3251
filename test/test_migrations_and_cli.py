import sqlite3
from pathlib import Path

import pytest

from ctp.application.container import build_container
from ctp.config import AppSettings
from ctp.main import run
from ctp.repositories.sqlite_repo import SqliteRepository


def test_migrations_are_recorded_and_idempotent(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "m.db")
    repo.init_db()
    repo.init_db()

    conn = repo._conn()
    versions = [r[0] for r in conn.execute("SELECT version FROM schema_migrations ORDER BY version")]
    conn.close()
    assert versions == [1, 2]


def test_storage_allows_one_open_session_per_user(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "u.db")
    repo.init_db()
    conn = repo._conn()
    conn.execute("INSERT INTO time_logs (user_id, project_id, clock_in) VALUES (1, 1, '2024-03-04T08:00:00+00:00')")
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("INSERT INTO time_logs (user_id, project_id, clock_in) VALUES (1, 2, '2024-03-04T09:00:00+00:00')")
    conn.close()


def test_constraints_reject_negative_stock(tmp_path: Path):
    repo = SqliteRepository(tmp_path / "c.db")
    repo.init_db()
    with pytest.raises(sqlite3.IntegrityError):
        repo.add_inventory_item("Bad", -1, "ea", 1.0, None)


def test_migration_failure_restores_db(tmp_path: Path):
    class BrokenMigrationRepo(SqliteRepository):
        def _migration_v2_billing(self, cur):
            raise RuntimeError("forced migration failure")

    db = tmp_path / "broken.db"
    repo = SqliteRepository(db)
    repo.init_db()
    uid = repo.add_user("Ryan", "Installer", 25.0)

    conn = repo._conn()
    conn.execute("DELETE FROM schema_migrations WHERE version = 2")
    conn.commit()
    conn.close()

    with pytest.raises(RuntimeError):
        BrokenMigrationRepo(db).init_db()

    conn = repo._conn()
    current = conn.execute("SELECT COALESCE(MAX(version), 0) FROM schema_migrations").fetchone()[0]
    conn.close()
    assert current == 1
    assert repo.get_user(uid).name == "Ryan"
    assert list(tmp_path.glob("broken.pre_migration_*.bak"))


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("CTP_COMPANY_KEY", "acme")
    monkeypatch.setenv("CTP_GEO_TIMEOUT", "2.5")
    monkeypatch.delenv("CTP_MAPS_API_KEY", raising=False)
    monkeypatch.delenv("CTP_SNAPSHOT_RETENTION", raising=False)

    s = AppSettings.from_env()
    assert s == AppSettings(company_key="acme", maps_api_key="", geo_timeout_seconds=2.5, snapshot_retention=30)


def test_cli_clock_cycle_and_error_exit(tmp_path: Path, monkeypatch, capsys):
    monkeypatch.setenv("CTP_HOME", str(tmp_path))
    c = build_container(tmp_path / "constructtrack.db")
    uid = c.users.add_user("Ryan", "Installer", 25.0)
    pid = c.projects.add_project("Sally Wertman", budget=1000.0)

    assert run(["clock-in", "--user", str(uid), "--project", str(pid)]) == 0
    assert "Clocked in" in capsys.readouterr().out
    assert run(["clock-out", "--user", str(uid)]) == 0
    assert "Clocked out" in capsys.readouterr().out

    assert run(["clock-out", "--user", str(uid)]) == 2
    assert "not clocked in" in capsys.readouterr().err

    assert run(["snapshot"]) == 0
    assert list((tmp_path / "snapshots").glob("scc_snapshot_*.json"))
    assert (tmp_path / "logs").is_dir()
