import argparse
import os

import pytest

import create_user
import migrate


def test_migrate_upgrades_to_head_by_default(monkeypatch):
    calls = []
    monkeypatch.setattr(migrate.command, "upgrade", lambda cfg, target: calls.append(("upgrade", target, cfg)))
    monkeypatch.setattr(migrate.command, "downgrade", lambda cfg, target: calls.append(("downgrade", target, cfg)))

    assert migrate.main([]) == 0
    assert calls[0][:2] == ("upgrade", "head")
    cfg = calls[0][2]
    assert cfg.get_main_option("script_location") == os.path.join(migrate.BASE_DIR, "migrations")


def test_migrate_base_downgrades(monkeypatch):
    calls = []
    monkeypatch.setattr(migrate.command, "downgrade", lambda cfg, target: calls.append(target))
    assert migrate.main(["base"]) == 0
    assert calls == ["base"]


def test_migrate_reports_failure(monkeypatch):
    def boom(cfg, target):
        raise RuntimeError("DATABASE_URL environment variable not set")

    monkeypatch.setattr(migrate.command, "upgrade", boom)
    assert migrate.main(["head"]) == 1


class FakeCursor:
    def __init__(self, rowcount):
        self.rowcount = rowcount
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, query, params=None):
        self.executed.append((query, params))


class FakeConn:
    def __init__(self, rowcount):
        self.cur = FakeCursor(rowcount)

    def cursor(self):
        return self.cur


def _args(**overrides):
    values = {"username": "jdoe", "role": "student", "school": "SCH1", "name": "", "class_name": "JSS1"}
    values.update(overrides)
    return argparse.Namespace(**values)


def test_upsert_user_inserts_when_username_is_new():
    conn = FakeConn(rowcount=0)
    assert create_user.upsert_user(conn, _args(), "hash") is True

    queries = [q for q, _ in conn.cur.executed]
    assert queries[0].startswith("UPDATE users")
    assert queries[1].startswith("INSERT INTO users")
    params = conn.cur.executed[1][1]
    assert params == ("jdoe", "hash", "student", "SCH1", "jdoe", "jdoe", "JSS1")


def test_upsert_user_updates_existing_account():
    conn = FakeConn(rowcount=1)
    assert create_user.upsert_user(conn, _args(role="teacher"), "hash") is False
    assert len(conn.cur.executed) == 1


def test_read_password_enforces_minimum_length(monkeypatch):
    monkeypatch.setenv("USER_PASSWORD", "short")
    with pytest.raises(RuntimeError):
        create_user.read_password()
    monkeypatch.setenv("USER_PASSWORD", "long-enough")
    assert create_user.read_password() == "long-enough"


def test_create_user_requires_school_for_non_admins(monkeypatch):
    monkeypatch.setenv("USER_PASSWORD", "long-enough")
    with pytest.raises(RuntimeError):
        create_user.main(["jdoe", "--role", "teacher", "--database-url", "postgresql://localhost/db"])
