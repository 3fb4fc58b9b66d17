"""
tests/test_repository.py

Tests for storage/ using in-memory SQLite (":memory:") — schema versioning,
rule payload round trips, login history, failure counters and users.
"""

from __future__ import annotations

import json

import pytest

from auditwatch.backend.engine.errors import RuleStoreUnavailable, RuleValidationError
from auditwatch.backend.engine.interfaces import UserRecord
from auditwatch.backend.engine.models import TriggerGroup
from auditwatch.backend.storage.database import Database
from auditwatch.backend.storage.migrations import apply_migrations
from auditwatch.backend.storage.repository import (
    SqliteFailureCounters,
    SqliteLoginHistory,
    SqliteRuleStore,
    SqliteUserDirectory,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def db():
    """In-memory SQLite database, initialised and migrated fresh for each test."""
    d = Database(":memory:")
    d.init_schema()
    apply_migrations(d)
    yield d
    d.close()


@pytest.fixture
def store(db):
    return SqliteRuleStore(db)


def make_payload(rule_id: str = "r1", status: int = 1, **kw) -> dict:
    d = {
        "id": rule_id,
        "title": f"Rule {rule_id}",
        "email": "ops@example.org",
        "status": status,
        "triggers": [
            {"select1": 0, "select2": 0, "select3": 0, "input1": "1000"},
            {"select1": 1, "select2": 0, "select3": 0, "input1": "1001"},
            {"select1": 0, "select2": 5, "select3": 1, "input1": "10.0"},
        ],
        "viewState": ["trigger_id_1", ["trigger_id_2", "trigger_id_3"]],
    }
    d.update(kw)
    return d


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

class TestSchema:

    def test_migrations_reach_latest_version(self, db):
        row = db.execute("SELECT MAX(version) FROM schema_version").fetchone()
        assert row[0] == 3

    def test_double_apply_is_safe(self, db):
        apply_migrations(db)
        row = db.execute("SELECT COUNT(*) FROM schema_version").fetchone()
        assert row[0] == 3

    def test_tables_exist(self, db):
        names = {r["name"] for r in db.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert {"notification_rules", "login_history", "failure_counters", "users"} <= names


# ---------------------------------------------------------------------------
# SqliteRuleStore
# ---------------------------------------------------------------------------

class TestRuleStore:

    def test_save_and_load(self, store):
        store.save_payload(make_payload())
        rule = store.get_rule("r1")
        assert rule.title == "Rule r1"
        assert rule.condition_count == 3
        assert isinstance(rule.triggers.items[1], TriggerGroup)

    def test_list_enabled_filters_disabled(self, store):
        store.save_payload(make_payload("on"))
        store.save_payload(make_payload("off", status=0))
        assert [r.id for r in store.list_enabled_rules()] == ["on"]
        assert {r.id for r in store.list_rules()} == {"on", "off"}
        assert store.count() == 2

    def test_save_replaces(self, store):
        store.save_payload(make_payload(title="Old"))
        store.save_payload(make_payload(title="New"))
        assert store.count() == 1
        assert store.get_rule("r1").title == "New"

    def test_set_enabled(self, store):
        store.save_payload(make_payload())
        assert store.set_enabled("r1", False) is True
        assert store.list_enabled_rules() == []
        assert store.get_payload("r1")["status"] == 0
        assert store.get_rule("r1").enabled is False
        assert store.set_enabled("missing", True) is False

    def test_delete(self, store):
        store.save_payload(make_payload())
        assert store.delete_rule("r1") is True
        assert store.delete_rule("r1") is False
        assert store.get_rule("r1") is None

    def test_payload_without_id_rejected(self, store):
        with pytest.raises(RuleValidationError):
            store.save_payload({"title": "x"})

    def test_malformed_rows_skipped(self, store, db):
        store.save_payload(make_payload("good"))
        db.execute(
            "INSERT INTO notification_rules VALUES (?, ?, 1, 0, ?, 0, 0)",
            ("bad", "bad", "{not json"),
        )
        db.execute(
            "INSERT INTO notification_rules VALUES (?, ?, 1, 0, ?, 0, 0)",
            ("list", "list", json.dumps([1, 2])),
        )
        db.commit()
        assert [r.id for r in store.list_enabled_rules()] == ["good"]

    def test_closed_database_raises_store_unavailable(self, store, db):
        db.conn.close()
        with pytest.raises(RuleStoreUnavailable):
            store.list_enabled_rules()


# ---------------------------------------------------------------------------
# Login history / failure counters / users
# ---------------------------------------------------------------------------

class TestLoginHistory:

    def test_check_and_record(self, db):
        history = SqliteLoginHistory(db)
        assert history.check_and_record("alice") is False
        assert history.check_and_record("alice") is True
        assert history.has_logged_in_before("alice") is True
        assert history.has_logged_in_before("bob") is False


class TestFailureCounters:

    def test_increment_and_expiry(self, db):
        now = [1000.0]
        counters = SqliteFailureCounters(db, ttl_seconds=60, clock=lambda: now[0])
        assert counters.increment("known", "k") == 1
        assert counters.increment("known", "k") == 2
        assert counters.get("known", "k") == 2
        assert counters.get("unknown", "k") == 0

        now[0] += 61
        assert counters.get("known", "k") == 0
        assert counters.increment("known", "k") == 1

    def test_purge_expired(self, db):
        now = [1000.0]
        counters = SqliteFailureCounters(db, ttl_seconds=60, clock=lambda: now[0])
        counters.increment("known", "a")
        now[0] += 61
        counters.increment("known", "b")
        assert counters.purge_expired() == 1
        assert counters.get("known", "b") == 1


class TestUserDirectory:

    def test_upsert_and_lookup(self, db):
        users = SqliteUserDirectory(db)
        users.upsert(UserRecord(7, "alice", "alice@example.org", "Alice", "Smith", ("editor",)))
        assert users.get_by_id(7).roles == ("editor",)
        assert users.get_by_login("alice").email == "alice@example.org"
        assert users.get_by_login("bob") is None

        users.upsert(UserRecord(7, "alice", "new@example.org"))
        assert users.get_by_id(7).email == "new@example.org"
