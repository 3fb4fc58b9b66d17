"""
tests/test_api.py

FastAPI route tests using TestClient (synchronous).
Wires an in-memory SQLite store and a dispatcher with a recording sender.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from auditwatch.backend.api.main import (
    create_app,
    set_dispatcher,
    set_domain_source,
    set_repository,
    set_rule_cache,
    set_users,
)
from auditwatch.backend.catalog import DEFAULT_DOMAIN
from auditwatch.backend.config import Settings
from auditwatch.backend.engine.dispatcher import RuleDispatcher
from auditwatch.backend.metrics import METRICS
from auditwatch.backend.notify.renderer import TemplateRenderer
from auditwatch.backend.notify.senders import LoggingSender
from auditwatch.backend.notify.severity import SeverityTable
from auditwatch.backend.storage.cache import CachedRuleStore
from auditwatch.backend.storage.database import Database
from auditwatch.backend.storage.migrations import apply_migrations
from auditwatch.backend.storage.repository import SqliteLoginHistory, SqliteRuleStore


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(scope="module")
def client():
    """TestClient sharing one in-memory DB for all tests in this module."""
    db = Database(":memory:")
    db.init_schema()
    apply_migrations(db)
    repo = SqliteRuleStore(db)
    cache = CachedRuleStore(repo)
    sender = LoggingSender()
    config = Settings()
    dispatcher = RuleDispatcher(
        store=cache,
        renderer=TemplateRenderer(config=config),
        sender=sender,
        severity=SeverityTable.with_critical([6004]),
        login_history=SqliteLoginHistory(db),
        config=config,
    )
    set_repository(repo)
    set_rule_cache(cache)
    set_dispatcher(dispatcher)
    set_users(None)
    set_domain_source(lambda: DEFAULT_DOMAIN)

    app = create_app()
    with TestClient(app) as c:
        yield c, repo, sender
    db.close()


def rule_body(**kw) -> dict:
    body = {
        "title": "Failed logins from office",
        "email": "ops@example.org",
        "triggers": [
            {"select1": 0, "select2": 0, "select3": 0, "input1": "1002"},
            {"select1": 0, "select2": 5, "select3": 1, "input1": "10.0.0"},
        ],
    }
    body.update(kw)
    return body


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

def test_health(client):
    c, _, _ = client
    resp = c.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["dispatcher"] is True


# ---------------------------------------------------------------------------
# /api/rules
# ---------------------------------------------------------------------------

class TestRules:

    def test_create_rule(self, client):
        c, repo, _ = client
        resp = c.post("/api/rules", json=rule_body(id="office"))
        assert resp.status_code == 201
        data = resp.json()
        assert data["id"] == "office"
        assert data["condition_count"] == 2
        assert data["triggers"][1]["field"] == "SOURCE IP"
        assert data["triggers"][1]["operator"] == "CONTAINS"
        assert repo.get_rule("office") is not None

    def test_create_generates_id(self, client):
        c, _, _ = client
        resp = c.post("/api/rules", json=rule_body(title="No id"))
        assert resp.status_code == 201
        assert resp.json()["id"].startswith("rule-")

    def test_validation_error_is_422(self, client):
        c, _, _ = client
        resp = c.post("/api/rules", json=rule_body(email="", phone=""))
        assert resp.status_code == 422
        assert "required" in resp.json()["detail"]

    def test_bad_trigger_is_422(self, client):
        c, _, _ = client
        body = rule_body(triggers=[{"select1": 0, "select2": 0, "select3": 0, "input1": "abc"}])
        resp = c.post("/api/rules", json=body)
        assert resp.status_code == 422
        assert "EVENT ID" in resp.json()["detail"]

    def test_grouped_view_state(self, client):
        c, _, _ = client
        body = rule_body(id="grouped", viewState=[["trigger_id_1", "trigger_id_2"]])
        data = c.post("/api/rules", json=body).json()
        assert len(data["triggers"]) == 1
        assert len(data["triggers"][0]["items"]) == 2

    def test_get_and_list(self, client):
        c, _, _ = client
        c.post("/api/rules", json=rule_body(id="listed"))
        assert c.get("/api/rules/listed").json()["title"] == "Failed logins from office"
        assert "listed" in {r["id"] for r in c.get("/api/rules").json()}

    def test_get_missing_is_404(self, client):
        c, _, _ = client
        assert c.get("/api/rules/does-not-exist").status_code == 404

    def test_disable_and_delete(self, client):
        c, _, _ = client
        c.post("/api/rules", json=rule_body(id="temp"))
        resp = c.patch("/api/rules/temp", json={"enabled": False})
        assert resp.status_code == 200
        assert resp.json()["enabled"] is False
        assert c.delete("/api/rules/temp").status_code == 204
        assert c.delete("/api/rules/temp").status_code == 404


# ---------------------------------------------------------------------------
# /api/events
# ---------------------------------------------------------------------------

class TestEvents:

    def test_dispatch_fires_matching_rule(self, client):
        c, _, sender = client
        c.post("/api/rules", json=rule_body(id="office"))
        before = len(sender.sent)
        resp = c.post("/api/events", json={"event_id": 1002, "attributes": {"ClientIP": "10.0.0.7"}})
        assert resp.status_code == 200
        data = resp.json()
        assert data["aborted"] is False
        assert "office" in data["fired"]
        assert len(sender.sent) > before

    def test_dispatch_no_match(self, client):
        c, _, _ = client
        resp = c.post("/api/events", json={"event_id": 1002, "attributes": {"ClientIP": "192.168.1.1"}})
        data = resp.json()
        assert "office" not in data["fired"]
        outcomes = {r["rule_id"]: r["outcome"] for r in data["rules"]}
        assert outcomes["office"] == "not_matched"

    def test_missing_event_id_is_422(self, client):
        c, _, _ = client
        assert c.post("/api/events", json={"attributes": {}}).status_code == 422

    def test_explain(self, client):
        c, _, _ = client
        c.post("/api/rules", json=rule_body(id="office"))
        resp = c.post("/api/events/explain", json={"event_id": 1002, "attributes": {"ClientIP": "10.0.0.7"}})
        explained = {r["rule_id"]: r for r in resp.json()}
        assert explained["office"]["expression"] == "TRUE && TRUE"
        assert explained["office"]["verdict"] is True


# ---------------------------------------------------------------------------
# /api/stats
# ---------------------------------------------------------------------------

def test_stats(client):
    c, repo, _ = client
    resp = c.get("/api/stats")
    assert resp.status_code == 200
    data = resp.json()
    assert data["rules_total"] == repo.count()
    assert "events_dispatched" in data["metrics"]
    assert set(data["metrics"]) == set(METRICS.as_dict())
