"""
storage/repository.py

SQLite-backed collaborators of the dispatcher:

  SqliteRuleStore        — stored rule payloads → NotificationRule objects
  SqliteLoginHistory     — usernames seen logging in (first-time-login rules)
  SqliteFailureCounters  — expiring failed-login counters
  SqliteUserDirectory    — platform users (USERNAME conditions, recipients)

Every read-modify-write runs under `Database.lock` and is a single SQL
statement, so concurrent dispatch passes cannot lose updates.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from typing import Any, Callable

from ..catalog import DEFAULT_DOMAIN, ConditionCatalog, DomainConfig
from ..config import Settings, settings as default_settings
from ..engine.errors import RuleStoreUnavailable, RuleValidationError
from ..engine.interfaces import UserRecord
from ..engine.loader import RuleLoader, int_field
from ..engine.models import NotificationRule
from .database import Database

logger = logging.getLogger(__name__)


class SqliteRuleStore:
    def __init__(
        self,
        db: Database,
        domain_source: Callable[[], DomainConfig] | None = None,
        config: Settings | None = None,
    ) -> None:
        self._db = db
        self._domain_source = domain_source or (lambda: DEFAULT_DOMAIN)
        self._config = config or default_settings

    # ==================================================================
    # Write methods
    # ==================================================================

    def save_payload(self, payload: dict) -> str:
        """Insert or replace a rule payload. Returns the rule id."""
        rule_id = str(payload.get("id") or "").strip()
        if not rule_id:
            raise RuleValidationError("rule payload has no id")
        now = time.time()
        with self._db.lock:
            self._db.execute(
                """
                INSERT INTO notification_rules
                    (rule_id, title, enabled, built_in, payload, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(rule_id) DO UPDATE SET
                    title      = excluded.title,
                    enabled    = excluded.enabled,
                    built_in   = excluded.built_in,
                    payload    = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (
                    rule_id,
                    str(payload.get("title") or rule_id),
                    1 if int_field(payload, "status", 1) else 0,
                    1 if payload.get("built_in") else 0,
                    json.dumps(payload),
                    now,
                    now,
                ),
            )
            self._db.commit()
        logger.info("Rule %r saved", rule_id)
        return rule_id

    def set_enabled(self, rule_id: str, enabled: bool) -> bool:
        payload = self.get_payload(rule_id)
        if payload is None:
            return False
        payload["status"] = 1 if enabled else 0
        self.save_payload(payload)
        return True

    def delete_rule(self, rule_id: str) -> bool:
        with self._db.lock:
            cur = self._db.execute("DELETE FROM notification_rules WHERE rule_id = ?", (rule_id,))
            self._db.commit()
        return cur.rowcount > 0

    # ==================================================================
    # Read methods (RuleStore protocol)
    # ==================================================================

    def list_enabled_rules(self) -> list[NotificationRule]:
        return self._load_rows("WHERE enabled = 1")

    def list_rules(self) -> list[NotificationRule]:
        return self._load_rows("")

    def get_rule(self, rule_id: str) -> NotificationRule | None:
        payload = self.get_payload(rule_id)
        if payload is None:
            return None
        try:
            return self._loader().load(payload)
        except RuleValidationError as exc:
            logger.error("Stored rule %r is malformed: %s", rule_id, exc)
            return None

    def get_payload(self, rule_id: str) -> dict | None:
        try:
            row = self._db.execute(
                "SELECT payload FROM notification_rules WHERE rule_id = ?", (rule_id,)
            ).fetchone()
        except sqlite3.Error as exc:
            raise RuleStoreUnavailable(f"reading rule {rule_id!r}: {exc}") from exc
        return self._decode(row["payload"], rule_id) if row else None

    def count(self) -> int:
        row = self._db.execute("SELECT COUNT(*) FROM notification_rules").fetchone()
        return row[0] if row else 0

    # ==================================================================
    # Internal helpers
    # ==================================================================

    def _loader(self) -> RuleLoader:
        return RuleLoader(ConditionCatalog(self._domain_source()), self._config)

    def _load_rows(self, where: str) -> list[NotificationRule]:
        try:
            rows = self._db.execute(
                f"SELECT rule_id, payload FROM notification_rules {where} ORDER BY created_at, rule_id"
            ).fetchall()
        except sqlite3.Error as exc:
            raise RuleStoreUnavailable(f"listing rules: {exc}") from exc

        loader = self._loader()
        rules: list[NotificationRule] = []
        for row in rows:
            payload = self._decode(row["payload"], row["rule_id"])
            if payload is None:
                continue
            try:
                rules.append(loader.load(payload))
            except RuleValidationError as exc:
                logger.error("Skipping malformed rule %r: %s", row["rule_id"], exc)
        return rules

    @staticmethod
    def _decode(raw: str, rule_id: str) -> dict | None:
        try:
            payload = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            logger.error("Rule %r payload is not valid JSON: %s", rule_id, exc)
            return None
        if not isinstance(payload, dict):
            logger.error("Rule %r payload is not an object", rule_id)
            return None
        payload.setdefault("id", rule_id)
        return payload


class SqliteLoginHistory:
    def __init__(self, db: Database) -> None:
        self._db = db

    def has_logged_in_before(self, username: str) -> bool:
        row = self._db.execute(
            "SELECT 1 FROM login_history WHERE username = ?", (username,)
        ).fetchone()
        return row is not None

    def record_login(self, username: str) -> None:
        self.check_and_record(username)

    def check_and_record(self, username: str) -> bool:
        """Record `username`; True if it had been recorded before."""
        with self._db.lock:
            cur = self._db.execute(
                "INSERT OR IGNORE INTO login_history (username, first_login_at) VALUES (?, ?)",
                (username, time.time()),
            )
            self._db.commit()
        return cur.rowcount == 0


class SqliteFailureCounters:
    """
    Counters keyed by (kind, key). Each increment pushes the expiry out to
    now + ttl; a counter past its expiry reads as 0 and restarts at 1.
    """

    def __init__(
        self,
        db: Database,
        ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._db = db
        self._ttl = ttl_seconds if ttl_seconds is not None else default_settings.FAILURE_COUNTER_TTL_SECONDS
        self._clock = clock

    def increment(self, kind: str, key: str) -> int:
        now = self._clock()
        with self._db.lock:
            self._db.execute(
                """
                INSERT INTO failure_counters (kind, key, count, expires_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT(kind, key) DO UPDATE SET
                    count = CASE WHEN failure_counters.expires_at <= ?
                                 THEN 1 ELSE failure_counters.count + 1 END,
                    expires_at = excluded.expires_at
                """,
                (kind, key, now + self._ttl, now),
            )
            row = self._db.execute(
                "SELECT count FROM failure_counters WHERE kind = ? AND key = ?", (kind, key)
            ).fetchone()
            self._db.commit()
        return int(row["count"])

    def get(self, kind: str, key: str) -> int:
        row = self._db.execute(
            "SELECT count FROM failure_counters WHERE kind = ? AND key = ? AND expires_at > ?",
            (kind, key, self._clock()),
        ).fetchone()
        return int(row["count"]) if row else 0

    def purge_expired(self) -> int:
        with self._db.lock:
            cur = self._db.execute(
                "DELETE FROM failure_counters WHERE expires_at <= ?", (self._clock(),)
            )
            self._db.commit()
        if cur.rowcount:
            logger.debug("Purged %d expired failure counter(s)", cur.rowcount)
        return cur.rowcount


class SqliteUserDirectory:
    def __init__(self, db: Database) -> None:
        self._db = db

    def get_by_id(self, user_id: int) -> UserRecord | None:
        row = self._db.execute("SELECT * FROM users WHERE user_id = ?", (user_id,)).fetchone()
        return self._row_to_user(row) if row else None

    def get_by_login(self, login: str) -> UserRecord | None:
        row = self._db.execute("SELECT * FROM users WHERE login = ?", (login,)).fetchone()
        return self._row_to_user(row) if row else None

    def upsert(self, user: UserRecord) -> None:
        with self._db.lock:
            self._db.execute(
                """
                INSERT INTO users (user_id, login, email, first_name, last_name, roles)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    login = excluded.login, email = excluded.email,
                    first_name = excluded.first_name, last_name = excluded.last_name,
                    roles = excluded.roles
                """,
                (user.id, user.login, user.email, user.first_name, user.last_name,
                 json.dumps(list(user.roles))),
            )
            self._db.commit()

    @staticmethod
    def _row_to_user(row: Any) -> UserRecord:
        try:
            roles = tuple(json.loads(row["roles"] or "[]"))
        except (TypeError, json.JSONDecodeError):
            roles = ()
        return UserRecord(
            id=row["user_id"],
            login=row["login"],
            email=row["email"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            roles=roles,
        )
