"""
storage/memory.py

In-process implementations of the storage collaborators, used by the
`replay` CLI command and the test suite. Same contracts and the same
atomicity guarantees as the SQLite versions, backed by a lock.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Iterable

from ..engine.interfaces import UserRecord
from ..engine.models import NotificationRule


class InMemoryRuleStore:
    def __init__(self, rules: Iterable[NotificationRule] = ()) -> None:
        self._rules: dict[str, NotificationRule] = {r.id: r for r in rules}
        self._lock = threading.Lock()

    def add(self, rule: NotificationRule) -> None:
        with self._lock:
            self._rules[rule.id] = rule

    def list_enabled_rules(self) -> list[NotificationRule]:
        with self._lock:
            return [r for r in self._rules.values() if r.enabled]

    def list_rules(self) -> list[NotificationRule]:
        with self._lock:
            return list(self._rules.values())

    def get_rule(self, rule_id: str) -> NotificationRule | None:
        with self._lock:
            return self._rules.get(rule_id)


class InMemoryLoginHistory:
    def __init__(self, usernames: Iterable[str] = ()) -> None:
        self._seen: set[str] = set(usernames)
        self._lock = threading.Lock()

    def has_logged_in_before(self, username: str) -> bool:
        with self._lock:
            return username in self._seen

    def record_login(self, username: str) -> None:
        with self._lock:
            self._seen.add(username)

    def check_and_record(self, username: str) -> bool:
        with self._lock:
            if username in self._seen:
                return True
            self._seen.add(username)
            return False

    def __len__(self) -> int:
        return len(self._seen)


class InMemoryFailureCounters:
    def __init__(self, ttl_seconds: float = 43_200, clock: Callable[[], float] = time.time) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._counts: dict[tuple[str, str], tuple[int, float]] = {}
        self._lock = threading.Lock()

    def increment(self, kind: str, key: str) -> int:
        now = self._clock()
        with self._lock:
            count, expires_at = self._counts.get((kind, key), (0, 0.0))
            if expires_at <= now:
                count = 0
            count += 1
            self._counts[(kind, key)] = (count, now + self._ttl)
            return count

    def get(self, kind: str, key: str) -> int:
        with self._lock:
            count, expires_at = self._counts.get((kind, key), (0, 0.0))
        return count if expires_at > self._clock() else 0


class InMemoryUserDirectory:
    def __init__(self, users: Iterable[UserRecord] = ()) -> None:
        self._by_id: dict[int, UserRecord] = {}
        self._by_login: dict[str, UserRecord] = {}
        for user in users:
            self.add(user)

    def add(self, user: UserRecord) -> None:
        self._by_id[user.id] = user
        self._by_login[user.login] = user

    def get_by_id(self, user_id: int) -> UserRecord | None:
        return self._by_id.get(user_id)

    def get_by_login(self, login: str) -> UserRecord | None:
        return self._by_login.get(login)
