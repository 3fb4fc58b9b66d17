"""
storage/cache.py

CachedRuleStore — point-in-time snapshot of the enabled rule list.

Loading and building every rule on every audit event is wasteful; the list
is cached for RULE_CACHE_TTL_SECONDS (12h by default). Two dispatch passes
may see slightly different rule sets around a refresh or an edit, which is
accepted. Writers call invalidate() after changing a rule.

Thread safety: the snapshot is swapped under a lock; callers receive the
list object itself, which is never mutated after it is published.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from ..engine.interfaces import RuleStore
from ..engine.models import NotificationRule

logger = logging.getLogger(__name__)


class CachedRuleStore:
    def __init__(
        self,
        inner: RuleStore,
        ttl_seconds: float = 43_200,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inner = inner
        self.ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.Lock()
        self._rules: list[NotificationRule] | None = None
        self._loaded_at = 0.0
        self.hits = 0
        self.misses = 0

    def list_enabled_rules(self) -> list[NotificationRule]:
        with self._lock:
            now = self._clock()
            if self._rules is not None and now - self._loaded_at < self.ttl:
                self.hits += 1
                return self._rules
            self.misses += 1
            # Store errors propagate; a failed refresh leaves the old snapshot expired.
            rules = self.inner.list_enabled_rules()
            self._rules = rules
            self._loaded_at = now
            logger.debug("Rule cache refreshed — %d enabled rule(s)", len(rules))
            return rules

    def get_rule(self, rule_id: str) -> NotificationRule | None:
        return self.inner.get_rule(rule_id)

    def invalidate(self) -> None:
        with self._lock:
            self._rules = None
        logger.debug("Rule cache invalidated")

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0
