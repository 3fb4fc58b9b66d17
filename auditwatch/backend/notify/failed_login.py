"""
notify/failed_login.py

FailedLoginMonitor — counts failed logins and picks the rules whose
"N failed attempts" threshold was just reached.

Counters are keyed per site, user and source IP for known users
("known", "site:user:ip") and per site and IP for unknown usernames
("unknown", "site:ip"). They expire after FAILURE_COUNTER_TTL_SECONDS, which
is the store's concern. Each failed-login event increments its counter
exactly once; a rule fires on the attempt whose count equals its threshold
and stays quiet for later attempts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from ..config import Settings, settings as default_settings
from ..engine.interfaces import FailureCounters, UserDirectory
from ..engine.models import NotificationRule
from ..models import (
    EVENT_FAILED_LOGIN_KNOWN_USER,
    EVENT_FAILED_LOGIN_UNKNOWN_USER,
    EventContext,
)

logger = logging.getLogger(__name__)

KIND_KNOWN = "known"
KIND_UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class ThresholdHit:
    rule: NotificationRule
    attempts: int
    key: str


class FailedLoginMonitor:
    def __init__(
        self,
        counters: FailureCounters,
        users: UserDirectory | None = None,
        config: Settings | None = None,
    ) -> None:
        self.counters = counters
        self.users = users
        self.config = config or default_settings

    def counter_key(self, event: EventContext) -> tuple[str, str] | None:
        """(kind, key) for a failed-login event, None for any other event."""
        site = event.site_id if event.site_id is not None else self.config.SITE_ID
        ip = event.client_ip
        if event.event_id == EVENT_FAILED_LOGIN_KNOWN_USER:
            user_ref = event.username
            if self.users is not None and event.username:
                user = self.users.get_by_login(event.username)
                if user is not None:
                    user_ref = str(user.id)
            return KIND_KNOWN, f"{site}:{user_ref}:{ip}"
        if event.event_id == EVENT_FAILED_LOGIN_UNKNOWN_USER:
            return KIND_UNKNOWN, f"{site}:{ip}"
        return None

    def observe(self, event: EventContext, rules: Iterable[NotificationRule]) -> list[ThresholdHit]:
        """
        Record one failed login and return the rules whose threshold it reaches.

        Non-failed-login events and events with no threshold rule leave the
        counters untouched.
        """
        ck = self.counter_key(event)
        if ck is None:
            return []
        kind, key = ck

        attr = "fail_user_threshold" if kind == KIND_KNOWN else "fail_unknown_user_threshold"
        watching = [r for r in rules if r.enabled and getattr(r, attr) > 0]
        if not watching:
            return []

        count = self.counters.increment(kind, key)
        hits = [ThresholdHit(r, count, key) for r in watching if getattr(r, attr) == count]
        if hits:
            logger.warning(
                "Failed-login threshold reached kind=%s key=%r attempts=%d rules=%s",
                kind, key, count, [h.rule.id for h in hits],
            )
        else:
            logger.debug("Failed login kind=%s key=%r attempts=%d", kind, key, count)
        return hits

    @staticmethod
    def suspicious_event(event: EventContext, hit: ThresholdHit) -> EventContext:
        """The event as shown in the suspicious-activity message."""
        attributes = dict(event.attributes)
        attributes["Message"] = (
            f"{hit.attempts} failed login attempt(s) from {event.client_ip or 'unknown IP'}"
        )
        attributes["Attempts"] = hit.attempts
        return EventContext(event.event_id, event.timestamp, attributes)
