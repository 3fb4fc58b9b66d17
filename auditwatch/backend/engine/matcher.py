"""
engine/matcher.py

ConditionMatcher — decides whether one resolved condition holds for an event.

Every field kind has its own predicate. Anything not covered below
(unknown kind, operator not valid for the kind, unresolved catalog index,
malformed value) evaluates False. A broken or legacy condition must never
match everything, so the default is always "no match".
"""

from __future__ import annotations

import logging
from datetime import datetime, time as dt_time
from typing import Callable

from ..catalog import NO_MATCH, ConditionCatalog, FieldKind, Operator, sanitize_label
from ..config import Settings, settings as default_settings
from ..models import EVENT_CUSTOM_FIELD_CHANGES, EventContext
from .interfaces import UserDirectory
from .models import (
    Condition,
    EventTypeExtra,
    ObjectExtra,
    PostIdExtra,
    PostStatusExtra,
    PostTypeConstraint,
    PostTypeExtra,
    UserRoleExtra,
)

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]
PostStatusLookup = Callable[[int], "str | None"]

_DATE_INPUT_FORMATS = {
    "ymd": "%Y/%m/%d",
    "mdy": "%m/%d/%Y",
    "dmy": "%d/%m/%Y",
}


def _to_int(value: object) -> int | None:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def normalize_post_status(status: str) -> str:
    status = str(status).strip().lower()
    return "published" if status == "publish" else status


class ConditionMatcher:
    """
    Evaluates single conditions against one EventContext.

    Args:
        catalog:        Catalog of the current dispatch pass (role/object lookups).
        users:          Optional user directory; without it user ids cannot be resolved.
        clock:          Returns "now" as an aware datetime; injectable for tests.
        post_status_of: Optional lookup used when the event carries a post id but no status.
        config:         Settings (date/time formats, multisite, site id).
    """

    def __init__(
        self,
        catalog: ConditionCatalog | None = None,
        users: UserDirectory | None = None,
        clock: Clock | None = None,
        post_status_of: PostStatusLookup | None = None,
        config: Settings | None = None,
    ) -> None:
        self.catalog = catalog or ConditionCatalog()
        self.users = users
        self.config = config or default_settings
        self.clock: Clock = clock or (lambda: datetime.now(self.config.tzinfo))
        self.post_status_of = post_status_of

        self._handlers: dict[FieldKind, Callable[[Condition, EventContext], bool]] = {
            FieldKind.EVENT_ID:          self._match_event_id,
            FieldKind.DATE:              self._match_date,
            FieldKind.TIME:              self._match_time,
            FieldKind.USERNAME:          self._match_username,
            FieldKind.USER_ROLE:         self._match_user_role,
            FieldKind.SOURCE_IP:         self._match_source_ip,
            FieldKind.POST_ID:           self._match_post_id,
            FieldKind.SITE_DOMAIN:       self._match_site_domain,
            FieldKind.POST_TYPE:         self._match_post_type,
            FieldKind.POST_STATUS:       self._match_post_status,
            FieldKind.OBJECT:            self._match_object,
            FieldKind.EVENT_TYPE:        self._match_event_type,
            FieldKind.CUSTOM_USER_FIELD: self._match_custom_user_field,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def matches(self, condition: Condition, event: EventContext) -> bool:
        """Return True iff `condition` holds for `event`. Never raises."""
        if not condition.resolved or condition.field_kind is None or condition.operator is None:
            return False
        handler = self._handlers.get(condition.field_kind)
        if handler is None:
            # Legacy aliases are rewritten by the loader; a raw alias here has no handler.
            return False
        try:
            return bool(handler(condition, event))
        except Exception as exc:
            logger.exception("Condition %r raised while matching event %d: %s",
                             condition, event.event_id, exc)
            return False

    # ------------------------------------------------------------------
    # Field kinds
    # ------------------------------------------------------------------

    def _match_event_id(self, c: Condition, event: EventContext) -> bool:
        wanted = _to_int(c.value)
        if wanted is None:
            return False
        if c.operator is Operator.EQUAL:
            return wanted == event.event_id
        if c.operator is Operator.NOT_EQUAL:
            return wanted != event.event_id
        return False

    def _match_date(self, c: Condition, event: EventContext) -> bool:
        now = self.clock()
        if c.operator is Operator.EQUAL:
            # Compares with the wall clock, not the event timestamp.
            return now.strftime(self.config.DATE_FORMAT) == c.value
        if c.operator in (Operator.IS_AFTER, Operator.IS_BEFORE):
            configured = self._parse_date(c.value, now)
            if configured is None:
                return False
            if c.operator is Operator.IS_AFTER:
                return now > configured
            return now < configured
        return False

    def _match_time(self, c: Condition, event: EventContext) -> bool:
        now = self.clock()
        if c.operator is Operator.EQUAL:
            return now.strftime(self.config.TIME_FORMAT) == c.value
        if c.operator in (Operator.IS_AFTER, Operator.IS_BEFORE):
            configured = self._parse_time(c.value, now)
            if configured is None:
                return False
            if c.operator is Operator.IS_AFTER:
                return now > configured
            return now < configured
        return False

    def _match_username(self, c: Condition, event: EventContext) -> bool:
        login = self._acting_login(event)
        if c.operator is Operator.EQUAL:
            return bool(login) and login == c.value
        if c.operator is Operator.NOT_EQUAL:
            if not login:
                return False
            return login != c.value
        return False

    def _match_user_role(self, c: Condition, event: EventContext) -> bool:
        if c.operator not in (Operator.EQUAL, Operator.NOT_EQUAL):
            return False
        label = c.extra.role if isinstance(c.extra, UserRoleExtra) else c.value
        role_key = self.catalog.sanitize_user_role(label)
        if role_key is NO_MATCH:
            role_key = str(label).strip().lower().replace(" ", "_")
        if not role_key:
            return False
        found = any(role.lower() == role_key.lower() for role in event.roles)
        if c.operator is Operator.EQUAL:
            return found
        return not found

    def _match_source_ip(self, c: Condition, event: EventContext) -> bool:
        ip = event.client_ip
        if c.operator is Operator.CONTAINS:
            return bool(ip) and bool(c.value) and c.value in ip
        equal = bool(ip) and ip == c.value
        if c.operator is Operator.EQUAL:
            return equal
        if c.operator is Operator.NOT_EQUAL:
            return not equal
        return False

    def _match_post_id(self, c: Condition, event: EventContext) -> bool:
        wanted = _to_int(c.value)
        if not wanted:
            return False
        actual = event.post_id
        # NOT_EQUAL inverts the plain numeric check; post-type constraints apply to EQUAL only.
        same_id = actual is not None and wanted == actual
        if c.operator is Operator.NOT_EQUAL:
            return not same_id
        if c.operator is not Operator.EQUAL or not same_id:
            return False
        constraint = c.extra.constraint if isinstance(c.extra, PostIdExtra) else PostTypeConstraint.NONE
        post_type = event.post_type
        if constraint is PostTypeConstraint.PAGE_ONLY:
            return post_type == "page"
        if constraint is PostTypeConstraint.NOT_POST_OR_PAGE:
            return post_type not in ("post", "page")
        return True

    def _match_site_domain(self, c: Condition, event: EventContext) -> bool:
        wanted = _to_int(c.value)
        if not wanted:
            return False
        current = event.site_id if event.site_id is not None else self.config.SITE_ID
        if c.operator is Operator.EQUAL:
            return wanted == current
        if c.operator is Operator.NOT_EQUAL:
            return wanted != current
        return False

    def _match_post_type(self, c: Condition, event: EventContext) -> bool:
        post_type = event.post_type
        if not post_type:
            return False
        if self.config.MULTISITE or not isinstance(c.extra, PostTypeExtra):
            wanted = c.value.lower()
        else:
            wanted = c.extra.post_type.lower()
        if c.operator is Operator.EQUAL:
            return wanted == post_type
        if c.operator is Operator.NOT_EQUAL:
            return wanted != post_type
        return False

    def _match_post_status(self, c: Condition, event: EventContext) -> bool:
        status = event.post_status
        if not status and self.post_status_of is not None and event.post_id:
            status = self.post_status_of(event.post_id) or ""
        if not status:
            return False
        label = c.extra.status if isinstance(c.extra, PostStatusExtra) else c.value
        wanted = normalize_post_status(label)
        if not wanted:
            return False
        actual = normalize_post_status(status)
        if c.operator is Operator.EQUAL:
            return actual == wanted
        if c.operator is Operator.NOT_EQUAL:
            return actual != wanted
        return False

    def _match_object(self, c: Condition, event: EventContext) -> bool:
        label = c.extra.label if isinstance(c.extra, ObjectExtra) else c.value
        return self._two_step(c, event.object, label, self.catalog.alternative_object_key)

    def _match_event_type(self, c: Condition, event: EventContext) -> bool:
        label = c.extra.label if isinstance(c.extra, EventTypeExtra) else c.value
        return self._two_step(c, event.event_type, label, self.catalog.alternative_event_type_key)

    def _match_custom_user_field(self, c: Condition, event: EventContext) -> bool:
        if c.operator is not Operator.EQUAL:
            return False
        return (
            event.event_id in EVENT_CUSTOM_FIELD_CHANGES
            and event.custom_field_name is not None
            and event.custom_field_name == c.value
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _two_step(
        c: Condition,
        actual: str,
        label: str,
        alternative: Callable[[str], "str | None"],
    ) -> bool:
        """Direct sanitized-label match, then the alternate storage key."""
        if c.operator not in (Operator.EQUAL, Operator.NOT_EQUAL):
            return False
        if not str(label).strip():
            return False
        sanitized = sanitize_label(label)
        found = bool(actual) and actual == sanitized
        if actual and not found:
            alt = alternative(sanitized)
            found = alt is not None and actual == alt
        return found if c.operator is Operator.EQUAL else not found

    def _acting_login(self, event: EventContext) -> str:
        uid = event.current_user_id
        if uid is None:
            return event.username
        if self.users is None:
            return ""
        user = self.users.get_by_id(uid)
        return user.login if user is not None else ""

    def _parse_date(self, value: str, now: datetime) -> datetime | None:
        fmt = _DATE_INPUT_FORMATS[self.config.DATE_INPUT_ORDER]
        try:
            parsed = datetime.strptime(value.strip().replace("-", "/"), fmt)
        except ValueError:
            logger.debug("DATE condition value %r does not match %s", value, fmt)
            return None
        return parsed.replace(tzinfo=now.tzinfo)

    @staticmethod
    def _parse_time(value: str, now: datetime) -> datetime | None:
        parts = value.strip().split(":")
        if len(parts) != 2:
            return None
        hour, minute = _to_int(parts[0]), _to_int(parts[1])
        if hour is None or minute is None or not (0 <= hour <= 23 and 0 <= minute <= 59):
            logger.debug("TIME condition value %r is not HH:MM", value)
            return None
        return datetime.combine(now.date(), dt_time(hour, minute), tzinfo=now.tzinfo)
