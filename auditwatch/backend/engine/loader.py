"""
engine/loader.py

RuleLoader — turns a stored rule payload into a NotificationRule.

Stored payload shape (one JSON object per rule):

    {
      "id": "wsal-1700000000",
      "title": "Editor logins",
      "email": "ops@example.org,alice",
      "phone": "+441234567890",
      "status": 1,
      "subject": "...", "body": "...",          # optional custom template
      "firstTimeLogin": false, "isCritical": false,
      "failUser": 0, "failNotUser": 0, "built_in": false,
      "triggers": [ {"select1": 0, "select2": 4, "select3": 0, "select6": 1, "input1": ""}, ... ],
      "viewState": ["trigger_id_1", ["trigger_id_2", "trigger_id_3"]]
    }

Triggers are a flat list; viewState walks them in order. A string entry
consumes one trigger as a plain condition, a list entry of length N consumes
the next N triggers as one parenthesised group. The tree is built here, once,
so the evaluator never deals with index bookkeeping.
"""

from __future__ import annotations

import ipaddress
import logging
import re
from typing import Any

from ..catalog import NO_MATCH, ConditionCatalog, FieldKind, GroupOp, Operator
from ..config import Settings, settings as default_settings
from ..notify.recipients import check_email_or_username, check_phone_numbers, split_list
from .errors import RuleValidationError, UnresolvableCondition
from .interfaces import UserDirectory
from .models import (
    Condition,
    EventTypeExtra,
    MessageTemplate,
    NotificationRule,
    ObjectExtra,
    PostIdExtra,
    PostStatusExtra,
    PostTypeConstraint,
    PostTypeExtra,
    TriggerGroup,
    UserRoleExtra,
)

logger = logging.getLogger(__name__)

# Which stored select box carries the value index for a field kind.
_VALUE_SELECT: dict[FieldKind, str] = {
    FieldKind.POST_STATUS: "select4",
    FieldKind.POST_TYPE:   "select5",
    FieldKind.USER_ROLE:   "select6",
    FieldKind.OBJECT:      "select7",
    FieldKind.EVENT_TYPE:  "select8",
}

_ALIAS_CONSTRAINT: dict[FieldKind, PostTypeConstraint] = {
    FieldKind.POST_ID:        PostTypeConstraint.NONE,
    FieldKind.PAGE_ID:        PostTypeConstraint.PAGE_ONLY,
    FieldKind.CUSTOM_POST_ID: PostTypeConstraint.NOT_POST_OR_PAGE,
}

MAX_INPUT_LENGTH = 50
MAX_USERNAME_LENGTH = 50
MAX_IP_LENGTH = 15

_TITLE_RE = re.compile(r"[A-Z0-9,.+\-_?!@#$%^&*=]", re.IGNORECASE)
_TAG_RES = (
    re.compile(r"<script[^>]*?>.*?</script>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<[/!]*?[^<>]*?>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<style[^>]*?>.*?</style>", re.IGNORECASE | re.DOTALL),
    re.compile(r"<![\s\S]*?--[ \t\n\r]*>", re.IGNORECASE),
)
_INPUT_DISALLOWED_RE = re.compile(r"[^a-z0-9.':\-_]", re.IGNORECASE)
_DATE_RES = {
    "ymd": re.compile(r"^\d{4}-\d{1,2}-\d{1,2}$"),
    "mdy": re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$"),
    "dmy": re.compile(r"^\d{1,2}-\d{1,2}-\d{4}$"),
}


def _flag(payload: dict, key: str) -> bool:
    value = payload.get(key)
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "no")
    return bool(value)


def int_field(payload: dict, key: str, default: int = 0) -> int:
    """Integer payload field; missing or blank gives `default`, 0 stays 0."""
    raw = payload.get(key)
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

class RuleLoader:
    """Builds NotificationRule objects against one catalog snapshot."""

    def __init__(self, catalog: ConditionCatalog, config: Settings | None = None) -> None:
        self.catalog = catalog
        self.config = config or default_settings

    def load(self, payload: dict) -> NotificationRule:
        if not isinstance(payload, dict):
            raise RuleValidationError(f"rule payload must be an object, got {type(payload).__name__}")
        rule_id = str(payload.get("id") or "").strip()
        if not rule_id:
            raise RuleValidationError("rule payload has no id")

        raw_triggers = payload.get("triggers") or []
        if not isinstance(raw_triggers, list):
            raise RuleValidationError(f"rule {rule_id!r}: triggers must be a list")
        conditions = [self.build_condition(t) for t in raw_triggers]
        triggers = self.build_tree(conditions, payload.get("viewState"))

        subject = str(payload.get("subject") or "").strip()
        body = str(payload.get("body") or "")
        template = MessageTemplate(subject, body) if subject and body.strip() else None

        return NotificationRule(
            id=rule_id,
            title=str(payload.get("title") or rule_id),
            triggers=triggers,
            enabled=int_field(payload, "status", 1) != 0,
            emails=split_list(payload.get("email")),
            phones=split_list(payload.get("phone")),
            template=template,
            is_critical_only=_flag(payload, "isCritical"),
            first_time_login_only=_flag(payload, "firstTimeLogin"),
            fail_user_threshold=int_field(payload, "failUser"),
            fail_unknown_user_threshold=int_field(payload, "failNotUser"),
            built_in=_flag(payload, "built_in"),
        )

    def build_condition(self, trigger: Any) -> Condition:
        """
        Resolve one stored trigger. Never raises: anything that cannot be
        resolved becomes an unresolved condition, which never matches.
        """
        if not isinstance(trigger, dict):
            logger.warning("Trigger %r is not an object, treating as unresolvable", trigger)
            return Condition(None, None, resolved=False)

        group_op = self.catalog.resolve_group_op(trigger.get("select1", 0))
        if group_op is NO_MATCH:
            group_op = GroupOp.AND
        value = str(trigger.get("input1") if trigger.get("input1") is not None else "")

        try:
            kind = self._require(self.catalog.resolve_field_kind(trigger.get("select2")),
                                 "select2", trigger.get("select2"))
            operator = self._require(self.catalog.resolve_operator(trigger.get("select3")),
                                     "select3", trigger.get("select3"))
            kind, extra = self._resolve_extra(kind, trigger)
        except UnresolvableCondition as exc:
            logger.debug("Unresolvable trigger %r: %s", trigger, exc)
            return Condition(None, None, value, group_op, resolved=False)

        return Condition(kind, operator, value, group_op, extra)

    def build_tree(self, conditions: list[Condition], view_state: Any) -> TriggerGroup:
        """Nest the flat condition list according to the stored view state."""
        if not isinstance(view_state, list) or not view_state:
            return TriggerGroup(tuple(conditions))

        items: list[Condition | TriggerGroup] = []
        cursor = 0
        for entry in view_state:
            if cursor >= len(conditions):
                logger.warning("viewState references more triggers than stored (%d)", len(conditions))
                break
            if isinstance(entry, list):
                size = len(entry)
                chunk = conditions[cursor:cursor + size]
                cursor += size
                if chunk:
                    items.append(TriggerGroup(tuple(chunk)))
            else:
                items.append(conditions[cursor])
                cursor += 1

        if cursor < len(conditions):
            logger.warning("viewState covers %d of %d triggers; appending the rest",
                           cursor, len(conditions))
            items.extend(conditions[cursor:])
        return TriggerGroup(tuple(items))

    # ------------------------------------------------------------------

    @staticmethod
    def _require(resolved: Any, field: str, index: Any) -> Any:
        if resolved is NO_MATCH:
            raise UnresolvableCondition(field, index)
        return resolved

    def _resolve_extra(self, kind: FieldKind, trigger: dict):
        if kind in _ALIAS_CONSTRAINT:
            # PAGE ID / CUSTOM POST ID are evaluated as POST ID plus a post-type constraint.
            return FieldKind.POST_ID, PostIdExtra(_ALIAS_CONSTRAINT[kind])

        select = _VALUE_SELECT.get(kind)
        if select is None or select not in trigger:
            return kind, None

        label = self.catalog.resolve_value(kind, trigger[select])
        if label is NO_MATCH:
            if kind is FieldKind.POST_TYPE and self.config.MULTISITE:
                return kind, None
            raise UnresolvableCondition(select, trigger[select])

        if kind is FieldKind.POST_STATUS:
            return kind, PostStatusExtra(label)
        if kind is FieldKind.POST_TYPE:
            return kind, PostTypeExtra(label)
        if kind is FieldKind.USER_ROLE:
            return kind, UserRoleExtra(label)
        if kind is FieldKind.OBJECT:
            return kind, ObjectExtra(label)
        return kind, EventTypeExtra(label)


# ---------------------------------------------------------------------------
# Validation of submitted rules
# ---------------------------------------------------------------------------

def sanitize_input(value: Any) -> str:
    """Strip markup, then keep only [a-z0-9.':-_]."""
    text = "" if value is None else str(value)
    for pattern in _TAG_RES:
        text = pattern.sub("", text)
    return _INPUT_DISALLOWED_RE.sub("", text)


def is_valid_partial_ip(value: str) -> bool:
    value = value.strip()
    if not value:
        return False
    parts = value.split(".")
    if len(parts) > 4:
        return False
    for part in parts:
        if part == "":
            continue
        if not part.isdigit() or int(part) > 255:
            return False
    return True


def validate_condition(
    trigger: dict,
    catalog: ConditionCatalog,
    users: UserDirectory | None = None,
    config: Settings | None = None,
) -> None:
    """
    Check one submitted trigger. Raises RuleValidationError with a
    user-facing message; returns None when the trigger is acceptable.
    """
    config = config or default_settings
    kind = catalog.resolve_field_kind(trigger.get("select2"))
    operator = catalog.resolve_operator(trigger.get("select3"))
    if kind is NO_MATCH or operator is NO_MATCH:
        raise RuleValidationError("The form is not valid.")

    value = str(trigger.get("input1") or "")
    label = kind.value

    if kind is FieldKind.EVENT_ID:
        if not value.isdigit():
            raise RuleValidationError("The EVENT ID is not valid.")

    elif kind is FieldKind.USERNAME:
        if len(value) > MAX_USERNAME_LENGTH:
            raise RuleValidationError(
                f"The USERNAME is not valid. Maximum of {MAX_USERNAME_LENGTH} characters allowed."
            )
        if users is not None and users.get_by_login(value) is None:
            raise RuleValidationError("The USERNAME does not exist.")

    elif kind is FieldKind.SOURCE_IP:
        if len(value) > MAX_IP_LENGTH:
            raise RuleValidationError(
                f"The SOURCE IP is not valid. Maximum of {MAX_IP_LENGTH} characters allowed."
            )
        if operator is Operator.EQUAL:
            try:
                ipaddress.ip_address(value)
            except ValueError:
                raise RuleValidationError("The SOURCE IP is not valid.") from None
        elif not is_valid_partial_ip(value):
            raise RuleValidationError("The SOURCE IP fragment is not valid.")

    elif kind is FieldKind.DATE:
        if not _DATE_RES[config.DATE_INPUT_ORDER].match(value):
            raise RuleValidationError("DATE is not valid.")

    elif kind is FieldKind.TIME:
        parts = value.split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise RuleValidationError("TIME is not valid.")
        if not (0 <= int(parts[0]) <= 23 and 0 <= int(parts[1]) <= 59):
            raise RuleValidationError("TIME is not valid.")

    elif kind in _ALIAS_CONSTRAINT:
        if not value.isdigit() or int(value) == 0:
            raise RuleValidationError(f"{label} is not valid")

    elif kind is FieldKind.SITE_DOMAIN:
        if not value.isdigit() or int(value) == 0:
            raise RuleValidationError(f"{label} is not valid")
        if not config.MULTISITE:
            raise RuleValidationError("The environment is not multisite.")

    elif kind is FieldKind.CUSTOM_USER_FIELD:
        if not value:
            raise RuleValidationError(f"{label} is not valid")

    select = _VALUE_SELECT.get(kind)
    if select is not None:
        if kind is FieldKind.POST_TYPE and config.MULTISITE:
            if not value:
                raise RuleValidationError(f"{label} is not valid")
        elif catalog.resolve_value(kind, trigger.get(select)) is NO_MATCH:
            raise RuleValidationError(f"Selected {label} is not valid.")


def validate_payload(
    payload: dict,
    catalog: ConditionCatalog,
    users: UserDirectory | None = None,
    config: Settings | None = None,
) -> dict:
    """
    Validate a submitted rule and return the normalised payload to store.

    Trigger inputs are sanitised and lower-cased (custom user field names
    keep their case); legacy PAGE ID / CUSTOM POST ID selections are kept
    as submitted so the loader can derive their post-type constraint.
    """
    title = str(payload.get("title") or "").replace("\\", "").replace("/", "").strip()
    if not title:
        raise RuleValidationError("Title is required.")
    if not _TITLE_RE.search(title):
        raise RuleValidationError("Title is not valid.")

    triggers = payload.get("triggers")
    if not isinstance(triggers, list) or not triggers:
        raise RuleValidationError("Please add at least one condition.")

    cleaned: list[dict] = []
    for i, trigger in enumerate(triggers, start=1):
        if not isinstance(trigger, dict):
            raise RuleValidationError(f"Trigger {i}: the form is not valid.")
        if i > 1 and catalog.resolve_group_op(trigger.get("select1")) is NO_MATCH:
            raise RuleValidationError(f"Trigger {i}: the form is not valid.")
        value = sanitize_input(trigger.get("input1"))
        if len(value) > MAX_INPUT_LENGTH:
            raise RuleValidationError(
                f"Trigger {i}: a condition must not be longer than {MAX_INPUT_LENGTH} characters."
            )
        entry = {k: int(v) for k, v in trigger.items() if k.startswith("select") and str(v).lstrip("-").isdigit()}
        entry["input1"] = value
        try:
            validate_condition(entry, catalog, users, config)
        except RuleValidationError as exc:
            raise RuleValidationError(f"Trigger {i}: {exc}") from None
        if catalog.resolve_field_kind(entry.get("select2")) is not FieldKind.CUSTOM_USER_FIELD:
            entry["input1"] = value.lower()
        cleaned.append(entry)

    email = str(payload.get("email") or "").strip()
    phone = str(payload.get("phone") or "").strip()
    if not email and not phone:
        raise RuleValidationError("Email or mobile number is required.")
    if email and not check_email_or_username(email, users):
        raise RuleValidationError("Email or Username is not valid.")
    if phone and not check_phone_numbers(phone):
        raise RuleValidationError("Mobile number is not valid.")

    out = dict(payload)
    out.update(title=title, email=email, phone=phone, triggers=cleaned)
    out.setdefault("status", 1)
    view_state = out.get("viewState")
    if not isinstance(view_state, list) or not view_state:
        out["viewState"] = [f"trigger_id_{i}" for i in range(1, len(cleaned) + 1)]
    subject = str(out.get("subject") or "").replace("\\", "").replace("/", "").strip()
    if subject and str(out.get("body") or "").strip():
        out["subject"] = subject
    else:
        out.pop("subject", None)
        out.pop("body", None)
    return out
