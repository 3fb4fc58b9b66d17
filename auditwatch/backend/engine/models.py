"""
engine/models.py

Data models for the notification engine.

Condition      — one atomic field/operator/value test
TriggerGroup   — ordered conditions and nested groups (a parenthesised sub-expression)
NotificationRule — a stored rule: trigger tree, endpoints, special flags
DispatchReport — what one dispatch pass did, rule by rule
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from ..catalog import FieldKind, GroupOp, Operator


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    INFO     = "INFO"
    LOW      = "LOW"
    MEDIUM   = "MEDIUM"
    HIGH     = "HIGH"
    CRITICAL = "CRITICAL"


# ---------------------------------------------------------------------------
# Per-kind extra fields, resolved once when the rule is loaded
# ---------------------------------------------------------------------------

class PostTypeConstraint(str, Enum):
    NONE             = "none"
    PAGE_ONLY        = "page_only"         # from the deprecated PAGE ID kind
    NOT_POST_OR_PAGE = "not_post_or_page"  # from the deprecated CUSTOM POST ID kind


@dataclass(frozen=True, slots=True)
class PostIdExtra:
    constraint: PostTypeConstraint = PostTypeConstraint.NONE


@dataclass(frozen=True, slots=True)
class PostStatusExtra:
    status: str


@dataclass(frozen=True, slots=True)
class PostTypeExtra:
    post_type: str


@dataclass(frozen=True, slots=True)
class UserRoleExtra:
    role: str


@dataclass(frozen=True, slots=True)
class ObjectExtra:
    label: str


@dataclass(frozen=True, slots=True)
class EventTypeExtra:
    label: str


ConditionExtra = Union[
    PostIdExtra, PostStatusExtra, PostTypeExtra, UserRoleExtra, ObjectExtra, EventTypeExtra
]


# ---------------------------------------------------------------------------
# Condition / TriggerGroup
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class Condition:
    """
    One atomic test against the event.

    `group_op` joins this condition to the previous item of its enclosing
    group; it is ignored on the first item. `resolved=False` marks a
    condition whose catalog references could not be resolved at load time:
    it never matches.
    """

    field_kind: FieldKind | None
    operator: Operator | None
    value: str = ""
    group_op: GroupOp = GroupOp.AND
    extra: ConditionExtra | None = None
    resolved: bool = True

    def __repr__(self) -> str:
        kind = self.field_kind.value if self.field_kind else "?"
        op = self.operator.value if self.operator else "?"
        flag = "" if self.resolved else " UNRESOLVED"
        return f"Condition({self.group_op.value} {kind} {op} {self.value!r}{flag})"


@dataclass(frozen=True, slots=True)
class TriggerGroup:
    """
    Ordered items folded left to right with no operator precedence.

    The top-level trigger sequence of a rule is itself a TriggerGroup.
    """

    items: tuple["Condition | TriggerGroup", ...] = ()

    @property
    def group_op(self) -> GroupOp:
        """A group joins its parent with the operator of its first condition."""
        for item in self.items:
            return item.group_op
        return GroupOp.AND

    def conditions(self) -> list[Condition]:
        """Every condition in the tree, depth first."""
        out: list[Condition] = []
        for item in self.items:
            if isinstance(item, TriggerGroup):
                out.extend(item.conditions())
            else:
                out.append(item)
        return out

    def __len__(self) -> int:
        return len(self.items)


TriggerSequence = TriggerGroup


# ---------------------------------------------------------------------------
# NotificationRule
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class MessageTemplate:
    subject: str
    body: str


@dataclass
class NotificationRule:
    """A user-authored notification. Read-only to the engine."""

    id: str
    title: str
    triggers: TriggerSequence = field(default_factory=TriggerGroup)
    enabled: bool = True
    emails: list[str] = field(default_factory=list)
    """Addresses or platform usernames; usernames are resolved at delivery time."""

    phones: list[str] = field(default_factory=list)
    template: MessageTemplate | None = None
    is_critical_only: bool = False
    first_time_login_only: bool = False
    fail_user_threshold: int = 0
    """Known-user failed-login threshold; 0 = not a failed-login rule."""

    fail_unknown_user_threshold: int = 0
    built_in: bool = False

    @property
    def condition_count(self) -> int:
        return len(self.triggers.conditions())

    @property
    def has_endpoints(self) -> bool:
        return bool(self.emails or self.phones)

    def __repr__(self) -> str:
        return (
            f"<Rule:{self.id} {self.title!r} enabled={self.enabled} "
            f"conditions={self.condition_count}>"
        )


# ---------------------------------------------------------------------------
# Dispatch results
# ---------------------------------------------------------------------------

class RuleOutcome(str, Enum):
    SKIPPED     = "skipped"
    NOT_MATCHED = "not_matched"
    FIRED       = "fired"
    ERROR       = "error"


@dataclass(slots=True)
class DeliveryResult:
    channel: str          # "email" | "sms"
    endpoint: str
    ok: bool
    error: str = ""


@dataclass
class RuleReport:
    rule_id: str
    title: str
    outcome: RuleOutcome
    reason: str = ""
    critical_override: bool = False
    deliveries: list[DeliveryResult] = field(default_factory=list)


@dataclass
class DispatchReport:
    """Per-rule results of one dispatch pass. Returned, never raised."""

    event_id: int
    rules: list[RuleReport] = field(default_factory=list)
    aborted: bool = False
    error: str = ""

    @property
    def fired(self) -> list[RuleReport]:
        return [r for r in self.rules if r.outcome == RuleOutcome.FIRED]

    def outcome_for(self, rule_id: str) -> RuleOutcome | None:
        for r in self.rules:
            if r.rule_id == rule_id:
                return r.outcome
        return None
