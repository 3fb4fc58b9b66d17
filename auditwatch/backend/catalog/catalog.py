"""
catalog/catalog.py

ConditionCatalog — lookup tables that turn the integer indices stored in a
rule into field kinds, operators and domain values.

Stored rules never hold labels, only positions in these lists. A position
that no longer exists (a removed custom post type, a deleted role) resolves
to NO_MATCH instead of raising: the condition simply cannot match.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Sequence

from .domain import DEFAULT_DOMAIN, DomainConfig


# ---------------------------------------------------------------------------
# Enums: values are the labels shown in the rule builder
# ---------------------------------------------------------------------------

class GroupOp(str, Enum):
    AND = "AND"
    OR  = "OR"


class FieldKind(str, Enum):
    EVENT_ID          = "EVENT ID"
    DATE              = "DATE"
    TIME              = "TIME"
    USERNAME          = "USERNAME"
    USER_ROLE         = "USER ROLE"
    SOURCE_IP         = "SOURCE IP"
    POST_ID           = "POST ID"
    PAGE_ID           = "PAGE ID"         # deprecated alias of POST_ID
    CUSTOM_POST_ID    = "CUSTOM POST ID"  # deprecated alias of POST_ID
    SITE_DOMAIN       = "SITE DOMAIN"
    POST_TYPE         = "POST TYPE"
    POST_STATUS       = "POST STATUS"
    OBJECT            = "OBJECT"
    EVENT_TYPE        = "TYPE"
    CUSTOM_USER_FIELD = "CUSTOM USER FIELD"

    @property
    def is_legacy_alias(self) -> bool:
        return self in (FieldKind.PAGE_ID, FieldKind.CUSTOM_POST_ID)


class Operator(str, Enum):
    EQUAL     = "IS EQUAL"
    CONTAINS  = "CONTAINS"
    IS_AFTER  = "IS AFTER"
    IS_BEFORE = "IS BEFORE"
    NOT_EQUAL = "IS NOT"


class _NoMatch:
    """Sentinel returned for catalog indices that cannot be resolved."""

    _instance: "_NoMatch | None" = None

    def __new__(cls) -> "_NoMatch":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NO_MATCH"


NO_MATCH = _NoMatch()

# Stored-index order is fixed by the rule builder and must never be reordered.
GROUP_OPS: tuple[GroupOp, ...] = (GroupOp.AND, GroupOp.OR)
FIELD_KINDS: tuple[FieldKind, ...] = tuple(FieldKind)
OPERATORS: tuple[Operator, ...] = tuple(Operator)
POST_STATUSES: tuple[str, ...] = ("DRAFT", "FUTURE", "PENDING", "PRIVATE", "PUBLISHED")

# Which value catalog (select box) each field kind reads, if any.
VALUE_CATALOG_FOR: dict[FieldKind, str] = {
    FieldKind.POST_STATUS: "post_statuses",
    FieldKind.POST_TYPE:   "post_types",
    FieldKind.USER_ROLE:   "user_roles",
    FieldKind.OBJECT:      "objects",
    FieldKind.EVENT_TYPE:  "event_types",
}


def _lookup(table: Sequence[Any], index: Any) -> Any:
    if isinstance(index, bool):
        return NO_MATCH
    try:
        i = int(index)
    except (TypeError, ValueError):
        return NO_MATCH
    if i < 0 or i >= len(table):
        return NO_MATCH
    return table[i]


def sanitize_label(value: str) -> str:
    """Lowercase, trim and turn spaces into dashes ('Failed Login' → 'failed-login')."""
    return str(value).strip().lower().replace(" ", "-")


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class ConditionCatalog:
    """
    Index ⇄ enum ⇄ label tables for one dispatch pass.

    Cheap to build; the dispatcher rebuilds it from the current DomainConfig
    on every pass so newly registered roles and post types are picked up.
    """

    def __init__(self, domain: DomainConfig = DEFAULT_DOMAIN) -> None:
        self.domain = domain
        self.group_ops = GROUP_OPS
        self.field_kinds = FIELD_KINDS
        self.operators = OPERATORS
        self.post_statuses = POST_STATUSES
        self.post_types: tuple[str, ...] = tuple(
            p.upper() for p in domain.post_types if p != "attachment"
        )
        self.user_roles: tuple[str, ...] = tuple(name.upper() for _, name in domain.user_roles)
        self.objects: tuple[str, ...] = tuple(label.upper() for _, label in domain.event_objects)
        self.event_types: tuple[str, ...] = tuple(label.upper() for _, label in domain.event_types)

        self._object_labels: dict[str, str] = dict(domain.event_objects)
        self._event_type_labels: dict[str, str] = dict(domain.event_types)

    # ------------------------------------------------------------------
    # Index resolution
    # ------------------------------------------------------------------

    def resolve_group_op(self, index: Any) -> GroupOp | _NoMatch:
        return _lookup(self.group_ops, index)

    def resolve_field_kind(self, index: Any) -> FieldKind | _NoMatch:
        return _lookup(self.field_kinds, index)

    def resolve_operator(self, index: Any) -> Operator | _NoMatch:
        return _lookup(self.operators, index)

    def resolve_value(self, kind: FieldKind, index: Any) -> str | _NoMatch:
        """Resolve a per-kind value index (select box) to its label."""
        table_name = VALUE_CATALOG_FOR.get(kind)
        if table_name is None:
            return NO_MATCH
        return _lookup(getattr(self, table_name), index)

    # ------------------------------------------------------------------
    # Label normalisation
    # ------------------------------------------------------------------

    def sanitize_user_role(self, label: str) -> str | _NoMatch:
        """
        Map a role label to its role key.

        Accepts the upper-cased display name used by the rule builder
        ('SHOP MANAGER'), the display name in any case, or the key itself.
        """
        wanted = str(label).strip().upper()
        if not wanted:
            return NO_MATCH
        for key, name in self.domain.user_roles:
            if name.upper() == wanted or key.upper() == wanted:
                return key
        return NO_MATCH

    sanitize_object = staticmethod(sanitize_label)

    def alternative_object_key(self, sanitized: str) -> str | None:
        """Storage key of an event object whose UI label differs from its key."""
        return self._alternative_key(self._object_labels, sanitized)

    def alternative_event_type_key(self, sanitized: str) -> str | None:
        return self._alternative_key(self._event_type_labels, sanitized)

    @staticmethod
    def _alternative_key(labels: dict[str, str], sanitized: str) -> str | None:
        for key, label in labels.items():
            if label == sanitized:
                return key
        for key, label in labels.items():
            if sanitize_label(label) == sanitized:
                return key
        return None

    def __repr__(self) -> str:
        return (
            f"<ConditionCatalog post_types={len(self.post_types)} roles={len(self.user_roles)} "
            f"objects={len(self.objects)} event_types={len(self.event_types)}>"
        )
