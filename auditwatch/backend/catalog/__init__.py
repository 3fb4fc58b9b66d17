"""catalog/__init__.py"""
from .catalog import (
    NO_MATCH,
    ConditionCatalog,
    FieldKind,
    GroupOp,
    Operator,
    sanitize_label,
)
from .domain import DEFAULT_DOMAIN, DomainConfig

__all__ = [
    "NO_MATCH",
    "ConditionCatalog",
    "FieldKind",
    "GroupOp",
    "Operator",
    "sanitize_label",
    "DEFAULT_DOMAIN",
    "DomainConfig",
]
