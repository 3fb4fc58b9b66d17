"""storage/__init__.py"""
from .cache import CachedRuleStore
from .database import Database
from .memory import (
    InMemoryFailureCounters,
    InMemoryLoginHistory,
    InMemoryRuleStore,
    InMemoryUserDirectory,
)
from .migrations import apply_migrations
from .repository import (
    SqliteFailureCounters,
    SqliteLoginHistory,
    SqliteRuleStore,
    SqliteUserDirectory,
)

__all__ = [
    "CachedRuleStore",
    "Database",
    "apply_migrations",
    "SqliteRuleStore",
    "SqliteLoginHistory",
    "SqliteFailureCounters",
    "SqliteUserDirectory",
    "InMemoryRuleStore",
    "InMemoryLoginHistory",
    "InMemoryFailureCounters",
    "InMemoryUserDirectory",
]
