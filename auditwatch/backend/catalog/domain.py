"""
catalog/domain.py

DomainConfig — the site-specific vocabulary the condition catalog is built
from: registered post types, user roles, event objects and event types.

In production this is supplied by the platform (roles and post types change
when plugins are installed); DEFAULT_DOMAIN mirrors a stock installation and
is used by the CLI and the tests.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainConfig:
    """Ordered domain vocabularies. Order matters: stored rules reference entries by index."""

    post_types: tuple[str, ...] = ()
    """Registered post type keys, e.g. ('post', 'page', 'attachment')."""

    user_roles: tuple[tuple[str, str], ...] = ()
    """(role_key, display_name) pairs, e.g. ('editor', 'Editor')."""

    event_objects: tuple[tuple[str, str], ...] = ()
    """(storage_key, display_label) pairs, e.g. ('wp-activity-log', 'Activity log plugin')."""

    event_types: tuple[tuple[str, str], ...] = ()
    """(storage_key, display_label) pairs, e.g. ('failed-login', 'Failed Login')."""

    @classmethod
    def from_dict(cls, d: dict) -> "DomainConfig":
        return cls(
            post_types=tuple(str(p) for p in d.get("post_types", [])),
            user_roles=tuple((str(k), str(v)) for k, v in dict(d.get("user_roles", {})).items()),
            event_objects=tuple((str(k), str(v)) for k, v in dict(d.get("event_objects", {})).items()),
            event_types=tuple((str(k), str(v)) for k, v in dict(d.get("event_types", {})).items()),
        )

    @classmethod
    def from_file(cls, path: str) -> "DomainConfig":
        with open(Path(path), encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"domain config {path!r} must be a JSON object")
        domain = cls.from_dict(data)
        logger.info(
            "Domain config loaded from %r — post_types=%d roles=%d objects=%d event_types=%d",
            path,
            len(domain.post_types),
            len(domain.user_roles),
            len(domain.event_objects),
            len(domain.event_types),
        )
        return domain


DEFAULT_DOMAIN = DomainConfig(
    post_types=("post", "page", "attachment", "revision", "nav_menu_item", "wp_block"),
    user_roles=(
        ("administrator", "Administrator"),
        ("editor", "Editor"),
        ("author", "Author"),
        ("contributor", "Contributor"),
        ("subscriber", "Subscriber"),
        ("shop_manager", "Shop Manager"),
    ),
    event_objects=(
        ("user", "User"),
        ("system", "System"),
        ("post", "Post"),
        ("page", "Page"),
        ("plugin", "Plugin"),
        ("theme", "Theme"),
        ("database", "Database"),
        ("file", "File"),
        ("wp-activity-log", "Activity log plugin"),
        ("multisite-network", "Multisite Network"),
    ),
    event_types=(
        ("login", "Login"),
        ("logout", "Logout"),
        ("failed-login", "Failed Login"),
        ("created", "Created"),
        ("modified", "Modified"),
        ("deleted", "Deleted"),
        ("activated", "Activated"),
        ("deactivated", "Deactivated"),
        ("blocked", "Blocked"),
        ("session-destroy", "Session destroyed"),
    ),
)
