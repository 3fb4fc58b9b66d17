"""
backend/models.py

Shared types for the audit event that flows through every stage.
Defining the event here locks the contract between the audit logger
(the producer) and the notification engine (the consumer).
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


# ---------------------------------------------------------------------------
# Well-known event ids
# ---------------------------------------------------------------------------

EVENT_LOGIN = 1000
EVENT_FAILED_LOGIN_KNOWN_USER = 1002
EVENT_FAILED_LOGIN_UNKNOWN_USER = 1003
EVENT_CUSTOM_FIELD_CHANGES: frozenset[int] = frozenset({4015, 4016})


# ---------------------------------------------------------------------------
# Event context
# ---------------------------------------------------------------------------

def _freeze(attributes: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(attributes or {}))


@dataclass(frozen=True)
class EventContext:
    """
    One audit event as seen by the notification engine.

    The engine only reads this object. `attributes` is wrapped in a
    read-only mapping so a matcher cannot mutate the event mid-pass.

    Attribute keys follow the audit log's metadata names:
    CurrentUserID, Username, CurrentUserRoles, ClientIP, PostID, PostType,
    PostStatus, Object, EventType, custom_field_name, SiteID.
    """

    event_id: int
    timestamp: float = field(default_factory=time.time)
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "attributes", _freeze(self.attributes))

    # -- accessors ---------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    @property
    def current_user_id(self) -> int | None:
        raw = self.attributes.get("CurrentUserID")
        try:
            uid = int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None
        return uid or None

    @property
    def username(self) -> str:
        return str(self.attributes.get("Username") or "")

    @property
    def roles(self) -> list[str]:
        raw = self.attributes.get("CurrentUserRoles")
        if isinstance(raw, str):
            return [raw] if raw else []
        if isinstance(raw, (list, tuple, set, frozenset)):
            return [str(r) for r in raw]
        return []

    @property
    def client_ip(self) -> str:
        return str(self.attributes.get("ClientIP") or "")

    @property
    def post_id(self) -> int | None:
        raw = self.attributes.get("PostID")
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def post_type(self) -> str:
        return str(self.attributes.get("PostType") or "").lower()

    @property
    def post_status(self) -> str:
        return str(self.attributes.get("PostStatus") or "")

    @property
    def object(self) -> str:
        return str(self.attributes.get("Object") or "")

    @property
    def event_type(self) -> str:
        return str(self.attributes.get("EventType") or "")

    @property
    def custom_field_name(self) -> str | None:
        if "custom_field_name" not in self.attributes:
            return None
        return str(self.attributes["custom_field_name"])

    @property
    def site_id(self) -> int | None:
        raw = self.attributes.get("SiteID")
        try:
            return int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def is_login(self) -> bool:
        return self.event_id == EVENT_LOGIN

    def __repr__(self) -> str:
        return f"EventContext(event_id={self.event_id} user={self.username!r} ip={self.client_ip!r})"

    @classmethod
    def from_dict(cls, d: dict) -> "EventContext":
        """Build from the JSON shape accepted by the API and the replay CLI."""
        return cls(
            event_id=int(d["event_id"]),
            timestamp=float(d.get("timestamp") or time.time()),
            attributes=dict(d.get("attributes") or {}),
        )
