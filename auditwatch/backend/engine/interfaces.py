"""
engine/interfaces.py

Contracts of the collaborators the engine talks to. The engine depends only
on these protocols; concrete implementations live in storage/ and notify/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..catalog import DomainConfig
    from ..models import EventContext
    from .models import NotificationRule, Severity


@dataclass(frozen=True, slots=True)
class UserRecord:
    id: int
    login: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    roles: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RenderedMessage:
    subject: str
    body: str
    sms: str = ""


@runtime_checkable
class RuleStore(Protocol):
    def list_enabled_rules(self) -> list[NotificationRule]: ...

    def get_rule(self, rule_id: str) -> NotificationRule | None: ...


class MessageRenderer(Protocol):
    def render(self, rule: NotificationRule, event: EventContext) -> RenderedMessage: ...


class NotificationSender(Protocol):
    def send_email(self, address: str, subject: str, body: str) -> bool: ...

    def send_sms(self, phone: str, body: str) -> bool | str:
        """True on success; False or an error string on failure."""
        ...


class SeverityResolver(Protocol):
    def get_severity(self, event_id: int) -> Severity: ...


class LoginHistory(Protocol):
    def has_logged_in_before(self, username: str) -> bool: ...

    def record_login(self, username: str) -> None: ...

    def check_and_record(self, username: str) -> bool:
        """Atomically record `username`; return True if it was already present."""
        ...


class FailureCounters(Protocol):
    def increment(self, kind: str, key: str) -> int: ...

    def get(self, kind: str, key: str) -> int: ...


class UserDirectory(Protocol):
    def get_by_id(self, user_id: int) -> UserRecord | None: ...

    def get_by_login(self, login: str) -> UserRecord | None: ...


class DomainConfigSource(Protocol):
    def __call__(self) -> DomainConfig: ...
