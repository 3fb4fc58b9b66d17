"""
engine/errors.py

Exceptions raised inside the engine. None of them escape RuleDispatcher.dispatch():
each is recovered at the level named in its docstring.
"""

from __future__ import annotations


class AuditWatchError(Exception):
    """Base class for engine errors."""


class UnresolvableCondition(AuditWatchError):
    """A condition references a catalog index that no longer exists. The condition evaluates false."""

    def __init__(self, field: str, index: object) -> None:
        super().__init__(f"{field} index {index!r} cannot be resolved")
        self.field = field
        self.index = index


class EmptyTriggerSequence(AuditWatchError):
    """A rule has zero conditions. The rule is treated as never matching."""

    def __init__(self, rule_id: str) -> None:
        super().__init__(f"rule {rule_id!r} has no conditions")
        self.rule_id = rule_id


class DeliveryFailure(AuditWatchError):
    """A sender call failed for one endpoint. Other endpoints still get delivery."""

    def __init__(self, channel: str, endpoint: str, reason: str) -> None:
        super().__init__(f"{channel} delivery to {endpoint!r} failed: {reason}")
        self.channel = channel
        self.endpoint = endpoint
        self.reason = reason


class RuleStoreUnavailable(AuditWatchError):
    """The rule store cannot be read. The dispatch pass for this event is aborted."""


class RuleValidationError(AuditWatchError, ValueError):
    """A stored or submitted rule payload is malformed."""
