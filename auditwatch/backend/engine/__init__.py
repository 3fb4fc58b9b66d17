"""engine/__init__.py"""
from .dispatcher import RuleDispatcher
from .errors import (
    AuditWatchError,
    DeliveryFailure,
    EmptyTriggerSequence,
    RuleStoreUnavailable,
    RuleValidationError,
    UnresolvableCondition,
)
from .expression import TriggerGroupEvaluator
from .loader import RuleLoader, validate_condition, validate_payload
from .matcher import ConditionMatcher
from .models import (
    Condition,
    DispatchReport,
    NotificationRule,
    RuleOutcome,
    Severity,
    TriggerGroup,
    TriggerSequence,
)

__all__ = [
    "RuleDispatcher",
    "TriggerGroupEvaluator",
    "ConditionMatcher",
    "RuleLoader",
    "validate_condition",
    "validate_payload",
    "Condition",
    "TriggerGroup",
    "TriggerSequence",
    "NotificationRule",
    "DispatchReport",
    "RuleOutcome",
    "Severity",
    "AuditWatchError",
    "UnresolvableCondition",
    "EmptyTriggerSequence",
    "DeliveryFailure",
    "RuleStoreUnavailable",
    "RuleValidationError",
]
