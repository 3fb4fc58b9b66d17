"""
api/serializers.py

Request/response models for the AuditWatch HTTP API.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from ..engine.models import Condition, DispatchReport, NotificationRule, TriggerGroup


class EventIn(BaseModel):
    event_id: int
    timestamp: float | None = None
    attributes: dict[str, Any] = {}


class DeliveryResponse(BaseModel):
    channel: str
    endpoint: str
    ok: bool
    error: str = ""


class RuleReportResponse(BaseModel):
    rule_id: str
    title: str
    outcome: str
    reason: str = ""
    critical_override: bool = False
    deliveries: list[DeliveryResponse] = []


class DispatchReportResponse(BaseModel):
    event_id: int
    aborted: bool
    error: str = ""
    fired: list[str]
    rules: list[RuleReportResponse]

    @classmethod
    def from_report(cls, report: DispatchReport) -> "DispatchReportResponse":
        return cls(
            event_id=report.event_id,
            aborted=report.aborted,
            error=report.error,
            fired=[r.rule_id for r in report.fired],
            rules=[
                RuleReportResponse(
                    rule_id=r.rule_id,
                    title=r.title,
                    outcome=r.outcome.value,
                    reason=r.reason,
                    critical_override=r.critical_override,
                    deliveries=[
                        DeliveryResponse(channel=d.channel, endpoint=d.endpoint, ok=d.ok, error=d.error)
                        for d in r.deliveries
                    ],
                )
                for r in report.rules
            ],
        )


class RuleIn(BaseModel):
    """A rule as submitted by the rule builder (stored-index form)."""

    id: str | None = None
    title: str
    email: str = ""
    phone: str = ""
    status: int = 1
    subject: str | None = None
    body: str | None = None
    triggers: list[dict[str, Any]] = Field(default_factory=list)
    viewState: list[Any] | None = None
    firstTimeLogin: bool = False
    isCritical: bool = False
    failUser: int = 0
    failNotUser: int = 0


def trigger_tree(group: TriggerGroup) -> list[dict]:
    """Nested, label-based view of a trigger tree."""
    out: list[dict] = []
    for item in group.items:
        if isinstance(item, TriggerGroup):
            out.append({"group_op": item.group_op.value, "items": trigger_tree(item)})
        else:
            out.append(_condition_dict(item))
    return out


def _condition_dict(c: Condition) -> dict:
    d: dict[str, Any] = {
        "group_op": c.group_op.value,
        "field": c.field_kind.value if c.field_kind else None,
        "operator": c.operator.value if c.operator else None,
        "value": c.value,
        "resolved": c.resolved,
    }
    if c.extra is not None:
        d["extra"] = {k: getattr(c.extra, k) for k in c.extra.__slots__}
    return d


class RuleResponse(BaseModel):
    id: str
    title: str
    enabled: bool
    emails: list[str]
    phones: list[str]
    is_critical_only: bool
    first_time_login_only: bool
    fail_user_threshold: int
    fail_unknown_user_threshold: int
    built_in: bool
    has_template: bool
    condition_count: int
    triggers: list[dict]

    @classmethod
    def from_rule(cls, rule: NotificationRule) -> "RuleResponse":
        return cls(
            id=rule.id,
            title=rule.title,
            enabled=rule.enabled,
            emails=rule.emails,
            phones=rule.phones,
            is_critical_only=rule.is_critical_only,
            first_time_login_only=rule.first_time_login_only,
            fail_user_threshold=rule.fail_user_threshold,
            fail_unknown_user_threshold=rule.fail_unknown_user_threshold,
            built_in=rule.built_in,
            has_template=rule.template is not None,
            condition_count=rule.condition_count,
            triggers=trigger_tree(rule.triggers),
        )


class StatsResponse(BaseModel):
    rules_total: int
    rules_enabled: int
    rule_cache_hit_rate: float | None
    metrics: dict[str, int]
