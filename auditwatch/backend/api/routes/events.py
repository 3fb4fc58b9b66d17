"""
api/routes/events.py

POST /api/events          — run one audit event through every enabled rule
POST /api/events/explain  — same pass, rendered trigger expressions only (no delivery)
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ...engine.dispatcher import RuleDispatcher
from ...engine.expression import TriggerGroupEvaluator
from ...models import EventContext
from ..serializers import DispatchReportResponse, EventIn

router = APIRouter(prefix="/events", tags=["events"])


def _get_dispatcher() -> RuleDispatcher:
    """FastAPI dependency — replaced in tests via app.dependency_overrides."""
    from ..main import get_dispatcher
    return get_dispatcher()


def _to_event(body: EventIn) -> EventContext:
    return EventContext.from_dict(body.model_dump())


@router.post("", response_model=DispatchReportResponse)
def dispatch_event(
    body: EventIn,
    dispatcher: RuleDispatcher = Depends(_get_dispatcher),
) -> DispatchReportResponse:
    """Dispatch an audit event. Always 200: rule failures are reported, not raised."""
    report = dispatcher.dispatch(_to_event(body))
    return DispatchReportResponse.from_report(report)


@router.post("/explain")
def explain_event(
    body: EventIn,
    dispatcher: RuleDispatcher = Depends(_get_dispatcher),
) -> list[dict]:
    """Show how each enabled rule's trigger expression evaluates for this event."""
    event = _to_event(body)
    evaluator = TriggerGroupEvaluator(dispatcher.build_matcher())
    return [
        {
            "rule_id": rule.id,
            "title": rule.title,
            "expression": evaluator.explain(rule.triggers, event),
            "verdict": evaluator.evaluate(rule.triggers, event),
        }
        for rule in dispatcher.store.list_enabled_rules()
    ]
