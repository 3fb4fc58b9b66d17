"""
engine/expression.py

TriggerGroupEvaluator — folds a rule's trigger tree into one boolean.

Folding is strictly left to right with NO operator precedence:

    [A, OR B, AND C]          →  (A OR B) AND C
    [A, AND (B, OR C)]        →  A AND (B OR C)

Groups are the only way an author changes the folding order, so the
order above is load-bearing. An empty group or sequence folds to False.
"""

from __future__ import annotations

import logging

from ..catalog import GroupOp
from ..models import EventContext
from .matcher import ConditionMatcher
from .models import Condition, TriggerGroup

logger = logging.getLogger(__name__)

_OP_SYMBOL = {GroupOp.AND: "&&", GroupOp.OR: "||"}


class TriggerGroupEvaluator:
    def __init__(self, matcher: ConditionMatcher) -> None:
        self.matcher = matcher

    def evaluate(self, sequence: TriggerGroup, event: EventContext) -> bool:
        """Verdict of the whole sequence. Empty → False."""
        return bool(self._fold(sequence, event))

    def evaluate_single(self, condition: Condition, event: EventContext) -> bool:
        """Fast path for one-condition rules; identical to evaluate(TriggerGroup((c,)))."""
        return self.matcher.matches(condition, event)

    def explain(self, sequence: TriggerGroup, event: EventContext) -> str:
        """
        Render the evaluated expression, e.g. ``TRUE || (FALSE && TRUE)``.

        Used for debug logging and the ``explain`` CLI command.
        """
        parts: list[str] = []
        for i, item in enumerate(sequence.items):
            if i:
                parts.append(_OP_SYMBOL[item.group_op])
            if isinstance(item, TriggerGroup):
                parts.append(f"({self.explain(item, event)})")
            else:
                parts.append("TRUE" if self.matcher.matches(item, event) else "FALSE")
        return " ".join(parts)

    # ------------------------------------------------------------------

    def _fold(self, group: TriggerGroup, event: EventContext) -> bool | None:
        result: bool | None = None
        for item in group.items:
            if isinstance(item, TriggerGroup):
                value = bool(self._fold(item, event))
            else:
                value = self.matcher.matches(item, event)

            if result is None:
                result = value
            elif item.group_op is GroupOp.OR:
                result = result or value
            else:
                result = result and value
        return result
