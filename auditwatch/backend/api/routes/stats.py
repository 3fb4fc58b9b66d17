"""
api/routes/stats.py

GET /api/stats — rule counts, rule cache hit rate and engine counters
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from ...metrics import METRICS
from ...storage.repository import SqliteRuleStore
from ..serializers import StatsResponse

router = APIRouter(prefix="/stats", tags=["stats"])


def _get_repo() -> SqliteRuleStore:
    from ..main import get_repository
    return get_repository()


def _get_rule_cache():
    from ..main import get_rule_cache
    return get_rule_cache()


@router.get("", response_model=StatsResponse)
def get_stats(repo: SqliteRuleStore = Depends(_get_repo)) -> StatsResponse:
    """Return rule counts plus live engine counters."""
    cache = _get_rule_cache()
    return StatsResponse(
        rules_total=repo.count(),
        rules_enabled=len(repo.list_enabled_rules()),
        rule_cache_hit_rate=cache.hit_rate if cache is not None else None,
        metrics=METRICS.as_dict(),
    )
