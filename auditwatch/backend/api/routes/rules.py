"""
api/routes/rules.py

GET    /api/rules            — every stored rule
GET    /api/rules/{id}       — single rule
POST   /api/rules            — validate and save a rule (create or replace)
PATCH  /api/rules/{id}       — enable / disable
DELETE /api/rules/{id}       — remove a rule
"""

from __future__ import annotations

import time
from typing import Annotated

from fastapi import APIRouter, Body, Depends, HTTPException

from ...catalog import DEFAULT_DOMAIN, ConditionCatalog
from ...engine.errors import RuleStoreUnavailable, RuleValidationError
from ...engine.loader import validate_payload
from ...storage.repository import SqliteRuleStore
from ..serializers import RuleIn, RuleResponse

router = APIRouter(prefix="/rules", tags=["rules"])


def _get_repo() -> SqliteRuleStore:
    """FastAPI dependency — replaced in tests via app.dependency_overrides."""
    from ..main import get_repository
    return get_repository()


def _catalog() -> ConditionCatalog:
    from ..main import get_domain_source
    source = get_domain_source()
    return ConditionCatalog(source() if source is not None else DEFAULT_DOMAIN)


def _invalidate_cache() -> None:
    from ..main import get_rule_cache
    cache = get_rule_cache()
    if cache is not None:
        cache.invalidate()


@router.get("", response_model=list[RuleResponse])
def list_rules(repo: SqliteRuleStore = Depends(_get_repo)) -> list[RuleResponse]:
    try:
        rules = repo.list_rules()
    except RuleStoreUnavailable as exc:
        raise HTTPException(status_code=503, detail=str(exc))
    return [RuleResponse.from_rule(r) for r in rules]


@router.get("/{rule_id}", response_model=RuleResponse)
def get_rule(rule_id: str, repo: SqliteRuleStore = Depends(_get_repo)) -> RuleResponse:
    rule = repo.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=404, detail=f"Rule {rule_id!r} not found")
    return RuleResponse.from_rule(rule)


@router.post("", response_model=RuleResponse, status_code=201)
def save_rule(body: RuleIn, repo: SqliteRuleStore = Depends(_get_repo)) -> RuleResponse:
    """Validate a submitted rule, normalise its triggers and store it."""
    from ..main import get_users

    try:
        payload = validate_payload(body.model_dump(exclude_none=True), _catalog(), get_users())
    except RuleValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc))

    payload["id"] = body.id or f"rule-{int(time.time() * 1000)}"
    payload.setdefault("built_in", False)
    rule_id = repo.save_payload(payload)
    _invalidate_cache()

    rule = repo.get_rule(rule_id)
    if rule is None:
        raise HTTPException(status_code=500, detail=f"Rule {rule_id!r} could not be reloaded")
    return RuleResponse.from_rule(rule)


@router.patch("/{rule_id}", response_model=RuleResponse)
def set_rule_enabled(
    rule_id: str,
    enabled: Annotated[bool, Body(embed=True)],
    repo: SqliteRuleStore = Depends(_get_repo),
) -> RuleResponse:
    if not repo.set_enabled(rule_id, enabled):
        raise HTTPException(status_code=404, detail=f"Rule {rule_id!r} not found")
    _invalidate_cache()
    return get_rule(rule_id, repo)


@router.delete("/{rule_id}", status_code=204)
def delete_rule(rule_id: str, repo: SqliteRuleStore = Depends(_get_repo)) -> None:
    if not repo.delete_rule(rule_id):
        raise HTTPException(status_code=404, detail=f"Rule {rule_id!r} not found")
    _invalidate_cache()
