"""
backend/main.py

Command line entry point.

    auditwatch serve                          — HTTP API backed by SQLite
    auditwatch import-rules rules.json        — validate and store rule payloads
    auditwatch replay rules.json events.json  — dispatch recorded events in memory
    auditwatch explain rules.json event.json  — show how each trigger expression folds
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import NoReturn

import uvicorn

from .api.main import (
    create_app,
    set_dispatcher,
    set_domain_source,
    set_repository,
    set_rule_cache,
    set_users,
)
from .catalog import DEFAULT_DOMAIN, ConditionCatalog, DomainConfig
from .config import settings
from .engine import RuleDispatcher, RuleLoader, RuleValidationError, TriggerGroupEvaluator, validate_payload
from .engine.interfaces import UserRecord
from .engine.models import DispatchReport, RuleOutcome
from .metrics import METRICS
from .models import EventContext
from .notify import DispatchQueue, FailedLoginMonitor, LoggingSender, SeverityTable, TemplateRenderer, build_sender
from .storage import (
    CachedRuleStore,
    Database,
    InMemoryFailureCounters,
    InMemoryLoginHistory,
    InMemoryRuleStore,
    InMemoryUserDirectory,
    SqliteFailureCounters,
    SqliteLoginHistory,
    SqliteRuleStore,
    SqliteUserDirectory,
    apply_migrations,
)

logger = logging.getLogger("auditwatch.main")

_ANSI = {
    "fired":       "\033[92m",
    "not_matched": "\033[97m",
    "skipped":     "\033[96m",
    "error":       "\033[91m",
    "RESET":       "\033[0m",
}


def _colour(outcome: str, text: str) -> str:
    return f"{_ANSI.get(outcome, '')}{text}{_ANSI['RESET']}"


# ---------------------------------------------------------------------------
# Input files
# ---------------------------------------------------------------------------

def _read_json(path: str):
    with open(Path(path), encoding="utf-8") as f:
        return json.load(f)


def _read_list(path: str) -> list:
    data = _read_json(path)
    return data if isinstance(data, list) else [data]


def _load_domain(path: str | None) -> DomainConfig:
    return DomainConfig.from_file(path) if path else DEFAULT_DOMAIN


def _load_severity(path: str | None) -> SeverityTable:
    if path:
        return SeverityTable.from_file(path)
    return SeverityTable.with_critical(settings.CRITICAL_EVENT_IDS)


def _load_users(path: str | None) -> InMemoryUserDirectory:
    users = InMemoryUserDirectory()
    if path:
        for d in _read_list(path):
            users.add(UserRecord(
                id=int(d["id"]),
                login=str(d["login"]),
                email=str(d.get("email") or ""),
                first_name=str(d.get("first_name") or ""),
                last_name=str(d.get("last_name") or ""),
                roles=tuple(d.get("roles") or ()),
            ))
    return users


def _load_rules(path: str, domain: DomainConfig) -> InMemoryRuleStore:
    loader = RuleLoader(ConditionCatalog(domain), settings)
    store = InMemoryRuleStore()
    for payload in _read_list(path):
        try:
            store.add(loader.load(payload))
        except RuleValidationError as exc:
            logger.error("Skipping rule %r: %s", payload.get("id") if isinstance(payload, dict) else payload, exc)
    return store


def _print_report(event: EventContext, report: DispatchReport) -> None:
    if report.aborted:
        print(_colour("error", f"[event {event.event_id}] aborted: {report.error}"), flush=True)
        return
    print(f"[event {event.event_id}] {len(report.fired)}/{len(report.rules)} rule(s) fired", flush=True)
    for r in report.rules:
        line = f"  {r.outcome.value:<12} {r.rule_id} {r.title!r} — {r.reason}"
        if r.outcome is RuleOutcome.FIRED and r.deliveries:
            sent = sum(1 for d in r.deliveries if d.ok)
            line += f" (delivered {sent}/{len(r.deliveries)})"
        print(_colour(r.outcome.value, line), flush=True)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args: argparse.Namespace) -> int:
    db = Database(settings.DB_PATH)
    db.init_schema()
    apply_migrations(db)

    domain = _load_domain(args.domain)
    domain_source = lambda: domain
    severity = _load_severity(args.severity)
    users = SqliteUserDirectory(db)
    repo = SqliteRuleStore(db, domain_source=domain_source)
    cache = CachedRuleStore(repo, ttl_seconds=settings.RULE_CACHE_TTL_SECONDS)

    queue = None
    if settings.DISPATCH_ASYNC:
        queue = DispatchQueue(maxsize=settings.DISPATCH_QUEUE_SIZE)
        queue.start()

    dispatcher = RuleDispatcher(
        store=cache,
        renderer=TemplateRenderer(users=users, severity=severity),
        sender=build_sender(settings),
        severity=severity,
        login_history=SqliteLoginHistory(db),
        domain_source=domain_source,
        users=users,
        failed_logins=FailedLoginMonitor(
            SqliteFailureCounters(db, ttl_seconds=settings.FAILURE_COUNTER_TTL_SECONDS),
            users=users,
        ),
        queue=queue,
    )

    set_repository(repo)
    set_rule_cache(cache)
    set_dispatcher(dispatcher)
    set_users(users)
    set_domain_source(domain_source)

    logger.info(
        "AuditWatch — API=http://%s:%d db=%r rules=%d critical_events=%d",
        settings.API_HOST, settings.API_PORT, settings.DB_PATH, repo.count(), len(severity),
    )
    uvicorn.run(create_app(), host=settings.API_HOST, port=settings.API_PORT, log_level="warning")
    db.close()
    logger.info("Final stats — %s", METRICS.as_dict())
    return 0


def cmd_import_rules(args: argparse.Namespace) -> int:
    db = Database(settings.DB_PATH)
    db.init_schema()
    apply_migrations(db)
    catalog = ConditionCatalog(_load_domain(args.domain))
    repo = SqliteRuleStore(db)
    users = SqliteUserDirectory(db)

    failures = 0
    for i, payload in enumerate(_read_list(args.rules), start=1):
        if not isinstance(payload, dict):
            failures += 1
            print(f"rule #{i}: not a JSON object", file=sys.stderr)
            continue
        try:
            cleaned = validate_payload(payload, catalog, users, settings)
        except RuleValidationError as exc:
            failures += 1
            print(f"rule #{i}: {exc}", file=sys.stderr)
            continue
        cleaned.setdefault("id", f"rule-{i}")
        print(f"saved {repo.save_payload(cleaned)}")
    db.close()
    return 1 if failures else 0


def cmd_replay(args: argparse.Namespace) -> int:
    domain = _load_domain(args.domain)
    severity = _load_severity(args.severity)
    users = _load_users(args.users)
    sender = LoggingSender()

    dispatcher = RuleDispatcher(
        store=_load_rules(args.rules, domain),
        renderer=TemplateRenderer(users=users, severity=severity),
        sender=sender,
        severity=severity,
        login_history=InMemoryLoginHistory(),
        domain_source=lambda: domain,
        users=users,
        failed_logins=FailedLoginMonitor(
            InMemoryFailureCounters(ttl_seconds=settings.FAILURE_COUNTER_TTL_SECONDS),
            users=users,
        ),
    )

    for raw in _read_list(args.events):
        event = EventContext.from_dict(raw)
        _print_report(event, dispatcher.dispatch(event))

    print(f"\n{len(sender.sent)} notification(s) — {METRICS.as_dict()}", flush=True)
    return 0


def cmd_explain(args: argparse.Namespace) -> int:
    domain = _load_domain(args.domain)
    users = _load_users(args.users)
    store = _load_rules(args.rules, domain)
    dispatcher = RuleDispatcher(
        store=store,
        renderer=TemplateRenderer(users=users),
        sender=LoggingSender(),
        severity=SeverityTable(),
        login_history=InMemoryLoginHistory(),
        domain_source=lambda: domain,
        users=users,
    )
    evaluator = TriggerGroupEvaluator(dispatcher.build_matcher())

    for raw in _read_list(args.event):
        event = EventContext.from_dict(raw)
        print(f"[event {event.event_id}]")
        for rule in store.list_enabled_rules():
            verdict = evaluator.evaluate(rule.triggers, event)
            print(f"  {rule.id} {rule.title!r}: {evaluator.explain(rule.triggers, event)} → {verdict}")
    return 0


# ---------------------------------------------------------------------------
# Main entry point
# ---------------------------------------------------------------------------

def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="auditwatch", description="AuditWatch notification engine")
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL.upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    parser.add_argument("--domain", default=None, help="domain config JSON (post types, roles, objects, event types)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("serve", help="run the HTTP API")
    p.add_argument("--severity", default=None, help="JSON map of event id → severity")
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("import-rules", help="validate rule payloads and store them")
    p.add_argument("rules")
    p.set_defaults(func=cmd_import_rules)

    p = sub.add_parser("replay", help="dispatch recorded events against a rules file")
    p.add_argument("rules")
    p.add_argument("events")
    p.add_argument("--severity", default=None)
    p.add_argument("--users", default=None, help="JSON list of platform users")
    p.set_defaults(func=cmd_replay)

    p = sub.add_parser("explain", help="show how each rule's trigger expression evaluates")
    p.add_argument("rules")
    p.add_argument("event")
    p.add_argument("--users", default=None)
    p.set_defaults(func=cmd_explain)

    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> NoReturn:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        code = args.func(args)
    except (OSError, json.JSONDecodeError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
