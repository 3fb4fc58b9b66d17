"""
engine/dispatcher.py

RuleDispatcher — one dispatch pass per audit event.

Per rule:
  1. disabled                              → skipped
  2. failed-login threshold just reached   → suspicious-activity notification
  3. first-time-login rule, repeat login   → skipped
  4. failed-login rule on a failed login   → skipped (threshold rules are
                                             handled by step 2 only)
  5. evaluate the trigger tree (fast path for one condition)
  6. critical override OR'd into the verdict
  7. render + send to every endpoint, each in its own error domain

dispatch() never raises: the audit log that produced the event must not be
affected by anything that happens here.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from ..catalog import DEFAULT_DOMAIN, ConditionCatalog
from ..config import Settings, settings as default_settings
from ..metrics import METRICS
from ..models import (
    EVENT_FAILED_LOGIN_KNOWN_USER,
    EVENT_FAILED_LOGIN_UNKNOWN_USER,
    EventContext,
)
from ..notify.recipients import resolve_emails, valid_phones
from .errors import DeliveryFailure, EmptyTriggerSequence, RuleStoreUnavailable
from .expression import TriggerGroupEvaluator
from .interfaces import (
    DomainConfigSource,
    LoginHistory,
    MessageRenderer,
    NotificationSender,
    RuleStore,
    SeverityResolver,
    UserDirectory,
)
from .matcher import Clock, ConditionMatcher, PostStatusLookup
from .models import (
    DeliveryResult,
    DispatchReport,
    NotificationRule,
    RuleOutcome,
    RuleReport,
    Severity,
)

logger = logging.getLogger(__name__)

_SLOW_PASS_MS = 250.0


class _Pass:
    """Per-event state shared by every rule of one dispatch pass."""

    __slots__ = ("event", "evaluator", "severity", "seen_before", "threshold_hits")

    def __init__(self, event: EventContext, evaluator: TriggerGroupEvaluator) -> None:
        self.event = event
        self.evaluator = evaluator
        self.severity: Severity | None = None
        self.seen_before: bool | None = None
        self.threshold_hits: dict = {}


class RuleDispatcher:
    """
    Args:
        store:          Rule store (usually a CachedRuleStore).
        renderer:       Builds subject/body/SMS text for a fired rule.
        sender:         Email/SMS transport.
        severity:       Event id → Severity, for the critical override.
        login_history:  Previously-seen logins, for first-time-login rules.
        domain_source:  Supplies the DomainConfig the catalog is rebuilt from each pass.
        users:          Optional user directory (USERNAME conditions, username recipients).
        failed_logins:  Optional FailedLoginMonitor for "N failed attempts" rules.
        queue:          Optional DispatchQueue; when set, deliveries run off the caller's thread.
    """

    def __init__(
        self,
        store: RuleStore,
        renderer: MessageRenderer,
        sender: NotificationSender,
        severity: SeverityResolver,
        login_history: LoginHistory,
        domain_source: DomainConfigSource | None = None,
        users: UserDirectory | None = None,
        failed_logins=None,
        queue=None,
        clock: Clock | None = None,
        post_status_of: PostStatusLookup | None = None,
        config: Settings | None = None,
    ) -> None:
        self.store = store
        self.renderer = renderer
        self.sender = sender
        self.severity = severity
        self.login_history = login_history
        self.domain_source: DomainConfigSource = domain_source or (lambda: DEFAULT_DOMAIN)
        self.users = users
        self.failed_logins = failed_logins
        self.queue = queue
        self.clock = clock
        self.post_status_of = post_status_of
        self.config = config or default_settings

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def dispatch(self, event: EventContext) -> DispatchReport:
        """Run every enabled rule against `event`. Never raises."""
        METRICS.events_dispatched.inc()
        report = DispatchReport(event_id=event.event_id)
        t0 = time.monotonic()

        try:
            rules = self.store.list_enabled_rules()
        except RuleStoreUnavailable as exc:
            return self._abort(report, event, str(exc))
        except Exception as exc:
            logger.exception("Rule store raised while loading rules: %s", exc)
            return self._abort(report, event, f"rule store error: {exc}")

        state = _Pass(event, TriggerGroupEvaluator(self.build_matcher()))
        self._collect_threshold_hits(state, rules)

        for rule in rules:
            try:
                rule_report = self._process(rule, state)
            except Exception as exc:
                METRICS.rule_errors.inc()
                logger.exception("Rule %r raised while handling event %d: %s",
                                 rule.id, event.event_id, exc)
                rule_report = RuleReport(rule.id, rule.title, RuleOutcome.ERROR, reason=str(exc))
            report.rules.append(rule_report)

        elapsed_ms = (time.monotonic() - t0) * 1000
        if elapsed_ms > _SLOW_PASS_MS:
            logger.warning("Dispatch of event %d took %.1fms (%d rules)",
                           event.event_id, elapsed_ms, len(rules))
        logger.debug("Event %d: %d rule(s), %d fired",
                     event.event_id, len(report.rules), len(report.fired))
        return report

    def build_matcher(self) -> ConditionMatcher:
        """Matcher bound to a catalog rebuilt from the current domain config."""
        try:
            catalog = ConditionCatalog(self.domain_source())
        except Exception as exc:
            logger.exception("Domain config unavailable, using defaults: %s", exc)
            catalog = ConditionCatalog()
        return ConditionMatcher(
            catalog,
            users=self.users,
            clock=self.clock,
            post_status_of=self.post_status_of,
            config=self.config,
        )

    # ------------------------------------------------------------------
    # Per-rule state machine
    # ------------------------------------------------------------------

    def _process(self, rule: NotificationRule, state: _Pass) -> RuleReport:
        event = state.event

        if not rule.enabled:
            METRICS.rules_skipped.inc()
            return RuleReport(rule.id, rule.title, RuleOutcome.SKIPPED, reason="disabled")

        hit = state.threshold_hits.get(rule.id)
        if hit is not None:
            METRICS.rules_fired.inc()
            suspicious = self.failed_logins.suspicious_event(event, hit)
            return RuleReport(
                rule.id, rule.title, RuleOutcome.FIRED,
                reason=f"failed-login threshold reached ({hit.attempts})",
                deliveries=self._deliver(rule, suspicious),
            )

        if rule.first_time_login_only and event.is_login and self._seen_before(state):
            METRICS.rules_skipped.inc()
            logger.debug("Rule %r skipped: %r logged in before", rule.id, event.username)
            return RuleReport(rule.id, rule.title, RuleOutcome.SKIPPED, reason="repeat login")

        if self._is_failed_login_rule_event(rule, event):
            METRICS.rules_skipped.inc()
            return RuleReport(rule.id, rule.title, RuleOutcome.SKIPPED, reason="failed-login rule")

        METRICS.rules_evaluated.inc()
        verdict, reason = self._evaluate(rule, state)

        critical = rule.is_critical_only and self._severity(state) is Severity.CRITICAL
        if not verdict and not critical:
            return RuleReport(rule.id, rule.title, RuleOutcome.NOT_MATCHED, reason=reason)

        METRICS.rules_fired.inc()
        override = critical and not verdict
        logger.info(
            "Rule %r fired for event %d%s",
            rule.id, event.event_id, " (critical override)" if override else "",
        )
        return RuleReport(
            rule.id, rule.title, RuleOutcome.FIRED,
            reason="critical override" if override else "matched",
            critical_override=override,
            deliveries=self._deliver(rule, event),
        )

    def _evaluate(self, rule: NotificationRule, state: _Pass) -> tuple[bool, str]:
        conditions = rule.triggers.conditions()
        if not conditions:
            if rule.is_critical_only:
                logger.debug("Rule %r has no conditions (critical-only)", rule.id)
            else:
                logger.warning("%s; treating as never matching", EmptyTriggerSequence(rule.id))
            return False, "empty trigger sequence"

        if len(conditions) == 1:
            verdict = state.evaluator.evaluate_single(conditions[0], state.event)
        else:
            verdict = state.evaluator.evaluate(rule.triggers, state.event)
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug("Rule %r: %s → %s", rule.id,
                             state.evaluator.explain(rule.triggers, state.event), verdict)
        return verdict, "matched" if verdict else "conditions not met"

    # ------------------------------------------------------------------
    # Pass-level lookups (computed at most once per event)
    # ------------------------------------------------------------------

    def _seen_before(self, state: _Pass) -> bool:
        if state.seen_before is None:
            username = state.event.username
            if not username:
                state.seen_before = False
            else:
                state.seen_before = self.login_history.check_and_record(username)
        return state.seen_before

    def _severity(self, state: _Pass) -> Severity | None:
        if state.severity is None:
            try:
                state.severity = self.severity.get_severity(state.event.event_id)
            except Exception as exc:
                logger.exception("Severity lookup failed for event %d: %s", state.event.event_id, exc)
                return None
        return state.severity

    def _collect_threshold_hits(self, state: _Pass, rules: list[NotificationRule]) -> None:
        if self.failed_logins is None:
            return
        try:
            hits = self.failed_logins.observe(state.event, rules)
        except Exception as exc:
            logger.exception("Failed-login counters unavailable: %s", exc)
            return
        state.threshold_hits = {h.rule.id: h for h in hits}

    @staticmethod
    def _is_failed_login_rule_event(rule: NotificationRule, event: EventContext) -> bool:
        if rule.fail_user_threshold and event.event_id == EVENT_FAILED_LOGIN_KNOWN_USER:
            return True
        if rule.fail_unknown_user_threshold and event.event_id == EVENT_FAILED_LOGIN_UNKNOWN_USER:
            return True
        return False

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    def _deliver(self, rule: NotificationRule, event: EventContext) -> list[DeliveryResult]:
        if self.queue is not None:
            self.queue.submit(lambda: self.send_all(rule, event))
            return []
        return self.send_all(rule, event)

    def send_all(self, rule: NotificationRule, event: EventContext) -> list[DeliveryResult]:
        """Render once, then send to every endpoint independently."""
        if not rule.has_endpoints:
            logger.warning("Rule %r fired but has no delivery endpoints", rule.id)
            return []

        try:
            message = self.renderer.render(rule, event)
        except Exception as exc:
            METRICS.deliveries_failed.inc()
            logger.exception("Rendering rule %r failed: %s", rule.id, exc)
            return [DeliveryResult("render", rule.id, False, str(exc))]

        results: list[DeliveryResult] = []
        for address in resolve_emails(rule.emails, self.users):
            results.append(self._send_one(
                "email", address,
                lambda a=address: self.sender.send_email(a, message.subject, message.body),
            ))

        if rule.phones and not self.config.SMS_ENABLED:
            logger.info("SMS disabled — skipping %d phone endpoint(s) of rule %r",
                        len(rule.phones), rule.id)
        elif rule.phones:
            sms_body = message.sms or message.body
            for phone in valid_phones(rule.phones):
                results.append(self._send_one(
                    "sms", phone,
                    lambda p=phone: self.sender.send_sms(p, sms_body),
                ))
        return results

    @staticmethod
    def _send_one(channel: str, endpoint: str, send: Callable[[], object]) -> DeliveryResult:
        try:
            outcome = send()
        except Exception as exc:
            outcome = str(exc) or exc.__class__.__name__

        if outcome is True:
            METRICS.deliveries_sent.inc()
            return DeliveryResult(channel, endpoint, True)

        reason = outcome if isinstance(outcome, str) and outcome else "sender reported failure"
        failure = DeliveryFailure(channel, endpoint, reason)
        METRICS.deliveries_failed.inc()
        logger.warning("%s", failure)
        return DeliveryResult(channel, endpoint, False, failure.reason)

    def _abort(self, report: DispatchReport, event: EventContext, reason: str) -> DispatchReport:
        METRICS.store_failures.inc()
        logger.error("Rule store unavailable, no rules evaluated for event %d: %s",
                     event.event_id, reason)
        report.aborted = True
        report.error = reason
        return report
