"""
tests/test_senders.py

Tests for notify/senders.py and notify/severity.py — relay delivery through
httpx.MockTransport, sender selection and the severity table.
"""

from __future__ import annotations

import json

import httpx

from auditwatch.backend.config import Settings
from auditwatch.backend.engine.models import Severity
from auditwatch.backend.notify.senders import LoggingSender, WebhookSender, build_sender
from auditwatch.backend.notify.severity import SeverityTable


def relay(handler) -> WebhookSender:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return WebhookSender("http://relay.test/notify", client=client)


class TestWebhookSender:

    def test_posts_email(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            return httpx.Response(202)

        assert relay(handler).send_email("ops@example.org", "Subj", "<p>Body</p>") is True
        assert seen == [{"channel": "email", "to": "ops@example.org", "subject": "Subj", "body": "<p>Body</p>"}]

    def test_http_error_status(self):
        sender = relay(lambda request: httpx.Response(503))
        assert sender.send_sms("+441234567890", "hi") == "HTTP 503"
        assert sender.send_email("ops@example.org", "s", "b") is False

    def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        assert relay(handler).send_sms("+441234567890", "hi") == "timeout"

    def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert relay(handler).send_sms("+441234567890", "hi") == "refused"


class TestBuildSender:

    def test_logging_sender_without_url(self):
        sender = build_sender(Settings(WEBHOOK_URL=""))
        assert isinstance(sender, LoggingSender)
        sender.send_email("ops@example.org", "s", "b")
        assert sender.sent[0]["to"] == "ops@example.org"

    def test_webhook_sender_with_url(self):
        sender = build_sender(Settings(WEBHOOK_URL="http://relay.test/notify"))
        assert isinstance(sender, WebhookSender)
        sender.close()


class TestSeverityTable:

    def test_default_is_low(self):
        assert SeverityTable().get_severity(1000) is Severity.LOW

    def test_with_critical(self):
        table = SeverityTable.with_critical([6004, "1002"])
        assert table.get_severity(6004) is Severity.CRITICAL
        assert table.get_severity(1002) is Severity.CRITICAL
        assert len(table) == 2

    def test_from_file(self, tmp_path):
        path = tmp_path / "severity.json"
        path.write_text(json.dumps({"1002": "high", "6004": "CRITICAL"}))
        table = SeverityTable.from_file(str(path))
        assert table.get_severity(1002) is Severity.HIGH
        assert table.get_severity(6004) is Severity.CRITICAL
