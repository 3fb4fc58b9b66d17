"""
notify/senders.py

NotificationSender implementations.

LoggingSender  — dry run; records every delivery and logs it. Default when
                 no relay is configured, and the sender used by the tests.
WebhookSender  — POSTs each rendered message to an HTTP relay (one request
                 per endpoint) which owns the real email/SMS transport.

Usage:
    sender = build_sender(settings)
    ok = sender.send_email("ops@example.org", subject, body)
"""

from __future__ import annotations

import logging
import threading

import httpx

from ..config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class LoggingSender:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.sent: list[dict] = []

    def send_email(self, address: str, subject: str, body: str) -> bool:
        with self._lock:
            self.sent.append({"channel": "email", "to": address, "subject": subject, "body": body})
        logger.info("EMAIL to=%r subject=%r", address, subject)
        return True

    def send_sms(self, phone: str, body: str) -> bool | str:
        with self._lock:
            self.sent.append({"channel": "sms", "to": phone, "body": body})
        logger.info("SMS to=%r (%d chars)", phone, len(body))
        return True


class WebhookSender:
    """
    Delivers through an HTTP relay.

    Args:
        url:      Relay endpoint; receives JSON {"channel", "to", "subject", "body"}.
        timeout:  Per-request timeout in seconds.
        client:   Optional pre-built httpx.Client (tests inject a MockTransport).
    """

    def __init__(
        self,
        url: str,
        timeout: float = 8.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)

    def send_email(self, address: str, subject: str, body: str) -> bool:
        result = self._post({"channel": "email", "to": address, "subject": subject, "body": body})
        return result is True

    def send_sms(self, phone: str, body: str) -> bool | str:
        return self._post({"channel": "sms", "to": phone, "body": body})

    def close(self) -> None:
        self._client.close()

    def _post(self, payload: dict) -> bool | str:
        try:
            resp = self._client.post(self.url, json=payload)
        except httpx.TimeoutException:
            logger.warning("Relay timeout delivering %s to %r", payload["channel"], payload["to"])
            return "timeout"
        except httpx.HTTPError as exc:
            logger.warning("Relay error delivering %s to %r: %s", payload["channel"], payload["to"], exc)
            return str(exc) or exc.__class__.__name__

        if resp.status_code >= 400:
            logger.warning(
                "Relay rejected %s to %r: HTTP %d",
                payload["channel"], payload["to"], resp.status_code,
            )
            return f"HTTP {resp.status_code}"
        return True


def build_sender(config: Settings | None = None) -> LoggingSender | WebhookSender:
    config = config or default_settings
    if config.WEBHOOK_URL:
        logger.info("Deliveries go to relay %s", config.WEBHOOK_URL)
        return WebhookSender(config.WEBHOOK_URL, timeout=config.WEBHOOK_TIMEOUT_SECONDS)
    logger.info("WEBHOOK_URL not set — deliveries are only logged")
    return LoggingSender()
