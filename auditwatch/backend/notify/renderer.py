"""
notify/renderer.py

TemplateRenderer — fills a rule's message template with event details.

A rule's own template is used only when both its subject and body are set;
otherwise the default email/SMS templates below apply. Placeholders are
plain `{tag}` strings replaced in a single pass; unknown tags are left as-is.
Tag values are HTML-escaped for the email subject and body and left plain
in the SMS text.
"""

from __future__ import annotations

import html
import logging
import re
from datetime import datetime

from ..config import Settings, settings as default_settings
from ..engine.interfaces import RenderedMessage, SeverityResolver, UserDirectory
from ..engine.models import NotificationRule
from ..models import EventContext

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "Notification {title} on website {site} triggered"

DEFAULT_EMAIL_BODY = (
    "<p>Notification <strong>{title}</strong> was triggered. "
    "Below are the notification details:</p>"
    "<ul>"
    "<li>Website: {site}</li>"
    "<li>Event ID: {alert_id}</li>"
    "<li>Username: {username}</li>"
    "<li>User first name: {user_firstname}</li>"
    "<li>User last name: {user_lastname}</li>"
    "<li>User role: {user_role}</li>"
    "<li>User email: {user_email}</li>"
    "<li>IP address: {source_ip}</li>"
    "<li>Object: {object}</li>"
    "<li>Event Type: {event_type}</li>"
    "<li>Event Message: {message}</li>"
    "<li>Event generated on: {date_time}</li>"
    "</ul>"
)

DEFAULT_SMS_BODY = "\r\n".join([
    "Site: {site}",
    "User/Role: {username} / {user_role}",
    "Email: {user_email}",
    "IP Address: {source_ip}",
    "Event ID: {alert_id}",
    "Event type: {event_type}",
    "Message: {message}",
])

EMAIL_TAGS: tuple[str, ...] = (
    "{title}", "{site}", "{username}", "{user_firstname}", "{user_lastname}",
    "{user_role}", "{user_email}", "{date_time}", "{alert_id}", "{severity}",
    "{message}", "{meta}", "{links}", "{source_ip}", "{object}", "{event_type}",
)

SMS_TAGS: tuple[str, ...] = (
    "{site}", "{username}", "{user_role}", "{user_email}", "{date_time}",
    "{alert_id}", "{severity}", "{message}", "{source_ip}", "{object}", "{event_type}",
)

# Attributes already shown through dedicated tags; excluded from {meta}.
_TAGGED_ATTRIBUTES = frozenset({
    "CurrentUserID", "Username", "CurrentUserRoles", "ClientIP",
    "Object", "EventType", "Message", "SiteID",
})


_TAG_RE = re.compile(r"\{[a-z_]+\}")

# Tag values that are already HTML fragments.
_HTML_TAGS = frozenset({"{meta}", "{links}"})


def substitute(template: str, values: dict[str, str], tags: tuple[str, ...]) -> str:
    """Replace every known tag in one pass; replacement text is never rescanned."""
    def _replace(m: re.Match) -> str:
        tag = m.group(0)
        if tag not in tags:
            return tag
        return values.get(tag, "")

    return _TAG_RE.sub(_replace, template)


def escape_values(values: dict[str, str]) -> dict[str, str]:
    return {
        tag: value if tag in _HTML_TAGS else html.escape(value, quote=True)
        for tag, value in values.items()
    }


class TemplateRenderer:
    def __init__(
        self,
        users: UserDirectory | None = None,
        severity: SeverityResolver | None = None,
        config: Settings | None = None,
    ) -> None:
        self.users = users
        self.severity = severity
        self.config = config or default_settings

    def render(self, rule: NotificationRule, event: EventContext) -> RenderedMessage:
        values = self.tag_values(rule, event)
        email_values = escape_values(values)

        if rule.template is not None:
            subject_tpl, body_tpl = rule.template.subject, rule.template.body
        else:
            subject_tpl, body_tpl = DEFAULT_SUBJECT, DEFAULT_EMAIL_BODY

        return RenderedMessage(
            subject=substitute(subject_tpl, email_values, EMAIL_TAGS),
            body=substitute(body_tpl, email_values, EMAIL_TAGS),
            sms=substitute(DEFAULT_SMS_BODY, values, SMS_TAGS),
        )

    def tag_values(self, rule: NotificationRule, event: EventContext) -> dict[str, str]:
        username = "System"
        uid = event.current_user_id
        if uid is None:
            if event.username:
                username = event.username
        elif self.users is not None:
            user = self.users.get_by_id(uid)
            if user is not None:
                username = user.login

        first_name = last_name = user_email = ""
        if self.users is not None:
            record = self.users.get_by_login(username)
            if record is not None:
                first_name, last_name, user_email = record.first_name, record.last_name, record.email

        severity = ""
        if self.severity is not None:
            severity = self.severity.get_severity(event.event_id).value

        return {
            "{title}":          rule.title,
            "{site}":           self.config.SITE_DOMAIN,
            "{username}":       username,
            "{user_firstname}": first_name,
            "{user_lastname}":  last_name,
            "{user_role}":      ", ".join(event.roles),
            "{user_email}":     user_email,
            "{date_time}":      self._format_timestamp(event.timestamp),
            "{alert_id}":       str(event.event_id),
            "{severity}":       severity,
            "{message}":        str(event.get("Message") or f"Event {event.event_id}"),
            "{meta}":           self._format_meta(event),
            "{links}":          self._format_links(event),
            "{source_ip}":      event.client_ip,
            "{object}":         event.object,
            "{event_type}":     event.event_type,
        }

    # ------------------------------------------------------------------

    def _format_timestamp(self, ts: float) -> str:
        dt = datetime.fromtimestamp(ts, self.config.tzinfo)
        return dt.strftime(f"{self.config.DATE_FORMAT} {self.config.TIME_FORMAT}")

    @staticmethod
    def _format_meta(event: EventContext) -> str:
        lines = []
        for key in sorted(event.attributes):
            if key in _TAGGED_ATTRIBUTES:
                continue
            value = event.attributes[key]
            if isinstance(value, (dict, list, tuple)):
                continue
            lines.append(f"{html.escape(str(key))}: {html.escape(str(value))}")
        return "<br>".join(lines)

    @staticmethod
    def _format_links(event: EventContext) -> str:
        links = []
        for key in sorted(event.attributes):
            value = str(event.attributes[key])
            if value.startswith(("http://", "https://")):
                links.append(f'<a href="{html.escape(value, quote=True)}">{html.escape(str(key))}</a>')
        return "<br>".join(links)
