"""
notify/recipients.py

Recipient parsing for notification rules.

A rule stores its endpoints as comma-separated strings: the email field may
mix addresses and platform usernames, the phone field holds 10–14 digit
numbers with an optional leading '+'.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from ..engine.interfaces import UserDirectory

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+'-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)*\.[A-Za-z]{2,}$")
_PHONE_RE = re.compile(r"^[+]?[0-9]{10,14}$")


def split_list(raw: str | Iterable[str] | None) -> list[str]:
    """'a@x.org, bob,' → ['a@x.org', 'bob']"""
    if raw is None:
        return []
    if isinstance(raw, str):
        parts = raw.split(",")
    else:
        parts = list(raw)
    return [p.strip() for p in parts if p and p.strip()]


def is_email(value: str) -> bool:
    return bool(_EMAIL_RE.match(value.strip()))


def is_phone(value: str) -> bool:
    return bool(_PHONE_RE.match(value.strip()))


def check_email_or_username(raw: str, users: UserDirectory | None = None) -> bool:
    """Every entry must be an address or, with a directory, an existing login."""
    entries = split_list(raw)
    if not entries:
        return False
    for entry in entries:
        if is_email(entry):
            continue
        if users is None or users.get_by_login(entry) is None:
            return False
    return True


def check_phone_numbers(raw: str) -> bool:
    entries = split_list(raw)
    return bool(entries) and all(is_phone(p) for p in entries)


def resolve_emails(entries: Iterable[str], users: UserDirectory | None = None) -> list[str]:
    """
    Turn rule email entries into deliverable addresses.

    Usernames are looked up in the directory; entries that are neither a
    valid address nor a known login are dropped with a warning. Duplicates
    are removed, first occurrence wins.
    """
    out: list[str] = []
    for entry in entries:
        entry = entry.strip()
        if not entry:
            continue
        address = ""
        if is_email(entry):
            address = entry
        elif users is not None:
            user = users.get_by_login(entry)
            if user is not None and user.email:
                address = user.email
        if not address:
            logger.warning("Recipient %r is neither an email address nor a known user", entry)
            continue
        if address not in out:
            out.append(address)
    return out


def valid_phones(entries: Iterable[str]) -> list[str]:
    out: list[str] = []
    for phone in entries:
        phone = phone.strip()
        if not is_phone(phone):
            logger.warning("Dropping invalid phone number %r", phone)
            continue
        if phone not in out:
            out.append(phone)
    return out
