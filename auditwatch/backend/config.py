"""
backend/config.py

Application configuration via Pydantic Settings.
All values can be overridden with environment variables or a .env file.

Quick start — create a .env file in your project root:
    DB_PATH=data/auditwatch.db
    SITE_DOMAIN=example.org
    WEBHOOK_URL=http://localhost:9000/notify
    TIMEZONE=Europe/London
"""

from __future__ import annotations

import json
from typing import Annotated
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Storage
    DB_PATH: str = "data/auditwatch.db"

    # Caches (12h expiry)
    RULE_CACHE_TTL_SECONDS: int = 43_200
    FAILURE_COUNTER_TTL_SECONDS: int = 43_200

    # Date / time conditions
    DATE_FORMAT: str = "%Y-%m-%d"
    TIME_FORMAT: str = "%H:%M"
    DATE_INPUT_ORDER: str = "ymd"   # ymd | mdy | dmy: how DATE condition values are written
    TIMEZONE: str = "UTC"

    # Tenant
    MULTISITE: bool = False
    SITE_ID: int = 1
    SITE_DOMAIN: str = "localhost"   # rendered as {site} in notifications

    # Delivery
    DISPATCH_ASYNC: bool = False     # True → deliveries go through the bounded DispatchQueue
    DISPATCH_QUEUE_SIZE: int = 500
    WEBHOOK_URL: str = ""            # empty → deliveries are only logged
    WEBHOOK_TIMEOUT_SECONDS: float = 8.0
    SMS_ENABLED: bool = True

    # Severity: events whose severity resolves to CRITICAL (critical-only rules)
    CRITICAL_EVENT_IDS: Annotated[list[int], NoDecode] = []

    # API
    API_HOST: str = "127.0.0.1"
    API_PORT: int = 8000

    # Logging
    LOG_LEVEL: str = "INFO"

    @field_validator("CRITICAL_EVENT_IDS", mode="before")
    @classmethod
    def parse_critical_ids(cls, v):
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                return json.loads(v)
            return [int(code) for code in v.split(",") if code.strip()]
        return v

    @field_validator("DATE_INPUT_ORDER")
    @classmethod
    def check_input_order(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in ("ymd", "mdy", "dmy"):
            raise ValueError(f"DATE_INPUT_ORDER must be ymd, mdy or dmy, got {v!r}")
        return v

    @field_validator("TIMEZONE")
    @classmethod
    def check_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown TIMEZONE {v!r}") from exc
        return v

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.TIMEZONE)


settings = Settings()
