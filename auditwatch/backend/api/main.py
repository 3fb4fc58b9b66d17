"""
api/main.py

FastAPI application: audit event intake, rule management and counters.

The objects the routes need are module globals set by the `serve` command
(or by tests) before the app starts handling requests.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .routes import events as events_router
from .routes import rules as rules_router
from .routes import stats as stats_router

logger = logging.getLogger(__name__)

_repository = None
_rule_cache = None
_dispatcher = None
_users = None
_domain_source = None


def set_repository(repo) -> None:
    global _repository
    _repository = repo


def get_repository():
    if _repository is None:
        raise RuntimeError("Repository not initialised — call set_repository() first")
    return _repository


def set_rule_cache(cache) -> None:
    global _rule_cache
    _rule_cache = cache


def get_rule_cache():
    return _rule_cache


def set_dispatcher(dispatcher) -> None:
    global _dispatcher
    _dispatcher = dispatcher


def get_dispatcher():
    if _dispatcher is None:
        raise RuntimeError("Dispatcher not initialised — call set_dispatcher() first")
    return _dispatcher


def set_users(users) -> None:
    global _users
    _users = users


def get_users():
    return _users


def set_domain_source(source) -> None:
    global _domain_source
    _domain_source = source


def get_domain_source():
    return _domain_source


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("FastAPI startup")
        yield
        logger.info("FastAPI shutdown")
        queue = getattr(_dispatcher, "queue", None)
        if queue is not None:
            queue.stop()

    app = FastAPI(
        title="AuditWatch — Audit Log Notifications",
        version="1.0.0",
        description="Rule-based email/SMS notifications for audit log events",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            "http://localhost:3000",
            "http://localhost:5173",
            "http://127.0.0.1:3000",
            "http://127.0.0.1:5173",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(events_router.router, prefix="/api")
    app.include_router(rules_router.router,  prefix="/api")
    app.include_router(stats_router.router,  prefix="/api")

    @app.get("/health")
    async def health() -> dict:
        queue = getattr(_dispatcher, "queue", None)
        return {
            "status": "ok",
            "dispatcher": _dispatcher is not None,
            "queue_depth": queue.qsize() if queue is not None else 0,
        }

    return app
