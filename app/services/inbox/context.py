"""Request-scoped logging context for inbox work.

HTTP requests, webhook deliveries and live-socket events each get a short
request id; every inbox log line carries it as ``request_id``.
"""

from __future__ import annotations

import contextvars
import functools
import logging
import uuid

from app.logging import get_logger

_request_id: contextvars.ContextVar[str] = contextvars.ContextVar("omnidesk_request_id", default="")


def new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def set_request_id(value: str | None = None) -> str:
    value = value or new_request_id()
    _request_id.set(value)
    return value


def get_request_id() -> str:
    return _request_id.get()


class InboxLoggerAdapter(logging.LoggerAdapter):
    def process(self, msg, kwargs):
        rid = get_request_id()
        if rid:
            kwargs["extra"] = {"request_id": rid, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_inbox_logger(name: str) -> logging.LoggerAdapter:
    return InboxLoggerAdapter(get_logger(name), {})


def with_inbox_context(func):
    """Run ``func`` under the current request id, minting one if unset."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        if not get_request_id():
            set_request_id()
        return func(*args, **kwargs)

    return wrapper
