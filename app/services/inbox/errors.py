"""Errors raised by inbox services and rendered by the API error handlers.

Provider and configuration problems are logged and reported as ``sent:
false`` instead of being raised; only caller mistakes end up here.
"""

from __future__ import annotations


class InboxError(Exception):
    status_code = 400

    def __init__(self, code: str, detail: str):
        super().__init__(detail)
        self.code = code
        self.detail = detail

    def __str__(self) -> str:
        return f"{self.code}: {self.detail}"


class InboxValidationError(InboxError):
    status_code = 400


class InboxNotFoundError(InboxError):
    status_code = 404


class InboxConflictError(InboxError):
    status_code = 409
