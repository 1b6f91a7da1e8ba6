"""
Error kinds raised by the admin services.

Every kind is an ``HTTPException`` so services can raise them directly and
FastAPI renders ``{"detail": ...}`` with the matching status code. None of
them is retryable: each is a deterministic consequence of current state.
"""

from __future__ import annotations

from fastapi import HTTPException


class AdminError(HTTPException):
    """Base class for admin service errors."""

    status_code_default = 500

    def __init__(self, detail: str) -> None:
        super().__init__(status_code=self.status_code_default, detail=detail)

    def __str__(self) -> str:
        return str(self.detail)


class BadRequest(AdminError):
    """Ambiguous or missing input."""

    status_code_default = 400


class Forbidden(AdminError):
    """Policy violation."""

    status_code_default = 403


class NotFound(AdminError):
    """Target, role or organization does not exist."""

    status_code_default = 404


class Conflict(AdminError):
    """Uniqueness violation (slug, email, role name, permission pair)."""

    status_code_default = 409
