from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NetworkError(AppError):
    """Transient collaborator failure; the operation may be retried."""


class NotFoundError(AppError):
    pass


class ForbiddenError(AppError):
    """Caller is not allowed to act on the entity (e.g. non-member of a group)."""


class ConflictError(AppError):
    pass


class ValidationError(AppError):
    pass


class UnauthorizedError(AppError):
    """Bad credentials or an invalid / expired token."""
