from __future__ import annotations

from typing import Any


class ReimbursementError(Exception):
    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = {key: value for key, value in context.items() if value is not None}

    def to_detail(self) -> dict[str, Any]:
        return {"message": self.message, **self.context}


class ValidationError(ReimbursementError):
    pass


class PermissionDeniedError(ReimbursementError):
    pass


class ConflictError(ReimbursementError):
    pass


class NotFoundError(ReimbursementError):
    pass


class ImmutableRecordError(ReimbursementError):
    pass


class ExternalServiceError(ReimbursementError):
    pass
