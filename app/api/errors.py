from __future__ import annotations

from typing import NoReturn

from fastapi import HTTPException, status

from app.domain.errors import (
    ConflictError,
    ExternalServiceError,
    ImmutableRecordError,
    NotFoundError,
    PermissionDeniedError,
    ReimbursementError,
    ValidationError,
)

STATUS_BY_ERROR: tuple[tuple[type[ReimbursementError], int], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ImmutableRecordError, status.HTTP_409_CONFLICT),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
)


def raise_http_error(exc: ReimbursementError) -> NoReturn:
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            raise HTTPException(status_code=status_code, detail=exc.to_detail()) from exc
    raise exc
