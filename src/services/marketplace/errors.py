# src/services/marketplace/errors.py
"""
Перевод результатов доменных операций в HTTP-ответы.
"""

from __future__ import annotations

from typing import Any, Optional, TypeVar

from fastapi import HTTPException, status
from pydantic import BaseModel

from src.common.errors import ErrorKind, Failure, Result
from src.shared.models.common import ErrorResponse

T = TypeVar("T")

HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.UPSTREAM: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def failure_to_http(failure: Failure) -> HTTPException:
    details = {key: value for key, value in failure.details.items() if value is not None}
    return HTTPException(
        status_code=HTTP_STATUS_BY_KIND[failure.kind],
        detail=ErrorResponse(
            error_code=failure.kind.value,
            message=failure.message,
            details=details or None,
        ).model_dump(exclude_none=True),
    )


def unwrap(result: Result[T], as_model: Optional[type[BaseModel]] = None) -> Any:
    """
    Значение успешного результата, иначе HTTPException по виду ошибки.

    as_model: модель ответа с полем idempotent, в которую переносится значение.
    У повтора уже выполненной операции в ответе idempotent = true.
    """
    if result.error is not None:
        raise failure_to_http(result.error)

    value = result.value
    if as_model is not None:
        value = as_model.model_validate(value.model_dump())
    if result.idempotent and isinstance(value, BaseModel) and "idempotent" in type(value).model_fields:
        value = value.model_copy(update={"idempotent": True})
    return value
