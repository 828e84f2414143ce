# src/common/errors.py
"""
Типизированные ошибки доменного слоя.

Доменные операции не знают про HTTP: они возвращают Result с видом ошибки
(ErrorKind), а слой маршрутов переводит его в статус-код ответа.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    """Вид ошибки доменной операции."""
    VALIDATION = "validation"
    UNAUTHORIZED = "unauthorized"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    CONFLICT = "conflict"
    UPSTREAM = "upstream"
    INTERNAL = "internal"


@dataclass(frozen=True)
class Failure:
    """Описание ошибки: вид, сообщение и детали для клиента."""
    kind: ErrorKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class Result(Generic[T]):
    """
    Результат доменной операции.

    Attributes:
        value: Значение при успехе
        error: Ошибка при неуспехе
        idempotent: Операция уже была выполнена ранее, повтор ничего не изменил
    """
    value: T | None = None
    error: Failure | None = None
    idempotent: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None, *, idempotent: bool = False) -> "Result[T]":
        return cls(value=value, idempotent=idempotent)

    @classmethod
    def fail(
        cls,
        kind: ErrorKind,
        message: str,
        **details: Any,
    ) -> "Result[T]":
        return cls(error=Failure(kind=kind, message=message, details=details))

    @classmethod
    def from_failure(cls, failure: Failure) -> "Result[T]":
        return cls(error=failure)


class RollbackSignal(Exception):
    """
    Прерывает транзакцию БД, сохраняя доменную ошибку.

    Бросается внутри `async with db.transaction()`; транзакция откатывается,
    а вызывающий код превращает failure в Result.
    """

    def __init__(self, kind: ErrorKind, message: str, **details: Any) -> None:
        super().__init__(message)
        self.failure = Failure(kind=kind, message=message, details=details)


class PaymentProviderError(Exception):
    """Ошибка обращения к платёжному провайдеру."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        invalid_request: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.invalid_request = invalid_request

    @property
    def already_refunded(self) -> bool:
        """Провайдер отказал, потому что платёж уже возвращён."""
        if self.code == "charge_already_refunded":
            return True
        return self.invalid_request and "already refunded" in str(self).lower()


class DispatchError(Exception):
    """Диспетчер ответил ошибкой или недоступен."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WebhookSignatureError(Exception):
    """Подпись вебхука платёжного провайдера не прошла проверку."""


class WebhookPayloadError(Exception):
    """Событие вебхука не содержит обязательных данных."""


class JitMetadataError(Exception):
    """Метаданные оплаченного JIT-намерения не позволяют создать заявку."""
