# marketplace_analytics/core/result.py
"""
Результат операций конвейера аналитики.

Внутри сервисов сбой представлен явно (успех / не найдено / временная ошибка /
некорректные данные), а публичные методы логируют исход и сворачивают его
в безопасное значение по умолчанию.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class Outcome(str, Enum):
    SUCCESS = "success"
    NOT_FOUND = "not_found"
    TRANSIENT_ERROR = "transient_error"
    INVALID = "invalid"


@dataclass
class ServiceError:
    """Описание сбоя с контекстом для логов."""
    message: str
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None


@dataclass
class ServiceResult(Generic[T]):
    outcome: Outcome
    data: Optional[T] = None
    error: Optional[ServiceError] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, data: Optional[T] = None, **metadata: Any) -> "ServiceResult[T]":
        return cls(outcome=Outcome.SUCCESS, data=data, metadata=metadata)

    @classmethod
    def not_found(cls, resource_type: str, resource_id: Optional[Any] = None) -> "ServiceResult[T]":
        message = f"{resource_type} not found"
        if resource_id is not None:
            message += f" (ID: {resource_id})"
        return cls(
            outcome=Outcome.NOT_FOUND,
            error=ServiceError(
                message=message,
                details={"resource_type": resource_type, "resource_id": resource_id},
            ),
        )

    @classmethod
    def transient(cls, message: str, details: Optional[Dict[str, Any]] = None) -> "ServiceResult[T]":
        return cls(outcome=Outcome.TRANSIENT_ERROR, error=ServiceError(message=message, details=details))

    @classmethod
    def invalid(cls, message: str, details: Optional[Dict[str, Any]] = None) -> "ServiceResult[T]":
        return cls(outcome=Outcome.INVALID, error=ServiceError(message=message, details=details))

    @classmethod
    def from_exception(
        cls,
        exception: Exception,
        operation: str,
        outcome: Outcome = Outcome.TRANSIENT_ERROR,
    ) -> "ServiceResult[T]":
        return cls(
            outcome=outcome,
            error=ServiceError(
                message=f"Failed to {operation}: {exception}",
                exception_type=type(exception).__name__,
            ),
        )

    @property
    def is_success(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    def unwrap_or(self, default: T) -> T:
        return self.data if self.is_success else default

    def log_failure(self, logger: logging.Logger, operation: str) -> None:
        """Пишет в лог причину сбоя; уровень зависит от класса ошибки."""
        if self.is_success:
            return
        message = self.error.message if self.error else "unknown error"
        if self.outcome is Outcome.NOT_FOUND:
            logger.info(f"{operation}: {message}")
        elif self.outcome is Outcome.INVALID:
            logger.warning(f"{operation}: invalid data - {message}")
        else:
            logger.error(f"{operation} failed: {message}")

    def __bool__(self) -> bool:
        return self.is_success

    def __repr__(self) -> str:
        if self.error:
            return f"ServiceResult({self.outcome.value}: {self.error.message})"
        return f"ServiceResult({self.outcome.value})"
