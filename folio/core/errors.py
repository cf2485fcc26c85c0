"""
Error codes, lifecycle exceptions and the Result type returned by services.

Entities and collaborators raise ``LifecycleError`` subclasses; service
methods catch them at the operation boundary and hand back a ``Result``
carrying the error code and message.
"""
import functools
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ErrorCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INVALID_OPERATION = "INVALID_OPERATION"
    UNAUTHORIZED = "UNAUTHORIZED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class LifecycleError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(LifecycleError):
    code = ErrorCode.VALIDATION_FAILED


class AlreadyExists(LifecycleError):
    code = ErrorCode.ALREADY_EXISTS


class InvalidOperation(LifecycleError):
    code = ErrorCode.INVALID_OPERATION


class NotFound(LifecycleError):
    code = ErrorCode.NOT_FOUND


class ExternalServiceError(LifecycleError):
    code = ErrorCode.EXTERNAL_SERVICE_ERROR


@dataclass(frozen=True)
class Result(Generic[T]):
    value: Optional[T] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.error_code is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error_code: ErrorCode, error_message: str) -> "Result[T]":
        return cls(error_code=error_code, error_message=error_message)


def returns_result(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Result]]:
    """
    Wrap an async service method so lifecycle errors become failed Results.

    The owning service must expose its session as ``self.db``; the session is
    rolled back before the failure is returned.
    """
    @functools.wraps(func)
    async def wrapper(self, *args, **kwargs) -> Result:
        try:
            return Result.success(await func(self, *args, **kwargs))
        except LifecycleError as exc:
            await self.db.rollback()
            logger.warning("%s failed [%s]: %s", func.__name__, exc.code.value, exc.message)
            return Result.failure(exc.code, exc.message)

    return wrapper
