import logging
from typing import TypeVar

from fastapi import HTTPException, status

from folio.core.errors import ErrorCode, Result

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_BY_CODE = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorCode.INVALID_OPERATION: status.HTTP_400_BAD_REQUEST,
    ErrorCode.UNAUTHORIZED: status.HTTP_401_UNAUTHORIZED,
    ErrorCode.VALIDATION_FAILED: 422,
    ErrorCode.EXTERNAL_SERVICE_ERROR: status.HTTP_502_BAD_GATEWAY,
    ErrorCode.INTERNAL_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

PUBLIC_MESSAGES = {
    status.HTTP_404_NOT_FOUND: "Not found",
    status.HTTP_409_CONFLICT: "Conflict",
    status.HTTP_400_BAD_REQUEST: "Bad request",
    status.HTTP_401_UNAUTHORIZED: "Unauthorized",
    422: "Invalid request",
    status.HTTP_502_BAD_GATEWAY: "Upstream service error",
    status.HTTP_500_INTERNAL_SERVER_ERROR: "Internal server error",
}


def error_detail(code: ErrorCode, message: str) -> dict:
    return {"code": code.value, "message": message}


def raise_for_result(result: Result[T], public: bool = False) -> T:
    """
    Return the value of a successful result, otherwise raise the mapped HTTP error.

    Admin callers get the code and message; public callers get a generic
    message while the full error is logged.
    """
    if result.is_success:
        return result.value

    status_code = STATUS_BY_CODE.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if public:
        logger.info("Public request failed [%s]: %s", result.error_code.value, result.error_message)
        raise HTTPException(status_code=status_code, detail=PUBLIC_MESSAGES[status_code])
    raise HTTPException(status_code=status_code, detail=error_detail(result.error_code, result.error_message))


def not_found(message: str, public: bool = False) -> HTTPException:
    if public:
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=PUBLIC_MESSAGES[status.HTTP_404_NOT_FOUND])
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_detail(ErrorCode.NOT_FOUND, message))
