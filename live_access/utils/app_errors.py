"""Application error types.

Every error the service raises on purpose is an `AppError`: it carries a stable
error code, a caller-facing message and the HTTP status used by the API layer.
The typed subclasses mirror the error taxonomy the issuance flow relies on.
"""

from __future__ import annotations

import inspect
from enum import Enum, IntEnum
from typing import Any
from uuid import uuid4


class AppErrorCode(str, Enum):
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_VALIDATION_FAILED = "E_VALIDATION_FAILED"
    E_CONFIGURATION = "E_CONFIGURATION"
    E_RATE_LIMITED = "E_RATE_LIMITED"
    E_BAD_TOKEN = "E_BAD_TOKEN"
    E_FORBIDDEN = "E_FORBIDDEN"
    E_SESSION_NOT_FOUND = "E_SESSION_NOT_FOUND"
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"


class HttpStatusCode(IntEnum):
    OK = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    TOO_MANY_REQUESTS = 429
    INTERNAL_SERVER_ERROR = 500


def _caller_info() -> str:
    """Location of the first frame outside this module (the raise site)."""
    frame = inspect.currentframe()
    while frame is not None and frame.f_globals.get("__name__") == __name__:
        frame = frame.f_back
    if frame is None:
        return "unknown"
    module_name = frame.f_globals.get("__name__", frame.f_code.co_filename)
    return f"{module_name}:{frame.f_code.co_name}:{frame.f_lineno}"


class AppError(Exception):
    """Base error with code, message and HTTP status."""

    def __init__(
        self,
        errcode: AppErrorCode | str = AppErrorCode.E_INTERNAL_ERROR,
        errmesg: str = "We are sorry, an error occurred.",
        status_code: int = HttpStatusCode.INTERNAL_SERVER_ERROR,
        *,
        details: Any = None,
    ) -> None:
        self.errcode = errcode.value if isinstance(errcode, AppErrorCode) else errcode
        self.errmesg = errmesg
        self.status_code = int(status_code)
        self.details = details
        self.erresid = uuid4().hex[:10]
        self.caller_info = _caller_info()
        super().__init__(errmesg)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.errcode}, {self.errmesg!r})"


class ConfigurationError(AppError):
    """Secret material is missing or unusable. Fatal until an operator fixes it."""

    def __init__(self, errmesg: str) -> None:
        super().__init__(
            errcode=AppErrorCode.E_CONFIGURATION,
            errmesg=errmesg,
            status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
        )


class ValidationError(AppError):
    """Caller-fixable input problem; `details` lists the violated constraints."""

    def __init__(self, errmesg: str, *, violations: list[dict[str, str]] | None = None) -> None:
        super().__init__(
            errcode=AppErrorCode.E_VALIDATION_FAILED,
            errmesg=errmesg,
            status_code=HttpStatusCode.BAD_REQUEST,
            details=violations or [],
        )

    @property
    def violations(self) -> list[dict[str, str]]:
        return self.details


class RateLimitExceeded(AppError):
    def __init__(self, policy: str, retry_after_seconds: float) -> None:
        self.policy = policy
        self.retry_after_seconds = retry_after_seconds
        super().__init__(
            errcode=AppErrorCode.E_RATE_LIMITED,
            errmesg=f"Too many requests, retry after {retry_after_seconds:.0f}s",
            status_code=HttpStatusCode.TOO_MANY_REQUESTS,
        )


class AuthorizationError(AppError):
    def __init__(
        self,
        errmesg: str = "Authentication required",
        *,
        status_code: int = HttpStatusCode.UNAUTHORIZED,
    ) -> None:
        errcode = (
            AppErrorCode.E_FORBIDDEN
            if status_code == HttpStatusCode.FORBIDDEN
            else AppErrorCode.E_BAD_TOKEN
        )
        super().__init__(errcode=errcode, errmesg=errmesg, status_code=status_code)


class NotFoundError(AppError):
    def __init__(self, errmesg: str) -> None:
        super().__init__(
            errcode=AppErrorCode.E_SESSION_NOT_FOUND,
            errmesg=errmesg,
            status_code=HttpStatusCode.NOT_FOUND,
        )


class InternalError(AppError):
    def __init__(self, errmesg: str = "Internal server error") -> None:
        super().__init__(
            errcode=AppErrorCode.E_INTERNAL_ERROR,
            errmesg=errmesg,
            status_code=HttpStatusCode.INTERNAL_SERVER_ERROR,
        )
