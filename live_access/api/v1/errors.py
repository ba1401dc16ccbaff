import math

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from live_access.app_config import get_app_environ_config
from live_access.shared.api.utils import E_INVALID_PARAMS, ApiFailure, api_failure, make_response
from live_access.utils.app_errors import AppError, AppErrorCode, RateLimitExceeded

_INTERNAL_CODES = {AppErrorCode.E_INTERNAL_ERROR.value, AppErrorCode.E_CONFIGURATION.value}


def retry_after_header(retry_after_seconds: float) -> str:
    """Whole seconds for the `Retry-After` header, never below 1."""
    return str(max(1, math.ceil(retry_after_seconds)))


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """
    Custom exception handler for AppError.
    Converts AppError to ApiFailure and returns via make_response.
    """
    # Log with the caller info captured when AppError was raised
    log_msg = f"{exc.errcode} {exc.erresid} msg={exc.errmesg} caller={exc.caller_info}"
    if exc.errcode in _INTERNAL_CODES:
        logger.error(log_msg)
    else:
        logger.warning(log_msg)

    errmesg = exc.errmesg
    if exc.errcode == AppErrorCode.E_INTERNAL_ERROR.value and not get_app_environ_config().DEBUG:
        errmesg = str(ApiFailure.model_fields["errmesg"].default)

    headers = None
    if isinstance(exc, RateLimitExceeded):
        headers = {"Retry-After": retry_after_header(exc.retry_after_seconds)}

    failure = ApiFailure(errcode=exc.errcode, errmesg=errmesg, erresid=exc.erresid, details=exc.details)
    return make_response(failure, status_code=exc.status_code, headers=headers)


async def app_validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()

    logger.warning(
        "Validation error: path={} method={} errors={}",
        request.url.path,
        request.method,
        errors,
    )

    failure = api_failure(E_INVALID_PARAMS, errmesg="Request validation failed")
    failure.details = [
        {
            "field": ".".join(str(x) for x in error.get("loc", ()) if x != "body"),
            "constraint": error.get("type", ""),
            "message": error.get("msg", ""),
        }
        for error in errors
    ]
    return make_response(failure, status_code=422)
