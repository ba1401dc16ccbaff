import inspect
import pkgutil
import sys
from functools import lru_cache
from importlib import import_module
from os import environ
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

from fastapi import FastAPI
from fastapi.responses import ORJSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from ...utils.app_errors import AppErrorCode

E_INTERNAL = AppErrorCode.E_INTERNAL_ERROR.value
E_INVALID_PARAMS = AppErrorCode.E_INVALID_REQUEST.value


def format_error(ex: BaseException) -> str:
    from traceback import TracebackException

    return "".join(TracebackException.from_exception(ex).format())


class ApiResponse(BaseModel):
    version: str | None = Field(default_factory=lambda: environ.get("BUILD_COMMIT", "dev"))


class ApiSuccess(ApiResponse):
    success: Literal[True] = True
    results: Any = "OK"


class ApiFailure(ApiResponse):
    success: Literal[False] = False
    errcode: str = E_INTERNAL
    erresid: str = Field(default_factory=lambda: uuid4().hex[:10])
    errmesg: str = "We are sorry, an error occurred."
    details: Any = None


def api_failure(errcode: str | None = None, errmesg: Exception | str | None = None):
    if not errcode:
        errcode = ApiFailure.model_fields["errcode"].default

    if isinstance(errmesg, Exception):
        errmesg = format_error(errmesg)

    if not errmesg:
        errmesg = ApiFailure.model_fields["errmesg"].default

    failure = ApiFailure(errcode=errcode, errmesg=errmesg)

    caller_frame = inspect.stack()[1]
    module = inspect.getmodule(caller_frame.frame)
    module_name = module.__name__ if module and getattr(module, "__name__", None) else caller_frame.filename
    caller_info = f"{module_name}:{caller_frame.function}:{caller_frame.lineno}"

    logger.warning(
        f"{failure.errcode} {failure.erresid}\n{failure.errmesg} "
        f"caller={caller_info}"
    )

    return failure


def make_response(results: Any, *, status_code: int | None = None, headers: dict[str, str] | None = None):
    if isinstance(results, ApiFailure):
        if status_code is None:
            status_code = 500 if results.errcode == E_INTERNAL else 400
    elif status_code is None:
        status_code = 200

    return ORJSONResponse(
        status_code=status_code,
        content=results.model_dump() if hasattr(results, "model_dump") else results,
        headers=headers,
    )


def load_routes(app: FastAPI, prefix: str):
    from ..config import config

    disabled_routes = [x.strip() for x in config.get("API_DISABLED", "").split(",") if x.strip()]
    logger.debug("disabled routes: {}", disabled_routes)

    for package_name in ("live_access.shared.api", "live_access.api"):
        package = import_module(package_name)
        for module_info in pkgutil.walk_packages(package.__path__, prefix=f"{package_name}."):
            name = module_info.name
            if any(f".{disabled_route}" in name for disabled_route in disabled_routes):
                logger.warning("disabled route in {}", name)
                continue

            module = import_module(name)
            if hasattr(module, "router"):
                app.include_router(module.router, prefix=prefix)
                logger.info("Added routes in {}", name)

    for route_info in get_all_routes_info(app):
        methods = ",".join(sorted(route_info["methods"]))
        logger.info("Loaded route: {:<12} {:<60} {}", methods, route_info["path"], route_info["endpoint"])


def get_all_routes_info(app: FastAPI):
    routes_info = []

    for route in app.routes:
        if hasattr(route, "methods"):
            endpoint = getattr(route, "endpoint", None)
            routes_info.append(
                {
                    "methods": sorted(route.methods),  # type: ignore[attr-defined]
                    "path": route.path,  # type: ignore[attr-defined]
                    "endpoint": getattr(endpoint, "__name__", str(endpoint)),
                }
            )

    return routes_info


@lru_cache
def get_worker_info():
    project_root = Path(__file__).parent.parent.parent.parent
    worker_name = environ.get("WORKER_NAME", project_root.name)

    parts = environ.get("BUILD_COMMIT", "").split("-")
    commit_id = parts[1] if len(parts) > 1 else "dev"

    return worker_name, commit_id, uuid4().hex[:8]


def init_logger(debug: bool = False):
    logger.remove()

    worker_name, commit_id, _ = get_worker_info()

    if debug:
        logger_level = "DEBUG"
        logger_format = (
            f"<yellow>{worker_name}:{commit_id}</yellow> | "
            "<green>{time:MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
            "<level>{message}</level>"
        )
    else:
        logger_level = "INFO"
        logger_format = (
            f"{worker_name}:{commit_id} | "
            "{time:MM-DD HH:mm:ss.SSS} | "
            "{level: <8} | "
            "{name}:{function}:{line} | "
            "{message}"
        )
    logger.add(sys.stderr, level=logger_level, format=logger_format)
