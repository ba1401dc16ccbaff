import time
import traceback
import uuid
from contextlib import asynccontextmanager
from os import environ

import logfire
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from granian import Granian
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from live_access.api.v1.dependency import enforce_general_limit
from live_access.api.v1.errors import app_error_handler, app_validation_exception_handler
from live_access.app_config import AppEnvironConfig, get_app_environ_config, require_rtc_secrets
from live_access.domain.live.credential.credential_builder import CredentialBuilder
from live_access.domain.live.issuance.issuance_domain import IssuanceService
from live_access.domain.live.viewer.viewer_accountant import ViewerAccountant
from live_access.services.identity_resolver import IdentityResolver
from live_access.services.live_session_store import RedisLiveSessionStore
from live_access.services.rate_limiter import GENERAL, MemoryRateLimitStore, RateLimiter, build_policies
from live_access.shared.api.utils import api_failure, init_logger, load_routes
from live_access.shared.rate_limit_store import RedisRateLimitStore
from live_access.shared.storage.redis import RedisManager
from live_access.utils.app_errors import AppError, AppErrorCode


class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore
        start_time = time.time()
        request_id = str(uuid.uuid4())[:8]

        logger.info(f"[{request_id}] {request.method} {request.url.path}")

        try:
            response = await call_next(request)

            process_time = (time.time() - start_time) * 1000
            logger.info(
                f"[{request_id}] {request.method} {request.url.path} - "
                f"Status: {response.status_code} - "
                f"Duration: {process_time:.2f}ms"
            )

            return response

        except Exception as exc:
            process_time = (time.time() - start_time) * 1000
            logger.error(
                f"[{request_id}] Unhandled exception in {request.method} {request.url.path} - "
                f"Duration: {process_time:.2f}ms - "
                f"Error: {type(exc).__name__}: {exc}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            failure = api_failure(
                errcode=AppErrorCode.E_INTERNAL_ERROR.value,
                errmesg=f"Internal server error (request_id: {request_id})",
            )
            return ORJSONResponse(
                status_code=500,
                content=failure.model_dump(),
            )


def build_rate_limiter(cfg: AppEnvironConfig, redis_manager: RedisManager) -> RateLimiter:
    policies = build_policies(
        {
            GENERAL: {
                "points": cfg.RATE_LIMIT_MAX_REQUESTS,
                "duration_seconds": cfg.RATE_LIMIT_WINDOW_SECONDS,
            }
        }
    )

    if cfg.RATE_LIMIT_BACKEND == "redis":
        logger.info("Rate limit state shared through Redis")
        store = RedisRateLimitStore(redis_manager.get_cache_client())
    elif cfg.RATE_LIMIT_BACKEND == "memory":
        logger.info("Rate limit state kept in process memory")
        store = MemoryRateLimitStore()
    else:
        raise ValueError(f"Unknown RATE_LIMIT_BACKEND: {cfg.RATE_LIMIT_BACKEND}")

    return RateLimiter(policies, store)


@asynccontextmanager
async def lifespan(server: FastAPI):
    cfg = get_app_environ_config()
    init_logger(cfg.DEBUG)

    logger.info("Application startup...")

    # Refuse to serve without signing material
    secrets = require_rtc_secrets(cfg)

    redis_manager = RedisManager()
    server.state.redis_manager = redis_manager

    sessions = RedisLiveSessionStore(redis_manager.get_cache_client())
    rate_limiter = build_rate_limiter(cfg, redis_manager)
    builder = CredentialBuilder(
        secrets.app_id,
        secrets.secret,
        default_ttl_seconds=cfg.CREDENTIAL_DEFAULT_TTL_SECONDS,
    )

    server.state.rate_limiter = rate_limiter
    server.state.live_sessions = sessions
    server.state.issuance_service = IssuanceService(
        builder,
        rate_limiter,
        ViewerAccountant(sessions),
        sessions,
        max_ttl_seconds=cfg.CREDENTIAL_MAX_TTL_SECONDS,
    )

    if not cfg.JWT_SECRET:
        logger.warning("JWT_SECRET is not set: every caller is anonymous")
    server.state.identity_resolver = IdentityResolver(cfg.JWT_SECRET)

    load_routes(server, "/api/v1")

    if cfg.LOGFIRE_ENABLE:
        logger.info("Logfire initializing")

        logfire.configure(
            token=cfg.LOGFIRE_TOKEN,
            service_name="live-access",
            service_version=environ.get("BUILD_COMMIT") or "dev",
        )

        logger.info("Logfire instrument fastapi")
        logfire.instrument_fastapi(server, capture_headers=False)

        logger.info("Logfire instrument redis")
        logfire.instrument_redis()

        logger.info("Logfire instrument pydantic")
        logfire.instrument_pydantic()

    yield

    logger.info("Application shutdown...")

    await redis_manager.close_all()


app = FastAPI(
    version="1.0",
    title="Live Access API",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
    default_response_class=ORJSONResponse,
    dependencies=[Depends(enforce_general_limit)],
    lifespan=lifespan,
)

app.add_middleware(HTTPLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,  # type: ignore
    allow_origins=get_app_environ_config().API_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RequestValidationError, app_validation_exception_handler)  # type: ignore
app.add_exception_handler(AppError, app_error_handler)  # type: ignore


def build_granian_kwargs():
    cfg = get_app_environ_config()
    kwargs = {
        "interface": "asgi",
        "address": cfg.API_HOST,
        "port": cfg.API_PORT,
        "workers": cfg.API_WORKERS,
        "reload": cfg.DEBUG,
    }

    return kwargs


if __name__ == "__main__":
    granian_kwargs = build_granian_kwargs()
    Granian("live_access.main:app", **granian_kwargs).serve()
