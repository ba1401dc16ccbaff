from typing import Annotated, NoReturn

from fastapi import Depends, Request
from loguru import logger

from live_access.app_config import AppEnvironConfig, get_app_environ_config
from live_access.domain.live.issuance.issuance_domain import IssuanceService
from live_access.services.identity_resolver import IdentityResolver, extract_bearer
from live_access.services.rate_limiter import AUTH, GENERAL, RateLimiter
from live_access.utils.app_errors import AuthorizationError, RateLimitExceeded


AppConfig = Annotated[AppEnvironConfig, Depends(get_app_environ_config)]


def get_client_key(request: Request, cfg: AppConfig) -> str:
    """Client address; proxy headers are honoured only when TRUST_PROXY_HEADERS is set."""
    if cfg.TRUST_PROXY_HEADERS:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_identity_resolver(request: Request) -> IdentityResolver:
    return request.app.state.identity_resolver


def get_issuance_service(request: Request) -> IssuanceService:
    return request.app.state.issuance_service


ClientKey = Annotated[str, Depends(get_client_key)]
RateLimiterDep = Annotated[RateLimiter, Depends(get_rate_limiter)]
IdentityResolverDep = Annotated[IdentityResolver, Depends(get_identity_resolver)]
IssuanceServiceDep = Annotated[IssuanceService, Depends(get_issuance_service)]


async def enforce_general_limit(client_key: ClientKey, rate_limiter: RateLimiterDep) -> None:
    await rate_limiter.enforce(GENERAL, client_key)


async def reject_unauthenticated(
    rate_limiter: RateLimiter, client_key: str, exc: AuthorizationError
) -> NoReturn:
    """Count a failed authentication against the `auth` policy and raise."""
    decision = await rate_limiter.consume(AUTH, client_key)
    if not decision.allowed:
        raise RateLimitExceeded(AUTH, decision.retry_after_seconds) from exc
    raise exc


async def get_optional_identity(request: Request, resolver: IdentityResolverDep) -> str:
    token = extract_bearer(request.headers.get("Authorization"))
    return resolver.resolve_optional(token)


async def get_required_identity(
    request: Request,
    client_key: ClientKey,
    resolver: IdentityResolverDep,
    rate_limiter: RateLimiterDep,
) -> str:
    # Do not log request headers here (may include secrets like Authorization).
    retry_after = await rate_limiter.retry_after(AUTH, client_key)
    if retry_after > 0:
        raise RateLimitExceeded(AUTH, retry_after)

    token = extract_bearer(request.headers.get("Authorization"))
    try:
        identity = resolver.resolve_required(token)
    except AuthorizationError as exc:
        await reject_unauthenticated(rate_limiter, client_key, exc)

    logger.debug("Authenticated identity: {}", identity)
    return identity


OptionalIdentity = Annotated[str, Depends(get_optional_identity)]
RequiredIdentity = Annotated[str, Depends(get_required_identity)]
