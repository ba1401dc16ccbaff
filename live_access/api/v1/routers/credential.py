"""Credential issuance endpoints."""

from fastapi import APIRouter, Request

from live_access.api.v1.dependency import (
    AppConfig,
    ClientKey,
    IssuanceServiceDep,
    OptionalIdentity,
    RateLimiterDep,
    RequiredIdentity,
    reject_unauthenticated,
)
from live_access.api.v1.schemas.base import ApiOut
from live_access.api.v1.schemas.credential import (
    ConfigCheckOut,
    CredentialOut,
    DemoCredentialsOut,
    IssueCredentialIn,
    LiveCredentialIn,
    RenewCredentialIn,
)
from live_access.domain.live.credential.credential_models import Role
from live_access.domain.live.issuance.issuance_models import ConfigInfo
from live_access.services.rate_limiter import RateLimiter
from live_access.utils.app_errors import AuthorizationError, NotFoundError

router = APIRouter(prefix="/credential")


async def _resolve_caller(
    role: str,
    identity: str,
    user_id: str | None,
    rate_limiter: RateLimiter,
    client_key: str,
) -> str:
    """Identity to issue for: the bearer identity, else the declared user id.

    Publishing always requires an authenticated identity.
    """
    try:
        wants_publish = Role.parse(role).can_publish
    except ValueError:
        # Left to the issuance validation to report
        wants_publish = False

    if wants_publish and not identity:
        await reject_unauthenticated(
            rate_limiter, client_key, AuthorizationError("Authentication required to publish")
        )
    return identity or user_id or ""


@router.post("/issue")
async def issue_credential(
    body: IssueCredentialIn,
    service: IssuanceServiceDep,
    rate_limiter: RateLimiterDep,
    identity: OptionalIdentity,
    client_key: ClientKey,
) -> ApiOut[CredentialOut]:
    """Issue a credential for a channel.

    Subscribers may be anonymous; publishers must present a bearer token.

    Raises:
        400: Invalid channel, role, identity or duration
        401: Publisher credential requested without authentication
        429: Issuance rate limit exceeded
    """
    caller = await _resolve_caller(body.role, identity, body.user_id, rate_limiter, client_key)
    credential = await service.issue_credential(
        body.channel,
        caller,
        body.role,
        body.duration,
        rate_key=identity or client_key,
    )
    return ApiOut[CredentialOut](results=CredentialOut.from_credential(credential))


@router.post("/renew")
async def renew_credential(
    body: RenewCredentialIn,
    service: IssuanceServiceDep,
    identity: RequiredIdentity,
) -> ApiOut[CredentialOut]:
    """Renew a credential: a fresh one for the same channel, actor id and role."""
    credential = await service.renew_credential(
        body.channel,
        body.actor_id,
        body.role,
        body.duration,
        rate_key=identity,
    )
    return ApiOut[CredentialOut](results=CredentialOut.from_credential(credential))


@router.post("/live")
async def issue_live_credential(
    body: LiveCredentialIn,
    service: IssuanceServiceDep,
    rate_limiter: RateLimiterDep,
    identity: OptionalIdentity,
    client_key: ClientKey,
) -> ApiOut[CredentialOut]:
    """Issue a credential on the channel of a live session (`live_<live_id>`)."""
    caller = await _resolve_caller(body.role, identity, body.user_id, rate_limiter, client_key)
    credential = await service.issue_live_credential(
        body.live_id,
        caller,
        body.role,
        rate_key=identity or client_key,
    )
    return ApiOut[CredentialOut](results=CredentialOut.from_credential(credential))


@router.get("/test_config")
async def test_config(service: IssuanceServiceDep) -> ApiOut[ConfigCheckOut]:
    check = service.test_configuration()
    message = "RTC configuration is valid" if check.valid else "RTC configuration is invalid"
    return ApiOut[ConfigCheckOut](results=ConfigCheckOut(valid=check.valid, message=message))


@router.get("/config")
async def config_info(service: IssuanceServiceDep) -> ApiOut[ConfigInfo]:
    return ApiOut[ConfigInfo](results=service.config_info())


@router.get("/test_credentials")
async def test_credentials(
    request: Request,
    service: IssuanceServiceDep,
    cfg: AppConfig,
) -> ApiOut[DemoCredentialsOut]:
    """Host and viewer credentials on a fixed test channel. Only served in debug mode."""
    if not cfg.DEBUG:
        raise NotFoundError(f"Not found: {request.url.path}")

    demo = service.issue_test_credentials()
    return ApiOut[DemoCredentialsOut](
        results=DemoCredentialsOut(
            channel=demo.channel,
            host=CredentialOut.from_credential(demo.host),
            viewer=CredentialOut.from_credential(demo.viewer),
        )
    )
