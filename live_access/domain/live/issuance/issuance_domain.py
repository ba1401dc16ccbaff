"""
Credential issuance orchestration.

Every issuance request walks the same path:

    Received -> RateChecked -> IdentityDerived -> CredentialBuilt -> Returned

and leaves it early as Rejected (rate limit), Invalid (bad input) or Failed
(configuration or internal error). The terminal state of each request is
logged. The service keeps no state between requests; the rate limiter owns
the only shared state.
"""

import uuid
from collections.abc import Callable
from typing import Any

from loguru import logger

from live_access.services.rate_limiter import ISSUANCE, RateLimiter
from live_access.utils.app_errors import (
    AppError,
    AuthorizationError,
    HttpStatusCode,
    InternalError,
    NotFoundError,
    RateLimitExceeded,
)

from ..credential.actor_id import derive_actor_id
from ..credential.credential_builder import CredentialBuilder
from ..credential.credential_models import (
    DEFAULT_TTL_SECONDS,
    EPHEMERAL_TTL_SECONDS,
    Credential,
    Role,
)
from ..validators import (
    combine,
    validate_actor_id,
    validate_channel,
    validate_duration,
    validate_identity,
    validate_live_id,
    validate_role,
)
from ..viewer.viewer_accountant import ViewerAccountant
from ..viewer.viewer_models import LiveSessionStore, ViewerSession, channel_for_live
from .issuance_models import (
    ConfigInfo,
    ConfigurationCheck,
    DemoCredentials,
    IssuanceState,
    JoinLiveResult,
    StartLiveResult,
    terminal_state_for,
)

ANONYMOUS_RATE_KEY = "anonymous"
CONFIG_TEST_CHANNEL = "config-test"
CONFIG_TEST_ACTOR_ID = 1
TEST_CHANNEL = "test-channel"

# Scheduler for accounting work, e.g. `BackgroundTasks.add_task`
Defer = Callable[..., Any]


def _mask(app_id: str | None) -> str:
    return f"{app_id[:8]}..." if app_id else "<unset>"


class IssuanceService:
    def __init__(
        self,
        builder: CredentialBuilder,
        rate_limiter: RateLimiter,
        accountant: ViewerAccountant,
        sessions: LiveSessionStore | None = None,
        *,
        max_ttl_seconds: int = DEFAULT_TTL_SECONDS,
    ) -> None:
        self._builder = builder
        self._rate_limiter = rate_limiter
        self._accountant = accountant
        self._sessions = sessions
        self._max_ttl_seconds = max_ttl_seconds

    async def _gate(self, operation: str, rate_key: str) -> None:
        """Apply the `issuance` policy ahead of any store lookup."""
        try:
            await self._rate_limiter.enforce(ISSUANCE, rate_key)
        except RateLimitExceeded as exc:
            logger.info(
                "Issuance {}: operation={} last_state={} errcode={}",
                IssuanceState.REJECTED.value,
                operation,
                IssuanceState.RECEIVED.value,
                exc.errcode,
            )
            raise

    def _require_sessions(self) -> LiveSessionStore:
        if self._sessions is None:
            raise InternalError("Live session store is not configured")
        return self._sessions

    async def _issue(
        self,
        *,
        operation: str,
        channel: str,
        role: Role | str,
        duration: int | None,
        rate_key: str | None,
        identity: str | None = None,
        actor_id: int | None = None,
    ) -> Credential:
        # rate_key=None: the caller already passed `_gate`
        state = IssuanceState.RECEIVED
        try:
            if rate_key is not None:
                await self._rate_limiter.enforce(ISSUANCE, rate_key)
            state = IssuanceState.RATE_CHECKED

            checks = [
                validate_channel(channel),
                validate_role(role),
                validate_duration(duration, self._max_ttl_seconds),
            ]
            if identity is not None:
                checks.append(validate_identity(identity))
            else:
                checks.append(validate_actor_id(actor_id))
            combine(*checks).raise_for_violations()

            if identity is not None:
                actor_id = derive_actor_id(identity)
            state = IssuanceState.IDENTITY_DERIVED

            credential = self._builder.build(channel, actor_id, role, duration)  # type: ignore[arg-type]
            state = IssuanceState.CREDENTIAL_BUILT
        except AppError as exc:
            logger.info(
                "Issuance {}: operation={} channel={} last_state={} errcode={}",
                terminal_state_for(exc).value,
                operation,
                channel,
                state.value,
                exc.errcode,
            )
            raise
        except Exception as exc:
            logger.exception(
                "Issuance failed: operation={} channel={} last_state={}",
                operation,
                channel,
                state.value,
            )
            raise InternalError(f"Credential issuance failed: {exc}") from exc

        logger.info(
            "Issuance {}: operation={} channel={} actor_id={} role={}",
            IssuanceState.RETURNED.value,
            operation,
            channel,
            credential.actor_id,
            credential.role.value,
        )
        return credential

    async def issue_credential(
        self,
        channel: str,
        identity: str,
        role: Role | str,
        duration: int | None = None,
        *,
        rate_key: str | None = None,
    ) -> Credential:
        """Issue a credential for `identity` on `channel`.

        The `issuance` rate limit is keyed on `rate_key`, falling back to the
        identity and then to a shared anonymous bucket.

        Raises:
            RateLimitExceeded: If the caller exhausted the issuance policy
            ValidationError: If channel, identity, role or duration is invalid
            ConfigurationError: If signing material is missing
        """
        return await self._issue(
            operation="issue",
            channel=channel,
            role=role,
            duration=duration,
            rate_key=rate_key or identity or ANONYMOUS_RATE_KEY,
            identity=identity,
        )

    async def renew_credential(
        self,
        channel: str,
        actor_id: int,
        role: Role | str,
        duration: int | None = None,
        *,
        rate_key: str | None = None,
    ) -> Credential:
        """Issue a fresh credential for an already derived actor id."""
        return await self._issue(
            operation="renew",
            channel=channel,
            role=role,
            duration=duration,
            rate_key=rate_key or f"actor:{actor_id}",
            actor_id=actor_id,
        )

    async def issue_live_credential(
        self,
        live_id: str,
        identity: str,
        role: Role | str,
        duration: int | None = None,
        *,
        rate_key: str | None = None,
    ) -> Credential:
        """Issue a credential on the channel of a live session."""
        validate_live_id(live_id).raise_for_violations()
        return await self._issue(
            operation="issue_live",
            channel=channel_for_live(live_id),
            role=role,
            duration=duration,
            rate_key=rate_key or identity or ANONYMOUS_RATE_KEY,
            identity=identity,
        )

    def test_configuration(self) -> ConfigurationCheck:
        """Build a throwaway credential to check the signing material."""
        try:
            credential = self._builder.build(CONFIG_TEST_CHANNEL, CONFIG_TEST_ACTOR_ID, Role.SUBSCRIBER)
        except AppError as exc:
            logger.error("RTC configuration test failed: errcode={} errmesg={}", exc.errcode, exc.errmesg)
            return ConfigurationCheck(valid=False)
        return ConfigurationCheck(valid=bool(credential.token))

    def config_info(self) -> ConfigInfo:
        app_id = self._builder.app_id
        logger.debug("Config info requested: app_id={}", _mask(app_id))
        return ConfigInfo(
            app_id=app_id,
            has_secret=self._builder.has_secret,
            default_ttl_seconds=self._builder.default_ttl_seconds,
            is_config_valid=self.test_configuration().valid,
        )

    def issue_test_credentials(self) -> DemoCredentials:
        ttl = EPHEMERAL_TTL_SECONDS
        host = self._builder.build_for_role(TEST_CHANNEL, "test-host", Role.PUBLISHER, ttl)
        viewer = self._builder.build_for_role(TEST_CHANNEL, "test-viewer", Role.SUBSCRIBER, ttl)
        return DemoCredentials(channel=TEST_CHANNEL, host=host, viewer=viewer)

    async def join_session(self, live_id: str) -> None:
        await self._accountant.increment(live_id)

    async def leave_session(self, live_id: str) -> None:
        await self._accountant.decrement(live_id)

    async def _account(self, method: Callable[[str], Any], live_id: str, defer: Defer | None) -> None:
        if defer is None:
            await method(live_id)
        else:
            defer(method, live_id)

    async def join_live(
        self,
        live_id: str,
        identity: str,
        *,
        rate_key: str | None = None,
        defer: Defer | None = None,
    ) -> JoinLiveResult:
        """Subscriber credential for a running live session.

        Only a non-anonymous viewer is counted. With `defer` the counter update
        is handed to the scheduler instead of being awaited.

        Raises:
            RateLimitExceeded: If the caller exhausted the issuance policy
            NotFoundError: If the session does not exist or is not live
        """
        validate_live_id(live_id).raise_for_violations()
        sessions = self._require_sessions()
        await self._gate("join_live", rate_key or identity or ANONYMOUS_RATE_KEY)

        session = await sessions.get_live(live_id)
        if session is None or not session.is_live:
            logger.info("Join rejected, session not live: live_id={}", live_id)
            raise NotFoundError(f"Live session not found or not live: {live_id}")

        credential = await self._issue(
            operation="join_live",
            channel=session.channel,
            role=Role.SUBSCRIBER,
            duration=None,
            rate_key=None,
            identity=identity,
        )

        counted = bool(identity)
        if counted:
            await self._account(self.join_session, live_id, defer)
        return JoinLiveResult(session=session, credential=credential, counted=counted)

    async def leave_live(self, live_id: str, identity: str, *, defer: Defer | None = None) -> bool:
        validate_live_id(live_id).raise_for_violations()
        if not identity:
            return False
        await self._account(self.leave_session, live_id, defer)
        return True

    async def start_live(
        self,
        identity: str,
        duration: int | None = None,
        *,
        rate_key: str | None = None,
    ) -> StartLiveResult:
        """Open a live session hosted by `identity` and return its publisher credential.

        Raises:
            AuthorizationError: If the caller is anonymous
            RateLimitExceeded: If the caller exhausted the issuance policy
        """
        if not identity:
            raise AuthorizationError("Authentication required to start a live session")
        sessions = self._require_sessions()

        live_id = str(uuid.uuid4())
        credential = await self._issue(
            operation="start_live",
            channel=channel_for_live(live_id),
            role=Role.PUBLISHER,
            duration=duration,
            rate_key=rate_key or identity,
            identity=identity,
        )
        session = await sessions.start_live(live_id, host_identity=identity)
        return StartLiveResult(session=session, credential=credential)

    async def _hosted_session(self, live_id: str, identity: str) -> tuple[LiveSessionStore, ViewerSession]:
        validate_live_id(live_id).raise_for_violations()
        sessions = self._require_sessions()

        session = await sessions.get_live(live_id)
        if session is None:
            raise NotFoundError(f"Live session not found: {live_id}")
        if not identity or session.host_identity != identity:
            logger.info("Host check failed: live_id={}", live_id)
            raise AuthorizationError(
                "Only the host can manage this live session",
                status_code=HttpStatusCode.FORBIDDEN,
            )
        return sessions, session

    async def end_live(self, live_id: str, identity: str) -> ViewerSession:
        """Close a live session owned by `identity`.

        Raises:
            NotFoundError: If the session does not exist
            AuthorizationError: If the caller is not the host (403)
        """
        sessions, _ = await self._hosted_session(live_id, identity)
        return await sessions.end_live(live_id)

    async def reconcile_viewers(self, live_id: str, identity: str, observed_count: int) -> None:
        """Host-reported viewer count overwriting a drifted counter."""
        await self._hosted_session(live_id, identity)
        await self._accountant.reconcile(live_id, observed_count)
