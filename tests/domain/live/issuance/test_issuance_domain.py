"""Unit tests for the credential issuance flow."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import jwt
import pytest

from live_access.domain.live.credential.actor_id import derive_actor_id
from live_access.domain.live.credential.credential_builder import CredentialBuilder
from live_access.domain.live.credential.credential_models import Role
from live_access.domain.live.issuance.issuance_domain import IssuanceService
from live_access.domain.live.issuance.issuance_models import IssuanceState, terminal_state_for
from live_access.domain.live.viewer.viewer_accountant import ViewerAccountant
from live_access.services.rate_limiter import ISSUANCE, RateLimiter
from live_access.utils.app_errors import (
    AppErrorCode,
    AuthorizationError,
    ConfigurationError,
    InternalError,
    NotFoundError,
    RateLimitExceeded,
    ValidationError,
)
from tests.fixtures.app_fixtures import (
    TEST_APP_ID,
    TEST_APP_SECRET,
    FakeClock,
    InMemoryLiveSessionStore,
)


class TestIssueCredential:
    async def test_subscriber_then_publisher_on_same_channel(self, issuance_service: IssuanceService):
        """Should give the same actor id to both roles and grant publish to the publisher only."""
        # Act
        subscriber = await issuance_service.issue_credential("room-42", "user-7", "subscriber")
        publisher = await issuance_service.issue_credential("room-42", "user-7", "publisher")

        # Assert
        assert subscriber.actor_id == publisher.actor_id == derive_actor_id("user-7")
        assert subscriber.role is Role.SUBSCRIBER
        assert publisher.role is Role.PUBLISHER

        sub_video = jwt.decode(subscriber.token, TEST_APP_SECRET, algorithms=["HS256"])["video"]
        pub_video = jwt.decode(publisher.token, TEST_APP_SECRET, algorithms=["HS256"])["video"]
        assert sub_video["room"] == pub_video["room"] == "room-42"
        assert sub_video.get("canPublish") is False
        assert pub_video.get("canPublish") is True

    async def test_exact_validity_window(self, issuance_service: IssuanceService):
        credential = await issuance_service.issue_credential("room-42", "user-7", "host", 900)

        assert credential.expires_at - credential.issued_at == timedelta(seconds=900)

    async def test_anonymous_identity(self, issuance_service: IssuanceService):
        credential = await issuance_service.issue_credential("room-42", "", "viewer")

        assert credential.actor_id == 0

    @pytest.mark.parametrize(
        ("channel", "identity", "role", "duration", "field"),
        [
            ("bad channel", "user-7", "subscriber", None, "channel"),
            ("room-42", "x" * 256, "subscriber", None, "identity"),
            ("room-42", "user-7", "admin", None, "role"),
            ("room-42", "user-7", "subscriber", 0, "duration"),
            ("room-42", "user-7", "subscriber", 86401, "duration"),
        ],
    )
    async def test_invalid_input(self, issuance_service: IssuanceService, channel, identity, role, duration, field):
        with pytest.raises(ValidationError) as exc_info:
            await issuance_service.issue_credential(channel, identity, role, duration)

        assert [v["field"] for v in exc_info.value.violations] == [field]

    async def test_rate_limited_after_20_requests(self, issuance_service: IssuanceService, fake_clock: FakeClock):
        """Should reject the 21st issuance for one identity within a minute, then recover."""
        for _ in range(20):
            await issuance_service.issue_credential("room-42", "user-7", "subscriber")

        with pytest.raises(RateLimitExceeded) as exc_info:
            await issuance_service.issue_credential("room-42", "user-7", "subscriber")
        assert exc_info.value.retry_after_seconds == pytest.approx(300, abs=1)

        # Another caller is unaffected
        await issuance_service.issue_credential("room-42", "user-8", "subscriber")

        fake_clock.advance(300)
        await issuance_service.issue_credential("room-42", "user-7", "subscriber")

    async def test_rate_check_runs_before_validation(self, issuance_service: IssuanceService):
        """Should spend a point even for invalid requests."""
        for _ in range(20):
            with pytest.raises(ValidationError):
                await issuance_service.issue_credential("bad channel", "user-7", "subscriber")

        with pytest.raises(RateLimitExceeded):
            await issuance_service.issue_credential("room-42", "user-7", "subscriber")

    async def test_explicit_rate_key(self, issuance_service: IssuanceService, rate_limiter: RateLimiter):
        await issuance_service.issue_credential("room-42", "", "subscriber", rate_key="203.0.113.9")

        decision = await rate_limiter.consume(ISSUANCE, "203.0.113.9")
        assert decision.remaining_points == 18

    async def test_missing_secret_material(self, rate_limiter: RateLimiter, live_sessions: InMemoryLiveSessionStore):
        service = IssuanceService(
            CredentialBuilder(TEST_APP_ID, None),
            rate_limiter,
            ViewerAccountant(live_sessions),
        )

        with pytest.raises(ConfigurationError):
            await service.issue_credential("room-42", "user-7", "subscriber")

    async def test_unexpected_errors_become_internal(self, rate_limiter: RateLimiter, live_sessions):
        builder = MagicMock(spec=CredentialBuilder)
        builder.build.side_effect = RuntimeError("boom")
        service = IssuanceService(builder, rate_limiter, ViewerAccountant(live_sessions))

        with pytest.raises(InternalError):
            await service.issue_credential("room-42", "user-7", "subscriber")


class TestRenewCredential:
    async def test_renew_preserves_role_and_actor(self, issuance_service: IssuanceService, fake_clock: FakeClock):
        original = await issuance_service.issue_credential("room-42", "user-7", "publisher", 600)

        fake_clock.advance(590)
        renewed = await issuance_service.renew_credential("room-42", original.actor_id, original.role, 600)

        assert renewed.actor_id == original.actor_id
        assert renewed.role is Role.PUBLISHER
        assert renewed.channel == "room-42"
        assert renewed.expires_at > original.expires_at

    async def test_renew_rejects_negative_actor_id(self, issuance_service: IssuanceService):
        with pytest.raises(ValidationError):
            await issuance_service.renew_credential("room-42", -1, "subscriber")


class TestLiveCredentials:
    async def test_issue_live_credential_uses_live_channel(self, issuance_service: IssuanceService):
        credential = await issuance_service.issue_live_credential("abc-123", "user-7", "host")

        assert credential.channel == "live_abc-123"
        assert credential.role is Role.PUBLISHER

    async def test_issue_live_credential_validates_live_id(self, issuance_service: IssuanceService):
        with pytest.raises(ValidationError) as exc_info:
            await issuance_service.issue_live_credential("not/valid", "user-7", "host")

        assert exc_info.value.violations[0]["field"] == "live_id"

    async def test_join_live_counts_authenticated_viewer(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore
    ):
        live_sessions.add("abc")

        joined = await issuance_service.join_live("abc", "user-7")

        assert joined.counted is True
        assert joined.credential.role is Role.SUBSCRIBER
        assert joined.credential.channel == "live_abc"
        assert live_sessions.sessions["abc"].viewer_count == 1

    async def test_join_live_anonymous_is_not_counted(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore
    ):
        live_sessions.add("abc")

        joined = await issuance_service.join_live("abc", "")

        assert joined.counted is False
        assert joined.credential.actor_id == 0
        assert live_sessions.sessions["abc"].viewer_count == 0

    async def test_join_live_defers_accounting(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore
    ):
        """Should hand the counter update to the scheduler instead of awaiting it."""
        live_sessions.add("abc")
        deferred = []

        await issuance_service.join_live("abc", "user-7", defer=lambda fn, *args: deferred.append((fn, args)))

        assert live_sessions.sessions["abc"].viewer_count == 0
        assert len(deferred) == 1
        fn, args = deferred[0]
        await fn(*args)
        assert live_sessions.sessions["abc"].viewer_count == 1

    @pytest.mark.parametrize("is_live", [None, False])
    async def test_join_live_requires_running_session(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore, is_live
    ):
        if is_live is not None:
            live_sessions.add("abc", is_live=is_live)

        with pytest.raises(NotFoundError):
            await issuance_service.join_live("abc", "user-7")

    async def test_join_live_survives_counter_failure(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore
    ):
        """Should still return the credential when the counter store fails."""
        live_sessions.add("abc")
        live_sessions.fail_with = ConnectionError("store down")

        joined = await issuance_service.join_live("abc", "user-7")

        assert joined.credential.token

    async def test_leave_live(self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore):
        live_sessions.add("abc", viewer_count=1)

        assert await issuance_service.leave_live("abc", "user-7") is True
        assert await issuance_service.leave_live("abc", "user-7") is True
        assert await issuance_service.leave_live("abc", "") is False
        assert live_sessions.sessions["abc"].viewer_count == 0

    async def test_join_and_leave_session(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore
    ):
        live_sessions.add("abc")

        await issuance_service.join_session("abc")
        await issuance_service.join_session("abc")
        await issuance_service.leave_session("abc")

        assert live_sessions.sessions["abc"].viewer_count == 1

    async def test_join_live_without_session_store(self, credential_builder, rate_limiter, live_sessions):
        service = IssuanceService(credential_builder, rate_limiter, ViewerAccountant(live_sessions))

        with pytest.raises(InternalError):
            await service.join_live("abc", "user-7")

    async def test_join_live_rate_limited_before_session_lookup(
        self, issuance_service: IssuanceService, rate_limiter: RateLimiter, live_sessions: InMemoryLiveSessionStore
    ):
        """Should reject a blocked caller without reaching the session store."""
        # Arrange
        live_sessions.add("abc")
        for _ in range(20):
            await rate_limiter.enforce(ISSUANCE, "user-7")
        live_sessions.get_live = AsyncMock(wraps=live_sessions.get_live)  # type: ignore[method-assign]

        # Act / Assert
        with pytest.raises(RateLimitExceeded):
            await issuance_service.join_live("abc", "user-7")
        live_sessions.get_live.assert_not_awaited()

    async def test_join_live_consumes_one_issuance_point(
        self, issuance_service: IssuanceService, rate_limiter: RateLimiter, live_sessions: InMemoryLiveSessionStore
    ):
        live_sessions.add("abc")
        for _ in range(19):
            await rate_limiter.enforce(ISSUANCE, "user-7")

        await issuance_service.join_live("abc", "user-7")

        with pytest.raises(RateLimitExceeded):
            await rate_limiter.enforce(ISSUANCE, "user-7")


class TestHostLifecycle:
    async def test_start_live(self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore):
        """Should open a session hosted by the caller with a publisher credential on its channel."""
        started = await issuance_service.start_live("host-1")

        session = started.session
        assert session.live_id in live_sessions.sessions
        assert session.is_live is True
        assert session.host_identity == "host-1"
        assert session.channel == f"live_{session.live_id}"
        assert started.credential.channel == session.channel
        assert started.credential.role is Role.PUBLISHER
        assert started.credential.actor_id == derive_actor_id("host-1")

    async def test_started_session_accepts_viewers(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore
    ):
        started = await issuance_service.start_live("host-1")

        joined = await issuance_service.join_live(started.session.live_id, "user-7")

        assert joined.credential.channel == started.session.channel
        assert live_sessions.sessions[started.session.live_id].viewer_count == 1

    async def test_start_live_requires_identity(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore
    ):
        with pytest.raises(AuthorizationError) as exc_info:
            await issuance_service.start_live("")

        assert exc_info.value.status_code == 401
        assert live_sessions.sessions == {}

    async def test_start_live_is_rate_limited(
        self, issuance_service: IssuanceService, rate_limiter: RateLimiter, live_sessions: InMemoryLiveSessionStore
    ):
        for _ in range(20):
            await rate_limiter.enforce(ISSUANCE, "host-1")

        with pytest.raises(RateLimitExceeded):
            await issuance_service.start_live("host-1")
        assert live_sessions.sessions == {}

    async def test_end_live_by_host(self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore):
        live_sessions.add("abc", host_identity="host-1", viewer_count=3)

        ended = await issuance_service.end_live("abc", "host-1")

        assert ended.is_live is False
        assert ended.ended_at is not None
        assert ended.viewer_count == 3
        with pytest.raises(NotFoundError):
            await issuance_service.join_live("abc", "user-7")

    @pytest.mark.parametrize("identity", ["someone-else", ""])
    async def test_end_live_rejects_non_host(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore, identity
    ):
        live_sessions.add("abc", host_identity="host-1")

        with pytest.raises(AuthorizationError) as exc_info:
            await issuance_service.end_live("abc", identity)

        assert exc_info.value.status_code == 403
        assert exc_info.value.errcode == AppErrorCode.E_FORBIDDEN.value
        assert live_sessions.sessions["abc"].is_live is True

    async def test_end_live_unknown_session(self, issuance_service: IssuanceService):
        with pytest.raises(NotFoundError):
            await issuance_service.end_live("abc", "host-1")

    async def test_reconcile_viewers_by_host(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore
    ):
        live_sessions.add("abc", host_identity="host-1", viewer_count=9)

        await issuance_service.reconcile_viewers("abc", "host-1", 4)
        assert live_sessions.sessions["abc"].viewer_count == 4

        await issuance_service.reconcile_viewers("abc", "host-1", -2)
        assert live_sessions.sessions["abc"].viewer_count == 0

    async def test_reconcile_viewers_rejects_non_host(
        self, issuance_service: IssuanceService, live_sessions: InMemoryLiveSessionStore
    ):
        live_sessions.add("abc", host_identity="host-1", viewer_count=9)

        with pytest.raises(AuthorizationError):
            await issuance_service.reconcile_viewers("abc", "user-7", 0)
        assert live_sessions.sessions["abc"].viewer_count == 9


class TestConfiguration:
    def test_test_configuration_is_idempotent(self, issuance_service: IssuanceService):
        assert issuance_service.test_configuration().valid is True
        assert issuance_service.test_configuration().valid is True

    def test_test_configuration_without_secret(self, rate_limiter, live_sessions):
        service = IssuanceService(CredentialBuilder(TEST_APP_ID, None), rate_limiter, ViewerAccountant(live_sessions))

        assert service.test_configuration().valid is False

    def test_test_configuration_is_not_rate_limited(self, issuance_service: IssuanceService):
        for _ in range(50):
            assert issuance_service.test_configuration().valid is True

    def test_config_info_never_exposes_secret(self, issuance_service: IssuanceService):
        info = issuance_service.config_info()

        assert info.app_id == TEST_APP_ID
        assert info.has_secret is True
        assert info.default_ttl_seconds == 86400
        assert info.is_config_valid is True
        assert TEST_APP_SECRET not in info.model_dump_json()

    def test_issue_test_credentials(self, issuance_service: IssuanceService):
        demo = issuance_service.issue_test_credentials()

        assert demo.channel == "test-channel"
        assert demo.host.role is Role.PUBLISHER
        assert demo.viewer.role is Role.SUBSCRIBER
        assert demo.host.actor_id != demo.viewer.actor_id
        assert demo.host.ttl_seconds == 3600


class TestTerminalStates:
    @pytest.mark.parametrize(
        ("exc", "state"),
        [
            (RateLimitExceeded("issuance", 10), IssuanceState.REJECTED),
            (ValidationError("bad"), IssuanceState.INVALID),
            (ConfigurationError("missing"), IssuanceState.FAILED),
            (InternalError(), IssuanceState.FAILED),
        ],
    )
    def test_terminal_state_for(self, exc, state):
        assert terminal_state_for(exc) is state
        assert state in IssuanceState.terminal_states()
