"""Unit tests for credential construction and signing."""

from datetime import datetime, timedelta, timezone

import jwt
import orjson
import pytest

from live_access.domain.live.credential.actor_id import derive_actor_id
from live_access.domain.live.credential.credential_builder import CredentialBuilder, build_credential
from live_access.domain.live.credential.credential_models import DEFAULT_TTL_SECONDS, Role
from live_access.utils.app_errors import ConfigurationError, ValidationError
from tests.fixtures.app_fixtures import TEST_APP_ID, TEST_APP_SECRET, TEST_EPOCH, FakeClock


def _claims(token: str) -> dict:
    return jwt.decode(token, TEST_APP_SECRET, algorithms=["HS256"], options={"verify_aud": False})


class TestBuildCredential:
    def test_subscriber_credential(self):
        """Should bind channel, actor id and subscriber role into a signed token."""
        # Arrange
        issued_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        expires_at = issued_at + timedelta(hours=1)

        # Act
        credential = build_credential(
            TEST_APP_ID, TEST_APP_SECRET, "room-42", 1234, Role.SUBSCRIBER, issued_at, expires_at
        )

        # Assert
        assert credential.channel == "room-42"
        assert credential.actor_id == 1234
        assert credential.role is Role.SUBSCRIBER
        assert credential.app_id == TEST_APP_ID
        assert credential.ttl_seconds == 3600

        claims = _claims(credential.token)
        assert claims["iss"] == TEST_APP_ID
        assert claims["sub"] == "1234"
        assert claims["video"]["room"] == "room-42"
        assert claims["video"]["roomJoin"] is True
        assert claims["video"].get("canPublish") is False
        assert claims["video"].get("canSubscribe") is True
        assert orjson.loads(claims["metadata"]) == {"actor_id": 1234, "role": "subscriber"}

    def test_publisher_credential_can_publish(self):
        """Should grant publish rights to publishers only."""
        issued_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        credential = build_credential(
            TEST_APP_ID,
            TEST_APP_SECRET,
            "room-42",
            1234,
            "host",
            issued_at,
            issued_at + timedelta(minutes=5),
        )

        assert credential.role is Role.PUBLISHER
        video = _claims(credential.token)["video"]
        assert video.get("canPublish") is True
        assert video.get("canPublishData") is True

    def test_tampered_token_fails_verification(self):
        """Should break the signature when any claim is changed."""
        issued_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        credential = build_credential(
            TEST_APP_ID, TEST_APP_SECRET, "room-42", 1, Role.SUBSCRIBER, issued_at, issued_at + timedelta(hours=1)
        )
        claims = _claims(credential.token)
        claims["video"]["canPublish"] = True
        forged = jwt.encode(claims, "some-other-secret-0123456789abcdef-xyz", algorithm="HS256")

        with pytest.raises(jwt.InvalidSignatureError):
            _claims(forged)

    @pytest.mark.parametrize(("app_id", "secret"), [(None, TEST_APP_SECRET), (TEST_APP_ID, None), ("", "")])
    def test_missing_secret_material(self, app_id, secret):
        """Should raise ConfigurationError without app id or secret."""
        issued_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(ConfigurationError):
            build_credential(app_id, secret, "room-42", 1, Role.SUBSCRIBER, issued_at, issued_at + timedelta(hours=1))

    def test_expiry_must_follow_issue_time(self):
        """Should reject an expiry that is not after the issue time."""
        issued_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(ValidationError) as exc_info:
            build_credential(TEST_APP_ID, TEST_APP_SECRET, "room-42", 1, Role.SUBSCRIBER, issued_at, issued_at)

        assert exc_info.value.violations[0]["field"] == "expires_at"

    def test_collects_every_violation(self):
        """Should report all invalid fields at once."""
        issued_at = datetime(2026, 1, 1, tzinfo=timezone.utc)
        with pytest.raises(ValidationError) as exc_info:
            build_credential(
                TEST_APP_ID, TEST_APP_SECRET, "bad channel!", -1, "admin", issued_at, issued_at + timedelta(hours=1)
            )

        fields = {v["field"] for v in exc_info.value.violations}
        assert fields == {"channel", "actor_id", "role"}


class TestCredentialBuilder:
    def test_default_validity_window(self, credential_builder: CredentialBuilder):
        """Should default to 24 hours starting now, at whole-second precision."""
        credential = credential_builder.build("room-42", 7, Role.SUBSCRIBER)

        assert credential.issued_at == datetime.fromtimestamp(int(TEST_EPOCH), tz=timezone.utc)
        assert credential.expires_at - credential.issued_at == timedelta(seconds=DEFAULT_TTL_SECONDS)
        assert credential.expire_time == int(TEST_EPOCH) + DEFAULT_TTL_SECONDS

    @pytest.mark.parametrize("duration", [1, 60, 3600, 86400])
    def test_exact_duration(self, credential_builder: CredentialBuilder, duration: int):
        """Should expire exactly `duration` seconds after issuance."""
        credential = credential_builder.build("room-42", 7, Role.PUBLISHER, duration)

        assert credential.ttl_seconds == duration

    def test_build_for_role_derives_actor_id(self, credential_builder: CredentialBuilder):
        credential = credential_builder.build_for_role("room-42", "user-7", "viewer")

        assert credential.actor_id == derive_actor_id("user-7")
        assert credential.role is Role.SUBSCRIBER

    def test_renew_preserves_channel_actor_and_role(self, fake_clock: FakeClock):
        """Should issue a fresh credential with the same channel, actor id and role."""
        builder = CredentialBuilder(TEST_APP_ID, TEST_APP_SECRET, clock=fake_clock)
        original = builder.build("room-42", 99, Role.PUBLISHER, 600)

        fake_clock.advance(500)
        renewed = builder.renew("room-42", 99, Role.PUBLISHER, 600)

        assert (renewed.channel, renewed.actor_id, renewed.role) == (original.channel, original.actor_id, original.role)
        assert renewed.expires_at - original.expires_at == timedelta(seconds=500)

    def test_is_expired(self, credential_builder: CredentialBuilder, fake_clock: FakeClock):
        credential = credential_builder.build("room-42", 7, Role.SUBSCRIBER, 60)

        assert credential_builder.is_expired(credential) is False
        fake_clock.advance(60)
        assert credential_builder.is_expired(credential) is True

    def test_has_secret(self):
        assert CredentialBuilder(TEST_APP_ID, TEST_APP_SECRET).has_secret is True
        assert CredentialBuilder(TEST_APP_ID, None).has_secret is False
