"""Signed, time-bound media credentials.

Credentials are LiveKit access tokens: an HS256 JWT issued by the app id and
signed with the app secret, whose `video` grant binds the channel (room), the
actor id (identity) and the role. Changing any claim breaks the signature, and
the media server is the only party that verifies it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

import orjson
from livekit import api
from loguru import logger

from live_access.utils.app_errors import ConfigurationError

from ..validators import (
    FieldViolation,
    ValidationResult,
    combine,
    validate_actor_id,
    validate_channel,
    validate_role,
)
from .actor_id import derive_actor_id
from .credential_models import DEFAULT_TTL_SECONDS, Credential, Role


def build_credential(
    app_id: str | None,
    secret: str | None,
    channel: str,
    actor_id: int,
    role: Role | str,
    issued_at: datetime,
    expires_at: datetime,
) -> Credential:
    """Build and sign a credential.

    Raises:
        ConfigurationError: If the app id or secret is missing
        ValidationError: If the channel, actor id, role or expiry is invalid
    """
    if not app_id or not secret:
        raise ConfigurationError("RTC app id and secret are required to sign credentials")

    expiry = ValidationResult()
    if expires_at <= issued_at:
        expiry = ValidationResult(
            (FieldViolation("expires_at", "after_issued_at", "must be later than issued_at"),)
        )
    combine(
        validate_channel(channel),
        validate_actor_id(actor_id),
        validate_role(role),
        expiry,
    ).raise_for_violations()
    role = Role.parse(role)

    grants = api.VideoGrants(
        room_join=True,
        room=channel,
        can_publish=role.can_publish,
        can_publish_data=role.can_publish,
        can_subscribe=True,
    )
    metadata = orjson.dumps({"actor_id": actor_id, "role": role.value}).decode()

    token = (
        api.AccessToken(app_id, secret)
        .with_identity(str(actor_id))
        .with_ttl(expires_at - issued_at)
        .with_grants(grants)
        .with_metadata(metadata)
        .to_jwt()
    )

    return Credential(
        token=token,
        app_id=app_id,
        channel=channel,
        actor_id=actor_id,
        role=role,
        issued_at=issued_at,
        expires_at=expires_at,
    )


class CredentialBuilder:
    """Holds the signing material and computes expiries from a clock."""

    def __init__(
        self,
        app_id: str | None,
        secret: str | None,
        *,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._app_id = app_id
        self._secret = secret
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock

    @property
    def app_id(self) -> str | None:
        return self._app_id

    @property
    def has_secret(self) -> bool:
        return bool(self._secret)

    def now(self) -> datetime:
        return datetime.fromtimestamp(int(self._clock()), tz=timezone.utc)

    def build(
        self,
        channel: str,
        actor_id: int,
        role: Role | str,
        duration: int | None = None,
    ) -> Credential:
        ttl = self.default_ttl_seconds if duration is None else duration
        issued_at = self.now()
        credential = build_credential(
            self._app_id,
            self._secret,
            channel,
            actor_id,
            role,
            issued_at,
            issued_at + timedelta(seconds=ttl),
        )
        logger.info(
            "Credential built: channel={} actor_id={} role={} ttl={}s",
            channel,
            actor_id,
            credential.role.value,
            ttl,
        )
        return credential

    def build_for_role(
        self,
        channel: str,
        identity: str,
        role: Role | str,
        duration: int | None = None,
    ) -> Credential:
        return self.build(channel, derive_actor_id(identity), role, duration)

    def renew(
        self,
        channel: str,
        actor_id: int,
        role: Role | str,
        duration: int | None = None,
    ) -> Credential:
        # Renewal is fresh issuance: no revocation list, no continuity check.
        logger.info("Renewing credential: channel={} actor_id={}", channel, actor_id)
        return self.build(channel, actor_id, role, duration)

    def is_expired(self, credential: Credential, now: datetime | None = None) -> bool:
        return (now or self.now()) >= credential.expires_at
