"""Credential domain models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

DEFAULT_TTL_SECONDS = 24 * 3600
EPHEMERAL_TTL_SECONDS = 3600

_ROLE_ALIASES = {
    "publisher": "publisher",
    "host": "publisher",
    "subscriber": "subscriber",
    "viewer": "subscriber",
    "audience": "subscriber",
}


class Role(str, Enum):
    """Media role granted by a credential."""

    PUBLISHER = "publisher"
    SUBSCRIBER = "subscriber"

    @property
    def can_publish(self) -> bool:
        return self is Role.PUBLISHER

    @classmethod
    def parse(cls, value: "Role | str") -> "Role":
        """Parse a role, accepting `host` and `viewer`/`audience` aliases.

        Raises:
            ValueError: If the value names no known role
        """
        if isinstance(value, Role):
            return value
        canonical = _ROLE_ALIASES.get(str(value).strip().lower())
        if canonical is None:
            raise ValueError(f"Unknown role: {value!r}")
        return cls(canonical)


class Credential(BaseModel):
    """Signed, time-bound grant for one (channel, actor, role) tuple."""

    token: str = Field(..., description="Signed access token, opaque to this service")
    app_id: str
    channel: str
    actor_id: int = Field(..., ge=0)
    role: Role
    issued_at: datetime
    expires_at: datetime

    @property
    def ttl_seconds(self) -> int:
        return int((self.expires_at - self.issued_at).total_seconds())

    @property
    def expire_time(self) -> int:
        """Expiry as a unix timestamp."""
        return int(self.expires_at.timestamp())
