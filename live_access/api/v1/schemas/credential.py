from datetime import datetime

from pydantic import BaseModel, Field

from live_access.domain.live.credential.credential_models import Credential


class IssueCredentialIn(BaseModel):
    """Request a credential for a channel."""

    channel: str = Field(description="Channel name: 1-64 letters, digits, '-' or '_'")
    role: str = Field(default="subscriber", description="publisher/host or subscriber/viewer")
    user_id: str | None = Field(
        default=None,
        description="Caller identity when no bearer token is presented (subscribers only)",
    )
    duration: int | None = Field(default=None, description="Validity in seconds")


class RenewCredentialIn(BaseModel):
    """Request a fresh credential for an existing actor id."""

    channel: str
    actor_id: int
    role: str = "subscriber"
    duration: int | None = None


class LiveCredentialIn(BaseModel):
    """Request a credential on the channel of a live session."""

    live_id: str
    role: str = "subscriber"
    user_id: str | None = None


class CredentialOut(BaseModel):
    token: str
    app_id: str
    channel: str
    actor_id: int
    role: str
    issued_at: datetime
    expires_at: datetime
    expire_time: int = Field(description="Expiry as a unix timestamp")

    @classmethod
    def from_credential(cls, credential: Credential) -> "CredentialOut":
        return cls(
            token=credential.token,
            app_id=credential.app_id,
            channel=credential.channel,
            actor_id=credential.actor_id,
            role=credential.role.value,
            issued_at=credential.issued_at,
            expires_at=credential.expires_at,
            expire_time=credential.expire_time,
        )


class ConfigCheckOut(BaseModel):
    valid: bool
    message: str


class DemoCredentialsOut(BaseModel):
    channel: str
    host: CredentialOut
    viewer: CredentialOut
