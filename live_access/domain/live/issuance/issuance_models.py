"""Issuance request states and response models."""

from enum import Enum

from pydantic import BaseModel

from live_access.utils.app_errors import RateLimitExceeded, ValidationError

from ..credential.credential_models import Credential
from ..viewer.viewer_models import ViewerSession


class IssuanceState(str, Enum):
    """Progress of one issuance request."""

    RECEIVED = "received"
    RATE_CHECKED = "rate_checked"
    IDENTITY_DERIVED = "identity_derived"
    CREDENTIAL_BUILT = "credential_built"
    RETURNED = "returned"
    REJECTED = "rejected"
    INVALID = "invalid"
    FAILED = "failed"

    @classmethod
    def terminal_states(cls) -> set["IssuanceState"]:
        return {cls.RETURNED, cls.REJECTED, cls.INVALID, cls.FAILED}


def terminal_state_for(exc: BaseException) -> IssuanceState:
    if isinstance(exc, RateLimitExceeded):
        return IssuanceState.REJECTED
    if isinstance(exc, ValidationError):
        return IssuanceState.INVALID
    return IssuanceState.FAILED


class ConfigurationCheck(BaseModel):
    valid: bool


class ConfigInfo(BaseModel):
    app_id: str | None
    has_secret: bool
    default_ttl_seconds: int
    is_config_valid: bool


class DemoCredentials(BaseModel):
    channel: str
    host: Credential
    viewer: Credential


class JoinLiveResult(BaseModel):
    session: ViewerSession
    credential: Credential
    counted: bool


class StartLiveResult(BaseModel):
    session: ViewerSession
    credential: Credential
