"""Credential module.

Top-level API:
- `derive_actor_id`: stable numeric actor id for an identity
- `Credential`, `Role`: the issued credential and its role
"""

from .actor_id import ANONYMOUS_ACTOR_ID, MAX_ACTOR_ID, derive_actor_id
from .credential_models import DEFAULT_TTL_SECONDS, Credential, Role

__all__ = [
    "ANONYMOUS_ACTOR_ID",
    "DEFAULT_TTL_SECONDS",
    "MAX_ACTOR_ID",
    "Credential",
    "Role",
    "derive_actor_id",
]
