"""Bearer token -> caller identity."""

from __future__ import annotations

import jwt
from loguru import logger

from live_access.utils.app_errors import AuthorizationError

ANONYMOUS_IDENTITY = ""


def extract_bearer(authorization: str | None) -> str | None:
    """Return the token of an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class IdentityResolver:
    """Verifies HS256 bearer JWTs and reads the caller identity from them.

    The identity is taken from `userId`, `user_id` or `sub`, in that order.
    """

    def __init__(self, jwt_secret: str | None, *, algorithms: tuple[str, ...] = ("HS256",)) -> None:
        self._jwt_secret = jwt_secret
        self._algorithms = list(algorithms)

    def _decode(self, token: str) -> str:
        if not self._jwt_secret:
            raise AuthorizationError("Authentication is not available")

        try:
            payload = jwt.decode(token, self._jwt_secret, algorithms=self._algorithms)
        except jwt.ExpiredSignatureError as exc:
            raise AuthorizationError("Token expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthorizationError("Invalid token") from exc

        identity = payload.get("userId") or payload.get("user_id") or payload.get("sub")
        if not identity or not isinstance(identity, str):
            raise AuthorizationError("Token carries no identity")
        return identity

    def resolve_required(self, token: str | None) -> str:
        """Identity of the token holder.

        Raises:
            AuthorizationError: If the token is missing, invalid or expired
        """
        if not token:
            raise AuthorizationError("Authentication token required")
        return self._decode(token)

    def resolve_optional(self, token: str | None) -> str:
        """Identity of the token holder, or the anonymous identity on any failure."""
        if not token:
            return ANONYMOUS_IDENTITY
        try:
            return self._decode(token)
        except AuthorizationError as exc:
            logger.debug("Optional auth fell back to anonymous: {}", exc.errmesg)
            return ANONYMOUS_IDENTITY
