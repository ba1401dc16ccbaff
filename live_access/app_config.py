from pydantic import BaseModel

from live_access.shared.config import config
from live_access.utils.app_errors import ConfigurationError


def _int(key: str, default: int) -> int:
    return int((config.get(key) or "").strip() or default)


class AppEnvironConfig(BaseModel):
    DEBUG: bool = config.get("DEBUG", "false").strip().lower() == "true"  # type: ignore

    API_HOST: str = config.get("API_HOST", "0.0.0.0").strip()  # type: ignore
    API_PORT: int = _int("API_PORT", 8000)
    API_WORKERS: int = _int("API_WORKERS", 1)
    API_CORS_ORIGINS: list[str] = [
        x.strip() for x in config.get("API_CORS_ORIGINS", "*").split(",") if x.strip()  # type: ignore
    ]

    # LiveKit configuration: API key is the credential app id, API secret signs tokens
    LIVEKIT_URL: str | None = (config.get("LIVEKIT_URL") or "").strip() or None
    LIVEKIT_API_KEY: str | None = (config.get("LIVEKIT_API_KEY") or "").strip() or None
    LIVEKIT_API_SECRET: str | None = (config.get("LIVEKIT_API_SECRET") or "").strip() or None

    # Credential validity windows (seconds)
    CREDENTIAL_DEFAULT_TTL_SECONDS: int = _int("CREDENTIAL_DEFAULT_TTL_SECONDS", 24 * 3600)
    CREDENTIAL_MAX_TTL_SECONDS: int = _int("CREDENTIAL_MAX_TTL_SECONDS", 24 * 3600)

    # Bearer tokens presented by callers are HS256 JWTs signed with this secret
    JWT_SECRET: str | None = (config.get("JWT_SECRET") or "").strip() or None

    # Rate limiting: "memory" keeps state per process, "redis" shares it across processes
    RATE_LIMIT_BACKEND: str = config.get("RATE_LIMIT_BACKEND", "memory").strip().lower()  # type: ignore
    RATE_LIMIT_MAX_REQUESTS: int = _int("RATE_LIMIT_MAX_REQUESTS", 100)
    RATE_LIMIT_WINDOW_SECONDS: int = _int("RATE_LIMIT_WINDOW_SECONDS", 15 * 60)

    # Key limits on X-Forwarded-For / X-Real-IP; enable only behind a proxy that overwrites them
    TRUST_PROXY_HEADERS: bool = config.get("TRUST_PROXY_HEADERS", "false").strip().lower() == "true"  # type: ignore

    LOGFIRE_ENABLE: bool = config.get("LOGFIRE_ENABLE", "false").strip().lower() == "true"  # type: ignore
    LOGFIRE_TOKEN: str | None = (config.get("LOGFIRE_TOKEN") or "").strip() or None


class RtcSecrets(BaseModel):
    app_id: str
    secret: str


def require_rtc_secrets(cfg: AppEnvironConfig) -> RtcSecrets:
    """Return the credential signing material or refuse to serve without it."""
    if not cfg.LIVEKIT_API_KEY or not cfg.LIVEKIT_API_SECRET:
        raise ConfigurationError(
            "RTC credentials must be configured: set LIVEKIT_API_KEY and LIVEKIT_API_SECRET "
            "in env.local or environment variables."
        )
    return RtcSecrets(app_id=cfg.LIVEKIT_API_KEY, secret=cfg.LIVEKIT_API_SECRET)


_app_environ_config = AppEnvironConfig()


def get_app_environ_config() -> AppEnvironConfig:
    return _app_environ_config
