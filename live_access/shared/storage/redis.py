"""
Simple Redis client manager that creates and tracks clients.
"""

import threading
from typing import Dict, Optional

from loguru import logger
from redis.asyncio import Redis

from ..config import EnvironConfig, config as default_config


class RedisManager:
    """
    Redis client manager.

    - Loads REDIS_URL / REDIS_URL_<LABEL> connection strings from configuration
    - Creates one cache client per label on first use
    - Closes every client it opened on shutdown
    """

    def __init__(self, config: Optional[EnvironConfig] = None):
        self._config = config or default_config
        self._cache_clients: Dict[str, Redis] = {}
        self._connection_strings: Dict[str, str] = {}
        self._lock = threading.Lock()

        self._load_connection_strings()

    @staticmethod
    def _get_label_from_env_var(env_var: str) -> Optional[str]:
        if env_var.startswith("REDIS_URL_"):
            return env_var[10:].lower()
        return None

    def _load_connection_strings(self):
        for key, value in self._config.items():
            label = self._get_label_from_env_var(key)
            if label is None or not value:
                continue
            self._connection_strings[label] = value
            logger.info(
                "Loaded Redis connection string for label '{}': {}",
                label,
                self._hide_password_in_connection_string(value),
            )

        if "default" not in self._connection_strings:
            default_url = self._config.get_redis_url("default")
            self._connection_strings["default"] = default_url
            logger.info(
                "Using default Redis connection string: {}",
                self._hide_password_in_connection_string(default_url),
            )

    @staticmethod
    def _hide_password_in_connection_string(connection_string: str) -> str:
        """Hide password in Redis connection string for logging."""
        if "@" not in connection_string or "://" not in connection_string:
            return connection_string

        protocol_part, rest = connection_string.split("://", 1)
        last_at_index = rest.rfind("@")
        auth_part = rest[:last_at_index]
        host_part = rest[last_at_index + 1 :]

        if ":" in auth_part:
            username, password = auth_part.split(":", 1)
            if password:
                return f"{protocol_part}://{username}:***@{host_part}"

        return connection_string

    def get_cache_client(self, label: str = "default") -> Redis:
        """
        Get Redis cache client by label.

        Raises:
            ValueError: If no connection string exists for the label
        """
        with self._lock:
            if label not in self._cache_clients:
                if label not in self._connection_strings:
                    raise ValueError(f"No Redis connection string found for label '{label}'")

                logger.info("Open Redis cache client for label '{}'", label)
                self._cache_clients[label] = Redis.from_url(
                    self._connection_strings[label], decode_responses=True
                )

            return self._cache_clients[label]

    async def close_all(self):
        """Close all clients."""
        with self._lock:
            clients = list(self._cache_clients.items())
            self._cache_clients.clear()

        for label, client in clients:
            try:
                await client.aclose()
                logger.info("Closed Redis cache client for label '{}'", label)
            except Exception as e:
                logger.error("Error closing Redis cache client for label '{}': {}", label, e)
