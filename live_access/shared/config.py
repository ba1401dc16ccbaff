"""
Centralized configuration management.

Supports, in priority order (later overrides earlier):
1) `env.example` (committed, safe placeholders)
2) `env.local` (optional, MUST NOT be committed)
3) System environment variables (highest priority)
"""

import os
import threading
from pathlib import Path

from dotenv import dotenv_values
from loguru import logger


class EnvironConfig:
    """
    Singleton configuration class that loads environment variables from env files
    and system environment, providing `get` access with default values.
    """

    _instance = None
    _initialized = False
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super(EnvironConfig, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._config = {}
            self._load_config()
            EnvironConfig._initialized = True

    def _load_config(self):
        root = Path(__file__).parent.parent.parent

        example_path = root / "env.example"
        if example_path.exists():
            self._config.update(dotenv_values(example_path))
            logger.info("Loaded environment variables from {}", example_path)

        local_path = root / "env.local"
        if local_path.exists():
            self._config.update(dotenv_values(local_path))
            logger.info("Loaded and overrode environment variables from {}", local_path)

        self._config.update(os.environ)

    def get(self, key, default=None):
        return self._config.get(key, default)

    def items(self):
        return self._config.items()

    def get_redis_url(self, label: str = "default") -> str:
        """
        Get Redis connection URL for a specific label.

        `default` resolves REDIS_URL_DEFAULT, then REDIS_URL, then localhost.
        Other labels resolve REDIS_URL_<LABEL> or an empty string.
        """
        if label == "default":
            url = self.get("REDIS_URL_DEFAULT") or self.get("REDIS_URL")
            return url or "redis://localhost:6379"

        return self.get(f"REDIS_URL_{label.upper()}") or ""


# Global configuration instance
config = EnvironConfig()
