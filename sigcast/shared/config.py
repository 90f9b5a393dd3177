"""
Layered environment settings for sigcast.

Sources, later ones winning:
1) `env.example` at the repo root (committed defaults)
2) `env.local` at the repo root (developer overrides, never committed)
3) the process environment
"""

import os
from pathlib import Path

from dotenv import dotenv_values
from loguru import logger

REPO_ROOT = Path(__file__).parent.parent.parent
ENV_FILES = ("env.example", "env.local")


class EnvironConfig:
    """Process-wide view of the merged settings, with typed accessors."""

    _instance = None
    _initialized = False

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(EnvironConfig, cls).__new__(cls)
        return cls._instance

    def __init__(self):
        if not self._initialized:
            self._values: dict[str, str | None] = {}
            self._load()
            EnvironConfig._initialized = True

    def _load(self):
        for name in ENV_FILES:
            path = REPO_ROOT / name
            if path.exists():
                self._values.update(dotenv_values(path))
                logger.info("Loaded settings from {}", path)

        self._values.update(os.environ)

    def __getitem__(self, key):
        """
        Raises:
            KeyError: If no source defines the key
        """
        if key not in self._values:
            raise KeyError(f"Configuration key '{key}' not found")
        return self._values[key]

    def __contains__(self, key):
        return key in self._values

    def get(self, key, default=None):
        return self._values.get(key, default)

    def get_str(self, key: str, default: str) -> str:
        """Stripped value, or `default` when unset or blank."""
        return (self._values.get(key) or "").strip() or default

    def get_int(self, key: str, default: int) -> int:
        return int(self.get_str(key, str(default)))

    def get_float(self, key: str, default: float) -> float:
        return float(self.get_str(key, str(default)))

    def get_bool(self, key: str, default: bool = False) -> bool:
        return self.get_str(key, "true" if default else "false").lower() == "true"

    def get_list(self, key: str, default: str) -> list[str]:
        """Comma separated value split into non-empty items."""
        return [x.strip() for x in self.get_str(key, default).split(",") if x.strip()]

    def reload(self):
        """Re-read env files and the environment, e.g. after a test changed them."""
        self._values.clear()
        self._load()
        logger.info("Configuration reloaded")


config = EnvironConfig()
