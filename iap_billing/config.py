"""Configuration management - loads store.yaml and environment variables."""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from iap_billing.errors import ConfigurationError
from iap_billing.models import StoreConfig

# Environment variables that override secrets from the YAML file
ENV_OVERRIDES = {
    "BILLING_PUBLIC_KEY": ("public_key",),
    "VALIDATION_CLIENT_ID": ("validation", "client_id"),
    "VALIDATION_CLIENT_SECRET": ("validation", "client_secret"),
    "VALIDATION_REFRESH_TOKEN": ("validation", "refresh_token"),
}


class Config:
    """Application configuration loader and manager.

    Loads store.yaml and provides validated access to:
    - Product catalog definitions
    - Bridge settings (public key, payload, dummy mode)
    - Validation API credentials and endpoints
    - Timeouts
    """

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader.

        Args:
            config_path: Path to store.yaml file. If not provided, uses CONFIG_PATH env var
                        or defaults to ./config/store.yaml
        """
        self._config_path = self._resolve_config_path(config_path)
        self._store_config: Optional[StoreConfig] = None
        self._load_config()

    def _resolve_config_path(self, config_path: Optional[str]) -> Path:
        """Resolve configuration file path from argument, env var, or default."""
        if config_path:
            return Path(config_path)

        env_path = os.getenv("CONFIG_PATH")
        if env_path:
            return Path(env_path)

        return Path("config/store.yaml")

    def _load_config(self) -> None:
        """Load and validate store.yaml configuration."""
        if not self._config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {self._config_path}\n"
                f"Please create config/store.yaml or set CONFIG_PATH environment variable"
            )

        try:
            with open(self._config_path, encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML configuration: {e}") from e

        if not raw_config:
            raise ConfigurationError(f"Configuration file is empty: {self._config_path}")
        if not isinstance(raw_config, dict):
            raise ConfigurationError(f"Configuration root must be a mapping: {self._config_path}")

        self._apply_env_overrides(raw_config)

        try:
            self._store_config = StoreConfig(**raw_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    @staticmethod
    def _apply_env_overrides(raw_config: dict) -> None:
        for env_name, path in ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value is None:
                continue
            section = raw_config
            for key in path[:-1]:
                if not isinstance(section.get(key), dict):
                    section[key] = {}
                section = section[key]
            section[path[-1]] = value

    @property
    def store(self) -> StoreConfig:
        """Get validated store configuration."""
        if self._store_config is None:
            raise ConfigurationError("Configuration not loaded")
        return self._store_config

    @property
    def config_path(self) -> Path:
        """Get path to configuration file."""
        return self._config_path

    @property
    def validation_enabled(self) -> bool:
        return self.store.validation.enabled

    def reload(self) -> None:
        """Reload configuration from disk."""
        self._load_config()


# Global configuration instance
_config_instance: Optional[Config] = None


def get_config(config_path: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton).

    Args:
        config_path: Optional path to configuration file (only used on first call)

    Returns:
        Config instance
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path)
    return _config_instance


def reset_config() -> None:
    """Drop the global configuration instance (useful for testing)."""
    global _config_instance
    _config_instance = None
