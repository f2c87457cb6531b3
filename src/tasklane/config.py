"""Configuration management for tasklane."""

import json
from pathlib import Path
from typing import Any, Optional

from platformdirs import user_config_dir, user_data_dir
from pydantic import BaseModel, Field


class APIConfig(BaseModel):
    """API configuration."""

    endpoint: str = Field(default="http://localhost:8000/api")
    timeout: int = Field(default=30)
    retry: int = Field(default=3)


class CompletionConfig(BaseModel):
    """Task completion configuration."""

    require_time_confirmation: bool = Field(default=True)


class RecurrenceConfig(BaseModel):
    """Recurrence configuration."""

    preview_count: int = Field(default=5, ge=1)


class Config(BaseModel):
    """Main configuration."""

    api: APIConfig = Field(default_factory=APIConfig)
    completion: CompletionConfig = Field(default_factory=CompletionConfig)
    recurrence: RecurrenceConfig = Field(default_factory=RecurrenceConfig)


class ConfigManager:
    """Manages tasklane configuration."""

    def __init__(self, profile: str = "default"):
        self.profile = profile
        self.config_dir = Path(user_config_dir("tasklane"))
        self.data_dir = Path(user_data_dir("tasklane"))
        self.config_file = self.config_dir / f"{profile}.json"
        self.credentials_file = self.data_dir / f"{profile}.credentials.json"

        # Ensure directories exist
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)

        self._config: Optional[Config] = None

    @property
    def config(self) -> Config:
        """Get the current configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def load_config(self) -> Config:
        """Load configuration from file."""
        if self.config_file.exists():
            try:
                with open(self.config_file, "r") as f:
                    data = json.load(f)
                return Config(**data)
            except Exception:
                # If config is corrupted, return default
                return Config()
        return Config()

    def get(self, key: str) -> Any:
        """Get a configuration value by dot-separated key."""
        return self.get_from_config(self.config, key)

    def get_from_config(self, config: Config, key: str) -> Any:
        """Get value from a config object using dot notation."""
        value: Any = config
        for k in key.split("."):
            if isinstance(value, BaseModel):
                value = getattr(value, k, None)
            else:
                return None
        return value

    def load_credentials(self) -> Optional[dict[str, str]]:
        """Load authentication credentials."""
        if self.credentials_file.exists():
            try:
                with open(self.credentials_file, "r") as f:
                    return json.load(f)
            except Exception:
                return None
        return None


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(profile: str = "default") -> ConfigManager:
    """Get or create the global config manager."""
    global _config_manager
    if _config_manager is None or _config_manager.profile != profile:
        _config_manager = ConfigManager(profile)
    return _config_manager
