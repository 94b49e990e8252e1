"""
RuleKeeper Configuration Module

Handles loading and validation of application configuration.
"""

import tempfile
from pathlib import Path
from typing import Optional
from functools import lru_cache

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class ServerConfig(BaseModel):
    """Server configuration settings."""
    host: str = "127.0.0.1"
    port: int = 8040
    debug: bool = False


class DatabaseConfig(BaseModel):
    """Live ruleset database settings."""
    path: str = "data/rulesets.sqlite"
    echo: bool = False


class UpdatesConfig(BaseModel):
    """
    Ruleset update settings.

    The signing key is not configurable; it is embedded in
    rulekeeper.updates.verifier.
    """
    enabled: bool = True
    manifest_url: str = "https://rulesets.example.org/update.json"
    signature_url: str = "https://rulesets.example.org/update.json.sig"
    branch: str = "stable"
    extension_version: str = "1.0.0"
    # Version of the ruleset database shipped with this build
    ruleset_version: str = "1.0.0.0"
    max_fetch_attempts: int = 6
    retry_base_delay: float = 0.5
    retry_max_delay: float = 8.0
    request_timeout: float = 30.0
    check_interval_seconds: int = 86400
    initial_delay_seconds: int = 60
    staging_path: str = Field(
        default_factory=lambda: str(Path(tempfile.gettempdir()) / "new_rulesets.sqlite")
    )
    failure_report_url: str = ""
    allow_weak_digests: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file_path: str = "logs/rulekeeper.log"


class Settings(BaseSettings):
    """
    Main application settings.

    Loads configuration from config.yml file, with environment variable overrides.
    """
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    updates: UpdatesConfig = Field(default_factory=UpdatesConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # Base path for relative paths
    base_path: Path = Field(default_factory=lambda: Path.cwd())

    class Config:
        env_prefix = "RULEKEEPER_"
        env_nested_delimiter = "__"

    def resolve_path(self, path: str) -> Path:
        """Resolve a relative path against the base path."""
        p = Path(path)
        if p.is_absolute():
            return p
        return self.base_path / p


def load_config(config_path: Optional[str] = None) -> Settings:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to config file. Defaults to 'config.yml' in current directory.

    Returns:
        Settings object with loaded configuration.
    """
    if config_path is None:
        config_path = "config.yml"

    config_file = Path(config_path)

    if config_file.exists():
        with open(config_file, "r") as f:
            config_data = yaml.safe_load(f) or {}
    else:
        config_data = {}

    # Set base path to config file's parent directory
    config_data["base_path"] = config_file.parent.resolve()

    return Settings(**config_data)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    This is the primary way to access settings throughout the application.
    """
    return load_config()

