"""Configuration management for termlink.

Loads settings from a YAML configuration file with environment variable
overrides (``TERMLINK_SERVER__PORT=4000``). Supports .env files.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("config/termlink.yaml")


class ServerConfig(BaseModel):
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=1337, ge=1, le=65535)
    termination_timeout: float = Field(
        default=5.0, gt=0, description="Seconds a closing session waits for its command"
    )


class ClientConfig(BaseModel):
    url: str = Field(default="ws://127.0.0.1:1337/")
    mode: Literal["line", "keypress"] = Field(default="line")
    local_echo: bool = Field(default=False)


class BannerConfig(BaseModel):
    text: str | None = Field(default=None)
    enabled: bool = Field(default=True)


class CommandsConfig(BaseModel):
    extensions: dict[str, str] = Field(
        default_factory=dict, description="Command name to shell command line"
    )
    default_command: str | None = Field(default="help")


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")
    format: str = Field(
        default="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    file: str | None = Field(default=None)


class Settings(BaseSettings):
    """Root configuration for termlink.

    Loads from YAML file and supports environment variable overrides.
    Reads .env files automatically.
    """

    model_config = {
        "env_prefix": "TERMLINK_",
        "env_nested_delimiter": "__",
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    server: ServerConfig = Field(default_factory=ServerConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    banner: BannerConfig = Field(default_factory=BannerConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def banner_text(self) -> str | None:
        """The banner to show, or None when disabled."""
        return self.banner.text if self.banner.enabled else None


def load_settings(config_path: Path | str | None = None) -> Settings:
    """Load settings from YAML + .env + environment variables.

    Priority: env vars > .env file > YAML file > defaults
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH

    _load_dotenv()

    yaml_data = {}
    if path.exists():
        with open(path) as f:
            yaml_data = yaml.safe_load(f) or {}
        logger.info("Loaded configuration from %s", path)
    else:
        logger.debug("Config file %s not found, using defaults + env vars", path)

    return Settings(**yaml_data)


def _load_dotenv(env_path: Path = Path(".env")) -> None:
    """Load .env file into os.environ without overriding set variables."""
    if not env_path.exists():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" in line:
                key, _, value = line.partition("=")
                key = key.strip()
                value = value.strip().strip("\"'")
                if not os.environ.get(key):
                    os.environ[key] = value
