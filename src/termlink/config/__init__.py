"""Configuration management for termlink.

Loads and validates YAML-based configuration with Pydantic models,
with environment variable overrides.
"""

from termlink.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
