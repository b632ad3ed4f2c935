"""Configuration management for spriteforge."""

from spriteforge.core.config.loader import detect_format, load_app_config, load_config
from spriteforge.core.config.models import (
    AppConfig,
    ArtServiceConfig,
    LoggingConfig,
    ProviderConfig,
)

__all__ = [
    # Loaders
    "detect_format",
    "load_app_config",
    "load_config",
    # Models
    "AppConfig",
    "ArtServiceConfig",
    "LoggingConfig",
    "ProviderConfig",
]
