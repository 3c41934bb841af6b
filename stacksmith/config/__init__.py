"""
Configuration management for Stacksmith.

Provides type-safe configuration loading and validation with support
for multiple configuration sources and priority-based merging.
"""

from .loader import ConfigLoader, load_config
from .models import (
    DeploymentConfig,
    DocumentStyle,
    LoggingSettings,
    StackOverrides,
    StacksmithConfig,
    SynthConfig,
    TemplateFormat,
    VerificationConfig,
)

__all__ = [
    # Loader
    "ConfigLoader",
    "load_config",
    # Models
    "DeploymentConfig",
    "DocumentStyle",
    "LoggingSettings",
    "StackOverrides",
    "StacksmithConfig",
    "SynthConfig",
    "TemplateFormat",
    "VerificationConfig",
]
