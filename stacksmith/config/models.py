"""
Configuration models for Stacksmith.

Provides type-safe configuration using pydantic with validation,
defaults, and schema enforcement.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..timeout_config import Timeouts


class TemplateFormat(str, Enum):
    """Output formats understood by the synth command."""

    CANONICAL = "canonical"
    CLOUDFORMATION = "cloudformation"


class DocumentStyle(str, Enum):
    """Serialization style for rendered templates."""

    JSON = "json"
    YAML = "yaml"


class DeploymentConfig(BaseModel):
    """Polling and retry settings for the deployment orchestrator."""

    region: Optional[str] = Field(
        default=None,
        description="Provider region; falls back to the SDK's default resolution",
    )
    poll_interval_seconds: Annotated[float, Field(gt=0)] = Field(
        default=float(Timeouts.POLL_INTERVAL),
        description="Seconds between status polls",
    )
    max_wait_seconds: Annotated[float, Field(gt=0)] = Field(
        default=float(Timeouts.DEPLOY),
        description="Total time to wait for a terminal status",
    )
    max_poll_retries: Annotated[int, Field(ge=0, le=50)] = Field(
        default=5,
        description="Consecutive transient failures tolerated while polling",
    )
    backoff_base_seconds: Annotated[float, Field(gt=0)] = Field(
        default=1.0,
        description="First retry delay; doubled after each consecutive failure",
    )
    backoff_max_seconds: Annotated[float, Field(gt=0)] = Field(
        default=30.0,
        description="Upper bound for a single retry delay",
    )

    @model_validator(mode="after")
    def validate_backoff(self) -> "DeploymentConfig":
        """Ensure the backoff cap is not below its starting value."""
        if self.backoff_max_seconds < self.backoff_base_seconds:
            raise ValueError("backoff_max_seconds must be >= backoff_base_seconds")
        return self

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return min(
            self.backoff_base_seconds * (2 ** max(attempt - 1, 0)),
            self.backoff_max_seconds,
        )

    model_config = ConfigDict(extra="forbid")


class VerificationConfig(BaseModel):
    """Settings for verifying references to externally created resources."""

    enabled: bool = Field(
        default=False,
        description="Look up external references with the provider during build",
    )
    strict: bool = Field(
        default=False,
        description="Treat a missing or unverifiable external resource as an error",
    )
    max_retries: Annotated[int, Field(ge=0, le=10)] = Field(
        default=3,
        description="Retries for throttled lookups",
    )
    cache_ttl_seconds: Annotated[int, Field(ge=0)] = Field(
        default=300,
        description="How long lookup results are cached",
    )

    model_config = ConfigDict(extra="forbid")


class SynthConfig(BaseModel):
    """Settings for rendering templates."""

    output_format: TemplateFormat = Field(
        default=TemplateFormat.CLOUDFORMATION,
        description="Template format written by synth",
    )
    style: DocumentStyle = Field(
        default=DocumentStyle.JSON,
        description="Serialization style for cloudformation output",
    )
    indent: Annotated[int, Field(ge=0, le=8)] = Field(
        default=2,
        description="Indentation for pretty-printed output",
    )

    model_config = ConfigDict(extra="forbid")


class LoggingSettings(BaseModel):
    """Logging settings applied by the CLI."""

    level: str = Field(default="INFO", description="Root log level")
    json_output: bool = Field(default=False, description="Emit JSON log lines")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Normalize and check the level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    model_config = ConfigDict(extra="forbid")


class StackOverrides(BaseModel):
    """Stack-specific deployment overrides."""

    stack_name: str = Field(..., description="Stack these overrides apply to")
    deployment: Optional[DeploymentConfig] = Field(
        default=None,
        description="Override deployment settings for this stack",
    )
    verification: Optional[VerificationConfig] = Field(
        default=None,
        description="Override verification settings for this stack",
    )

    model_config = ConfigDict(extra="forbid")


class StacksmithConfig(BaseModel):
    """Root configuration."""

    deployment: DeploymentConfig = Field(
        default_factory=DeploymentConfig,
        description="Deployment polling and retry settings",
    )
    verification: VerificationConfig = Field(
        default_factory=VerificationConfig,
        description="External reference verification settings",
    )
    synth: SynthConfig = Field(
        default_factory=SynthConfig,
        description="Template rendering settings",
    )
    logging: LoggingSettings = Field(
        default_factory=LoggingSettings,
        description="Logging settings",
    )

    stack_overrides: list[StackOverrides] = Field(
        default_factory=list,
        description="Stack-specific overrides",
    )

    @model_validator(mode="after")
    def validate_stack_overrides(self) -> "StacksmithConfig":
        """Ensure stack override names are unique."""
        names = [override.stack_name for override in self.stack_overrides]
        if len(names) != len(set(names)):
            raise ValueError("Duplicate stack names in stack_overrides")
        return self

    def get_stack_config(self, stack_name: str) -> "StacksmithConfig":
        """
        Get effective configuration for a specific stack.

        Merges stack-specific overrides with base configuration.
        """
        override = next(
            (o for o in self.stack_overrides if o.stack_name == stack_name),
            None,
        )
        if not override:
            return self

        updates = {}
        if override.deployment:
            updates["deployment"] = override.deployment
        if override.verification:
            updates["verification"] = override.verification
        return self.model_copy(update=updates)

    model_config = ConfigDict(extra="forbid")
