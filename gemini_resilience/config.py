# gemini_resilience/config.py

"""
Configuration for the resilience layer.

Settings are read from constructor arguments, ``GEMINI_RESILIENCE_*``
environment variables or a ``.env`` file.
"""

import logging

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class RateLimitRule(BaseModel):
    """Sliding-window admission rule for one operation key."""

    max_requests: int = Field(default=10, ge=1)
    window_seconds: float = Field(default=60.0, gt=0)


def _default_rate_limits() -> dict[str, RateLimitRule]:
    # Cheaper text calls get a higher ceiling than multimodal/image work.
    return {
        "gemini_text": RateLimitRule(max_requests=10, window_seconds=60.0),
        "gemini_multimodal": RateLimitRule(max_requests=5, window_seconds=60.0),
        "gemini_segmentation": RateLimitRule(max_requests=3, window_seconds=60.0),
        "gemini_image_generation": RateLimitRule(max_requests=2, window_seconds=60.0),
        "gemini_object_detection": RateLimitRule(max_requests=3, window_seconds=60.0),
    }


class ResilienceSettings(BaseSettings):
    """Retry, circuit breaker and rate limit settings."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_RESILIENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Retry
    max_retries: int = Field(default=3, ge=1, description="Attempts per call")
    base_delay: float = Field(default=1.0, gt=0, description="Seconds")
    max_delay: float = Field(default=30.0, gt=0, description="Seconds")
    jitter_ratio: float = Field(default=0.25, ge=0, le=1)

    # Circuit breaker
    circuit_failure_threshold: int = Field(default=5, ge=1)
    circuit_reset_timeout: float = Field(default=900.0, gt=0, description="Seconds")

    # Per-attempt timeout
    request_timeout: float = Field(default=30.0, gt=0, description="Seconds")

    # Rate limiting
    default_rate_limit: RateLimitRule = Field(default_factory=RateLimitRule)
    rate_limits: dict[str, RateLimitRule] = Field(default_factory=_default_rate_limits)

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_delays(self) -> "ResilienceSettings":
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"max_delay ({self.max_delay}) must be >= base_delay ({self.base_delay})"
            )
        return self

    def rule_for(self, operation_key: str) -> RateLimitRule:
        """Get the rate limit rule for an operation key."""
        return self.rate_limits.get(operation_key, self.default_rate_limit)
