"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Secure defaults (no API keys in code)
"""

import os
from functools import lru_cache
from typing import Any, Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

# Load environment variables from .env file
load_dotenv()

OptimizationLevelName = Literal["full", "standard", "minimal"]
PromptVariant = Literal["verbose", "compact", "minimal"]


class AIProviderConfig(BaseModel):
    """AI provider configuration with secure defaults."""

    openai_api_key: str | None = Field(
        default=None, description="OpenAI API key (optional for offline runs)"
    )

    # Model selection for different tasks
    analysis_model: str = Field(
        default="openai:gpt-4o", description="Model used for full health analysis"
    )
    kpi_model: str = Field(default="openai:gpt-4o", description="Model used for KPI-only runs")

    # AI behavior settings
    analysis_temperature: float = Field(
        default=0.3, ge=0.0, le=1.0, description="Temperature for health analysis"
    )
    kpi_temperature: float = Field(
        default=0.2, ge=0.0, le=1.0, description="Temperature for KPI calculation"
    )
    default_max_tokens: int = Field(
        default=4000, gt=0, description="Default max completion tokens"
    )
    default_timeout_seconds: float = Field(
        default=60.0, gt=0.0, description="Hard timeout for a single inference call"
    )

    @field_validator("openai_api_key")
    def validate_api_key(cls, v):
        if not v:
            return None
        if v == "your-openai-api-key-here":
            raise ValueError("OpenAI API key placeholder must be replaced in environment or .env")
        if not v.startswith("sk-"):
            raise ValueError("OpenAI API key must start with 'sk-'")
        return v


class PipelineConfig(BaseModel):
    """Health-metrics pipeline tuning."""

    optimization_level: OptimizationLevelName = Field(
        default="standard", description="Payload size preset (points, precision, dates)"
    )
    max_points_per_metric: int | None = Field(
        default=None, description="Overrides the preset sampling cap when set"
    )
    prompt_variant: PromptVariant = Field(
        default="compact", description="System instruction variant sent with the payload"
    )
    min_measurements_analysis: int = Field(
        default=5, gt=0, description="Minimum measurements before a health analysis call"
    )
    min_measurements_kpis: int = Field(
        default=3, gt=0, description="Minimum measurements before a KPI-only call"
    )
    measurement_fetch_limit: int | None = Field(
        default=500, gt=0, description="Maximum rows pulled from the measurement source"
    )
    catalog_cache_ttl_seconds: float = Field(
        default=3600.0, gt=0.0, description="TTL of the catalog metadata cache"
    )

    @field_validator("max_points_per_metric")
    def validate_sampling_cap(cls, v):
        if v is not None and v < 1:
            raise ValueError("max_points_per_metric must be at least 1")
        return v


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    ai_provider: AIProviderConfig
    pipeline: PipelineConfig
    logging: LoggingConfig

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _optional_int(val: str | None) -> int | None:
        if val is None or not val.strip():
            return None
        return int(val)

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    ai_config = AIProviderConfig(
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        analysis_model=os.getenv("ANALYSIS_MODEL", "openai:gpt-4o"),
        kpi_model=os.getenv("KPI_MODEL", "openai:gpt-4o"),
        default_timeout_seconds=float(os.getenv("INFERENCE_TIMEOUT_SECONDS", "60.0")),
    )

    pipeline_config = PipelineConfig(
        optimization_level=cast(
            OptimizationLevelName, os.getenv("OPTIMIZATION_LEVEL", "standard").strip().lower()
        ),
        max_points_per_metric=_optional_int(os.getenv("MAX_POINTS_PER_METRIC")),
        prompt_variant=cast(PromptVariant, os.getenv("PROMPT_VARIANT", "compact").strip().lower()),
        min_measurements_analysis=int(os.getenv("MIN_MEASUREMENTS_ANALYSIS", "5")),
        min_measurements_kpis=int(os.getenv("MIN_MEASUREMENTS_KPIS", "3")),
        measurement_fetch_limit=_optional_int(os.getenv("MEASUREMENT_FETCH_LIMIT", "500")),
        catalog_cache_ttl_seconds=float(os.getenv("CATALOG_CACHE_TTL_SECONDS", "3600")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        ai_provider=ai_config,
        pipeline=pipeline_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def get_model_config(
    task: Literal["analysis", "kpis"], config: AppConfig | None = None
) -> dict[str, Any]:
    """Get model configuration based on task, from `config` or the cached environment config."""
    config = config or get_config()

    if task == "analysis":
        return {
            "model_name": config.ai_provider.analysis_model,
            "max_tokens": config.ai_provider.default_max_tokens,
            "temperature": config.ai_provider.analysis_temperature,
            "timeout_seconds": config.ai_provider.default_timeout_seconds,
        }
    elif task == "kpis":
        return {
            "model_name": config.ai_provider.kpi_model,
            "max_tokens": config.ai_provider.default_max_tokens,
            "temperature": config.ai_provider.kpi_temperature,
            "timeout_seconds": config.ai_provider.default_timeout_seconds,
        }
    else:
        raise ValueError(f"Unknown task: {task}")
