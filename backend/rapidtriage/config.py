"""
RapidTriage - Configuration Management

Centralized configuration using Pydantic Settings.
All secrets and environment-specific values are loaded from environment variables.
"""

from __future__ import annotations

from functools import lru_cache
from typing import List, Optional, TYPE_CHECKING

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from rapidtriage.services.ai.base import ModelConfig, ModelFamily


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Hierarchy (highest to lowest priority):
    1. Environment variables
    2. .env file
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        protected_namespaces=(),
    )

    # --- Application ---
    app_env: str = "development"
    app_debug: bool = True
    app_log_level: str = "INFO"
    log_json: bool = False  # JSON logs for production, human-readable otherwise

    # --- Server ---
    backend_host: str = "0.0.0.0"
    backend_port: int = 8080

    # --- AI Model Selection ---
    # "dummy" = deterministic keyword responses (default, no network)
    # "gemini" | "claude" | "gpt4" = hosted vendor APIs (require API keys)
    ai_model_type: str = "dummy"

    # Generic overrides; blank values fall back to the per-provider settings below
    ai_model_endpoint: str = ""
    ai_model_api_key: str = ""
    ai_model_name: str = ""

    gemini_api_key: str = ""
    gemini_endpoint: str = ""
    gemini_model_name: str = "gemini-2.5-flash"

    claude_api_key: str = ""
    claude_endpoint: str = ""
    claude_model_name: str = "claude-3-5-sonnet-20241022"

    openai_api_key: str = ""
    openai_endpoint: str = ""
    openai_model_name: str = "gpt-4o"

    # Zero means "use the backend's own default"
    model_timeout_seconds: float = Field(default=0.0, ge=0)
    model_temperature: float = Field(default=0.0, ge=0, le=2)
    model_max_tokens: int = Field(default=0, ge=0)

    # --- Processing ---
    processor_timeout_seconds: float = Field(default=30.0, gt=0)
    max_audio_size_mb: int = Field(default=20, gt=0)

    # --- Privacy Controls ---
    store_raw_transcripts: bool = False  # If True, transcripts are attached to situation metadata
    anonymize_logs: bool = True          # If True, logs contain minimal identifying info

    # --- Classifier ---
    # "rules" = keyword tiers (default)
    # "model" = structured call against the default AI model
    classifier_backend: str = "rules"
    classifier_threshold: float = Field(default=0.5, ge=0, le=1)
    classifier_fallback_code: Optional[str] = "YELLOW"

    # --- Coordinator ---
    # Must exceed the worst-case service budget (see core.coordinator.service_budget_seconds):
    # hospital + ambulance + facility lookup, each with full retries
    coordinator_timeout_seconds: float = Field(default=75.0, gt=0)

    # --- Action Tools ---
    hospital_api_endpoint: str = "http://localhost:8081/hospital"
    hospital_api_key: str = ""
    ambulance_api_endpoint: str = "http://localhost:8081/ambulance"
    ambulance_api_key: str = ""
    booking_api_endpoint: str = "http://localhost:8081/booking"
    booking_api_key: str = ""
    location_api_endpoint: str = "http://localhost:8081/location"
    location_api_key: str = ""

    tool_retry_attempts: int = Field(default=3, ge=1)
    tool_timeout_seconds: float = Field(default=5.0, gt=0)

    location_max_results: int = Field(default=5, ge=1)
    location_max_distance_km: float = Field(default=50.0, gt=0)
    location_cache_ttl_seconds: float = Field(default=1800.0, ge=0)

    # --- Security ---
    allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000,http://localhost:19006"

    @property
    def allowed_origins_list(self) -> List[str]:
        """Parse comma-separated origins into list."""
        return [origin.strip() for origin in self.allowed_origins.split(",")]

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env.lower() == "production"

    @property
    def max_audio_size_bytes(self) -> int:
        return self.max_audio_size_mb * 1024 * 1024

    def model_config_for(self, family: "ModelFamily") -> "ModelConfig":
        """
        Build the ModelConfig for a model family.

        Generic ``ai_model_*`` values win when set; otherwise the
        provider-specific values apply. Blank fields are filled with the
        backend's own defaults at construction time.
        """
        from rapidtriage.services.ai.base import ModelConfig, ModelFamily

        per_provider = {
            ModelFamily.GEMINI: (self.gemini_api_key, self.gemini_endpoint, self.gemini_model_name),
            ModelFamily.CLAUDE: (self.claude_api_key, self.claude_endpoint, self.claude_model_name),
            ModelFamily.GPT4: (self.openai_api_key, self.openai_endpoint, self.openai_model_name),
        }
        api_key, endpoint, model_name = per_provider.get(family, ("", "", ""))

        return ModelConfig(
            api_key=self.ai_model_api_key or api_key,
            endpoint=self.ai_model_endpoint or endpoint,
            model_name=self.ai_model_name or model_name,
            max_tokens=self.model_max_tokens,
            temperature=self.model_temperature,
            timeout_seconds=self.model_timeout_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """
    Cached settings instance.

    Use dependency injection in routes:
        settings: Settings = Depends(get_settings)
    """
    return Settings()
