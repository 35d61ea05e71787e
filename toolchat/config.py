"""Application configuration."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from toolchat.models import SamplingParams

ProviderName = Literal["gemini", "groq"]


@dataclass(slots=True, frozen=True)
class ModelInfo:
    id: str
    name: str
    description: str
    provider: ProviderName


AVAILABLE_MODELS: tuple[ModelInfo, ...] = (
    ModelInfo("gemini-2.5-flash", "Gemini 2.5 Flash", "Most capable Flash model (Google)", "gemini"),
    ModelInfo("gemini-2.5-flash-lite", "Gemini 2.5 Flash Lite", "Fastest Gemini model (Google)", "gemini"),
    ModelInfo("llama-3.3-70b-versatile", "Llama 3.3 70B", "Versatile high quality model (Meta)", "groq"),
    ModelInfo("llama-3.1-8b-instant", "Llama 3.1 8B", "Ultra-fast inference (Meta)", "groq"),
)

DEFAULT_MODELS: dict[str, str] = {
    "gemini": "gemini-2.5-flash-lite",
    "groq": "llama-3.3-70b-versatile",
}


def find_model(model_id: str) -> ModelInfo | None:
    return next((m for m in AVAILABLE_MODELS if m.id == model_id), None)


class Settings(BaseSettings):
    """Environment-driven settings validated at startup."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    provider: ProviderName = Field(default="gemini", alias="PROVIDER")
    model_id: str = Field(default="", alias="MODEL_ID")

    gemini_api_key: str = Field(default="", alias="GEMINI_API_KEY")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_BASE_URL",
    )
    groq_api_key: str = Field(default="", alias="GROQ_API_KEY")
    groq_base_url: str = Field(default="https://api.groq.com/openai/v1", alias="GROQ_BASE_URL")
    tavily_api_key: str = Field(default="", alias="TAVILY_API_KEY")
    openweather_api_key: str = Field(default="", alias="OPENWEATHER_API_KEY")
    search_backend: Literal["tavily", "duckduckgo"] = Field(default="tavily", alias="SEARCH_BACKEND")

    system_prompt: str = Field(default="", alias="SYSTEM_PROMPT")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, alias="TEMPERATURE")
    top_p: float = Field(default=0.95, ge=0.0, le=1.0, alias="TOP_P")
    max_output_tokens: int = Field(default=8192, gt=0, alias="MAX_OUTPUT_TOKENS")

    max_tool_rounds: int = Field(default=5, gt=0, alias="MAX_TOOL_ROUNDS")
    provider_max_retries: int = Field(default=2, ge=0, alias="PROVIDER_MAX_RETRIES")
    provider_retry_base_seconds: float = Field(default=2.0, ge=0.0, alias="PROVIDER_RETRY_BASE_SECONDS")
    request_timeout_seconds: float = Field(default=60.0, alias="REQUEST_TIMEOUT_SECONDS")

    database_path: Path = Field(default=Path("toolchat.db"), alias="DATABASE_PATH")
    # Signed-in identity; when unset conversations live in memory only.
    user_id: str | None = Field(default=None, alias="USER_ID")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    def resolved_model_id(self) -> str:
        return self.model_id or DEFAULT_MODELS[self.provider]

    def sampling(self) -> SamplingParams:
        return SamplingParams(
            temperature=self.temperature,
            top_p=self.top_p,
            max_output_tokens=self.max_output_tokens,
        )

    def env_credentials(self) -> dict[str, str]:
        """Static fallback credentials keyed by credential name."""

        return {
            "gemini": self.gemini_api_key,
            "groq": self.groq_api_key,
            "tavily": self.tavily_api_key,
            "weather": self.openweather_api_key,
        }


def load_settings() -> Settings:
    """Load and validate settings."""

    return Settings()
