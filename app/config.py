"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_AI_MODELS: tuple[str, ...] = (
    "gemini-2.5-flash",
    "gemini-2.0-flash",
    "gemini-1.5-flash",
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="VaroLogs", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3001, alias="PORT")

    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_api_url: HttpUrl = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        alias="GEMINI_API_URL",
    )

    ai_models: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_AI_MODELS, alias="AI_MODELS"
    )
    ai_temperature: float = Field(default=0.3, alias="AI_TEMPERATURE", ge=0, le=2)
    ai_max_output_tokens: int = Field(
        default=500, alias="AI_MAX_OUTPUT_TOKENS", ge=16, le=8_192
    )
    ai_request_timeout: float = Field(
        default=20.0, alias="AI_REQUEST_TIMEOUT", gt=0, le=300
    )
    ai_persist_api_key: bool = Field(default=True, alias="AI_PERSIST_API_KEY")

    config_path: Path = Field(default=Path("./data/config.json"), alias="CONFIG_PATH")
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/varologs.db", alias="DATABASE_URL"
    )
    frontend_dist: Path | None = Field(default=None, alias="FRONTEND_DIST")

    openlibrary_api_url: HttpUrl = Field(
        default="https://openlibrary.org", alias="OPENLIBRARY_API_URL"
    )
    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("ai_models", mode="before")
    @classmethod
    def _parse_ai_models(cls, value: object) -> tuple[str, ...]:
        """Normalise the model cascade from environment values."""

        if value is None:
            return DEFAULT_AI_MODELS
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("AI_MODELS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if entry and entry not in cleaned:
                cleaned.append(entry)
        if not cleaned:
            return DEFAULT_AI_MODELS
        return tuple(cleaned)

    @field_validator("gemini_api_key", "tmdb_api_key", mode="before")
    @classmethod
    def _blank_key_is_missing(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
