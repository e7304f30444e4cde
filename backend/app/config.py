import json
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any, List

from pydantic import AnyHttpUrl, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_REACTION_PALETTE = ["👍", "❤️", "😂", "🎉", "🤔", "👀", "🚀", "💯"]


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_name: str = Field(default="Murmur Thread Gateway", description="Human readable service name")
    environment: str = Field(default="development", description="Deployment environment name")
    debug: bool = Field(default=True, description="Enable debug mode")

    cors_origins: Annotated[List[AnyHttpUrl], NoDecode] = Field(
        default_factory=lambda: [
            "http://localhost",
            "http://localhost:3000",
            "http://127.0.0.1",
            "http://127.0.0.1:3000",
        ],
        description="List of allowed CORS origins",
    )

    chat_api_base_url: str = Field(
        default="http://localhost:5001/api",
        description="Base URL of the chat server REST API",
    )
    chat_api_token: str | None = Field(
        default=None,
        description="Fallback bearer token used when a view does not supply its own",
    )
    chat_api_timeout_seconds: float = Field(default=10.0, gt=0)
    chat_message_max_length: int = Field(default=2000, gt=0)

    realtime_backend: str = Field(
        default="local",
        description="Push source backend: local, redis or nats",
    )
    realtime_redis_url: str | None = Field(default=None)
    realtime_nats_url: str | None = Field(default=None)
    realtime_namespace: str = Field(default="murmur.realtime")
    realtime_node_id: str | None = Field(
        default=None,
        description="Identifier of this gateway instance on the broker",
    )

    reaction_palette: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_REACTION_PALETTE),
        description="Quick reaction emoji offered to clients",
    )

    model_config = SettingsConfigDict(
        env_file=str(Path(__file__).resolve().parents[2] / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, v):  # type: ignore[override]
        if v in (None, "", Ellipsis):
            return v
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        if isinstance(v, (list, tuple, set)):
            return list(v)
        return v

    @field_validator("realtime_backend", mode="before")
    @classmethod
    def normalize_backend(cls, value: Any) -> str:
        normalized = str(value or "local").strip().lower()
        if normalized not in {"local", "redis", "nats"}:
            raise ValueError(f"Unsupported realtime backend '{value}'")
        return normalized

    @field_validator("chat_api_base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.rstrip("/")
        return value

    @field_validator("reaction_palette", mode="before")
    @classmethod
    def parse_palette(cls, value: Any) -> list[str] | Any:
        if value in (None, "", Ellipsis):
            return list(DEFAULT_REACTION_PALETTE)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, (list, tuple)):
                    return [str(item) for item in parsed]
            except json.JSONDecodeError:
                return [item.strip() for item in value.split(",") if item.strip()]
            return [str(value)]
        if isinstance(value, (list, tuple)):
            return [str(item) for item in value]
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
