"""Relay service configuration."""
from typing import Literal

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from shared.config import BaseAppSettings, split_csv

DEFAULT_OLLAMA_MODELS = (
    "llama3.1:8b-instruct,llama3.1:70b-instruct,mistral:7b-instruct,"
    "mixtral:8x7b-instruct,codellama:7b-instruct,qwen2:7b-instruct"
)
DEFAULT_GEMINI_MODELS = "gemini-1.5-flash-latest,gemini-1.5-pro-latest"


class RelaySettings(BaseAppSettings):
    model_config = SettingsConfigDict(env_prefix="RELAY_")

    host: str = "0.0.0.0"
    port: int = 8002
    provider: Literal["ollama", "gemini", "mock"] = "ollama"
    mock: bool = False

    ollama_url: str = "http://localhost:11434"
    ollama_api_key: str = ""
    ollama_default_model: str = "llama3.1:8b-instruct"
    ollama_models: str = DEFAULT_OLLAMA_MODELS
    stream_format: Literal["jsonl", "sse", "text"] = "jsonl"
    upstream_timeout_seconds: float = 120.0

    gemini_api_key: str = ""
    gemini_default_model: str = "gemini-1.5-flash-latest"
    gemini_models: str = DEFAULT_GEMINI_MODELS

    heartbeat_interval_seconds: float = Field(default=20.0, gt=0)
    max_stream_duration_seconds: float = Field(default=300.0, gt=0)
    buffered_timeout_seconds: float = Field(default=60.0, gt=0)

    auth_jwt_secret: str = ""
    auth_jwks_url: str = ""
    auth_audience: str = ""
    auth_issuer: str = ""
    auth_clock_skew_seconds: int = 300

    @property
    def ollama_model_list(self) -> list[str]:
        return split_csv(self.ollama_models)

    @property
    def gemini_model_list(self) -> list[str]:
        return split_csv(self.gemini_models)
