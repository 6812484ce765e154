"""Relay client configuration."""
from pydantic import Field
from pydantic_settings import SettingsConfigDict

from shared.config import BaseAppSettings


class RelayClientSettings(BaseAppSettings):
    model_config = SettingsConfigDict(env_prefix="RELAY_CLIENT_")

    base_url: str = "http://localhost:8002"
    timeout_seconds: float = Field(default=60.0, gt=0)
    stream_timeout_seconds: float = Field(default=300.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_base_seconds: float = Field(default=1.0, ge=0)
    streaming: bool = True
