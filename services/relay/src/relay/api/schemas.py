from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from relay.providers import GenerationOptions

MAX_PROMPT_CHARS = 10_000


class GenerationRequest(BaseModel):
    """Body of /generate and /stream. Out-of-range values are rejected, never clamped."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    prompt: str
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, le=8000, alias="maxTokens")
    provider: str | None = None
    json_mode: bool = Field(default=False, alias="jsonMode")

    @field_validator("prompt")
    @classmethod
    def sanitize_prompt(cls, value: str) -> str:
        value = value.replace("\x00", "").strip()
        if not value:
            raise ValueError("Prompt cannot be empty")
        if len(value) > MAX_PROMPT_CHARS:
            raise ValueError(
                f"Prompt is too long. Maximum length is {MAX_PROMPT_CHARS:,} characters."
            )
        return value

    @field_validator("model", "provider")
    @classmethod
    def blank_to_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None

    def options(self) -> GenerationOptions:
        defaults = GenerationOptions()
        return GenerationOptions(
            model=self.model,
            temperature=self.temperature if self.temperature is not None else defaults.temperature,
            max_tokens=self.max_tokens if self.max_tokens is not None else defaults.max_tokens,
            json_mode=self.json_mode,
        )


class GenerateResponse(BaseModel):
    content: str


class ErrorResponse(BaseModel):
    error: str
    violations: list[dict[str, Any]] | None = None


class ModelsResponse(BaseModel):
    models: list[str]
    provider: str
    default_model: str = Field(serialization_alias="defaultModel")
    supports_streaming: bool = Field(serialization_alias="supportsStreaming")
    providers: dict[str, dict[str, Any]] = Field(default_factory=dict)
