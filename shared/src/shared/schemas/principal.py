"""Authenticated caller attached to a request."""
from typing import Any

from pydantic import BaseModel, Field


class Principal(BaseModel):
    """Identity resolved from a verified bearer token. Lives for one request."""

    uid: str
    email: str | None = None
    email_verified: bool = False
    claims: dict[str, Any] = Field(default_factory=dict)
