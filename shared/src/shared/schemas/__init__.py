"""Common DTOs and schemas."""
from shared.schemas.health import HealthResponse
from shared.schemas.principal import Principal

__all__ = ["HealthResponse", "Principal"]
