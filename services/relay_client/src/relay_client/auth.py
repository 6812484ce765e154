"""Credential providers for the relay client."""
from typing import Protocol


class CredentialProvider(Protocol):
    async def get_token(self, force_refresh: bool = False) -> str | None:
        """Current bearer token; ``force_refresh`` asks the identity provider for a new one.

        Raises AuthenticationError when no signed-in identity is available.
        """
        ...


class StaticCredentials:
    """Fixed token, for service-to-service calls and scripts."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_token(self, force_refresh: bool = False) -> str | None:
        return self._token
