"""Error taxonomy shared by the relay and its client.

Every error carries a ``public_message`` that is safe to show to end users;
``str(error)`` may hold upstream detail and is meant for server-side logs only.
"""
from typing import Any


class RelayError(Exception):
    """Base class for relay errors."""

    status_code: int = 500
    public_message: str = "Failed to generate content. Please try again."

    def __init__(self, message: str | None = None, *, public_message: str | None = None) -> None:
        super().__init__(message or public_message or self.public_message)
        if public_message is not None:
            self.public_message = public_message


class AuthenticationError(RelayError):
    """Missing, invalid or expired credential."""

    status_code = 401
    public_message = "Invalid or expired token"

    def __init__(self, message: str | None = None, *, public_message: str | None = None) -> None:
        # Auth messages carry no upstream detail, so they are public by default.
        super().__init__(message, public_message=public_message or message)


class ValidationError(RelayError):
    """Malformed request shape or out-of-range value."""

    status_code = 400
    public_message = "Invalid request"

    def __init__(self, violations: list[dict[str, Any]]) -> None:
        self.violations = violations
        summary = "; ".join(f"{v.get('field')}: {v.get('message')}" for v in violations)
        super().__init__(summary or self.public_message, public_message=self.public_message)

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([{"field": field, "message": message}])


class ProviderError(RelayError):
    """Upstream generation failed."""

    status_code = 500


class ProviderConnectionError(ProviderError):
    """Upstream could not be reached."""

    status_code = 502
    public_message = "AI provider is temporarily unavailable. Please try again."


class ProviderProtocolError(ProviderError):
    """Upstream answered with something we cannot use."""


class CancellationOutcome(Exception):
    """Raised when work stops because its cancellation token fired.

    Not a failure: callers silence it instead of logging it as a fault.
    """

    def __init__(self, reason: str = "cancelled") -> None:
        super().__init__(reason)
        self.reason = reason


class FrameParseError(RelayError):
    """A single line of a stream could not be parsed."""

    def __init__(self, line: str, cause: str) -> None:
        super().__init__(f"{cause}: {line[:100]!r}")
        self.line = line
        self.cause = cause


class StreamTimeoutError(RelayError):
    """Stream exceeded its maximum duration."""

    status_code = 408
    public_message = "Stream timeout: maximum duration exceeded"


class RelayStreamError(RelayError):
    """The relay ended a stream with an error event."""


class ApiError(RelayError):
    """Relay answered a request with a non-success status."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message, public_message=message)
        self.status_code = status_code
