"""Bearer-token authentication for relay routes.

Verification is delegated to a ``TokenVerifier``; the relay never stores
credentials. The resolved ``Principal`` is attached to ``request.state``.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any

import jwt
import structlog
from fastapi import Request

from shared.errors import AuthenticationError
from shared.schemas import Principal

from relay.config import RelaySettings

logger = structlog.get_logger(__name__)

BEARER_PREFIX = "Bearer "


class TokenVerifier(ABC):
    @abstractmethod
    async def verify(self, token: str) -> Principal:
        """Return the principal for a valid token or raise AuthenticationError."""
        ...


class JWTTokenVerifier(TokenVerifier):
    """Verify ID tokens: HS256 with a shared secret, or RS256/ES256 via a JWKS endpoint."""

    def __init__(
        self,
        *,
        secret: str = "",
        jwks_url: str = "",
        audience: str = "",
        issuer: str = "",
        leeway_seconds: int = 300,
    ) -> None:
        if not secret and not jwks_url:
            raise ValueError("JWTTokenVerifier needs a secret or a JWKS URL")
        self._secret = secret
        self._jwks = jwt.PyJWKClient(jwks_url, cache_keys=True) if jwks_url else None
        self._audience = audience or None
        self._issuer = issuer or None
        self._leeway = leeway_seconds

    def _decode(self, token: str) -> dict[str, Any]:
        header = jwt.get_unverified_header(token)
        alg = header.get("alg", "HS256")
        options = {"verify_aud": self._audience is not None, "require": ["exp", "sub"]}
        if alg == "HS256" and self._secret:
            key: Any = self._secret
        elif alg in ("RS256", "ES256") and self._jwks is not None:
            key = self._jwks.get_signing_key_from_jwt(token).key
        else:
            raise jwt.InvalidAlgorithmError(f"unsupported token algorithm {alg}")
        return jwt.decode(
            token,
            key,
            algorithms=[alg],
            audience=self._audience,
            issuer=self._issuer,
            leeway=self._leeway,
            options=options,
        )

    async def verify(self, token: str) -> Principal:
        try:
            # JWKS lookups use blocking urllib
            claims = await asyncio.to_thread(self._decode, token)
        except jwt.ExpiredSignatureError as e:
            logger.warning("token_expired", error=str(e))
            raise AuthenticationError("Token expired or revoked. Please sign in again.") from e
        except jwt.InvalidSignatureError as e:
            logger.warning("token_bad_signature")
            raise AuthenticationError("Invalid or expired token") from e
        except jwt.DecodeError as e:
            logger.warning("token_malformed", error=str(e))
            raise AuthenticationError("Invalid token format") from e
        except jwt.PyJWTError as e:
            logger.warning("token_invalid", error=type(e).__name__)
            raise AuthenticationError("Invalid or expired token") from e
        return Principal(
            uid=str(claims.get("user_id") or claims["sub"]),
            email=claims.get("email"),
            email_verified=bool(claims.get("email_verified", False)),
            claims=claims,
        )


def create_token_verifier(settings: RelaySettings) -> TokenVerifier | None:
    if not settings.auth_jwt_secret and not settings.auth_jwks_url:
        return None
    return JWTTokenVerifier(
        secret=settings.auth_jwt_secret,
        jwks_url=settings.auth_jwks_url,
        audience=settings.auth_audience,
        issuer=settings.auth_issuer,
        leeway_seconds=settings.auth_clock_skew_seconds,
    )


def extract_bearer(request: Request) -> str:
    header = request.headers.get("authorization", "")
    if not header.startswith(BEARER_PREFIX) or not header[len(BEARER_PREFIX):].strip():
        raise AuthenticationError("No authorization token provided")
    return header[len(BEARER_PREFIX):].strip()


async def require_principal(request: Request) -> Principal:
    """FastAPI dependency: authenticate the caller before anything else runs."""
    token = extract_bearer(request)
    verifier: TokenVerifier | None = getattr(request.app.state, "token_verifier", None)
    if verifier is None:
        logger.error("token_verifier_not_configured")
        raise AuthenticationError("Authentication is not available")
    principal = await verifier.verify(token)
    request.state.principal = principal
    structlog.contextvars.bind_contextvars(uid=principal.uid)
    return principal
