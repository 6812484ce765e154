"""Relay service entrypoint - authenticated gateway to text-generation providers."""
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_client import make_asgi_app

from shared.errors import RelayError, ValidationError
from shared.http_client import create_http_client
from shared.logging import configure_logging
from shared.middleware import RequestIdMiddleware
from shared.schemas import HealthResponse

from relay.api.routes import router
from relay.auth import create_token_verifier
from relay.config import RelaySettings
from relay.providers import build_registry

logger = structlog.get_logger(__name__)

_settings: RelaySettings | None = None


def get_settings() -> RelaySettings:
    global _settings
    if _settings is None:
        _settings = RelaySettings()
    return _settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: RelaySettings = app.state.settings
    http_client = create_http_client(timeout=settings.upstream_timeout_seconds)
    app.state.http_client = http_client
    app.state.registry = build_registry(settings, http_client)
    app.state.token_verifier = create_token_verifier(settings)
    if app.state.token_verifier is None:
        logger.warning("auth_not_configured")
    yield
    await app.state.registry.aclose()
    await http_client.aclose()


def create_app(settings: RelaySettings | None = None) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(json_logs=settings.json_logs, level=settings.log_level)
    app = FastAPI(title="Relay Service", version="0.1.0", lifespan=lifespan)
    app.state.settings = settings
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
        logger.info("request_rejected", path=request.url.path, violations=exc.violations)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.public_message, "violations": exc.violations},
        )

    @app.exception_handler(RelayError)
    async def _relay_error(request: Request, exc: RelayError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.public_message})

    app.include_router(router)

    metrics_app = make_asgi_app()
    app.mount("/metrics", metrics_app)

    @app.get("/healthz", response_model=HealthResponse)
    async def healthz() -> HealthResponse:
        return HealthResponse(status="ok", service="relay")

    @app.get("/readyz", response_model=HealthResponse)
    async def readyz(request: Request) -> HealthResponse:
        provider = request.app.state.registry.default
        if not await provider.health():
            return HealthResponse(status="unhealthy", service="relay", provider=provider.name)
        return HealthResponse(status="ok", service="relay", provider=provider.name)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    uvicorn.run(
        "relay.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )
