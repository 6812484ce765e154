"""Relay API routes."""
import asyncio
import json

import anyio
import pydantic
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from shared.cancellation import CancellationToken
from shared.errors import CancellationOutcome, ProviderError, ValidationError
from shared.events import encode_event
from shared.schemas import Principal

from relay.api.schemas import ErrorResponse, GenerateResponse, GenerationRequest, ModelsResponse
from relay.auth import require_principal
from relay.metrics import GENERATIONS
from relay.providers import ProviderRegistry
from relay.service import StreamSession

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["relay"])

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
DISCONNECT_POLL_SECONDS = 1.0
CANCELLED_STATUS = 499

AUTH_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    401: {"model": ErrorResponse, "description": "Missing, malformed or expired token"},
}
GENERATE_ERRORS = {
    **AUTH_ERRORS,
    408: {"model": ErrorResponse, "description": "Provider did not answer in time"},
    CANCELLED_STATUS: {"model": ErrorResponse, "description": "Caller went away"},
    502: {"model": ErrorResponse, "description": "Provider unreachable or misbehaving"},
}


def _violations(exc: pydantic.ValidationError) -> list[dict[str, str]]:
    out = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "body"
        out.append({"field": field, "message": err["msg"].removeprefix("Value error, ")})
    return out


async def parse_generation_request(
    request: Request,
    principal: Principal = Depends(require_principal),
) -> GenerationRequest:
    """Parse the body only once the caller is authenticated."""
    try:
        payload = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError.single("body", "Request body must be valid JSON") from e
    if not isinstance(payload, dict):
        raise ValidationError.single("body", "Request body must be a JSON object")
    try:
        return GenerationRequest.model_validate(payload)
    except pydantic.ValidationError as e:
        raise ValidationError(_violations(e)) from e


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


async def _watch_disconnect(request: Request, token: CancellationToken) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            token.cancel("client disconnected")
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


def _cancelled(provider: str, reason: str | None) -> JSONResponse:
    logger.debug("generate_cancelled", provider=provider, reason=reason)
    GENERATIONS.labels(provider=provider, outcome="cancelled").inc()
    return JSONResponse(status_code=CANCELLED_STATUS, content={"error": "Request cancelled"})


@router.post("/generate", response_model=GenerateResponse, responses=GENERATE_ERRORS)
async def generate(
    request: Request,
    body: GenerationRequest = Depends(parse_generation_request),
    registry: ProviderRegistry = Depends(get_registry),
):
    provider = registry.get(body.provider)
    settings = request.app.state.settings
    logger.info(
        "generate_request",
        provider=provider.name,
        model=body.model,
        prompt_chars=len(body.prompt),
    )

    token = CancellationToken()
    work = asyncio.ensure_future(provider.generate(body.prompt, body.options(), token))
    waiter = asyncio.ensure_future(token.wait())
    watcher = asyncio.ensure_future(_watch_disconnect(request, token))
    try:
        await asyncio.wait(
            {work, waiter},
            timeout=settings.buffered_timeout_seconds,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if not work.done():
            if token.cancelled:
                return _cancelled(provider.name, token.reason)
            token.cancel("timeout")
            logger.warning(
                "generate_timeout",
                provider=provider.name,
                timeout_seconds=settings.buffered_timeout_seconds,
            )
            GENERATIONS.labels(provider=provider.name, outcome="timeout").inc()
            return JSONResponse(status_code=408, content={"error": "Request timed out"})

        try:
            text = work.result()
        except CancellationOutcome as e:
            return _cancelled(provider.name, e.reason)
        except ProviderError as e:
            logger.error(
                "generate_provider_error",
                provider=provider.name,
                error_type=type(e).__name__,
                error=str(e),
            )
            GENERATIONS.labels(provider=provider.name, outcome="error").inc()
            raise
        except Exception as e:
            logger.exception("generate_unexpected_error", provider=provider.name)
            GENERATIONS.labels(provider=provider.name, outcome="error").inc()
            raise ProviderError(str(e)) from e
    finally:
        token.cancel("request finished")
        for task in (work, waiter, watcher):
            task.cancel()
        with anyio.CancelScope(shield=True):
            await asyncio.wait({work, waiter, watcher})

    GENERATIONS.labels(provider=provider.name, outcome="done").inc()
    return GenerateResponse(content=text)


@router.post("/stream", responses=AUTH_ERRORS)
async def stream(
    request: Request,
    body: GenerationRequest = Depends(parse_generation_request),
    registry: ProviderRegistry = Depends(get_registry),
) -> StreamingResponse:
    provider = registry.get(body.provider)
    settings = request.app.state.settings
    logger.info(
        "stream_request",
        provider=provider.name,
        model=body.model,
        prompt_chars=len(body.prompt),
    )
    session = StreamSession(
        provider,
        body.prompt,
        body.options(),
        heartbeat_interval=settings.heartbeat_interval_seconds,
        max_duration=settings.max_stream_duration_seconds,
        is_disconnected=request.is_disconnected,
    )

    async def event_stream():
        async for event in session.events():
            yield encode_event(event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/models", response_model=ModelsResponse)
async def models(registry: ProviderRegistry = Depends(get_registry)) -> ModelsResponse:
    provider = registry.default
    return ModelsResponse(
        models=provider.models,
        provider=provider.name,
        default_model=provider.default_model,
        supports_streaming=provider.supports_streaming,
        providers=registry.describe(),
    )
