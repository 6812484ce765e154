"""Tests for GeminiProvider against a stubbed SDK client."""
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from google.genai import errors as genai_errors

from shared.cancellation import CancellationToken
from shared.errors import CancellationOutcome, ProviderConnectionError, ProviderProtocolError

from relay.providers import GeminiProvider, GenerationOptions

MODELS = ["gemini-1.5-flash-latest", "gemini-1.5-pro-latest"]


def _sdk_client() -> MagicMock:
    client = MagicMock()
    client.aio.models.generate_content = AsyncMock()
    client.aio.models.generate_content_stream = AsyncMock()
    return client


def _provider(client: MagicMock) -> GeminiProvider:
    return GeminiProvider(client, models=MODELS, default_model=MODELS[0])


def _stream(*texts: str):
    async def chunks():
        for text in texts:
            yield MagicMock(text=text)

    return chunks()


@pytest.mark.asyncio
async def test_generate_passes_model_and_config() -> None:
    client = _sdk_client()
    client.aio.models.generate_content.return_value = MagicMock(text="Hello")

    text = await _provider(client).generate(
        "Say hi",
        GenerationOptions(model=MODELS[1], temperature=0.2, max_tokens=64, json_mode=True),
    )

    assert text == "Hello"
    kwargs = client.aio.models.generate_content.await_args.kwargs
    assert kwargs["model"] == MODELS[1]
    assert kwargs["contents"] == "Say hi"
    assert kwargs["config"].temperature == 0.2
    assert kwargs["config"].max_output_tokens == 64
    assert kwargs["config"].response_mime_type == "application/json"


@pytest.mark.asyncio
async def test_unknown_model_uses_default() -> None:
    client = _sdk_client()
    client.aio.models.generate_content.return_value = MagicMock(text="ok")
    await _provider(client).generate("hi", GenerationOptions(model="gemini-ultra-9000"))
    assert client.aio.models.generate_content.await_args.kwargs["model"] == MODELS[0]


@pytest.mark.asyncio
async def test_stream_yields_non_empty_fragments() -> None:
    client = _sdk_client()
    client.aio.models.generate_content_stream.return_value = _stream("He", "", "llo")

    fragments = [f async for f in _provider(client).generate_stream("Say hi", GenerationOptions())]

    assert fragments == ["He", "llo"]


@pytest.mark.asyncio
async def test_stream_observes_token_per_fragment() -> None:
    client = _sdk_client()
    client.aio.models.generate_content_stream.return_value = _stream("a", "b", "c")
    token = CancellationToken()
    received = []

    with pytest.raises(CancellationOutcome):
        async for fragment in _provider(client).generate_stream("x", GenerationOptions(), token):
            received.append(fragment)
            token.cancel("client disconnected")

    assert received == ["a"]


@pytest.mark.asyncio
async def test_api_error_becomes_protocol_error() -> None:
    client = _sdk_client()
    client.aio.models.generate_content.side_effect = genai_errors.APIError(
        500, {"error": {"code": 500, "message": "backend exploded", "status": "INTERNAL"}}
    )
    with pytest.raises(ProviderProtocolError) as exc_info:
        await _provider(client).generate("hi", GenerationOptions())
    assert "500" in str(exc_info.value)


@pytest.mark.asyncio
async def test_network_error_becomes_connection_error() -> None:
    client = _sdk_client()
    client.aio.models.generate_content_stream.side_effect = httpx.ConnectError("refused")
    with pytest.raises(ProviderConnectionError):
        async for _ in _provider(client).generate_stream("hi", GenerationOptions()):
            pass
