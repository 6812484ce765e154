"""Disconnect handling with the relay behind a real HTTP server and a real upstream socket."""
import asyncio
import json
import time
from contextlib import asynccontextmanager

import httpx
import jwt
import pytest
import uvicorn

from relay.config import RelaySettings
from relay.main import create_app

SECRET = "relay-server-test-secret-long-enough!"
MAX_LINES = 200


class EndlessUpstream:
    """Ollama-shaped upstream that writes one NDJSON line per interval until the peer goes away."""

    def __init__(self, interval: float = 0.05) -> None:
        self.interval = interval
        self.lines_sent = 0
        self.peer_closed = asyncio.Event()
        self.port = 0
        self._server: asyncio.base_events.Server | None = None

    async def __aenter__(self) -> "EndlessUpstream":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc_info) -> None:
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        head = await reader.readuntil(b"\r\n\r\n")
        length = 0
        for line in head.split(b"\r\n"):
            name, _, value = line.partition(b":")
            if name.strip().lower() == b"content-length":
                length = int(value)
        await reader.readexactly(length)
        writer.write(
            b"HTTP/1.1 200 OK\r\n"
            b"Content-Type: application/x-ndjson\r\n"
            b"Transfer-Encoding: chunked\r\n\r\n"
        )
        eof = asyncio.ensure_future(reader.read())
        try:
            while not eof.done() and self.lines_sent < MAX_LINES:
                line = json.dumps({"response": f"w{self.lines_sent} ", "done": False}).encode() + b"\n"
                writer.write(b"%x\r\n%s\r\n" % (len(line), line))
                await writer.drain()
                self.lines_sent += 1
                await asyncio.wait({eof}, timeout=self.interval)
            if eof.done():
                self.peer_closed.set()
        except ConnectionError:
            self.peer_closed.set()
        finally:
            eof.cancel()
            writer.close()


@asynccontextmanager
async def _serve(app):
    config = uvicorn.Config(
        app,
        host="127.0.0.1",
        port=0,
        lifespan="on",
        log_level="warning",
        timeout_graceful_shutdown=2,
    )
    server = uvicorn.Server(config)
    task = asyncio.ensure_future(server.serve())
    while not server.started:
        if task.done():
            task.result()
        await asyncio.sleep(0.01)
    port = server.servers[0].sockets[0].getsockname()[1]
    try:
        yield f"http://127.0.0.1:{port}"
    finally:
        server.should_exit = True
        await task


def _bearer() -> dict[str, str]:
    now = int(time.time())
    token = jwt.encode({"sub": "user-1", "iat": now, "exp": now + 600}, SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.mark.asyncio
async def test_client_disconnect_closes_upstream_connection() -> None:
    async with EndlessUpstream() as upstream:
        settings = RelaySettings(
            json_logs=False,
            provider="ollama",
            ollama_url=f"http://127.0.0.1:{upstream.port}",
            auth_jwt_secret=SECRET,
        )
        async with _serve(create_app(settings)) as base_url:
            async with httpx.AsyncClient(base_url=base_url, timeout=5.0) as client:
                received = 0
                async with client.stream(
                    "POST", "/stream", json={"prompt": "count forever"}, headers=_bearer()
                ) as resp:
                    assert resp.status_code == 200
                    async for line in resp.aiter_lines():
                        if line.startswith("data: "):
                            received += 1
                            if received == 3:
                                break

            await asyncio.wait_for(upstream.peer_closed.wait(), timeout=3.0)
            sent_at_close = upstream.lines_sent
            await asyncio.sleep(0.3)

    assert received == 3
    assert upstream.lines_sent == sent_at_close
    assert sent_at_close < MAX_LINES
