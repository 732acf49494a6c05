"""
Tests for transport bootstrap and shutdown.

These run the SSE transport on a real loopback socket and deliver SIGINT
to the test process.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import socket
from typing import Iterator, List

import httpx
import pytest
import uvicorn
from fastapi import FastAPI

from nl_address_mcp import main as main_module
from nl_address_mcp.config import ServerSettings
from nl_address_mcp.main import TransportError, _bind_socket, _EmbeddedServer, _serve_http, serve


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: List[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)

    def messages(self, level: int = logging.DEBUG) -> List[str]:
        return [record.getMessage() for record in self.records if record.levelno >= level]


@pytest.fixture
def server_log() -> Iterator[_ListHandler]:
    handler = _ListHandler()
    logger = logging.getLogger("nl_address_mcp")
    logger.addHandler(handler)
    yield handler
    logger.removeHandler(handler)


@pytest.fixture
def restore_sigint() -> Iterator[None]:
    previous = signal.getsignal(signal.SIGINT)
    yield
    signal.signal(signal.SIGINT, previous)


@pytest.fixture
def bound_sockets(monkeypatch) -> List[socket.socket]:
    sockets: List[socket.socket] = []

    def recording_bind(host: str, port: int) -> socket.socket:
        sock = _bind_socket(host, port)
        sockets.append(sock)
        return sock

    monkeypatch.setattr(main_module, "_bind_socket", recording_bind)
    return sockets


def _sse_settings(**overrides) -> ServerSettings:
    values = dict(
        base_url="https://bagserv.test",
        use_stdio=False,
        use_sse=True,
        http_addr="127.0.0.1:0",
        shutdown_timeout=2.0,
    )
    values.update(overrides)
    return ServerSettings(**values)


async def _wait_until_serving(sockets: List[socket.socket]) -> str:
    """Poll /health until uvicorn answers; returns the base URL."""
    for _ in range(200):
        if sockets:
            port = sockets[0].getsockname()[1]
            base_url = f"http://127.0.0.1:{port}"
            try:
                async with httpx.AsyncClient(base_url=base_url) as client:
                    if (await client.get("/health")).status_code == 200:
                        return base_url
            except httpx.TransportError:
                pass
        await asyncio.sleep(0.05)
    raise AssertionError("SSE transport did not come up")


def test_port_in_use_is_transport_error() -> None:
    with socket.create_server(("127.0.0.1", 0)) as taken:
        port = taken.getsockname()[1]
        with pytest.raises(TransportError, match="Failed to listen on 127.0.0.1"):
            _bind_socket("127.0.0.1", port)


@pytest.mark.asyncio
async def test_serve_fails_when_port_in_use(restore_sigint) -> None:
    with socket.create_server(("127.0.0.1", 0)) as taken:
        port = taken.getsockname()[1]
        with pytest.raises(TransportError, match="Failed to listen"):
            await serve(_sse_settings(http_addr=f"127.0.0.1:{port}"))

    # The interrupt handler does not outlive a failed start.
    assert signal.getsignal(signal.SIGINT) is signal.default_int_handler


def test_main_exits_with_code_1_when_port_in_use(restore_sigint) -> None:
    with socket.create_server(("127.0.0.1", 0)) as taken:
        port = taken.getsockname()[1]
        with pytest.raises(SystemExit) as excinfo:
            main_module.main(["--no-stdio", "--sse", "--http", f"127.0.0.1:{port}"])

    assert excinfo.value.code == 1


@pytest.mark.asyncio
async def test_startup_failure_is_transport_error() -> None:
    @contextlib.asynccontextmanager
    async def failing_lifespan(app: FastAPI):
        raise RuntimeError("cannot start")
        yield

    sock = _bind_socket("127.0.0.1", 0)
    server = _EmbeddedServer(uvicorn.Config(FastAPI(lifespan=failing_lifespan), log_config=None, lifespan="on"))
    try:
        with pytest.raises(TransportError, match="failed to start"):
            await _serve_http(server, sock)
    finally:
        sock.close()


@pytest.mark.asyncio
async def test_interrupt_drains_sse_and_restores_default_handler(
    server_log, restore_sigint, bound_sockets
) -> None:
    task = asyncio.create_task(serve(_sse_settings()))
    await _wait_until_serving(bound_sockets)

    os.kill(os.getpid(), signal.SIGINT)
    await asyncio.wait_for(task, timeout=5.0)

    assert task.exception() is None
    # A second Ctrl+C now kills the process.
    assert signal.getsignal(signal.SIGINT) is signal.SIG_DFL

    messages = server_log.messages(logging.INFO)
    assert "MCP server started, using transports: ['sse']" in messages
    assert "SSE transport endpoint: http://127.0.0.1:0/sse" in messages
    assert "Shutting down server (waiting 2s)... Press Ctrl+C to force quit." in messages
    assert server_log.messages(logging.ERROR) == []


@pytest.mark.asyncio
async def test_shutdown_deadline_with_request_in_flight_is_not_an_error(
    server_log, restore_sigint, bound_sockets, monkeypatch
) -> None:
    entered = asyncio.Event()
    release = asyncio.Event()
    real_create_app = main_module.create_app

    def create_app_with_slow_route(mcp, metrics) -> FastAPI:
        app = real_create_app(mcp, metrics)

        async def slow() -> dict:
            entered.set()
            await release.wait()
            return {}

        app.add_api_route("/slow", slow)
        # Ahead of the SSE mount at "/".
        app.router.routes.insert(0, app.router.routes.pop())
        return app

    monkeypatch.setattr(main_module, "create_app", create_app_with_slow_route)

    task = asyncio.create_task(serve(_sse_settings(shutdown_timeout=0.2, log_level="DEBUG")))
    base_url = await _wait_until_serving(bound_sockets)

    client = httpx.AsyncClient(base_url=base_url, timeout=10.0)
    request = asyncio.create_task(client.get("/slow"))
    try:
        await asyncio.wait_for(entered.wait(), timeout=5.0)

        os.kill(os.getpid(), signal.SIGINT)
        await asyncio.wait_for(task, timeout=5.0)
    finally:
        release.set()
        request.cancel()
        with contextlib.suppress(asyncio.CancelledError, httpx.HTTPError):
            await request
        await client.aclose()

    assert task.exception() is None
    assert "HTTP server shutdown deadline exceeded" in server_log.messages(logging.DEBUG)
    assert server_log.messages(logging.ERROR) == []
