"""
Main entry point for the MCP server.

Runs the stdio transport and/or the SSE transport (FastAPI under uvicorn)
against one FastMCP server. The first Ctrl+C starts a bounded graceful
shutdown; a second one kills the process.
"""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import math
import os
import signal
import socket
import sys
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Set

import uvicorn
from mcp.server.fastmcp import FastMCP

from .client import create_http_client
from .config import ConfigError, ServerSettings, load_config, sse_endpoint
from .http_app import create_app
from .observability import InMemoryMetrics
from .server import build_server, setup_logger

logger = logging.getLogger("nl_address_mcp")


class TransportError(Exception):
    """A transport failed for a reason other than intentional shutdown."""


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the bootstrap."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="nl-address-mcp",
        description="MCP server for Dutch address lookups by postal code or coordinates.",
    )
    parser.add_argument("--config", type=Path, default=None, help="YAML config file")
    parser.add_argument("--http", dest="http_addr", default=None, help="Listen address for the SSE transport (default :8080)")
    parser.add_argument(
        "--stdio",
        dest="use_stdio",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable stdio transport (default on)",
    )
    parser.add_argument(
        "--sse",
        dest="use_sse",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Enable SSE transport (default off)",
    )
    parser.add_argument("--base-url", dest="base_url", default=None, help="Base URL of the address service")
    parser.add_argument("--log-level", dest="log_level", default=None, help="Log level (default INFO)")
    return parser.parse_args(argv)


def resolve_settings(args: argparse.Namespace) -> ServerSettings:
    settings = ServerSettings()
    if args.config is not None:
        settings = ServerSettings.from_config(load_config(args.config))
    settings = settings.with_overrides(
        http_addr=args.http_addr,
        use_stdio=args.use_stdio,
        use_sse=args.use_sse,
        base_url=args.base_url,
        log_level=args.log_level,
    )
    if settings.use_sse:
        # Fail before any transport starts.
        settings.listen_host_port()
    return settings


def _bind_socket(host: str, port: int) -> socket.socket:
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    try:
        return socket.create_server((host, port), family=family)
    except OSError as exc:
        raise TransportError(f"Failed to listen on {host or '*'}:{port}: {exc}") from exc


async def _serve_stdio(mcp: FastMCP) -> None:
    try:
        await mcp.run_stdio_async()
    except Exception as exc:
        raise TransportError(f"stdio transport error: {exc}") from exc


async def _serve_http(server: uvicorn.Server, sock: socket.socket) -> None:
    try:
        await server.serve(sockets=[sock])
    except OSError as exc:
        raise TransportError(f"HTTP server error: {exc}") from exc
    # uvicorn returns normally when the app's lifespan startup fails.
    if not server.started:
        raise TransportError("HTTP server failed to start")
    if not server.should_exit:
        raise TransportError("HTTP server stopped unexpectedly")


def _install_interrupt_handler(loop: asyncio.AbstractEventLoop, interrupted: asyncio.Event) -> None:
    def on_interrupt() -> None:
        # Restore the default disposition, allowing "force quit".
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.remove_signal_handler(signal.SIGINT)
        signal.signal(signal.SIGINT, signal.SIG_DFL)
        interrupted.set()

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
    except NotImplementedError:
        signal.signal(signal.SIGINT, lambda signum, frame: loop.call_soon_threadsafe(on_interrupt))


async def serve(settings: ServerSettings) -> None:
    metrics = InMemoryMetrics()

    async with create_http_client(settings) as http_client:
        # Tools are registered here, before any transport accepts requests.
        mcp = build_server(settings, http_client, metrics=metrics)

        loop = asyncio.get_running_loop()
        interrupted = asyncio.Event()
        _install_interrupt_handler(loop, interrupted)
        try:
            await _run_transports(settings, mcp, metrics, interrupted)
        finally:
            if not interrupted.is_set():
                with contextlib.suppress(NotImplementedError, RuntimeError):
                    loop.remove_signal_handler(signal.SIGINT)


async def _run_transports(
    settings: ServerSettings,
    mcp: FastMCP,
    metrics: InMemoryMetrics,
    interrupted: asyncio.Event,
) -> None:
    transports: List[str] = []
    stdio_task: Optional[asyncio.Task] = None
    http_server: Optional[uvicorn.Server] = None
    http_task: Optional[asyncio.Task] = None

    try:
        if settings.use_stdio:
            transports.append("stdio")
            stdio_task = asyncio.create_task(_serve_stdio(mcp), name="stdio")

        if settings.use_sse:
            transports.append("sse")
            host, port = settings.listen_host_port()
            sock = _bind_socket(host, port)
            http_server = _EmbeddedServer(uvicorn.Config(
                create_app(mcp, metrics),
                # uvicorn's default config logs access lines to stdout, which stdio owns.
                log_config=None,
                log_level=settings.log_level.lower(),
                # Never shorter than our own deadline below.
                timeout_graceful_shutdown=math.ceil(settings.shutdown_timeout),
                server_header=False,
            ))
            http_task = asyncio.create_task(_serve_http(http_server, sock), name="sse")

        logger.info(f"MCP server started, using transports: {transports}")
        if settings.use_sse:
            logger.info(f"SSE transport endpoint: {sse_endpoint(settings)}")

        done = await _wait_first(interrupted, stdio_task, http_task)
        if http_task in done:
            # Any exit of the HTTP transport before shutdown is fatal.
            http_task.result()
        if stdio_task in done:
            stdio_task.result()
            if http_task is None:
                logger.info("stdio input closed")
            else:
                logger.info("stdio input closed, SSE transport keeps running")
                if http_task in await _wait_first(interrupted, http_task):
                    http_task.result()

        logger.info(
            f"Shutting down server (waiting {settings.shutdown_timeout:g}s)... Press Ctrl+C to force quit."
        )

        if http_server is not None and http_task is not None:
            http_server.should_exit = True
            try:
                await asyncio.wait_for(asyncio.shield(http_task), timeout=settings.shutdown_timeout)
            except asyncio.TimeoutError:
                # Deadline exceeded is not a shutdown failure.
                logger.debug("HTTP server shutdown deadline exceeded")
                await _cancel(http_task)
            except TransportError as exc:
                logger.error(f"HTTP server shutdown error: {exc}")
    finally:
        # stdio ends with the process; its reader thread cannot be interrupted.
        if stdio_task is not None:
            stdio_task.cancel()
        if http_task is not None and not http_task.done():
            await _cancel(http_task)


async def _wait_first(interrupted: asyncio.Event, *tasks: Optional[asyncio.Task]) -> Set[asyncio.Task]:
    waiter = asyncio.create_task(interrupted.wait(), name="interrupt")
    done, _ = await asyncio.wait(
        {waiter, *(task for task in tasks if task is not None)},
        return_when=asyncio.FIRST_COMPLETED,
    )
    if not waiter.done():
        await _cancel(waiter)
    return done


async def _cancel(task: asyncio.Task) -> None:
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Start the MCP server with the configured transports."""
    try:
        settings = resolve_settings(parse_args(argv))
    except ConfigError as exc:
        setup_logger(ServerSettings()).critical(str(exc))
        sys.exit(1)

    setup_logger(settings)
    code = 0
    loop = asyncio.new_event_loop()
    try:
        loop.run_until_complete(serve(settings))
    except (ConfigError, TransportError) as exc:
        logger.critical(str(exc))
        code = 1

    if settings.use_stdio:
        # Skip loop teardown: it would wait on the blocked stdin reader.
        logging.shutdown()
        sys.stderr.flush()
        os._exit(code)

    loop.run_until_complete(loop.shutdown_asyncgens())
    loop.close()
    sys.exit(code)


if __name__ == "__main__":
    main()
