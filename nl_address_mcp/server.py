from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from mcp.server.fastmcp import FastMCP

from .client import AddressServiceClient
from .config import ServerSettings
from .observability import InMemoryMetrics
from .tools.address_tools import register_address_tools


class StructuredFormatter(logging.Formatter):
    """JSON-line formatter that tolerates records without the structured fields."""

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "tool"):
            record.tool = ""
        if not hasattr(record, "duration_ms"):
            record.duration_ms = ""
        return super().format(record)


def setup_logger(settings: ServerSettings) -> logging.Logger:
    logger = logging.getLogger("nl_address_mcp")
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logger.setLevel(level)
    if logger.handlers:
        return logger
    # stderr only: stdout carries the stdio transport.
    handler = logging.StreamHandler()
    handler.setFormatter(StructuredFormatter(
        '{"ts":"%(asctime)s","level":"%(levelname)s","logger":"%(name)s","tool":"%(tool)s",'
        '"duration_ms":"%(duration_ms)s","msg":"%(message)s"}'
    ))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


@dataclass(frozen=True)
class AppContext:
    settings: ServerSettings
    addresses: AddressServiceClient
    logger: logging.Logger
    metrics: InMemoryMetrics


def build_server(
    settings: ServerSettings,
    http_client: httpx.AsyncClient,
    metrics: Optional[InMemoryMetrics] = None,
) -> FastMCP:
    """
    Create the MCP server with both address tools registered.

    The returned server shares one read-only AppContext across every
    session, whichever transport the session arrives on. The caller owns
    ``http_client`` and closes it after all transports have stopped.
    """
    logger = setup_logger(settings)
    app_ctx = AppContext(
        settings=settings,
        addresses=AddressServiceClient(http_client, timeout=settings.request_timeout),
        logger=logger,
        metrics=metrics or InMemoryMetrics(),
    )

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
        yield app_ctx

    server_kwargs: Dict[str, Any] = {}
    if settings.use_sse:
        host, port = settings.listen_host_port()
        server_kwargs.update(host=host or "0.0.0.0", port=port)

    mcp = FastMCP(settings.name, lifespan=lifespan, **server_kwargs)
    register_address_tools(mcp)
    return mcp
