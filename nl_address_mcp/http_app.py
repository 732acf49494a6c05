"""
FastAPI application serving the SSE transport.

- MCP SSE transport mounted at / (``/sse`` and ``/messages/``)
- Healthcheck under /health
- Tool discovery under /discovery
- Prometheus metrics under /metrics
"""
from __future__ import annotations

import hashlib
import logging
from typing import Any

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from mcp.server.fastmcp import FastMCP

from .config import SSE_PATH
from .observability import InMemoryMetrics, format_metrics

logger = logging.getLogger("nl_address_mcp.http_app")


def _compute_tools_hash(tool_names: list[str]) -> str:
    """SHA256 of the sorted tool names, joined by newlines."""
    content = "\n".join(sorted(tool_names))
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def create_app(mcp: FastMCP, metrics: InMemoryMetrics) -> FastAPI:
    app = FastAPI(
        title=mcp.name,
        description="MCP server for Dutch address lookups",
        version="1.0.0",
    )

    @app.get("/health")
    async def health() -> dict[str, Any]:
        return {"ok": True, "status": "healthy"}

    @app.get("/metrics", response_class=PlainTextResponse)
    async def prometheus_metrics() -> PlainTextResponse:
        return PlainTextResponse(format_metrics(metrics), media_type="text/plain; version=0.0.4")

    @app.get("/discovery")
    async def discovery() -> dict[str, Any]:
        tools = await mcp.list_tools()
        tool_names = [tool.name for tool in tools]
        return {
            "version": "1.0",
            "server": mcp.name,
            "transport": "sse",
            "endpoint": SSE_PATH,
            "tools": [
                {
                    "name": tool.name,
                    "description": tool.description or "",
                    "inputSchema": tool.inputSchema,
                }
                for tool in sorted(tools, key=lambda t: t.name)
            ],
            "tool_count": len(tool_names),
            "tools_hash": _compute_tools_hash(tool_names),
        }

    # Routes above take precedence over the mount.
    app.mount("/", mcp.sse_app())
    logger.debug("Mounted MCP SSE app at /")
    return app
