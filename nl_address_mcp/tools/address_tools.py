"""
Address lookup tools backed by the bagserv postal code service.
"""
import time
from typing import Annotated, List, Optional

from mcp.server.fastmcp import Context, FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from ..client import AddressServiceError
from ..formatting import format_address

NO_ADDRESSES_FOUND = "No addresses found for the given postal code."
NO_ADDRESS_FOUND = "No address found for the given coordinates."


def _observe(app, tool_name: str, start: float, error: Optional[AddressServiceError] = None) -> None:
    duration_ms = (time.perf_counter() - start) * 1000.0
    failure = error.kind if error is not None else None
    app.metrics.record(tool_name, duration_ms, failure=failure)
    extra = {"tool": tool_name, "duration_ms": round(duration_ms, 2)}
    if error is None:
        app.logger.info("Tool call succeeded", extra=extra)
    else:
        app.logger.warning(f"Tool call failed ({failure}): {error}", extra=extra)


def register_address_tools(mcp: FastMCP) -> None:
    """Register ``lookup_by_postal_code`` and ``lookup_by_coordinates`` on ``mcp``."""

    @mcp.tool(
        name="lookup_by_postal_code",
        description="Look up Dutch addresses by postal code and optional house number and letter.",
    )
    async def lookup_by_postal_code(
        postalCode: Annotated[str, Field(description="Dutch postal code, e.g. 1234AB or 1234 AB.")],
        houseNumber: Annotated[Optional[str], Field(description="House number.")] = None,
        houseLetter: Annotated[
            Optional[str], Field(description="House letter, only used together with houseNumber.")
        ] = None,
        ctx: Context = None,
    ) -> List[str]:
        app = ctx.request_context.lifespan_context
        start = time.perf_counter()
        try:
            addresses = await app.addresses.lookup_by_postal_code(postalCode, houseNumber, houseLetter)
        except AddressServiceError as exc:
            _observe(app, "lookup_by_postal_code", start, exc)
            raise ToolError(f"Error looking up postal code: {exc}") from exc
        _observe(app, "lookup_by_postal_code", start)

        if not addresses:
            return [NO_ADDRESSES_FOUND]
        return [format_address(address) for address in addresses]

    @mcp.tool(
        name="lookup_by_coordinates",
        description="Look up the nearest Dutch address by WGS84 (GPS) coordinates.",
    )
    async def lookup_by_coordinates(
        latitude: Annotated[float, Field(description="WGS84 latitude in decimal degrees.")],
        longitude: Annotated[float, Field(description="WGS84 longitude in decimal degrees.")],
        ctx: Context = None,
    ) -> List[str]:
        app = ctx.request_context.lifespan_context
        start = time.perf_counter()
        try:
            address = await app.addresses.lookup_by_coordinates(latitude, longitude)
        except AddressServiceError as exc:
            _observe(app, "lookup_by_coordinates", start, exc)
            raise ToolError(f"Error looking up coordinates: {exc}") from exc
        _observe(app, "lookup_by_coordinates", start)

        if address is None:
            return [NO_ADDRESS_FOUND]
        return [format_address(address)]
