from __future__ import annotations

import asyncio
from typing import List, Optional
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from .config import ServerSettings
from .formatting import format_decimal
from .models import Address, parse_addresses


class AddressServiceError(Exception):
    """Base exception for failed calls to the address service."""

    # Failure label used by the metrics; the base class covers transport failures.
    kind = "transport"


class UpstreamError(AddressServiceError):
    """The address service answered with a non-200 status."""

    kind = "upstream"

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"API returned status code {status_code}")


class DecodeError(AddressServiceError):
    """The response body does not match the address schema."""

    kind = "decode"


def normalize_postal_code(postal_code: str) -> str:
    return postal_code.replace(" ", "")


def _segment(value: str) -> str:
    return quote(value, safe="")


def postal_code_path(postal_code: str, house_number: Optional[str] = None, house_letter: Optional[str] = None) -> str:
    """Build ``/<postalCode>[/<houseNumber>[/<houseLetter>]]``; the postal code must already be normalized."""
    path = f"/{_segment(postal_code)}"
    if house_number:
        path += f"/{_segment(house_number)}"
        if house_letter:
            path += f"/{_segment(house_letter)}"
    return path


def coordinates_path(latitude: float, longitude: float) -> str:
    return f"/{format_decimal(latitude)}/{format_decimal(longitude)}"


def create_http_client(
    settings: ServerSettings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        base_url=settings.base_url,
        transport=transport,
        limits=httpx.Limits(
            max_connections=settings.max_connections,
            max_keepalive_connections=settings.max_keepalive_connections,
        ),
        timeout=httpx.Timeout(settings.request_timeout),
        headers={"accept": "application/json"},
        follow_redirects=False,
    )


class AddressServiceClient:
    """Client for the bagserv postal code service.

    Every request is bounded by ``timeout`` seconds; a tighter deadline or
    cancellation from the caller still applies.
    """

    def __init__(self, http_client: httpx.AsyncClient, timeout: float = 5.0) -> None:
        self.http_client = http_client
        self.timeout = timeout

    async def _get_addresses(self, path: str) -> List[Address]:
        try:
            response = await asyncio.wait_for(self.http_client.get(path), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            raise AddressServiceError(f"request timed out after {format_decimal(self.timeout)}s") from exc
        except httpx.HTTPError as exc:
            raise AddressServiceError(f"failed to make request: {exc}") from exc

        if response.status_code != 200:
            raise UpstreamError(response.status_code)

        try:
            return parse_addresses(response.content)
        except ValidationError as exc:
            first = exc.errors()[0]
            where = ".".join(str(part) for part in first["loc"])
            detail = f"{where}: {first['msg']}" if where else first["msg"]
            raise DecodeError(f"failed to parse JSON response: {detail}") from exc

    async def lookup_by_postal_code(
        self,
        postal_code: str,
        house_number: Optional[str] = None,
        house_letter: Optional[str] = None,
    ) -> List[Address]:
        postal_code = normalize_postal_code(postal_code)
        addresses = await self._get_addresses(postal_code_path(postal_code, house_number, house_letter))
        return [address.model_copy(update={"postal_code": postal_code}) for address in addresses]

    async def lookup_by_coordinates(self, latitude: float, longitude: float) -> Optional[Address]:
        addresses = await self._get_addresses(coordinates_path(latitude, longitude))
        if not addresses:
            return None
        return addresses[0]
