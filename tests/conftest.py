from __future__ import annotations

import json
from typing import Any, List, Tuple, Union

import httpx
import pytest

BASE_URL = "https://bagserv.test"


def address_payload(**overrides: Any) -> dict:
    payload = {
        "straat": "Dorpsstraat",
        "huisnummer": 1,
        "huisletter": "A",
        "huistoevoeging": "",
        "woonplaats": "Amsterdam",
        "postcode": "9999ZZ",
        "oppervlakte": 85,
        "gebruiksdoelen": ["woonfunctie"],
        "bouwjaar": 1930,
        "num_status": "Naamgeving uitgegeven",
        "lat": 52.3731,
        "lon": 4.8922,
        "x": "121394.5",
        "y": "487245.2",
    }
    payload.update(overrides)
    return payload


class FakeAddressService:
    """Stand-in for the bagserv service; answers queued responses in order."""

    def __init__(self) -> None:
        self.requests: List[httpx.Request] = []
        self._responses: List[Union[Tuple[int, bytes], Exception]] = []

    def respond(self, status: int = 200, body: Any = None, raw: bytes | None = None) -> None:
        if raw is None:
            raw = json.dumps([] if body is None else body).encode("utf-8")
        self._responses.append((status, raw))

    def fail(self, exc: Exception) -> None:
        """Queue a transport failure instead of a response."""
        self._responses.append(exc)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        outcome = self._responses.pop(0) if self._responses else (200, b"[]")
        if isinstance(outcome, Exception):
            raise outcome
        status, raw = outcome
        return httpx.Response(status, content=raw, headers={"content-type": "application/json"})

    @property
    def paths(self) -> List[str]:
        return [request.url.path for request in self.requests]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def upstream() -> FakeAddressService:
    return FakeAddressService()


@pytest.fixture
def make_address():
    return address_payload
