from __future__ import annotations

from typing import Any, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationInfo, field_validator


class Address(BaseModel):
    """One resolved Dutch address as returned by the bagserv service.

    Zero and empty values mean "absent". ``latitude``/``longitude`` of
    ``0, 0`` is treated as "no WGS84 coordinates".
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    street: str = Field(alias="straat")
    house_number: int = Field(alias="huisnummer")
    house_letter: str = Field(default="", alias="huisletter")
    house_suffix: str = Field(default="", alias="huistoevoeging")
    city: str = Field(alias="woonplaats")
    postal_code: str = Field(default="", alias="postcode")
    area: int = Field(default=0, alias="oppervlakte")
    usage_purposes: Tuple[str, ...] = Field(default=(), alias="gebruiksdoelen")
    build_year: int = Field(default=0, alias="bouwjaar")
    number_status: str = Field(default="", alias="num_status")
    latitude: float = Field(default=0.0, alias="lat")
    longitude: float = Field(default=0.0, alias="lon")
    x: str = ""
    y: str = ""

    @field_validator(
        "house_letter",
        "house_suffix",
        "postal_code",
        "area",
        "usage_purposes",
        "build_year",
        "number_status",
        "latitude",
        "longitude",
        "x",
        "y",
        mode="before",
    )
    @classmethod
    def _null_is_absent(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @property
    def full_house_number(self) -> str:
        number = f"{self.house_number}{self.house_letter}"
        if self.house_suffix:
            number += f"-{self.house_suffix}"
        return number

    @property
    def has_wgs84(self) -> bool:
        return self.latitude != 0 and self.longitude != 0

    @property
    def has_grid(self) -> bool:
        return bool(self.x) and bool(self.y)


_ADDRESS_LIST = TypeAdapter(List[Address])


def parse_addresses(body: bytes) -> List[Address]:
    """Decode a JSON array of address objects.

    Raises ``pydantic.ValidationError`` when the body is not JSON or does not
    match the address schema.
    """
    return _ADDRESS_LIST.validate_json(body)
