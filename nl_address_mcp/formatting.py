from __future__ import annotations

from decimal import Decimal

from .models import Address


def format_decimal(value: float) -> str:
    """Render a float in plain decimal notation: ``52.0`` -> ``52``, ``1e-05`` -> ``0.00001``."""
    text = format(Decimal(repr(float(value))), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_address(address: Address) -> str:
    """Render an address as an indented text block ending in a blank line."""
    lines = [
        f"  Street: {address.street}",
        f"  House Number: {address.full_house_number}",
        f"  Postal Code: {address.postal_code}",
        f"  City: {address.city}",
    ]

    if address.area != 0:
        lines.append(f"  Area: {address.area} m²")

    if address.usage_purposes:
        lines.append(f"  Usage Purposes: {', '.join(address.usage_purposes)}")

    if address.build_year != 0:
        lines.append(f"  Build Year: {address.build_year}")

    if address.has_wgs84:
        lines.append(
            f"  Coordinates (WGS84): {format_decimal(address.latitude)}, {format_decimal(address.longitude)}"
        )

    if address.has_grid:
        lines.append(f"  Coordinates (Dutch Grid): {address.x}, {address.y}")

    return "\n".join(lines) + "\n\n"
