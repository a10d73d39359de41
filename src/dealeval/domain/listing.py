# src/dealeval/domain/listing.py
from __future__ import annotations

import enum
import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from dealeval.domain.errors import ConfigurationError, InvalidInputError


class PropertyType(str, enum.Enum):
    single_family = "SingleFamily"
    multi_family = "MultiFamily"
    condo = "Condo"
    townhouse = "Townhouse"


class PropertyCondition(str, enum.Enum):
    excellent = "Excellent"
    minor_repairs = "MinorRepairs"
    outdated = "Outdated"
    bad = "Bad"
    horrible = "Horrible"


# ---------------------------------------------------------------------
# Provider vocabularies.
#
# Listings carry a `propertyType` string (SINGLE_FAMILY, ...), while the
# search endpoint filters on a `home_type` (Houses, Condos, ...). Both are
# kept as explicit tables and checked once at import.
# ---------------------------------------------------------------------
LISTING_TYPE_BY_PROPERTY_TYPE: dict[PropertyType, str] = {
    PropertyType.single_family: "SINGLE_FAMILY",
    PropertyType.multi_family: "MULTI_FAMILY",
    PropertyType.condo: "CONDO",
    PropertyType.townhouse: "TOWNHOUSE",
}

HOME_TYPE_BY_PROPERTY_TYPE: dict[PropertyType, str] = {
    PropertyType.single_family: "Houses",
    PropertyType.multi_family: "Multi-family",
    PropertyType.condo: "Condos",
    PropertyType.townhouse: "Townhomes",
}


def _invert(table: Mapping[PropertyType, str], name: str) -> dict[str, PropertyType]:
    missing = [pt for pt in PropertyType if pt not in table]
    if missing:
        raise ConfigurationError(f"{name} has no mapping for {[m.value for m in missing]}")

    inverse: dict[str, PropertyType] = {}
    for pt, provider_value in table.items():
        key = provider_value.casefold()
        if key in inverse:
            raise ConfigurationError(f"{name} maps '{provider_value}' more than once")
        inverse[key] = pt
    return inverse


PROPERTY_TYPE_BY_LISTING_TYPE = _invert(LISTING_TYPE_BY_PROPERTY_TYPE, "LISTING_TYPE_BY_PROPERTY_TYPE")
PROPERTY_TYPE_BY_HOME_TYPE = _invert(HOME_TYPE_BY_PROPERTY_TYPE, "HOME_TYPE_BY_PROPERTY_TYPE")


def to_listing_type(property_type: PropertyType) -> str:
    return LISTING_TYPE_BY_PROPERTY_TYPE[PropertyType(property_type)]


def to_home_type(property_type: PropertyType) -> str:
    return HOME_TYPE_BY_PROPERTY_TYPE[PropertyType(property_type)]


def from_listing_type(value: str) -> PropertyType | None:
    return PROPERTY_TYPE_BY_LISTING_TYPE.get(str(value or "").strip().casefold())


def from_home_type(value: str) -> PropertyType | None:
    return PROPERTY_TYPE_BY_HOME_TYPE.get(str(value or "").strip().casefold())


# ---------------------------------------------------------------------
# Address
# ---------------------------------------------------------------------
_STATE_ZIP = re.compile(r"([A-Z]{2})\s+(\d{5})")


@dataclass(frozen=True)
class Address:
    street: str
    city: str = ""
    state: str = ""
    zip_code: str = ""

    @classmethod
    def parse(cls, full: str | None) -> "Address":
        """
        Split the provider's combined form: "9218 Success Ave, Los Angeles, CA 90002".

        Anything that doesn't fit keeps the whole string as the street.
        """
        if not full or not full.strip():
            return cls(street="")

        parts = [p.strip() for p in full.split(",")]
        if len(parts) < 3:
            return cls(street=full.strip())

        m = _STATE_ZIP.search(parts[-1])
        if not m:
            return cls(street=full.strip())

        return cls(street=parts[0], city=parts[1], state=m.group(1), zip_code=m.group(2))

    def one_line(self) -> str:
        if not (self.city or self.state or self.zip_code):
            return self.street
        return f"{self.street}, {self.city}, {self.state} {self.zip_code}".strip()


# ---------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------
def _opt_float(v: Any) -> float | None:
    if v is None or v == "":
        return None
    try:
        f = float(v)
    except (TypeError, ValueError):
        return None
    # inf / nan never reach the domain
    return f if math.isfinite(f) else None


def _opt_int(v: Any, *, minimum: int) -> int | None:
    f = _opt_float(v)
    if f is None:
        return None
    i = int(f)
    return i if i >= minimum else None


def _opt_epoch_ms(v: Any) -> datetime | None:
    ms = _opt_float(v)
    if ms is None:
        return None
    try:
        return datetime.fromtimestamp(ms / 1000.0, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


@dataclass(frozen=True)
class Listing:
    listing_id: str
    property_type: str
    address: Address
    full_address: str = ""

    price: int | None = None
    sqft: int | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None

    latitude: float | None = None
    longitude: float | None = None

    detail_url: str | None = None
    date_sold: datetime | None = None
    listing_status: str | None = None

    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        if self.price is not None and self.price < 0:
            raise InvalidInputError("listing price must be non-negative")
        if self.sqft is not None and self.sqft <= 0:
            raise InvalidInputError("listing sqft must be positive")
        if self.bedrooms is not None and self.bedrooms < 0:
            raise InvalidInputError("listing bedrooms must be non-negative")
        if self.bathrooms is not None and self.bathrooms < 0:
            raise InvalidInputError("listing bathrooms must be non-negative")

    @property
    def has_price(self) -> bool:
        return self.price is not None and self.price > 0

    @classmethod
    def from_payload(cls, raw: Mapping[str, Any]) -> "Listing":
        """
        Map one entry of the provider's `props` array.

        Keys (propertyExtendedSearch):
          zpid, propertyType, address, price, livingArea, bedrooms, bathrooms,
          latitude, longitude, detailUrl, dateSold (epoch millis), listingStatus
        """
        full_address = str(raw.get("address") or "").strip()
        address = Address.parse(full_address)
        if not address.zip_code and raw.get("zipcode"):
            address = Address(
                street=address.street,
                city=str(raw.get("city") or ""),
                state=str(raw.get("state") or ""),
                zip_code=str(raw.get("zipcode")),
            )

        date_sold = _opt_epoch_ms(raw.get("dateSold"))

        baths = _opt_float(raw.get("bathrooms"))
        if baths is not None and baths < 0:
            baths = None

        return cls(
            listing_id=str(raw.get("zpid") or raw.get("id") or ""),
            property_type=str(raw.get("propertyType") or ""),
            address=address,
            full_address=full_address,
            price=_opt_int(raw.get("price"), minimum=0),
            sqft=_opt_int(raw.get("livingArea"), minimum=1),
            bedrooms=_opt_int(raw.get("bedrooms"), minimum=0),
            bathrooms=baths,
            latitude=_opt_float(raw.get("latitude")),
            longitude=_opt_float(raw.get("longitude")),
            detail_url=raw.get("detailUrl") or None,
            date_sold=date_sold,
            listing_status=raw.get("listingStatus") or None,
            raw=dict(raw),
        )


def parse_listings(payload: list[Mapping[str, Any]] | None) -> list[Listing]:
    return [Listing.from_payload(item) for item in (payload or []) if isinstance(item, Mapping)]


@dataclass(frozen=True)
class Comparable:
    """A listing selected as a match for a subject, with its sqft distance."""
    listing: Listing
    sqft_distance: int | None
    tier: str
