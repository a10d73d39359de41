from __future__ import annotations

import enum
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from dealeval.domain.listing import Address, Comparable, PropertyCondition, PropertyType


class ComparableType(str, enum.Enum):
    arv = "Arv"
    rental = "Rental"


class Property(BaseModel):
    id: int | None = None
    user_id: str

    property_type: PropertyType
    condition: PropertyCondition = PropertyCondition.outdated

    address: str
    city: str
    state: str
    zip_code: str

    price: int | None = Field(default=None, ge=0)
    sqft: int | None = Field(default=None, gt=0)
    bedrooms: int | None = Field(default=None, ge=0)
    bathrooms: int | None = Field(default=None, ge=0)
    lot_size_sqft: int | None = Field(default=None, gt=0)
    year_built: int | None = None

    latitude: float | None = None
    longitude: float | None = None

    created_at: datetime | None = None

    @field_validator("address", "city", "state", "zip_code")
    @classmethod
    def _strip(cls, v: str) -> str:
        return v.strip()

    def full_address(self) -> str:
        """Same shape the provider uses, so the subject can be excluded from its own comps."""
        return Address(self.address, self.city, self.state, self.zip_code).one_line()


class ComparableRecord(BaseModel):
    """A comparable as stored against a property."""
    id: int | None = None
    property_id: int | None = None

    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""

    price: int | None = None
    sqft: int | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    latitude: float | None = None
    longitude: float | None = None

    sale_date: datetime | None = None
    source: str = "Zillow"
    listing_url: str | None = None
    comparable_type: ComparableType = ComparableType.arv

    @classmethod
    def from_comparable(cls, comp: Comparable, property_id: int | None = None) -> "ComparableRecord":
        listing = comp.listing
        return cls(
            property_id=property_id,
            address=listing.address.street,
            city=listing.address.city,
            state=listing.address.state,
            zip_code=listing.address.zip_code,
            price=listing.price,
            sqft=listing.sqft,
            bedrooms=listing.bedrooms,
            bathrooms=listing.bathrooms,
            latitude=listing.latitude,
            longitude=listing.longitude,
            sale_date=listing.date_sold,
            listing_url=listing.detail_url,
        )
