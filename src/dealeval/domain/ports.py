# src/dealeval/domain/ports.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol, Sequence

from dealeval.domain.evaluation import Evaluation
from dealeval.domain.property import ComparableRecord, Property
from dealeval.domain.rehab import RehabCondition, RehabLineItemType
from dealeval.domain.settings import DealSettings, Lender


# ----------------------------
# Listings provider
# ----------------------------

@dataclass(frozen=True)
class SearchCriteria:
    location: str
    home_type: str
    status_type: str = "RecentlySold"   # ForSale | RecentlySold | ForRent
    sort: str = "Newest"
    beds_min: int | None = None
    beds_max: int | None = None
    baths_min: int | None = None
    baths_max: int | None = None
    sold_in_last: str | None = None     # e.g. "12m", RecentlySold only
    days_on: str | None = None          # other statuses only
    keywords: str | None = None
    page: int = 1


@dataclass(frozen=True)
class SearchPage:
    listings: list[dict[str, Any]]
    total_results: int = 0
    total_pages: int = 0
    current_page: int = 1
    results_per_page: int = 0


class ListingProvider(Protocol):
    def search_properties(self, criteria: SearchCriteria) -> SearchPage:
        ...


class Geocoder(Protocol):
    def geocode(self, address: str, city: str, state: str) -> tuple[float | None, float | None]:
        ...


# ----------------------------
# Market data cache storage
# ----------------------------

@dataclass
class MarketDataSnapshot:
    zip_code: str
    home_type: str
    keywords: str
    raw_json: str
    source: str = "Zillow"
    fetched_at: datetime | None = None
    expires_at: datetime | None = None
    id: int | None = None


class MarketDataStore(Protocol):
    def get(self, zip_code: str, home_type: str, keywords: str) -> MarketDataSnapshot | None:
        ...

    def upsert(self, snapshot: MarketDataSnapshot) -> MarketDataSnapshot:
        ...


# ----------------------------
# Properties, comparables, evaluations
# ----------------------------

class PropertyRepository(Protocol):
    def get(self, property_id: int) -> Property | None:
        ...

    def get_by_address(self, address: str, user_id: str) -> Property | None:
        ...

    def list_for_user(self, user_id: str) -> list[Property]:
        ...

    def create(
        self,
        prop: Property,
        *,
        comparables: Sequence[ComparableRecord] = (),
        evaluation: Evaluation | None = None,
    ) -> tuple[Property, Evaluation | None]:
        """Write the property, its comparables and evaluation in one transaction."""
        ...

    def update(self, prop: Property) -> Property:
        ...

    def delete(self, property_id: int) -> None:
        ...

    def comparables(self, property_id: int) -> list[ComparableRecord]:
        ...

    def get_comparable(self, comparable_id: int) -> ComparableRecord | None:
        ...

    def add_comparable(self, comp: ComparableRecord) -> ComparableRecord:
        ...

    def delete_comparable(self, comparable_id: int) -> None:
        ...


class EvaluationRepository(Protocol):
    def add(self, evaluation: Evaluation) -> Evaluation:
        ...

    def list_for_property(self, property_id: int) -> list[Evaluation]:
        ...

    def latest_for_property(self, property_id: int) -> Evaluation | None:
        ...


# ----------------------------
# Per-user settings
# ----------------------------

class DealSettingsRepository(Protocol):
    def get(self, user_id: str) -> DealSettings | None:
        ...

    def save(self, user_id: str, settings: DealSettings) -> DealSettings:
        ...


class LenderRepository(Protocol):
    def list_for_user(self, user_id: str, include_archived: bool = False) -> list[Lender]:
        ...

    def get_for_user(self, lender_id: int, user_id: str, include_archived: bool = False) -> Lender | None:
        ...

    def save(self, lender: Lender) -> Lender:
        ...


@dataclass
class RehabCostTemplate:
    user_id: str
    line_item_type: RehabLineItemType
    condition: RehabCondition
    default_cost: Decimal
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RehabTemplateRepository(Protocol):
    def list_for_user(self, user_id: str) -> list[RehabCostTemplate]:
        ...

    def get(self, user_id: str, line_item_type: RehabLineItemType, condition: RehabCondition) -> RehabCostTemplate | None:
        ...

    def upsert(self, template: RehabCostTemplate) -> RehabCostTemplate:
        ...

    def delete(self, template_id: int) -> None:
        ...
