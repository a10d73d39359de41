# src/dealeval/services/property_service.py
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any, Iterable, Sequence

from dealeval.adapters.config import config
from dealeval.adapters.logging_utils import get_logger
from dealeval.domain.errors import (
    InsufficientComparablesError,
    InvalidInputError,
    NoMarketDataError,
    NotFoundError,
)
from dealeval.domain.evaluation import Evaluation
from dealeval.domain.finance import evaluate
from dealeval.domain.listing import Comparable, to_home_type
from dealeval.domain.ports import EvaluationRepository, Geocoder, PropertyRepository
from dealeval.domain.property import ComparableRecord, Property
from dealeval.domain.rehab import RehabEstimate, RehabLineItem, auto_line_items, user_repair_cost_item
from dealeval.domain.settings import Lender
from dealeval.services.comps import find_comparables
from dealeval.services.market_data import MarketDataService
from dealeval.services.settings import DealSettingsService, LenderService, RehabTemplateService

logger = get_logger(__name__)

# Fields a caller may change on an existing property
_EDITABLE = (
    "property_type", "condition",
    "address", "city", "state", "zip_code",
    "price", "sqft", "bedrooms", "bathrooms", "lot_size_sqft", "year_built",
    "latitude", "longitude",
)


class PropertyService:
    """
    Property lifecycle: create (with automatic comps + evaluation), manual
    re-evaluation, and reads.
    """

    def __init__(
        self,
        properties: PropertyRepository,
        evaluations: EvaluationRepository,
        market_data: MarketDataService,
        geocoder: Geocoder | None,
        settings: DealSettingsService,
        lenders: LenderService,
        templates: RehabTemplateService,
        arv_keywords: str | None = None,
    ) -> None:
        self.properties = properties
        self.evaluations = evaluations
        self.market_data = market_data
        self.geocoder = geocoder
        self.settings = settings
        self.lenders = lenders
        self.templates = templates
        self.arv_keywords = config.ARV_KEYWORDS if arv_keywords is None else arv_keywords

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    def create_property(
        self,
        user_id: str,
        data: Property,
        *,
        repair_cost: Any = None,
        lender_id: int | None = None,
    ) -> tuple[Property, Evaluation | None]:
        """
        Save a property and, when the market allows it, its comparables and
        first evaluation.

        A property already saved at the same address is updated in place and
        returned with its latest evaluation. NoMarketData / InsufficientComparables
        leave the property saved without an evaluation; any other failure
        propagates and nothing is written.
        """
        existing = self.properties.get_by_address(data.address, user_id)
        if existing is not None:
            logger.info(
                "property_exists_updating",
                extra={"context": {"user_id": user_id, "property_id": existing.id}},
            )
            updated = self._apply(existing, data.model_dump(include=set(_EDITABLE), exclude_none=True))
            return updated, self.evaluations.latest_for_property(updated.id)  # type: ignore[arg-type]

        prop = data.model_copy(update={"id": None, "user_id": user_id, "created_at": None})
        if prop.latitude is None or prop.longitude is None:
            lat, lon = self._geocode(prop)
            prop = prop.model_copy(update={"latitude": lat, "longitude": lon})

        lender = self.lenders.get(user_id, lender_id) if lender_id is not None else None

        comps: list[Comparable] = []
        evaluation: Evaluation | None = None
        try:
            comps = self._find_comps(prop)
            items = self._rehab_items(user_id, prop, repair_cost)
            evaluation = evaluate(comps, RehabEstimate(tuple(items)), self.settings.get(user_id), lender)
        except (NoMarketDataError, InsufficientComparablesError) as e:
            logger.warning(
                "property_evaluation_skipped",
                extra={
                    "context": {
                        "user_id": user_id,
                        "zip": prop.zip_code,
                        "reason": type(e).__name__,
                        "error": str(e),
                    }
                },
            )
            comps, evaluation = [], None

        records = [ComparableRecord.from_comparable(c) for c in comps]
        saved, saved_ev = self.properties.create(prop, comparables=records, evaluation=evaluation)

        logger.info(
            "property_created",
            extra={
                "context": {
                    "property_id": saved.id,
                    "comparables": len(records),
                    "evaluated": saved_ev is not None,
                }
            },
        )
        return saved, saved_ev

    def create_evaluation(
        self,
        user_id: str,
        property_id: int,
        *,
        comparable_ids: Sequence[int] | None = None,
        line_items: Iterable[RehabLineItem] | None = None,
        lender_id: int | None = None,
    ) -> Evaluation:
        """Re-run the numbers from stored comparables and an explicit rehab list."""
        prop = self.get(user_id, property_id)

        stored = self.properties.comparables(property_id)
        if comparable_ids is not None:
            wanted = set(comparable_ids)
            stored = [c for c in stored if c.id in wanted]

        usable = [c for c in stored if c.price is not None and c.price > 0]
        if not usable:
            raise InvalidInputError("No valid comparables found for this property")

        items = list(line_items) if line_items is not None else self._rehab_items(user_id, prop, None)
        lender: Lender | None = self.lenders.get(user_id, lender_id) if lender_id is not None else None

        evaluation = evaluate(usable, RehabEstimate(tuple(items)), self.settings.get(user_id), lender)
        saved = self.evaluations.add(replace(evaluation, property_id=property_id))

        logger.info(
            "evaluation_created",
            extra={"context": {"property_id": property_id, "evaluation_id": saved.id, "arv": saved.arv}},
        )
        return saved

    # ------------------------------------------------------------------
    # reads / edits
    # ------------------------------------------------------------------
    def get(self, user_id: str, property_id: int) -> Property:
        prop = self.properties.get(property_id)
        if prop is None or prop.user_id != user_id:
            raise NotFoundError(f"property {property_id} not found")
        return prop

    def list(self, user_id: str) -> list[Property]:
        return self.properties.list_for_user(user_id)

    def update(self, user_id: str, property_id: int, changes: dict[str, Any]) -> Property:
        return self._apply(self.get(user_id, property_id), changes)

    def delete(self, user_id: str, property_id: int) -> None:
        self.get(user_id, property_id)
        self.properties.delete(property_id)
        logger.info("property_deleted", extra={"context": {"property_id": property_id}})

    def comparables(self, user_id: str, property_id: int) -> list[ComparableRecord]:
        self.get(user_id, property_id)
        return self.properties.comparables(property_id)

    def add_comparable(self, user_id: str, property_id: int, comp: ComparableRecord) -> ComparableRecord:
        self.get(user_id, property_id)
        return self.properties.add_comparable(comp.model_copy(update={"id": None, "property_id": property_id}))

    def delete_comparable(self, user_id: str, property_id: int, comparable_id: int) -> None:
        self.get(user_id, property_id)
        comp = self.properties.get_comparable(comparable_id)
        if comp is None or comp.property_id != property_id:
            raise NotFoundError(f"comparable {comparable_id} not found")
        self.properties.delete_comparable(comparable_id)

    def evaluations_for(self, user_id: str, property_id: int) -> list[Evaluation]:
        self.get(user_id, property_id)
        return self.evaluations.list_for_property(property_id)

    def latest_evaluation(self, user_id: str, property_id: int) -> Evaluation:
        self.get(user_id, property_id)
        ev = self.evaluations.latest_for_property(property_id)
        if ev is None:
            raise NotFoundError(f"property {property_id} has no evaluations")
        return ev

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _apply(self, prop: Property, changes: dict[str, Any]) -> Property:
        data = prop.model_dump()
        data.update({k: v for k, v in changes.items() if k in _EDITABLE})
        try:
            merged = Property.model_validate(data)
        except ValueError as err:
            raise InvalidInputError(str(err)) from err
        return self.properties.update(merged)

    def _geocode(self, prop: Property) -> tuple[float | None, float | None]:
        if self.geocoder is None:
            return None, None
        return self.geocoder.geocode(prop.address, prop.city, prop.state)

    def _find_comps(self, prop: Property) -> list[Comparable]:
        listings = self.market_data.get_listings(
            prop.zip_code,
            to_home_type(prop.property_type),
            self.arv_keywords,
        )
        return find_comparables(
            listings,
            prop.property_type,
            bedrooms=prop.bedrooms,
            bathrooms=prop.bathrooms,
            sqft=prop.sqft,
            exclude=prop.full_address(),
        )

    def _rehab_items(self, user_id: str, prop: Property, repair_cost: Any) -> list[RehabLineItem]:
        if repair_cost is not None:
            item = user_repair_cost_item(repair_cost, prop.condition)
            if item.unit_cost > Decimal("0"):
                return [item]

        return auto_line_items(
            bedrooms=prop.bedrooms,
            bathrooms=prop.bathrooms,
            sqft=prop.sqft,
            condition=prop.condition,
            cost_lookup=lambda t, c: self.templates.cost_for(user_id, t, c),
        )
