# src/dealeval/api/schemas.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dealeval.domain.evaluation import Evaluation
from dealeval.domain.listing import Comparable, PropertyCondition, PropertyType
from dealeval.domain.property import ComparableRecord
from dealeval.domain.rehab import RehabCondition, RehabLineItemType


# --------------------------------------------
# Properties
# --------------------------------------------

class PropertyCreate(BaseModel):
    """
    Request body for POST /properties.

    Clients may send extra fields (UI state etc.); they are ignored.
    """
    model_config = ConfigDict(extra="allow")

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

    # Optional user estimate; replaces auto-generated rehab items
    repair_cost: Decimal | None = Field(default=None, ge=0)
    lender_id: int | None = None


class PropertyUpdate(BaseModel):
    property_type: PropertyType | None = None
    condition: PropertyCondition | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    price: int | None = Field(default=None, ge=0)
    sqft: int | None = Field(default=None, gt=0)
    bedrooms: int | None = Field(default=None, ge=0)
    bathrooms: int | None = Field(default=None, ge=0)
    lot_size_sqft: int | None = Field(default=None, gt=0)
    year_built: int | None = None


class RehabLineItemIn(BaseModel):
    line_item_type: RehabLineItemType
    condition: RehabCondition
    quantity: int = Field(default=1, ge=1)
    unit_cost: Decimal = Field(ge=0)
    notes: str | None = None


class EvaluationCreate(BaseModel):
    comparable_ids: list[int] | None = None
    line_items: list[RehabLineItemIn] | None = None
    lender_id: int | None = None


# --------------------------------------------
# Evaluations (response)
# --------------------------------------------

class EvaluationOut(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: int | None = None
    property_id: int | None = None
    created_at: datetime | None = None

    arv: int
    repair_cost: int
    max_offer: int
    profit: int
    roi: Decimal | None = None

    profit_target: int
    total_costs: int
    net_profit: int
    meets_profit_target: bool

    costs: dict[str, int]
    financing: dict[str, Any] | None = None
    line_items: list[dict[str, Any]] = Field(default_factory=list)
    comparables: list[dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, ev: Evaluation) -> "EvaluationOut":
        costs = {k: getattr(ev.costs, k) for k in ev.costs.__dataclass_fields__}
        costs["total"] = ev.costs.total

        financing = None
        if ev.financing is not None:
            financing = {k: getattr(ev.financing, k) for k in ev.financing.__dataclass_fields__}
            financing["total_financing_costs"] = ev.financing.total_financing_costs

        comps: list[dict[str, Any]] = []
        for c in ev.comparables:
            if isinstance(c, Comparable):
                comps.append(ComparableRecord.from_comparable(c).model_dump(mode="json") | {"tier": c.tier})
            elif isinstance(c, ComparableRecord):
                comps.append(c.model_dump(mode="json"))

        return cls(
            id=ev.id,
            property_id=ev.property_id,
            created_at=ev.created_at,
            arv=ev.arv,
            repair_cost=ev.repair_cost,
            max_offer=ev.max_offer,
            profit=ev.profit,
            roi=ev.roi,
            profit_target=ev.profit_target,
            total_costs=ev.total_costs,
            net_profit=ev.net_profit,
            meets_profit_target=ev.meets_profit_target,
            costs=costs,
            financing=financing,
            line_items=[
                {
                    "line_item_type": li.line_item_type.value,
                    "condition": li.condition.value,
                    "quantity": li.quantity,
                    "unit_cost": str(li.unit_cost),
                    "estimated_cost": str(li.estimated_cost),
                    "notes": li.notes,
                }
                for li in ev.rehab_estimate.line_items
            ],
            comparables=comps,
        )


class PropertyCreated(BaseModel):
    property: dict[str, Any]
    evaluation: EvaluationOut | None = None


# --------------------------------------------
# Market data
# --------------------------------------------

class MarketDataOut(BaseModel):
    zip_code: str
    home_type: str
    keywords: str
    count: int
    listings: list[dict[str, Any]]


class FreshnessOut(BaseModel):
    zip_code: str
    home_type: str
    keywords: str
    fresh: bool


# --------------------------------------------
# Settings, lenders, rehab templates
# --------------------------------------------

class LenderIn(BaseModel):
    name: str
    annual_rate: Decimal | str
    origination_fee: Decimal | str = Decimal("0")
    loan_service_fee: Decimal | str = Decimal("0")
    note: str | None = None


class LenderPatch(BaseModel):
    name: str | None = None
    annual_rate: Decimal | str | None = None
    origination_fee: Decimal | str | None = None
    loan_service_fee: Decimal | str | None = None
    note: str | None = None


class RehabTemplateIn(BaseModel):
    line_item_type: RehabLineItemType
    condition: RehabCondition
    default_cost: Decimal = Field(ge=0)


class RehabTemplateOut(BaseModel):
    id: int | None = None
    line_item_type: RehabLineItemType
    condition: RehabCondition
    default_cost: Decimal
