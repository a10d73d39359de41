# src/dealeval/domain/rehab.py
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from dealeval.domain.errors import InvalidInputError
from dealeval.domain.listing import PropertyCondition


class RehabCondition(str, enum.Enum):
    cosmetic = "Cosmetic"   # paint, fixtures, minor updates
    moderate = "Moderate"   # flooring, cabinets, appliances
    heavy = "Heavy"         # full gut, structural


class RehabLineItemType(str, enum.Enum):
    kitchen = "Kitchen"
    bathroom = "Bathroom"
    bedroom = "Bedroom"
    living_room = "LivingRoom"
    dining_room = "DiningRoom"
    basement = "Basement"
    exterior = "Exterior"
    roof = "Roof"
    hvac = "HVAC"
    plumbing = "Plumbing"
    electrical = "Electrical"
    flooring = "Flooring"
    windows = "Windows"
    doors = "Doors"
    other = "Other"
    general = "General"  # priced per sqft


def _to_decimal(v: Any, name: str) -> Decimal:
    if isinstance(v, Decimal):
        return v
    try:
        # str() first so floats like 0.1 don't drag binary noise along
        return Decimal(str(v))
    except (InvalidOperation, TypeError, ValueError) as err:
        raise InvalidInputError(f"{name} must be numeric, got {v!r}") from err


@dataclass(frozen=True)
class RehabLineItem:
    line_item_type: RehabLineItemType
    condition: RehabCondition
    quantity: int = 1
    unit_cost: Decimal = Decimal("0")
    notes: str | None = None

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "line_item_type", RehabLineItemType(self.line_item_type))
            object.__setattr__(self, "condition", RehabCondition(self.condition))
        except ValueError as err:
            raise InvalidInputError(str(err)) from err

        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise InvalidInputError(f"quantity must be an integer, got {self.quantity!r}")
        if self.quantity < 1:
            raise InvalidInputError("quantity must be at least 1")

        cost = _to_decimal(self.unit_cost, "unit_cost")
        if not cost.is_finite() or cost < 0:
            raise InvalidInputError("unit_cost must be a non-negative number")
        object.__setattr__(self, "unit_cost", cost)

    @property
    def estimated_cost(self) -> Decimal:
        return self.quantity * self.unit_cost


@dataclass(frozen=True)
class RehabEstimate:
    line_items: tuple[RehabLineItem, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "line_items", tuple(self.line_items))

    @property
    def total_cost(self) -> Decimal:
        return sum((li.estimated_cost for li in self.line_items), Decimal("0"))


# ---------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------
_C, _M, _H = RehabCondition.cosmetic, RehabCondition.moderate, RehabCondition.heavy
_T = RehabLineItemType

# Seeded into a user's templates on request. General is per sqft.
DEFAULT_TEMPLATE_COSTS: dict[tuple[RehabLineItemType, RehabCondition], Decimal] = {
    (t, c): Decimal(v)
    for t, costs in {
        _T.kitchen: (5000, 15000, 30000),
        _T.bathroom: (3000, 8000, 15000),
        _T.bedroom: (1500, 3500, 7000),
        _T.living_room: (2000, 5000, 10000),
        _T.dining_room: (1500, 3500, 7000),
        _T.basement: (3000, 10000, 25000),
        _T.exterior: (3000, 10000, 25000),
        _T.roof: (2000, 8000, 15000),
        _T.hvac: (1000, 5000, 12000),
        _T.plumbing: (1000, 5000, 15000),
        _T.electrical: (1000, 5000, 12000),
        _T.flooring: (2000, 6000, 12000),
        _T.windows: (1500, 5000, 12000),
        _T.doors: (1000, 3000, 7000),
        _T.other: (1000, 3000, 8000),
        _T.general: (10, 20, 35),
    }.items()
    for c, v in zip((_C, _M, _H), costs)
}

# Used by auto-generation when the user has no template for the pair.
FALLBACK_COSTS: dict[tuple[RehabLineItemType, RehabCondition], Decimal] = {
    (_T.bedroom, _C): Decimal(500),
    (_T.bedroom, _M): Decimal(1500),
    (_T.bedroom, _H): Decimal(3000),
    (_T.bathroom, _C): Decimal(1000),
    (_T.bathroom, _M): Decimal(3500),
    (_T.bathroom, _H): Decimal(8000),
    (_T.general, _C): Decimal(5),
    (_T.general, _M): Decimal(15),
    (_T.general, _H): Decimal(35),
}


def fallback_cost(line_item_type: RehabLineItemType, condition: RehabCondition) -> Decimal:
    return FALLBACK_COSTS.get((line_item_type, condition), Decimal("0"))


_CONDITION_TIER = {
    PropertyCondition.excellent: RehabCondition.cosmetic,
    PropertyCondition.minor_repairs: RehabCondition.moderate,
    PropertyCondition.outdated: RehabCondition.moderate,
    PropertyCondition.bad: RehabCondition.heavy,
    PropertyCondition.horrible: RehabCondition.heavy,
}


def rehab_condition_for(condition: PropertyCondition | None) -> RehabCondition:
    if condition is None:
        return RehabCondition.moderate
    return _CONDITION_TIER.get(PropertyCondition(condition), RehabCondition.moderate)


CostLookup = Callable[[RehabLineItemType, RehabCondition], "Decimal | None"]


def auto_line_items(
    *,
    bedrooms: int | None,
    bathrooms: float | None,
    sqft: int | None,
    condition: PropertyCondition | None,
    cost_lookup: CostLookup | None = None,
) -> list[RehabLineItem]:
    """
    Rough rehab budget from property details: one line per bedroom, bathroom
    and a sqft-priced General line. `cost_lookup` returns the user's template
    cost (or None to fall back to the built-in table).
    """
    tier = rehab_condition_for(condition)

    def _cost(t: RehabLineItemType) -> Decimal:
        found = cost_lookup(t, tier) if cost_lookup else None
        return found if found is not None else fallback_cost(t, tier)

    items: list[RehabLineItem] = []
    if bedrooms and bedrooms > 0:
        items.append(
            RehabLineItem(
                line_item_type=_T.bedroom,
                condition=tier,
                quantity=int(bedrooms),
                unit_cost=_cost(_T.bedroom),
                notes="Auto-generated based on property details",
            )
        )
    # Half baths count toward the whole-bath line item
    if bathrooms and bathrooms > 0:
        items.append(
            RehabLineItem(
                line_item_type=_T.bathroom,
                condition=tier,
                quantity=max(1, int(bathrooms)),
                unit_cost=_cost(_T.bathroom),
                notes="Auto-generated based on property details",
            )
        )
    if sqft and sqft > 0:
        items.append(
            RehabLineItem(
                line_item_type=_T.general,
                condition=tier,
                quantity=int(sqft),
                unit_cost=_cost(_T.general),
                notes="Auto-generated: General rehab estimate based on property square footage",
            )
        )
    return items


def user_repair_cost_item(repair_cost: Any, condition: PropertyCondition | None) -> RehabLineItem:
    return RehabLineItem(
        line_item_type=_T.other,
        condition=rehab_condition_for(condition),
        quantity=1,
        unit_cost=_to_decimal(repair_cost, "repair_cost"),
        notes="User-provided repair cost estimate",
    )
