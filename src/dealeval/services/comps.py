from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

from dealeval.adapters.logging_utils import get_logger
from dealeval.domain.errors import InsufficientComparablesError, NoMarketDataError
from dealeval.domain.listing import Comparable, Listing, PropertyType, to_listing_type

logger = get_logger(__name__)

MIN_COMPARABLES = 3


@dataclass(frozen=True)
class Tier:
    name: str
    bed_bath_tolerance: int
    sqft_tolerance_pct: Decimal
    limit: int


# Widen only as far as needed: tight comps in dense markets, still a
# valuation in thin ones.
TIERS: tuple[Tier, ...] = (
    Tier("A", 0, Decimal("0.10"), 5),
    Tier("B", 1, Decimal("0.10"), 3),
    Tier("C", 1, Decimal("0.20"), 3),
    Tier("D", 1, Decimal("0.30"), 3),
)


def _norm(s: str | None) -> str:
    return " ".join((s or "").split()).casefold()


def _within(value: float | int | None, target: float | int | None, tolerance: float | int) -> bool:
    # Unknown on either side never disqualifies
    if target is None or value is None:
        return True
    return abs(value - target) <= tolerance


def _sqft_ok(listing: Listing, target_sqft: int | None, pct: Decimal) -> bool:
    if target_sqft is None or listing.sqft is None:
        return True
    tolerance = int(target_sqft * pct)
    return target_sqft - tolerance <= listing.sqft <= target_sqft + tolerance


def filter_by_type(listings: Iterable[Listing], subject_type: PropertyType) -> list[Listing]:
    target = to_listing_type(subject_type).casefold()
    return [l for l in listings if l.property_type and l.property_type.casefold() == target]


def exclude_address(listings: Iterable[Listing], address: str | None) -> list[Listing]:
    if not address or not address.strip():
        return list(listings)
    needle = _norm(address)
    return [
        l for l in listings
        if _norm(l.full_address) != needle and _norm(l.address.one_line()) != needle
        and _norm(l.address.street) != needle
    ]


def match_tier(
    candidates: Sequence[Listing],
    tier: Tier,
    *,
    bedrooms: int | None,
    bathrooms: float | None,
    sqft: int | None,
) -> list[Comparable]:
    matches = [
        l for l in candidates
        if _within(l.bedrooms, bedrooms, tier.bed_bath_tolerance)
        and _within(l.bathrooms, bathrooms, tier.bed_bath_tolerance)
        and _sqft_ok(l, sqft, tier.sqft_tolerance_pct)
        and l.has_price
    ]

    def _distance(l: Listing) -> int | None:
        if sqft is None or l.sqft is None:
            return None
        return abs(l.sqft - sqft)

    comps = [Comparable(listing=l, sqft_distance=_distance(l), tier=tier.name) for l in matches]
    if sqft is not None:
        # sorted() is stable, so ties keep insertion order
        comps = sorted(
            comps,
            key=lambda c: (c.sqft_distance is None, c.sqft_distance or 0),
        )
    return comps


def find_comparables(
    listings: Iterable[Listing],
    subject_type: PropertyType,
    bedrooms: int | None = None,
    bathrooms: float | None = None,
    sqft: int | None = None,
    exclude: str | None = None,
) -> list[Comparable]:
    """
    Progressive widening search for 3-5 comparables.

    Raises:
      NoMarketDataError: nothing of the subject's type in the listing set.
      InsufficientComparablesError: no tier reached 3 matches.
    """
    typed = filter_by_type(listings, subject_type)
    if not typed:
        raise NoMarketDataError(f"No properties of type {PropertyType(subject_type).value} in market data")

    candidates = exclude_address(typed, exclude)

    logger.info(
        "comps_search_start",
        extra={
            "context": {
                "property_type": PropertyType(subject_type).value,
                "candidates": len(candidates),
                "beds": bedrooms,
                "baths": bathrooms,
                "sqft": sqft,
            }
        },
    )

    best = 0
    for tier in TIERS:
        comps = match_tier(candidates, tier, bedrooms=bedrooms, bathrooms=bathrooms, sqft=sqft)
        best = max(best, len(comps))
        if len(comps) >= MIN_COMPARABLES:
            logger.info(
                "comps_search_done",
                extra={"context": {"tier": tier.name, "matches": len(comps), "returned": min(len(comps), tier.limit)}},
            )
            return comps[: tier.limit]

    raise InsufficientComparablesError(
        f"Could not find at least {MIN_COMPARABLES} comparable properties for "
        f"{PropertyType(subject_type).value} with {bedrooms}bd/{bathrooms}ba, {sqft}sqft. "
        f"Only found {best} after widening criteria.",
        best_count=best,
    )
