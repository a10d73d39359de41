# src/dealeval/services/market_data.py
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from dealeval.adapters.config import config
from dealeval.adapters.logging_utils import get_logger
from dealeval.domain.listing import Listing, parse_listings
from dealeval.domain.ports import (
    ListingProvider,
    MarketDataSnapshot,
    MarketDataStore,
    SearchCriteria,
)

logger = get_logger(__name__)

SOURCE = "Zillow"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_aware_utc(dt: datetime) -> datetime:
    """
    SQLite hands datetimes back naive even though we wrote UTC.
    Treat naive as UTC so comparisons don't blow up.
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


@dataclass(frozen=True)
class MarketDataPolicy:
    ttl_days: int = 30
    max_pages: int = 20
    sold_in_last: str = "12m"

    @classmethod
    def from_config(cls) -> "MarketDataPolicy":
        return cls(
            ttl_days=config.MARKET_DATA_TTL_DAYS,
            max_pages=config.PROVIDER_MAX_PAGES,
            sold_in_last=config.SOLD_IN_LAST,
        )


def is_snapshot_fresh(snapshot: MarketDataSnapshot, now: datetime) -> bool:
    # No expiry recorded means the snapshot never expires
    if snapshot.expires_at is None:
        return True
    return _ensure_aware_utc(snapshot.expires_at) > now


class MarketDataService:
    """
    Listing-set cache keyed by (zip, home type, keywords).

    Fresh snapshots are served from the store; anything missing or expired is
    refetched from the provider and upserted (one snapshot per key).
    """

    def __init__(
        self,
        store: MarketDataStore,
        provider: ListingProvider,
        policy: MarketDataPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.provider = provider
        self.policy = policy or MarketDataPolicy.from_config()
        self._clock = clock

    def is_fresh(self, zip_code: str, home_type: str, keywords: str = "") -> bool:
        snapshot = self.store.get(zip_code, home_type, keywords)
        return snapshot is not None and is_snapshot_fresh(snapshot, self._clock())

    def get_listings(self, zip_code: str, home_type: str, keywords: str = "") -> list[Listing]:
        ctx = {"zip": zip_code, "home_type": home_type, "keywords": keywords}
        snapshot = self.store.get(zip_code, home_type, keywords)

        if snapshot is not None and is_snapshot_fresh(snapshot, self._clock()):
            payload = self._parse_raw_json(snapshot.raw_json, ctx)
            if payload is not None:
                logger.info("market_data_cache_hit", extra={"context": ctx})
                return parse_listings(payload)

        logger.info("market_data_cache_miss", extra={"context": ctx})
        return self.refresh(zip_code, home_type, keywords)

    def refresh(self, zip_code: str, home_type: str, keywords: str = "") -> list[Listing]:
        ctx = {"zip": zip_code, "home_type": home_type, "keywords": keywords}
        logger.info("market_data_refresh_start", extra={"context": ctx})

        raw = self._fetch_all_pages(zip_code, home_type, keywords)
        if not raw:
            logger.warning("market_data_refresh_empty", extra={"context": ctx})

        now = self._clock()
        self.store.upsert(
            MarketDataSnapshot(
                zip_code=zip_code,
                home_type=home_type,
                keywords=keywords,
                source=SOURCE,
                raw_json=json.dumps(raw),
                fetched_at=now,
                expires_at=now + timedelta(days=self.policy.ttl_days),
            )
        )

        logger.info("market_data_refresh_done", extra={"context": {**ctx, "listings": len(raw)}})
        return parse_listings(raw)

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _fetch_all_pages(self, zip_code: str, home_type: str, keywords: str) -> list[dict[str, Any]]:
        """Walk the provider's pages in order until it runs out."""
        out: list[dict[str, Any]] = []
        page = 1

        while page <= self.policy.max_pages:
            criteria = SearchCriteria(
                location=zip_code,
                home_type=home_type,
                status_type="RecentlySold",
                sort="Newest",
                sold_in_last=self.policy.sold_in_last,
                keywords=keywords or None,
                page=page,
            )
            result = self.provider.search_properties(criteria)

            if not result.listings:
                break
            out.extend(result.listings)

            if result.total_pages <= page:
                break
            page += 1
        else:
            logger.warning(
                "market_data_page_cap_reached",
                extra={"context": {"zip": zip_code, "max_pages": self.policy.max_pages}},
            )

        return out

    def _parse_raw_json(self, raw_json: str, ctx: dict[str, Any]) -> list[dict[str, Any]] | None:
        try:
            data = json.loads(raw_json or "[]")
        except json.JSONDecodeError:
            logger.error("market_data_cache_corrupt", extra={"context": ctx}, exc_info=True)
            return None
        if not isinstance(data, list):
            logger.error("market_data_cache_corrupt", extra={"context": {**ctx, "type": type(data).__name__}})
            return None
        return data
