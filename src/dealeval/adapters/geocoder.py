# src/dealeval/adapters/geocoder.py
from __future__ import annotations

from dataclasses import dataclass

import requests

from dealeval.adapters.config import config
from dealeval.adapters.logging_utils import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class GeocoderConfig:
    url: str = "https://nominatim.openstreetmap.org/search"
    user_agent: str = "DealEvaluator/1.0"
    timeout_s: float = 10.0

    @classmethod
    def from_config(cls) -> "GeocoderConfig":
        return cls(
            url=config.GEOCODER_URL,
            user_agent=config.GEOCODER_USER_AGENT,
            timeout_s=config.GEOCODER_TIMEOUT_S,
        )


class NominatimGeocoder:
    """
    OpenStreetMap Nominatim lookup.

    Best effort: any failure returns (None, None) and is logged, a property
    without coordinates is still a valid property.
    """

    def __init__(self, settings: GeocoderConfig | None = None, session: requests.Session | None = None) -> None:
        self.settings = settings or GeocoderConfig.from_config()
        self.s = session or requests.Session()

    def geocode(self, address: str, city: str, state: str) -> tuple[float | None, float | None]:
        query = ", ".join(p.strip() for p in (address, city, state) if p and p.strip())
        if not query:
            return None, None

        try:
            resp = self.s.get(
                self.settings.url,
                params={"format": "json", "q": query, "limit": 1},
                headers={"User-Agent": self.settings.user_agent},
                timeout=self.settings.timeout_s,
            )
            resp.raise_for_status()
            results = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning("geocode_failed", extra={"context": {"query": query, "error": repr(e)}})
            return None, None

        if not isinstance(results, list) or not results:
            logger.info("geocode_no_match", extra={"context": {"query": query}})
            return None, None

        first = results[0] or {}
        try:
            return float(first["lat"]), float(first["lon"])
        except (KeyError, TypeError, ValueError):
            logger.warning("geocode_bad_payload", extra={"context": {"query": query}})
            return None, None
