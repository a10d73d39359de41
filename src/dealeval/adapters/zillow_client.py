# src/dealeval/adapters/zillow_client.py
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict

import requests

from dealeval.adapters.config import config
from dealeval.adapters.logging_utils import get_logger
from dealeval.domain.errors import ConfigurationError, ProviderUnavailableError
from dealeval.domain.ports import SearchCriteria, SearchPage

logger = get_logger(__name__)

_RETRYABLE_STATUS = (429, 500, 502, 503, 504)


@dataclass(frozen=True)
class ProviderConfig:
    """
    Connection settings for the Zillow RapidAPI search.

    Built once from AppConfig and handed to the client; the client keeps no
    module-level state.
    """
    api_key: str
    host: str = "zillow-com1.p.rapidapi.com"
    timeout_s: float = 20.0
    max_retries: int = 2
    backoff_s: float = 1.0

    @property
    def base_url(self) -> str:
        return f"https://{self.host}"

    @classmethod
    def from_config(cls) -> "ProviderConfig":
        return cls(
            api_key=config.RAPIDAPI_KEY or "",
            host=config.ZILLOW_RAPIDAPI_HOST,
            timeout_s=config.PROVIDER_TIMEOUT_S,
            max_retries=config.PROVIDER_MAX_RETRIES,
            backoff_s=config.PROVIDER_BACKOFF_S,
        )


def build_params(criteria: SearchCriteria) -> Dict[str, Any]:
    """Query string for /propertyExtendedSearch; unset filters are omitted."""
    params: Dict[str, Any] = {
        "location": criteria.location,
        "sort": criteria.sort,
        "home_type": criteria.home_type,
        "status_type": criteria.status_type,
    }
    optional = {
        "bathsMin": criteria.baths_min,
        "bathsMax": criteria.baths_max,
        "bedsMin": criteria.beds_min,
        "bedsMax": criteria.beds_max,
    }
    params.update({k: v for k, v in optional.items() if v is not None})

    # Sold searches filter on sale recency, everything else on days listed
    if criteria.status_type == "RecentlySold":
        if criteria.sold_in_last:
            params["soldInLast"] = criteria.sold_in_last
    elif criteria.days_on:
        params["daysOn"] = criteria.days_on

    if criteria.keywords:
        params["keywords"] = criteria.keywords
    if criteria.page and criteria.page > 1:
        params["page"] = criteria.page
    return params


def parse_search_response(data: Any, page: int) -> SearchPage:
    if not isinstance(data, dict):
        # A bare list is a single, unpaginated page
        listings = [x for x in data if isinstance(x, dict)] if isinstance(data, list) else []
        return SearchPage(listings=listings, total_results=len(listings), total_pages=1, current_page=page)

    props = data.get("props") or []
    listings = [x for x in props if isinstance(x, dict)]

    def _int(key: str, default: int) -> int:
        try:
            return int(data.get(key) if data.get(key) is not None else default)
        except (TypeError, ValueError):
            return default

    return SearchPage(
        listings=listings,
        total_results=_int("totalResultCount", len(listings)),
        total_pages=_int("totalPages", 1),
        current_page=_int("currentPage", page),
        results_per_page=_int("resultsPerPage", len(listings)),
    )


class ZillowClient:
    """
    RapidAPI Zillow search client (one page per call).

    Transient failures (network errors, 429, 5xx) are retried a bounded
    number of times with a fixed pause; anything else fails fast with
    ProviderUnavailableError.
    """

    def __init__(self, settings: ProviderConfig, session: requests.Session | None = None) -> None:
        self.settings = settings
        self.s = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "x-rapidapi-key": self.settings.api_key,
            "x-rapidapi-host": self.settings.host,
        }

    def search_properties(self, criteria: SearchCriteria) -> SearchPage:
        if not self.settings.api_key:
            raise ConfigurationError("DEALEVAL_RAPIDAPI_KEY is not set. Set it before fetching market data.")

        url = f"{self.settings.base_url}/propertyExtendedSearch"
        params = build_params(criteria)

        last_err: str = ""
        last_status: int | None = None

        for attempt in range(self.settings.max_retries + 1):
            try:
                resp = self.s.get(
                    url,
                    headers=self._headers(),
                    params=params,
                    timeout=self.settings.timeout_s,
                )
            except requests.RequestException as e:
                last_err, last_status = repr(e), None
                logger.warning(
                    "zillow_request_error",
                    extra={"context": {"attempt": attempt, "error": repr(e), "location": criteria.location}},
                )
            else:
                if resp.status_code in _RETRYABLE_STATUS:
                    last_err, last_status = resp.text[:500], resp.status_code
                    logger.warning(
                        "zillow_retryable_status",
                        extra={"context": {"attempt": attempt, "status": resp.status_code}},
                    )
                elif resp.status_code >= 400:
                    logger.error(
                        "zillow_search_error",
                        extra={
                            "context": {
                                "status": resp.status_code,
                                "body": resp.text[:500],
                                "params": params,
                            }
                        },
                    )
                    raise ProviderUnavailableError(
                        f"Zillow HTTP {resp.status_code}: {resp.text[:200]}",
                        status_code=resp.status_code,
                    )
                else:
                    try:
                        data = resp.json()
                    except ValueError as e:
                        raise ProviderUnavailableError(f"Zillow returned invalid JSON: {e}") from e

                    page = parse_search_response(data, criteria.page)
                    logger.info(
                        "zillow_search_page",
                        extra={
                            "context": {
                                "location": criteria.location,
                                "page": page.current_page,
                                "total_pages": page.total_pages,
                                "rows": len(page.listings),
                            }
                        },
                    )
                    return page

            if attempt < self.settings.max_retries:
                time.sleep(self.settings.backoff_s)

        raise ProviderUnavailableError(
            f"Zillow request failed after {self.settings.max_retries + 1} attempts: {last_err}",
            status_code=last_status,
        )
