import pytest
import requests

from dealeval.adapters.zillow_client import ProviderConfig, ZillowClient, build_params, parse_search_response
from dealeval.domain.errors import ConfigurationError, ProviderUnavailableError
from dealeval.domain.ports import SearchCriteria
from tests.fixtures.listings import sold


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class FakeSession:
    """Hands back queued responses (or raises queued exceptions) in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "params": params, "timeout": timeout})
        nxt = self.responses.pop(0)
        if isinstance(nxt, Exception):
            raise nxt
        return nxt


def _client(*responses, max_retries=2):
    settings = ProviderConfig(api_key="k-123", host="zillow.test", timeout_s=5, max_retries=max_retries, backoff_s=0)
    return ZillowClient(settings, session=FakeSession(*responses))


def _ok(props, total_pages=1, page=1):
    return FakeResponse(
        200,
        {"props": props, "totalResultCount": len(props), "totalPages": total_pages,
         "currentPage": page, "resultsPerPage": 41},
    )


def test_params_for_sold_search():
    params = build_params(
        SearchCriteria(location="48201", home_type="Houses", sold_in_last="12m", days_on="30",
                       keywords="renovated", beds_min=2, baths_max=3)
    )

    assert params == {
        "location": "48201",
        "sort": "Newest",
        "home_type": "Houses",
        "status_type": "RecentlySold",
        "bedsMin": 2,
        "bathsMax": 3,
        "soldInLast": "12m",
        "keywords": "renovated",
    }


def test_params_for_active_search_use_days_on_and_page():
    params = build_params(
        SearchCriteria(location="48201", home_type="Condos", status_type="ForSale",
                       sold_in_last="12m", days_on="7", page=3)
    )

    assert params["daysOn"] == "7"
    assert "soldInLast" not in params
    assert params["page"] == 3
    assert "keywords" not in params


def test_search_sends_rapidapi_headers_and_parses_page():
    client = _client(_ok([sold(1), sold(2)], total_pages=4, page=1))

    page = client.search_properties(SearchCriteria(location="48201", home_type="Houses"))

    call = client.s.calls[0]
    assert call["url"] == "https://zillow.test/propertyExtendedSearch"
    assert call["headers"]["x-rapidapi-key"] == "k-123"
    assert call["headers"]["x-rapidapi-host"] == "zillow.test"
    assert call["timeout"] == 5

    assert [p["zpid"] for p in page.listings] == ["1", "2"]
    assert page.total_pages == 4
    assert page.current_page == 1
    assert page.results_per_page == 41


def test_transient_status_is_retried():
    client = _client(FakeResponse(503, text="busy"), FakeResponse(429, text="slow down"), _ok([sold(1)]))

    page = client.search_properties(SearchCriteria(location="48201", home_type="Houses"))

    assert len(client.s.calls) == 3
    assert len(page.listings) == 1


def test_network_error_is_retried():
    client = _client(requests.ConnectionError("reset"), _ok([sold(1)]))

    page = client.search_properties(SearchCriteria(location="48201", home_type="Houses"))

    assert len(client.s.calls) == 2
    assert len(page.listings) == 1


def test_client_error_fails_immediately():
    client = _client(FakeResponse(403, text="bad key"), _ok([sold(1)]))

    with pytest.raises(ProviderUnavailableError) as exc:
        client.search_properties(SearchCriteria(location="48201", home_type="Houses"))

    assert exc.value.status_code == 403
    assert len(client.s.calls) == 1


def test_retries_are_bounded():
    client = _client(FakeResponse(500), FakeResponse(502), FakeResponse(504), _ok([sold(1)]), max_retries=2)

    with pytest.raises(ProviderUnavailableError) as exc:
        client.search_properties(SearchCriteria(location="48201", home_type="Houses"))

    assert exc.value.status_code == 504
    assert len(client.s.calls) == 3


def test_invalid_json_is_provider_error():
    client = _client(FakeResponse(200, ValueError("no json")))

    with pytest.raises(ProviderUnavailableError):
        client.search_properties(SearchCriteria(location="48201", home_type="Houses"))


def test_missing_api_key_is_configuration_error():
    client = ZillowClient(ProviderConfig(api_key=""), session=FakeSession())

    with pytest.raises(ConfigurationError):
        client.search_properties(SearchCriteria(location="48201", home_type="Houses"))

    assert client.s.calls == []


def test_parse_tolerates_missing_paging_fields():
    page = parse_search_response({"props": [sold(1), "junk"]}, page=2)

    assert len(page.listings) == 1
    assert page.total_pages == 1
    assert page.current_page == 2

    bare = parse_search_response([sold(1), sold(2)], page=1)
    assert bare.total_results == 2
