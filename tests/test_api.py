from decimal import Decimal

from fastapi.testclient import TestClient

from dealeval.api.http import app, build_services, get_services
from tests.fixtures.listings import FakeGeocoder, failing_provider

PAYLOAD = {
    "property_type": "SingleFamily",
    "condition": "Outdated",
    "address": "100 Main St",
    "city": "Detroit",
    "state": "MI",
    "zip_code": "48201",
    "price": 150000,
    "sqft": 1500,
    "bedrooms": 3,
    "bathrooms": 2,
    "repair_cost": 50000,
    "ui_state": {"tab": "deal"},  # unknown fields are tolerated
}


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_create_property_returns_evaluation(client):
    r = client.post("/properties", json=PAYLOAD, headers={"X-User-Id": "u1"})
    assert r.status_code == 201, r.text

    data = r.json()
    assert data["property"]["id"] is not None
    assert data["property"]["user_id"] == "u1"

    ev = data["evaluation"]
    assert ev["arv"] == 310000
    assert ev["max_offer"] == 167000
    assert ev["profit"] == 93000
    assert Decimal(str(ev["roi"])) == Decimal("55.69")
    assert ev["costs"]["total"] == 35780
    assert ev["meets_profit_target"] is True
    assert len(ev["comparables"]) == 3
    assert ev["line_items"][0]["line_item_type"] == "Other"


def test_property_reads_and_evaluations(client):
    pid = client.post("/properties", json=PAYLOAD, headers={"X-User-Id": "u1"}).json()["property"]["id"]

    assert [p["id"] for p in client.get("/properties", headers={"X-User-Id": "u1"}).json()] == [pid]
    assert client.get("/properties", headers={"X-User-Id": "u2"}).json() == []
    assert client.get(f"/properties/{pid}", headers={"X-User-Id": "u2"}).status_code == 404

    comps = client.get(f"/properties/{pid}/comparables", headers={"X-User-Id": "u1"}).json()
    assert len(comps) == 3

    r = client.post(
        f"/properties/{pid}/evaluations",
        json={
            "comparable_ids": [comps[0]["id"], comps[1]["id"]],
            "line_items": [{"line_item_type": "Kitchen", "condition": "Heavy", "quantity": 1, "unit_cost": 30000}],
        },
        headers={"X-User-Id": "u1"},
    )
    assert r.status_code == 201, r.text
    assert r.json()["arv"] == 305000
    assert r.json()["repair_cost"] == 30000

    evs = client.get(f"/properties/{pid}/evaluations", headers={"X-User-Id": "u1"}).json()
    assert len(evs) == 2
    latest = client.get(f"/properties/{pid}/evaluations/latest", headers={"X-User-Id": "u1"}).json()
    assert latest["id"] == r.json()["id"]


def test_update_and_delete_property(client):
    pid = client.post("/properties", json=PAYLOAD).json()["property"]["id"]

    r = client.patch(f"/properties/{pid}", json={"price": 140000})
    assert r.status_code == 200
    assert r.json()["price"] == 140000

    assert client.delete(f"/properties/{pid}").status_code == 204
    assert client.get(f"/properties/{pid}").status_code == 404


def test_manual_evaluation_rejects_bad_line_items(client):
    pid = client.post("/properties", json=PAYLOAD).json()["property"]["id"]

    r = client.post(
        f"/properties/{pid}/evaluations",
        json={"line_items": [{"line_item_type": "Kitchen", "condition": "Heavy", "quantity": 0, "unit_cost": 1}]},
    )
    assert r.status_code == 422


def test_latest_evaluation_missing_is_404(client):
    payload = PAYLOAD | {"zip_code": "99999", "property_type": "Condo"}
    pid = client.post("/properties", json=payload).json()["property"]["id"]

    assert client.get(f"/properties/{pid}/evaluations/latest").status_code == 404


def test_provider_failure_maps_to_502():
    services = build_services("sqlite://", provider=failing_provider(), geocoder=FakeGeocoder())
    app.dependency_overrides[get_services] = lambda: services
    try:
        r = TestClient(app).post("/properties", json=PAYLOAD)
    finally:
        app.dependency_overrides.clear()

    assert r.status_code == 502
    assert services.properties.list("default") == []


def test_market_data_and_freshness(client, provider):
    fresh = client.get("/market-data/48201/freshness").json()
    assert fresh["fresh"] is False
    assert fresh["home_type"] == "Houses"
    assert fresh["keywords"] == "renovated"

    r = client.get("/market-data/48201")
    assert r.status_code == 200
    assert r.json()["count"] == 3

    assert client.get("/market-data/48201/freshness").json()["fresh"] is True
    client.get("/market-data/48201")
    assert len(provider.calls) == 1

    client.post("/market-data/48201/refresh")
    assert len(provider.calls) == 2


def test_comps_endpoint(client):
    r = client.get("/comps", params={"zip_code": "48201", "bedrooms": 3, "bathrooms": 2, "sqft": 1500})
    assert r.status_code == 200
    assert [c["sqft"] for c in r.json()] == [1500, 1480, 1520]

    r = client.get("/comps", params={"zip_code": "48201", "property_type": "Condo"})
    assert r.status_code == 404


def test_settings_roundtrip(client):
    defaults = client.get("/settings", headers={"X-User-Id": "u1"}).json()
    assert Decimal(str(defaults["selling_agent_commission"])) == Decimal("0.06")
    assert defaults["default_holding_months"] == 4

    r = client.put("/settings", json=defaults | {"default_holding_months": 6, "monthly_utilities": 250},
                   headers={"X-User-Id": "u1"})
    assert r.status_code == 200
    assert client.get("/settings", headers={"X-User-Id": "u1"}).json()["default_holding_months"] == 6

    bad = client.put("/settings", json={"default_holding_months": 0}, headers={"X-User-Id": "u1"})
    assert bad.status_code == 422

    reset = client.post("/settings/reset", headers={"X-User-Id": "u1"}).json()
    assert reset["default_holding_months"] == 4


def test_lenders_crud_and_archive(client):
    r = client.post("/lenders", json={"name": "Alpha Capital", "annual_rate": "11%"})
    assert r.status_code == 201, r.text
    lid = r.json()["id"]

    r = client.patch(f"/lenders/{lid}", json={"note": "prefers 6 month terms"})
    assert r.json()["note"] == "prefers 6 month terms"

    assert client.post(f"/lenders/{lid}/archive").json()["is_archived"] is True
    assert client.get("/lenders").json() == []
    assert len(client.get("/lenders", params={"include_archived": True}).json()) == 1
    assert client.patch(f"/lenders/{lid}", json={"name": "x"}).status_code == 404
    assert client.get(f"/lenders/{lid}").status_code == 200


def test_rehab_templates(client):
    assert client.post("/rehab-templates/seed").json()["written"] == 48
    assert len(client.get("/rehab-templates").json()) == 48

    r = client.put("/rehab-templates", json={"line_item_type": "Roof", "condition": "Heavy", "default_cost": 18000})
    assert r.status_code == 200
    assert Decimal(str(r.json()["default_cost"])) == Decimal("18000")
    assert len(client.get("/rehab-templates").json()) == 48

    assert client.delete(f"/rehab-templates/{r.json()['id']}").status_code == 204
    assert client.delete(f"/rehab-templates/{r.json()['id']}").status_code == 404
