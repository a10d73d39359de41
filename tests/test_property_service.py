from decimal import Decimal

import pytest

from dealeval.api.http import build_services
from dealeval.domain.errors import InvalidInputError, NotFoundError, ProviderUnavailableError
from dealeval.domain.listing import PropertyCondition, PropertyType
from dealeval.domain.property import Property
from dealeval.domain.rehab import RehabCondition, RehabLineItem, RehabLineItemType
from dealeval.domain.settings import Lender
from tests.fixtures.listings import SUBJECT_ADDRESS, FakeGeocoder, FakeProvider, failing_provider, sold, three_good_comps


def _subject(**kw):
    base = dict(
        user_id="ignored",
        property_type=PropertyType.single_family,
        condition=PropertyCondition.outdated,
        address="100 Main St",
        city="Detroit",
        state="MI",
        zip_code="48201",
        price=150_000,
        sqft=1500,
        bedrooms=3,
        bathrooms=2,
    )
    return Property(**(base | kw))


def test_create_runs_comps_and_evaluation(services, provider, geocoder):
    prop, ev = services.properties.create_property("u1", _subject())

    assert prop.id is not None
    assert prop.user_id == "u1"
    assert (prop.latitude, prop.longitude) == (42.3314, -83.0458)
    assert geocoder.calls == [("100 Main St", "Detroit", "MI")]

    call = provider.calls[0]
    assert (call.location, call.home_type, call.keywords) == ("48201", "Houses", "renovated")

    # auto rehab: 3 bed x 1500 + 2 bath x 3500 + 1500 sqft x 15
    assert ev.repair_cost == 34_000
    assert ev.arv == 310_000
    assert ev.max_offer == 183_000
    assert ev.roi == Decimal("50.82")
    assert len(services.properties.comparables("u1", prop.id)) == 3


def test_user_repair_cost_replaces_auto_items(services):
    _, ev = services.properties.create_property("u1", _subject(), repair_cost=Decimal("50000"))

    assert ev.repair_cost == 50_000
    assert ev.max_offer == 167_000
    assert [li.line_item_type for li in ev.rehab_estimate.line_items] == [RehabLineItemType.other]


def test_rehab_templates_feed_auto_items(services):
    services.templates.upsert("u1", RehabLineItemType.bedroom, RehabCondition.moderate, 5000)

    _, ev = services.properties.create_property("u1", _subject())

    assert ev.repair_cost == 3 * 5000 + 2 * 3500 + 1500 * 15


def test_subject_is_not_its_own_comparable():
    provider = FakeProvider(pages=[three_good_comps() + [sold(99, address=SUBJECT_ADDRESS, price=1)]])
    services = build_services("sqlite://", provider=provider, geocoder=FakeGeocoder())

    prop, _ = services.properties.create_property("u1", _subject())

    addresses = [c.address for c in services.properties.comparables("u1", prop.id)]
    assert "100 Main St" not in addresses


def test_insufficient_comps_saves_property_without_evaluation():
    provider = FakeProvider(pages=[[sold(1), sold(2)]])
    services = build_services("sqlite://", provider=provider, geocoder=FakeGeocoder())

    prop, ev = services.properties.create_property("u1", _subject())

    assert ev is None
    assert services.properties.get("u1", prop.id).address == "100 Main St"
    assert services.properties.comparables("u1", prop.id) == []
    assert services.properties.evaluations_for("u1", prop.id) == []


def test_no_market_data_saves_property_without_evaluation():
    provider = FakeProvider(pages=[[sold(1, property_type="CONDO")]])
    services = build_services("sqlite://", provider=provider, geocoder=FakeGeocoder())

    _, ev = services.properties.create_property("u1", _subject())

    assert ev is None
    assert len(services.properties.list("u1")) == 1


def test_provider_failure_writes_nothing():
    services = build_services("sqlite://", provider=failing_provider(), geocoder=FakeGeocoder())

    with pytest.raises(ProviderUnavailableError):
        services.properties.create_property("u1", _subject())

    assert services.properties.list("u1") == []
    assert not services.market_data.is_fresh("48201", "Houses", "renovated")


def test_unknown_lender_writes_nothing(services):
    with pytest.raises(NotFoundError):
        services.properties.create_property("u1", _subject(), lender_id=404)

    assert services.properties.list("u1") == []


def test_lender_adds_financing(services):
    lender = services.lenders.create("u1", Lender(name="Hard Money Co", annual_rate="12%"))

    _, ev = services.properties.create_property("u1", _subject(), lender_id=lender.id)

    assert ev.financing is not None
    assert ev.financing.lender_id == lender.id


def test_geocoder_miss_leaves_coordinates_empty():
    services = build_services("sqlite://", provider=FakeProvider(pages=[three_good_comps()]),
                              geocoder=FakeGeocoder(coords=(None, None)))

    prop, _ = services.properties.create_property("u1", _subject())

    assert prop.latitude is None
    assert prop.longitude is None


def test_existing_address_updates_instead_of_duplicating(services, provider):
    first, ev = services.properties.create_property("u1", _subject())

    again, latest = services.properties.create_property("u1", _subject(price=140_000, condition=PropertyCondition.bad))

    assert again.id == first.id
    assert again.price == 140_000
    assert again.condition == PropertyCondition.bad
    assert latest.id == ev.id
    assert len(services.properties.list("u1")) == 1
    assert len(services.properties.evaluations_for("u1", first.id)) == 1
    assert len(provider.calls) == 1


def test_manual_evaluation_from_stored_comparables(services):
    prop, _ = services.properties.create_property("u1", _subject())
    stored = services.properties.comparables("u1", prop.id)

    items = [RehabLineItem(RehabLineItemType.kitchen, RehabCondition.heavy, 1, Decimal("30000"))]
    ev = services.properties.create_evaluation("u1", prop.id, comparable_ids=[stored[0].id], line_items=items)

    assert ev.arv == stored[0].price
    assert ev.repair_cost == 30_000
    assert services.properties.latest_evaluation("u1", prop.id).id == ev.id
    assert len(services.properties.evaluations_for("u1", prop.id)) == 2


def test_manual_evaluation_needs_valid_comparables():
    provider = FakeProvider(pages=[[sold(1), sold(2)]])
    services = build_services("sqlite://", provider=provider, geocoder=FakeGeocoder())
    prop, _ = services.properties.create_property("u1", _subject())

    with pytest.raises(InvalidInputError):
        services.properties.create_evaluation("u1", prop.id)

    with pytest.raises(NotFoundError):
        services.properties.create_evaluation("u1", 12345)


def test_properties_are_scoped_to_their_owner(services):
    prop, _ = services.properties.create_property("u1", _subject())

    with pytest.raises(NotFoundError):
        services.properties.get("u2", prop.id)
    with pytest.raises(NotFoundError):
        services.properties.delete("u2", prop.id)

    services.properties.delete("u1", prop.id)
    with pytest.raises(NotFoundError):
        services.properties.get("u1", prop.id)


def test_update_validates_changes(services):
    prop, _ = services.properties.create_property("u1", _subject())

    updated = services.properties.update("u1", prop.id, {"sqft": 1600, "id": 999})
    assert updated.sqft == 1600
    assert updated.id == prop.id

    with pytest.raises(InvalidInputError):
        services.properties.update("u1", prop.id, {"sqft": -5})
