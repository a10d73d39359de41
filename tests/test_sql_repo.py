from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from dealeval.adapters.sql_repo import (
    SqlDealSettingsRepository,
    SqlEvaluationRepository,
    SqlLenderRepository,
    SqlMarketDataStore,
    SqlPropertyRepository,
    SqlRehabTemplateRepository,
    make_engine,
)
from dealeval.domain.errors import NotFoundError
from dealeval.domain.finance import evaluate
from dealeval.domain.listing import PropertyType
from dealeval.domain.ports import MarketDataSnapshot
from dealeval.domain.property import ComparableRecord, Property
from dealeval.domain.rehab import RehabCondition, RehabEstimate, RehabLineItem, RehabLineItemType
from dealeval.domain.settings import DealSettings, Lender, ProfitTargetType
from dealeval.services.settings import DealSettingsService, LenderService, RehabTemplateService
from tests.fixtures.listings import comparable

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    return make_engine("sqlite://")


def _prop(**kw):
    base = dict(
        user_id="u1",
        property_type=PropertyType.single_family,
        address="100 Main St",
        city="Detroit",
        state="MI",
        zip_code="48201",
        sqft=1500,
        bedrooms=3,
        bathrooms=2,
    )
    return Property(**(base | kw))


def test_market_data_upsert_never_duplicates_key(engine):
    store = SqlMarketDataStore(engine=engine)

    first = store.upsert(MarketDataSnapshot("48201", "Houses", "renovated", "[]", fetched_at=T0,
                                            expires_at=T0 + timedelta(days=30)))
    second = store.upsert(MarketDataSnapshot("48201", "Houses", "renovated", '[{"zpid": "1"}]',
                                             fetched_at=T0 + timedelta(days=31), expires_at=T0 + timedelta(days=61)))
    other = store.upsert(MarketDataSnapshot("48201", "Houses", "", "[]"))

    assert first.id == second.id
    assert other.id != first.id

    got = store.get("48201", "Houses", "renovated")
    assert got.raw_json == '[{"zpid": "1"}]'
    assert got.expires_at.replace(tzinfo=None) == (T0 + timedelta(days=61)).replace(tzinfo=None)
    assert store.get("48201", "Condos", "renovated") is None


def test_property_create_persists_comparables_and_evaluation_together(engine):
    props = SqlPropertyRepository(engine=engine)
    evals = SqlEvaluationRepository(engine=engine)

    comps = [comparable(p, zpid=i) for i, p in enumerate([300_000, 310_000, 320_000], start=1)]
    items = (RehabLineItem(RehabLineItemType.other, RehabCondition.moderate, 1, Decimal("50000.50")),)
    ev = evaluate(comps, RehabEstimate(items), DealSettings())

    saved, saved_ev = props.create(
        _prop(),
        comparables=[ComparableRecord.from_comparable(c) for c in comps],
        evaluation=ev,
    )

    assert saved.id is not None
    assert saved_ev.id is not None
    assert saved_ev.property_id == saved.id
    assert saved_ev.arv == 310_000
    assert saved_ev.roi == ev.roi
    assert saved_ev.costs == ev.costs
    assert [c.price for c in saved_ev.comparables] == [300_000, 310_000, 320_000]
    assert saved_ev.rehab_estimate.line_items[0].unit_cost == Decimal("50000.50")

    assert len(props.comparables(saved.id)) == 3
    assert evals.latest_for_property(saved.id).id == saved_ev.id


def test_property_without_evaluation_and_lookup_by_address(engine):
    props = SqlPropertyRepository(engine=engine)

    saved, ev = props.create(_prop())

    assert ev is None
    assert props.get_by_address(" 100 Main St ", "u1").id == saved.id
    assert props.get_by_address("100 Main St", "u2") is None
    assert [p.id for p in props.list_for_user("u1")] == [saved.id]


def test_evaluations_list_newest_first(engine):
    props = SqlPropertyRepository(engine=engine)
    evals = SqlEvaluationRepository(engine=engine)
    saved, _ = props.create(_prop())
    stored = props.add_comparable(ComparableRecord(property_id=saved.id, price=200_000, address="1 Oak St"))

    first = evals.add(replace(evaluate([stored], None, DealSettings()), property_id=saved.id))
    second = evals.add(replace(evaluate([stored], None, DealSettings()), property_id=saved.id))

    listed = evals.list_for_property(saved.id)
    assert [e.id for e in listed] == [second.id, first.id]
    assert listed[0].comparables[0].id == stored.id


def test_delete_property_removes_children(engine):
    props = SqlPropertyRepository(engine=engine)
    evals = SqlEvaluationRepository(engine=engine)
    comps = [comparable(p, zpid=i) for i, p in enumerate([300_000, 310_000, 320_000], start=1)]
    saved, _ = props.create(
        _prop(),
        comparables=[ComparableRecord.from_comparable(c) for c in comps],
        evaluation=evaluate(comps, None, DealSettings()),
    )

    props.delete(saved.id)

    assert props.get(saved.id) is None
    assert props.comparables(saved.id) == []
    assert evals.list_for_property(saved.id) == []


def test_update_unknown_property_raises(engine):
    props = SqlPropertyRepository(engine=engine)
    with pytest.raises(NotFoundError):
        props.update(_prop(id=999))


def test_settings_defaults_update_and_reset(engine):
    svc = DealSettingsService(SqlDealSettingsRepository(engine=engine))

    assert svc.get("u1") == DealSettings()

    custom = DealSettings(
        monthly_insurance=Decimal("175.50"),
        profit_target_type=ProfitTargetType.fixed_amount,
        profit_target_value=Decimal("25000"),
        default_holding_months=6,
    )
    svc.update("u1", custom)
    assert svc.get("u1") == custom
    assert svc.get("u2") == DealSettings()

    assert svc.reset("u1") == DealSettings()
    assert svc.get("u1") == DealSettings()


def test_lender_archive_hides_from_default_list(engine):
    svc = LenderService(SqlLenderRepository(engine=engine))

    a = svc.create("u1", Lender(name="Alpha Capital", annual_rate="11%", origination_fee="2"))
    b = svc.create("u1", Lender(name="Beta Funding", annual_rate=Decimal("0.095")))
    svc.create("u2", Lender(name="Other User Co", annual_rate=0.1))

    assert a.origination_fee == Decimal("0.02")
    assert [l.name for l in svc.list("u1")] == ["Alpha Capital", "Beta Funding"]

    archived = svc.archive("u1", a.id)
    assert archived.is_archived
    assert archived.archived_at is not None

    assert [l.id for l in svc.list("u1")] == [b.id]
    assert {l.id for l in svc.list("u1", include_archived=True)} == {a.id, b.id}

    with pytest.raises(NotFoundError):
        svc.get("u1", a.id)
    with pytest.raises(NotFoundError):
        svc.update("u1", a.id, {"name": "Renamed"})
    with pytest.raises(NotFoundError):
        svc.get("u2", b.id)

    updated = svc.update("u1", b.id, {"annual_rate": "10%", "note": "new terms", "user_id": "hijack"})
    assert updated.annual_rate == Decimal("0.1")
    assert updated.note == "new terms"
    assert updated.user_id == "u1"


def test_rehab_template_upsert_is_unique_per_type_and_condition(engine):
    svc = RehabTemplateService(SqlRehabTemplateRepository(engine=engine))

    t1 = svc.upsert("u1", RehabLineItemType.kitchen, RehabCondition.heavy, 30000)
    t2 = svc.upsert("u1", RehabLineItemType.kitchen, RehabCondition.heavy, "32500.25")
    svc.upsert("u1", RehabLineItemType.kitchen, RehabCondition.cosmetic, 5000)

    assert t1.id == t2.id
    assert len(svc.list("u1")) == 2
    assert svc.cost_for("u1", RehabLineItemType.kitchen, RehabCondition.heavy) == Decimal("32500.25")
    assert svc.cost_for("u1", RehabLineItemType.roof, RehabCondition.heavy) is None

    assert svc.seed_defaults("u1") == 46


class _LateMissStore(SqlMarketDataStore):
    """Misses its first lookup, as if another writer inserted the key meanwhile."""

    def __init__(self, engine):
        super().__init__(engine=engine)
        self.misses = 1

    def _find(self, session, zip_code, home_type, keywords):
        if self.misses:
            self.misses -= 1
            return None
        return super()._find(session, zip_code, home_type, keywords)


def test_market_data_upsert_conflict_falls_back_to_update(engine):
    first = SqlMarketDataStore(engine=engine).upsert(
        MarketDataSnapshot("48201", "Houses", "renovated", "[]", fetched_at=T0, expires_at=T0 + timedelta(days=30))
    )

    racing = _LateMissStore(engine)
    second = racing.upsert(
        MarketDataSnapshot("48201", "Houses", "renovated", '[{"zpid": "2"}]', fetched_at=T0 + timedelta(hours=1),
                           expires_at=T0 + timedelta(days=30, hours=1))
    )

    assert racing.misses == 0
    assert second.id == first.id
    assert SqlMarketDataStore(engine=engine).get("48201", "Houses", "renovated").raw_json == '[{"zpid": "2"}]'
