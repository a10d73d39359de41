# src/dealeval/adapters/sql_repo.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool
from sqlmodel import JSON, Column, Field, Session, SQLModel, Text, UniqueConstraint, create_engine, select

from dealeval.adapters.logging_utils import get_logger
from dealeval.domain.errors import NotFoundError
from dealeval.domain.evaluation import CostBreakdown, Evaluation, FinancingBreakdown
from dealeval.domain.listing import PropertyCondition, PropertyType
from dealeval.domain.ports import MarketDataSnapshot, RehabCostTemplate
from dealeval.domain.property import ComparableRecord, ComparableType, Property
from dealeval.domain.rehab import RehabCondition, RehabEstimate, RehabLineItem, RehabLineItemType
from dealeval.domain.settings import DealSettings, Lender

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def make_engine(uri: str = "sqlite:///dealeval.db") -> Engine:
    """
    One engine per database. In-memory SQLite needs a single shared
    connection or every session sees an empty database.
    """
    if uri.startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if uri in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(uri, echo=False, **kwargs)
    else:
        engine = create_engine(uri, echo=False)
    SQLModel.metadata.create_all(engine)
    return engine


class _SqlRepo:
    def __init__(self, uri: str = "sqlite:///dealeval.db", engine: Engine | None = None):
        self.engine = engine or make_engine(uri)


# ---------- Properties, comparables, evaluations ----------

class PropertyRow(SQLModel, table=True):
    __tablename__ = "properties"

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=_utcnow, index=True)

    user_id: str = Field(index=True)
    property_type: str
    condition: str

    address: str = Field(index=True)
    city: str
    state: str
    zip_code: str = Field(index=True)

    price: int | None = None
    sqft: int | None = None
    bedrooms: int | None = None
    bathrooms: int | None = None
    lot_size_sqft: int | None = None
    year_built: int | None = None

    latitude: float | None = None
    longitude: float | None = None


class ComparableRow(SQLModel, table=True):
    __tablename__ = "comparables"

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=_utcnow)
    property_id: int = Field(index=True)

    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""

    price: int | None = None
    sqft: int | None = None
    bedrooms: int | None = None
    bathrooms: float | None = None
    latitude: float | None = None
    longitude: float | None = None

    sale_date: datetime | None = None
    source: str = "Zillow"
    listing_url: str | None = None
    comparable_type: str = ComparableType.arv.value


class EvaluationRow(SQLModel, table=True):
    __tablename__ = "evaluations"

    id: int | None = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=_utcnow, index=True)
    property_id: int = Field(index=True)

    arv: int
    repair_cost: int
    max_offer: int
    profit: int
    roi: Decimal | None = Field(default=None, max_digits=14, decimal_places=2)
    profit_target: int = 0

    # CostBreakdown / FinancingBreakdown as plain dicts
    costs: dict[str, Any] = Field(sa_column=Column(JSON))
    financing: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))

    purchase_price: int | None = None
    rental_income: int | None = None
    cap_rate: int | None = None
    cash_on_cash: int | None = None


class EvaluationComparableLink(SQLModel, table=True):
    __tablename__ = "evaluation_comparables"

    evaluation_id: int = Field(primary_key=True)
    comparable_id: int = Field(primary_key=True)


class RehabLineItemRow(SQLModel, table=True):
    __tablename__ = "rehab_line_items"

    id: int | None = Field(default=None, primary_key=True)
    evaluation_id: int = Field(index=True)

    line_item_type: str
    condition: str
    quantity: int = 1
    unit_cost: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    notes: str | None = None


def _property_from_row(r: PropertyRow) -> Property:
    return Property(
        id=r.id,
        user_id=r.user_id,
        property_type=PropertyType(r.property_type),
        condition=PropertyCondition(r.condition),
        address=r.address,
        city=r.city,
        state=r.state,
        zip_code=r.zip_code,
        price=r.price,
        sqft=r.sqft,
        bedrooms=r.bedrooms,
        bathrooms=r.bathrooms,
        lot_size_sqft=r.lot_size_sqft,
        year_built=r.year_built,
        latitude=r.latitude,
        longitude=r.longitude,
        created_at=r.created_at,
    )


_PROPERTY_FIELDS = (
    "property_type", "condition",
    "address", "city", "state", "zip_code",
    "price", "sqft", "bedrooms", "bathrooms", "lot_size_sqft", "year_built",
    "latitude", "longitude",
)


def _property_values(prop: Property) -> dict[str, Any]:
    values = {f: getattr(prop, f) for f in _PROPERTY_FIELDS}
    values["property_type"] = PropertyType(prop.property_type).value
    values["condition"] = PropertyCondition(prop.condition).value
    return values


def _comparable_from_row(r: ComparableRow) -> ComparableRecord:
    return ComparableRecord(
        id=r.id,
        property_id=r.property_id,
        address=r.address,
        city=r.city,
        state=r.state,
        zip_code=r.zip_code,
        price=r.price,
        sqft=r.sqft,
        bedrooms=r.bedrooms,
        bathrooms=r.bathrooms,
        latitude=r.latitude,
        longitude=r.longitude,
        sale_date=r.sale_date,
        source=r.source,
        listing_url=r.listing_url,
        comparable_type=ComparableType(r.comparable_type),
    )


def _comparable_row(comp: ComparableRecord, property_id: int) -> ComparableRow:
    data = comp.model_dump(exclude={"id", "property_id"})
    data["comparable_type"] = ComparableType(comp.comparable_type).value
    return ComparableRow(property_id=property_id, **data)


def _evaluation_row(ev: Evaluation, property_id: int) -> EvaluationRow:
    costs = {k: getattr(ev.costs, k) for k in CostBreakdown.__dataclass_fields__}
    financing = None
    if ev.financing is not None:
        financing = {k: getattr(ev.financing, k) for k in FinancingBreakdown.__dataclass_fields__}
    return EvaluationRow(
        property_id=property_id,
        arv=ev.arv,
        repair_cost=ev.repair_cost,
        max_offer=ev.max_offer,
        profit=ev.profit,
        roi=ev.roi,
        profit_target=ev.profit_target,
        costs=costs,
        financing=financing,
        purchase_price=ev.purchase_price,
        rental_income=ev.rental_income,
        cap_rate=ev.cap_rate,
        cash_on_cash=ev.cash_on_cash,
    )


def _write_evaluation(
    session: Session,
    ev: Evaluation,
    property_id: int,
    comparable_ids: Sequence[int],
) -> EvaluationRow:
    row = _evaluation_row(ev, property_id)
    session.add(row)
    session.flush()

    for cid in dict.fromkeys(comparable_ids):
        session.add(EvaluationComparableLink(evaluation_id=row.id, comparable_id=cid))
    for li in ev.rehab_estimate.line_items:
        session.add(
            RehabLineItemRow(
                evaluation_id=row.id,
                line_item_type=li.line_item_type.value,
                condition=li.condition.value,
                quantity=li.quantity,
                unit_cost=li.unit_cost,
                notes=li.notes,
            )
        )
    return row


def _load_evaluation(session: Session, row: EvaluationRow) -> Evaluation:
    links = session.exec(
        select(EvaluationComparableLink)
        .where(EvaluationComparableLink.evaluation_id == row.id)
        .order_by(EvaluationComparableLink.comparable_id)
    ).all()
    comps: list[ComparableRecord] = []
    for link in links:
        crow = session.get(ComparableRow, link.comparable_id)
        if crow is not None:
            comps.append(_comparable_from_row(crow))

    items = session.exec(
        select(RehabLineItemRow).where(RehabLineItemRow.evaluation_id == row.id).order_by(RehabLineItemRow.id)
    ).all()
    estimate = RehabEstimate(
        tuple(
            RehabLineItem(
                line_item_type=RehabLineItemType(i.line_item_type),
                condition=RehabCondition(i.condition),
                quantity=i.quantity,
                unit_cost=Decimal(str(i.unit_cost)),
                notes=i.notes,
            )
            for i in items
        )
    )

    return Evaluation(
        id=row.id,
        property_id=row.property_id,
        created_at=row.created_at,
        arv=row.arv,
        repair_cost=row.repair_cost,
        max_offer=row.max_offer,
        profit=row.profit,
        roi=Decimal(str(row.roi)) if row.roi is not None else None,
        profit_target=row.profit_target,
        costs=CostBreakdown(**(row.costs or {})),
        financing=FinancingBreakdown(**row.financing) if row.financing else None,
        comparables=tuple(comps),
        rehab_estimate=estimate,
        purchase_price=row.purchase_price,
        rental_income=row.rental_income,
        cap_rate=row.cap_rate,
        cash_on_cash=row.cash_on_cash,
    )


class SqlPropertyRepository(_SqlRepo):
    def get(self, property_id: int) -> Property | None:
        with Session(self.engine) as session:
            row = session.get(PropertyRow, property_id)
            return _property_from_row(row) if row else None

    def get_by_address(self, address: str, user_id: str) -> Property | None:
        with Session(self.engine) as session:
            stmt = select(PropertyRow).where(
                PropertyRow.user_id == user_id,
                PropertyRow.address == address.strip(),
            )
            row = session.exec(stmt).first()
            return _property_from_row(row) if row else None

    def list_for_user(self, user_id: str) -> list[Property]:
        with Session(self.engine) as session:
            stmt = select(PropertyRow).where(PropertyRow.user_id == user_id).order_by(PropertyRow.created_at.desc())
            return [_property_from_row(r) for r in session.exec(stmt)]

    def create(
        self,
        prop: Property,
        *,
        comparables: Sequence[ComparableRecord] = (),
        evaluation: Evaluation | None = None,
    ) -> tuple[Property, Evaluation | None]:
        with Session(self.engine) as session:
            row = PropertyRow(user_id=prop.user_id, **_property_values(prop))
            session.add(row)
            session.flush()

            comp_rows = [_comparable_row(c, row.id) for c in comparables]
            session.add_all(comp_rows)
            session.flush()

            ev_row = None
            if evaluation is not None:
                ev_row = _write_evaluation(session, evaluation, row.id, [c.id for c in comp_rows])

            session.commit()

            saved = _property_from_row(row)
            saved_ev = _load_evaluation(session, ev_row) if ev_row is not None else None
            return saved, saved_ev

    def update(self, prop: Property) -> Property:
        with Session(self.engine) as session:
            row = session.get(PropertyRow, prop.id) if prop.id is not None else None
            if row is None:
                raise NotFoundError(f"property {prop.id} not found")
            for k, v in _property_values(prop).items():
                setattr(row, k, v)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _property_from_row(row)

    def delete(self, property_id: int) -> None:
        with Session(self.engine) as session:
            ev_rows = session.exec(select(EvaluationRow).where(EvaluationRow.property_id == property_id)).all()
            for ev in ev_rows:
                for obj in session.exec(
                    select(EvaluationComparableLink).where(EvaluationComparableLink.evaluation_id == ev.id)
                ):
                    session.delete(obj)
                for obj in session.exec(select(RehabLineItemRow).where(RehabLineItemRow.evaluation_id == ev.id)):
                    session.delete(obj)
                session.delete(ev)

            for comp in session.exec(select(ComparableRow).where(ComparableRow.property_id == property_id)):
                session.delete(comp)

            row = session.get(PropertyRow, property_id)
            if row is not None:
                session.delete(row)
            session.commit()

    def comparables(self, property_id: int) -> list[ComparableRecord]:
        with Session(self.engine) as session:
            stmt = select(ComparableRow).where(ComparableRow.property_id == property_id).order_by(ComparableRow.id)
            return [_comparable_from_row(r) for r in session.exec(stmt)]

    def get_comparable(self, comparable_id: int) -> ComparableRecord | None:
        with Session(self.engine) as session:
            row = session.get(ComparableRow, comparable_id)
            return _comparable_from_row(row) if row else None

    def add_comparable(self, comp: ComparableRecord) -> ComparableRecord:
        with Session(self.engine) as session:
            row = _comparable_row(comp, int(comp.property_id))  # type: ignore[arg-type]
            session.add(row)
            session.commit()
            session.refresh(row)
            return _comparable_from_row(row)

    def delete_comparable(self, comparable_id: int) -> None:
        with Session(self.engine) as session:
            for link in session.exec(
                select(EvaluationComparableLink).where(EvaluationComparableLink.comparable_id == comparable_id)
            ):
                session.delete(link)
            row = session.get(ComparableRow, comparable_id)
            if row is not None:
                session.delete(row)
            session.commit()


class SqlEvaluationRepository(_SqlRepo):
    def add(self, evaluation: Evaluation) -> Evaluation:
        if evaluation.property_id is None:
            raise ValueError("evaluation must belong to a property")
        comparable_ids = [c.id for c in evaluation.comparables if getattr(c, "id", None) is not None]
        with Session(self.engine) as session:
            row = _write_evaluation(session, evaluation, evaluation.property_id, comparable_ids)
            session.commit()
            session.refresh(row)
            return _load_evaluation(session, row)

    def list_for_property(self, property_id: int) -> list[Evaluation]:
        with Session(self.engine) as session:
            stmt = (
                select(EvaluationRow)
                .where(EvaluationRow.property_id == property_id)
                .order_by(EvaluationRow.created_at.desc(), EvaluationRow.id.desc())
            )
            return [_load_evaluation(session, r) for r in session.exec(stmt).all()]

    def latest_for_property(self, property_id: int) -> Evaluation | None:
        with Session(self.engine) as session:
            stmt = (
                select(EvaluationRow)
                .where(EvaluationRow.property_id == property_id)
                .order_by(EvaluationRow.created_at.desc(), EvaluationRow.id.desc())
                .limit(1)
            )
            row = session.exec(stmt).first()
            return _load_evaluation(session, row) if row else None


# ---------- Market data cache ----------

class MarketDataRow(SQLModel, table=True):
    __tablename__ = "market_data"
    __table_args__ = (UniqueConstraint("zip_code", "home_type", "keywords", name="uq_market_data_key"),)

    id: int | None = Field(default=None, primary_key=True)
    zip_code: str = Field(index=True)
    home_type: str
    keywords: str = ""
    source: str = "Zillow"

    raw_json: str = Field(default="[]", sa_column=Column(Text))

    fetched_at: datetime | None = None
    expires_at: datetime | None = Field(default=None, index=True)


def _snapshot_from_row(r: MarketDataRow) -> MarketDataSnapshot:
    return MarketDataSnapshot(
        id=r.id,
        zip_code=r.zip_code,
        home_type=r.home_type,
        keywords=r.keywords,
        source=r.source,
        raw_json=r.raw_json,
        fetched_at=r.fetched_at,
        expires_at=r.expires_at,
    )


class SqlMarketDataStore(_SqlRepo):
    def get(self, zip_code: str, home_type: str, keywords: str) -> MarketDataSnapshot | None:
        with Session(self.engine) as session:
            row = self._find(session, zip_code, home_type, keywords or "")
            return _snapshot_from_row(row) if row else None

    def _find(self, session: Session, zip_code: str, home_type: str, keywords: str) -> MarketDataRow | None:
        stmt = select(MarketDataRow).where(
            MarketDataRow.zip_code == zip_code,
            MarketDataRow.home_type == home_type,
            MarketDataRow.keywords == keywords,
        )
        return session.exec(stmt).first()

    def upsert(self, snapshot: MarketDataSnapshot) -> MarketDataSnapshot:
        try:
            return self._write(snapshot)
        except IntegrityError:
            # Another writer inserted this key first; last write wins
            logger.info(
                "market_data_upsert_conflict",
                extra={"context": {"zip": snapshot.zip_code, "home_type": snapshot.home_type}},
            )
            return self._write(snapshot)

    def _write(self, snapshot: MarketDataSnapshot) -> MarketDataSnapshot:
        keywords = snapshot.keywords or ""
        with Session(self.engine) as session:
            row = self._find(session, snapshot.zip_code, snapshot.home_type, keywords)

            if row:
                row.raw_json = snapshot.raw_json
                row.source = snapshot.source
                row.fetched_at = snapshot.fetched_at
                row.expires_at = snapshot.expires_at
            else:
                row = MarketDataRow(
                    zip_code=snapshot.zip_code,
                    home_type=snapshot.home_type,
                    keywords=keywords,
                    source=snapshot.source,
                    raw_json=snapshot.raw_json,
                    fetched_at=snapshot.fetched_at,
                    expires_at=snapshot.expires_at,
                )
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise
            session.refresh(row)
            return _snapshot_from_row(row)


# ---------- Per-user settings ----------

class DealSettingsRow(SQLModel, table=True):
    __tablename__ = "deal_settings"

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True, unique=True)
    updated_at: datetime = Field(default_factory=_utcnow)

    settings: dict[str, Any] = Field(sa_column=Column(JSON))


class SqlDealSettingsRepository(_SqlRepo):
    def get(self, user_id: str) -> DealSettings | None:
        with Session(self.engine) as session:
            row = session.exec(select(DealSettingsRow).where(DealSettingsRow.user_id == user_id)).first()
            return DealSettings.model_validate(row.settings) if row else None

    def save(self, user_id: str, settings: DealSettings) -> DealSettings:
        payload = settings.model_dump(mode="json")
        with Session(self.engine) as session:
            row = session.exec(select(DealSettingsRow).where(DealSettingsRow.user_id == user_id)).first()
            if row:
                row.settings = payload
                row.updated_at = _utcnow()
            else:
                row = DealSettingsRow(user_id=user_id, settings=payload)
            session.add(row)
            session.commit()
        return settings


class LenderRow(SQLModel, table=True):
    __tablename__ = "lenders"

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    created_at: datetime = Field(default_factory=_utcnow)

    name: str
    annual_rate: Decimal = Field(max_digits=8, decimal_places=6)
    origination_fee: Decimal = Field(default=Decimal("0"), max_digits=8, decimal_places=6)
    loan_service_fee: Decimal = Field(default=Decimal("0"), max_digits=8, decimal_places=6)
    note: str | None = None

    is_archived: bool = Field(default=False, index=True)
    archived_at: datetime | None = None


def _lender_from_row(r: LenderRow) -> Lender:
    return Lender(
        id=r.id,
        user_id=r.user_id,
        name=r.name,
        annual_rate=Decimal(str(r.annual_rate)),
        origination_fee=Decimal(str(r.origination_fee)),
        loan_service_fee=Decimal(str(r.loan_service_fee)),
        note=r.note,
        is_archived=r.is_archived,
        archived_at=r.archived_at,
    )


class SqlLenderRepository(_SqlRepo):
    def list_for_user(self, user_id: str, include_archived: bool = False) -> list[Lender]:
        with Session(self.engine) as session:
            stmt = select(LenderRow).where(LenderRow.user_id == user_id)
            if not include_archived:
                stmt = stmt.where(LenderRow.is_archived == False)  # noqa: E712
            stmt = stmt.order_by(LenderRow.name)
            return [_lender_from_row(r) for r in session.exec(stmt)]

    def get_for_user(self, lender_id: int, user_id: str, include_archived: bool = False) -> Lender | None:
        with Session(self.engine) as session:
            row = session.get(LenderRow, lender_id)
            if row is None or row.user_id != user_id:
                return None
            if row.is_archived and not include_archived:
                return None
            return _lender_from_row(row)

    def save(self, lender: Lender) -> Lender:
        fields = ("name", "annual_rate", "origination_fee", "loan_service_fee", "note", "is_archived", "archived_at")
        with Session(self.engine) as session:
            row = session.get(LenderRow, lender.id) if lender.id is not None else None
            if row is None:
                row = LenderRow(user_id=lender.user_id, **{f: getattr(lender, f) for f in fields})
            else:
                for f in fields:
                    setattr(row, f, getattr(lender, f))
            session.add(row)
            session.commit()
            session.refresh(row)
            return _lender_from_row(row)


class RehabCostTemplateRow(SQLModel, table=True):
    __tablename__ = "rehab_cost_templates"
    __table_args__ = (
        UniqueConstraint("user_id", "line_item_type", "condition", name="uq_rehab_template_key"),
    )

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    line_item_type: str
    condition: str
    default_cost: Decimal = Field(max_digits=14, decimal_places=2)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


def _template_from_row(r: RehabCostTemplateRow) -> RehabCostTemplate:
    return RehabCostTemplate(
        id=r.id,
        user_id=r.user_id,
        line_item_type=RehabLineItemType(r.line_item_type),
        condition=RehabCondition(r.condition),
        default_cost=Decimal(str(r.default_cost)),
        created_at=r.created_at,
        updated_at=r.updated_at,
    )


class SqlRehabTemplateRepository(_SqlRepo):
    def list_for_user(self, user_id: str) -> list[RehabCostTemplate]:
        with Session(self.engine) as session:
            stmt = (
                select(RehabCostTemplateRow)
                .where(RehabCostTemplateRow.user_id == user_id)
                .order_by(RehabCostTemplateRow.line_item_type, RehabCostTemplateRow.condition)
            )
            return [_template_from_row(r) for r in session.exec(stmt)]

    def get(
        self,
        user_id: str,
        line_item_type: RehabLineItemType,
        condition: RehabCondition,
    ) -> RehabCostTemplate | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(RehabCostTemplateRow).where(
                    RehabCostTemplateRow.user_id == user_id,
                    RehabCostTemplateRow.line_item_type == RehabLineItemType(line_item_type).value,
                    RehabCostTemplateRow.condition == RehabCondition(condition).value,
                )
            ).first()
            return _template_from_row(row) if row else None

    def upsert(self, template: RehabCostTemplate) -> RehabCostTemplate:
        t_value = RehabLineItemType(template.line_item_type).value
        c_value = RehabCondition(template.condition).value
        with Session(self.engine) as session:
            row = session.exec(
                select(RehabCostTemplateRow).where(
                    RehabCostTemplateRow.user_id == template.user_id,
                    RehabCostTemplateRow.line_item_type == t_value,
                    RehabCostTemplateRow.condition == c_value,
                )
            ).first()
            if row:
                row.default_cost = template.default_cost
                row.updated_at = _utcnow()
            else:
                row = RehabCostTemplateRow(
                    user_id=template.user_id,
                    line_item_type=t_value,
                    condition=c_value,
                    default_cost=template.default_cost,
                )
            session.add(row)
            session.commit()
            session.refresh(row)
            return _template_from_row(row)

    def delete(self, template_id: int) -> None:
        with Session(self.engine) as session:
            row = session.get(RehabCostTemplateRow, template_id)
            if row is not None:
                session.delete(row)
                session.commit()
