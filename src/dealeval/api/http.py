# src/dealeval/api/http.py
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response

from dealeval.adapters.config import config
from dealeval.adapters.geocoder import NominatimGeocoder
from dealeval.adapters.logging_utils import get_logger
from dealeval.adapters.sql_repo import (
    SqlDealSettingsRepository,
    SqlEvaluationRepository,
    SqlLenderRepository,
    SqlMarketDataStore,
    SqlPropertyRepository,
    SqlRehabTemplateRepository,
    make_engine,
)
from dealeval.adapters.zillow_client import ProviderConfig, ZillowClient
from dealeval.domain.errors import (
    ConfigurationError,
    DealEvaluatorError,
    InsufficientComparablesError,
    InvalidInputError,
    NoMarketDataError,
    NotFoundError,
    ProviderUnavailableError,
)
from dealeval.domain.listing import PropertyType, to_home_type
from dealeval.domain.property import Property
from dealeval.domain.rehab import RehabLineItem
from dealeval.domain.settings import DealSettings, Lender
from dealeval.services.comps import find_comparables
from dealeval.services.market_data import MarketDataService
from dealeval.services.property_service import PropertyService
from dealeval.services.settings import DealSettingsService, LenderService, RehabTemplateService

from .schemas import (
    EvaluationCreate,
    EvaluationOut,
    FreshnessOut,
    LenderIn,
    LenderPatch,
    MarketDataOut,
    PropertyCreate,
    PropertyCreated,
    PropertyUpdate,
    RehabTemplateIn,
    RehabTemplateOut,
)

logger = get_logger(__name__)

app = FastAPI(title="Deal Evaluator")


@dataclass
class Services:
    properties: PropertyService
    market_data: MarketDataService
    settings: DealSettingsService
    lenders: LenderService
    templates: RehabTemplateService


def build_services(db_uri: str | None = None, provider: Any = None, geocoder: Any = None) -> Services:
    """Wire repositories and clients for one database."""
    engine = make_engine(db_uri or config.DB_URI)

    market_data = MarketDataService(
        SqlMarketDataStore(engine=engine),
        provider or ZillowClient(ProviderConfig.from_config()),
    )
    settings = DealSettingsService(SqlDealSettingsRepository(engine=engine))
    lenders = LenderService(SqlLenderRepository(engine=engine))
    templates = RehabTemplateService(SqlRehabTemplateRepository(engine=engine))

    properties = PropertyService(
        properties=SqlPropertyRepository(engine=engine),
        evaluations=SqlEvaluationRepository(engine=engine),
        market_data=market_data,
        geocoder=geocoder or NominatimGeocoder(),
        settings=settings,
        lenders=lenders,
        templates=templates,
    )
    return Services(properties, market_data, settings, lenders, templates)


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services()


def current_user(x_user_id: str = Header(default="default")) -> str:
    # Identity is owned by whatever sits in front of this API
    return x_user_id.strip() or "default"


_STATUS = (
    (NotFoundError, 404),
    (NoMarketDataError, 404),
    (InsufficientComparablesError, 422),
    (InvalidInputError, 422),
    (ProviderUnavailableError, 502),
    (ConfigurationError, 500),
)


def _to_http(e: DealEvaluatorError) -> HTTPException:
    for exc_type, status in _STATUS:
        if isinstance(e, exc_type):
            break
    else:
        status = 500
    if status >= 500:
        logger.error("request_failed", extra={"context": {"error": repr(e)}})
    return HTTPException(status_code=status, detail=str(e))


def _property_out(p: Property) -> dict[str, Any]:
    return p.model_dump(mode="json")


# -----------------------------
# Health
# -----------------------------
@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok", "env": config.ENV}


# -----------------------------
# Properties
# -----------------------------
@app.post("/properties", response_model=PropertyCreated, status_code=201)
def create_property(
    payload: PropertyCreate,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> PropertyCreated:
    data = payload.model_dump(exclude={"repair_cost", "lender_id", "id", "user_id", "created_at"})
    try:
        prop = Property(user_id=user_id, **{k: v for k, v in data.items() if k in Property.model_fields})
        saved, evaluation = services.properties.create_property(
            user_id,
            prop,
            repair_cost=payload.repair_cost,
            lender_id=payload.lender_id,
        )
    except DealEvaluatorError as e:
        raise _to_http(e) from e

    return PropertyCreated(
        property=_property_out(saved),
        evaluation=EvaluationOut.from_domain(evaluation) if evaluation else None,
    )


@app.get("/properties", response_model=list[dict])
def list_properties(
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> list[dict]:
    return [_property_out(p) for p in services.properties.list(user_id)]


@app.get("/properties/{property_id}", response_model=dict)
def get_property(
    property_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict:
    try:
        return _property_out(services.properties.get(user_id, property_id))
    except DealEvaluatorError as e:
        raise _to_http(e) from e


@app.patch("/properties/{property_id}", response_model=dict)
def update_property(
    property_id: int,
    payload: PropertyUpdate,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict:
    try:
        updated = services.properties.update(user_id, property_id, payload.model_dump(exclude_none=True))
        return _property_out(updated)
    except DealEvaluatorError as e:
        raise _to_http(e) from e


@app.delete("/properties/{property_id}", status_code=204)
def delete_property(
    property_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Response:
    try:
        services.properties.delete(user_id, property_id)
    except DealEvaluatorError as e:
        raise _to_http(e) from e
    return Response(status_code=204)


@app.get("/properties/{property_id}/comparables", response_model=list[dict])
def list_comparables(
    property_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> list[dict]:
    try:
        return [c.model_dump(mode="json") for c in services.properties.comparables(user_id, property_id)]
    except DealEvaluatorError as e:
        raise _to_http(e) from e


@app.delete("/properties/{property_id}/comparables/{comparable_id}", status_code=204)
def delete_comparable(
    property_id: int,
    comparable_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Response:
    try:
        services.properties.delete_comparable(user_id, property_id, comparable_id)
    except DealEvaluatorError as e:
        raise _to_http(e) from e
    return Response(status_code=204)


# -----------------------------
# Evaluations
# -----------------------------
@app.get("/properties/{property_id}/evaluations", response_model=list[EvaluationOut])
def list_evaluations(
    property_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> list[EvaluationOut]:
    try:
        return [EvaluationOut.from_domain(e) for e in services.properties.evaluations_for(user_id, property_id)]
    except DealEvaluatorError as e:
        raise _to_http(e) from e


@app.get("/properties/{property_id}/evaluations/latest", response_model=EvaluationOut)
def latest_evaluation(
    property_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> EvaluationOut:
    try:
        return EvaluationOut.from_domain(services.properties.latest_evaluation(user_id, property_id))
    except DealEvaluatorError as e:
        raise _to_http(e) from e


@app.post("/properties/{property_id}/evaluations", response_model=EvaluationOut, status_code=201)
def create_evaluation(
    property_id: int,
    payload: EvaluationCreate,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> EvaluationOut:
    try:
        items = None
        if payload.line_items is not None:
            items = [RehabLineItem(**li.model_dump()) for li in payload.line_items]
        evaluation = services.properties.create_evaluation(
            user_id,
            property_id,
            comparable_ids=payload.comparable_ids,
            line_items=items,
            lender_id=payload.lender_id,
        )
        return EvaluationOut.from_domain(evaluation)
    except DealEvaluatorError as e:
        raise _to_http(e) from e


# -----------------------------
# Market data + comps
# -----------------------------
@app.get("/market-data/{zip_code}", response_model=MarketDataOut)
def get_market_data(
    zip_code: str,
    property_type: PropertyType = Query(PropertyType.single_family),
    keywords: str | None = Query(default=None),
    services: Services = Depends(get_services),
) -> MarketDataOut:
    home_type = to_home_type(property_type)
    kw = config.ARV_KEYWORDS if keywords is None else keywords
    try:
        listings = services.market_data.get_listings(zip_code, home_type, kw)
    except DealEvaluatorError as e:
        raise _to_http(e) from e
    return MarketDataOut(
        zip_code=zip_code,
        home_type=home_type,
        keywords=kw,
        count=len(listings),
        listings=[l.raw for l in listings],
    )


@app.post("/market-data/{zip_code}/refresh", response_model=MarketDataOut)
def refresh_market_data(
    zip_code: str,
    property_type: PropertyType = Query(PropertyType.single_family),
    keywords: str | None = Query(default=None),
    services: Services = Depends(get_services),
) -> MarketDataOut:
    home_type = to_home_type(property_type)
    kw = config.ARV_KEYWORDS if keywords is None else keywords
    try:
        listings = services.market_data.refresh(zip_code, home_type, kw)
    except DealEvaluatorError as e:
        raise _to_http(e) from e
    return MarketDataOut(
        zip_code=zip_code,
        home_type=home_type,
        keywords=kw,
        count=len(listings),
        listings=[l.raw for l in listings],
    )


@app.get("/market-data/{zip_code}/freshness", response_model=FreshnessOut)
def market_data_freshness(
    zip_code: str,
    property_type: PropertyType = Query(PropertyType.single_family),
    keywords: str | None = Query(default=None),
    services: Services = Depends(get_services),
) -> FreshnessOut:
    home_type = to_home_type(property_type)
    kw = config.ARV_KEYWORDS if keywords is None else keywords
    return FreshnessOut(
        zip_code=zip_code,
        home_type=home_type,
        keywords=kw,
        fresh=services.market_data.is_fresh(zip_code, home_type, kw),
    )


@app.get("/comps", response_model=list[dict])
def search_comps(
    zip_code: str,
    property_type: PropertyType = Query(PropertyType.single_family),
    bedrooms: int | None = Query(default=None, ge=0),
    bathrooms: float | None = Query(default=None, ge=0),
    sqft: int | None = Query(default=None, gt=0),
    exclude: str | None = None,
    services: Services = Depends(get_services),
) -> list[dict]:
    try:
        listings = services.market_data.get_listings(zip_code, to_home_type(property_type), config.ARV_KEYWORDS)
        comps = find_comparables(listings, property_type, bedrooms, bathrooms, sqft, exclude=exclude)
    except DealEvaluatorError as e:
        raise _to_http(e) from e

    return [
        {
            "listing_id": c.listing.listing_id,
            "address": c.listing.full_address,
            "price": c.listing.price,
            "sqft": c.listing.sqft,
            "bedrooms": c.listing.bedrooms,
            "bathrooms": c.listing.bathrooms,
            "sqft_distance": c.sqft_distance,
            "tier": c.tier,
        }
        for c in comps
    ]


# -----------------------------
# Settings
# -----------------------------
@app.get("/settings", response_model=DealSettings)
def get_settings(
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> DealSettings:
    return services.settings.get(user_id)


@app.put("/settings", response_model=DealSettings)
def put_settings(
    payload: DealSettings,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> DealSettings:
    return services.settings.update(user_id, payload)


@app.post("/settings/reset", response_model=DealSettings)
def reset_settings(
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> DealSettings:
    return services.settings.reset(user_id)


# -----------------------------
# Lenders
# -----------------------------
@app.get("/lenders", response_model=list[Lender])
def list_lenders(
    include_archived: bool = False,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> list[Lender]:
    return services.lenders.list(user_id, include_archived=include_archived)


@app.post("/lenders", response_model=Lender, status_code=201)
def create_lender(
    payload: LenderIn,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Lender:
    try:
        lender = Lender(user_id=user_id, **payload.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return services.lenders.create(user_id, lender)


@app.get("/lenders/{lender_id}", response_model=Lender)
def get_lender(
    lender_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Lender:
    try:
        return services.lenders.get(user_id, lender_id, include_archived=True)
    except DealEvaluatorError as e:
        raise _to_http(e) from e


@app.patch("/lenders/{lender_id}", response_model=Lender)
def update_lender(
    lender_id: int,
    payload: LenderPatch,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Lender:
    try:
        return services.lenders.update(user_id, lender_id, payload.model_dump(exclude_none=True))
    except DealEvaluatorError as e:
        raise _to_http(e) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@app.post("/lenders/{lender_id}/archive", response_model=Lender)
def archive_lender(
    lender_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Lender:
    try:
        return services.lenders.archive(user_id, lender_id)
    except DealEvaluatorError as e:
        raise _to_http(e) from e


# -----------------------------
# Rehab cost templates
# -----------------------------
@app.get("/rehab-templates", response_model=list[RehabTemplateOut])
def list_rehab_templates(
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> list[RehabTemplateOut]:
    return [
        RehabTemplateOut(
            id=t.id,
            line_item_type=t.line_item_type,
            condition=t.condition,
            default_cost=t.default_cost,
        )
        for t in services.templates.list(user_id)
    ]


@app.put("/rehab-templates", response_model=RehabTemplateOut)
def upsert_rehab_template(
    payload: RehabTemplateIn,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> RehabTemplateOut:
    try:
        t = services.templates.upsert(user_id, payload.line_item_type, payload.condition, payload.default_cost)
    except DealEvaluatorError as e:
        raise _to_http(e) from e
    return RehabTemplateOut(id=t.id, line_item_type=t.line_item_type, condition=t.condition, default_cost=t.default_cost)


@app.delete("/rehab-templates/{template_id}", status_code=204)
def delete_rehab_template(
    template_id: int,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> Response:
    try:
        services.templates.delete(user_id, template_id)
    except DealEvaluatorError as e:
        raise _to_http(e) from e
    return Response(status_code=204)


@app.post("/rehab-templates/seed", response_model=dict)
def seed_rehab_templates(
    overwrite: bool = False,
    user_id: str = Depends(current_user),
    services: Services = Depends(get_services),
) -> dict:
    return {"written": services.templates.seed_defaults(user_id, overwrite=overwrite)}
