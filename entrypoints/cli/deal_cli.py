from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pandas as pd
import typer
from dotenv import find_dotenv, load_dotenv
from loguru import logger

load_dotenv(find_dotenv())

from dealeval.adapters.config import config  # noqa: E402
from dealeval.adapters.memory_repo import InMemoryMarketDataStore  # noqa: E402
from dealeval.adapters.sql_repo import SqlMarketDataStore, SqlRehabTemplateRepository, make_engine  # noqa: E402
from dealeval.adapters.zillow_client import ProviderConfig, ZillowClient  # noqa: E402
from dealeval.domain.errors import DealEvaluatorError  # noqa: E402
from dealeval.domain.listing import PropertyType, to_home_type  # noqa: E402
from dealeval.services.comps import find_comparables  # noqa: E402
from dealeval.services.market_data import MarketDataService  # noqa: E402
from dealeval.services.settings import RehabTemplateService  # noqa: E402

app = typer.Typer(help="Deal evaluator tools (market data, comps, rehab templates).")


def _market_data(db_uri: str | None, cache: bool = True) -> MarketDataService:
    store = SqlMarketDataStore(engine=make_engine(db_uri or config.DB_URI)) if cache else InMemoryMarketDataStore()
    return MarketDataService(store, ZillowClient(ProviderConfig.from_config()))


@app.command()
def refresh(
    zip: List[str] = typer.Option(..., "--zip", help="ZIP code(s) to refresh"),
    property_type: PropertyType = typer.Option(PropertyType.single_family, help="Subject property type"),
    keywords: Optional[str] = typer.Option(None, help="Keyword filter (default: DEALEVAL_ARV_KEYWORDS)"),
    db_uri: Optional[str] = typer.Option(None, help="Database URI (default: DEALEVAL_DB_URI)"),
) -> None:
    """
    Force-refresh cached sold listings for one or more ZIP codes.
    """
    svc = _market_data(db_uri)
    home_type = to_home_type(property_type)
    kw = config.ARV_KEYWORDS if keywords is None else keywords

    failed = 0
    for z in zip:
        try:
            listings = svc.refresh(z, home_type, kw)
        except DealEvaluatorError as e:
            failed += 1
            logger.error("Refresh failed for {} ({}): {}", z, home_type, e)
            continue
        logger.info("Refreshed {} ({}): {} listings", z, home_type, len(listings))

    if failed:
        raise typer.Exit(code=1)


@app.command()
def comps(
    zip: str = typer.Option(..., "--zip", help="Subject ZIP code"),
    property_type: PropertyType = typer.Option(PropertyType.single_family, help="Subject property type"),
    bedrooms: Optional[int] = typer.Option(None, help="Subject bedrooms"),
    bathrooms: Optional[float] = typer.Option(None, help="Subject bathrooms"),
    sqft: Optional[int] = typer.Option(None, help="Subject living area"),
    exclude: Optional[str] = typer.Option(None, help='Subject address to leave out, e.g. "1 Main St, Detroit, MI 48201"'),
    csv: Optional[Path] = typer.Option(None, "--csv", help="Write the comparables to this CSV file"),
    cache: bool = typer.Option(True, "--cache/--no-cache", help="Use the market data cache"),
    db_uri: Optional[str] = typer.Option(None, help="Database URI (default: DEALEVAL_DB_URI)"),
) -> None:
    """
    Find comparables for a subject property.
    """
    svc = _market_data(db_uri, cache=cache)
    try:
        listings = svc.get_listings(zip, to_home_type(property_type), config.ARV_KEYWORDS)
        found = find_comparables(listings, property_type, bedrooms, bathrooms, sqft, exclude=exclude)
    except DealEvaluatorError as e:
        logger.error("No comparables: {}", e)
        raise typer.Exit(code=1)

    df = pd.DataFrame(
        [
            {
                "tier": c.tier,
                "address": c.listing.full_address,
                "price": c.listing.price,
                "sqft": c.listing.sqft,
                "bedrooms": c.listing.bedrooms,
                "bathrooms": c.listing.bathrooms,
                "sqft_distance": c.sqft_distance,
                "date_sold": c.listing.date_sold,
                "url": c.listing.detail_url,
            }
            for c in found
        ]
    )

    typer.echo(df.to_string(index=False))
    if csv is not None:
        csv.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(csv, index=False)
        logger.info("Wrote {} comparables to {}", len(df), csv)


@app.command("seed-templates")
def seed_templates(
    user: str = typer.Option(..., "--user", help="User id to seed"),
    overwrite: bool = typer.Option(False, "--overwrite", help="Replace existing template costs"),
    db_uri: Optional[str] = typer.Option(None, help="Database URI (default: DEALEVAL_DB_URI)"),
) -> None:
    """
    Write the default rehab cost table for a user.
    """
    svc = RehabTemplateService(SqlRehabTemplateRepository(engine=make_engine(db_uri or config.DB_URI)))
    written = svc.seed_defaults(user, overwrite=overwrite)
    logger.info("Seeded {} rehab templates for {}", written, user)


if __name__ == "__main__":
    app()
