# src/dealeval/domain/settings.py
from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ProfitTargetType(str, enum.Enum):
    percentage_of_arv = "PercentageOfArv"
    fixed_amount = "FixedAmount"


def _fraction(v: Any) -> Decimal:
    """
    Accept 0.06, "0.06", "6%" or 6 and return 0.06.

    A trailing "%" always means percent ("0.5%" is 0.005); bare numbers above
    1 are read as percent.
    """
    percent = False
    if isinstance(v, str):
        v = v.strip()
        if v.endswith("%"):
            percent = True
            v = v[:-1].strip()
    try:
        d = Decimal(str(v))
    except (InvalidOperation, TypeError, ValueError) as err:
        raise ValueError("rate must be numeric or percent-like") from err
    if not d.is_finite():
        raise ValueError("rate must be finite")
    if percent or d > 1:
        d = d / 100
    if d < 0:
        raise ValueError("rate must be non-negative")
    return d


class DealSettings(BaseModel):
    """
    Per-user cost assumptions for flip evaluations.

    Rates are fractions (0.06 == 6%). Monthly amounts are currency units.
    """
    model_config = ConfigDict(frozen=True)

    # Selling costs (applied to ARV)
    selling_agent_commission: Decimal = Decimal("0.06")
    selling_closing_costs: Decimal = Decimal("0.02")

    # Buying costs (applied to purchase price)
    buying_closing_costs: Decimal = Decimal("0.02")

    # Holding costs
    annual_property_tax_rate: Decimal = Decimal("0.012")
    monthly_insurance: Decimal = Decimal("150")
    monthly_utilities: Decimal = Decimal("200")
    default_holding_months: int = Field(default=4, ge=1, le=120)

    # Profit & risk
    profit_target_type: ProfitTargetType = ProfitTargetType.percentage_of_arv
    profit_target_value: Decimal = Decimal("0.15")
    contingency_percentage: Decimal = Decimal("0.10")

    # Financing
    down_payment_percentage: Decimal = Decimal("0.20")

    @field_validator(
        "selling_agent_commission",
        "selling_closing_costs",
        "buying_closing_costs",
        "annual_property_tax_rate",
        "contingency_percentage",
        "down_payment_percentage",
        mode="before",
    )
    @classmethod
    def _rates(cls, v: Any) -> Decimal:
        return _fraction(v)

    @field_validator("monthly_insurance", "monthly_utilities", "profit_target_value", mode="before")
    @classmethod
    def _non_negative_amount(cls, v: Any) -> Decimal:
        try:
            d = Decimal(str(v))
        except (InvalidOperation, TypeError, ValueError) as err:
            raise ValueError("amount must be numeric") from err
        if not d.is_finite() or d < 0:
            raise ValueError("amount must be non-negative")
        return d


class Lender(BaseModel):
    """
    A hard-money / private lender the user borrows from.

    origination_fee is a one-time fraction of the loan; loan_service_fee is a
    fraction of the loan charged per month held.
    """
    id: int | None = None
    user_id: str = ""
    name: str
    annual_rate: Decimal
    origination_fee: Decimal = Decimal("0")
    loan_service_fee: Decimal = Decimal("0")
    note: str | None = None
    is_archived: bool = False
    archived_at: datetime | None = None

    @field_validator("annual_rate", "origination_fee", "loan_service_fee", mode="before")
    @classmethod
    def _rates(cls, v: Any) -> Decimal:
        return _fraction(v)
