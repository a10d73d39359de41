from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any

from dealeval.domain.rehab import RehabEstimate


@dataclass(frozen=True)
class CostBreakdown:
    agent_commission: int          # ARV x commission
    selling_closing_costs: int     # ARV x selling closing rate
    buying_closing_costs: int      # max offer x buying closing rate
    property_taxes: int            # over the holding period
    insurance: int
    utilities: int
    contingency_buffer: int        # repair cost x contingency

    @property
    def total(self) -> int:
        return (
            self.agent_commission
            + self.selling_closing_costs
            + self.buying_closing_costs
            + self.property_taxes
            + self.insurance
            + self.utilities
            + self.contingency_buffer
        )


@dataclass(frozen=True)
class FinancingBreakdown:
    lender_id: int | None
    down_payment: int
    loan_amount: int
    monthly_payment: int
    total_interest: int            # payments over the hold minus principal
    origination_fee_cost: int
    loan_service_fee_cost: int

    @property
    def total_financing_costs(self) -> int:
        return self.total_interest + self.origination_fee_cost + self.loan_service_fee_cost


@dataclass(frozen=True)
class Evaluation:
    arv: int
    repair_cost: int
    max_offer: int
    profit: int
    roi: Decimal | None            # percent, 2 dp; None when max_offer <= 0

    costs: CostBreakdown
    financing: FinancingBreakdown | None

    profit_target: int
    comparables: tuple[Any, ...] = ()  # Comparable or ComparableRecord
    rehab_estimate: RehabEstimate = field(default_factory=RehabEstimate)

    id: int | None = None
    property_id: int | None = None
    created_at: datetime | None = None

    # Rental metrics are set externally, never computed here
    purchase_price: int | None = None
    rental_income: int | None = None
    cap_rate: int | None = None
    cash_on_cash: int | None = None

    @property
    def total_costs(self) -> int:
        financing = self.financing.total_financing_costs if self.financing else 0
        return self.costs.total + financing

    @property
    def net_profit(self) -> int:
        return self.profit - self.total_costs

    @property
    def meets_profit_target(self) -> bool:
        return self.net_profit >= self.profit_target
