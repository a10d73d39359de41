# src/dealeval/domain/finance.py
from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from dealeval.domain.errors import InvalidInputError
from dealeval.domain.evaluation import CostBreakdown, Evaluation, FinancingBreakdown
from dealeval.domain.listing import Comparable
from dealeval.domain.rehab import RehabEstimate
from dealeval.domain.settings import DealSettings, Lender, ProfitTargetType

MAX_OFFER_RATE = Decimal("0.70")

_ONE = Decimal("1")
_CENT = Decimal("0.01")


def to_money(value: Decimal) -> int:
    """Whole currency units, half-up."""
    return int(value.quantize(_ONE, rounding=ROUND_HALF_UP))


def annuity_payment(rate_monthly: Decimal, n_months: int, principal: Decimal) -> Decimal:
    r = rate_monthly
    if n_months <= 0:
        raise InvalidInputError("loan term must be at least one month")
    if r == 0:
        return principal / n_months
    growth = (1 + r) ** n_months
    return principal * (r * growth) / (growth - 1)


def _price_of(comp: Any) -> int | None:
    if isinstance(comp, Comparable):
        return comp.listing.price
    return getattr(comp, "price", None)


def after_repair_value(comparables: Iterable[Any]) -> int:
    prices = [p for p in (_price_of(c) for c in comparables) if p is not None and p > 0]
    if not prices:
        raise InvalidInputError("Comparables must have valid prices to calculate ARV")
    return to_money(Decimal(sum(prices)) / len(prices))


def build_financing(
    max_offer: int,
    lender: Lender,
    settings: DealSettings,
) -> FinancingBreakdown:
    """
    Loan sized off the max offer, repaid over the holding period.

    TotalInterest is payments-over-the-hold minus principal: an approximation
    for a short flip hold, not the interest of a full-term amortized loan.
    """
    months = settings.default_holding_months
    purchase = Decimal(max(max_offer, 0))

    loan_amount = purchase * (_ONE - settings.down_payment_percentage)
    down_payment = purchase - loan_amount

    if loan_amount > 0:
        monthly_payment = annuity_payment(lender.annual_rate / 12, months, loan_amount)
        total_interest = monthly_payment * months - loan_amount
    else:
        monthly_payment = Decimal("0")
        total_interest = Decimal("0")

    return FinancingBreakdown(
        lender_id=lender.id,
        down_payment=to_money(down_payment),
        loan_amount=to_money(loan_amount),
        monthly_payment=to_money(monthly_payment),
        total_interest=to_money(total_interest),
        origination_fee_cost=to_money(loan_amount * lender.origination_fee),
        loan_service_fee_cost=to_money(loan_amount * lender.loan_service_fee * months),
    )


def evaluate(
    comparables: Iterable[Any],
    rehab_estimate: RehabEstimate | None,
    settings: DealSettings,
    lender: Lender | None = None,
    *,
    max_offer_rate: Decimal = MAX_OFFER_RATE,
) -> Evaluation:
    """
    Flip numbers for one subject property (70% rule + itemized costs).

    Raises InvalidInputError when no comparable carries a usable price.
    """
    comps = list(comparables)
    arv = after_repair_value(comps)

    estimate = rehab_estimate or RehabEstimate()
    repair_cost = to_money(estimate.total_cost)

    max_offer = to_money(arv * Decimal(str(max_offer_rate))) - repair_cost
    profit = arv - repair_cost - max_offer

    roi: Decimal | None = None
    if max_offer > 0:
        roi = (Decimal(profit) / Decimal(max_offer) * 100).quantize(_CENT, rounding=ROUND_HALF_UP)

    months = settings.default_holding_months
    arv_d = Decimal(arv)

    costs = CostBreakdown(
        agent_commission=to_money(arv_d * settings.selling_agent_commission),
        selling_closing_costs=to_money(arv_d * settings.selling_closing_costs),
        buying_closing_costs=to_money(Decimal(max_offer) * settings.buying_closing_costs),
        property_taxes=to_money(arv_d * settings.annual_property_tax_rate / 12 * months),
        insurance=to_money(settings.monthly_insurance * months),
        utilities=to_money(settings.monthly_utilities * months),
        contingency_buffer=to_money(Decimal(repair_cost) * settings.contingency_percentage),
    )

    financing = build_financing(max_offer, lender, settings) if lender is not None else None

    if settings.profit_target_type == ProfitTargetType.percentage_of_arv:
        profit_target = to_money(arv_d * settings.profit_target_value)
    else:
        profit_target = to_money(settings.profit_target_value)

    return Evaluation(
        arv=arv,
        repair_cost=repair_cost,
        max_offer=max_offer,
        profit=profit,
        roi=roi,
        costs=costs,
        financing=financing,
        profit_target=profit_target,
        comparables=tuple(comps),
        rehab_estimate=estimate,
    )
