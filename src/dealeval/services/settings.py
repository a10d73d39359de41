# src/dealeval/services/settings.py
from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from dealeval.adapters.logging_utils import get_logger
from dealeval.domain.errors import InvalidInputError, NotFoundError
from dealeval.domain.ports import (
    DealSettingsRepository,
    LenderRepository,
    RehabCostTemplate,
    RehabTemplateRepository,
)
from dealeval.domain.rehab import DEFAULT_TEMPLATE_COSTS, RehabCondition, RehabLineItemType
from dealeval.domain.settings import DealSettings, Lender

logger = get_logger(__name__)


class DealSettingsService:
    def __init__(self, repo: DealSettingsRepository) -> None:
        self.repo = repo

    def get(self, user_id: str) -> DealSettings:
        """The user's settings; defaults are written on first read."""
        settings = self.repo.get(user_id)
        if settings is None:
            settings = self.repo.save(user_id, DealSettings())
            logger.info("deal_settings_created", extra={"context": {"user_id": user_id}})
        return settings

    def update(self, user_id: str, settings: DealSettings) -> DealSettings:
        return self.repo.save(user_id, settings)

    def reset(self, user_id: str) -> DealSettings:
        logger.info("deal_settings_reset", extra={"context": {"user_id": user_id}})
        return self.repo.save(user_id, DealSettings())


class LenderService:
    def __init__(self, repo: LenderRepository) -> None:
        self.repo = repo

    def list(self, user_id: str, include_archived: bool = False) -> list[Lender]:
        return self.repo.list_for_user(user_id, include_archived=include_archived)

    def get(self, user_id: str, lender_id: int, include_archived: bool = False) -> Lender:
        lender = self.repo.get_for_user(lender_id, user_id, include_archived=include_archived)
        if lender is None:
            raise NotFoundError(f"lender {lender_id} not found")
        return lender

    def create(self, user_id: str, lender: Lender) -> Lender:
        return self.repo.save(
            lender.model_copy(update={"id": None, "user_id": user_id, "is_archived": False, "archived_at": None})
        )

    def update(self, user_id: str, lender_id: int, changes: dict[str, Any]) -> Lender:
        # Archived lenders are read-only
        current = self.get(user_id, lender_id)
        allowed = {"name", "annual_rate", "origination_fee", "loan_service_fee", "note"}
        data = current.model_dump()
        data.update({k: v for k, v in changes.items() if k in allowed})
        return self.repo.save(Lender.model_validate(data))

    def archive(self, user_id: str, lender_id: int) -> Lender:
        current = self.get(user_id, lender_id)
        archived = current.model_copy(update={"is_archived": True, "archived_at": datetime.now(timezone.utc)})
        logger.info("lender_archived", extra={"context": {"user_id": user_id, "lender_id": lender_id}})
        return self.repo.save(archived)


class RehabTemplateService:
    def __init__(self, repo: RehabTemplateRepository) -> None:
        self.repo = repo

    def list(self, user_id: str) -> list[RehabCostTemplate]:
        return self.repo.list_for_user(user_id)

    def get(self, user_id: str, line_item_type: RehabLineItemType, condition: RehabCondition) -> RehabCostTemplate:
        template = self.repo.get(user_id, line_item_type, condition)
        if template is None:
            raise NotFoundError(
                f"no rehab template for {RehabLineItemType(line_item_type).value}/{RehabCondition(condition).value}"
            )
        return template

    def cost_for(self, user_id: str, line_item_type: RehabLineItemType, condition: RehabCondition) -> Decimal | None:
        template = self.repo.get(user_id, line_item_type, condition)
        return template.default_cost if template else None

    def upsert(
        self,
        user_id: str,
        line_item_type: RehabLineItemType,
        condition: RehabCondition,
        default_cost: Any,
    ) -> RehabCostTemplate:
        try:
            cost = Decimal(str(default_cost))
            item_type, cond = RehabLineItemType(line_item_type), RehabCondition(condition)
        except (ArithmeticError, ValueError) as err:
            raise InvalidInputError(str(err)) from err
        if not cost.is_finite() or cost < 0:
            raise InvalidInputError("default_cost must be a non-negative number")

        return self.repo.upsert(
            RehabCostTemplate(user_id=user_id, line_item_type=item_type, condition=cond, default_cost=cost)
        )

    def delete(self, user_id: str, template_id: int) -> None:
        owned = {t.id for t in self.repo.list_for_user(user_id)}
        if template_id not in owned:
            raise NotFoundError(f"rehab template {template_id} not found")
        self.repo.delete(template_id)

    def seed_defaults(self, user_id: str, overwrite: bool = False) -> int:
        """Write the built-in cost table for a user. Existing entries are kept unless overwrite."""
        written = 0
        for (item_type, cond), cost in DEFAULT_TEMPLATE_COSTS.items():
            if not overwrite and self.repo.get(user_id, item_type, cond) is not None:
                continue
            self.repo.upsert(
                RehabCostTemplate(user_id=user_id, line_item_type=item_type, condition=cond, default_cost=cost)
            )
            written += 1
        logger.info("rehab_templates_seeded", extra={"context": {"user_id": user_id, "written": written}})
        return written
