from dataclasses import replace
from datetime import datetime, timezone

from dealeval.domain.ports import (
    DealSettingsRepository,
    LenderRepository,
    MarketDataSnapshot,
    MarketDataStore,
    RehabCostTemplate,
    RehabTemplateRepository,
)
from dealeval.domain.rehab import RehabCondition, RehabLineItemType
from dealeval.domain.settings import DealSettings, Lender


class InMemoryMarketDataStore(MarketDataStore):
    def __init__(self) -> None:
        self._items: dict[tuple[str, str, str], MarketDataSnapshot] = {}
        self._next_id = 1

    def get(self, zip_code: str, home_type: str, keywords: str) -> MarketDataSnapshot | None:
        return self._items.get((zip_code, home_type, keywords or ""))

    def upsert(self, snapshot: MarketDataSnapshot) -> MarketDataSnapshot:
        key = (snapshot.zip_code, snapshot.home_type, snapshot.keywords or "")
        existing = self._items.get(key)
        if existing is not None:
            snapshot = replace(snapshot, id=existing.id)
        else:
            snapshot = replace(snapshot, id=self._next_id)
            self._next_id += 1
        self._items[key] = snapshot
        return snapshot

    def all(self) -> list[MarketDataSnapshot]:
        return list(self._items.values())


class InMemoryDealSettingsRepository(DealSettingsRepository):
    def __init__(self) -> None:
        self._items: dict[str, DealSettings] = {}

    def get(self, user_id: str) -> DealSettings | None:
        return self._items.get(user_id)

    def save(self, user_id: str, settings: DealSettings) -> DealSettings:
        self._items[user_id] = settings
        return settings


class InMemoryLenderRepository(LenderRepository):
    def __init__(self) -> None:
        self._items: dict[int, Lender] = {}
        self._next_id = 1

    def list_for_user(self, user_id: str, include_archived: bool = False) -> list[Lender]:
        out = [
            l for l in self._items.values()
            if l.user_id == user_id and (include_archived or not l.is_archived)
        ]
        return sorted(out, key=lambda l: l.name)

    def get_for_user(self, lender_id: int, user_id: str, include_archived: bool = False) -> Lender | None:
        lender = self._items.get(lender_id)
        if lender is None or lender.user_id != user_id:
            return None
        if lender.is_archived and not include_archived:
            return None
        return lender

    def save(self, lender: Lender) -> Lender:
        if lender.id is None:
            lender = lender.model_copy(update={"id": self._next_id})
            self._next_id += 1
        self._items[lender.id] = lender  # type: ignore[index]
        return lender


class InMemoryRehabTemplateRepository(RehabTemplateRepository):
    def __init__(self) -> None:
        self._items: dict[tuple[str, RehabLineItemType, RehabCondition], RehabCostTemplate] = {}
        self._next_id = 1

    def list_for_user(self, user_id: str) -> list[RehabCostTemplate]:
        return [t for (uid, _, _), t in self._items.items() if uid == user_id]

    def get(
        self,
        user_id: str,
        line_item_type: RehabLineItemType,
        condition: RehabCondition,
    ) -> RehabCostTemplate | None:
        return self._items.get((user_id, RehabLineItemType(line_item_type), RehabCondition(condition)))

    def upsert(self, template: RehabCostTemplate) -> RehabCostTemplate:
        key = (template.user_id, RehabLineItemType(template.line_item_type), RehabCondition(template.condition))
        now = datetime.now(timezone.utc)
        existing = self._items.get(key)
        if existing is not None:
            saved = replace(existing, default_cost=template.default_cost, updated_at=now)
        else:
            saved = replace(template, id=self._next_id, created_at=now, updated_at=now)
            self._next_id += 1
        self._items[key] = saved
        return saved

    def delete(self, template_id: int) -> None:
        for key, t in list(self._items.items()):
            if t.id == template_id:
                del self._items[key]
