from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Iterable, Optional, Sequence, Union
from uuid import uuid4

from rapidfuzz.distance import Levenshtein

from config import Settings, get_settings
from models import ExpenseType
from months import (
    generate_month_id,
    get_month_label,
    label_for_month_id,
    redate_to_month,
)
from schemas import DEFAULT_CATEGORY, Expense, ExpenseIn, MonthData
from store import (
    LocalBlobStore,
    MonthStore,
    SqlAlchemyMonthStore,
    StoreError,
)

logger = logging.getLogger(__name__)


class SyncStrategy(str, Enum):
    # Delete every expense of the month, then insert the client list.
    bulk_rebuild = "bulk_rebuild"
    # Delete only ids missing from the client list, upsert the rest by id.
    diff_upsert = "diff_upsert"


@dataclass
class MonthSaveResult:
    month_id: str
    row_id: Optional[str]
    expenses_synced: bool = True


@dataclass
class SaveAllResult:
    saved: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class MonthSyncService:
    """Mirror in-memory months onto a ``MonthStore``.

    The month row is the primary record: failing to write it is an error for
    the caller. Expense rows are best effort and may lag behind until the next
    successful save.
    """

    def __init__(self, store: Optional[MonthStore] = None) -> None:
        self.store = store or SqlAlchemyMonthStore()

    def load_all_months(self, user_id: str) -> list[MonthData]:
        month_rows = self.store.select_months(user_id)
        if not month_rows:
            logger.info(f"month_load: user={user_id} months=0")
            return []

        expense_rows = self.store.select_expenses(user_id, [r.id for r in month_rows])
        by_month: dict[str, list[Expense]] = {}
        for row in expense_rows:
            by_month.setdefault(row.month_id, []).append(
                Expense(
                    id=row.id,
                    name=row.name,
                    value_cents=row.value_cents,
                    category=row.category,
                    date=row.date,
                    type=row.type,
                )
            )

        months = [
            MonthData(
                id=row.month_code,
                label=row.label or label_for_month_id(row.month_code),
                salary1_cents=row.salary1_cents,
                salary2_cents=row.salary2_cents,
                expenses=by_month.get(row.id, []),
                closed=row.closed,
            )
            for row in month_rows
        ]
        logger.info(
            f"month_load: user={user_id} months={len(months)} "
            f"expenses={len(expense_rows)}"
        )
        return months

    def _upsert_month(self, user_id: str, month: MonthData) -> str:
        return self.store.upsert_month(
            user_id,
            month.id,
            month.label,
            month.salary1_cents,
            month.salary2_cents,
            month.closed,
        )

    def _rebuild_expenses(self, user_id: str, row_id: str, month: MonthData) -> None:
        removed = self.store.delete_month_expenses(user_id, row_id)
        self.store.insert_expenses(user_id, row_id, month.expenses)
        logger.info(
            f"expense_rebuild: user={user_id} month={month.id} "
            f"removed={removed} inserted={len(month.expenses)}"
        )

    def _diff_expenses(self, user_id: str, row_id: str, month: MonthData) -> None:
        remote_ids = self.store.select_expense_ids(user_id, row_id)
        current_ids = {e.id for e in month.expenses}
        stale = remote_ids - current_ids
        if stale:
            self.store.delete_expenses(user_id, stale)
        self.store.upsert_expenses(user_id, row_id, month.expenses)
        logger.info(
            f"expense_diff: user={user_id} month={month.id} "
            f"deleted={len(stale)} upserted={len(month.expenses)}"
        )

    def _sync_expenses(
        self, strategy: SyncStrategy, user_id: str, row_id: str, month: MonthData
    ) -> None:
        if strategy == SyncStrategy.bulk_rebuild:
            self._rebuild_expenses(user_id, row_id, month)
        else:
            self._diff_expenses(user_id, row_id, month)

    def save_all_months(
        self,
        user_id: str,
        months: Sequence[MonthData],
        strategy: SyncStrategy = SyncStrategy.bulk_rebuild,
    ) -> SaveAllResult:
        result = SaveAllResult()
        for month in months:
            try:
                row_id = self._upsert_month(user_id, month)
                self._sync_expenses(strategy, user_id, row_id, month)
            except StoreError:
                logger.exception(
                    f"month_save_failed: user={user_id} month={month.id} "
                    f"strategy={strategy.value}"
                )
                result.failed.append(month.id)
                continue
            result.saved.append(month.id)
        logger.info(
            f"month_save_all: user={user_id} strategy={strategy.value} "
            f"saved={len(result.saved)} failed={len(result.failed)}"
        )
        return result

    def save_one_month(self, user_id: str, month: MonthData) -> MonthSaveResult:
        row_id = self._upsert_month(user_id, month)
        try:
            self._diff_expenses(user_id, row_id, month)
        except StoreError:
            logger.exception(
                f"expense_sync_failed: user={user_id} month={month.id} row={row_id}"
            )
            return MonthSaveResult(month.id, row_id, expenses_synced=False)
        return MonthSaveResult(month.id, row_id)

    def delete_month(self, user_id: str, month_id: str) -> bool:
        deleted = self.store.delete_month(user_id, month_id)
        logger.info(f"month_delete: user={user_id} month={month_id} deleted={deleted}")
        return deleted


class LocalMonthSyncService:
    """Same surface as ``MonthSyncService`` over one JSON blob per user.

    There are no partial updates: every save reads the whole collection,
    replaces the affected months and writes it back.
    """

    def __init__(self, blob_store: LocalBlobStore) -> None:
        self.blob_store = blob_store

    def load_all_months(self, user_id: str) -> list[MonthData]:
        months = self.blob_store.load(user_id)
        logger.info(f"month_load: user={user_id} months={len(months)} backend=local")
        return months

    def _merge(self, user_id: str, months: Sequence[MonthData]) -> None:
        stored = {m.id: m for m in self.blob_store.load(user_id)}
        for month in months:
            stored[month.id] = month
        self.blob_store.save(user_id, sorted(stored.values(), key=lambda m: m.id))

    def save_all_months(
        self,
        user_id: str,
        months: Sequence[MonthData],
        strategy: SyncStrategy = SyncStrategy.bulk_rebuild,
    ) -> SaveAllResult:
        ids = [m.id for m in months]
        try:
            self._merge(user_id, months)
        except StoreError:
            logger.exception(f"month_save_failed: user={user_id} backend=local")
            return SaveAllResult(failed=ids)
        return SaveAllResult(saved=ids)

    def save_one_month(self, user_id: str, month: MonthData) -> MonthSaveResult:
        self._merge(user_id, [month])
        return MonthSaveResult(month.id, None)

    def delete_month(self, user_id: str, month_id: str) -> bool:
        months = self.blob_store.load(user_id)
        remaining = [m for m in months if m.id != month_id]
        if len(remaining) == len(months):
            return False
        self.blob_store.save(user_id, remaining)
        return True


MonthSync = Union[MonthSyncService, LocalMonthSyncService]


def build_sync_service(settings: Optional[Settings] = None) -> MonthSync:
    settings = settings or get_settings()
    if settings.uses_local_storage:
        return LocalMonthSyncService(LocalBlobStore(settings.data_dir))
    return MonthSyncService(SqlAlchemyMonthStore())


class AmbiguousCategory(ValueError):
    pass


def resolve_category(raw: Optional[str], known: Iterable[str]) -> str:
    name = (raw or "").strip()
    if not name:
        return DEFAULT_CATEGORY

    candidates = sorted({k.strip() for k in known if k and k.strip()})
    input_lower = name.lower()
    for candidate in candidates:
        if candidate.lower() == input_lower:
            return candidate

    best_distance: Optional[int] = None
    best: list[str] = []
    for candidate in candidates:
        dist = int(Levenshtein.distance(input_lower, candidate.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [candidate]
        elif dist == best_distance:
            best.append(candidate)

    if best_distance is not None and best_distance <= 1:
        if len(best) > 1:
            options = ", ".join(best)
            raise AmbiguousCategory(
                f"Category '{name}' is ambiguous; matches: {options}"
            )
        return best[0]
    return name


def new_expense(
    data: ExpenseIn,
    expense_type: ExpenseType,
    *,
    today: Optional[date] = None,
    category: Optional[str] = None,
) -> Expense:
    return Expense(
        id=str(uuid4()),
        name=data.name,
        value_cents=data.value_cents,
        category=category or data.category or DEFAULT_CATEGORY,
        date=data.date or today or date.today(),
        type=expense_type,
    )


def carry_fixed_expenses(source: MonthData, target_month_id: str) -> list[Expense]:
    return [
        expense.model_copy(
            update={
                "id": str(uuid4()),
                "date": redate_to_month(expense.date, target_month_id),
            }
        )
        for expense in source.expenses
        if expense.type == ExpenseType.fixed
    ]


def find_previous_month(
    months: Iterable[MonthData], month_id: str
) -> Optional[MonthData]:
    earlier = [m for m in months if m.id < month_id]
    if not earlier:
        return None
    return max(earlier, key=lambda m: m.id)


def build_month(
    d: date, previous: Optional[MonthData] = None, *, import_fixed: bool = False
) -> MonthData:
    month_id = generate_month_id(d)
    expenses: list[Expense] = []
    if previous is not None and import_fixed:
        expenses = carry_fixed_expenses(previous, month_id)
    return MonthData(
        id=month_id,
        label=get_month_label(d),
        salary1_cents=previous.salary1_cents if previous else 0,
        salary2_cents=previous.salary2_cents if previous else 0,
        expenses=expenses,
        closed=False,
    )
