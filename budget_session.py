from __future__ import annotations

import asyncio
import logging
from datetime import date
from enum import Enum
from typing import Callable, Optional
from urllib.parse import quote
from uuid import uuid4

from calculations import Totals, calculate_accumulated_savings, calculate_totals
from config import Settings, get_settings
from models import ExpenseType
from months import generate_month_id, local_today
from scheduler import Debouncer
from schemas import Expense, ExpenseIn, MonthData, SalariesIn
from services import (
    MonthSync,
    SaveAllResult,
    SyncStrategy,
    build_month,
    carry_fixed_expenses,
    find_previous_month,
    new_expense,
    resolve_category,
)
from store import StoreError

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    local_only = "local_only"
    synced = "synced"
    synced_dirty = "synced_dirty"


class SaveStatus(str, Enum):
    idle = "idle"
    saving = "saving"
    saved = "saved"
    error = "error"


class MonthNotFound(ValueError):
    pass


class ExpenseNotFound(ValueError):
    pass


class BudgetSession:
    """Month collection of one authenticated user.

    Mutations are synchronous and only touch memory; each one bumps the
    month's revision and schedules a debounced incremental save of a snapshot.
    A save moves the month back to ``synced`` only if no newer mutation
    happened while it was in flight.
    """

    def __init__(
        self,
        user_id: str,
        sync: MonthSync,
        debouncer: Debouncer,
        *,
        settings: Optional[Settings] = None,
        today: Optional[Callable[[], date]] = None,
    ) -> None:
        self.user_id = user_id
        self.sync = sync
        self.debouncer = debouncer
        self.settings = settings or get_settings()
        self._today = today or local_today
        self.months: list[MonthData] = []
        self.current_month_id = ""
        self.sync_states: dict[str, SyncState] = {}
        self._revisions: dict[str, int] = {}
        self.save_status = SaveStatus.idle
        self.last_error: Optional[str] = None
        self.closed = False

    # -- keys -------------------------------------------------------------

    @property
    def _key_owner(self) -> str:
        # ":" is escaped, so one user's prefix never matches another user's keys.
        return quote(self.user_id, safe="")

    @property
    def _autosave_prefix(self) -> str:
        return f"autosave:{self._key_owner}:"

    def _autosave_key(self, month_id: str) -> str:
        return f"{self._autosave_prefix}{month_id}"

    @property
    def _status_key(self) -> str:
        return f"status:{self._key_owner}"

    # -- loading ----------------------------------------------------------

    async def open(self) -> list[MonthData]:
        months = await asyncio.to_thread(self.sync.load_all_months, self.user_id)
        if months:
            self.months = list(months)
            for month in self.months:
                self.sync_states[month.id] = SyncState.synced
                self._revisions[month.id] = 0
            today_id = generate_month_id(self._today())
            if self._find(today_id) is not None:
                self.current_month_id = today_id
            else:
                self.current_month_id = max(m.id for m in self.months)
        else:
            initial = build_month(self._today())
            self.months = [initial]
            self.sync_states[initial.id] = SyncState.local_only
            self._revisions[initial.id] = 0
            self.current_month_id = initial.id
            result = await asyncio.to_thread(
                self.sync.save_all_months, self.user_id, [initial]
            )
            if initial.id in result.saved:
                self.sync_states[initial.id] = SyncState.synced
        logger.info(
            f"session_open: user={self.user_id} months={len(self.months)} "
            f"current={self.current_month_id}"
        )
        return self.months

    # -- lookups ----------------------------------------------------------

    def _find(self, month_id: str) -> Optional[MonthData]:
        for month in self.months:
            if month.id == month_id:
                return month
        return None

    def get_month(self, month_id: str) -> MonthData:
        month = self._find(month_id)
        if month is None:
            raise MonthNotFound(f"Month {month_id} not found")
        return month

    @property
    def current_month(self) -> Optional[MonthData]:
        return self._find(self.current_month_id)

    def _require_current(self) -> MonthData:
        if not self.current_month_id:
            raise MonthNotFound("No month selected")
        return self.get_month(self.current_month_id)

    def sorted_months(self) -> list[MonthData]:
        return sorted(self.months, key=lambda m: m.id)

    def known_categories(self) -> set[str]:
        return {e.category for m in self.months for e in m.expenses}

    def _expense_ids(self) -> set[str]:
        return {e.id for m in self.months for e in m.expenses}

    def _with_unique_ids(self, expenses: list[Expense]) -> list[Expense]:
        taken = self._expense_ids()
        unique: list[Expense] = []
        for expense in expenses:
            while expense.id in taken:
                expense = expense.model_copy(update={"id": str(uuid4())})
            taken.add(expense.id)
            unique.append(expense)
        return unique

    # -- derived values ---------------------------------------------------

    def totals(self, month_id: Optional[str] = None) -> Totals:
        return calculate_totals(self._find(month_id or self.current_month_id))

    def accumulated_savings(self) -> int:
        return calculate_accumulated_savings(self.months)

    # -- mutations --------------------------------------------------------

    def _replace(self, updated: MonthData) -> MonthData:
        self.months = [updated if m.id == updated.id else m for m in self.months]
        self._touch(updated)
        return updated

    def _touch(self, month: MonthData) -> None:
        self._revisions[month.id] = self._revisions.get(month.id, 0) + 1
        if self.sync_states.get(month.id) == SyncState.synced:
            self.sync_states[month.id] = SyncState.synced_dirty
        self._schedule_autosave(month)

    def _update_current(self, **changes) -> MonthData:
        month = self._require_current()
        return self._replace(month.model_copy(update=changes))

    def select_month(self, month_id: str) -> MonthData:
        month = self.get_month(month_id)
        self.current_month_id = month.id
        return month

    def create_month(
        self, year: int, month: int, *, import_fixed: bool = True
    ) -> MonthData:
        d = date(year, month, 1)
        month_id = generate_month_id(d)
        existing = self._find(month_id)
        if existing is not None:
            self.current_month_id = month_id
            return existing

        previous = find_previous_month(self.months, month_id)
        created = build_month(d, previous, import_fixed=import_fixed)
        created = created.model_copy(
            update={"expenses": self._with_unique_ids(created.expenses)}
        )
        self.months.append(created)
        self.sync_states[month_id] = SyncState.local_only
        self._revisions[month_id] = 0
        self.current_month_id = month_id
        self._touch(created)
        logger.info(
            f"month_created: user={self.user_id} month={month_id} "
            f"imported={len(created.expenses)}"
        )
        return created

    def set_salaries(self, data: SalariesIn) -> MonthData:
        return self._update_current(
            salary1_cents=data.salary1_cents, salary2_cents=data.salary2_cents
        )

    def add_expense(self, data: ExpenseIn, expense_type: ExpenseType) -> Expense:
        month = self._require_current()
        category = resolve_category(data.category, self.known_categories())
        expense = new_expense(
            data, expense_type, today=self._today(), category=category
        )
        expense = self._with_unique_ids([expense])[0]
        self._replace(month.model_copy(update={"expenses": [*month.expenses, expense]}))
        return expense

    def update_expense(self, expense_id: str, data: ExpenseIn) -> Expense:
        month = self._require_current()
        existing = month.find_expense(expense_id)
        if existing is None:
            raise ExpenseNotFound(f"Expense {expense_id} not found")
        if data.category is None:
            category = existing.category
        else:
            category = resolve_category(data.category, self.known_categories())
        updated = existing.model_copy(
            update={
                "name": data.name,
                "value_cents": data.value_cents,
                "category": category,
                "date": data.date or existing.date,
            }
        )
        self._replace(
            month.model_copy(
                update={
                    "expenses": [
                        updated if e.id == expense_id else e for e in month.expenses
                    ]
                }
            )
        )
        return updated

    def delete_expense(self, expense_id: str) -> None:
        month = self._require_current()
        if month.find_expense(expense_id) is None:
            raise ExpenseNotFound(f"Expense {expense_id} not found")
        self._replace(
            month.model_copy(
                update={"expenses": [e for e in month.expenses if e.id != expense_id]}
            )
        )

    def import_fixed_expenses(self) -> int:
        month = self._require_current()
        previous = find_previous_month(self.months, month.id)
        if previous is None:
            raise ValueError("No previous month to import from")
        imported = carry_fixed_expenses(previous, month.id)
        if not imported:
            raise ValueError(f"{previous.label} has no fixed expenses")
        imported = self._with_unique_ids(imported)
        self._replace(
            month.model_copy(update={"expenses": [*month.expenses, *imported]})
        )
        return len(imported)

    def close_month(self) -> MonthData:
        month = self._require_current()
        if month.closed:
            raise ValueError("Month is already closed")
        if calculate_totals(month).balance <= 0:
            raise ValueError("Only positive balances can be sent to savings")
        return self._replace(month.model_copy(update={"closed": True}))

    def reset_month(self) -> MonthData:
        month = self._require_current()
        if month.closed:
            raise ValueError("Closed months cannot be reset")
        return self._update_current(salary1_cents=0, salary2_cents=0, expenses=[])

    async def delete_month(self, month_id: str) -> bool:
        self.get_month(month_id)
        self.debouncer.cancel(self._autosave_key(month_id))
        self.months = [m for m in self.months if m.id != month_id]
        self.sync_states.pop(month_id, None)
        self._revisions.pop(month_id, None)
        if self.current_month_id == month_id:
            self.current_month_id = ""
        return await asyncio.to_thread(self.sync.delete_month, self.user_id, month_id)

    # -- persistence ------------------------------------------------------

    def _schedule_autosave(self, month: MonthData) -> None:
        if self.closed:
            return
        self.debouncer.schedule(
            self._autosave_key(month.id),
            self._autosave,
            month.model_copy(deep=True),
            self._revisions[month.id],
        )

    def _set_status(self, status: SaveStatus, reset_after: Optional[float] = None) -> None:
        self.save_status = status
        if reset_after is None:
            self.debouncer.cancel(self._status_key)
        else:
            self.debouncer.schedule(
                self._status_key, self._reset_status, quiet_period=reset_after
            )

    async def _reset_status(self) -> None:
        self.save_status = SaveStatus.idle

    def _mark_saved(self, month_id: str, revision: int) -> None:
        if month_id not in self.sync_states:
            return
        if self._revisions.get(month_id) == revision:
            self.sync_states[month_id] = SyncState.synced

    async def _autosave(self, month: MonthData, revision: int) -> None:
        self._set_status(SaveStatus.saving)
        try:
            result = await asyncio.to_thread(
                self.sync.save_one_month, self.user_id, month
            )
        except StoreError as exc:
            self.last_error = str(exc)
            logger.error(
                f"autosave_failed: user={self.user_id} month={month.id} error={exc}"
            )
            self._set_status(SaveStatus.error, self.settings.error_status_secs)
            return
        if result.expenses_synced:
            self._mark_saved(month.id, revision)
        self.last_error = None
        self._set_status(SaveStatus.saved, self.settings.saved_status_secs)
        logger.info(f"autosave: user={self.user_id} month={month.id} rev={revision}")

    async def save_all(
        self, strategy: SyncStrategy = SyncStrategy.bulk_rebuild
    ) -> SaveAllResult:
        snapshot = [m.model_copy(deep=True) for m in self.months]
        revisions = dict(self._revisions)
        self._set_status(SaveStatus.saving)
        result = await asyncio.to_thread(
            self.sync.save_all_months, self.user_id, snapshot, strategy
        )
        for month_id in result.saved:
            self._mark_saved(month_id, revisions.get(month_id, 0))
        if result.ok:
            self._set_status(SaveStatus.saved, self.settings.saved_status_secs)
        else:
            self.last_error = f"Failed to save {', '.join(result.failed)}"
            self._set_status(SaveStatus.error, self.settings.error_status_secs)
        return result

    async def flush(self) -> int:
        return await self.debouncer.flush_prefix(self._autosave_prefix)

    async def logout(self) -> None:
        await self.flush()
        self.debouncer.cancel(self._status_key)
        self.closed = True
        self.months = []
        self.sync_states.clear()
        self._revisions.clear()
        self.current_month_id = ""
        self.save_status = SaveStatus.idle
        logger.info(f"session_close: user={self.user_id}")
