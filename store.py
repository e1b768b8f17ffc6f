from __future__ import annotations

import hashlib
import os
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, Iterator, Optional, Sequence
from uuid import uuid4

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from database import SessionLocal, session_scope
from models import ExpenseRecord, ExpenseType, MonthRecord
from schemas import Expense, MonthData


class StoreError(RuntimeError):
    pass


class RemoteReadError(StoreError):
    pass


class RemoteWriteError(StoreError):
    pass


@dataclass(frozen=True)
class MonthRow:
    id: str
    month_code: str
    label: str
    salary1_cents: int
    salary2_cents: int
    closed: bool


@dataclass(frozen=True)
class ExpenseRow:
    id: str
    month_id: str
    position: int
    name: str
    value_cents: int
    category: str
    date: date
    type: ExpenseType


class MonthStore(ABC):
    """Row-level operations on the months/expenses tables.

    Every call is scoped to ``user_id``; rows owned by another user are never
    returned or modified. Reads raise ``RemoteReadError`` and writes raise
    ``RemoteWriteError`` when the backend fails.
    """

    @abstractmethod
    def upsert_month(
        self,
        user_id: str,
        month_code: str,
        label: str,
        salary1_cents: int,
        salary2_cents: int,
        closed: bool,
    ) -> str:
        """Insert or update the month keyed by ``(user_id, month_code)``.

        Returns the row id assigned by the store.
        """

    @abstractmethod
    def select_months(self, user_id: str) -> list[MonthRow]:
        pass

    @abstractmethod
    def select_expenses(
        self, user_id: str, month_row_ids: Sequence[str]
    ) -> list[ExpenseRow]:
        pass

    @abstractmethod
    def select_expense_ids(self, user_id: str, month_row_id: str) -> set[str]:
        pass

    @abstractmethod
    def insert_expenses(
        self, user_id: str, month_row_id: str, expenses: Sequence[Expense]
    ) -> None:
        pass

    @abstractmethod
    def upsert_expenses(
        self, user_id: str, month_row_id: str, expenses: Sequence[Expense]
    ) -> None:
        """Insert or update expenses keyed by expense id."""

    @abstractmethod
    def delete_expenses(self, user_id: str, expense_ids: Iterable[str]) -> int:
        pass

    @abstractmethod
    def delete_month_expenses(self, user_id: str, month_row_id: str) -> int:
        pass

    @abstractmethod
    def delete_month(self, user_id: str, month_code: str) -> bool:
        """Delete a month and, by cascade, its expenses."""


def _month_row(record: MonthRecord) -> MonthRow:
    return MonthRow(
        id=record.id,
        month_code=record.month_code,
        label=record.label,
        salary1_cents=record.salary1_cents,
        salary2_cents=record.salary2_cents,
        closed=record.closed,
    )


def _expense_row(record: ExpenseRecord) -> ExpenseRow:
    return ExpenseRow(
        id=record.id,
        month_id=record.month_id,
        position=record.position,
        name=record.name,
        value_cents=record.value_cents,
        category=record.category,
        date=record.date,
        type=record.type,
    )


_EXPENSE_UPDATE_COLUMNS = (
    "month_id",
    "position",
    "name",
    "value_cents",
    "category",
    "date",
    "type",
)


def _expense_values(
    user_id: str, month_row_id: str, expenses: Sequence[Expense], now: datetime
) -> list[dict[str, object]]:
    return [
        {
            "id": expense.id,
            "user_id": user_id,
            "month_id": month_row_id,
            "position": position,
            "name": expense.name,
            "value_cents": expense.value_cents,
            "category": expense.category,
            "date": expense.date,
            "type": expense.type,
            "created_at": now,
            "updated_at": now,
        }
        for position, expense in enumerate(expenses)
    ]


class SqlAlchemyMonthStore(MonthStore):
    def __init__(self, session_factory: Optional[sessionmaker] = None) -> None:
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def _reading(self, operation: str) -> Iterator[Session]:
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            raise RemoteReadError(f"{operation} failed") from exc

    @contextmanager
    def _writing(self, operation: str) -> Iterator[Session]:
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            raise RemoteWriteError(f"{operation} failed") from exc

    @staticmethod
    def _dialect_insert(session: Session):
        name = session.get_bind().dialect.name
        if name == "sqlite":
            return sqlite.insert
        if name == "postgresql":
            return postgresql.insert
        return None

    def upsert_month(
        self,
        user_id: str,
        month_code: str,
        label: str,
        salary1_cents: int,
        salary2_cents: int,
        closed: bool,
    ) -> str:
        now = datetime.utcnow()
        with self._writing("upsert_month") as session:
            insert = self._dialect_insert(session)
            if insert is not None:
                stmt = insert(MonthRecord).values(
                    id=str(uuid4()),
                    user_id=user_id,
                    month_code=month_code,
                    label=label,
                    salary1_cents=salary1_cents,
                    salary2_cents=salary2_cents,
                    closed=closed,
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["user_id", "month_code"],
                    set_={
                        "label": stmt.excluded.label,
                        "salary1_cents": stmt.excluded.salary1_cents,
                        "salary2_cents": stmt.excluded.salary2_cents,
                        "closed": stmt.excluded.closed,
                        "updated_at": stmt.excluded.updated_at,
                    },
                ).returning(MonthRecord.id)
                return session.execute(stmt).scalar_one()

            record = session.scalar(
                select(MonthRecord).where(
                    MonthRecord.user_id == user_id,
                    MonthRecord.month_code == month_code,
                )
            )
            if record is None:
                record = MonthRecord(
                    id=str(uuid4()), user_id=user_id, month_code=month_code
                )
                session.add(record)
            record.label = label
            record.salary1_cents = salary1_cents
            record.salary2_cents = salary2_cents
            record.closed = closed
            session.flush()
            return record.id

    def select_months(self, user_id: str) -> list[MonthRow]:
        with self._reading("select_months") as session:
            records = session.scalars(
                select(MonthRecord)
                .where(MonthRecord.user_id == user_id)
                .order_by(MonthRecord.month_code)
            ).all()
            return [_month_row(r) for r in records]

    def select_expenses(
        self, user_id: str, month_row_ids: Sequence[str]
    ) -> list[ExpenseRow]:
        if not month_row_ids:
            return []
        with self._reading("select_expenses") as session:
            records = session.scalars(
                select(ExpenseRecord)
                .where(
                    ExpenseRecord.user_id == user_id,
                    ExpenseRecord.month_id.in_(list(month_row_ids)),
                )
                .order_by(
                    ExpenseRecord.month_id,
                    ExpenseRecord.position,
                    ExpenseRecord.created_at,
                )
            ).all()
            return [_expense_row(r) for r in records]

    def select_expense_ids(self, user_id: str, month_row_id: str) -> set[str]:
        with self._reading("select_expense_ids") as session:
            ids = session.scalars(
                select(ExpenseRecord.id).where(
                    ExpenseRecord.user_id == user_id,
                    ExpenseRecord.month_id == month_row_id,
                )
            ).all()
            return set(ids)

    def insert_expenses(
        self, user_id: str, month_row_id: str, expenses: Sequence[Expense]
    ) -> None:
        if not expenses:
            return
        values = _expense_values(user_id, month_row_id, expenses, datetime.utcnow())
        with self._writing("insert_expenses") as session:
            session.add_all([ExpenseRecord(**row) for row in values])

    def upsert_expenses(
        self, user_id: str, month_row_id: str, expenses: Sequence[Expense]
    ) -> None:
        if not expenses:
            return
        values = _expense_values(user_id, month_row_id, expenses, datetime.utcnow())
        with self._writing("upsert_expenses") as session:
            insert = self._dialect_insert(session)
            if insert is not None:
                stmt = insert(ExpenseRecord).values(values)
                table = ExpenseRecord.__table__
                stmt = stmt.on_conflict_do_update(
                    index_elements=["id"],
                    set_={
                        column: stmt.excluded[column]
                        for column in _EXPENSE_UPDATE_COLUMNS + ("updated_at",)
                    },
                    where=table.c.user_id == stmt.excluded.user_id,
                )
                session.execute(stmt)
                return

            for row in values:
                record = session.get(ExpenseRecord, row["id"])
                if record is None:
                    session.add(ExpenseRecord(**row))
                elif record.user_id == user_id:
                    for field in _EXPENSE_UPDATE_COLUMNS:
                        setattr(record, field, row[field])

    def delete_expenses(self, user_id: str, expense_ids: Iterable[str]) -> int:
        ids = list(expense_ids)
        if not ids:
            return 0
        with self._writing("delete_expenses") as session:
            result = session.execute(
                delete(ExpenseRecord).where(
                    ExpenseRecord.user_id == user_id, ExpenseRecord.id.in_(ids)
                )
            )
            return result.rowcount or 0

    def delete_month_expenses(self, user_id: str, month_row_id: str) -> int:
        with self._writing("delete_month_expenses") as session:
            result = session.execute(
                delete(ExpenseRecord).where(
                    ExpenseRecord.user_id == user_id,
                    ExpenseRecord.month_id == month_row_id,
                )
            )
            return result.rowcount or 0

    def delete_month(self, user_id: str, month_code: str) -> bool:
        with self._writing("delete_month") as session:
            row_id = session.scalar(
                select(MonthRecord.id).where(
                    MonthRecord.user_id == user_id,
                    MonthRecord.month_code == month_code,
                )
            )
            if row_id is None:
                return False
            # Explicit so the cascade holds without SQLite's foreign_keys pragma.
            session.execute(
                delete(ExpenseRecord).where(ExpenseRecord.month_id == row_id)
            )
            session.execute(delete(MonthRecord).where(MonthRecord.id == row_id))
            return True


_MONTHS_ADAPTER = TypeAdapter(list[MonthData])


class LocalBlobStore:
    """Whole-collection JSON document per user, read and written wholesale."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, user_id: str) -> Path:
        # Distinct ids never share a file, whatever characters they contain.
        digest = hashlib.sha256(user_id.encode("utf-8")).hexdigest()
        return self.root / f"months-{digest}.json"

    def load(self, user_id: str) -> list[MonthData]:
        path = self.path_for(user_id)
        if not path.exists():
            return []
        try:
            return _MONTHS_ADAPTER.validate_json(path.read_bytes())
        except (OSError, ValidationError) as exc:
            raise RemoteReadError(f"Failed to read {path.name}") from exc

    def save(self, user_id: str, months: Sequence[MonthData]) -> None:
        path = self.path_for(user_id)
        tmp = path.with_suffix(".json.tmp")
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(_MONTHS_ADAPTER.dump_json(list(months), indent=2))
            os.replace(tmp, path)
        except OSError as exc:
            raise RemoteWriteError(f"Failed to write {path.name}") from exc
