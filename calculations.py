from dataclasses import asdict, dataclass
from typing import Iterable, Optional

from models import ExpenseType
from schemas import MonthData


@dataclass(frozen=True)
class Totals:
    income: int = 0
    fixed: int = 0
    variable: int = 0
    total_expenses: int = 0
    balance: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def calculate_totals(month: Optional[MonthData]) -> Totals:
    if month is None:
        return Totals()

    income = month.salary1_cents + month.salary2_cents
    fixed = sum(e.value_cents for e in month.expenses if e.type == ExpenseType.fixed)
    variable = sum(
        e.value_cents for e in month.expenses if e.type == ExpenseType.variable
    )
    total_expenses = fixed + variable
    return Totals(
        income=income,
        fixed=fixed,
        variable=variable,
        total_expenses=total_expenses,
        balance=income - total_expenses,
    )


def calculate_accumulated_savings(months: Iterable[MonthData]) -> int:
    """Sum of positive balances over closed months; open months never count."""
    total = 0
    for month in months:
        if not month.closed:
            continue
        total += max(calculate_totals(month).balance, 0)
    return total
