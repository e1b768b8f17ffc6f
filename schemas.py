import datetime as dt
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models import ExpenseType
from money import parse_currency

MONTH_ID_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"
DEFAULT_CATEGORY = "Outros"


def _coerce_cents(value):
    if isinstance(value, str):
        return parse_currency(value)
    return value


class Expense(BaseModel):
    id: str = Field(..., min_length=1, max_length=36)
    name: str = Field(..., min_length=1, max_length=200)
    value_cents: int = Field(..., ge=0)
    category: str = Field(default=DEFAULT_CATEGORY, max_length=100)
    date: dt.date
    type: ExpenseType


class MonthData(BaseModel):
    id: str = Field(..., pattern=MONTH_ID_PATTERN)
    label: str = ""
    salary1_cents: int = Field(default=0, ge=0)
    salary2_cents: int = Field(default=0, ge=0)
    expenses: list[Expense] = Field(default_factory=list)
    closed: bool = False

    @model_validator(mode="after")
    def _expense_ids_unique(self) -> "MonthData":
        seen: set[str] = set()
        for expense in self.expenses:
            if expense.id in seen:
                raise ValueError(f"Duplicate expense id {expense.id} in {self.id}")
            seen.add(expense.id)
        return self

    def find_expense(self, expense_id: str) -> Optional[Expense]:
        for expense in self.expenses:
            if expense.id == expense_id:
                return expense
        return None


class ExpenseIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=200)
    value_cents: int = Field(..., ge=0)
    category: Optional[str] = Field(default=None, max_length=100)
    date: Optional[dt.date] = None

    @field_validator("value_cents", mode="before")
    @classmethod
    def _parse_value(cls, value):
        if value is None or value == "":
            raise ValueError("Value is required")
        return _coerce_cents(value)


class SalariesIn(BaseModel):
    salary1_cents: int = Field(default=0, ge=0)
    salary2_cents: int = Field(default=0, ge=0)

    @field_validator("salary1_cents", "salary2_cents", mode="before")
    @classmethod
    def _parse_salary(cls, value):
        if value is None or value == "":
            return 0
        return _coerce_cents(value)


class MonthCreateIn(BaseModel):
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    import_fixed: bool = True


class ExpenseCreateIn(ExpenseIn):
    type: ExpenseType
