from datetime import date, datetime
from enum import Enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class ExpenseType(str, Enum):
    fixed = "fixed"
    variable = "variable"


EXPENSE_TYPE_ENUM = SAEnum(
    ExpenseType,
    name="expensetype",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class MonthRecord(Base, TimestampMixin):
    __tablename__ = "months"
    __table_args__ = (
        UniqueConstraint("user_id", "month_code", name="uq_month_user_code"),
        CheckConstraint("salary1_cents >= 0", name="ck_month_salary1_positive"),
        CheckConstraint("salary2_cents >= 0", name="ck_month_salary2_positive"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    month_code: Mapped[str] = mapped_column(String(7), nullable=False)
    label: Mapped[str] = mapped_column(String(40), nullable=False, default="")
    salary1_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    salary2_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    closed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    expenses: Mapped[list["ExpenseRecord"]] = relationship(
        "ExpenseRecord",
        back_populates="month",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ExpenseRecord(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    month_id: Mapped[str] = mapped_column(
        ForeignKey("months.id", ondelete="CASCADE"), nullable=False
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    value_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    date: Mapped[date] = mapped_column(Date, nullable=False)
    type: Mapped[ExpenseType] = mapped_column(EXPENSE_TYPE_ENUM, nullable=False)

    month: Mapped["MonthRecord"] = relationship(
        "MonthRecord", back_populates="expenses"
    )

    __table_args__ = (
        Index("ix_expenses_user_month", "user_id", "month_id"),
        CheckConstraint("value_cents >= 0", name="ck_expenses_value_positive"),
    )
