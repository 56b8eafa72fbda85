from datetime import date as date_type, datetime, timezone

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, ForeignKey, UniqueConstraint
from database import Base

EXPENSE_CATEGORIES = [
    "Food", "Transport", "Shopping", "Bills",
    "Entertainment", "Healthcare", "Education", "Other",
]
INCOME_CATEGORIES = ["Salary", "Freelance", "Investment", "Business", "Gift", "Other"]


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TimestampMixin:
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class User(TimestampMixin, Base):
    __tablename__ = "users"
    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)


# Ledger entries are shared: no user_id on expenses or income.
class Expense(TimestampMixin, Base):
    __tablename__ = "expenses"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False)
    amount = Column(Float, nullable=False)
    category = Column(String(50), nullable=False, default="Other")
    date = Column(Date, nullable=False, default=date_type.today, index=True)


class Income(TimestampMixin, Base):
    __tablename__ = "income"
    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(100), nullable=False)
    amount = Column(Float, nullable=False)
    category = Column(String(50), nullable=False, default="Other")
    date = Column(Date, nullable=False, default=date_type.today, index=True)


class Budget(TimestampMixin, Base):
    __tablename__ = "budgets"
    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    month = Column(String(7), nullable=False, index=True)  # 'YYYY-MM'
    amount = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "month", name="uix_user_month"),
    )
