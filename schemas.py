from datetime import date as date_type, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# ------------------ User Schemas ------------------

class Credentials(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserOut(CamelModel):
    id: int
    email: str
    created_at: datetime


class SessionPayload(BaseModel):
    user_id: int
    email: str
    issued_at: int
    expires_at: int


# ------------------ Ledger Schemas ------------------

class EntryCreate(BaseModel):
    """Shared shape of expense and income submissions; category is checked per kind in crud."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=100)
    amount: float = Field(..., ge=0, allow_inf_nan=False)
    category: str = "Other"
    date: date_type = Field(default_factory=date_type.today)


class EntryOut(CamelModel):
    id: int
    title: str
    amount: float
    category: str
    date: date_type
    created_at: datetime
    updated_at: datetime


# ------------------ Budget Schemas ------------------

class BudgetIn(BaseModel):
    # loose types here; crud.upsert_budget owns the month/amount rules
    month: str
    amount: Any


class BudgetOut(CamelModel):
    id: int
    user_id: int
    month: str
    amount: float
    created_at: datetime
    updated_at: datetime


# ------------------ Aggregation Schemas ------------------

class MonthlySummary(CamelModel):
    month: str
    total_expenses: float = 0
    budget_amount: float = 0


class Prediction(CamelModel):
    average_expense: float = 0
    predicted_next_expense: float = 0
    trend: Literal["increasing", "decreasing", "stable"] = "stable"
    recent_expenses: int = 0
    message: Optional[str] = None


class CategoryTotal(CamelModel):
    category: str
    amount: float


class DailyTotal(CamelModel):
    date: date_type
    expenses: float = 0
    income: float = 0


class Overview(CamelModel):
    total_income: float
    total_expenses: float
    balance: float
    categories: list[CategoryTotal]
    last_seven_days: list[DailyTotal]


# ------------------ Form pre-fill Schemas ------------------

class ReceiptText(BaseModel):
    text: str


class ReceiptDraft(CamelModel):
    title: str
    amount: Optional[float] = None


class VoiceTranscript(BaseModel):
    transcript: str


class VoiceDraft(CamelModel):
    title: str
    amount: Optional[float] = None
    category: Optional[str] = None
