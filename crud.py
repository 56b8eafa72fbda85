import math
import re
from contextlib import contextmanager
from datetime import date, timedelta
from typing import Optional

import structlog
from sqlalchemy import desc, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

import models, schemas
from auth import hash_password, verify_password
from errors import DuplicateEmail, StorageFailure, ValidationError

logger = structlog.get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^\S+@\S+\.\S+$")
MONTH_PATTERN = re.compile(r"^\d{4}-\d{2}$")
DEFAULT_LIST_LIMIT = 100


@contextmanager
def storage_guard(db: Session, action: str):
    """Roll back and re-raise driver errors as StorageFailure."""
    try:
        yield
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("storage_failure", action=action, exc_info=True)
        raise StorageFailure(f"Failed to {action}") from exc


# ---------------------- USER ----------------------
def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def create_user(db: Session, email: str, password: str):
    email = normalize_email(email)
    if not email or not password:
        raise ValidationError("Email and password are required")
    if not EMAIL_PATTERN.match(email):
        raise ValidationError("Please provide a valid email address")

    with storage_guard(db, "sign up"):
        if get_user_by_email(db, email):
            raise DuplicateEmail()
        db_user = models.User(email=email, password_hash=hash_password(password))
        db.add(db_user)
        try:
            db.commit()
        except IntegrityError as exc:
            # lost a race against a concurrent sign-up for the same address
            db.rollback()
            raise DuplicateEmail() from exc
        db.refresh(db_user)
    logger.info("user_registered", user_id=db_user.id)
    return db_user


def get_user_by_email(db: Session, email: str):
    return db.query(models.User).filter(models.User.email == normalize_email(email)).first()


def get_user(db: Session, user_id: int):
    return db.query(models.User).filter(models.User.id == user_id).first()


def authenticate_user(db: Session, email: str, password: str):
    if not email or not password:
        raise ValidationError("Email and password are required")
    with storage_guard(db, "sign in"):
        user = get_user_by_email(db, email)
    if user and verify_password(password, user.password_hash):
        return user
    logger.info("sign_in_rejected")
    return None


# ---------------------- LEDGER ----------------------
def create_entry(db: Session, model, categories, entry: schemas.EntryCreate):
    if entry.category not in categories:
        raise ValidationError(f"Invalid category. Allowed categories: {', '.join(categories)}")
    db_entry = model(**entry.model_dump())
    with storage_guard(db, f"add {model.__tablename__}"):
        db.add(db_entry)
        db.commit()
        db.refresh(db_entry)
    logger.info("entry_created", kind=model.__tablename__, entry_id=db_entry.id)
    return db_entry


def create_expense(db: Session, entry: schemas.EntryCreate):
    return create_entry(db, models.Expense, models.EXPENSE_CATEGORIES, entry)


def create_income(db: Session, entry: schemas.EntryCreate):
    return create_entry(db, models.Income, models.INCOME_CATEGORIES, entry)


def list_entries(db: Session, model, limit: int = DEFAULT_LIST_LIMIT):
    """Newest first by entry date; ties go to the later insert."""
    with storage_guard(db, f"fetch {model.__tablename__}"):
        return db.query(model)\
            .order_by(desc(model.date), desc(model.id))\
            .limit(limit)\
            .all()


def list_expenses(db: Session, limit: int = DEFAULT_LIST_LIMIT):
    return list_entries(db, models.Expense, limit)


def list_income(db: Session, limit: int = DEFAULT_LIST_LIMIT):
    return list_entries(db, models.Income, limit)


# ---------------------- BUDGET ----------------------
def validate_budget(month, amount):
    month = str(month if month is not None else "").strip()
    try:
        month_bounds(month)
        amount = float(amount)
    except (ValidationError, TypeError, ValueError, OverflowError) as exc:
        raise ValidationError("Invalid month or amount") from exc
    if not math.isfinite(amount):
        raise ValidationError("Invalid month or amount")
    if amount < 0:
        raise ValidationError("Budget cannot be negative")
    return month, amount


def _update_budget(db: Session, user_id: int, month: str, amount: float) -> int:
    return db.query(models.Budget)\
        .filter(models.Budget.user_id == user_id, models.Budget.month == month)\
        .update({"amount": amount, "updated_at": models.utcnow()}, synchronize_session=False)


def upsert_budget(db: Session, user_id: int, month, amount):
    """
    Set the budget for (user_id, month), creating it on first save.

    The unique (user_id, month) constraint settles concurrent first saves:
    the losing insert falls back to an update of the winner's row.
    """
    month, amount = validate_budget(month, amount)
    with storage_guard(db, "save budget"):
        if _update_budget(db, user_id, month, amount):
            db.commit()
        else:
            db.add(models.Budget(user_id=user_id, month=month, amount=amount))
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                _update_budget(db, user_id, month, amount)
                db.commit()
        budget = get_budget(db, user_id, month)
    logger.info("budget_saved", user_id=user_id, month=month)
    return budget


def get_budget(db: Session, user_id: int, month: str):
    return db.query(models.Budget)\
        .filter(models.Budget.user_id == user_id, models.Budget.month == month)\
        .first()


def get_budgets(db: Session, user_id: int):
    with storage_guard(db, "fetch budgets"):
        return db.query(models.Budget)\
            .filter(models.Budget.user_id == user_id)\
            .order_by(desc(models.Budget.month))\
            .all()


# ---------------------- SUMMARY ----------------------
def month_bounds(month: str):
    """Return the half-open [first day, first day of next month) range for 'YYYY-MM'."""
    if not isinstance(month, str) or not MONTH_PATTERN.match(month):
        raise ValidationError("Invalid month parameter")
    year, month_number = (int(part) for part in month.split("-"))
    try:
        start = date(year, month_number, 1)
        if month_number == 12:
            end = date(year + 1, 1, 1)
        else:
            end = date(year, month_number + 1, 1)
    except ValueError as exc:
        raise ValidationError("Invalid month parameter") from exc
    return start, end


def monthly_expense_total(db: Session, month: str) -> float:
    start, end = month_bounds(month)
    with storage_guard(db, "fetch monthly summary"):
        total = db.query(func.sum(models.Expense.amount))\
            .filter(models.Expense.date >= start, models.Expense.date < end)\
            .scalar()
    return total or 0


def monthly_summary(db: Session, user_id: Optional[int], month: str) -> schemas.MonthlySummary:
    """Expense total and budget for a month; anonymous callers get zeros."""
    month_bounds(month)
    if user_id is None:
        return schemas.MonthlySummary(month=month)

    total = monthly_expense_total(db, month)
    with storage_guard(db, "fetch monthly summary"):
        budget = get_budget(db, user_id, month)
    return schemas.MonthlySummary(
        month=month,
        total_expenses=total,
        budget_amount=budget.amount if budget else 0,
    )


# ---------------------- PREDICTION ----------------------
PREDICTION_WINDOW = 5
TREND_MARGIN = 0.1


def _mean(values):
    return sum(values) / len(values) if values else None


def predict_from_amounts(amounts) -> schemas.Prediction:
    """
    Naive next-expense prediction from amounts ordered newest first.

    The halves are compared in list order, so the "first half" holds the
    most recent entries.
    """
    amounts = list(amounts)
    if not amounts:
        return schemas.Prediction(message="Not enough data for predictions")

    average = _mean(amounts)
    midpoint = len(amounts) // 2
    first_avg = _mean(amounts[:midpoint])
    second_avg = _mean(amounts[midpoint:])

    trend = "stable"
    if first_avg is not None:
        if second_avg > first_avg * (1 + TREND_MARGIN):
            trend = "increasing"
        elif second_avg < first_avg * (1 - TREND_MARGIN):
            trend = "decreasing"

    predicted = average
    if trend == "increasing":
        predicted = average * (1 + TREND_MARGIN)
    elif trend == "decreasing":
        predicted = average * (1 - TREND_MARGIN)

    return schemas.Prediction(
        average_expense=round(average, 2),
        predicted_next_expense=round(predicted, 2),
        trend=trend,
        recent_expenses=len(amounts),
    )


def predict(db: Session) -> schemas.Prediction:
    recent = list_entries(db, models.Expense, PREDICTION_WINDOW)
    return predict_from_amounts(e.amount for e in recent)


# ---------------------- OVERVIEW ----------------------
def get_overview(db: Session, limit: int = DEFAULT_LIST_LIMIT, today: Optional[date] = None) -> schemas.Overview:
    """Dashboard totals, per-category expense breakdown and a seven-day series."""
    expenses = list_expenses(db, limit)
    income = list_income(db, limit)
    today = today or date.today()

    total_income = sum(i.amount for i in income)
    total_expenses = sum(e.amount for e in expenses)

    category_totals = {}
    for expense in expenses:
        category_totals[expense.category] = category_totals.get(expense.category, 0) + expense.amount

    days = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        days.append(schemas.DailyTotal(
            date=day,
            expenses=sum(e.amount for e in expenses if e.date == day),
            income=sum(i.amount for i in income if i.date == day),
        ))

    return schemas.Overview(
        total_income=total_income,
        total_expenses=total_expenses,
        balance=total_income - total_expenses,
        categories=[schemas.CategoryTotal(category=c, amount=a) for c, a in category_totals.items()],
        last_seven_days=days,
    )
