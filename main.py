from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI, Request, Depends, Query
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import crud, models, schemas
from auth import (
    clear_session_cookie, get_session, issue_session,
    require_session, set_session_cookie,
)
from config import DEFAULT_SECRET, get_settings
from database import engine, get_db
from errors import BudgetoError, Unauthorized
from logging_config import configure_logging
from parsers import parse_receipt, parse_voice

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    if settings.auth_secret == DEFAULT_SECRET:
        logger.warning("insecure_auth_secret", hint="set AUTH_SECRET")
    models.Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="Budgeto API", lifespan=lifespan)


def envelope(data=None, message: Optional[str] = None, status_code: int = 200):
    body = {"success": True}
    if data is not None:
        body["data"] = jsonable_encoder(data, by_alias=True)
    if message:
        body["message"] = message
    return JSONResponse(body, status_code=status_code)


def error_envelope(error: str, status_code: int):
    return JSONResponse({"success": False, "error": error}, status_code=status_code)


@app.exception_handler(BudgetoError)
async def budgeto_error_handler(request: Request, exc: BudgetoError):
    return error_envelope(exc.message, exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{field}: {err.get('msg')}" if field else err.get("msg"))
    logger.info("request_rejected", path=request.url.path, problems=problems)
    return error_envelope("; ".join(problems) or "Invalid input", 400)


def _out(schema, rows):
    return [schema.model_validate(row) for row in rows]


@app.get("/health")
def health():
    return {"ok": True}


# ---------------------- Auth ----------------------
def _signed_in(user, message: str, status_code: int = 200):
    response = envelope(schemas.UserOut.model_validate(user), message=message, status_code=status_code)
    set_session_cookie(response, issue_session(user.id, user.email))
    return response


@app.post("/auth/signup")
def signup(credentials: schemas.Credentials, db: Session = Depends(get_db)):
    user = crud.create_user(db, credentials.email, credentials.password)
    return _signed_in(user, "Account created", status_code=201)


@app.post("/auth/signin")
def signin(credentials: schemas.Credentials, db: Session = Depends(get_db)):
    user = crud.authenticate_user(db, credentials.email, credentials.password)
    if not user:
        raise Unauthorized("Invalid credentials")
    return _signed_in(user, "Signed in")


@app.post("/auth/signout")
def signout():
    # the token stays valid until it expires; only the cookie goes away
    response = envelope(message="Signed out")
    clear_session_cookie(response)
    return response


@app.get("/profile")
def profile(session: schemas.SessionPayload = Depends(require_session), db: Session = Depends(get_db)):
    with crud.storage_guard(db, "fetch profile"):
        user = crud.get_user(db, session.user_id)
    if not user:
        raise Unauthorized()
    return envelope(schemas.UserOut.model_validate(user))


# ---------------------- Ledger ----------------------
@app.post("/expenses")
def add_expense(entry: schemas.EntryCreate, db: Session = Depends(get_db)):
    expense = crud.create_expense(db, entry)
    return envelope(schemas.EntryOut.model_validate(expense), message="Expense added successfully!", status_code=201)


@app.get("/expenses")
def view_expenses(db: Session = Depends(get_db)):
    expenses = crud.list_expenses(db, get_settings().list_limit)
    return envelope(_out(schemas.EntryOut, expenses))


@app.post("/income")
def add_income(entry: schemas.EntryCreate, db: Session = Depends(get_db)):
    income = crud.create_income(db, entry)
    return envelope(schemas.EntryOut.model_validate(income), message="Income added successfully!", status_code=201)


@app.get("/income")
def view_income(db: Session = Depends(get_db)):
    income = crud.list_income(db, get_settings().list_limit)
    return envelope(_out(schemas.EntryOut, income))


# ---------------------- Budgets ----------------------
@app.post("/budgets")
def save_budget(
    budget: schemas.BudgetIn,
    session: schemas.SessionPayload = Depends(require_session),
    db: Session = Depends(get_db),
):
    saved = crud.upsert_budget(db, session.user_id, budget.month, budget.amount)
    return envelope(schemas.BudgetOut.model_validate(saved), message="Budget saved")


@app.get("/budgets")
def view_budgets(session: Optional[schemas.SessionPayload] = Depends(get_session), db: Session = Depends(get_db)):
    if session is None:
        return envelope([])
    return envelope(_out(schemas.BudgetOut, crud.get_budgets(db, session.user_id)))


# ---------------------- Aggregates ----------------------
@app.get("/monthly-summary")
def monthly_summary(
    month: str = Query(""),
    session: Optional[schemas.SessionPayload] = Depends(get_session),
    db: Session = Depends(get_db),
):
    user_id = session.user_id if session else None
    return envelope(crud.monthly_summary(db, user_id, month))


@app.get("/predictions")
def predictions(db: Session = Depends(get_db)):
    return envelope(crud.predict(db))


@app.get("/dashboard")
def dashboard(db: Session = Depends(get_db)):
    return envelope(crud.get_overview(db, get_settings().list_limit))


# ---------------------- Form pre-fill ----------------------
@app.post("/ocr/parse")
def ocr_parse(receipt: schemas.ReceiptText):
    return envelope(schemas.ReceiptDraft(**parse_receipt(receipt.text)))


@app.post("/voice/parse")
def voice_parse(voice: schemas.VoiceTranscript):
    return envelope(schemas.VoiceDraft(**parse_voice(voice.transcript)))
