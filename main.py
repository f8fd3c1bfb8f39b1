import logging
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from auth import AuthenticationError, TokenService, extract_token
from config import Settings, get_settings
from database import make_engine, make_session_factory
from models import Transaction, User
from schemas import (
    AuthOut,
    CategoryShareOut,
    CategoryTotalOut,
    CredentialsIn,
    DashboardCategoriesOut,
    DashboardSummaryOut,
    MessageOut,
    SummaryOut,
    TransactionEnvelopeOut,
    TransactionIn,
    TransactionOut,
    TransactionPatch,
    UserOut,
    cents_to_amount,
    parse_calendar_date,
)
from services import (
    EmailAlreadyRegistered,
    SummaryService,
    TransactionFilters,
    TransactionNotFound,
    TransactionService,
    TransactionValidationError,
    UserService,
)

logger = logging.getLogger(__name__)


def _load_app_version() -> str:
    try:
        import tomllib
    except Exception:
        return "unknown"
    try:
        with open("pyproject.toml", "rb") as f:
            data = tomllib.load(f)
        return str(data.get("project", {}).get("version", "unknown"))
    except Exception:
        return "unknown"


APP_VERSION = _load_app_version()

router = APIRouter()


def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def current_user_id(
    request: Request,
    x_auth_token: Optional[str] = Header(None),
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> int:
    tokens: TokenService = request.app.state.tokens
    try:
        user_id = tokens.verify(extract_token(x_auth_token, authorization))
    except AuthenticationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    # signed for an account this store does not hold
    if db.get(User, user_id) is None:
        logger.info(f"token_unknown_user: user_id={user_id}")
        raise HTTPException(status_code=401, detail="Token is not valid")
    return user_id


def _query_date(request: Request, name: str):
    raw = (request.query_params.get(name) or "").strip()
    if not raw:
        return None
    try:
        return parse_calendar_date(raw)
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail=f"{name} must be in YYYY-MM-DD format"
        ) from exc


def filters_from_request(request: Request) -> TransactionFilters:
    category = (request.query_params.get("category") or "").strip()
    return TransactionFilters(
        category=category or None,
        start_date=_query_date(request, "startDate"),
        end_date=_query_date(request, "endDate"),
    )


def transaction_out(txn: Transaction) -> TransactionOut:
    return TransactionOut(
        id=txn.id,
        user_id=txn.user_id,
        amount=cents_to_amount(txn.amount_cents),
        description=txn.description,
        category=txn.category,
        date=txn.date,
        type=txn.type,
    )


@router.get("/", response_class=PlainTextResponse)
def index():
    return "Finance Tracker API is running!"


@router.post("/api/auth/signup", response_model=AuthOut, status_code=201)
def signup(payload: CredentialsIn, request: Request, db: Session = Depends(get_db)):
    try:
        user = UserService(db).signup(payload.email, payload.password)
    except (AuthenticationError, EmailAlreadyRegistered) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AuthOut(
        message="User registered successfully",
        token=request.app.state.tokens.issue(user.id),
        user=UserOut(id=user.id, email=user.email),
    )


@router.post("/api/auth/login", response_model=AuthOut)
def login(payload: CredentialsIn, request: Request, db: Session = Depends(get_db)):
    try:
        user = UserService(db).authenticate(payload.email, payload.password)
    except AuthenticationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AuthOut(
        message="Logged in successfully",
        token=request.app.state.tokens.issue(user.id),
        user=UserOut(id=user.id, email=user.email),
    )


@router.post(
    "/api/transactions", response_model=TransactionEnvelopeOut, status_code=201
)
def create_transaction(
    payload: TransactionIn,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    txn = TransactionService(db, user_id).create(payload)
    return TransactionEnvelopeOut(
        message="Transaction added successfully", transaction=transaction_out(txn)
    )


@router.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    filters = filters_from_request(request)
    items = TransactionService(db, user_id).list(filters)
    return [transaction_out(txn) for txn in items]


@router.get("/api/transactions/summary", response_model=SummaryOut)
def transactions_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    summary = SummaryService(db, user_id).financial_summary(
        filters_from_request(request)
    )
    return SummaryOut(
        total_income=cents_to_amount(summary.total_income_cents),
        total_expenses=cents_to_amount(summary.total_expenses_cents),
        current_balance=cents_to_amount(summary.current_balance_cents),
    )


@router.get("/api/transactions/category-summary", response_model=list[CategoryTotalOut])
def transactions_category_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    totals = SummaryService(db, user_id).category_summary(
        filters_from_request(request)
    )
    return [
        CategoryTotalOut(
            category=row.category, total_amount=cents_to_amount(row.total_cents)
        )
        for row in totals
    ]


@router.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return transaction_out(txn)


@router.api_route(
    "/api/transactions/{transaction_id}",
    methods=["PUT", "PATCH"],
    response_model=TransactionEnvelopeOut,
)
def update_transaction(
    transaction_id: int,
    patch: TransactionPatch,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, patch)
    except TransactionValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return TransactionEnvelopeOut(
        message="Transaction updated successfully", transaction=transaction_out(txn)
    )


@router.delete("/api/transactions/{transaction_id}", response_model=MessageOut)
def delete_transaction(
    transaction_id: int,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except TransactionNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return MessageOut(message="Transaction deleted successfully")


@router.get("/api/dashboard/summary", response_model=DashboardSummaryOut)
def dashboard_summary(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    summary = SummaryService(db, user_id).dashboard_summary(
        filters_from_request(request)
    )
    return DashboardSummaryOut(
        total_income=cents_to_amount(summary.total_income_cents),
        total_expense=cents_to_amount(summary.total_expense_cents),
        balance=cents_to_amount(summary.balance_cents),
    )


@router.get("/api/dashboard/categories", response_model=DashboardCategoriesOut)
def dashboard_categories(
    request: Request,
    user_id: int = Depends(current_user_id),
    db: Session = Depends(get_db),
):
    shares = SummaryService(db, user_id).dashboard_categories(
        filters_from_request(request)
    )
    return DashboardCategoriesOut(
        categories={s.category: cents_to_amount(s.amount_cents) for s in shares},
        shares=[
            CategoryShareOut(
                category=s.category,
                amount=cents_to_amount(s.amount_cents),
                percent=s.percent,
                start_angle=s.start_angle,
                end_angle=s.end_angle,
            )
            for s in shares
        ],
    )


def _error_message(error: dict) -> str:
    msg = str(error.get("msg", "Invalid request"))
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, ") :]
    loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query")]
    if loc:
        return f"{'.'.join(loc)}: {msg}"
    return msg


async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    detail = _error_message(errors[0]) if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"detail": detail})


async def store_error_handler(request: Request, exc: SQLAlchemyError):
    logger.error(
        f"store_error: method={request.method} path={request.url.path}",
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500, content={"detail": "Store unavailable, please try again"}
    )


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level)

    engine = make_engine(settings)
    app = FastAPI(title="Finance Tracker", version=APP_VERSION)
    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = make_session_factory(engine)
    app.state.tokens = TokenService(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(SQLAlchemyError, store_error_handler)
    app.include_router(router)
    logger.info(f"app_created: version={APP_VERSION}")
    return app


def main():
    import uvicorn

    uvicorn.run(
        "main:create_app", factory=True, host="0.0.0.0", port=8000, reload=False
    )


if __name__ == "__main__":
    main()
