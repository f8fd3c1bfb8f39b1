import datetime as dt
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from auth import ensure_password_length
from models import TransactionType

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
MAX_AMOUNT_CENTS = 2**31 - 1


def to_cents(amount: Decimal) -> int:
    if not amount.is_finite():
        raise ValueError("Amount must be a finite number")
    try:
        cents = int((amount * 100).quantize(Decimal("1")))
    except InvalidOperation as exc:
        raise ValueError("Amount must be a number") from exc
    if abs(cents) > MAX_AMOUNT_CENTS:
        raise ValueError("Amount is too large")
    return cents


def cents_to_amount(cents: int) -> float:
    return cents / 100


def parse_calendar_date(value: Any) -> dt.date:
    if isinstance(value, dt.datetime):
        raise ValueError("Transaction date must not carry a time component")
    if isinstance(value, dt.date):
        return value
    if not isinstance(value, str) or not DATE_PATTERN.match(value.strip()):
        raise ValueError("Transaction date must be in YYYY-MM-DD format")
    return dt.date.fromisoformat(value.strip())


def _coerce_type(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


def _apply_type(amount: Decimal, txn_type: Optional[TransactionType]) -> Decimal:
    """Translate the typed form (unsigned magnitude + type) to a signed amount."""
    if txn_type is None:
        return amount
    if amount < 0:
        raise ValueError("Amount must not be negative when a type is given")
    if txn_type == TransactionType.expense:
        return -amount
    return amount


class TransactionIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    amount: Decimal
    description: str = Field(..., min_length=1, max_length=500)
    category: str = Field(..., min_length=1, max_length=100)
    date: dt.date = Field(..., validation_alias=AliasChoices("date", "transactionDate"))
    type: Optional[TransactionType] = None

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> dt.date:
        return parse_calendar_date(value)

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> Any:
        return _coerce_type(value)

    @model_validator(mode="after")
    def _normalize_sign(self) -> "TransactionIn":
        self.amount = _apply_type(self.amount, self.type)
        if to_cents(self.amount) == 0:
            raise ValueError("Amount must not be zero")
        return self

    @property
    def amount_cents(self) -> int:
        return to_cents(self.amount)


class TransactionPatch(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    amount: Optional[Decimal] = None
    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    date: Optional[dt.date] = Field(
        default=None, validation_alias=AliasChoices("date", "transactionDate")
    )
    type: Optional[TransactionType] = None

    @field_validator("date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> Any:
        if value is None:
            return value
        return parse_calendar_date(value)

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, value: Any) -> Any:
        return _coerce_type(value)

    @model_validator(mode="after")
    def _check_fields(self) -> "TransactionPatch":
        for name in ("amount", "description", "category", "date"):
            if name in self.model_fields_set and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be empty")
        if self.type is not None:
            if self.amount is None:
                raise ValueError("Amount is required when a type is given")
            self.amount = _apply_type(self.amount, self.type)
        if self.amount is not None and to_cents(self.amount) == 0:
            raise ValueError("Amount must not be zero")
        return self

    def changes(self) -> dict[str, object]:
        """Store-level column values for the fields the caller supplied."""
        values: dict[str, object] = {}
        if self.amount is not None:
            values["amount_cents"] = to_cents(self.amount)
        for name in ("description", "category", "date"):
            if name in self.model_fields_set:
                values[name] = getattr(self, name)
        return values


class CredentialsIn(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def _strip_email(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("password")
    @classmethod
    def _check_password_length(cls, value: str) -> str:
        return ensure_password_length(value)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TransactionOut(CamelModel):
    id: int
    user_id: int
    amount: float
    description: str
    category: str
    date: dt.date
    type: TransactionType


class SummaryOut(CamelModel):
    total_income: float
    total_expenses: float
    current_balance: float


class CategoryTotalOut(CamelModel):
    category: str
    total_amount: float


class UserOut(BaseModel):
    id: int
    email: str


class AuthOut(BaseModel):
    message: str
    token: str
    user: UserOut


class MessageOut(BaseModel):
    message: str


class DashboardSummaryOut(CamelModel):
    total_income: float
    total_expense: float
    balance: float


class CategoryShareOut(CamelModel):
    category: str
    amount: float
    percent: int
    start_angle: float
    end_angle: float


class DashboardCategoriesOut(CamelModel):
    categories: dict[str, float]
    shares: list[CategoryShareOut]


class TransactionEnvelopeOut(BaseModel):
    message: str
    transaction: TransactionOut
