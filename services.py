from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from typing import Optional

from sqlalchemy import Select, case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from auth import AuthenticationError, check_password, hash_password
from models import Transaction, User
from schemas import TransactionIn, TransactionPatch

logger = logging.getLogger(__name__)


class TransactionValidationError(ValueError):
    pass


class TransactionNotFound(ValueError):
    def __init__(self, transaction_id: int) -> None:
        super().__init__("Transaction not found or unauthorized")
        self.transaction_id = transaction_id


class EmailAlreadyRegistered(ValueError):
    pass


@dataclass(frozen=True)
class TransactionFilters:
    category: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None

    def date_range(self) -> TransactionFilters:
        return replace(self, category=None)


@dataclass(frozen=True)
class FinancialSummary:
    total_income_cents: int
    total_expenses_cents: int
    current_balance_cents: int


@dataclass(frozen=True)
class CategoryTotal:
    category: str
    total_cents: int


@dataclass(frozen=True)
class DashboardSummary:
    total_income_cents: int
    total_expense_cents: int
    balance_cents: int


@dataclass(frozen=True)
class CategoryShare:
    category: str
    amount_cents: int
    percent: int
    start_angle: float
    end_angle: float


def apply_filters(stmt: Select, user_id: int, filters: TransactionFilters) -> Select:
    stmt = stmt.where(Transaction.user_id == user_id)
    if filters.category:
        stmt = stmt.where(Transaction.category == filters.category)
    if filters.start_date is not None:
        stmt = stmt.where(Transaction.date >= filters.start_date)
    if filters.end_date is not None:
        stmt = stmt.where(Transaction.date <= filters.end_date)
    return stmt


def category_shares(totals: list[CategoryTotal]) -> list[CategoryShare]:
    """Pie-chart slices over absolute category totals, largest first."""
    magnitudes = [(t.category, abs(t.total_cents)) for t in totals if t.total_cents]
    magnitudes.sort(key=lambda item: (-item[1], item[0]))
    total = sum(amount for _, amount in magnitudes)
    shares: list[CategoryShare] = []
    current_angle = 0.0
    for name, amount in magnitudes:
        angle = amount / total * 360
        shares.append(
            CategoryShare(
                category=name,
                amount_cents=amount,
                percent=round(amount / total * 100),
                start_angle=current_angle,
                end_angle=current_angle + angle,
            )
        )
        current_angle += angle
    return shares


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def find_by_email(self, email: str) -> Optional[User]:
        return self.session.scalar(select(User).where(User.email == email))

    def signup(self, email: str, password: str) -> User:
        if not email or not password:
            raise AuthenticationError("Please enter all fields")
        if self.find_by_email(email) is not None:
            raise EmailAlreadyRegistered("User with this email already exists")

        user = User(email=email, password_hash=hash_password(password))
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise EmailAlreadyRegistered("User with this email already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_signup: user_id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.find_by_email(email)
        if user is None or not check_password(password, user.password_hash):
            logger.info("user_login_failed")
            raise AuthenticationError("Invalid credentials")
        return user


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(
            user_id=self.user_id,
            amount_cents=data.amount_cents,
            description=data.description,
            category=data.category,
            date=data.date,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(f"transaction_created: user_id={self.user_id} id={txn.id}")
        return txn

    def get(self, transaction_id: int) -> Transaction:
        stmt = select(Transaction).where(
            Transaction.user_id == self.user_id, Transaction.id == transaction_id
        )
        txn = self.session.scalar(stmt)
        if not txn:
            raise TransactionNotFound(transaction_id)
        return txn

    def update(self, transaction_id: int, patch: TransactionPatch) -> Transaction:
        changes = patch.changes()
        if not changes:
            raise TransactionValidationError("No update fields provided")

        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
            .values(**changes)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise TransactionNotFound(transaction_id)
        self.session.commit()
        logger.info(
            f"transaction_updated: user_id={self.user_id} id={transaction_id} "
            f"fields={','.join(sorted(changes))}"
        )
        txn = self.get(transaction_id)
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        result = self.session.execute(
            delete(Transaction)
            .where(
                Transaction.user_id == self.user_id, Transaction.id == transaction_id
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.session.rollback()
            raise TransactionNotFound(transaction_id)
        self.session.commit()
        logger.info(f"transaction_deleted: user_id={self.user_id} id={transaction_id}")

    def list(self, filters: Optional[TransactionFilters] = None) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = apply_filters(select(Transaction), self.user_id, filters).order_by(
            Transaction.date.desc(), Transaction.id.desc()
        )
        return list(self.session.scalars(stmt).all())


class SummaryService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def financial_summary(
        self, filters: Optional[TransactionFilters] = None
    ) -> FinancialSummary:
        filters = filters or TransactionFilters()
        stmt = select(
            func.coalesce(
                func.sum(
                    case(
                        (Transaction.amount_cents > 0, Transaction.amount_cents),
                        else_=0,
                    )
                ),
                0,
            ).label("income"),
            func.coalesce(
                func.sum(
                    case(
                        (Transaction.amount_cents < 0, Transaction.amount_cents),
                        else_=0,
                    )
                ),
                0,
            ).label("expenses"),
            func.coalesce(func.sum(Transaction.amount_cents), 0).label("balance"),
        ).select_from(Transaction)
        row = self.session.execute(apply_filters(stmt, self.user_id, filters)).one()
        return FinancialSummary(
            total_income_cents=int(row.income or 0),
            total_expenses_cents=int(row.expenses or 0),
            current_balance_cents=int(row.balance or 0),
        )

    def category_summary(
        self, filters: Optional[TransactionFilters] = None
    ) -> list[CategoryTotal]:
        # the category filter never narrows the breakdown
        filters = (filters or TransactionFilters()).date_range()
        stmt = (
            select(
                Transaction.category,
                func.sum(Transaction.amount_cents).label("total"),
            )
            .group_by(Transaction.category)
            .order_by(Transaction.category.asc())
        )
        rows = self.session.execute(apply_filters(stmt, self.user_id, filters)).all()
        return [
            CategoryTotal(category=row.category, total_cents=int(row.total or 0))
            for row in rows
        ]

    def dashboard_summary(
        self, filters: Optional[TransactionFilters] = None
    ) -> DashboardSummary:
        summary = self.financial_summary(filters)
        expense = abs(summary.total_expenses_cents)
        return DashboardSummary(
            total_income_cents=summary.total_income_cents,
            total_expense_cents=expense,
            balance_cents=summary.total_income_cents - expense,
        )

    def dashboard_categories(
        self, filters: Optional[TransactionFilters] = None
    ) -> list[CategoryShare]:
        # income and expense in one category add up as magnitudes
        filters = (filters or TransactionFilters()).date_range()
        stmt = select(
            Transaction.category,
            func.sum(func.abs(Transaction.amount_cents)).label("total"),
        ).group_by(Transaction.category)
        rows = self.session.execute(apply_filters(stmt, self.user_id, filters)).all()
        return category_shares(
            [
                CategoryTotal(category=row.category, total_cents=int(row.total or 0))
                for row in rows
            ]
        )
