from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import User
from schemas import TransactionIn
from services import (
    CategoryTotal,
    FinancialSummary,
    SummaryService,
    TransactionFilters,
    TransactionService,
    category_shares,
)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine, expire_on_commit=False)


def seed_owner(session: Session, email: str = "a@example.com") -> int:
    user = User(email=email, password_hash="not-a-real-hash")
    session.add(user)
    session.commit()
    service = TransactionService(session, user.id)
    for amount, description, category, day in [
        (1000, "Salary", "Salary", "2024-01-05"),
        (-200, "Groceries", "Food", "2024-01-10"),
        (-50, "Takeaway", "Food", "2024-01-20"),
    ]:
        service.create(
            TransactionIn(
                amount=amount, description=description, category=category, date=day
            )
        )
    return user.id


def test_summary_of_all_transactions() -> None:
    with make_session() as session:
        owner = seed_owner(session)
        summary = SummaryService(session, owner).financial_summary()

    assert summary == FinancialSummary(
        total_income_cents=100_000,
        total_expenses_cents=-25_000,
        current_balance_cents=75_000,
    )


def test_category_summary_is_sorted_and_signed() -> None:
    with make_session() as session:
        owner = seed_owner(session)
        totals = SummaryService(session, owner).category_summary()

    assert totals == [
        CategoryTotal(category="Food", total_cents=-25_000),
        CategoryTotal(category="Salary", total_cents=100_000),
    ]


def test_start_date_filter_applies_to_list_and_summary() -> None:
    with make_session() as session:
        owner = seed_owner(session)
        filters = TransactionFilters(start_date=date(2024, 1, 6))

        items = TransactionService(session, owner).list(filters)
        summary = SummaryService(session, owner).financial_summary(filters)

    assert [t.description for t in items] == ["Takeaway", "Groceries"]
    assert summary == FinancialSummary(0, -25_000, -25_000)


def test_no_matching_rows_yield_zero_summary() -> None:
    with make_session() as session:
        owner = seed_owner(session)
        service = SummaryService(session, owner)

        by_range = service.financial_summary(
            TransactionFilters(start_date=date(2030, 1, 1))
        )
        by_category = service.financial_summary(TransactionFilters(category="Rent"))
        stranger = SummaryService(session, owner + 1000).financial_summary()

    for summary in (by_range, by_category, stranger):
        assert summary == FinancialSummary(0, 0, 0)
        assert isinstance(summary.total_income_cents, int)


@pytest.mark.parametrize(
    "filters",
    [
        TransactionFilters(),
        TransactionFilters(category="Food"),
        TransactionFilters(category="Salary", end_date=date(2024, 1, 5)),
        TransactionFilters(start_date=date(2024, 1, 10), end_date=date(2024, 1, 10)),
        TransactionFilters(start_date=date(2024, 2, 1), end_date=date(2024, 1, 1)),
    ],
)
def test_balance_is_income_plus_expenses(filters: TransactionFilters) -> None:
    with make_session() as session:
        owner = seed_owner(session)
        summary = SummaryService(session, owner).financial_summary(filters)

    assert summary.current_balance_cents == (
        summary.total_income_cents + summary.total_expenses_cents
    )


def test_category_summary_ignores_category_filter_and_omits_empty() -> None:
    with make_session() as session:
        owner = seed_owner(session)
        service = SummaryService(session, owner)

        ignoring = service.category_summary(TransactionFilters(category="Food"))
        ranged = service.category_summary(
            TransactionFilters(start_date=date(2024, 1, 6), end_date=date(2024, 1, 15))
        )

    assert [t.category for t in ignoring] == ["Food", "Salary"]
    assert ranged == [CategoryTotal(category="Food", total_cents=-20_000)]


def test_summaries_never_mix_owners() -> None:
    with make_session() as session:
        first = seed_owner(session, "first@example.com")
        second = seed_owner(session, "second@example.com")
        TransactionService(session, second).create(
            TransactionIn(
                amount=-999, description="Laptop", category="Tech", date="2024-01-07"
            )
        )

        first_summary = SummaryService(session, first).financial_summary()
        first_categories = SummaryService(session, first).category_summary()

    assert first_summary.current_balance_cents == 75_000
    assert "Tech" not in {t.category for t in first_categories}


def test_dashboard_summary_reports_expense_magnitude() -> None:
    with make_session() as session:
        owner = seed_owner(session)
        dashboard = SummaryService(session, owner).dashboard_summary()

    assert dashboard.total_income_cents == 100_000
    assert dashboard.total_expense_cents == 25_000
    assert dashboard.balance_cents == 75_000


def test_category_shares_split_the_circle() -> None:
    shares = category_shares(
        [
            CategoryTotal(category="Food", total_cents=-25_000),
            CategoryTotal(category="Rent", total_cents=-75_000),
            CategoryTotal(category="Swap", total_cents=0),
        ]
    )

    assert [s.category for s in shares] == ["Rent", "Food"]
    assert [s.percent for s in shares] == [75, 25]
    assert shares[0].start_angle == 0
    assert shares[0].end_angle == pytest.approx(270)
    assert shares[1].start_angle == pytest.approx(270)
    assert shares[1].end_angle == pytest.approx(360)


def test_category_shares_of_nothing_is_empty() -> None:
    assert category_shares([]) == []
    assert category_shares([CategoryTotal(category="Swap", total_cents=0)]) == []


def test_dashboard_categories_add_income_and_expense_magnitudes() -> None:
    with make_session() as session:
        user = User(email="mixed@example.com", password_hash="not-a-real-hash")
        session.add(user)
        session.commit()
        service = TransactionService(session, user.id)
        for amount, kind, category, day in [
            (100, "INCOME", "Misc", "2024-02-01"),
            (100, "EXPENSE", "Misc", "2024-02-02"),
            (50, "EXPENSE", "Food", "2024-02-03"),
        ]:
            payload = {
                "amount": amount,
                "type": kind,
                "description": "x",
                "category": category,
                "date": day,
            }
            service.create(TransactionIn.model_validate(payload))

        summary = SummaryService(session, user.id)
        shares = summary.dashboard_categories()
        signed = summary.category_summary()
        later = summary.dashboard_categories(
            TransactionFilters(category="Misc", start_date=date(2024, 2, 3))
        )

    assert [(s.category, s.amount_cents, s.percent) for s in shares] == [
        ("Misc", 20_000, 80),
        ("Food", 5_000, 20),
    ]
    assert {t.category: t.total_cents for t in signed} == {"Food": -5_000, "Misc": 0}
    assert [(s.category, s.amount_cents) for s in later] == [("Food", 5_000)]
