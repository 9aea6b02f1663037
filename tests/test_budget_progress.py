from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

import services
from database import init_schema
from models import Budget, BudgetPeriod, Category, CategoryType, Transaction, TransactionType
from services import BudgetService


def make_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_schema(engine)
    return engine


def _setup(session: Session, amount_cents: int = 30_000, **kwargs):
    food = Category(user_id=1, name="Food", type=CategoryType.expense)
    fun = Category(user_id=1, name="Fun", type=CategoryType.expense)
    session.add_all([food, fun])
    session.flush()
    budget = Budget(
        user_id=1,
        name="Groceries",
        amount_cents=amount_cents,
        period=kwargs.get("period", BudgetPeriod.monthly),
        category_id=food.id,
        start_date=kwargs.get("start_date", date(2024, 1, 1)),
        end_date=kwargs.get("end_date"),
    )
    session.add(budget)
    session.commit()
    return budget, food, fun


def _expense(session: Session, category_id, amount: int, day: date, budget_id=None):
    session.add(
        Transaction(
            user_id=1,
            category_id=category_id,
            budget_id=budget_id,
            type=TransactionType.expense,
            amount_cents=amount,
            date=day,
        )
    )
    session.commit()


def test_progress_velocity_and_projection() -> None:
    with Session(make_engine()) as session:
        budget, food, _ = _setup(session)
        _expense(session, food.id, 10_000, date(2024, 1, 3))
        _expense(session, food.id, 5_000, date(2024, 1, 9))

        progress = BudgetService(session, 1).compute_progress(budget, date(2024, 1, 11))
        assert progress["spent_cents"] == 15_000
        assert progress["remaining_cents"] == 15_000
        assert progress["percentage"] == 50.0
        assert progress["is_over_budget"] is False
        assert progress["spending_velocity"] == 1500
        assert progress["projected_overspend_date"] == date(2024, 1, 21)
        assert progress["days_remaining"] == 20
        assert progress["period_start"] == date(2024, 1, 1)
        assert progress["period_end"] == date(2024, 1, 31)


def test_percentage_never_decreases_as_spending_grows() -> None:
    with Session(make_engine()) as session:
        budget, food, _ = _setup(session)
        service = BudgetService(session, 1)
        seen = []
        for amount in (1_000, 4_000, 0, 12_000, 20_000):
            _expense(session, food.id, amount, date(2024, 1, 5))
            seen.append(service.compute_progress(budget, date(2024, 1, 11))["percentage"])
        assert seen == sorted(seen)


def test_no_projection_once_budget_is_used_up() -> None:
    with Session(make_engine()) as session:
        budget, food, _ = _setup(session)
        _expense(session, food.id, 30_000, date(2024, 1, 4))
        service = BudgetService(session, 1)

        exact = service.compute_progress(budget, date(2024, 1, 11))
        assert exact["projected_overspend_date"] is None
        assert exact["is_over_budget"] is False

        _expense(session, food.id, 1_000, date(2024, 1, 5))
        over = service.compute_progress(budget, date(2024, 1, 11))
        assert over["projected_overspend_date"] is None
        assert over["is_over_budget"] is True
        assert over["remaining_cents"] == -1_000


def test_zero_amount_budget_reports_zero_percentage() -> None:
    with Session(make_engine()) as session:
        budget, food, _ = _setup(session, amount_cents=0)
        _expense(session, food.id, 500, date(2024, 1, 4))

        progress = BudgetService(session, 1).compute_progress(budget, date(2024, 1, 11))
        assert progress["percentage"] == 0.0
        assert progress["is_over_budget"] is True


def test_linked_and_category_spend_both_count() -> None:
    with Session(make_engine()) as session:
        budget, food, fun = _setup(session)
        _expense(session, food.id, 1_000, date(2024, 1, 2))
        _expense(session, fun.id, 2_000, date(2024, 1, 2), budget_id=budget.id)
        _expense(session, fun.id, 4_000, date(2024, 1, 2))
        _expense(session, food.id, 8_000, date(2023, 12, 31))

        progress = BudgetService(session, 1).compute_progress(budget, date(2024, 1, 11))
        assert progress["spent_cents"] == 3_000


def test_period_comparison_against_previous_month() -> None:
    with Session(make_engine()) as session:
        budget, food, _ = _setup(session)
        _expense(session, food.id, 10_000, date(2023, 12, 5))
        _expense(session, food.id, 50_000, date(2023, 12, 20))
        _expense(session, food.id, 15_000, date(2024, 1, 6))

        service = BudgetService(session, 1)
        progress = service.compute_progress(budget, date(2024, 1, 11))
        assert progress["period_comparison"] == 50.0


def test_period_comparison_absent_without_previous_spending() -> None:
    with Session(make_engine()) as session:
        budget, food, _ = _setup(session)
        _expense(session, food.id, 15_000, date(2024, 1, 6))

        progress = BudgetService(session, 1).compute_progress(budget, date(2024, 1, 11))
        assert progress["period_comparison"] is None


def test_fixed_window_budget_uses_its_own_dates() -> None:
    with Session(make_engine()) as session:
        budget, food, _ = _setup(
            session, start_date=date(2024, 3, 10), end_date=date(2024, 3, 19)
        )
        _expense(session, food.id, 1_000, date(2024, 3, 9))
        _expense(session, food.id, 2_000, date(2024, 3, 10))
        _expense(session, food.id, 4_000, date(2024, 3, 19))
        _expense(session, food.id, 8_000, date(2024, 3, 20))

        progress = BudgetService(session, 1).compute_progress(budget, date(2024, 3, 15))
        assert progress["spent_cents"] == 6_000
        assert progress["days_remaining"] == 4


def test_read_failure_yields_zero_progress(monkeypatch) -> None:
    with Session(make_engine()) as session:
        budget, food, _ = _setup(session)
        _expense(session, food.id, 15_000, date(2024, 1, 6))

        def boom(*_args, **_kwargs):
            raise OperationalError("SELECT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(services, "budget_spent", boom)
        progress = BudgetService(session, 1).compute_progress(budget, date(2024, 1, 11))
        assert progress["spent_cents"] == 0
        assert progress["remaining_cents"] == 30_000
        assert progress["percentage"] == 0.0
        assert progress["projected_overspend_date"] is None
        assert progress["period_comparison"] is None


def test_warnings_flag_near_and_over_budget() -> None:
    with Session(make_engine()) as session:
        budget, food, fun = _setup(session)
        treats = Budget(
            user_id=1,
            name="Treats",
            amount_cents=1_000,
            period=BudgetPeriod.monthly,
            category_id=fun.id,
            start_date=date(2024, 1, 1),
        )
        session.add(treats)
        session.commit()
        _expense(session, food.id, 27_000, date(2024, 1, 6))
        _expense(session, fun.id, 1_500, date(2024, 1, 6))

        warnings = BudgetService(session, 1).warnings(date(2024, 1, 11))
        by_budget = {w["budget_id"]: w for w in warnings}
        assert by_budget[budget.id]["severity"] == "warning"
        assert by_budget[treats.id]["severity"] == "error"
        assert "exceeded by 5.00" in by_budget[treats.id]["message"]
