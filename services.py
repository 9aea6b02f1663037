from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta
from typing import Optional

from pydantic import ValidationError
from sqlalchemy import and_, case, delete, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from models import (
    Account,
    AccountType,
    Budget,
    Category,
    Notification,
    NotificationKind,
    NotificationType,
    Transaction,
    TransactionType,
    UserProfile,
    utcnow,
)
from periods import (
    Window,
    add_months,
    budget_window,
    iso_week_key,
    local_today,
    month_start,
    previous_window,
    week_start,
)
from schemas import (
    ManualBalanceIn,
    NotificationPreferences,
    NotificationPreferencesPatch,
    TransactionIn,
)


logger = logging.getLogger(__name__)


NOTIFICATION_TYPES: tuple[tuple[NotificationKind, str, int], ...] = (
    (NotificationKind.budget_alert, "Budget alert", 2),
    (NotificationKind.goal_reminder, "Goal reminder", 1),
    (NotificationKind.transaction_alert, "Transaction alert", 3),
)


def seed_notification_types(session: Session) -> None:
    existing = set(session.scalars(select(NotificationType.name)).all())
    for kind, display_name, priority in NOTIFICATION_TYPES:
        if kind.value in existing:
            continue
        session.add(
            NotificationType(
                name=kind.value, display_name=display_name, priority=priority
            )
        )
    session.flush()


def _signed_amount(account_id: int):
    return case(
        (
            and_(
                Transaction.type == TransactionType.income,
                Transaction.account_id == account_id,
            ),
            Transaction.amount_cents,
        ),
        (
            and_(
                Transaction.type.in_([TransactionType.expense, TransactionType.transfer]),
                Transaction.account_id == account_id,
            ),
            -Transaction.amount_cents,
        ),
        (
            and_(
                Transaction.type == TransactionType.transfer,
                Transaction.transfer_account_id == account_id,
            ),
            Transaction.amount_cents,
        ),
        else_=0,
    )


def ledger_balance(session: Session, user_id: int, account_id: int) -> int:
    stmt = select(func.coalesce(func.sum(_signed_amount(account_id)), 0)).where(
        Transaction.user_id == user_id,
        or_(
            Transaction.account_id == account_id,
            Transaction.transfer_account_id == account_id,
        ),
    )
    return int(session.execute(stmt).scalar_one() or 0)


def budget_spent(
    session: Session, budget: Budget, start: date, end: Optional[date]
) -> int:
    """Expense total counted against ``budget`` between ``start`` and ``end``.

    A transaction counts when it is linked to the budget, or when it has no
    budget link and falls in the budget's category. Budgets without a
    category take every unlinked expense. ``end=None`` leaves the range open.
    Shared by progress reporting and budget alerts.
    """
    if budget.category_id is None:
        unlinked = Transaction.budget_id.is_(None)
    else:
        unlinked = and_(
            Transaction.budget_id.is_(None),
            Transaction.category_id == budget.category_id,
        )
    stmt = select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
        Transaction.user_id == budget.user_id,
        Transaction.type == TransactionType.expense,
        Transaction.date >= start,
        or_(Transaction.budget_id == budget.id, unlinked),
    )
    if end is not None:
        stmt = stmt.where(Transaction.date <= end)
    return int(session.execute(stmt).scalar_one() or 0)


def transaction_to_dict(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "transfer_account_id": txn.transfer_account_id,
        "category_id": txn.category_id,
        "budget_id": txn.budget_id,
        "type": txn.type.value,
        "amount_cents": txn.amount_cents,
        "date": txn.date,
        "description": txn.description,
        "created_at": txn.created_at,
    }


def notification_to_dict(notification: Notification) -> dict[str, object]:
    return {
        "id": notification.id,
        "type": notification.type.name if notification.type else None,
        "title": notification.title,
        "message": notification.message,
        "data": notification.data or {},
        "action_url": notification.action_url,
        "created_at": notification.created_at,
        "expires_at": notification.expires_at,
        "read_at": notification.read_at,
    }


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _owned(self, model, record_id: Optional[int], label: str):
        if record_id is None:
            return None
        record = self.session.get(model, record_id)
        if not record or record.user_id != self.user_id:
            raise ValueError(f"{label} not found")
        return record

    def create(self, data: TransactionIn) -> Transaction:
        self._owned(Account, data.account_id, "Account")
        self._owned(Category, data.category_id, "Category")
        self._owned(Budget, data.budget_id, "Budget")
        if data.type == TransactionType.transfer:
            if data.account_id is None or data.transfer_account_id is None:
                raise ValueError("Transfers need a source and a destination account")
            if data.account_id == data.transfer_account_id:
                raise ValueError("Transfer accounts must differ")
            self._owned(Account, data.transfer_account_id, "Account")
        elif data.transfer_account_id is not None:
            raise ValueError("Only transfers can have a destination account")

        txn = Transaction(
            user_id=self.user_id,
            account_id=data.account_id,
            transfer_account_id=data.transfer_account_id,
            category_id=data.category_id,
            budget_id=data.budget_id,
            type=data.type,
            amount_cents=data.amount_cents,
            date=data.date,
            description=data.description,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn or txn.user_id != self.user_id:
            raise ValueError("Transaction not found")
        return txn

    def recent(self, limit: int = 10) -> list[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.date.desc(), Transaction.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()


class AccountService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.name.asc(), Account.id.asc())
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        account = self.session.get(Account, account_id)
        if not account or account.user_id != self.user_id:
            raise ValueError("Account not found")
        return account

    def resolve_balance(self, account_id: int) -> dict[str, object]:
        try:
            account = self.session.get(Account, account_id)
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"balance_account_read_failed: account_id={account_id}")
            account = None
        if not account or account.user_id != self.user_id:
            return {
                "balance_cents": 0,
                "manual_override_active": False,
                "manual_balance_cents": None,
                "transaction_impact_cents": None,
                "last_manual_set": None,
            }
        return self._resolve(account)

    def _resolve(self, account: Account) -> dict[str, object]:
        if account.manual_override_active:
            return {
                "balance_cents": int(account.manual_balance_cents or 0),
                "manual_override_active": True,
                "manual_balance_cents": account.manual_balance_cents,
                "transaction_impact_cents": 0,
                "last_manual_set": account.manual_balance_set_at,
            }
        stored = int(account.balance_cents or 0)
        try:
            balance = ledger_balance(self.session, self.user_id, account.id)
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(
                f"balance_ledger_read_failed: account_id={account.id} using_stored=1"
            )
            return {
                "balance_cents": stored,
                "manual_override_active": False,
                "manual_balance_cents": None,
                "transaction_impact_cents": None,
                "last_manual_set": None,
            }
        return {
            "balance_cents": balance,
            "manual_override_active": False,
            "manual_balance_cents": None,
            "transaction_impact_cents": balance,
            "last_manual_set": None,
        }

    def set_manual_balance(
        self, account_id: int, data: ManualBalanceIn, *, now: Optional[datetime] = None
    ) -> Account:
        account = self.get(account_id)
        account.manual_override_active = True
        account.manual_balance_cents = data.balance_cents
        account.manual_balance_note = data.note
        account.manual_balance_set_at = now or utcnow()
        account.balance_cents = None
        self.session.commit()
        self.session.refresh(account)
        logger.info(f"manual_override_set: account_id={account.id}")
        return account

    def clear_manual_override(self, account_id: int) -> Account:
        account = self.get(account_id)
        account.manual_override_active = False
        account.manual_balance_cents = None
        account.manual_balance_note = None
        account.manual_balance_set_at = None
        self.session.commit()

        # Restoring the stored balance is a separate write; a failure here
        # leaves the override cleared and the ledger still authoritative.
        try:
            account.balance_cents = ledger_balance(
                self.session, self.user_id, account.id
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(
                f"manual_override_restore_failed: account_id={account.id}"
            )
        self.session.refresh(account)
        logger.info(f"manual_override_cleared: account_id={account.id}")
        return account

    def list_with_balances(self) -> list[dict[str, object]]:
        try:
            accounts = self.list_all()
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"accounts_read_failed: user_id={self.user_id}")
            return []

        out: list[dict[str, object]] = []
        for account in accounts:
            resolved = self._resolve(account)
            out.append(
                {
                    "id": account.id,
                    "name": account.name,
                    "type": account.type.value,
                    "currency": account.currency,
                    "is_savings": self._is_savings(account),
                    **resolved,
                }
            )
        return out

    @staticmethod
    def _is_savings(account: Account) -> bool:
        return account.type == AccountType.savings or "savings" in (
            account.name or ""
        ).lower()

    def net_worth(self) -> dict[str, object]:
        accounts = self.list_with_balances()
        net_worth = sum(int(a["balance_cents"]) for a in accounts)
        total_savings = sum(
            int(a["balance_cents"]) for a in accounts if a["is_savings"]
        )
        return {
            "net_worth_cents": net_worth,
            "total_savings_cents": total_savings,
            "accounts": accounts,
        }


class BudgetService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(joinedload(Budget.category))
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.start_date.asc(), Budget.id.asc())
        )
        return self.session.scalars(stmt).all()

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.user_id != self.user_id:
            raise ValueError("Budget not found")
        return budget

    @staticmethod
    def window_for(budget: Budget, today: date) -> Window:
        return budget_window(budget.start_date, budget.end_date, budget.period, today)

    @staticmethod
    def _base(budget: Budget, window: Window) -> dict[str, object]:
        if budget.category_id is None:
            category_name = "All categories"
        else:
            category_name = budget.category.name if budget.category else "Uncategorized"
        return {
            "budget_id": budget.id,
            "name": budget.name,
            "category_name": category_name,
            "amount_cents": budget.amount_cents,
            "period_start": window.start,
            "period_end": window.end,
        }

    def _zero_progress(
        self, budget: Budget, window: Window, today: date
    ) -> dict[str, object]:
        return {
            **self._base(budget, window),
            "spent_cents": 0,
            "remaining_cents": budget.amount_cents,
            "percentage": 0.0,
            "is_over_budget": False,
            "spending_velocity": 0.0,
            "days_remaining": max(0, (window.end - today).days),
            "projected_overspend_date": None,
            "period_comparison": None,
        }

    def compute_progress(
        self, budget: Budget, today: Optional[date] = None
    ) -> dict[str, object]:
        today = today or local_today()
        window = self.window_for(budget, today)
        try:
            spent = budget_spent(self.session, budget, window.start, window.end)
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"budget_spend_read_failed: budget_id={budget.id}")
            return self._zero_progress(budget, window, today)

        amount = budget.amount_cents
        remaining = amount - spent
        percentage = round(100 * spent / amount, 2) if amount > 0 else 0.0
        elapsed_days = max(1, (today - window.start).days)
        velocity = spent / elapsed_days
        days_remaining = max(0, (window.end - today).days)

        projected: Optional[date] = None
        if remaining > 0 and velocity > 0:
            projected = today + timedelta(days=math.ceil(remaining / velocity))

        return {
            **self._base(budget, window),
            "spent_cents": spent,
            "remaining_cents": remaining,
            "percentage": percentage,
            "is_over_budget": spent > amount,
            "spending_velocity": round(velocity, 2),
            "days_remaining": days_remaining,
            "projected_overspend_date": projected,
            "period_comparison": self._period_comparison(
                budget, window, today, spent
            ),
        }

    def _period_comparison(
        self, budget: Budget, window: Window, today: date, spent: int
    ) -> Optional[float]:
        previous = previous_window(
            budget.start_date, budget.end_date, budget.period, window
        )
        elapsed = max(0, (today - window.start).days)
        mark = min(previous.end, previous.start + timedelta(days=elapsed))
        try:
            previous_spent = budget_spent(self.session, budget, previous.start, mark)
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"budget_comparison_read_failed: budget_id={budget.id}")
            return None
        if previous_spent <= 0:
            return None
        return round((spent - previous_spent) / previous_spent * 100, 2)

    def progress_for_all(self, today: Optional[date] = None) -> list[dict[str, object]]:
        try:
            budgets = self.list_all()
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"budgets_read_failed: user_id={self.user_id}")
            return []
        return [self.compute_progress(budget, today) for budget in budgets]

    def warnings(self, today: Optional[date] = None) -> list[dict[str, object]]:
        out: list[dict[str, object]] = []
        for progress in self.progress_for_all(today):
            if progress["is_over_budget"]:
                over = abs(int(progress["remaining_cents"])) / 100
                out.append(
                    {
                        "budget_id": progress["budget_id"],
                        "message": f"{progress['name']} budget exceeded by {over:.2f}",
                        "severity": "error",
                    }
                )
            elif float(progress["percentage"]) > 80:
                out.append(
                    {
                        "budget_id": progress["budget_id"],
                        "message": (
                            f"{progress['name']} budget is "
                            f"{progress['percentage']}% used"
                        ),
                        "severity": "warning",
                    }
                )
        return out


def _empty_bucket(key_name: str, key: str) -> dict[str, object]:
    return {key_name: key, "income_cents": 0, "expenses_cents": 0, "net_cents": 0}


class SummaryService:
    GRANULARITIES = ("daily", "weekly", "monthly")
    DEFAULT_WINDOWS = {"daily": 30, "weekly": 12, "monthly": 6}

    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def _daily_totals(
        self, start: date, end: date
    ) -> list[tuple[date, TransactionType, int]]:
        stmt = (
            select(
                Transaction.date,
                Transaction.type,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type.in_([TransactionType.income, TransactionType.expense]),
                Transaction.date.between(start, end),
            )
            .group_by(Transaction.date, Transaction.type)
        )
        try:
            return [
                (row.date, row.type, int(row.total or 0))
                for row in self.session.execute(stmt)
            ]
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(
                f"summary_read_failed: user_id={self.user_id} start={start} end={end}"
            )
            return []

    @staticmethod
    def _fill(
        buckets: dict[str, dict[str, object]],
        totals: list[tuple[date, TransactionType, int]],
        key_for,
    ) -> list[dict[str, object]]:
        for day, txn_type, total in totals:
            bucket = buckets.get(key_for(day))
            if bucket is None:
                continue
            if txn_type == TransactionType.income:
                bucket["income_cents"] = int(bucket["income_cents"]) + total
            else:
                bucket["expenses_cents"] = int(bucket["expenses_cents"]) + total
        for bucket in buckets.values():
            bucket["net_cents"] = int(bucket["income_cents"]) - int(
                bucket["expenses_cents"]
            )
        return [buckets[key] for key in sorted(buckets)]

    def daily(
        self, days: int = 30, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        today = today or local_today()
        start = today - timedelta(days=days)
        buckets: dict[str, dict[str, object]] = {}
        current = start
        while current <= today:
            buckets[current.isoformat()] = _empty_bucket("date", current.isoformat())
            current += timedelta(days=1)
        totals = self._daily_totals(start, today)
        return self._fill(buckets, totals, lambda d: d.isoformat())

    def weekly(
        self, weeks: int = 12, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        today = today or local_today()
        first_week = week_start(today - timedelta(weeks=weeks))
        buckets: dict[str, dict[str, object]] = {}
        current = first_week
        while current <= today:
            key = iso_week_key(current)
            buckets[key] = _empty_bucket("week", key)
            current += timedelta(weeks=1)
        totals = self._daily_totals(first_week, today)
        return self._fill(buckets, totals, iso_week_key)

    def _category_spending(self, start: date, end: date) -> list[dict[str, object]]:
        stmt = (
            select(
                Transaction.category_id,
                Category.name,
                Category.color,
                Category.icon,
                func.coalesce(func.sum(Transaction.amount_cents), 0).label("total"),
            )
            .outerjoin(Category, Transaction.category_id == Category.id)
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.date.between(start, end),
            )
            .group_by(
                Transaction.category_id, Category.name, Category.color, Category.icon
            )
        )
        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"category_spending_read_failed: user_id={self.user_id}")
            return []
        total = sum(int(row.total or 0) for row in rows)
        out = [
            {
                "category_id": row.category_id,
                "category_name": row.name or "Uncategorized",
                "color": row.color or "#6366f1",
                "icon": row.icon,
                "amount_cents": int(row.total or 0),
                "percentage": round(int(row.total or 0) / total * 100, 2)
                if total > 0
                else 0.0,
            }
            for row in rows
        ]
        out.sort(key=lambda item: -int(item["amount_cents"]))
        return out

    def monthly(self, months: int = 6, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        months = max(1, months)
        first_month = add_months(month_start(today), -(months - 1))

        buckets: dict[str, dict[str, object]] = {}
        for index in range(months):
            current = add_months(first_month, index)
            key = f"{current.year:04d}-{current.month:02d}"
            buckets[key] = _empty_bucket("month", key)
        totals = self._daily_totals(first_month, today)
        trend = self._fill(buckets, totals, lambda d: f"{d.year:04d}-{d.month:02d}")

        total_income = sum(int(b["income_cents"]) for b in trend)
        total_expenses = sum(int(b["expenses_cents"]) for b in trend)
        net_income = total_income - total_expenses
        savings_rate = round(net_income / total_income, 4) if total_income > 0 else 0.0
        return {
            "period_start": first_month,
            "period_end": today,
            "total_income_cents": total_income,
            "total_expenses_cents": total_expenses,
            "net_income_cents": net_income,
            "savings_rate": savings_rate,
            "top_categories": self._category_spending(first_month, today)[:5],
            "monthly_trend": trend,
        }

    def summarize(
        self,
        granularity: str,
        window_size: Optional[int] = None,
        today: Optional[date] = None,
    ):
        if granularity not in self.GRANULARITIES:
            raise ValueError(f"Unsupported granularity: {granularity}")
        size = window_size or self.DEFAULT_WINDOWS[granularity]
        if size <= 0:
            raise ValueError("Window size must be positive")
        if granularity == "daily":
            return self.daily(size, today)
        if granularity == "weekly":
            return self.weekly(size, today)
        return self.monthly(size, today)

    def insights(
        self, months: int = 3, today: Optional[date] = None
    ) -> list[dict[str, object]]:
        """Rule-based remarks on the monthly summary.

        Flags a savings rate under 20% or over 50%, a top expense category
        above 40% of spending, and current-month expenses more than 20% above
        the previous month.
        """
        summary = self.monthly(months, today)
        out: list[dict[str, object]] = []

        rate = float(summary["savings_rate"])
        if rate < 0.20:
            out.append(
                {
                    "kind": "low_savings_rate",
                    "severity": "warning",
                    "value": rate,
                    "message": (
                        f"Your savings rate is {rate * 100:.1f}%. "
                        "Aim for 20% to build a safety cushion."
                    ),
                }
            )
        elif rate > 0.50:
            out.append(
                {
                    "kind": "high_savings_rate",
                    "severity": "info",
                    "value": rate,
                    "message": f"Your savings rate of {rate * 100:.1f}% is excellent.",
                }
            )

        top = summary["top_categories"]
        if top and float(top[0]["percentage"]) > 40:
            share = float(top[0]["percentage"])
            out.append(
                {
                    "kind": "dominant_category",
                    "severity": "info",
                    "value": share,
                    "message": (
                        f"{top[0]['category_name']} accounts for {share:.1f}% "
                        "of your expenses."
                    ),
                }
            )

        trend = summary["monthly_trend"]
        if len(trend) >= 2:
            current = int(trend[-1]["expenses_cents"])
            previous = int(trend[-2]["expenses_cents"])
            # integer form of current > previous * 1.2
            if previous > 0 and 5 * current > 6 * previous:
                change = round((current - previous) / previous * 100, 1)
                out.append(
                    {
                        "kind": "expense_increase",
                        "severity": "warning",
                        "value": change,
                        "message": f"Your expenses increased by {change:.1f}% this month.",
                    }
                )
        return out


class DashboardService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.accounts = AccountService(session, user_id)
        self.budgets = BudgetService(session, user_id)
        self.summaries = SummaryService(session, user_id)
        self.transactions = TransactionService(session, user_id)

    def _recent_transactions(self, limit: int = 10) -> list[dict[str, object]]:
        try:
            return [transaction_to_dict(t) for t in self.transactions.recent(limit)]
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"recent_transactions_read_failed: user_id={self.user_id}")
            return []

    def dashboard(self, today: Optional[date] = None) -> dict[str, object]:
        today = today or local_today()
        worth = self.accounts.net_worth()
        return {
            "financial_summary": self.summaries.monthly(6, today),
            "budgets": self.budgets.progress_for_all(today),
            "recent_transactions": self._recent_transactions(),
            "insights": self.summaries.insights(3, today),
            "accounts": worth["accounts"],
            "net_worth_cents": worth["net_worth_cents"],
            "total_savings_cents": worth["total_savings_cents"],
        }

    def metrics(self, today: Optional[date] = None) -> dict[str, object]:
        summary = self.summaries.monthly(1, today)
        worth = self.accounts.net_worth()
        return {
            "net_worth_cents": worth["net_worth_cents"],
            "monthly_income_cents": summary["total_income_cents"],
            "monthly_expenses_cents": summary["total_expenses_cents"],
            "total_savings_cents": worth["total_savings_cents"],
            "savings_rate": summary["savings_rate"],
        }


class PreferencesService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def profile(self) -> Optional[UserProfile]:
        return self.session.get(UserProfile, self.user_id)

    def currency(self) -> str:
        profile = self.profile()
        return profile.currency if profile else "USD"

    def notification_preferences(self) -> NotificationPreferences:
        profile = self.profile()
        raw = (profile.preferences or {}).get("notifications") if profile else None
        try:
            return NotificationPreferences.model_validate(raw or {})
        except ValidationError:
            logger.warning(
                f"notification_preferences_invalid: user_id={self.user_id} using_defaults=1"
            )
            return NotificationPreferences()

    def update_notification_preferences(
        self, patch: NotificationPreferencesPatch
    ) -> NotificationPreferences:
        profile = self.profile()
        if profile is None:
            profile = UserProfile(id=self.user_id, preferences={})
            self.session.add(profile)
        data = self.notification_preferences().model_dump()
        data.update(patch.model_dump(exclude_none=True))
        merged = NotificationPreferences.model_validate(data)
        profile.preferences = {
            **(profile.preferences or {}),
            "notifications": merged.model_dump(),
        }
        self.session.commit()
        return merged


class NotificationService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def recent(
        self, *, unread_only: bool = False, limit: int = 50
    ) -> list[Notification]:
        stmt = (
            select(Notification)
            .options(joinedload(Notification.type))
            .where(Notification.user_id == self.user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        if unread_only:
            stmt = stmt.where(Notification.read_at.is_(None))
        return self.session.scalars(stmt).all()

    def get(self, notification_id: int) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if not notification or notification.user_id != self.user_id:
            raise ValueError("Notification not found")
        return notification

    def mark_read(
        self, notification_id: int, *, now: Optional[datetime] = None
    ) -> Notification:
        notification = self.get(notification_id)
        if notification.read_at is None:
            notification.read_at = now or utcnow()
            self.session.commit()
        return notification

    def mark_all_read(self, *, now: Optional[datetime] = None) -> int:
        result = self.session.execute(
            update(Notification)
            .where(
                Notification.user_id == self.user_id,
                Notification.read_at.is_(None),
            )
            .values(read_at=now or utcnow())
        )
        self.session.commit()
        return int(result.rowcount or 0)

    def delete(self, notification_id: int) -> None:
        notification = self.get(notification_id)
        self.session.delete(notification)
        self.session.commit()

    def clear_all(self) -> int:
        result = self.session.execute(
            delete(Notification).where(Notification.user_id == self.user_id)
        )
        self.session.commit()
        return int(result.rowcount or 0)
