from __future__ import annotations

import logging
import math
import statistics
from datetime import datetime, time, timedelta
from typing import Callable, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from config import ALERT_SPEND_SCOPES, get_settings
from database import SessionLocal
from models import (
    Budget,
    Goal,
    Notification,
    NotificationKind,
    NotificationType,
    Transaction,
    TransactionType,
    UserProfile,
    utcnow,
)
from periods import budget_window, local_date
from schemas import NotificationPreferences
from services import PreferencesService, budget_spent


logger = logging.getLogger(__name__)


BUDGET_ALERT_WINDOW = timedelta(days=7)
GOAL_REMINDER_WINDOW = timedelta(days=7)
TRANSACTION_ALERT_WINDOW = timedelta(hours=24)
SWEEP_LOOKBACK = timedelta(hours=1)
HISTORY_DAYS = 30


def is_unusual_amount(amount: int, history: Iterable[int]) -> bool:
    """Whether ``amount`` stands out against recent spending.

    Unusual means above mean + 2 standard deviations, or at least as large
    as the 90th-percentile value (index ``floor(n * 0.1)`` of the history
    sorted descending). Empty history is never unusual.
    """
    values = [int(v) for v in history]
    if not values:
        return False
    mean = statistics.fmean(values)
    spread = statistics.pstdev(values)
    if amount > mean + 2 * spread:
        return True
    ranked = sorted(values, reverse=True)
    return amount >= ranked[math.floor(len(ranked) * 0.1)]


def dedup_key(kind: NotificationKind, data: dict[str, object]) -> str:
    if kind == NotificationKind.budget_alert:
        return f"budget:{data['budget_id']}:{data['threshold']}"
    if kind == NotificationKind.goal_reminder:
        return f"goal:{data['goal_id']}:{data['type']}"
    return f"transaction:{data['transaction_id']}:{data['type']}"


def format_money(cents: int, currency: str) -> str:
    return f"{cents / 100:,.2f} {currency}"


class AlertEngine:
    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        now: Optional[datetime] = None,
        spend_scope: Optional[str] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.now = now or utcnow()
        # Budget windows and transaction dates are local calendar dates.
        self.today = local_date(self.now)
        self.spend_scope = spend_scope or get_settings().alert_spend_scope
        if self.spend_scope not in ALERT_SPEND_SCOPES:
            raise ValueError(f"Unknown alert spend scope: {self.spend_scope}")
        self.created = 0
        self._preferences: Optional[NotificationPreferences] = None
        self._currency: Optional[str] = None
        self._types: dict[NotificationKind, Optional[NotificationType]] = {}

    def _load_profile(self) -> None:
        prefs = PreferencesService(self.session, self.user_id)
        try:
            self._preferences = prefs.notification_preferences()
            self._currency = prefs.currency()
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(
                f"alert_preferences_read_failed: user_id={self.user_id} using_defaults=1"
            )
            self._preferences = NotificationPreferences()
            self._currency = "USD"

    @property
    def preferences(self) -> NotificationPreferences:
        if self._preferences is None:
            self._load_profile()
        return self._preferences

    @property
    def currency(self) -> str:
        if self._currency is None:
            self._load_profile()
        return self._currency

    def _notification_type(self, kind: NotificationKind) -> Optional[NotificationType]:
        if kind not in self._types:
            self._types[kind] = self.session.scalars(
                select(NotificationType).where(NotificationType.name == kind.value)
            ).first()
        return self._types[kind]

    def _recently_sent(self, type_id: int, key: str, window: timedelta) -> bool:
        stmt = (
            select(Notification.id)
            .where(
                Notification.user_id == self.user_id,
                Notification.type_id == type_id,
                Notification.dedup_key == key,
                Notification.created_at >= self.now - window,
            )
            .limit(1)
        )
        return self.session.execute(stmt).first() is not None

    def _notify(
        self,
        kind: NotificationKind,
        *,
        title: str,
        message: str,
        data: dict[str, object],
        window: timedelta,
        expires_at: Optional[datetime],
        action_url: Optional[str] = None,
    ) -> bool:
        key = dedup_key(kind, data)
        try:
            notification_type = self._notification_type(kind)
            if notification_type is None:
                logger.warning(f"notification_type_missing: kind={kind.value}")
                return False
            if self._recently_sent(notification_type.id, key, window):
                logger.info(
                    f"notification_deduplicated: user_id={self.user_id} key={key}"
                )
                return False
            self.session.add(
                Notification(
                    user_id=self.user_id,
                    type_id=notification_type.id,
                    title=title,
                    message=message,
                    data=data,
                    dedup_key=key,
                    action_url=action_url,
                    created_at=self.now,
                    expires_at=expires_at,
                )
            )
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception(
                f"notification_create_failed: user_id={self.user_id} key={key}"
            )
            return False
        self.created += 1
        logger.info(f"notification_created: user_id={self.user_id} key={key}")
        return True

    def _budget_spend(self, budget: Budget) -> Optional[int]:
        if self.spend_scope == "period":
            window = budget_window(
                budget.start_date, budget.end_date, budget.period, self.today
            )
            start, end = window.start, window.end
        else:
            start, end = budget.start_date, budget.end_date
        try:
            return budget_spent(self.session, budget, start, end)
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"alert_budget_spend_failed: budget_id={budget.id}")
            return None

    def check_budget_alerts(self) -> None:
        prefs = self.preferences.budget_alerts
        if not prefs.enabled:
            return
        thresholds = sorted(set(prefs.thresholds))
        try:
            budgets = self.session.scalars(
                select(Budget).where(Budget.user_id == self.user_id)
            ).all()
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"alert_budgets_read_failed: user_id={self.user_id}")
            return

        for budget in budgets:
            if budget.amount_cents <= 0:
                continue
            spent = self._budget_spend(budget)
            if spent is None:
                continue
            percentage = 100 * spent / budget.amount_cents
            for threshold in thresholds:
                if percentage < threshold:
                    continue
                if threshold >= 100:
                    title = f"Budget exceeded: {budget.name}"
                else:
                    title = f"Budget alert: {budget.name}"
                self._notify(
                    NotificationKind.budget_alert,
                    title=title,
                    message=(
                        f"You've used {percentage:.0f}% of your {budget.name} budget "
                        f"({format_money(spent, self.currency)} of "
                        f"{format_money(budget.amount_cents, self.currency)})."
                    ),
                    data={
                        "budget_id": budget.id,
                        "threshold": threshold,
                        "spent_cents": spent,
                        "amount_cents": budget.amount_cents,
                        "percentage": round(percentage, 2),
                    },
                    window=BUDGET_ALERT_WINDOW,
                    expires_at=self.now + BUDGET_ALERT_WINDOW,
                    action_url=f"/budgets/{budget.id}",
                )

    @staticmethod
    def goal_progress(goal: Goal) -> float:
        if goal.target_amount_cents <= 0:
            return 100.0
        return goal.current_amount_cents / goal.target_amount_cents * 100

    def check_goal_reminders(self) -> None:
        prefs = self.preferences.goal_reminders
        if not prefs.enabled:
            return
        try:
            goals = self.session.scalars(
                select(Goal).where(
                    Goal.user_id == self.user_id, Goal.target_date.is_not(None)
                )
            ).all()
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"alert_goals_read_failed: user_id={self.user_id}")
            return

        horizon = self.today + timedelta(days=prefs.days_before_deadline)
        for goal in goals:
            progress = self.goal_progress(goal)
            base = {
                "goal_id": goal.id,
                "target_date": goal.target_date.isoformat(),
                "current_amount_cents": goal.current_amount_cents,
                "target_amount_cents": goal.target_amount_cents,
                "progress": round(progress, 2),
            }
            if self.today <= goal.target_date <= horizon:
                days_left = (goal.target_date - self.today).days
                self._notify(
                    NotificationKind.goal_reminder,
                    title=f"Goal deadline approaching: {goal.name}",
                    message=(
                        f"{days_left} day(s) left to reach {goal.name}. "
                        f"You're at {progress:.0f}% of "
                        f"{format_money(goal.target_amount_cents, self.currency)}."
                    ),
                    data={**base, "type": "deadline_approaching", "days_left": days_left},
                    window=GOAL_REMINDER_WINDOW,
                    expires_at=datetime.combine(goal.target_date, time.max),
                    action_url=f"/goals/{goal.id}",
                )
            if prefs.frequency == "weekly" and progress < 100:
                self._notify(
                    NotificationKind.goal_reminder,
                    title=f"Weekly goal check-in: {goal.name}",
                    message=(
                        f"{goal.name} is at {progress:.0f}% "
                        f"({format_money(goal.current_amount_cents, self.currency)} of "
                        f"{format_money(goal.target_amount_cents, self.currency)})."
                    ),
                    data={**base, "type": "weekly_progress"},
                    window=GOAL_REMINDER_WINDOW,
                    expires_at=self.now + GOAL_REMINDER_WINDOW,
                    action_url=f"/goals/{goal.id}",
                )

    def spending_history(self, txn: Transaction) -> list[int]:
        stmt = select(Transaction.amount_cents).where(
            Transaction.user_id == self.user_id,
            Transaction.type == TransactionType.expense,
            Transaction.date >= self.today - timedelta(days=HISTORY_DAYS),
            Transaction.id != txn.id,
        )
        if txn.category_id is not None:
            stmt = stmt.where(Transaction.category_id == txn.category_id)
        return [int(v) for v in self.session.scalars(stmt).all()]

    def _is_unusual(self, txn: Transaction) -> bool:
        try:
            history = self.spending_history(txn)
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"alert_history_read_failed: transaction_id={txn.id}")
            return False
        return is_unusual_amount(txn.amount_cents, history)

    def check_transaction_alerts(self, transaction_id: Optional[int] = None) -> None:
        """Large-amount and unusual-spending alerts.

        With ``transaction_id`` only that expense is examined; otherwise the
        sweep covers expenses recorded within the last hour.
        """
        prefs = self.preferences.transaction_alerts
        if not prefs.enabled:
            return
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.category))
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
            )
        )
        if transaction_id is not None:
            stmt = stmt.where(Transaction.id == transaction_id)
        else:
            stmt = stmt.where(Transaction.created_at >= self.now - SWEEP_LOOKBACK)
        try:
            transactions = self.session.scalars(stmt).all()
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"alert_transactions_read_failed: user_id={self.user_id}")
            return

        for txn in transactions:
            label = txn.description or (txn.category.name if txn.category else "expense")
            amount = format_money(txn.amount_cents, self.currency)
            base = {
                "transaction_id": txn.id,
                "amount_cents": txn.amount_cents,
                "category_id": txn.category_id,
                "date": txn.date.isoformat(),
            }
            if txn.amount_cents >= prefs.min_amount_cents:
                self._notify(
                    NotificationKind.transaction_alert,
                    title="Large transaction",
                    message=f"{label}: {amount} was recorded.",
                    data={**base, "type": "large_amount"},
                    window=TRANSACTION_ALERT_WINDOW,
                    expires_at=self.now + TRANSACTION_ALERT_WINDOW,
                    action_url=f"/transactions/{txn.id}",
                )
            if prefs.unusual_spending and self._is_unusual(txn):
                self._notify(
                    NotificationKind.transaction_alert,
                    title="Unusual spending",
                    message=f"{label}: {amount} is higher than your recent spending.",
                    data={**base, "type": "unusual_spending"},
                    window=TRANSACTION_ALERT_WINDOW,
                    expires_at=self.now + TRANSACTION_ALERT_WINDOW,
                    action_url=f"/transactions/{txn.id}",
                )

    def run_all(self) -> int:
        checks = (
            ("budget", self.check_budget_alerts),
            ("goal", self.check_goal_reminders),
            ("transaction", self.check_transaction_alerts),
        )
        for name, check in checks:
            try:
                check()
            except Exception:
                self.session.rollback()
                logger.exception(
                    f"alert_check_failed: user_id={self.user_id} check={name}"
                )
        logger.info(
            f"alert_checks_done: user_id={self.user_id} created={self.created}"
        )
        return self.created


def run_notification_job(
    session_factory: Callable[[], Session] = SessionLocal,
    *,
    now: Optional[datetime] = None,
) -> int:
    """Run every alert check for each onboarded owner; returns owners processed."""
    with session_factory() as session:
        user_ids = session.scalars(
            select(UserProfile.id)
            .where(UserProfile.onboarding_completed.is_(True))
            .order_by(UserProfile.id.asc())
        ).all()

    processed = 0
    for user_id in user_ids:
        with session_factory() as session:
            try:
                AlertEngine(session, user_id, now=now).run_all()
            except Exception:
                session.rollback()
                logger.exception(f"notification_job_user_failed: user_id={user_id}")
                continue
        processed += 1
    logger.info(f"notification_job_done: users={processed}")
    return processed
