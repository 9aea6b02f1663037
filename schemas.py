from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from models import TransactionType


class TransactionIn(BaseModel):
    account_id: Optional[int] = None
    transfer_account_id: Optional[int] = None
    category_id: Optional[int] = None
    budget_id: Optional[int] = None
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    date: date
    description: Optional[str] = Field(default=None, max_length=200)


class ManualBalanceIn(BaseModel):
    balance_cents: int
    note: Optional[str] = Field(default=None, max_length=200)


class BudgetAlertPreferences(BaseModel):
    enabled: bool = True
    thresholds: list[int] = Field(default_factory=lambda: [80, 90, 100])


class GoalReminderPreferences(BaseModel):
    enabled: bool = True
    frequency: Literal["daily", "weekly", "monthly", "never"] = "weekly"
    days_before_deadline: int = Field(default=7, ge=0, le=365)


class TransactionAlertPreferences(BaseModel):
    enabled: bool = True
    min_amount_cents: int = Field(default=10_000, ge=0)
    unusual_spending: bool = True


class EmailNotificationPreferences(BaseModel):
    enabled: bool = False
    digest: Literal["daily", "weekly", "never"] = "weekly"


class NotificationPreferences(BaseModel):
    model_config = ConfigDict(extra="ignore")

    budget_alerts: BudgetAlertPreferences = Field(
        default_factory=BudgetAlertPreferences
    )
    goal_reminders: GoalReminderPreferences = Field(
        default_factory=GoalReminderPreferences
    )
    transaction_alerts: TransactionAlertPreferences = Field(
        default_factory=TransactionAlertPreferences
    )
    email_notifications: EmailNotificationPreferences = Field(
        default_factory=EmailNotificationPreferences
    )


class NotificationPreferencesPatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    budget_alerts: Optional[BudgetAlertPreferences] = None
    goal_reminders: Optional[GoalReminderPreferences] = None
    transaction_alerts: Optional[TransactionAlertPreferences] = None
    email_notifications: Optional[EmailNotificationPreferences] = None
