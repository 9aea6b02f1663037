from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import BudgetPeriod


@dataclass(frozen=True)
class Window:
    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def local_date(moment: datetime) -> date:
    """Calendar date of a naive UTC timestamp in the configured timezone."""
    tz = ZoneInfo(get_settings().timezone)
    return moment.replace(tzinfo=timezone.utc).astimezone(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def month_start(d: date) -> date:
    return d.replace(day=1)


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = desired_day or base.day
    return date(year, month, min(day, days_in_month(year, month)))


def week_start(d: date) -> date:
    return d - timedelta(days=d.weekday())


def iso_week_key(d: date) -> str:
    iso_year, iso_week, _ = d.isocalendar()
    return f"{iso_year:04d}-W{iso_week:02d}"


def _period_start(anchor: date, period: BudgetPeriod, index: int) -> date:
    if period == BudgetPeriod.weekly:
        return anchor + timedelta(weeks=index)
    if period == BudgetPeriod.yearly:
        return add_months(anchor, 12 * index, desired_day=anchor.day)
    return add_months(anchor, index, desired_day=anchor.day)


def _period_index(anchor: date, period: BudgetPeriod, today: date) -> int:
    if today <= anchor:
        return 0
    if period == BudgetPeriod.weekly:
        return (today - anchor).days // 7
    if period == BudgetPeriod.yearly:
        index = today.year - anchor.year
    else:
        index = (today.year - anchor.year) * 12 + (today.month - anchor.month)
    if _period_start(anchor, period, index) > today:
        index -= 1
    return max(index, 0)


def period_instance(anchor: date, period: BudgetPeriod, index: int) -> Window:
    start = _period_start(anchor, period, index)
    end = _period_start(anchor, period, index + 1) - timedelta(days=1)
    return Window(start, end)


def budget_window(
    start_date: date,
    end_date: Optional[date],
    period: BudgetPeriod,
    today: date,
) -> Window:
    """Active window of a budget on ``today``.

    Budgets with an end date cover exactly ``[start_date, end_date]``.
    Recurring budgets repeat calendar periods anchored on ``start_date``:
    seven days for weekly, calendar-month steps for monthly and twelve-month
    steps for yearly, clamping the anchor day to short months. The window
    is the instance containing ``today``, or the first one before it starts.
    """
    if end_date is not None:
        return Window(start_date, end_date)
    return period_instance(start_date, period, _period_index(start_date, period, today))


def previous_window(
    start_date: date,
    end_date: Optional[date],
    period: BudgetPeriod,
    current: Window,
) -> Window:
    if end_date is not None:
        length = timedelta(days=current.days)
        return Window(current.start - length, current.start - timedelta(days=1))
    index = _period_index(start_date, period, current.start)
    return period_instance(start_date, period, index - 1)
