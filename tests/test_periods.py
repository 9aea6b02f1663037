from datetime import date

from models import BudgetPeriod
from periods import (
    Window,
    add_months,
    budget_window,
    iso_week_key,
    previous_window,
    week_start,
)


def test_add_months_clamps_to_short_months():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(date(2024, 3, 15), -3) == date(2023, 12, 15)
    assert add_months(date(2024, 2, 29), 1, desired_day=31) == date(2024, 3, 31)


def test_iso_week_key_uses_iso_year():
    assert iso_week_key(date(2021, 1, 3)) == "2020-W53"
    assert iso_week_key(date(2024, 12, 30)) == "2025-W01"
    assert iso_week_key(date(2024, 3, 11)) == "2024-W11"
    assert week_start(date(2024, 3, 17)) == date(2024, 3, 11)


def test_monthly_window_follows_anchor_day():
    window = budget_window(date(2024, 1, 31), None, BudgetPeriod.monthly, date(2024, 3, 5))
    assert window == Window(date(2024, 2, 29), date(2024, 3, 30))
    assert window.contains(date(2024, 3, 5))


def test_weekly_and_yearly_windows():
    weekly = budget_window(date(2024, 1, 1), None, BudgetPeriod.weekly, date(2024, 1, 17))
    assert weekly == Window(date(2024, 1, 15), date(2024, 1, 21))
    assert weekly.days == 7

    yearly = budget_window(date(2023, 6, 1), None, BudgetPeriod.yearly, date(2024, 2, 1))
    assert yearly == Window(date(2023, 6, 1), date(2024, 5, 31))


def test_window_before_budget_starts_is_first_instance():
    window = budget_window(date(2024, 5, 1), None, BudgetPeriod.monthly, date(2024, 4, 20))
    assert window == Window(date(2024, 5, 1), date(2024, 5, 31))


def test_fixed_window_ignores_period():
    window = budget_window(
        date(2024, 3, 10), date(2024, 3, 19), BudgetPeriod.yearly, date(2025, 1, 1)
    )
    assert window == Window(date(2024, 3, 10), date(2024, 3, 19))


def test_previous_window():
    current = Window(date(2024, 2, 1), date(2024, 2, 29))
    previous = previous_window(date(2024, 1, 1), None, BudgetPeriod.monthly, current)
    assert previous == Window(date(2024, 1, 1), date(2024, 1, 31))

    fixed = Window(date(2024, 3, 10), date(2024, 3, 19))
    previous = previous_window(date(2024, 3, 10), date(2024, 3, 19), BudgetPeriod.monthly, fixed)
    assert previous == Window(date(2024, 2, 29), date(2024, 3, 9))
