from datetime import date, datetime, time

import pytest

from app.services.cycles import (
    count_scheduled_meals,
    cycle_window,
    delivery_datetime,
    local_date,
    service_dates,
)
from app.services.pricing import Quote, QuoteLine, apply_trial_pricing, cap_meals, unit_price
from app.models import TrialType


def test_weekly_cycle_ends_on_sunday():
    window = cycle_window('weekly', date(2025, 1, 8))  # Wednesday
    assert window.cycle_end == date(2025, 1, 12)
    assert window.renewal_date == date(2025, 1, 13)


def test_full_week_starts_monday():
    window = cycle_window('weekly', date(2025, 1, 13))
    assert (window.cycle_start, window.cycle_end) == (date(2025, 1, 13), date(2025, 1, 19))


def test_monthly_cycle_runs_to_month_end():
    window = cycle_window('monthly', date(2024, 2, 10))
    assert window.cycle_end == date(2024, 2, 29)
    assert window.renewal_date == date(2024, 3, 1)


def test_unknown_period_is_rejected():
    with pytest.raises(ValueError):
        cycle_window('daily', date(2025, 1, 1))


def test_service_dates_skip_holidays():
    dates = service_dates(date(2025, 1, 6), date(2025, 1, 12), [0, 2, 4], holidays=[date(2025, 1, 8)])
    assert dates == [date(2025, 1, 6), date(2025, 1, 10)]
    assert count_scheduled_meals(date(2025, 1, 6), date(2025, 1, 12), [5, 6]) == 2


def test_delivery_window_is_converted_to_utc():
    assert delivery_datetime(date(2025, 1, 7), time(12, 30), 'Asia/Kolkata') == datetime(2025, 1, 7, 7, 0)
    assert delivery_datetime(date(2025, 1, 7), None, 'Asia/Kolkata') == datetime(2025, 1, 6, 18, 30)


def test_local_date_crosses_midnight():
    assert local_date(datetime(2025, 1, 6, 19, 0), 'Asia/Kolkata') == date(2025, 1, 7)
    assert local_date(datetime(2025, 1, 6, 19, 0), 'UTC') == date(2025, 1, 6)


def test_unit_price_adds_fee_and_commission():
    assert unit_price(150, 20, 0.1) == 185.0
    assert unit_price(99.99, 0, 0.05) == 104.99


def _quote():
    lunch = QuoteLine('lunch', [date(2025, 1, 7), date(2025, 1, 8)], 150, 20, 15, 185)
    dinner = QuoteLine('dinner', [date(2025, 1, 7), date(2025, 1, 8)], 120, 20, 12, 152)
    return Quote(start=date(2025, 1, 7), end=date(2025, 1, 9), lines=[lunch, dinner])


def test_quote_totals():
    quote = _quote()
    assert quote.meals == 4
    assert quote.subtotal_vendor_base == 540.0
    assert quote.delivery_fee_total == 80.0
    assert quote.commission_total == 54.0
    assert quote.total == 674.0


def test_cap_meals_keeps_earliest_in_slot_order():
    quote = cap_meals(_quote(), 3)
    assert quote.lines[0].dates == [date(2025, 1, 7), date(2025, 1, 8)]
    assert quote.lines[1].dates == [date(2025, 1, 7)]


def test_per_meal_trial_discount():
    trial = TrialType(pricing_mode='per_meal', discount_pct=0.25)
    quote = apply_trial_pricing(_quote(), trial)
    assert quote.total == 505.5
    assert quote.unit_price_for('lunch') == 138.75


def test_fixed_trial_price():
    trial = TrialType(pricing_mode='fixed', fixed_price=299)
    quote = apply_trial_pricing(_quote(), trial)
    assert quote.total == 299.0
    assert quote.discount_total == 375.0
