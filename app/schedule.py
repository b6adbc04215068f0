"""Installment schedule arithmetic.

Amounts are whole rupees. The rounding remainder is never split: an overflow
goes to the last period and a shortfall is taken from the first one, so the
periods always add up to the locked total. Order validation in ``app.orders``
uses the same functions, so client and server agree on every period amount.
"""

import calendar
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, List, Union


def round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def final_amount(original_fee, discount_percentage) -> int:
    original = Decimal(str(original_fee or 0))
    discount = Decimal(str(discount_percentage or 0))
    return round_half_up(original - original * discount / Decimal(100))


def schedule(final: int, period_count: int) -> List[int]:
    if period_count < 1:
        raise ValueError("period_count must be at least 1")
    final = int(final)
    base = round_half_up(Decimal(final) / Decimal(period_count))
    remainder = final - base * period_count
    amounts = [base] * period_count
    if remainder > 0:
        amounts[-1] += remainder
    elif remainder < 0:
        amounts[0] += remainder
    return amounts


def period_amount(final: int, period_count: int, period_index: int) -> int:
    """Amount due for a 1-based period index."""
    if not 1 <= period_index <= period_count:
        raise ValueError(f"period_index {period_index} outside 1..{period_count}")
    return schedule(final, period_count)[period_index - 1]


def next_period(paid_periods: Iterable[int]) -> int:
    paid = [p for p in paid_periods if p]
    return max(paid) + 1 if paid else 1


def add_months(start: Union[date, datetime], months: int):
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def due_date(start: Union[date, datetime], period_index: int, period_count: int):
    """Due date of the period after ``period_index``, or None after the last one."""
    if period_index >= period_count:
        return None
    return add_months(start, 1)
