from __future__ import annotations

import calendar
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

CENT = Decimal("0.01")
ZERO = Decimal("0")


class TripLike(Protocol):
    miles_calculated: Any
    lodging_cost: Any
    meals_cost: Any
    other_expenses: Any


@dataclass(frozen=True)
class VoucherTotals:
    trip_count: int
    total_miles: Decimal
    total_lodging: Decimal
    total_meals: Decimal
    total_other: Decimal
    mileage_rate: Decimal
    mileage_amount: Decimal
    total_amount: Decimal


def as_decimal(value: Any) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() keeps float inputs from leaking binary noise into the sums
    return Decimal(str(value))


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def recompute_totals(trips: Iterable[TripLike], mileage_rate: Decimal | float | str) -> VoucherTotals:
    """Sum a voucher's linked trips.

    Depends only on the trips' mileage and expense fields and on the rate, so
    calling it twice over unchanged inputs gives identical results.
    """
    rate = as_decimal(mileage_rate)
    count = 0
    miles = ZERO
    lodging = ZERO
    meals = ZERO
    other = ZERO
    for trip in trips:
        count += 1
        miles += as_decimal(trip.miles_calculated)
        lodging += as_decimal(trip.lodging_cost)
        meals += as_decimal(trip.meals_cost)
        other += as_decimal(trip.other_expenses)

    mileage_amount = to_cents(rate * miles)
    total_amount = to_cents(rate * miles + lodging + meals + other)
    return VoucherTotals(
        trip_count=count,
        total_miles=to_cents(miles),
        total_lodging=to_cents(lodging),
        total_meals=to_cents(meals),
        total_other=to_cents(other),
        mileage_rate=rate,
        mileage_amount=mileage_amount,
        total_amount=total_amount,
    )


def period_range(month: int, year: int) -> tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def period_of(day: date) -> tuple[int, int]:
    return day.month, day.year
