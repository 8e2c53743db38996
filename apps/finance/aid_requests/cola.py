"""
COLA (cash allowance) computation.

The monthly allowance is a fixed base that depends on scholar status, minus a
fixed deduction for every Sunday the beneficiary was marked absent. The result
is never negative. Requests are only accepted for the enrollment month and
the months that follow it, ``COLA_WINDOW_MONTHS`` in total.
"""
from decimal import Decimal

from django.conf import settings

from apps.core.attendance.services import sunday_absence_count
from apps.core.enrollment.services import latest_approved_enrollment
from apps.core.utils.money import ZERO, quantize, to_decimal
from apps.core.utils.periods import add_months


def _scholar_base() -> Decimal:
    return quantize(getattr(settings, 'COLA_SCHOLAR_BASE_AMOUNT', '2000.00'))


def _non_scholar_base() -> Decimal:
    return quantize(getattr(settings, 'COLA_NON_SCHOLAR_BASE_AMOUNT', '1500.00'))


def _sunday_rate() -> Decimal:
    return quantize(getattr(settings, 'COLA_SUNDAY_ABSENCE_DEDUCTION', '300.00'))


def _window_months() -> int:
    return int(getattr(settings, 'COLA_WINDOW_MONTHS', 5))


def base_amount(is_scholar) -> Decimal:
    return _scholar_base() if is_scholar else _non_scholar_base()


def deduction(*, beneficiary, year, month) -> Decimal:
    absences = sunday_absence_count(beneficiary=beneficiary, year=year, month=month)
    return quantize(to_decimal(absences) * _sunday_rate())


def final_amount(*, beneficiary, year, month, is_scholar) -> Decimal:
    return max(ZERO, base_amount(is_scholar) - deduction(beneficiary=beneficiary, year=year, month=month))


def allowed_window(enrollment_date):
    """Return ``[(month, year), ...]`` starting at the enrollment month."""
    window = []
    for offset in range(_window_months()):
        year, month = add_months(enrollment_date.year, enrollment_date.month, offset)
        window.append((month, year))
    return window


def window_for(beneficiary):
    enrollment = latest_approved_enrollment(beneficiary)
    if enrollment is None:
        return []
    return allowed_window(enrollment.enrollment_date)


def in_window(window, *, year, month):
    return (month, year) in window


def cola_breakdown(*, beneficiary, year, month, is_scholar, enrollment_date=None):
    absences = sunday_absence_count(beneficiary=beneficiary, year=year, month=month)
    base = base_amount(is_scholar)
    deducted = quantize(to_decimal(absences) * _sunday_rate())
    final = max(ZERO, base - deducted)
    window = allowed_window(enrollment_date) if enrollment_date else []
    return {
        'base_amount': base,
        'deduction_amount': deducted,
        'sunday_absences': absences,
        'final_amount': final,
        'is_scholar': bool(is_scholar),
        'period': {'month': month, 'year': year},
        'allowed_months': [{'month': m, 'year': y} for m, y in window],
        'in_window': in_window(window, year=year, month=month),
        'can_request': final > 0 and in_window(window, year=year, month=month),
    }
