from decimal import Decimal, ROUND_HALF_UP

from django.conf import settings
from django.db.models import Sum

ZERO = Decimal('0.00')


def to_decimal(value) -> Decimal:
    return Decimal(str(value or '0'))


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def sum_amount(queryset, field_name='amount') -> Decimal:
    value = queryset.aggregate(total=Sum(field_name)).get('total')
    return quantize(value)


def liquidation_epsilon() -> Decimal:
    return to_decimal(getattr(settings, 'LIQUIDATION_EPSILON', '0.01'))
