"""
Fund allocation ledger.

Money leaves the ledger only through ``deduct``. Candidate pools are ordered
by an explicit policy: allocations of the requested fund type first, then the
facility's general pool, each group largest-remaining first. A deduction that
the combined pools cannot cover fails before any allocation is touched.
"""
from __future__ import annotations

import logging
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError

from apps.core.users.authorization import deny
from apps.core.utils.effects import RISK_MEDIUM, TransitionResult, audit_effect, transition
from apps.core.utils.exceptions import InsufficientFundsError
from apps.core.utils.money import ZERO, quantize, sum_amount

from .models import FundAllocation

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ('fund_type', 'sponsor_name', 'description', 'allocated_amount', 'utilized_amount', 'is_active')
_VALID_TYPES = {choice for choice, _ in FundAllocation.TYPE_CHOICES}


def _general_fund_type():
    return getattr(settings, 'GENERAL_FUND_TYPE', FundAllocation.TYPE_GENERAL)


def _ensure_manager(actor, facility, *, event_type, entity=None):
    allowed = (
        actor is not None
        and actor.role == 'finance'
        and actor.facility_id == facility.id
    )
    if not allowed:
        raise deny(
            actor,
            'Only finance officers of this facility can manage fund allocations.',
            event_type=event_type,
            entity=entity,
            payload={'facility_id': facility.id},
        )


def _validate_fund_type(fund_type):
    if fund_type not in _VALID_TYPES:
        raise ValidationError({'fund_type': f'Invalid fund type: {fund_type}.'})


def _allocation_snapshot(allocation):
    return {
        'allocation_id': allocation.pk,
        'fund_type': allocation.fund_type,
        'sponsor_name': allocation.sponsor_name,
        'allocated_amount': str(allocation.allocated_amount),
        'utilized_amount': str(allocation.utilized_amount),
        'remaining_amount': str(allocation.remaining_amount),
        'is_active': allocation.is_active,
    }


@transition
def create_fund_allocation(*, facility, fund_type, sponsor_name, allocated_amount, created_by, description=''):
    _ensure_manager(created_by, facility, event_type='fund_allocation_unauthorized_attempt')
    _validate_fund_type(fund_type)

    allocation = FundAllocation(
        facility=facility,
        fund_type=fund_type,
        sponsor_name=sponsor_name,
        description=description,
        allocated_amount=quantize(allocated_amount),
        utilized_amount=ZERO,
        created_by=created_by,
    )
    allocation.full_clean()
    allocation.save()

    return TransitionResult(
        allocation,
        [
            audit_effect(
                'fund_allocation_created',
                f'Fund allocation created for {sponsor_name}.',
                entity=allocation,
                actor=created_by,
                payload=_allocation_snapshot(allocation),
                risk_level=RISK_MEDIUM,
            )
        ],
    )


@transition
def update_fund_allocation(*, allocation, updated_by, **changes):
    unknown = set(changes) - set(_EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unsupported fund allocation fields: {', '.join(sorted(unknown))}.")

    allocation = FundAllocation.objects.select_for_update().select_related('facility').get(pk=allocation.pk)
    _ensure_manager(updated_by, allocation.facility, event_type='fund_allocation_unauthorized_attempt', entity=allocation)

    before = _allocation_snapshot(allocation)
    if 'fund_type' in changes:
        _validate_fund_type(changes['fund_type'])
    for field, value in changes.items():
        if field in {'allocated_amount', 'utilized_amount'}:
            value = quantize(value)
        setattr(allocation, field, value)

    allocation.full_clean()
    allocation.save()
    if allocation.is_over_utilized:
        logger.warning('Fund allocation %s is over-utilized after update.', allocation.pk)

    return TransitionResult(
        allocation,
        [
            audit_effect(
                'fund_allocation_updated',
                'Fund allocation updated.',
                entity=allocation,
                actor=updated_by,
                payload={'before': before, 'after': _allocation_snapshot(allocation)},
                risk_level=RISK_MEDIUM,
            )
        ],
    )


@transition
def archive_fund_allocation(*, allocation, archived_by):
    allocation = FundAllocation.objects.select_for_update().select_related('facility').get(pk=allocation.pk)
    _ensure_manager(archived_by, allocation.facility, event_type='fund_allocation_unauthorized_attempt', entity=allocation)

    allocation.is_active = False
    allocation.save(update_fields=['is_active', 'updated_at'])
    return TransitionResult(
        allocation,
        [
            audit_effect(
                'fund_allocation_archived',
                'Fund allocation archived.',
                entity=allocation,
                actor=archived_by,
                payload=_allocation_snapshot(allocation),
                risk_level=RISK_MEDIUM,
            )
        ],
    )


def _active_pools(facility, fund_type):
    return FundAllocation.objects.for_facility(facility).filter(fund_type=fund_type, is_active=True)


def available_for_type(*, facility, fund_type) -> Decimal:
    return sum_amount(_active_pools(facility, fund_type), 'remaining_amount')


def available_with_fallback(*, facility, fund_type) -> Decimal:
    total = available_for_type(facility=facility, fund_type=fund_type)
    general = _general_fund_type()
    if fund_type != general:
        total += available_for_type(facility=facility, fund_type=general)
    return quantize(total)


def candidate_pools(*, facility, fund_type, lock=False):
    """Return active allocations in deduction order: exact type, then general."""
    types = [fund_type]
    general = _general_fund_type()
    if fund_type != general:
        types.append(general)

    queryset = FundAllocation.objects.for_facility(facility).filter(fund_type__in=types, is_active=True)
    if lock:
        # Lock in primary-key order; deduction order is applied in Python.
        queryset = queryset.select_for_update().order_by('pk')
    pools = list(queryset)
    return sorted(
        pools,
        key=lambda pool: (types.index(pool.fund_type), -pool.remaining_amount, pool.pk),
    )


def plan_deduction(pools, amount):
    """Split ``amount`` across ordered ``pools``.

    Returns ``[(allocation, take), ...]``. Raises ``InsufficientFundsError``
    when the pools together hold less than ``amount``; nothing is mutated.
    """
    amount = quantize(amount)
    if amount <= 0:
        raise ValidationError({'amount': 'Deduction amount must be greater than zero.'})

    available = quantize(sum((pool.remaining_amount for pool in pools), ZERO))
    if available < amount:
        raise InsufficientFundsError(
            'Insufficient funds to complete this disbursement at this time.',
            requested=amount,
            available=available,
        )

    plan = []
    outstanding = amount
    for pool in pools:
        if outstanding <= 0:
            break
        take = min(pool.remaining_amount, outstanding)
        if take > 0:
            plan.append((pool, take))
            outstanding -= take
    return plan


def deduct(*, facility, fund_type, amount):
    """Consume ``amount`` from the facility's pools.

    Must run inside the caller's transaction so the allocation writes commit
    together with the state change that triggered them.
    """
    pools = candidate_pools(facility=facility, fund_type=fund_type, lock=True)
    plan = plan_deduction(pools, amount)

    deltas = []
    for allocation, take in plan:
        allocation.utilized_amount = quantize(allocation.utilized_amount + take)
        allocation.save(update_fields=['utilized_amount', 'updated_at'])
        deltas.append(
            {
                'allocation_id': allocation.pk,
                'fund_type': allocation.fund_type,
                'amount': take,
                'remaining_amount': allocation.remaining_amount,
            }
        )
    return deltas


def facility_fund_summary(*, facility, include_inactive=False):
    allocations = FundAllocation.objects.for_facility(facility)
    if not include_inactive:
        allocations = allocations.filter(is_active=True)

    by_type = {}
    for fund_type, _ in FundAllocation.TYPE_CHOICES:
        rows = allocations.filter(fund_type=fund_type)
        by_type[fund_type] = {
            'allocated': sum_amount(rows, 'allocated_amount'),
            'utilized': sum_amount(rows, 'utilized_amount'),
            'remaining': sum_amount(rows, 'remaining_amount'),
        }

    return {
        'total_allocated': sum_amount(allocations, 'allocated_amount'),
        'total_utilized': sum_amount(allocations, 'utilized_amount'),
        'total_remaining': sum_amount(allocations, 'remaining_amount'),
        'by_type': by_type,
        'over_utilized_ids': [allocation.pk for allocation in allocations if allocation.is_over_utilized],
    }
