"""
Disbursement workflow.

Cash moves finance -> caseworker -> beneficiary. Only the beneficiary's
confirmation takes money out of the fund ledger; earlier hops check that the
facility could cover the amount.
"""
from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.facilities.services import staff_ids_for_role
from apps.core.notifications.services import has_notification
from apps.core.users.authorization import conflict, deny, is_assigned_caseworker, is_facility_finance
from apps.core.users.models import User
from apps.core.utils.effects import (
    PRIORITY_HIGH,
    PRIORITY_MEDIUM,
    RISK_CRITICAL,
    RISK_HIGH,
    RISK_MEDIUM,
    TransitionResult,
    audit_effect,
    notify_effect,
    transition,
)
from apps.core.utils.exceptions import InsufficientFundsError
from apps.core.utils.money import quantize
from apps.finance.aid_requests import cola
from apps.finance.aid_requests.models import AidRequest
from apps.finance.funds.services import available_with_fallback, deduct

from .models import Disbursement

logger = logging.getLogger(__name__)

SEMESTER_NOTIFICATION = 'cola_semester_utilized'


def _payload(disbursement, **extra):
    payload = {
        'disbursement_id': disbursement.pk,
        'aid_request_id': disbursement.aid_request_id,
        'amount': str(disbursement.amount),
        'fund_type': disbursement.aid_request.fund_type,
        'status': disbursement.status,
    }
    payload.update(extra)
    return payload


def _locked(disbursement):
    return (
        Disbursement.objects.select_for_update()
        .select_related('aid_request', 'aid_request__beneficiary', 'facility')
        .get(pk=disbursement.pk)
    )


def _expect_status(disbursement, actor, expected, message):
    if disbursement.status not in expected:
        raise conflict(
            actor,
            message,
            event_type='disbursement_invalid_status_attempt',
            entity=disbursement,
            payload={'disbursement_id': disbursement.pk, 'current_status': disbursement.status},
        )


def _ensure_caseworker(disbursement, actor):
    if not is_assigned_caseworker(actor, disbursement.beneficiary):
        raise deny(
            actor,
            'You are not the caseworker assigned to this beneficiary.',
            event_type='disbursement_unauthorized_attempt',
            entity=disbursement,
            payload={'disbursement_id': disbursement.pk},
        )


@transition
def finance_disburse(*, aid_request, actor, amount=None, notes=''):
    aid_request = (
        AidRequest.objects.select_for_update()
        .select_related('beneficiary', 'facility')
        .get(pk=aid_request.pk)
    )
    if not is_facility_finance(actor, aid_request.beneficiary):
        raise deny(
            actor,
            'This request does not belong to your facility.',
            event_type='disbursement_unauthorized_attempt',
            entity=aid_request,
            payload={'aid_request_id': aid_request.pk},
        )
    if aid_request.state != AidRequest.STATE_APPROVED:
        raise conflict(
            actor,
            'This request is not ready for disbursement.',
            event_type='disbursement_invalid_status_attempt',
            entity=aid_request,
            payload={'aid_request_id': aid_request.pk, 'current_state': aid_request.state},
        )
    if Disbursement.objects.filter(aid_request=aid_request).exists():
        raise conflict(
            actor,
            'This request has already been disbursed.',
            event_type='disbursement_duplicate_attempt',
            entity=aid_request,
            payload={'aid_request_id': aid_request.pk},
            risk_level=RISK_CRITICAL,
        )

    amount = quantize(aid_request.amount if amount in (None, '') else amount)
    if amount <= 0:
        raise ValidationError({'amount': 'Disbursement amount must be greater than zero.'})

    available = available_with_fallback(facility=aid_request.facility, fund_type=aid_request.fund_type)
    if available < amount:
        raise InsufficientFundsError(
            'Insufficient funds to complete this disbursement at this time.',
            requested=amount,
            available=available,
        )

    now = timezone.now()
    try:
        with transaction.atomic():
            disbursement = Disbursement.objects.create(
                aid_request=aid_request,
                facility=aid_request.facility,
                amount=amount,
                notes=notes or '',
                finance_disbursed_by=actor,
                finance_disbursed_at=now,
            )
    except IntegrityError as exc:
        raise conflict(
            actor,
            'This request has already been disbursed.',
            event_type='disbursement_duplicate_attempt',
            entity=aid_request,
            payload={'aid_request_id': aid_request.pk},
            risk_level=RISK_CRITICAL,
        ) from exc

    logger.info('Disbursement %s created for aid request %s.', disbursement.pk, aid_request.pk)
    beneficiary = aid_request.beneficiary
    payload = _payload(disbursement, beneficiary_id=beneficiary.pk)
    effects = [
        audit_effect(
            'disbursement_finance_disbursed',
            'Finance released funds to the caseworker.',
            entity=disbursement,
            actor=actor,
            payload=payload,
            risk_level=RISK_MEDIUM,
        ),
        notify_effect(
            [beneficiary.caseworker_id],
            'disbursement_finance_disbursed',
            'Funds ready for pickup',
            f'Finance released {amount} for {beneficiary.full_name}.',
            payload=payload,
            priority=PRIORITY_MEDIUM,
        ),
    ]
    return TransitionResult(disbursement, effects)


@transition
def caseworker_receive(*, disbursement, actor):
    disbursement = _locked(disbursement)
    _ensure_caseworker(disbursement, actor)
    _expect_status(
        disbursement,
        actor,
        {Disbursement.STATUS_FINANCE_DISBURSED},
        'This disbursement is not waiting for caseworker receipt.',
    )

    disbursement.status = Disbursement.STATUS_CASEWORKER_RECEIVED
    disbursement.caseworker_received_by = actor
    disbursement.caseworker_received_at = timezone.now()
    disbursement.save(update_fields=['status', 'caseworker_received_by', 'caseworker_received_at', 'updated_at'])

    payload = _payload(disbursement)
    return TransitionResult(
        disbursement,
        [
            audit_effect(
                'disbursement_caseworker_received',
                'Caseworker acknowledged receipt of funds.',
                entity=disbursement,
                actor=actor,
                payload=payload,
            ),
            notify_effect(
                staff_ids_for_role(disbursement.facility, User.ROLE_FINANCE),
                'disbursement_caseworker_received',
                'Caseworker received funds',
                f'{actor.full_name} received {disbursement.amount}.',
                payload=payload,
            ),
        ],
    )


@transition
def caseworker_disburse(*, disbursement, actor):
    disbursement = _locked(disbursement)
    _ensure_caseworker(disbursement, actor)
    _expect_status(
        disbursement,
        actor,
        {Disbursement.STATUS_FINANCE_DISBURSED, Disbursement.STATUS_CASEWORKER_RECEIVED},
        'This disbursement cannot be handed to the beneficiary now.',
    )

    now = timezone.now()
    update_fields = ['status', 'caseworker_disbursed_by', 'caseworker_disbursed_at', 'updated_at']
    if disbursement.caseworker_received_at is None:
        disbursement.caseworker_received_by = actor
        disbursement.caseworker_received_at = now
        update_fields += ['caseworker_received_by', 'caseworker_received_at']
    disbursement.status = Disbursement.STATUS_CASEWORKER_DISBURSED
    disbursement.caseworker_disbursed_by = actor
    disbursement.caseworker_disbursed_at = now
    disbursement.save(update_fields=update_fields)

    payload = _payload(disbursement)
    return TransitionResult(
        disbursement,
        [
            audit_effect(
                'disbursement_caseworker_disbursed',
                'Caseworker handed funds to the beneficiary.',
                entity=disbursement,
                actor=actor,
                payload=payload,
            ),
            notify_effect(
                [disbursement.aid_request.beneficiary_id],
                'disbursement_caseworker_disbursed',
                'Please confirm receipt',
                f'Your caseworker handed you {disbursement.amount}. Confirm once you have received it.',
                payload=payload,
                priority=PRIORITY_HIGH,
            ),
        ],
    )


def received_cola_count(beneficiary, window):
    """Count fully received COLA disbursements whose period lies in ``window``."""
    received = Disbursement.objects.filter(
        aid_request__beneficiary=beneficiary,
        aid_request__fund_type=AidRequest.FUND_COLA,
        status=Disbursement.STATUS_BENEFICIARY_RECEIVED,
    ).values_list('aid_request__month', 'aid_request__year')
    return sum(1 for period in received if period in window)


def _semester_effect(disbursement):
    beneficiary = disbursement.beneficiary
    window = cola.window_for(beneficiary)
    if not window or received_cola_count(beneficiary, window) < len(window):
        return None
    if has_notification(recipient=beneficiary, type=SEMESTER_NOTIFICATION):
        return None
    return notify_effect(
        [beneficiary.pk],
        SEMESTER_NOTIFICATION,
        'COLA semester complete',
        'You have received COLA for every month of your enrollment window.',
        payload={'months': [{'month': month, 'year': year} for month, year in window]},
    )


@transition
def beneficiary_confirm_receipt(*, disbursement, actor):
    disbursement = _locked(disbursement)
    if actor is None or actor.pk != disbursement.aid_request.beneficiary_id:
        raise deny(
            actor,
            'Only the beneficiary can confirm receipt of this disbursement.',
            event_type='disbursement_unauthorized_attempt',
            entity=disbursement,
            payload={'disbursement_id': disbursement.pk},
        )
    _expect_status(
        disbursement,
        actor,
        {Disbursement.STATUS_CASEWORKER_DISBURSED},
        'This disbursement is not waiting for your confirmation.',
    )

    deltas = deduct(
        facility=disbursement.facility,
        fund_type=disbursement.aid_request.fund_type,
        amount=disbursement.amount,
    )

    disbursement.status = Disbursement.STATUS_BENEFICIARY_RECEIVED
    disbursement.beneficiary_received_by = actor
    disbursement.beneficiary_received_at = timezone.now()
    update_fields = ['status', 'beneficiary_received_by', 'beneficiary_received_at', 'updated_at']
    update_fields += disbursement.start_liquidation_tracking()
    disbursement.save(update_fields=update_fields)
    logger.info('Disbursement %s received; %s allocation(s) charged.', disbursement.pk, len(deltas))

    payload = _payload(
        disbursement,
        deductions=[
            {
                'allocation_id': delta['allocation_id'],
                'fund_type': delta['fund_type'],
                'amount': str(delta['amount']),
                'remaining_amount': str(delta['remaining_amount']),
            }
            for delta in deltas
        ],
    )
    effects = [
        audit_effect(
            'disbursement_beneficiary_received',
            'Beneficiary confirmed receipt; fund allocations charged.',
            entity=disbursement,
            actor=actor,
            payload=payload,
            risk_level=RISK_HIGH,
        ),
        notify_effect(
            [disbursement.beneficiary.caseworker_id] + staff_ids_for_role(disbursement.facility, User.ROLE_FINANCE),
            'disbursement_beneficiary_received',
            'Beneficiary confirmed receipt',
            f'{actor.full_name} confirmed receiving {disbursement.amount}.',
            payload=payload,
        ),
    ]
    if disbursement.aid_request.is_cola:
        semester = _semester_effect(disbursement)
        if semester is not None:
            effects.append(semester)
    return TransitionResult(disbursement, effects)
