"""
Liquidation workflow.

A beneficiary accounts for received cash with receipts, then the liquidation
goes through caseworker, finance and director approval. Only approved
liquidations count toward the disbursement's liquidated balance.
"""
from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_date

from apps.core.facilities.services import staff_ids_for_role
from apps.core.users.authorization import (
    conflict,
    deny,
    is_assigned_caseworker,
    is_facility_director,
    is_facility_finance,
)
from apps.core.users.models import User
from apps.core.utils.effects import (
    PRIORITY_HIGH,
    PRIORITY_MEDIUM,
    RISK_HIGH,
    RISK_MEDIUM,
    TransitionResult,
    audit_effect,
    notify_effect,
    transition,
)
from apps.core.utils.exceptions import BusinessRuleError
from apps.core.utils.money import ZERO, liquidation_epsilon, quantize, sum_amount
from apps.core.utils.periods import month_bounds
from apps.finance.disbursements.models import Disbursement

from .models import Liquidation, LiquidationReceipt

logger = logging.getLogger(__name__)

APPROVAL_TRANSITIONS = {
    Liquidation.LEVEL_CASEWORKER: Liquidation.STATUS_PENDING_FINANCE,
    Liquidation.LEVEL_FINANCE: Liquidation.STATUS_PENDING_DIRECTOR,
    Liquidation.LEVEL_DIRECTOR: Liquidation.STATUS_APPROVED,
}

_REVIEWERS = {
    Liquidation.LEVEL_CASEWORKER: (is_assigned_caseworker, 'You are not assigned to this beneficiary.'),
    Liquidation.LEVEL_FINANCE: (is_facility_finance, 'This liquidation does not belong to your facility.'),
    Liquidation.LEVEL_DIRECTOR: (is_facility_director, 'You do not own the facility this liquidation belongs to.'),
}


def _payload(liquidation, **extra):
    payload = {
        'liquidation_id': liquidation.pk,
        'disbursement_id': liquidation.disbursement_id,
        'status': liquidation.status,
        'total_disbursed_amount': str(liquidation.total_disbursed_amount),
        'total_receipt_amount': str(liquidation.total_receipt_amount),
        'remaining_amount': str(liquidation.remaining_amount),
    }
    payload.update(extra)
    return payload


def _locked(liquidation):
    return (
        Liquidation.objects.select_for_update()
        .select_related('disbursement', 'disbursement__aid_request', 'disbursement__aid_request__beneficiary', 'facility')
        .get(pk=liquidation.pk)
    )


def _ensure_owner(actor, disbursement, *, entity):
    if actor is None or actor.pk != disbursement.aid_request.beneficiary_id:
        raise deny(
            actor,
            'Only the beneficiary who received these funds can liquidate them.',
            event_type='liquidation_unauthorized_attempt',
            entity=entity,
            payload={'disbursement_id': disbursement.pk},
        )


def receipt_window(disbursement):
    """Return the ``(start, end)`` dates receipts must fall within."""
    aid_request = disbursement.aid_request
    if aid_request.period:
        year, month = aid_request.period
    else:
        received = timezone.localtime(disbursement.beneficiary_received_at).date()
        year, month = received.year, received.month
    return month_bounds(year, month)


def _clean_receipts(disbursement, receipts):
    if not receipts:
        raise ValidationError({'receipts': 'At least one receipt is required.'})

    start, end = receipt_window(disbursement)
    cleaned = []
    for index, receipt in enumerate(receipts, start=1):
        amount = quantize(receipt.get('amount'))
        if amount <= 0:
            raise ValidationError({'amount': f'Receipt {index}: amount must be greater than zero.'})
        receipt_date = receipt.get('receipt_date')
        if isinstance(receipt_date, str):
            receipt_date = parse_date(receipt_date)
        if receipt_date is None:
            raise ValidationError({'receipt_date': f'Receipt {index}: a valid date is required.'})
        if not start <= receipt_date <= end:
            raise BusinessRuleError(
                f'Receipt {index}: date {receipt_date} is outside the funding period '
                f'({start} to {end}).'
            )
        if not receipt.get('file_reference'):
            raise ValidationError({'file_reference': f'Receipt {index}: a receipt file is required.'})
        cleaned.append(
            {
                'amount': amount,
                'receipt_date': receipt_date,
                'receipt_number': receipt.get('receipt_number') or '',
                'description': receipt.get('description') or '',
                'file_reference': receipt['file_reference'],
            }
        )
    return cleaned


def _store_receipts(liquidation, receipts, uploaded_by):
    LiquidationReceipt.objects.bulk_create(
        [LiquidationReceipt(liquidation=liquidation, uploaded_by=uploaded_by, **receipt) for receipt in receipts]
    )
    update_fields = liquidation.recalculate_totals()
    liquidation.save(update_fields=update_fields + ['updated_at'])


@transition
def start_liquidation(*, disbursement, actor, receipts):
    disbursement = (
        Disbursement.objects.select_for_update()
        .select_related('aid_request', 'aid_request__beneficiary', 'facility')
        .get(pk=disbursement.pk)
    )
    _ensure_owner(actor, disbursement, entity=disbursement)
    if not disbursement.is_received:
        raise conflict(
            actor,
            'Funds must be received before they can be liquidated.',
            event_type='liquidation_invalid_status_attempt',
            entity=disbursement,
            payload={'disbursement_id': disbursement.pk, 'current_status': disbursement.status},
        )
    if disbursement.fully_liquidated or (disbursement.remaining_to_liquidate or ZERO) <= liquidation_epsilon():
        raise BusinessRuleError('This disbursement has already been fully liquidated.')

    cleaned = _clean_receipts(disbursement, receipts)
    liquidation = Liquidation.objects.create(
        disbursement=disbursement,
        facility=disbursement.facility,
        total_disbursed_amount=disbursement.remaining_to_liquidate,
        remaining_amount=disbursement.remaining_to_liquidate,
    )
    _store_receipts(liquidation, cleaned, actor)
    logger.info('Liquidation %s started for disbursement %s.', liquidation.pk, disbursement.pk)

    return TransitionResult(
        liquidation,
        [
            audit_effect(
                'liquidation_started',
                'Beneficiary uploaded liquidation receipts.',
                entity=liquidation,
                actor=actor,
                payload=_payload(liquidation, receipt_count=len(cleaned)),
            )
        ],
    )


@transition
def attach_receipts(*, liquidation, actor, receipts):
    liquidation = _locked(liquidation)
    _ensure_owner(actor, liquidation.disbursement, entity=liquidation)
    if not liquidation.can_add_more_receipts:
        raise conflict(
            actor,
            'Receipts can no longer be added to this liquidation.',
            event_type='liquidation_invalid_status_attempt',
            entity=liquidation,
            payload={'liquidation_id': liquidation.pk, 'current_status': liquidation.status},
        )

    cleaned = _clean_receipts(liquidation.disbursement, receipts)
    _store_receipts(liquidation, cleaned, actor)
    return TransitionResult(
        liquidation,
        [
            audit_effect(
                'liquidation_receipts_added',
                'Beneficiary added liquidation receipts.',
                entity=liquidation,
                actor=actor,
                payload=_payload(liquidation, receipt_count=len(cleaned)),
            )
        ],
    )


@transition
def submit_liquidation(*, liquidation, actor):
    liquidation = _locked(liquidation)
    _ensure_owner(actor, liquidation.disbursement, entity=liquidation)
    if liquidation.status == Liquidation.STATUS_IN_PROGRESS:
        raise BusinessRuleError(
            f'Receipts must cover the full amount before submitting. Remaining: {liquidation.remaining_amount}.'
        )
    if liquidation.status != Liquidation.STATUS_COMPLETE:
        raise conflict(
            actor,
            'This liquidation has already been submitted.',
            event_type='liquidation_invalid_status_attempt',
            entity=liquidation,
            payload={'liquidation_id': liquidation.pk, 'current_status': liquidation.status},
        )

    liquidation.status = Liquidation.STATUS_PENDING_CASEWORKER
    liquidation.submitted_at = timezone.now()
    liquidation.save(update_fields=['status', 'submitted_at', 'updated_at'])

    payload = _payload(liquidation)
    return TransitionResult(
        liquidation,
        [
            audit_effect(
                'liquidation_submitted',
                'Beneficiary submitted a liquidation for approval.',
                entity=liquidation,
                actor=actor,
                payload=payload,
            ),
            notify_effect(
                [actor.caseworker_id],
                'liquidation_submitted',
                'Liquidation awaiting review',
                f'{actor.full_name} submitted receipts totalling {liquidation.total_receipt_amount}.',
                payload=payload,
                priority=PRIORITY_MEDIUM,
            ),
        ],
    )


@transaction.atomic
def recompute_disbursement_liquidation(disbursement):
    """Rebuild liquidation totals on ``disbursement`` from its approved liquidations."""
    disbursement = Disbursement.objects.select_for_update().get(pk=disbursement.pk)
    if not disbursement.is_received:
        return disbursement
    approved_total = sum_amount(
        disbursement.liquidations.filter(status=Liquidation.STATUS_APPROVED),
        'total_receipt_amount',
    )
    update_fields = disbursement.apply_liquidated_total(approved_total)
    disbursement.save(update_fields=update_fields + ['updated_at'])
    return disbursement


def _review_effects(liquidation, level, actor, approved, note):
    payload = _payload(liquidation, level=level, decision='approved' if approved else 'rejected', notes=note)
    effects = [
        audit_effect(
            f'liquidation_{level}_review',
            f"{level.title()} {'approved' if approved else 'rejected'} liquidation.",
            entity=liquidation,
            actor=actor,
            payload=payload,
            risk_level=RISK_MEDIUM if approved else RISK_HIGH,
        )
    ]
    beneficiary_id = liquidation.disbursement.aid_request.beneficiary_id
    if not approved:
        effects.append(
            notify_effect(
                [beneficiary_id],
                'liquidation_rejected',
                'Liquidation rejected',
                f'Your liquidation was rejected at the {level} stage. Reason: {note}',
                payload=payload,
                priority=PRIORITY_HIGH,
            )
        )
    elif level == Liquidation.LEVEL_CASEWORKER:
        effects.append(
            notify_effect(
                staff_ids_for_role(liquidation.facility, User.ROLE_FINANCE),
                'liquidation_pending_finance',
                'Liquidation awaiting finance approval',
                f'A liquidation of {liquidation.total_receipt_amount} is ready for finance review.',
                payload=payload,
            )
        )
    elif level == Liquidation.LEVEL_FINANCE:
        effects.append(
            notify_effect(
                [liquidation.facility.director_id],
                'liquidation_pending_director',
                'Liquidation awaiting your approval',
                f'A liquidation of {liquidation.total_receipt_amount} is ready for director review.',
                payload=payload,
            )
        )
    else:
        effects.append(
            notify_effect(
                [beneficiary_id],
                'liquidation_approved',
                'Liquidation approved',
                'Your liquidation has been approved.',
                payload=payload,
                priority=PRIORITY_HIGH,
            )
        )
    return effects


@transition
def review_liquidation(*, liquidation, actor, level, approve, notes='', reason=''):
    if level not in Liquidation.LEVELS:
        raise ValidationError({'level': f'Unknown review level: {level}.'})
    if not approve and not (reason or '').strip():
        raise ValidationError({'reason': 'A rejection reason is required.'})

    liquidation = _locked(liquidation)
    check, message = _REVIEWERS[level]
    if not check(actor, liquidation.beneficiary):
        raise deny(
            actor,
            message,
            event_type=f'liquidation_{level}_unauthorized_attempt',
            entity=liquidation,
            payload={'liquidation_id': liquidation.pk},
        )
    if liquidation.status != Liquidation.PENDING_STATUS_FOR_LEVEL[level]:
        raise conflict(
            actor,
            f'This liquidation is not awaiting {level} approval.',
            event_type='liquidation_invalid_status_attempt',
            entity=liquidation,
            payload={'liquidation_id': liquidation.pk, 'current_status': liquidation.status},
        )

    setattr(liquidation, f'{level}_reviewed_by', actor)
    setattr(liquidation, f'{level}_reviewed_at', timezone.now())
    setattr(liquidation, f'{level}_notes', notes or '')
    update_fields = [f'{level}_reviewed_by', f'{level}_reviewed_at', f'{level}_notes', 'status', 'updated_at']
    if approve:
        liquidation.status = APPROVAL_TRANSITIONS[level]
    else:
        liquidation.status = Liquidation.STATUS_REJECTED
        liquidation.rejected_at_level = level
        liquidation.rejection_reason = reason.strip()
        update_fields += ['rejected_at_level', 'rejection_reason']
    liquidation.save(update_fields=update_fields)

    if liquidation.status in (Liquidation.STATUS_APPROVED, Liquidation.STATUS_REJECTED):
        recompute_disbursement_liquidation(liquidation.disbursement)
    logger.info('Liquidation %s %s at %s stage.', liquidation.pk, 'approved' if approve else 'rejected', level)

    note = notes if approve else liquidation.rejection_reason
    return TransitionResult(liquidation, _review_effects(liquidation, level, actor, approve, note))


def latest_liquidation_for(disbursement):
    return disbursement.liquidations.order_by('-created_at', '-id').first()


def approval_history(liquidation):
    return liquidation.approval_history()
