from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from apps.core.enrollment.services import latest_approved_enrollment, sync_scholar_status
from apps.core.facilities.services import staff_ids_for_role
from apps.core.users.authorization import (
    conflict,
    deny,
    is_assigned_caseworker,
    is_facility_director,
    is_facility_finance,
    require_role,
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
from apps.core.utils.money import quantize, to_decimal
from apps.core.utils.periods import month_label

from . import cola
from .models import AidRequest

logger = logging.getLogger(__name__)

MINIMUM_AMOUNT = to_decimal('1.00')

# (state, reviewing level) -> state after approval
APPROVAL_TRANSITIONS = {
    (AidRequest.STATE_PENDING_CASEWORKER, AidRequest.LEVEL_CASEWORKER): AidRequest.STATE_PENDING_FINANCE,
    (AidRequest.STATE_PENDING_FINANCE, AidRequest.LEVEL_FINANCE): AidRequest.STATE_PENDING_DIRECTOR,
    (AidRequest.STATE_PENDING_DIRECTOR, AidRequest.LEVEL_DIRECTOR): AidRequest.STATE_APPROVED,
}
EXPECTED_STATE = {level: state for (state, level) in APPROVAL_TRANSITIONS}

_AUTHORIZED = {
    AidRequest.LEVEL_CASEWORKER: (is_assigned_caseworker, 'You are not assigned to this beneficiary.'),
    AidRequest.LEVEL_FINANCE: (is_facility_finance, 'This request does not belong to your facility.'),
    AidRequest.LEVEL_DIRECTOR: (is_facility_director, 'You do not own the facility this request belongs to.'),
}


def _beneficiary_name(beneficiary):
    return beneficiary.full_name if beneficiary else ''


def _request_payload(aid_request):
    return {
        'aid_request_id': aid_request.pk,
        'beneficiary_id': aid_request.beneficiary_id,
        'beneficiary_name': _beneficiary_name(aid_request.beneficiary),
        'fund_type': aid_request.fund_type,
        'amount': str(aid_request.amount),
        'month': aid_request.month,
        'year': aid_request.year,
        'state': aid_request.state,
    }


def _resolve_period(fund_type, period):
    if fund_type not in AidRequest.PERIODIC_FUND_TYPES:
        return None, None
    if period:
        year, month = (int(part) for part in period)
        if not 1 <= month <= 12:
            raise ValidationError({'month': 'Month must be between 1 and 12.'})
        return year, month
    today = timezone.localdate()
    return today.year, today.month


def _ensure_no_open_request(beneficiary, fund_type, year, month):
    exists = AidRequest.objects.filter(
        beneficiary=beneficiary,
        fund_type=fund_type,
        year=year,
        month=month,
    ).exclude(state=AidRequest.STATE_REJECTED).exists()
    if exists:
        raise BusinessRuleError(
            f'You have already submitted a {fund_type} request for {month_label(year, month)}. '
            f'Each beneficiary can only request funds for {fund_type} once per month.'
        )


def current_cola_amount(aid_request):
    year, month = aid_request.period or (timezone.localdate().year, timezone.localdate().month)
    return cola.final_amount(
        beneficiary=aid_request.beneficiary,
        year=year,
        month=month,
        is_scholar=aid_request.beneficiary.is_scholar,
    )


@transition
def submit_aid_request(*, beneficiary, fund_type, amount=None, purpose='', period=None):
    require_role(
        beneficiary,
        User.ROLE_BENEFICIARY,
        'Only beneficiaries can create aid requests.',
        event_type='aid_request_unauthorized_submission',
    )
    if fund_type not in {choice for choice, _ in AidRequest.FUND_CHOICES}:
        raise ValidationError({'fund_type': f'Invalid fund type: {fund_type}.'})
    if fund_type != AidRequest.FUND_COLA:
        if amount is None:
            raise ValidationError({'amount': 'Amount is required.'})
        amount = quantize(amount)
        if amount < MINIMUM_AMOUNT:
            raise ValidationError({'amount': f'Amount must be at least {MINIMUM_AMOUNT}.'})

    # Serialises concurrent submissions by the same beneficiary.
    beneficiary = User.objects.select_for_update().get(pk=beneficiary.pk)

    enrollment = latest_approved_enrollment(beneficiary)
    if enrollment is None:
        raise BusinessRuleError('Your enrollment verification must be approved before requesting aid.')
    sync_scholar_status(beneficiary, enrollment)

    year, month = _resolve_period(fund_type, period)
    if month is not None:
        _ensure_no_open_request(beneficiary, fund_type, year, month)

    if fund_type == AidRequest.FUND_COLA:
        window = cola.allowed_window(enrollment.enrollment_date)
        if not cola.in_window(window, year=year, month=month):
            raise BusinessRuleError(
                f'COLA is not available for {month_label(year, month)}. Requests are only allowed for '
                f'{len(window)} months starting from your enrollment month.'
            )
        amount = cola.final_amount(beneficiary=beneficiary, year=year, month=month, is_scholar=beneficiary.is_scholar)
        if amount <= 0:
            raise BusinessRuleError(
                'Your COLA amount for this period is 0.00 due to attendance deductions. '
                'No request can be submitted.'
            )
        purpose = purpose or 'COLA allowance request'

    aid_request = AidRequest(
        beneficiary=beneficiary,
        facility=beneficiary.facility,
        fund_type=fund_type,
        amount=amount,
        purpose=purpose or '',
        month=month,
        year=year,
    )
    aid_request.full_clean(validate_constraints=False)
    try:
        with transaction.atomic():
            aid_request.save()
    except IntegrityError as exc:
        raise BusinessRuleError(
            f'You have already submitted a {fund_type} request for {month_label(year, month)}.'
        ) from exc

    logger.info('Aid request %s submitted by beneficiary %s.', aid_request.pk, beneficiary.pk)
    effects = [
        audit_effect(
            'aid_request_submitted',
            'Beneficiary submitted an aid request.',
            entity=aid_request,
            actor=beneficiary,
            payload=_request_payload(aid_request),
        )
    ]
    if beneficiary.caseworker_id:
        effects.append(
            notify_effect(
                [beneficiary.caseworker_id],
                'aid_request_submitted',
                'New aid request',
                f'{_beneficiary_name(beneficiary)} submitted a {fund_type} request of {aid_request.amount}.',
                payload=_request_payload(aid_request),
            )
        )
    return TransitionResult(aid_request, effects)


def _review_effects(aid_request, level, actor, approved, notes):
    payload = _request_payload(aid_request)
    payload.update({'level': level, 'decision': 'approved' if approved else 'rejected', 'notes': notes})
    effects = [
        audit_effect(
            f'aid_request_{level}_review',
            f"{level.title()} {'approved' if approved else 'rejected'} aid request.",
            entity=aid_request,
            actor=actor,
            payload=payload,
            risk_level=RISK_MEDIUM if approved else RISK_HIGH,
        )
    ]

    facility = aid_request.facility
    if not approved:
        effects.append(
            notify_effect(
                [aid_request.beneficiary_id],
                'aid_request_rejected',
                'Aid request rejected',
                f'Your {aid_request.fund_type} request was rejected at the {level} stage.'
                + (f' Notes: {notes}' if notes else ''),
                payload=payload,
                priority=PRIORITY_HIGH,
            )
        )
        return effects

    if level == AidRequest.LEVEL_CASEWORKER:
        effects.append(
            notify_effect(
                [aid_request.beneficiary_id],
                'aid_request_caseworker_approved',
                'Aid request forwarded to finance',
                'Your caseworker approved your request; it is now with finance.',
                payload=payload,
            )
        )
        effects.append(
            notify_effect(
                staff_ids_for_role(facility, User.ROLE_FINANCE),
                'aid_request_pending_finance',
                'Aid request awaiting finance review',
                f'{_beneficiary_name(aid_request.beneficiary)} requested {aid_request.amount} ({aid_request.fund_type}).',
                payload=payload,
                priority=PRIORITY_MEDIUM,
            )
        )
    elif level == AidRequest.LEVEL_FINANCE:
        effects.append(
            notify_effect(
                [facility.director_id],
                'aid_request_pending_director',
                'Aid request awaiting your decision',
                f'Finance approved {aid_request.amount} for {_beneficiary_name(aid_request.beneficiary)}.',
                payload=payload,
                priority=PRIORITY_MEDIUM,
            )
        )
    else:
        effects.append(
            notify_effect(
                [aid_request.beneficiary_id],
                'aid_request_approved',
                'Aid request approved',
                f'Your fund request has been approved by the director. Amount: {aid_request.amount}.',
                payload=payload,
                priority=PRIORITY_HIGH,
            )
        )
        effects.append(
            notify_effect(
                staff_ids_for_role(facility, User.ROLE_FINANCE),
                'aid_request_ready_for_disbursement',
                'Aid request ready for disbursement',
                f'{_beneficiary_name(aid_request.beneficiary)} is approved for {aid_request.amount}.',
                payload=payload,
                priority=PRIORITY_HIGH,
            )
        )
    return effects


def _review(level, *, aid_request, actor, approve, notes=''):
    aid_request = (
        AidRequest.objects.select_for_update()
        .select_related('beneficiary', 'facility')
        .get(pk=aid_request.pk)
    )

    check, message = _AUTHORIZED[level]
    if not check(actor, aid_request.beneficiary):
        raise deny(
            actor,
            message,
            event_type=f'aid_request_{level}_unauthorized_attempt',
            entity=aid_request,
            payload={'aid_request_id': aid_request.pk, 'beneficiary_id': aid_request.beneficiary_id},
        )

    previous_levels = AidRequest.LEVELS[:AidRequest.LEVELS.index(level)]
    in_expected_state = (
        aid_request.state == EXPECTED_STATE[level]
        and aid_request.decision_for(level).decision == AidRequest.DECISION_PENDING
        and all(
            aid_request.decision_for(previous).decision == AidRequest.DECISION_APPROVED
            for previous in previous_levels
        )
    )
    if not in_expected_state:
        raise conflict(
            actor,
            f'This request is not in the {level} review stage.',
            event_type='aid_request_invalid_stage_attempt',
            entity=aid_request,
            payload={
                'aid_request_id': aid_request.pk,
                'current_state': aid_request.state,
                'current_stage': aid_request.stage,
                'current_status': aid_request.status,
            },
        )

    update_fields = aid_request.record_decision(
        level,
        decision=AidRequest.DECISION_APPROVED if approve else AidRequest.DECISION_REJECTED,
        decided_by=actor,
        decided_at=timezone.now(),
        notes=notes,
    )
    update_fields += ['state', 'updated_at']

    if approve:
        if aid_request.is_cola and level != AidRequest.LEVEL_CASEWORKER:
            aid_request.amount = current_cola_amount(aid_request)
            update_fields.append('amount')
            if aid_request.amount <= 0:
                raise BusinessRuleError(
                    'The COLA amount for this period is now 0.00 after attendance deductions; '
                    'the request cannot be approved.'
                )
        aid_request.state = APPROVAL_TRANSITIONS[(aid_request.state, level)]
    else:
        aid_request.state = AidRequest.STATE_REJECTED
        aid_request.rejected_at_level = level
        update_fields.append('rejected_at_level')

    aid_request.save(update_fields=update_fields)
    logger.info('Aid request %s %s at %s stage.', aid_request.pk, 'approved' if approve else 'rejected', level)
    return TransitionResult(aid_request, _review_effects(aid_request, level, actor, approve, notes))


@transition
def caseworker_review(*, aid_request, actor, approve, notes=''):
    return _review(AidRequest.LEVEL_CASEWORKER, aid_request=aid_request, actor=actor, approve=approve, notes=notes)


@transition
def finance_review(*, aid_request, actor, approve, notes=''):
    return _review(AidRequest.LEVEL_FINANCE, aid_request=aid_request, actor=actor, approve=approve, notes=notes)


@transition
def director_review(*, aid_request, actor, approve, notes=''):
    return _review(AidRequest.LEVEL_DIRECTOR, aid_request=aid_request, actor=actor, approve=approve, notes=notes)


@transaction.atomic
def recalculate_cola_amounts(*, beneficiary, year=None, month=None):
    queryset = AidRequest.objects.select_for_update().filter(
        beneficiary=beneficiary,
        fund_type=AidRequest.FUND_COLA,
        state__in=AidRequest.PENDING_STATES,
    )
    if year and month:
        queryset = queryset.filter(year=year, month=month)

    updated = 0
    for aid_request in queryset.select_related('beneficiary'):
        new_amount = current_cola_amount(aid_request)
        if aid_request.amount != new_amount:
            aid_request.amount = new_amount
            aid_request.save(update_fields=['amount', 'updated_at'])
            updated += 1
    if updated:
        logger.info('Recalculated %s pending COLA request(s) for beneficiary %s.', updated, beneficiary.pk)
    return updated


def preview_cola_amount(aid_request):
    """Return the amount to display for ``aid_request``, refreshing pending COLA rows."""
    if not aid_request.is_cola or aid_request.is_terminal:
        return aid_request.amount
    current = current_cola_amount(aid_request)
    if current != aid_request.amount:
        AidRequest.objects.filter(pk=aid_request.pk, state__in=AidRequest.PENDING_STATES).update(
            amount=current,
            updated_at=timezone.now(),
        )
        aid_request.amount = current
    return current


def cola_preview(*, beneficiary, period=None):
    enrollment = latest_approved_enrollment(beneficiary)
    year, month = _resolve_period(AidRequest.FUND_COLA, period)
    is_scholar = enrollment.is_scholar if enrollment else beneficiary.is_scholar
    breakdown = cola.cola_breakdown(
        beneficiary=beneficiary,
        year=year,
        month=month,
        is_scholar=is_scholar,
        enrollment_date=enrollment.enrollment_date if enrollment else None,
    )
    breakdown['has_open_request'] = AidRequest.objects.filter(
        beneficiary=beneficiary,
        fund_type=AidRequest.FUND_COLA,
        year=year,
        month=month,
    ).exclude(state=AidRequest.STATE_REJECTED).exists()
    breakdown['can_request'] = breakdown['can_request'] and not breakdown['has_open_request']
    return breakdown
