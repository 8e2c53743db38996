from django.utils import timezone

from apps.core.users.authorization import conflict, deny, is_assigned_caseworker
from apps.core.utils.effects import RISK_LOW, TransitionResult, audit_effect, notify_effect, transition

from .models import EnrollmentVerification


def latest_approved_enrollment(beneficiary):
    return (
        EnrollmentVerification.objects.filter(
            beneficiary=beneficiary,
            status=EnrollmentVerification.STATUS_APPROVED,
        )
        .order_by('-created_at', '-id')
        .first()
    )


@transition
def review_enrollment(*, verification: EnrollmentVerification, reviewer, approve, notes=''):
    verification = EnrollmentVerification.objects.select_for_update().get(pk=verification.pk)
    if not is_assigned_caseworker(reviewer, verification.beneficiary):
        raise deny(
            reviewer,
            'Only the assigned caseworker can review this enrollment.',
            event_type='enrollment_unauthorized_review',
            entity=verification,
            payload={'beneficiary_id': verification.beneficiary_id},
        )
    if verification.status != EnrollmentVerification.STATUS_PENDING:
        raise conflict(
            reviewer,
            'Enrollment verification has already been reviewed.',
            event_type='enrollment_already_reviewed_attempt',
            entity=verification,
            payload={'status': verification.status},
        )

    verification.status = (
        EnrollmentVerification.STATUS_APPROVED if approve else EnrollmentVerification.STATUS_REJECTED
    )
    verification.reviewed_by = reviewer
    verification.reviewed_at = timezone.now()
    verification.review_notes = notes
    verification.save(update_fields=['status', 'reviewed_by', 'reviewed_at', 'review_notes'])

    if approve:
        sync_scholar_status(verification.beneficiary, verification)

    outcome = 'approved' if approve else 'rejected'
    return TransitionResult(
        verification,
        [
            audit_effect(
                f'enrollment_{outcome}',
                f'Enrollment verification {outcome}.',
                entity=verification,
                actor=reviewer,
                payload={'beneficiary_id': verification.beneficiary_id, 'is_scholar': verification.is_scholar},
                risk_level=RISK_LOW,
            ),
            notify_effect(
                [verification.beneficiary_id],
                f'enrollment_{outcome}',
                f'Enrollment {outcome}',
                notes or f'Your enrollment verification was {outcome}.',
                payload={'verification_id': verification.pk},
            ),
        ],
    )


def sync_scholar_status(beneficiary, verification=None):
    verification = verification or latest_approved_enrollment(beneficiary)
    if verification and beneficiary.is_scholar != verification.is_scholar:
        beneficiary.is_scholar = verification.is_scholar
        beneficiary.save(update_fields=['is_scholar'])
    return beneficiary
