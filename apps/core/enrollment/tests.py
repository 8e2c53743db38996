from datetime import date

from django.test import TestCase

from apps.core.enrollment.models import EnrollmentVerification
from apps.core.enrollment.services import latest_approved_enrollment, review_enrollment
from apps.core.notifications.models import Notification
from apps.core.users.models import AuditLog
from apps.core.utils.exceptions import AuthorizationError, StateConflictError
from apps.core.utils.testing import create_facility_staff


class EnrollmentReviewTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north', scholar=False)
        self.south = create_facility_staff('South Aid Center', 'south')
        self.verification = EnrollmentVerification.objects.create(
            beneficiary=self.north.beneficiary,
            enrollment_date=date(2024, 1, 15),
            is_scholar=True,
            document_reference='enrollment/north.pdf',
        )

    def test_pending_verification_is_not_used(self):
        self.assertIsNone(latest_approved_enrollment(self.north.beneficiary))

    def test_approval_syncs_scholar_flag(self):
        with self.captureOnCommitCallbacks(execute=True):
            result = review_enrollment(verification=self.verification, reviewer=self.north.caseworker, approve=True)

        self.assertEqual(result.instance.status, EnrollmentVerification.STATUS_APPROVED)
        self.north.beneficiary.refresh_from_db()
        self.assertTrue(self.north.beneficiary.is_scholar)
        self.assertEqual(latest_approved_enrollment(self.north.beneficiary), self.verification)
        self.assertTrue(AuditLog.objects.filter(event_type='enrollment_approved').exists())
        self.assertTrue(
            Notification.objects.filter(recipient=self.north.beneficiary, type='enrollment_approved').exists()
        )

    def test_other_facility_caseworker_is_denied_and_audited(self):
        with self.assertRaises(AuthorizationError):
            review_enrollment(verification=self.verification, reviewer=self.south.caseworker, approve=True)

        self.verification.refresh_from_db()
        self.assertEqual(self.verification.status, EnrollmentVerification.STATUS_PENDING)
        audit = AuditLog.objects.get(event_type='enrollment_unauthorized_review')
        self.assertEqual(audit.risk_level, AuditLog.RISK_CRITICAL)
        self.assertEqual(audit.entity_id, str(self.verification.pk))

    def test_verification_is_reviewed_once(self):
        review_enrollment(verification=self.verification, reviewer=self.north.caseworker, approve=False, notes='Blurry')

        with self.assertRaises(StateConflictError):
            review_enrollment(verification=self.verification, reviewer=self.north.caseworker, approve=True)

        self.verification.refresh_from_db()
        self.assertEqual(self.verification.status, EnrollmentVerification.STATUS_REJECTED)
        self.assertTrue(AuditLog.objects.filter(event_type='enrollment_already_reviewed_attempt').exists())
