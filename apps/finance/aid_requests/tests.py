from datetime import date
from decimal import Decimal
from io import StringIO

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import TestCase, override_settings

from apps.core.attendance.models import AttendanceRecord
from apps.core.attendance.services import record_attendance
from apps.core.notifications.models import Notification
from apps.core.users.models import AuditLog
from apps.core.utils.exceptions import AuthorizationError, BusinessRuleError, StateConflictError
from apps.core.utils.testing import approve_enrollment, create_facility_staff, sundays
from apps.finance.aid_requests import cola
from apps.finance.aid_requests.models import AidRequest
from apps.finance.aid_requests.services import (
    caseworker_review,
    cola_preview,
    director_review,
    finance_review,
    preview_cola_amount,
    submit_aid_request,
)


def _absent_on(beneficiary, caseworker, days):
    for day in days:
        AttendanceRecord.objects.create(
            beneficiary=beneficiary,
            recorded_by=caseworker,
            date=day,
            status=AttendanceRecord.STATUS_ABSENT,
        )


class ColaCalculationTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north', scholar=False)
        self.beneficiary = self.north.beneficiary

    def test_window_starts_at_enrollment_month(self):
        window = cola.allowed_window(date(2024, 1, 15))
        self.assertEqual(window, [(1, 2024), (2, 2024), (3, 2024), (4, 2024), (5, 2024)])

    def test_window_crosses_year_boundary(self):
        window = cola.allowed_window(date(2024, 11, 3))
        self.assertEqual(window[0], (11, 2024))
        self.assertEqual(window[-1], (3, 2025))

    def test_two_sunday_absences_deduct_six_hundred(self):
        _absent_on(self.beneficiary, self.north.caseworker, sundays(2024, 1)[:2])

        breakdown = cola.cola_breakdown(
            beneficiary=self.beneficiary,
            year=2024,
            month=1,
            is_scholar=False,
            enrollment_date=date(2024, 1, 15),
        )

        self.assertEqual(breakdown['sunday_absences'], 2)
        self.assertEqual(breakdown['deduction_amount'], Decimal('600.00'))
        self.assertEqual(breakdown['final_amount'], Decimal('900.00'))
        self.assertTrue(breakdown['can_request'])

    def test_weekday_absences_do_not_reduce_amount(self):
        AttendanceRecord.objects.create(
            beneficiary=self.beneficiary,
            recorded_by=self.north.caseworker,
            date=date(2024, 1, 2),
            status=AttendanceRecord.STATUS_ABSENT,
        )
        amount = cola.final_amount(beneficiary=self.beneficiary, year=2024, month=1, is_scholar=True)
        self.assertEqual(amount, Decimal('2000.00'))

    def test_final_amount_never_negative(self):
        _absent_on(self.beneficiary, self.north.caseworker, sundays(2024, 3))
        amount = cola.final_amount(beneficiary=self.beneficiary, year=2024, month=3, is_scholar=False)
        self.assertEqual(amount, Decimal('0.00'))

    @override_settings(COLA_SCHOLAR_BASE_AMOUNT='2500.00', COLA_SUNDAY_ABSENCE_DEDUCTION='100.00')
    def test_amounts_follow_settings(self):
        _absent_on(self.beneficiary, self.north.caseworker, sundays(2024, 2)[:1])
        amount = cola.final_amount(beneficiary=self.beneficiary, year=2024, month=2, is_scholar=True)
        self.assertEqual(amount, Decimal('2400.00'))


class AidRequestSubmissionTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north', scholar=False)
        self.beneficiary = self.north.beneficiary
        approve_enrollment(self.beneficiary, date(2024, 1, 15), is_scholar=False)

    def test_cola_request_uses_calculated_amount(self):
        with self.captureOnCommitCallbacks(execute=True):
            aid_request = submit_aid_request(
                beneficiary=self.beneficiary,
                fund_type=AidRequest.FUND_COLA,
                period=(2024, 1),
            ).instance

        self.assertEqual(aid_request.amount, Decimal('1500.00'))
        self.assertEqual(aid_request.state, AidRequest.STATE_PENDING_CASEWORKER)
        self.assertEqual(aid_request.status, AidRequest.STATUS_PENDING)
        self.assertEqual(aid_request.stage, AidRequest.LEVEL_CASEWORKER)
        self.assertEqual(aid_request.facility, self.north.facility)
        self.assertTrue(
            Notification.objects.filter(recipient=self.north.caseworker, type='aid_request_submitted').exists()
        )
        self.assertTrue(AuditLog.objects.filter(event_type='aid_request_submitted').exists())

    def test_cola_amount_ignores_submitted_value(self):
        aid_request = submit_aid_request(
            beneficiary=self.beneficiary,
            fund_type=AidRequest.FUND_COLA,
            amount='99999',
            period=(2024, 1),
        ).instance
        self.assertEqual(aid_request.amount, Decimal('1500.00'))

    def test_zero_cola_cannot_be_submitted(self):
        _absent_on(self.beneficiary, self.north.caseworker, sundays(2024, 3))

        with self.assertRaises(BusinessRuleError):
            submit_aid_request(beneficiary=self.beneficiary, fund_type=AidRequest.FUND_COLA, period=(2024, 3))
        self.assertFalse(AidRequest.objects.exists())

    def test_cola_outside_window_is_rejected(self):
        with self.assertRaises(BusinessRuleError):
            submit_aid_request(beneficiary=self.beneficiary, fund_type=AidRequest.FUND_COLA, period=(2024, 6))

    def test_enrollment_must_be_approved(self):
        other = create_facility_staff('South Aid Center', 'south')
        with self.assertRaises(BusinessRuleError):
            submit_aid_request(beneficiary=other.beneficiary, fund_type=AidRequest.FUND_OTHER, amount='500')

    def test_only_beneficiaries_can_submit(self):
        with self.assertRaises(AuthorizationError):
            submit_aid_request(beneficiary=self.north.caseworker, fund_type=AidRequest.FUND_OTHER, amount='500')
        self.assertTrue(AuditLog.objects.filter(event_type='aid_request_unauthorized_submission').exists())

    def test_duplicate_open_request_for_same_period_is_blocked(self):
        submit_aid_request(beneficiary=self.beneficiary, fund_type=AidRequest.FUND_COLA, period=(2024, 2))

        with self.assertRaises(BusinessRuleError):
            submit_aid_request(beneficiary=self.beneficiary, fund_type=AidRequest.FUND_COLA, period=(2024, 2))
        self.assertEqual(AidRequest.objects.count(), 1)

    def test_rejected_request_frees_the_period(self):
        first = submit_aid_request(
            beneficiary=self.beneficiary,
            fund_type=AidRequest.FUND_TUITION,
            amount='3000',
            period=(2024, 2),
        ).instance
        caseworker_review(aid_request=first, actor=self.north.caseworker, approve=False, notes='Missing invoice')

        second = submit_aid_request(
            beneficiary=self.beneficiary,
            fund_type=AidRequest.FUND_TUITION,
            amount='3000',
            period=(2024, 2),
        ).instance
        self.assertNotEqual(first.pk, second.pk)

    def test_other_requests_have_no_period(self):
        aid_request = submit_aid_request(
            beneficiary=self.beneficiary,
            fund_type=AidRequest.FUND_OTHER,
            amount='250.50',
            purpose='Transport',
            period=(2024, 2),
        ).instance
        self.assertIsNone(aid_request.period)
        submit_aid_request(beneficiary=self.beneficiary, fund_type=AidRequest.FUND_OTHER, amount='100')
        self.assertEqual(AidRequest.objects.filter(fund_type=AidRequest.FUND_OTHER).count(), 2)

    def test_non_cola_amount_must_be_at_least_one(self):
        with self.assertRaises(ValidationError) as raised:
            submit_aid_request(beneficiary=self.beneficiary, fund_type=AidRequest.FUND_OTHER, amount='0.50')
        self.assertIn('amount', raised.exception.message_dict)

    def test_preview_reports_open_request(self):
        preview = cola_preview(beneficiary=self.beneficiary, period=(2024, 1))
        self.assertTrue(preview['can_request'])

        submit_aid_request(beneficiary=self.beneficiary, fund_type=AidRequest.FUND_COLA, period=(2024, 1))

        preview = cola_preview(beneficiary=self.beneficiary, period=(2024, 1))
        self.assertTrue(preview['has_open_request'])
        self.assertFalse(preview['can_request'])


class AidRequestReviewTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')
        self.south = create_facility_staff('South Aid Center', 'south')
        approve_enrollment(self.north.beneficiary, date(2024, 1, 15))
        self.aid_request = submit_aid_request(
            beneficiary=self.north.beneficiary,
            fund_type=AidRequest.FUND_COLA,
            period=(2024, 2),
        ).instance

    def test_full_approval_chain(self):
        with self.captureOnCommitCallbacks(execute=True):
            caseworker_review(aid_request=self.aid_request, actor=self.north.caseworker, approve=True)
        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.state, AidRequest.STATE_PENDING_FINANCE)
        self.assertTrue(
            Notification.objects.filter(recipient=self.north.finance, type='aid_request_pending_finance').exists()
        )

        with self.captureOnCommitCallbacks(execute=True):
            finance_review(aid_request=self.aid_request, actor=self.north.finance, approve=True)
        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.state, AidRequest.STATE_PENDING_DIRECTOR)
        self.assertTrue(
            Notification.objects.filter(recipient=self.north.director, type='aid_request_pending_director').exists()
        )

        with self.captureOnCommitCallbacks(execute=True):
            director_review(aid_request=self.aid_request, actor=self.north.director, approve=True, notes='OK')
        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.state, AidRequest.STATE_APPROVED)
        self.assertEqual(self.aid_request.stage, AidRequest.STAGE_DONE)
        self.assertEqual(self.aid_request.director_notes, 'OK')
        self.assertEqual(
            [decision.decision for decision in self.aid_request.decisions()],
            [AidRequest.DECISION_APPROVED] * 3,
        )
        self.assertTrue(
            Notification.objects.filter(recipient=self.north.beneficiary, type='aid_request_approved').exists()
        )

    def test_other_facility_finance_is_denied_and_audited(self):
        caseworker_review(aid_request=self.aid_request, actor=self.north.caseworker, approve=True)

        with self.assertRaises(AuthorizationError):
            finance_review(aid_request=self.aid_request, actor=self.south.finance, approve=True)

        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.stage, AidRequest.LEVEL_FINANCE)
        self.assertEqual(self.aid_request.finance_decision, AidRequest.DECISION_PENDING)
        audit = AuditLog.objects.get(event_type='aid_request_finance_unauthorized_attempt')
        self.assertEqual(audit.user, self.south.finance)
        self.assertEqual(audit.risk_level, AuditLog.RISK_CRITICAL)

    def test_unassigned_caseworker_is_denied(self):
        with self.assertRaises(AuthorizationError):
            caseworker_review(aid_request=self.aid_request, actor=self.south.caseworker, approve=True)
        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.state, AidRequest.STATE_PENDING_CASEWORKER)

    def test_director_of_other_facility_is_denied(self):
        caseworker_review(aid_request=self.aid_request, actor=self.north.caseworker, approve=True)
        finance_review(aid_request=self.aid_request, actor=self.north.finance, approve=True)

        with self.assertRaises(AuthorizationError):
            director_review(aid_request=self.aid_request, actor=self.south.director, approve=True)

    def test_review_out_of_order_is_a_state_conflict(self):
        with self.assertRaises(StateConflictError):
            finance_review(aid_request=self.aid_request, actor=self.north.finance, approve=True)

        self.assertTrue(AuditLog.objects.filter(event_type='aid_request_invalid_stage_attempt').exists())
        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.finance_decision, AidRequest.DECISION_PENDING)

    def test_second_caseworker_review_is_a_state_conflict(self):
        caseworker_review(aid_request=self.aid_request, actor=self.north.caseworker, approve=True)
        with self.assertRaises(StateConflictError):
            caseworker_review(aid_request=self.aid_request, actor=self.north.caseworker, approve=False)

    def test_rejection_is_terminal(self):
        with self.captureOnCommitCallbacks(execute=True):
            caseworker_review(aid_request=self.aid_request, actor=self.north.caseworker, approve=True)
            finance_review(aid_request=self.aid_request, actor=self.north.finance, approve=False, notes='No budget')

        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.state, AidRequest.STATE_REJECTED)
        self.assertEqual(self.aid_request.status, AidRequest.STATUS_REJECTED)
        self.assertEqual(self.aid_request.rejected_at_level, AidRequest.LEVEL_FINANCE)
        self.assertEqual(self.aid_request.director_decision, AidRequest.DECISION_PENDING)
        self.assertTrue(
            Notification.objects.filter(recipient=self.north.beneficiary, type='aid_request_rejected').exists()
        )

        with self.assertRaises(StateConflictError):
            director_review(aid_request=self.aid_request, actor=self.north.director, approve=True)


class ColaRecalculationTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')
        approve_enrollment(self.north.beneficiary, date(2024, 1, 15))
        self.aid_request = submit_aid_request(
            beneficiary=self.north.beneficiary,
            fund_type=AidRequest.FUND_COLA,
            period=(2024, 3),
        ).instance

    def test_recording_sunday_absence_updates_pending_request(self):
        record_attendance(
            beneficiary=self.north.beneficiary,
            target_date=sundays(2024, 3)[0],
            status=AttendanceRecord.STATUS_ABSENT,
            recorded_by=self.north.caseworker,
        )
        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.amount, Decimal('1700.00'))

    def test_finance_approval_recomputes_amount(self):
        caseworker_review(aid_request=self.aid_request, actor=self.north.caseworker, approve=True)
        _absent_on(self.north.beneficiary, self.north.caseworker, sundays(2024, 3)[:2])

        finance_review(aid_request=self.aid_request, actor=self.north.finance, approve=True)

        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.amount, Decimal('1400.00'))

    @override_settings(COLA_SUNDAY_ABSENCE_DEDUCTION='400.00')
    def test_approval_fails_when_amount_drops_to_zero(self):
        caseworker_review(aid_request=self.aid_request, actor=self.north.caseworker, approve=True)
        _absent_on(self.north.beneficiary, self.north.caseworker, sundays(2024, 3))

        with self.assertRaises(BusinessRuleError):
            finance_review(aid_request=self.aid_request, actor=self.north.finance, approve=True)

        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.state, AidRequest.STATE_PENDING_FINANCE)
        self.assertEqual(self.aid_request.finance_decision, AidRequest.DECISION_PENDING)

    def test_decided_requests_are_not_recalculated(self):
        caseworker_review(aid_request=self.aid_request, actor=self.north.caseworker, approve=True)
        finance_review(aid_request=self.aid_request, actor=self.north.finance, approve=True)
        director_review(aid_request=self.aid_request, actor=self.north.director, approve=True)

        record_attendance(
            beneficiary=self.north.beneficiary,
            target_date=sundays(2024, 3)[0],
            status=AttendanceRecord.STATUS_ABSENT,
            recorded_by=self.north.caseworker,
        )
        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.amount, Decimal('2000.00'))

    def test_update_cola_amounts_command(self):
        _absent_on(self.north.beneficiary, self.north.caseworker, sundays(2024, 3)[:1])
        out = StringIO()

        call_command('update_cola_amounts', beneficiary_id=self.north.beneficiary.pk, stdout=out)

        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.amount, Decimal('1700.00'))
        self.assertIn('Successfully updated 1 COLA request(s).', out.getvalue())

    def test_preview_refreshes_stale_pending_amount(self):
        _absent_on(self.north.beneficiary, self.north.caseworker, sundays(2024, 3)[:1])

        self.assertEqual(preview_cola_amount(self.aid_request), Decimal('1700.00'))
        self.aid_request.refresh_from_db()
        self.assertEqual(self.aid_request.amount, Decimal('1700.00'))
