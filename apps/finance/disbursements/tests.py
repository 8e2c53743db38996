import threading
from datetime import date
from decimal import Decimal

from django.db import connection
from django.test import TestCase, TransactionTestCase, skipUnlessDBFeature

from apps.core.notifications.models import Notification
from apps.core.users.models import AuditLog
from apps.core.utils.exceptions import AuthorizationError, InsufficientFundsError, StateConflictError
from apps.core.utils.testing import approve_enrollment, create_facility_staff
from apps.finance.aid_requests.models import AidRequest
from apps.finance.disbursements.models import Disbursement
from apps.finance.disbursements.services import (
    SEMESTER_NOTIFICATION,
    beneficiary_confirm_receipt,
    caseworker_disburse,
    caseworker_receive,
    finance_disburse,
)
from apps.finance.funds.models import FundAllocation


def approved_request(beneficiary, fund_type, amount, *, month=None, year=None):
    return AidRequest.objects.create(
        beneficiary=beneficiary,
        facility=beneficiary.facility,
        fund_type=fund_type,
        amount=amount,
        month=month,
        year=year,
        state=AidRequest.STATE_APPROVED,
        caseworker_decision=AidRequest.DECISION_APPROVED,
        finance_decision=AidRequest.DECISION_APPROVED,
        director_decision=AidRequest.DECISION_APPROVED,
    )


def allocation(facility, fund_type, amount):
    return FundAllocation.objects.create(
        facility=facility,
        fund_type=fund_type,
        sponsor_name=f'{fund_type.title()} Sponsor',
        allocated_amount=amount,
    )


class DisbursementFlowTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')
        self.south = create_facility_staff('South Aid Center', 'south')
        self.tuition_pool = allocation(self.north.facility, FundAllocation.TYPE_TUITION, '1000.00')
        self.general_pool = allocation(self.north.facility, FundAllocation.TYPE_GENERAL, '500.00')
        self.aid_request = approved_request(
            self.north.beneficiary, AidRequest.FUND_TUITION, '1200.00', month=2, year=2024
        )

    def _hand_over(self, **kwargs):
        disbursement = finance_disburse(aid_request=self.aid_request, actor=self.north.finance, **kwargs).instance
        caseworker_receive(disbursement=disbursement, actor=self.north.caseworker)
        return caseworker_disburse(disbursement=disbursement, actor=self.north.caseworker).instance

    def test_confirmation_charges_tuition_then_general_pool(self):
        disbursement = self._hand_over()

        with self.captureOnCommitCallbacks(execute=True):
            disbursement = beneficiary_confirm_receipt(disbursement=disbursement, actor=self.north.beneficiary).instance

        self.tuition_pool.refresh_from_db()
        self.general_pool.refresh_from_db()
        self.assertEqual(self.tuition_pool.utilized_amount, Decimal('1000.00'))
        self.assertEqual(self.tuition_pool.remaining_amount, Decimal('0.00'))
        self.assertEqual(self.general_pool.utilized_amount, Decimal('200.00'))
        self.assertEqual(self.general_pool.remaining_amount, Decimal('300.00'))
        self.assertEqual(disbursement.status, Disbursement.STATUS_BENEFICIARY_RECEIVED)
        self.assertEqual(disbursement.liquidated_amount, Decimal('0.00'))
        self.assertEqual(disbursement.remaining_to_liquidate, Decimal('1200.00'))
        self.assertFalse(disbursement.fully_liquidated)
        self.assertTrue(disbursement.needs_liquidation)
        self.assertTrue(
            AuditLog.objects.filter(event_type='disbursement_beneficiary_received', risk_level=AuditLog.RISK_HIGH).exists()
        )
        self.assertTrue(
            Notification.objects.filter(recipient=self.north.finance, type='disbursement_beneficiary_received').exists()
        )

    def test_insufficient_funds_leaves_everything_untouched(self):
        disbursement = Disbursement.objects.create(
            aid_request=self.aid_request,
            facility=self.north.facility,
            amount='1600.00',
            status=Disbursement.STATUS_CASEWORKER_DISBURSED,
        )

        with self.assertRaises(InsufficientFundsError):
            beneficiary_confirm_receipt(disbursement=disbursement, actor=self.north.beneficiary)

        disbursement.refresh_from_db()
        self.tuition_pool.refresh_from_db()
        self.general_pool.refresh_from_db()
        self.assertEqual(disbursement.status, Disbursement.STATUS_CASEWORKER_DISBURSED)
        self.assertIsNone(disbursement.remaining_to_liquidate)
        self.assertEqual(self.tuition_pool.utilized_amount, Decimal('0.00'))
        self.assertEqual(self.general_pool.utilized_amount, Decimal('0.00'))

    def test_second_confirmation_does_not_deduct_again(self):
        """Sequential repeat only; the concurrent race is covered by ConcurrentConfirmationTests."""
        disbursement = self._hand_over()
        beneficiary_confirm_receipt(disbursement=disbursement, actor=self.north.beneficiary)

        with self.assertRaises(StateConflictError):
            beneficiary_confirm_receipt(disbursement=disbursement, actor=self.north.beneficiary)

        self.tuition_pool.refresh_from_db()
        self.general_pool.refresh_from_db()
        self.assertEqual(self.tuition_pool.utilized_amount + self.general_pool.utilized_amount, Decimal('1200.00'))

    def test_caseworker_may_skip_explicit_receipt(self):
        disbursement = finance_disburse(aid_request=self.aid_request, actor=self.north.finance).instance

        disbursement = caseworker_disburse(disbursement=disbursement, actor=self.north.caseworker).instance

        self.assertEqual(disbursement.status, Disbursement.STATUS_CASEWORKER_DISBURSED)
        self.assertEqual(disbursement.caseworker_received_by, self.north.caseworker)
        self.assertIsNotNone(disbursement.caseworker_received_at)

    def test_hops_cannot_run_backwards(self):
        disbursement = self._hand_over()
        with self.assertRaises(StateConflictError):
            caseworker_receive(disbursement=disbursement, actor=self.north.caseworker)

    def test_custom_amount_and_single_disbursement_per_request(self):
        disbursement = finance_disburse(
            aid_request=self.aid_request,
            actor=self.north.finance,
            amount='800.00',
        ).instance
        self.assertEqual(disbursement.amount, Decimal('800.00'))

        with self.assertRaises(StateConflictError):
            finance_disburse(aid_request=self.aid_request, actor=self.north.finance)
        self.assertEqual(Disbursement.objects.count(), 1)
        audit = AuditLog.objects.get(event_type='disbursement_duplicate_attempt')
        self.assertEqual(audit.risk_level, AuditLog.RISK_CRITICAL)

    def test_disbursing_more_than_available_is_refused(self):
        with self.assertRaises(InsufficientFundsError):
            finance_disburse(aid_request=self.aid_request, actor=self.north.finance, amount='1500.01')
        self.assertFalse(Disbursement.objects.exists())

    def test_pending_request_cannot_be_disbursed(self):
        self.aid_request.state = AidRequest.STATE_PENDING_DIRECTOR
        self.aid_request.save(update_fields=['state'])
        with self.assertRaises(StateConflictError):
            finance_disburse(aid_request=self.aid_request, actor=self.north.finance)

    def test_other_facility_cannot_disburse(self):
        with self.assertRaises(AuthorizationError):
            finance_disburse(aid_request=self.aid_request, actor=self.south.finance)
        self.assertTrue(AuditLog.objects.filter(event_type='disbursement_unauthorized_attempt').exists())

    def test_only_assigned_caseworker_handles_cash(self):
        disbursement = finance_disburse(aid_request=self.aid_request, actor=self.north.finance).instance
        with self.assertRaises(AuthorizationError):
            caseworker_receive(disbursement=disbursement, actor=self.south.caseworker)

    def test_only_beneficiary_confirms(self):
        disbursement = self._hand_over()
        with self.assertRaises(AuthorizationError):
            beneficiary_confirm_receipt(disbursement=disbursement, actor=self.north.caseworker)

    def test_liquidation_percentage(self):
        disbursement = self._hand_over()
        self.assertEqual(disbursement.liquidation_percentage, Decimal('0.00'))
        disbursement.apply_liquidated_total(Decimal('300.00'))
        self.assertEqual(disbursement.liquidation_percentage, Decimal('25.00'))
        self.assertEqual(disbursement.remaining_to_liquidate, Decimal('900.00'))


class ColaSemesterTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')
        approve_enrollment(self.north.beneficiary, date(2024, 1, 15))
        allocation(self.north.facility, FundAllocation.TYPE_COLA, '20000.00')

    def _receive(self, month):
        aid_request = approved_request(
            self.north.beneficiary, AidRequest.FUND_COLA, '2000.00', month=month, year=2024
        )
        disbursement = finance_disburse(aid_request=aid_request, actor=self.north.finance).instance
        caseworker_disburse(disbursement=disbursement, actor=self.north.caseworker)
        with self.captureOnCommitCallbacks(execute=True):
            beneficiary_confirm_receipt(disbursement=disbursement, actor=self.north.beneficiary)

    def test_semester_notification_sent_once_window_is_used(self):
        for month in (1, 2, 3, 4):
            self._receive(month)
        self.assertFalse(
            Notification.objects.filter(recipient=self.north.beneficiary, type=SEMESTER_NOTIFICATION).exists()
        )

        self._receive(5)
        self.assertEqual(
            Notification.objects.filter(recipient=self.north.beneficiary, type=SEMESTER_NOTIFICATION).count(),
            1,
        )

    def test_months_outside_window_do_not_count(self):
        for month in (2, 3, 4, 5, 6):
            self._receive(month)
        self.assertFalse(
            Notification.objects.filter(recipient=self.north.beneficiary, type=SEMESTER_NOTIFICATION).exists()
        )


@skipUnlessDBFeature('has_select_for_update')
class ConcurrentConfirmationTests(TransactionTestCase):
    """Two connections confirm the same disbursement at once.

    Row locking only serializes the race on a backend that supports
    ``select_for_update``; elsewhere the class is skipped.
    """

    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')
        self.tuition_pool = allocation(self.north.facility, FundAllocation.TYPE_TUITION, '1000.00')
        self.general_pool = allocation(self.north.facility, FundAllocation.TYPE_GENERAL, '500.00')
        aid_request = approved_request(self.north.beneficiary, AidRequest.FUND_TUITION, '1200.00', month=2, year=2024)
        disbursement = finance_disburse(aid_request=aid_request, actor=self.north.finance).instance
        self.disbursement = caseworker_disburse(disbursement=disbursement, actor=self.north.caseworker).instance

    def test_racing_confirmations_deduct_once(self):
        barrier = threading.Barrier(2)
        outcomes = []

        def confirm():
            try:
                barrier.wait()
                beneficiary_confirm_receipt(disbursement=self.disbursement, actor=self.north.beneficiary)
                outcomes.append('confirmed')
            except StateConflictError:
                outcomes.append('conflict')
            finally:
                connection.close()

        threads = [threading.Thread(target=confirm) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(sorted(outcomes), ['confirmed', 'conflict'])
        self.tuition_pool.refresh_from_db()
        self.general_pool.refresh_from_db()
        self.assertEqual(self.tuition_pool.utilized_amount, Decimal('1000.00'))
        self.assertEqual(self.general_pool.utilized_amount, Decimal('200.00'))
        self.disbursement.refresh_from_db()
        self.assertEqual(self.disbursement.status, Disbursement.STATUS_BENEFICIARY_RECEIVED)
