from datetime import date
from decimal import Decimal
from io import StringIO

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.db.models import Sum
from django.test import TestCase
from django.utils import timezone

from apps.core.notifications.models import Notification
from apps.core.utils.exceptions import AuthorizationError, BusinessRuleError, StateConflictError
from apps.core.utils.testing import create_facility_staff
from apps.finance.aid_requests.models import AidRequest
from apps.finance.disbursements.models import Disbursement
from apps.finance.liquidations.models import Liquidation
from apps.finance.liquidations.services import (
    approval_history,
    attach_receipts,
    latest_liquidation_for,
    receipt_window,
    review_liquidation,
    start_liquidation,
    submit_liquidation,
)


def receipt(amount, day=10, number=''):
    return {
        'amount': amount,
        'receipt_date': date(2024, 2, day),
        'receipt_number': number,
        'file_reference': f'receipts/{number or amount}.jpg',
    }


class LiquidationTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')
        self.south = create_facility_staff('South Aid Center', 'south')
        aid_request = AidRequest.objects.create(
            beneficiary=self.north.beneficiary,
            facility=self.north.facility,
            fund_type=AidRequest.FUND_TUITION,
            amount=Decimal('500.00'),
            month=2,
            year=2024,
            state=AidRequest.STATE_APPROVED,
        )
        self.disbursement = Disbursement.objects.create(
            aid_request=aid_request,
            facility=self.north.facility,
            amount=Decimal('500.00'),
            status=Disbursement.STATUS_BENEFICIARY_RECEIVED,
            beneficiary_received_by=self.north.beneficiary,
            beneficiary_received_at=timezone.now(),
            liquidated_amount=Decimal('0.00'),
            remaining_to_liquidate=Decimal('500.00'),
        )

    def _start(self, receipts):
        return start_liquidation(
            disbursement=self.disbursement,
            actor=self.north.beneficiary,
            receipts=receipts,
        ).instance

    def _submitted(self):
        liquidation = self._start([receipt('500.00')])
        return submit_liquidation(liquidation=liquidation, actor=self.north.beneficiary).instance

    def test_small_overage_completes_without_error(self):
        liquidation = self._start([receipt('300.00', number='A1'), receipt('200.01', number='A2')])

        self.assertTrue(liquidation.is_complete)
        self.assertEqual(liquidation.status, Liquidation.STATUS_COMPLETE)
        self.assertEqual(liquidation.total_disbursed_amount, Decimal('500.00'))
        self.assertEqual(liquidation.total_receipt_amount, Decimal('500.01'))
        self.assertEqual(liquidation.remaining_amount, Decimal('0.00'))
        self.assertEqual(liquidation.completion_percentage, Decimal('100.00'))
        self.assertFalse(liquidation.can_add_more_receipts)

    def test_receipt_total_tracks_receipts(self):
        liquidation = self._start([receipt('120.00')])
        self.assertEqual(liquidation.status, Liquidation.STATUS_IN_PROGRESS)
        self.assertTrue(liquidation.can_add_more_receipts)
        self.assertEqual(liquidation.completion_percentage, Decimal('24.00'))

        liquidation = attach_receipts(
            liquidation=liquidation,
            actor=self.north.beneficiary,
            receipts=[receipt('80.00', day=11), receipt('50.50', day=12)],
        ).instance

        stored = liquidation.receipts.aggregate(total=Sum('amount'))['total']
        self.assertEqual(liquidation.total_receipt_amount, stored)
        self.assertEqual(liquidation.remaining_amount, Decimal('249.50'))

        liquidation = attach_receipts(
            liquidation=liquidation,
            actor=self.north.beneficiary,
            receipts=[receipt('249.50', day=20)],
        ).instance
        self.assertEqual(liquidation.status, Liquidation.STATUS_COMPLETE)
        self.assertEqual(liquidation.receipts.count(), 4)

    def test_receipt_outside_funding_month_is_rejected(self):
        outside = receipt('100.00')
        outside['receipt_date'] = date(2024, 3, 1)

        with self.assertRaises(BusinessRuleError):
            self._start([outside])
        self.assertFalse(Liquidation.objects.exists())

    def test_receipt_window_falls_back_to_received_month(self):
        aid_request = self.disbursement.aid_request
        aid_request.month = None
        aid_request.year = None
        aid_request.fund_type = AidRequest.FUND_OTHER
        aid_request.save(update_fields=['month', 'year', 'fund_type'])

        start, end = receipt_window(self.disbursement)
        received = timezone.localtime(self.disbursement.beneficiary_received_at).date()
        self.assertEqual(start, received.replace(day=1))
        self.assertEqual(start.month, end.month)

    def test_incomplete_liquidation_cannot_be_submitted(self):
        liquidation = self._start([receipt('100.00')])
        with self.assertRaises(BusinessRuleError):
            submit_liquidation(liquidation=liquidation, actor=self.north.beneficiary)

    def test_only_beneficiary_liquidates(self):
        with self.assertRaises(AuthorizationError):
            start_liquidation(
                disbursement=self.disbursement,
                actor=self.north.caseworker,
                receipts=[receipt('500.00')],
            )

    def test_unreceived_disbursement_cannot_be_liquidated(self):
        self.disbursement.status = Disbursement.STATUS_CASEWORKER_DISBURSED
        self.disbursement.save(update_fields=['status'])
        with self.assertRaises(StateConflictError):
            self._start([receipt('500.00')])

    def test_full_approval_liquidates_disbursement(self):
        liquidation = self._submitted()
        self.assertEqual(liquidation.status, Liquidation.STATUS_PENDING_CASEWORKER)

        with self.captureOnCommitCallbacks(execute=True):
            review_liquidation(liquidation=liquidation, actor=self.north.caseworker, level='caseworker', approve=True)
            review_liquidation(liquidation=liquidation, actor=self.north.finance, level='finance', approve=True)
            liquidation = review_liquidation(
                liquidation=liquidation,
                actor=self.north.director,
                level='director',
                approve=True,
                notes='All good',
            ).instance

        self.assertEqual(liquidation.status, Liquidation.STATUS_APPROVED)
        self.disbursement.refresh_from_db()
        self.assertEqual(self.disbursement.liquidated_amount, Decimal('500.00'))
        self.assertEqual(self.disbursement.remaining_to_liquidate, Decimal('0.00'))
        self.assertTrue(self.disbursement.fully_liquidated)
        self.assertIsNotNone(self.disbursement.fully_liquidated_at)
        self.assertEqual(self.disbursement.liquidation_percentage, Decimal('100.00'))
        self.assertFalse(self.disbursement.needs_liquidation)

        history = approval_history(liquidation)
        self.assertEqual([entry['level'] for entry in history], ['caseworker', 'finance', 'director'])
        self.assertEqual(history[-1]['notes'], 'All good')
        self.assertTrue(
            Notification.objects.filter(recipient=self.north.beneficiary, type='liquidation_approved').exists()
        )

        with self.assertRaises(BusinessRuleError):
            self._start([receipt('10.00')])

    def test_rejection_requires_reason(self):
        liquidation = self._submitted()
        with self.assertRaises(ValidationError):
            review_liquidation(liquidation=liquidation, actor=self.north.caseworker, level='caseworker', approve=False)

    def test_rejection_keeps_balance_open_for_new_liquidation(self):
        liquidation = self._submitted()
        review_liquidation(liquidation=liquidation, actor=self.north.caseworker, level='caseworker', approve=True)

        liquidation = review_liquidation(
            liquidation=liquidation,
            actor=self.north.finance,
            level='finance',
            approve=False,
            reason='Receipt is illegible',
        ).instance

        self.assertEqual(liquidation.status, Liquidation.STATUS_REJECTED)
        self.assertEqual(liquidation.rejected_at_level, 'finance')
        self.assertEqual(approval_history(liquidation)[-1]['decision'], 'rejected')
        self.disbursement.refresh_from_db()
        self.assertEqual(self.disbursement.liquidated_amount, Decimal('0.00'))
        self.assertEqual(self.disbursement.remaining_to_liquidate, Decimal('500.00'))
        self.assertFalse(self.disbursement.fully_liquidated)

        with self.assertRaises(StateConflictError):
            review_liquidation(liquidation=liquidation, actor=self.north.director, level='director', approve=True)

        retry = self._start([receipt('500.00', number='R2')])
        self.assertEqual(latest_liquidation_for(self.disbursement), retry)

    def test_reviews_follow_level_order(self):
        liquidation = self._submitted()
        with self.assertRaises(StateConflictError):
            review_liquidation(liquidation=liquidation, actor=self.north.finance, level='finance', approve=True)

    def test_reviewer_from_other_facility_is_denied(self):
        liquidation = self._submitted()
        review_liquidation(liquidation=liquidation, actor=self.north.caseworker, level='caseworker', approve=True)

        with self.assertRaises(AuthorizationError):
            review_liquidation(liquidation=liquidation, actor=self.south.finance, level='finance', approve=True)
        liquidation.refresh_from_db()
        self.assertEqual(liquidation.status, Liquidation.STATUS_PENDING_FINANCE)

    def test_fix_command_restores_totals(self):
        liquidation = self._submitted()
        for level, actor in (('caseworker', self.north.caseworker), ('finance', self.north.finance), ('director', self.north.director)):
            review_liquidation(liquidation=liquidation, actor=actor, level=level, approve=True)
        Disbursement.objects.filter(pk=self.disbursement.pk).update(
            liquidated_amount=Decimal('0.00'),
            remaining_to_liquidate=Decimal('500.00'),
            fully_liquidated=False,
        )
        out = StringIO()

        call_command('fix_disbursement_liquidation_status', stdout=out)

        self.disbursement.refresh_from_db()
        self.assertTrue(self.disbursement.fully_liquidated)
        self.assertIn('Fixed 1 of 1 disbursement(s).', out.getvalue())
