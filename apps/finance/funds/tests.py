from decimal import Decimal

from django.core.exceptions import ValidationError
from django.test import TestCase, override_settings

from apps.core.users.models import AuditLog
from apps.core.utils.exceptions import AuthorizationError, InsufficientFundsError
from apps.core.utils.testing import create_facility_staff
from apps.finance.funds.models import FundAllocation
from apps.finance.funds.services import (
    archive_fund_allocation,
    available_for_type,
    available_with_fallback,
    candidate_pools,
    create_fund_allocation,
    deduct,
    facility_fund_summary,
    plan_deduction,
    update_fund_allocation,
)


class FundAllocationManagementTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')
        self.south = create_facility_staff('South Aid Center', 'south')

    def _create(self, fund_type='tuition', amount='1000.00', actor=None):
        return create_fund_allocation(
            facility=self.north.facility,
            fund_type=fund_type,
            sponsor_name='City Foundation',
            allocated_amount=amount,
            created_by=actor or self.north.finance,
        ).instance

    def test_new_allocation_starts_fully_available(self):
        with self.captureOnCommitCallbacks(execute=True):
            allocation = self._create()

        self.assertEqual(allocation.utilized_amount, Decimal('0.00'))
        self.assertEqual(allocation.remaining_amount, Decimal('1000.00'))
        self.assertTrue(AuditLog.objects.filter(event_type='fund_allocation_created').exists())

    def test_director_cannot_manage_allocations(self):
        with self.assertRaises(AuthorizationError):
            self._create(actor=self.north.director)

        allocation = self._create()
        with self.assertRaises(AuthorizationError):
            update_fund_allocation(allocation=allocation, updated_by=self.north.director, allocated_amount='5000.00')
        with self.assertRaises(AuthorizationError):
            archive_fund_allocation(allocation=allocation, archived_by=self.north.director)

        allocation.refresh_from_db()
        self.assertEqual(allocation.allocated_amount, Decimal('1000.00'))
        self.assertTrue(allocation.is_active)
        self.assertEqual(FundAllocation.objects.count(), 1)
        audits = AuditLog.objects.filter(event_type='fund_allocation_unauthorized_attempt', user=self.north.director)
        self.assertEqual(audits.count(), 3)

    def test_other_roles_and_facilities_are_denied(self):
        with self.assertRaises(AuthorizationError):
            self._create(actor=self.north.caseworker)
        with self.assertRaises(AuthorizationError):
            self._create(actor=self.south.finance)
        self.assertFalse(FundAllocation.objects.exists())
        self.assertEqual(AuditLog.objects.filter(event_type='fund_allocation_unauthorized_attempt').count(), 2)

    def test_allocated_amount_must_be_positive(self):
        with self.assertRaises(ValidationError):
            self._create(amount='0')

    def test_update_recomputes_remaining(self):
        allocation = self._create()
        allocation = update_fund_allocation(
            allocation=allocation,
            updated_by=self.north.finance,
            allocated_amount='1500.00',
            utilized_amount='400.00',
        ).instance

        self.assertEqual(allocation.remaining_amount, Decimal('1100.00'))
        self.assertEqual(allocation.utilization_percentage, Decimal('26.67'))

    def test_over_utilization_clamps_remaining_at_zero(self):
        allocation = self._create(amount='100.00')
        allocation = update_fund_allocation(
            allocation=allocation,
            updated_by=self.north.finance,
            utilized_amount='150.00',
        ).instance

        self.assertTrue(allocation.is_over_utilized)
        self.assertEqual(allocation.remaining_amount, Decimal('0.00'))

    def test_unknown_fields_cannot_be_updated(self):
        allocation = self._create()
        with self.assertRaises(ValidationError):
            update_fund_allocation(allocation=allocation, updated_by=self.north.finance, facility=self.south.facility)

    def test_archived_allocation_is_not_available(self):
        allocation = self._create()
        archive_fund_allocation(allocation=allocation, archived_by=self.north.finance)

        self.assertEqual(available_for_type(facility=self.north.facility, fund_type='tuition'), Decimal('0.00'))
        summary = facility_fund_summary(facility=self.north.facility, include_inactive=True)
        self.assertEqual(summary['total_allocated'], Decimal('1000.00'))


class FundDeductionTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')
        self.facility = self.north.facility
        self.small_tuition = self._pool('tuition', '300.00')
        self.large_tuition = self._pool('tuition', '700.00')
        self.general = self._pool('general', '500.00')
        self._pool('cola', '900.00')

    def _pool(self, fund_type, amount):
        return FundAllocation.objects.create(
            facility=self.facility,
            fund_type=fund_type,
            sponsor_name=f'{fund_type} sponsor',
            allocated_amount=amount,
        )

    def test_pools_ordered_by_type_then_largest_remaining(self):
        pools = candidate_pools(facility=self.facility, fund_type='tuition')
        self.assertEqual(pools, [self.large_tuition, self.small_tuition, self.general])

    def test_available_with_fallback_includes_general(self):
        self.assertEqual(available_for_type(facility=self.facility, fund_type='tuition'), Decimal('1000.00'))
        self.assertEqual(available_with_fallback(facility=self.facility, fund_type='tuition'), Decimal('1500.00'))

    def test_plan_consumes_specific_pools_before_general(self):
        pools = candidate_pools(facility=self.facility, fund_type='tuition')
        plan = plan_deduction(pools, '1200.00')

        self.assertEqual(
            [(pool.pk, take) for pool, take in plan],
            [
                (self.large_tuition.pk, Decimal('700.00')),
                (self.small_tuition.pk, Decimal('300.00')),
                (self.general.pk, Decimal('200.00')),
            ],
        )

    def test_plan_fails_without_touching_pools(self):
        pools = candidate_pools(facility=self.facility, fund_type='tuition')
        with self.assertRaises(InsufficientFundsError) as raised:
            plan_deduction(pools, '1600.00')

        self.assertEqual(raised.exception.requested, Decimal('1600.00'))
        self.assertEqual(raised.exception.available, Decimal('1500.00'))
        self.assertEqual(sum(pool.remaining_amount for pool in pools), Decimal('1500.00'))

    def test_deduct_updates_utilized_and_remaining(self):
        deltas = deduct(facility=self.facility, fund_type='tuition', amount='750.00')

        self.assertEqual([delta['amount'] for delta in deltas], [Decimal('700.00'), Decimal('50.00')])
        self.large_tuition.refresh_from_db()
        self.small_tuition.refresh_from_db()
        self.assertEqual(self.large_tuition.remaining_amount, Decimal('0.00'))
        self.assertEqual(self.small_tuition.utilized_amount, Decimal('50.00'))
        self.assertEqual(self.small_tuition.remaining_amount, Decimal('250.00'))

    def test_repeated_deductions_never_go_negative(self):
        for amount in ('400.00', '400.00', '400.00', '300.00'):
            try:
                deduct(facility=self.facility, fund_type='tuition', amount=amount)
            except InsufficientFundsError:
                pass

        for allocation in FundAllocation.objects.all():
            self.assertGreaterEqual(allocation.remaining_amount, Decimal('0.00'))
            self.assertLessEqual(allocation.utilized_amount, allocation.allocated_amount)
        self.assertEqual(available_with_fallback(facility=self.facility, fund_type='tuition'), Decimal('0.00'))

    @override_settings(GENERAL_FUND_TYPE='other')
    def test_fallback_pool_follows_settings(self):
        other = self._pool('other', '250.00')
        pools = candidate_pools(facility=self.facility, fund_type='tuition')
        self.assertEqual(pools[-1], other)
        self.assertNotIn(self.general, pools)

    def test_summary_groups_by_type(self):
        deduct(facility=self.facility, fund_type='cola', amount='100.00')
        summary = facility_fund_summary(facility=self.facility)

        self.assertEqual(summary['total_allocated'], Decimal('2400.00'))
        self.assertEqual(summary['total_utilized'], Decimal('100.00'))
        self.assertEqual(summary['by_type']['cola']['remaining'], Decimal('800.00'))
        self.assertEqual(summary['by_type']['tuition']['allocated'], Decimal('1000.00'))
        self.assertEqual(summary['over_utilized_ids'], [])

    def test_summary_accepts_facility_id(self):
        by_id = facility_fund_summary(facility=self.facility.pk)

        self.assertEqual(by_id, facility_fund_summary(facility=self.facility))
        self.assertEqual(facility_fund_summary(facility=None)['total_allocated'], Decimal('0.00'))
