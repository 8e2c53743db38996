from datetime import timedelta
from decimal import Decimal
from io import StringIO

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import TestCase
from django.utils import timezone

from apps.core.notifications.models import Notification
from apps.core.users.models import AuditLog
from apps.core.utils.periods import add_months_to_date
from apps.core.utils.testing import create_facility_staff
from apps.finance.subscriptions.models import Subscription, SubscriptionPlan, SubscriptionTransaction
from apps.finance.subscriptions.services import (
    active_subscription_for,
    expire_lapsed_subscriptions,
    finalize_paid_transaction,
)


class FinalizePaidTransactionTests(TestCase):
    def setUp(self):
        self.director = create_facility_staff('North Aid Center', 'north').director
        self.monthly = SubscriptionPlan.objects.create(name='Monthly', price=Decimal('499.00'), duration_in_months=1)
        self.trial = SubscriptionPlan.objects.create(name='Two weeks', price=Decimal('1.00'), duration_in_days=14)
        self.today = timezone.localdate()

    def test_first_payment_creates_subscription(self):
        with self.captureOnCommitCallbacks(execute=True):
            subscription = finalize_paid_transaction(
                user=self.director,
                plan=self.monthly,
                payment_intent_id='pi_001',
                payment_method='CARD',
            ).instance

        self.assertEqual(subscription.start_date, self.today)
        self.assertEqual(subscription.end_date, add_months_to_date(self.today, 1))
        self.assertTrue(subscription.is_active)
        paid = SubscriptionTransaction.objects.get(payment_intent_id='pi_001')
        self.assertEqual(paid.status, SubscriptionTransaction.STATUS_PAID)
        self.assertEqual(paid.amount_paid, Decimal('499.00'))
        self.assertIsNone(paid.old_plan)
        self.assertTrue(
            Notification.objects.filter(recipient=self.director, type='subscription_payment_received').exists()
        )

    def test_replayed_intent_is_applied_once(self):
        first = finalize_paid_transaction(user=self.director, plan=self.monthly, payment_intent_id='pi_002').instance
        second = finalize_paid_transaction(user=self.director, plan=self.monthly, payment_intent_id='pi_002').instance

        self.assertEqual(first.pk, second.pk)
        self.assertEqual(SubscriptionTransaction.objects.filter(payment_intent_id='pi_002').count(), 1)
        self.assertEqual(Subscription.objects.filter(user=self.director).count(), 1)
        second.refresh_from_db()
        self.assertEqual(second.end_date, add_months_to_date(self.today, 1))

    def test_new_payment_extends_active_subscription(self):
        finalize_paid_transaction(user=self.director, plan=self.monthly, payment_intent_id='pi_003')
        subscription = finalize_paid_transaction(
            user=self.director,
            plan=self.trial,
            payment_intent_id='pi_004',
        ).instance

        self.assertEqual(Subscription.objects.filter(user=self.director).count(), 1)
        self.assertEqual(subscription.plan, self.trial)
        self.assertEqual(subscription.start_date, self.today)
        self.assertEqual(subscription.end_date, add_months_to_date(self.today, 1) + timedelta(days=14))
        paid = SubscriptionTransaction.objects.get(payment_intent_id='pi_004')
        self.assertEqual(paid.old_plan, self.monthly)
        self.assertEqual(active_subscription_for(self.director), subscription)

    def test_expired_subscription_is_not_extended(self):
        Subscription.objects.create(
            user=self.director,
            plan=self.monthly,
            start_date=self.today - timedelta(days=60),
            end_date=self.today - timedelta(days=30),
        )

        subscription = finalize_paid_transaction(
            user=self.director,
            plan=self.trial,
            payment_intent_id='pi_005',
        ).instance

        self.assertEqual(subscription.start_date, self.today)
        self.assertEqual(subscription.end_date, self.today + timedelta(days=14))
        self.assertEqual(Subscription.objects.filter(user=self.director).count(), 2)

    def test_intent_id_is_required(self):
        with self.assertRaises(ValidationError):
            finalize_paid_transaction(user=self.director, plan=self.monthly, payment_intent_id='')
        self.assertFalse(Subscription.objects.exists())

    def test_archived_plan_cannot_be_bought(self):
        self.monthly.is_archived = True
        self.monthly.save(update_fields=['is_archived'])

        with self.assertRaises(ValidationError):
            finalize_paid_transaction(user=self.director, plan=self.monthly, payment_intent_id='pi_006')
        self.assertFalse(SubscriptionTransaction.objects.exists())
        self.assertFalse(Subscription.objects.exists())

    def test_zero_duration_plan_cannot_be_bought(self):
        empty = SubscriptionPlan.objects.create(name='Empty', price=Decimal('10.00'))
        self.assertTrue(empty.has_zero_duration)

        with self.assertRaises(ValidationError):
            finalize_paid_transaction(user=self.director, plan=empty, payment_intent_id='pi_007')
        self.assertFalse(Subscription.objects.exists())

    def test_replay_succeeds_after_plan_is_archived(self):
        first = finalize_paid_transaction(user=self.director, plan=self.monthly, payment_intent_id='pi_008').instance
        self.monthly.is_archived = True
        self.monthly.save(update_fields=['is_archived'])

        second = finalize_paid_transaction(user=self.director, plan=self.monthly, payment_intent_id='pi_008').instance

        self.assertEqual(first.pk, second.pk)


class SubscriptionExpiryTests(TestCase):
    def setUp(self):
        self.director = create_facility_staff('North Aid Center', 'north').director
        self.monthly = SubscriptionPlan.objects.create(name='Monthly', price=Decimal('499.00'), duration_in_months=1)
        self.today = timezone.localdate()
        self.lapsed = Subscription.objects.create(
            user=self.director,
            plan=self.monthly,
            start_date=self.today - timedelta(days=40),
            end_date=self.today - timedelta(days=10),
        )
        self.current = Subscription.objects.create(
            user=self.director,
            plan=self.monthly,
            start_date=self.today,
            end_date=self.today,
        )

    def test_lapsed_subscriptions_are_expired(self):
        with self.captureOnCommitCallbacks(execute=True):
            expired = expire_lapsed_subscriptions().instance

        self.assertEqual([subscription.pk for subscription in expired], [self.lapsed.pk])
        self.lapsed.refresh_from_db()
        self.current.refresh_from_db()
        self.assertEqual(self.lapsed.status, Subscription.STATUS_EXPIRED)
        self.assertEqual(self.current.status, Subscription.STATUS_ACTIVE)
        self.assertTrue(AuditLog.objects.filter(event_type='subscription_expired').exists())
        self.assertTrue(Notification.objects.filter(recipient=self.director, type='subscription_expired').exists())

    def test_sweep_is_repeatable(self):
        expire_lapsed_subscriptions()
        self.assertEqual(expire_lapsed_subscriptions().instance, [])

    def test_dry_run_changes_nothing(self):
        out = StringIO()
        call_command('expire_subscriptions', dry_run=True, stdout=out)

        self.lapsed.refresh_from_db()
        self.assertEqual(self.lapsed.status, Subscription.STATUS_ACTIVE)
        self.assertIn('Found 1 lapsed subscription(s).', out.getvalue())

    def test_expire_subscriptions_command(self):
        out = StringIO()
        call_command('expire_subscriptions', stdout=out)

        self.lapsed.refresh_from_db()
        self.assertEqual(self.lapsed.status, Subscription.STATUS_EXPIRED)
        self.assertIn('Expired 1 subscription(s).', out.getvalue())
