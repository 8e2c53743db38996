from datetime import timedelta
from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.utils.periods import add_months_to_date


class SubscriptionPlan(models.Model):
    name = models.CharField(max_length=100, unique=True)
    price = models.DecimalField(max_digits=10, decimal_places=2)
    duration_in_months = models.PositiveIntegerField(default=0)
    duration_in_days = models.PositiveIntegerField(default=0)
    description = models.TextField(blank=True)
    is_archived = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['price', 'name']
        constraints = [
            models.CheckConstraint(
                condition=Q(price__gte=0),
                name='subscription_plan_price_non_negative',
            ),
        ]

    @property
    def has_zero_duration(self):
        return not self.duration_in_months and not self.duration_in_days

    def end_from(self, start):
        """Return the end date of one plan period starting at ``start``."""
        return add_months_to_date(start, self.duration_in_months) + timedelta(days=self.duration_in_days)

    def __str__(self):
        return f"{self.name} ({self.price})"


class Subscription(models.Model):
    STATUS_ACTIVE = 'active'
    STATUS_EXPIRED = 'expired'
    STATUS_CHOICES = (
        (STATUS_ACTIVE, 'Active'),
        (STATUS_EXPIRED, 'Expired'),
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='subscriptions',
    )
    plan = models.ForeignKey(
        SubscriptionPlan,
        on_delete=models.PROTECT,
        related_name='subscriptions',
    )
    start_date = models.DateField()
    end_date = models.DateField()
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-end_date', '-id']

    @property
    def is_active(self):
        return self.status == self.STATUS_ACTIVE and self.end_date >= timezone.localdate()

    def __str__(self):
        return f"{self.user_id} - {self.plan_id} until {self.end_date} ({self.status})"


class SubscriptionTransaction(models.Model):
    STATUS_PENDING = 'pending'
    STATUS_PAID = 'paid'
    STATUS_FAILED = 'failed'
    STATUS_CHOICES = (
        (STATUS_PENDING, 'Pending'),
        (STATUS_PAID, 'Paid'),
        (STATUS_FAILED, 'Failed'),
    )

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='subscription_transactions',
    )
    subscription = models.ForeignKey(
        Subscription,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='transactions',
    )
    old_plan = models.ForeignKey(
        SubscriptionPlan,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='outgoing_transactions',
    )
    new_plan = models.ForeignKey(
        SubscriptionPlan,
        on_delete=models.PROTECT,
        related_name='incoming_transactions',
    )
    payment_method = models.CharField(max_length=50, blank=True)
    amount_paid = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal('0.00'))
    transaction_date = models.DateTimeField(default=timezone.now)
    payment_intent_id = models.CharField(max_length=255, blank=True)
    provider_txn_id = models.CharField(max_length=255, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    notes = models.TextField(blank=True)

    class Meta:
        ordering = ['-transaction_date', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['payment_intent_id'],
                condition=Q(status='paid') & ~Q(payment_intent_id=''),
                name='unique_paid_payment_intent',
            ),
        ]

    def __str__(self):
        return f"{self.payment_intent_id or self.pk} {self.amount_paid} ({self.status})"
