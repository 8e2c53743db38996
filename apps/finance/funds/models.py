from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from apps.core.facilities.models import Facility
from apps.core.utils.managers import FacilityManager
from apps.core.utils.money import ZERO, quantize


class FundAllocation(models.Model):
    TYPE_TUITION = 'tuition'
    TYPE_COLA = 'cola'
    TYPE_OTHER = 'other'
    TYPE_GENERAL = 'general'
    TYPE_CHOICES = (
        (TYPE_TUITION, 'Tuition'),
        (TYPE_COLA, 'COLA'),
        (TYPE_OTHER, 'Other'),
        (TYPE_GENERAL, 'General'),
    )

    facility = models.ForeignKey(
        Facility,
        on_delete=models.CASCADE,
        related_name='fund_allocations',
    )
    objects = FacilityManager()

    fund_type = models.CharField(max_length=20, choices=TYPE_CHOICES)
    sponsor_name = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    allocated_amount = models.DecimalField(max_digits=12, decimal_places=2)
    utilized_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    remaining_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    is_active = models.BooleanField(default=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_fund_allocations',
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['fund_type', '-remaining_amount', 'id']
        constraints = [
            models.CheckConstraint(
                condition=Q(allocated_amount__gte=0),
                name='fund_allocation_allocated_non_negative',
            ),
            models.CheckConstraint(
                condition=Q(utilized_amount__gte=0),
                name='fund_allocation_utilized_non_negative',
            ),
            models.CheckConstraint(
                condition=Q(remaining_amount__gte=0),
                name='fund_allocation_remaining_non_negative',
            ),
        ]
        indexes = [
            models.Index(fields=['facility', 'fund_type', 'is_active'], name='funds_funda_facilit_9a8b7c_idx'),
        ]

    def clean(self):
        super().clean()
        if self.allocated_amount is not None and self.allocated_amount <= 0:
            raise ValidationError({'allocated_amount': 'Allocated amount must be greater than zero.'})
        if self.utilized_amount is not None and self.utilized_amount < 0:
            raise ValidationError({'utilized_amount': 'Utilized amount cannot be negative.'})

    def recompute_remaining(self):
        remaining = quantize(self.allocated_amount) - quantize(self.utilized_amount)
        self.remaining_amount = max(ZERO, remaining)
        return self.remaining_amount

    def save(self, *args, **kwargs):
        self.recompute_remaining()
        update_fields = kwargs.get('update_fields')
        if update_fields is not None and 'remaining_amount' not in update_fields:
            kwargs['update_fields'] = list(update_fields) + ['remaining_amount']
        super().save(*args, **kwargs)

    @property
    def utilization_percentage(self):
        if not self.allocated_amount:
            return Decimal('0.00')
        return (self.utilized_amount / self.allocated_amount * Decimal('100')).quantize(Decimal('0.01'))

    @property
    def is_over_utilized(self):
        return self.utilized_amount > self.allocated_amount

    def __str__(self):
        return f"{self.sponsor_name} - {self.fund_type} ({self.remaining_amount}/{self.allocated_amount})"
