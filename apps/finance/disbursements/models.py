from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.facilities.models import Facility
from apps.core.utils.managers import FacilityManager
from apps.core.utils.money import ZERO, liquidation_epsilon, quantize
from apps.finance.aid_requests.models import AidRequest


class Disbursement(models.Model):
    STATUS_FINANCE_DISBURSED = 'finance_disbursed'
    STATUS_CASEWORKER_RECEIVED = 'caseworker_received'
    STATUS_CASEWORKER_DISBURSED = 'caseworker_disbursed'
    STATUS_BENEFICIARY_RECEIVED = 'beneficiary_received'
    STATUS_CHOICES = (
        (STATUS_FINANCE_DISBURSED, 'Disbursed by finance'),
        (STATUS_CASEWORKER_RECEIVED, 'Received by caseworker'),
        (STATUS_CASEWORKER_DISBURSED, 'Handed to beneficiary'),
        (STATUS_BENEFICIARY_RECEIVED, 'Received by beneficiary'),
    )

    aid_request = models.OneToOneField(
        AidRequest,
        on_delete=models.CASCADE,
        related_name='disbursement',
    )
    facility = models.ForeignKey(
        Facility,
        on_delete=models.CASCADE,
        related_name='disbursements',
    )
    objects = FacilityManager()

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default=STATUS_FINANCE_DISBURSED)
    notes = models.TextField(blank=True)

    finance_disbursed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='finance_disbursements',
    )
    finance_disbursed_at = models.DateTimeField(null=True, blank=True)
    caseworker_received_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='caseworker_received_disbursements',
    )
    caseworker_received_at = models.DateTimeField(null=True, blank=True)
    caseworker_disbursed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='caseworker_handed_disbursements',
    )
    caseworker_disbursed_at = models.DateTimeField(null=True, blank=True)
    beneficiary_received_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='confirmed_disbursements',
    )
    beneficiary_received_at = models.DateTimeField(null=True, blank=True)

    # Liquidation bookkeeping, initialised when the beneficiary confirms receipt.
    liquidated_amount = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    remaining_to_liquidate = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    fully_liquidated = models.BooleanField(default=False)
    fully_liquidated_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name='disbursement_amount_positive',
            ),
        ]
        indexes = [
            models.Index(fields=['facility', 'status'], name='disburseme_facilit_2b3c4d_idx'),
        ]

    @property
    def beneficiary(self):
        return self.aid_request.beneficiary

    @property
    def fund_type(self):
        return self.aid_request.fund_type

    @property
    def is_received(self):
        return self.status == self.STATUS_BENEFICIARY_RECEIVED

    @property
    def liquidation_percentage(self):
        if not self.amount or self.liquidated_amount is None:
            return Decimal('0.00')
        return quantize(min(self.liquidated_amount / self.amount * 100, Decimal('100')))

    @property
    def needs_liquidation(self):
        return self.is_received and not self.fully_liquidated

    def start_liquidation_tracking(self):
        self.liquidated_amount = ZERO
        self.remaining_to_liquidate = quantize(self.amount)
        self.fully_liquidated = False
        self.fully_liquidated_at = None
        return ['liquidated_amount', 'remaining_to_liquidate', 'fully_liquidated', 'fully_liquidated_at']

    def apply_liquidated_total(self, total):
        """Set the liquidation fields from the sum of approved liquidations."""
        total = quantize(total)
        remaining = quantize(self.amount) - total
        self.liquidated_amount = total
        self.remaining_to_liquidate = max(ZERO, remaining)
        was_fully_liquidated = self.fully_liquidated
        self.fully_liquidated = remaining <= liquidation_epsilon()
        if self.fully_liquidated and not was_fully_liquidated:
            self.fully_liquidated_at = timezone.now()
        elif not self.fully_liquidated:
            self.fully_liquidated_at = None
        return ['liquidated_amount', 'remaining_to_liquidate', 'fully_liquidated', 'fully_liquidated_at']

    def __str__(self):
        return f"Disbursement #{self.pk} {self.amount} ({self.status})"
