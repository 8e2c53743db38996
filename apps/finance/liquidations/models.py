from decimal import Decimal

from django.conf import settings
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.facilities.models import Facility
from apps.core.utils.managers import FacilityManager
from apps.core.utils.money import ZERO, liquidation_epsilon, quantize, sum_amount
from apps.finance.disbursements.models import Disbursement


class Liquidation(models.Model):
    STATUS_IN_PROGRESS = 'in_progress'
    STATUS_COMPLETE = 'complete'
    STATUS_PENDING_CASEWORKER = 'pending_caseworker_approval'
    STATUS_PENDING_FINANCE = 'pending_finance_approval'
    STATUS_PENDING_DIRECTOR = 'pending_director_approval'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'
    STATUS_CHOICES = (
        (STATUS_IN_PROGRESS, 'In progress'),
        (STATUS_COMPLETE, 'Complete'),
        (STATUS_PENDING_CASEWORKER, 'Pending caseworker approval'),
        (STATUS_PENDING_FINANCE, 'Pending finance approval'),
        (STATUS_PENDING_DIRECTOR, 'Pending director approval'),
        (STATUS_APPROVED, 'Approved'),
        (STATUS_REJECTED, 'Rejected'),
    )
    EDITABLE_STATUSES = (STATUS_IN_PROGRESS, STATUS_COMPLETE)

    LEVEL_CASEWORKER = 'caseworker'
    LEVEL_FINANCE = 'finance'
    LEVEL_DIRECTOR = 'director'
    LEVELS = (LEVEL_CASEWORKER, LEVEL_FINANCE, LEVEL_DIRECTOR)
    PENDING_STATUS_FOR_LEVEL = {
        LEVEL_CASEWORKER: STATUS_PENDING_CASEWORKER,
        LEVEL_FINANCE: STATUS_PENDING_FINANCE,
        LEVEL_DIRECTOR: STATUS_PENDING_DIRECTOR,
    }

    disbursement = models.ForeignKey(
        Disbursement,
        on_delete=models.CASCADE,
        related_name='liquidations',
    )
    facility = models.ForeignKey(
        Facility,
        on_delete=models.CASCADE,
        related_name='liquidations',
    )
    objects = FacilityManager()

    status = models.CharField(max_length=30, choices=STATUS_CHOICES, default=STATUS_IN_PROGRESS)
    total_disbursed_amount = models.DecimalField(max_digits=12, decimal_places=2)
    total_receipt_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    remaining_amount = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    is_complete = models.BooleanField(default=False)
    completed_at = models.DateTimeField(null=True, blank=True)
    submitted_at = models.DateTimeField(null=True, blank=True)

    rejected_at_level = models.CharField(max_length=20, blank=True)
    rejection_reason = models.TextField(blank=True)

    caseworker_reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='caseworker_liquidation_reviews',
    )
    caseworker_reviewed_at = models.DateTimeField(null=True, blank=True)
    caseworker_notes = models.TextField(blank=True)
    finance_reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='finance_liquidation_reviews',
    )
    finance_reviewed_at = models.DateTimeField(null=True, blank=True)
    finance_notes = models.TextField(blank=True)
    director_reviewed_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='director_liquidation_reviews',
    )
    director_reviewed_at = models.DateTimeField(null=True, blank=True)
    director_notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.CheckConstraint(
                condition=Q(remaining_amount__gte=0),
                name='liquidation_remaining_non_negative',
            ),
        ]
        indexes = [
            models.Index(fields=['disbursement', 'status'], name='liquidatio_disburs_7c8d9e_idx'),
            models.Index(fields=['facility', 'status'], name='liquidatio_facilit_0f1a2b_idx'),
        ]

    @property
    def beneficiary(self):
        return self.disbursement.aid_request.beneficiary

    @property
    def can_add_more_receipts(self):
        return self.status in self.EDITABLE_STATUSES and self.remaining_amount > liquidation_epsilon()

    @property
    def is_pending_approval(self):
        return self.status in self.PENDING_STATUS_FOR_LEVEL.values()

    @property
    def completion_percentage(self):
        if not self.total_disbursed_amount:
            return Decimal('0.00')
        percentage = self.total_receipt_amount / self.total_disbursed_amount * 100
        return quantize(min(percentage, Decimal('100')))

    def recalculate_totals(self):
        """Recompute receipt totals from the stored receipts."""
        self.total_receipt_amount = sum_amount(self.receipts.all(), 'amount')
        remaining = quantize(self.total_disbursed_amount) - self.total_receipt_amount
        self.remaining_amount = max(ZERO, remaining)
        self.is_complete = remaining <= liquidation_epsilon()
        if self.status in self.EDITABLE_STATUSES:
            self.status = self.STATUS_COMPLETE if self.is_complete else self.STATUS_IN_PROGRESS
        if self.is_complete and self.completed_at is None:
            self.completed_at = timezone.now()
        elif not self.is_complete:
            self.completed_at = None
        return ['total_receipt_amount', 'remaining_amount', 'is_complete', 'status', 'completed_at']

    def approval_history(self):
        history = []
        for level in self.LEVELS:
            reviewed_at = getattr(self, f'{level}_reviewed_at')
            if reviewed_at is None:
                continue
            rejected = self.status == self.STATUS_REJECTED and self.rejected_at_level == level
            history.append(
                {
                    'level': level,
                    'reviewed_by_id': getattr(self, f'{level}_reviewed_by_id'),
                    'reviewed_at': reviewed_at,
                    'decision': 'rejected' if rejected else 'approved',
                    'notes': self.rejection_reason if rejected else getattr(self, f'{level}_notes'),
                }
            )
        return history

    def __str__(self):
        return f"Liquidation #{self.pk} {self.total_receipt_amount}/{self.total_disbursed_amount} ({self.status})"


class LiquidationReceipt(models.Model):
    liquidation = models.ForeignKey(
        Liquidation,
        on_delete=models.CASCADE,
        related_name='receipts',
    )
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    receipt_date = models.DateField()
    receipt_number = models.CharField(max_length=100, blank=True)
    description = models.CharField(max_length=255, blank=True)
    file_reference = models.CharField(max_length=500)
    uploaded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='uploaded_receipts',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['receipt_date', 'id']
        constraints = [
            models.CheckConstraint(
                condition=Q(amount__gt=0),
                name='liquidation_receipt_amount_positive',
            ),
        ]

    def __str__(self):
        return f"Receipt {self.receipt_number or self.pk} - {self.amount}"
