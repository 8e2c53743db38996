from collections import namedtuple
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from apps.core.facilities.models import Facility
from apps.core.utils.managers import FacilityManager

StageDecision = namedtuple('StageDecision', ['level', 'decision', 'decided_by_id', 'decided_at', 'notes'])


class AidRequest(models.Model):
    FUND_TUITION = 'tuition'
    FUND_COLA = 'cola'
    FUND_OTHER = 'other'
    FUND_CHOICES = (
        (FUND_TUITION, 'Tuition'),
        (FUND_COLA, 'COLA'),
        (FUND_OTHER, 'Other'),
    )
    PERIODIC_FUND_TYPES = (FUND_TUITION, FUND_COLA)

    STATE_PENDING_CASEWORKER = 'pending_caseworker'
    STATE_PENDING_FINANCE = 'pending_finance'
    STATE_PENDING_DIRECTOR = 'pending_director'
    STATE_APPROVED = 'approved'
    STATE_REJECTED = 'rejected'
    STATE_CHOICES = (
        (STATE_PENDING_CASEWORKER, 'Pending caseworker review'),
        (STATE_PENDING_FINANCE, 'Pending finance review'),
        (STATE_PENDING_DIRECTOR, 'Pending director review'),
        (STATE_APPROVED, 'Approved'),
        (STATE_REJECTED, 'Rejected'),
    )
    PENDING_STATES = (STATE_PENDING_CASEWORKER, STATE_PENDING_FINANCE, STATE_PENDING_DIRECTOR)

    STATUS_PENDING = 'pending'
    STATUS_APPROVED = 'approved'
    STATUS_REJECTED = 'rejected'

    LEVEL_CASEWORKER = 'caseworker'
    LEVEL_FINANCE = 'finance'
    LEVEL_DIRECTOR = 'director'
    LEVELS = (LEVEL_CASEWORKER, LEVEL_FINANCE, LEVEL_DIRECTOR)
    STAGE_DONE = 'done'

    DECISION_PENDING = 'pending'
    DECISION_APPROVED = 'approved'
    DECISION_REJECTED = 'rejected'
    DECISION_CHOICES = (
        (DECISION_PENDING, 'Pending'),
        (DECISION_APPROVED, 'Approved'),
        (DECISION_REJECTED, 'Rejected'),
    )

    beneficiary = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='aid_requests',
    )
    facility = models.ForeignKey(
        Facility,
        on_delete=models.CASCADE,
        related_name='aid_requests',
    )
    objects = FacilityManager()

    fund_type = models.CharField(max_length=20, choices=FUND_CHOICES)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    purpose = models.TextField(blank=True)
    month = models.PositiveIntegerField(null=True, blank=True)
    year = models.PositiveIntegerField(null=True, blank=True)
    state = models.CharField(max_length=30, choices=STATE_CHOICES, default=STATE_PENDING_CASEWORKER)
    rejected_at_level = models.CharField(max_length=20, blank=True)

    caseworker_decision = models.CharField(max_length=10, choices=DECISION_CHOICES, default=DECISION_PENDING)
    caseworker_decided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='caseworker_aid_decisions',
    )
    caseworker_decided_at = models.DateTimeField(null=True, blank=True)
    caseworker_notes = models.TextField(blank=True)

    finance_decision = models.CharField(max_length=10, choices=DECISION_CHOICES, default=DECISION_PENDING)
    finance_decided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='finance_aid_decisions',
    )
    finance_decided_at = models.DateTimeField(null=True, blank=True)
    finance_notes = models.TextField(blank=True)

    director_decision = models.CharField(max_length=10, choices=DECISION_CHOICES, default=DECISION_PENDING)
    director_decided_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='director_aid_decisions',
    )
    director_decided_at = models.DateTimeField(null=True, blank=True)
    director_notes = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-created_at', '-id']
        constraints = [
            models.UniqueConstraint(
                fields=['beneficiary', 'fund_type', 'year', 'month'],
                condition=Q(month__isnull=False) & ~Q(state='rejected'),
                name='unique_open_aid_request_per_period',
            ),
            models.CheckConstraint(
                condition=Q(amount__gte=0),
                name='aid_request_amount_non_negative',
            ),
        ]
        indexes = [
            models.Index(fields=['facility', 'state'], name='aid_request_facilit_5e6f7a_idx'),
            models.Index(fields=['beneficiary', 'fund_type', 'state'], name='aid_request_benefic_8b9c0d_idx'),
        ]

    def clean(self):
        super().clean()
        if (self.month is None) != (self.year is None):
            raise ValidationError('Month and year must be provided together.')
        if self.month is not None and not 1 <= self.month <= 12:
            raise ValidationError({'month': 'Month must be between 1 and 12.'})

    @property
    def status(self):
        if self.state == self.STATE_APPROVED:
            return self.STATUS_APPROVED
        if self.state == self.STATE_REJECTED:
            return self.STATUS_REJECTED
        return self.STATUS_PENDING

    @property
    def stage(self):
        return {
            self.STATE_PENDING_CASEWORKER: self.LEVEL_CASEWORKER,
            self.STATE_PENDING_FINANCE: self.LEVEL_FINANCE,
            self.STATE_PENDING_DIRECTOR: self.LEVEL_DIRECTOR,
        }.get(self.state, self.STAGE_DONE)

    @property
    def is_terminal(self):
        return self.state in (self.STATE_APPROVED, self.STATE_REJECTED)

    @property
    def is_cola(self):
        return self.fund_type == self.FUND_COLA

    @property
    def period(self):
        if self.year is None or self.month is None:
            return None
        return self.year, self.month

    def decision_for(self, level):
        if level not in self.LEVELS:
            raise ValueError(f'Unknown review level: {level}')
        return StageDecision(
            level=level,
            decision=getattr(self, f'{level}_decision'),
            decided_by_id=getattr(self, f'{level}_decided_by_id'),
            decided_at=getattr(self, f'{level}_decided_at'),
            notes=getattr(self, f'{level}_notes'),
        )

    def decisions(self):
        return [self.decision_for(level) for level in self.LEVELS]

    def record_decision(self, level, *, decision, decided_by, decided_at, notes=''):
        self.decision_for(level)
        setattr(self, f'{level}_decision', decision)
        setattr(self, f'{level}_decided_by', decided_by)
        setattr(self, f'{level}_decided_at', decided_at)
        setattr(self, f'{level}_notes', notes or '')
        return [f'{level}_decision', f'{level}_decided_by', f'{level}_decided_at', f'{level}_notes']

    def __str__(self):
        return f"AidRequest #{self.pk} {self.fund_type} {self.amount or Decimal('0.00')} ({self.state})"
