from django.contrib.auth.models import AbstractUser, UserManager as DjangoUserManager
from django.db import models

from apps.core.facilities.models import Facility


class UserManager(DjangoUserManager):
    def create_superuser(self, username, email=None, password=None, **extra_fields):
        extra_fields.setdefault('role', 'superadmin')
        extra_fields['facility'] = None
        return super().create_superuser(username, email=email, password=password, **extra_fields)


class User(AbstractUser):
    ROLE_SUPERADMIN = 'superadmin'
    ROLE_DIRECTOR = 'director'
    ROLE_FINANCE = 'finance'
    ROLE_CASEWORKER = 'caseworker'
    ROLE_BENEFICIARY = 'beneficiary'

    ROLE_CHOICES = (
        (ROLE_SUPERADMIN, 'Super Admin'),
        (ROLE_DIRECTOR, 'Director'),
        (ROLE_FINANCE, 'Finance'),
        (ROLE_CASEWORKER, 'Caseworker'),
        (ROLE_BENEFICIARY, 'Beneficiary'),
    )

    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_BENEFICIARY)
    facility = models.ForeignKey(
        Facility,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='members',
    )
    caseworker = models.ForeignKey(
        'self',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assigned_beneficiaries',
        limit_choices_to={'role': ROLE_CASEWORKER},
    )
    is_scholar = models.BooleanField(default=False)
    phone = models.CharField(max_length=20, blank=True)

    objects = UserManager()

    class Meta:
        indexes = [
            models.Index(fields=['role'], name='users_user_role_36d76d_idx'),
            models.Index(fields=['facility', 'role'], name='users_user_facilit_5b1e0a_idx'),
        ]

    def save(self, *args, **kwargs):
        if self.is_superuser and self.role != self.ROLE_SUPERADMIN:
            self.role = self.ROLE_SUPERADMIN

        if self.role == self.ROLE_SUPERADMIN:
            self.facility = None
        elif not self.facility_id:
            raise ValueError("Non-superadmin users must be assigned to a facility.")

        if self.role != self.ROLE_BENEFICIARY:
            self.caseworker = None

        super().save(*args, **kwargs)

    @property
    def full_name(self):
        return self.get_full_name() or self.username

    def __str__(self):
        return f"{self.username} ({self.role})"


class AuditLog(models.Model):
    RISK_LOW = 'low'
    RISK_MEDIUM = 'medium'
    RISK_HIGH = 'high'
    RISK_CRITICAL = 'critical'
    RISK_CHOICES = (
        (RISK_LOW, 'Low'),
        (RISK_MEDIUM, 'Medium'),
        (RISK_HIGH, 'High'),
        (RISK_CRITICAL, 'Critical'),
    )

    facility = models.ForeignKey(
        Facility,
        on_delete=models.SET_NULL,
        null=True,
        blank=True
    )
    user = models.ForeignKey(
        User,
        on_delete=models.SET_NULL,
        null=True,
        blank=True
    )

    event_type = models.CharField(max_length=100)
    description = models.CharField(max_length=255, blank=True)
    entity_type = models.CharField(max_length=100, blank=True)
    entity_id = models.CharField(max_length=64, blank=True)
    payload = models.JSONField(default=dict, blank=True)
    risk_level = models.CharField(max_length=10, choices=RISK_CHOICES, default=RISK_LOW)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['facility', '-created_at'], name='users_audit_facilit_1a2b3c_idx'),
            models.Index(fields=['user', '-created_at'], name='users_audit_user_id_4d5e6f_idx'),
            models.Index(fields=['event_type'], name='users_audit_event_t_7a8b9c_idx'),
            models.Index(fields=['entity_type', 'entity_id'], name='users_audit_entity__0d1e2f_idx'),
        ]

    def __str__(self):
        return f"{self.event_type} by {self.user_id or 'system'}"
