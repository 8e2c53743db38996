from django.conf import settings
from django.db import models
from django.db.models import Q


class AttendanceRecord(models.Model):
    STATUS_PRESENT = 'present'
    STATUS_ABSENT = 'absent'
    STATUS_EXCUSED = 'excused'
    STATUS_CHOICES = (
        (STATUS_PRESENT, 'Present'),
        (STATUS_ABSENT, 'Absent'),
        (STATUS_EXCUSED, 'Excused'),
    )

    DAY_SUNDAY = 'sunday'
    DAY_KEYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')

    beneficiary = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name='attendance_records',
    )
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='recorded_attendance',
    )
    date = models.DateField()
    day_of_week = models.CharField(max_length=10, editable=False)
    year = models.PositiveIntegerField(editable=False)
    month = models.PositiveIntegerField(editable=False)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PRESENT)
    notes = models.CharField(max_length=500, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-date']
        constraints = [
            models.UniqueConstraint(
                fields=['beneficiary', 'date'],
                name='unique_beneficiary_attendance_per_date',
            ),
            models.CheckConstraint(
                condition=Q(month__gte=1) & Q(month__lte=12),
                name='attendance_record_month_range',
            ),
        ]
        indexes = [
            models.Index(fields=['beneficiary', 'year', 'month'], name='attendance__benefic_6a1b2c_idx'),
            models.Index(fields=['beneficiary', 'day_of_week', 'status'], name='attendance__benefic_3d4e5f_idx'),
        ]

    def save(self, *args, **kwargs):
        if self.date:
            self.day_of_week = self.DAY_KEYS[self.date.weekday()]
            self.year = self.date.year
            self.month = self.date.month
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.beneficiary_id} - {self.date} ({self.status})"
