from uuid import uuid4

from django.conf import settings
from django.db import models
from django.utils.text import slugify


class Facility(models.Model):
    uuid = models.UUIDField(default=uuid4, editable=False, db_index=True)
    name = models.CharField(max_length=255)
    code = models.CharField(max_length=40, unique=True, null=True, blank=True)
    address = models.TextField(blank=True)
    phone = models.CharField(max_length=20, blank=True)
    email = models.EmailField(blank=True)
    director = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='owned_facilities',
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['name']
        verbose_name_plural = 'facilities'
        indexes = [
            models.Index(fields=['code'], name='facilities__code_3c1d1e_idx'),
            models.Index(fields=['is_active'], name='facilities__is_acti_8f2a4b_idx'),
        ]

    def save(self, *args, **kwargs):
        if not self.code:
            base_code = slugify(self.name).replace('-', '_')[:30] or 'facility'
            candidate = base_code
            sequence = 1
            while Facility.objects.exclude(pk=self.pk).filter(code=candidate).exists():
                suffix = f'_{sequence}'
                candidate = f'{base_code[:30 - len(suffix)]}{suffix}'
                sequence += 1
            self.code = candidate

        super().save(*args, **kwargs)

    def is_owned_by(self, user):
        return bool(user and self.director_id and self.director_id == user.pk)

    def __str__(self):
        return f"{self.name} ({self.code})"
