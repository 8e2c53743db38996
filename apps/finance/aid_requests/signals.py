from django.dispatch import receiver

from apps.core.attendance.signals import attendance_changed

from .services import recalculate_cola_amounts


@receiver(attendance_changed, dispatch_uid='aid_requests_recalculate_cola')
def recalculate_cola_after_attendance(sender, beneficiary, year, month, **kwargs):
    recalculate_cola_amounts(beneficiary=beneficiary, year=year, month=month)
