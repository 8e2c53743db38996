from __future__ import annotations

import logging

from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Count, Q

from apps.core.users.audit import log_audit_event
from apps.core.users.authorization import is_assigned_caseworker
from apps.core.users.models import AuditLog
from apps.core.utils.exceptions import AuthorizationError, DuplicateError

from .models import AttendanceRecord
from .signals import attendance_changed

logger = logging.getLogger(__name__)

_VALID_STATUSES = {choice for choice, _ in AttendanceRecord.STATUS_CHOICES}


def _empty_summary():
    return {
        'total': 0,
        'present': 0,
        'absent': 0,
        'excused': 0,
        'sunday_absences': 0,
    }


def _validate_status(status):
    if status not in _VALID_STATUSES:
        raise ValidationError({'status': f'Invalid attendance status: {status}.'})


def _ensure_caseworker(actor, beneficiary, *, event_type):
    if is_assigned_caseworker(actor, beneficiary):
        return
    log_audit_event(
        event_type=event_type,
        description='Attendance change attempted by a user who is not the assigned caseworker.',
        payload={'beneficiary_id': getattr(beneficiary, 'pk', None), 'attempted_by': getattr(actor, 'pk', None)},
        entity=beneficiary,
        user=actor,
        risk_level=AuditLog.RISK_HIGH,
    )
    raise AuthorizationError('Beneficiary not found or not assigned to you.')


def _announce_change(record):
    attendance_changed.send(
        sender=AttendanceRecord,
        beneficiary=record.beneficiary,
        year=record.year,
        month=record.month,
    )


def record_attendance(*, beneficiary, target_date, status, recorded_by, notes=''):
    _validate_status(status)
    _ensure_caseworker(recorded_by, beneficiary, event_type='attendance_unauthorized_attempt')
    return _create_record(
        beneficiary=beneficiary,
        target_date=target_date,
        status=status,
        recorded_by=recorded_by,
        notes=notes,
    )


@transaction.atomic
def _create_record(*, beneficiary, target_date, status, recorded_by, notes):
    if AttendanceRecord.objects.filter(beneficiary=beneficiary, date=target_date).exists():
        raise DuplicateError('Attendance for this beneficiary on this date has already been recorded.')

    try:
        with transaction.atomic():
            record = AttendanceRecord.objects.create(
                beneficiary=beneficiary,
                recorded_by=recorded_by,
                date=target_date,
                status=status,
                notes=notes or '',
            )
    except IntegrityError as exc:
        raise DuplicateError('Attendance for this beneficiary on this date has already been recorded.') from exc

    _announce_change(record)
    logger.info('Attendance recorded for beneficiary %s on %s (%s).', beneficiary.pk, target_date, status)
    return record


def update_attendance(*, record: AttendanceRecord, status, updated_by, notes=None):
    _validate_status(status)
    _ensure_caseworker(updated_by, record.beneficiary, event_type='attendance_unauthorized_update')
    return _update_record(record=record, status=status, updated_by=updated_by, notes=notes)


@transaction.atomic
def _update_record(*, record, status, updated_by, notes):
    record = AttendanceRecord.objects.select_for_update().get(pk=record.pk)
    update_fields = ['status', 'recorded_by', 'updated_at']
    record.status = status
    record.recorded_by = updated_by
    if notes is not None:
        record.notes = notes
        update_fields.append('notes')
    record.save(update_fields=update_fields)

    _announce_change(record)
    return record


def monthly_summary(*, beneficiary, year, month):
    try:
        with transaction.atomic():
            totals = AttendanceRecord.objects.filter(
                beneficiary=beneficiary,
                year=year,
                month=month,
            ).aggregate(
                total=Count('id'),
                present=Count('id', filter=Q(status=AttendanceRecord.STATUS_PRESENT)),
                absent=Count('id', filter=Q(status=AttendanceRecord.STATUS_ABSENT)),
                excused=Count('id', filter=Q(status=AttendanceRecord.STATUS_EXCUSED)),
                sunday_absences=Count(
                    'id',
                    filter=Q(day_of_week=AttendanceRecord.DAY_SUNDAY, status=AttendanceRecord.STATUS_ABSENT),
                ),
            )
    except DatabaseError:
        logger.warning('Attendance summary unavailable for beneficiary %s.', getattr(beneficiary, 'pk', None), exc_info=True)
        return _empty_summary()

    summary = _empty_summary()
    summary.update({key: int(value or 0) for key, value in totals.items()})
    return summary


def sunday_absence_count(*, beneficiary, year, month) -> int:
    return monthly_summary(beneficiary=beneficiary, year=year, month=month)['sunday_absences']
