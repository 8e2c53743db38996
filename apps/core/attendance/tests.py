from datetime import date
from unittest import mock

from django.core.exceptions import ValidationError
from django.db import DatabaseError
from django.test import TestCase

from apps.core.attendance.models import AttendanceRecord
from apps.core.attendance.services import (
    monthly_summary,
    record_attendance,
    sunday_absence_count,
    update_attendance,
)
from apps.core.attendance.signals import attendance_changed
from apps.core.users.models import AuditLog
from apps.core.utils.exceptions import AuthorizationError, DuplicateError
from apps.core.utils.testing import create_facility_staff, sundays


class AttendanceLedgerTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')
        self.south = create_facility_staff('South Aid Center', 'south')
        self.beneficiary = self.north.beneficiary

    def _record(self, target_date, status=AttendanceRecord.STATUS_PRESENT):
        return record_attendance(
            beneficiary=self.beneficiary,
            target_date=target_date,
            status=status,
            recorded_by=self.north.caseworker,
        )

    def test_record_derives_day_and_period(self):
        record = self._record(date(2024, 1, 7), AttendanceRecord.STATUS_ABSENT)

        self.assertEqual(record.day_of_week, AttendanceRecord.DAY_SUNDAY)
        self.assertEqual((record.year, record.month), (2024, 1))

    def test_second_record_for_same_date_is_duplicate(self):
        self._record(date(2024, 1, 8))

        with self.assertRaises(DuplicateError):
            self._record(date(2024, 1, 8), AttendanceRecord.STATUS_ABSENT)
        self.assertEqual(AttendanceRecord.objects.count(), 1)

    def test_unassigned_caseworker_is_denied_and_audited(self):
        with self.assertRaises(AuthorizationError):
            record_attendance(
                beneficiary=self.beneficiary,
                target_date=date(2024, 1, 8),
                status=AttendanceRecord.STATUS_PRESENT,
                recorded_by=self.south.caseworker,
            )
        self.assertFalse(AttendanceRecord.objects.exists())
        self.assertTrue(
            AuditLog.objects.filter(event_type='attendance_unauthorized_attempt', user=self.south.caseworker).exists()
        )

    def test_monthly_summary_counts_statuses(self):
        first, second = sundays(2024, 1)[:2]
        self._record(first, AttendanceRecord.STATUS_ABSENT)
        self._record(second, AttendanceRecord.STATUS_EXCUSED)
        self._record(date(2024, 1, 2), AttendanceRecord.STATUS_ABSENT)
        self._record(date(2024, 1, 3))
        self._record(date(2024, 2, 4), AttendanceRecord.STATUS_ABSENT)

        summary = monthly_summary(beneficiary=self.beneficiary, year=2024, month=1)

        self.assertEqual(
            summary,
            {'total': 4, 'present': 1, 'absent': 2, 'excused': 1, 'sunday_absences': 1},
        )
        self.assertEqual(sunday_absence_count(beneficiary=self.beneficiary, year=2024, month=1), 1)

    def test_empty_month_summarises_to_zero(self):
        summary = monthly_summary(beneficiary=self.beneficiary, year=2030, month=6)
        self.assertEqual(set(summary.values()), {0})

    def test_summary_is_zero_when_store_is_unavailable(self):
        with mock.patch.object(AttendanceRecord.objects, 'filter', side_effect=DatabaseError('down')):
            summary = monthly_summary(beneficiary=self.beneficiary, year=2024, month=1)
        self.assertEqual(summary['sunday_absences'], 0)
        self.assertEqual(summary['total'], 0)

    def test_update_changes_status_and_announces(self):
        record = self._record(sundays(2024, 1)[0])
        received = []

        def listener(sender, beneficiary, year, month, **kwargs):
            received.append((beneficiary.pk, year, month))

        attendance_changed.connect(listener)
        try:
            record = update_attendance(
                record=record,
                status=AttendanceRecord.STATUS_ABSENT,
                updated_by=self.north.caseworker,
                notes='Did not attend service',
            )
        finally:
            attendance_changed.disconnect(listener)

        self.assertEqual(record.status, AttendanceRecord.STATUS_ABSENT)
        self.assertEqual(record.notes, 'Did not attend service')
        self.assertEqual(received, [(self.beneficiary.pk, 2024, 1)])
        self.assertEqual(sunday_absence_count(beneficiary=self.beneficiary, year=2024, month=1), 1)

    def test_invalid_status_is_rejected(self):
        with self.assertRaises(ValidationError):
            self._record(date(2024, 1, 9), 'late')
