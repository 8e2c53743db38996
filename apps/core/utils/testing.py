"""Fixture builders shared by the app test suites."""
import calendar
from datetime import date
from types import SimpleNamespace

from django.contrib.auth import get_user_model

from apps.core.enrollment.models import EnrollmentVerification
from apps.core.facilities.models import Facility
from apps.core.facilities.services import assign_director

PASSWORD = 'pass12345'


def create_facility_staff(name, prefix, *, scholar=True):
    """Create a facility with one director, finance officer, caseworker and beneficiary."""
    user_model = get_user_model()
    facility = Facility.objects.create(name=name)

    def member(role, **extra):
        return user_model.objects.create_user(
            username=f'{prefix}_{role}',
            password=PASSWORD,
            role=role,
            facility=facility,
            first_name=prefix.title(),
            last_name=role.title(),
            **extra,
        )

    director = member('director')
    assign_director(facility=facility, director=director)
    finance = member('finance')
    caseworker = member('caseworker')
    beneficiary = member('beneficiary', caseworker=caseworker, is_scholar=scholar)
    facility.refresh_from_db()
    return SimpleNamespace(
        facility=facility,
        director=director,
        finance=finance,
        caseworker=caseworker,
        beneficiary=beneficiary,
    )


def approve_enrollment(beneficiary, enrollment_date, *, is_scholar=True):
    return EnrollmentVerification.objects.create(
        beneficiary=beneficiary,
        enrollment_date=enrollment_date,
        is_scholar=is_scholar,
        status=EnrollmentVerification.STATUS_APPROVED,
    )


def sundays(year, month):
    last_day = calendar.monthrange(year, month)[1]
    return [
        date(year, month, day)
        for day in range(1, last_day + 1)
        if date(year, month, day).weekday() == calendar.SUNDAY
    ]
