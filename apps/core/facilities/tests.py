from io import StringIO

from django.core.exceptions import ValidationError
from django.core.management import call_command
from django.test import TestCase

from apps.core.enrollment.models import EnrollmentVerification
from apps.core.facilities.models import Facility
from apps.core.facilities.services import assign_director, staff_ids_for_role
from apps.core.users.models import User
from apps.core.utils.testing import PASSWORD, create_facility_staff
from apps.finance.funds.models import FundAllocation


class FacilityTests(TestCase):
    def test_code_is_generated_and_unique(self):
        first = Facility.objects.create(name='Harbor Aid Center')
        second = Facility.objects.create(name='Harbor Aid Center')

        self.assertEqual(first.code, 'harbor_aid_center')
        self.assertEqual(second.code, 'harbor_aid_center_1')

    def test_assign_director_requires_director_role(self):
        north = create_facility_staff('North Aid Center', 'north')
        with self.assertRaises(ValidationError):
            assign_director(facility=north.facility, director=north.finance)

    def test_assign_director_rejects_director_of_other_facility(self):
        north = create_facility_staff('North Aid Center', 'north')
        other = Facility.objects.create(name='Other Aid Center')
        with self.assertRaises(ValidationError):
            assign_director(facility=other, director=north.director)

    def test_staff_ids_for_role_lists_active_members(self):
        north = create_facility_staff('North Aid Center', 'north')
        extra = User.objects.create_user(
            username='north_finance_2',
            password=PASSWORD,
            role=User.ROLE_FINANCE,
            facility=north.facility,
            is_active=False,
        )

        ids = staff_ids_for_role(north.facility, User.ROLE_FINANCE)

        self.assertEqual(ids, [north.finance.pk])
        self.assertNotIn(extra.pk, ids)
        self.assertEqual(staff_ids_for_role(None, User.ROLE_FINANCE), [])


class SeedCommandTests(TestCase):
    def test_seed_builds_a_working_facility(self):
        call_command('seed', beneficiaries=3, facility_name='Demo Aid Center', stdout=StringIO())

        facility = Facility.objects.get(name='Demo Aid Center')
        self.assertIsNotNone(facility.director)
        self.assertEqual(facility.members.filter(role=User.ROLE_BENEFICIARY).count(), 3)
        self.assertEqual(
            EnrollmentVerification.objects.filter(status=EnrollmentVerification.STATUS_APPROVED).count(),
            3,
        )
        self.assertEqual(FundAllocation.objects.filter(facility=facility).count(), len(FundAllocation.TYPE_CHOICES))

        call_command('seed', beneficiaries=3, facility_name='Demo Aid Center', stdout=StringIO())
        self.assertEqual(facility.members.filter(role=User.ROLE_BENEFICIARY).count(), 3)
