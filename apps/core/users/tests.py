from django.test import TestCase

from apps.core.facilities.models import Facility
from apps.core.users.audit import log_audit_event
from apps.core.users.authorization import (
    is_assigned_caseworker,
    is_facility_director,
    is_facility_finance,
    require_role,
)
from apps.core.users.models import AuditLog, User
from apps.core.utils.exceptions import AuthorizationError
from apps.core.utils.testing import PASSWORD, create_facility_staff


class UserModelTests(TestCase):
    def test_staff_must_belong_to_a_facility(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(username='orphan', password=PASSWORD, role=User.ROLE_FINANCE)

    def test_superuser_has_no_facility(self):
        admin = User.objects.create_superuser('root', 'root@example.com', PASSWORD)
        self.assertEqual(admin.role, User.ROLE_SUPERADMIN)
        self.assertIsNone(admin.facility)

    def test_only_beneficiaries_keep_a_caseworker(self):
        north = create_facility_staff('North Aid Center', 'north')
        finance = north.finance
        finance.caseworker = north.caseworker
        finance.save()
        finance.refresh_from_db()
        self.assertIsNone(finance.caseworker)
        self.assertEqual(north.beneficiary.caseworker, north.caseworker)


class AuthorizationTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')
        self.south = create_facility_staff('South Aid Center', 'south')

    def test_relationship_checks(self):
        beneficiary = self.north.beneficiary
        self.assertTrue(is_assigned_caseworker(self.north.caseworker, beneficiary))
        self.assertFalse(is_assigned_caseworker(self.south.caseworker, beneficiary))
        self.assertTrue(is_facility_finance(self.north.finance, beneficiary))
        self.assertFalse(is_facility_finance(self.south.finance, beneficiary))
        self.assertFalse(is_facility_finance(self.north.caseworker, beneficiary))
        self.assertTrue(is_facility_director(self.north.director, beneficiary))
        self.assertFalse(is_facility_director(self.south.director, beneficiary))

    def test_director_must_own_the_facility(self):
        Facility.objects.filter(pk=self.north.facility.pk).update(director=None)
        beneficiary = User.objects.select_related('facility').get(pk=self.north.beneficiary.pk)
        self.assertFalse(is_facility_director(self.north.director, beneficiary))

    def test_require_role_raises_with_audit_effect(self):
        with self.assertRaises(AuthorizationError) as raised:
            require_role(self.north.caseworker, User.ROLE_FINANCE, 'Finance only.', event_type='finance_only')

        self.assertEqual(str(raised.exception), 'Finance only.')
        (effect,) = raised.exception.effects
        self.assertEqual(effect.event_type, 'finance_only')
        self.assertEqual(effect.actor_id, self.north.caseworker.pk)
        self.assertEqual(effect.risk_level, AuditLog.RISK_CRITICAL)


class AuditLogTests(TestCase):
    def test_log_audit_event_uses_actor_facility(self):
        north = create_facility_staff('North Aid Center', 'north')

        entry = log_audit_event(
            event_type='manual_check',
            description='Checked.',
            entity=north.beneficiary,
            user=north.caseworker,
            risk_level=AuditLog.RISK_HIGH,
        )

        self.assertEqual(entry.facility, north.facility)
        self.assertEqual(entry.entity_type, 'User')
        self.assertEqual(entry.entity_id, str(north.beneficiary.pk))
