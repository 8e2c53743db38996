from unittest import mock

from django.test import TestCase

from apps.core.notifications.models import Notification
from apps.core.notifications.services import has_notification, mark_read, notify
from apps.core.users.models import AuditLog
from apps.core.utils.effects import (
    PRIORITY_HIGH,
    TransitionResult,
    audit_effect,
    dispatch_effects,
    notify_effect,
    transition,
)
from apps.core.utils.exceptions import BusinessRuleError
from apps.core.utils.testing import create_facility_staff


class NotificationServiceTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')

    def test_notify_skips_inactive_recipients(self):
        self.north.finance.is_active = False
        self.north.finance.save(update_fields=['is_active'])

        created = notify(
            recipient_ids=[self.north.caseworker.pk, self.north.finance.pk],
            type='aid_request_submitted',
            title='New aid request',
        )

        self.assertEqual(len(created), 1)
        self.assertTrue(has_notification(recipient=self.north.caseworker, type='aid_request_submitted'))
        self.assertFalse(has_notification(recipient=self.north.finance, type='aid_request_submitted'))

    def test_mark_read_only_touches_own_notifications(self):
        mine = notify(recipient_ids=[self.north.caseworker.pk], type='ping', title='Ping')[0]
        theirs = notify(recipient_ids=[self.north.finance.pk], type='ping', title='Ping')[0]

        updated = mark_read(recipient=self.north.caseworker, notification_ids=[mine.pk, theirs.pk])

        self.assertEqual(updated, 1)
        self.assertFalse(Notification.objects.get(pk=theirs.pk).is_read)


class EffectDispatchTests(TestCase):
    def setUp(self):
        self.north = create_facility_staff('North Aid Center', 'north')

    def test_effects_run_after_commit(self):
        @transition
        def touch():
            return TransitionResult(
                None,
                [
                    notify_effect([self.north.caseworker.pk], 'ping', 'Ping', 'Hello', priority=PRIORITY_HIGH),
                    audit_effect('ping_sent', 'Ping sent.', actor=self.north.director),
                ],
            )

        with self.captureOnCommitCallbacks(execute=False) as callbacks:
            touch()
        self.assertEqual(len(callbacks), 1)
        self.assertFalse(Notification.objects.exists())

        callbacks[0]()
        notification = Notification.objects.get(recipient=self.north.caseworker)
        self.assertEqual(notification.priority, PRIORITY_HIGH)
        audit = AuditLog.objects.get(event_type='ping_sent')
        self.assertEqual(audit.facility, self.north.facility)

    def test_failing_effect_is_skipped(self):
        effects = [
            notify_effect([self.north.caseworker.pk], 'first', 'First', ''),
            notify_effect([self.north.caseworker.pk], 'second', 'Second', ''),
        ]
        real_notify = notify
        calls = []

        def flaky(**kwargs):
            calls.append(kwargs['type'])
            if kwargs['type'] == 'first':
                raise RuntimeError('mail server down')
            return real_notify(**kwargs)

        with mock.patch('apps.core.notifications.services.notify', side_effect=flaky):
            performed = dispatch_effects(effects)

        self.assertEqual(calls, ['first', 'second'])
        self.assertEqual(performed, 1)
        self.assertEqual(list(Notification.objects.values_list('type', flat=True)), ['second'])

    def test_failed_transition_keeps_only_attached_audit(self):
        @transition
        def refuse():
            notify(recipient_ids=[self.north.caseworker.pk], type='should_roll_back', title='x')
            raise BusinessRuleError(
                'Not allowed.',
                effects=[
                    audit_effect('refused', 'Refused.', actor=self.north.finance),
                    notify_effect([self.north.caseworker.pk], 'never_sent', 'x', ''),
                ],
            )

        with self.captureOnCommitCallbacks(execute=True):
            with self.assertRaises(BusinessRuleError):
                refuse()

        self.assertFalse(Notification.objects.exists())
        self.assertTrue(AuditLog.objects.filter(event_type='refused').exists())

    def test_notify_effect_drops_empty_recipients(self):
        effect = notify_effect([None, self.north.finance.pk, self.north.finance.pk], 'ping', 'Ping', '')
        self.assertEqual(effect.recipient_ids, (self.north.finance.pk,))
