from django.contrib.auth import get_user_model

from .models import Notification


def notify(*, recipient_ids, type, title, message='', payload=None, priority=Notification.PRIORITY_NORMAL):
    recipients = get_user_model().objects.filter(pk__in=set(recipient_ids), is_active=True)
    return Notification.objects.bulk_create(
        [
            Notification(
                recipient=recipient,
                type=type,
                title=title,
                message=message,
                payload=payload or {},
                priority=priority,
            )
            for recipient in recipients
        ]
    )


def has_notification(*, recipient, type):
    return Notification.objects.filter(recipient=recipient, type=type).exists()


def mark_read(*, recipient, notification_ids):
    return Notification.objects.filter(recipient=recipient, pk__in=notification_ids, is_read=False).update(is_read=True)
