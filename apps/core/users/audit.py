import logging

from apps.core.users.models import AuditLog, User

logger = logging.getLogger(__name__)


def log_audit_event(*, event_type, description='', payload=None, entity=None, user=None,
                    facility=None, risk_level=AuditLog.RISK_LOW):
    try:
        entity_type = ''
        entity_id = ''

        if entity is not None:
            entity_type = entity.__class__.__name__
            entity_id = str(getattr(entity, 'pk', '') or '')

        return AuditLog.objects.create(
            facility=facility or getattr(user, 'facility', None),
            user=user,
            event_type=event_type,
            description=description[:255],
            entity_type=entity_type,
            entity_id=entity_id,
            payload=payload or {},
            risk_level=risk_level,
        )
    except Exception:
        # Audit logging must never break business actions.
        logger.warning('Audit event %s could not be recorded.', event_type, exc_info=True)
        return None


def record_audit_effect(effect):
    user = User.objects.filter(pk=effect.actor_id).first() if effect.actor_id else None
    return AuditLog.objects.create(
        facility_id=effect.facility_id,
        user=user,
        event_type=effect.event_type,
        description=effect.description[:255],
        entity_type=effect.entity_type,
        entity_id=effect.entity_id,
        payload=effect.payload,
        risk_level=effect.risk_level,
    )
