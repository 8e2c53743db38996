"""
Side effects produced by workflow transitions.

Services describe notifications and audit entries as plain values and hand
them back with the changed record. ``dispatch_effects`` performs them after the
transaction commits; a failing effect is logged and skipped, it never undoes
the transition that produced it.
"""
import logging
from collections import namedtuple
from functools import wraps

from django.db import transaction

from .exceptions import AuthorizationError, WorkflowError

logger = logging.getLogger(__name__)

RISK_LOW = 'low'
RISK_MEDIUM = 'medium'
RISK_HIGH = 'high'
RISK_CRITICAL = 'critical'

PRIORITY_NORMAL = 'normal'
PRIORITY_MEDIUM = 'medium'
PRIORITY_HIGH = 'high'

Notify = namedtuple(
    'Notify',
    ['recipient_ids', 'type', 'title', 'message', 'payload', 'priority'],
)
Audit = namedtuple(
    'Audit',
    ['event_type', 'description', 'payload', 'entity_type', 'entity_id', 'risk_level', 'actor_id', 'facility_id'],
)
TransitionResult = namedtuple('TransitionResult', ['instance', 'effects'])


def notify_effect(recipient_ids, type, title, message, payload=None, priority=PRIORITY_NORMAL):
    recipients = tuple(sorted({int(pk) for pk in recipient_ids if pk}))
    return Notify(recipients, type, title, message, dict(payload or {}), priority)


def audit_effect(event_type, description, *, entity=None, actor=None, payload=None, risk_level=RISK_LOW):
    return Audit(
        event_type=event_type,
        description=description,
        payload=dict(payload or {}),
        entity_type=entity.__class__.__name__ if entity is not None else '',
        entity_id=str(getattr(entity, 'pk', '') or '') if entity is not None else '',
        risk_level=risk_level,
        actor_id=getattr(actor, 'pk', None),
        facility_id=getattr(actor, 'facility_id', None),
    )


def _perform(effect):
    # Imported lazily: both collaborators live in apps that import this module.
    if isinstance(effect, Notify):
        from apps.core.notifications.services import notify

        notify(
            recipient_ids=effect.recipient_ids,
            type=effect.type,
            title=effect.title,
            message=effect.message,
            payload=effect.payload,
            priority=effect.priority,
        )
    elif isinstance(effect, Audit):
        from apps.core.users.audit import record_audit_effect

        record_audit_effect(effect)
    else:
        raise TypeError(f'Unsupported effect: {effect!r}')


def dispatch_effects(effects):
    performed = 0
    for effect in effects:
        try:
            with transaction.atomic():
                _perform(effect)
            performed += 1
        except Exception:
            logger.warning('Effect %s failed and was skipped.', type(effect).__name__, exc_info=True)
    return performed


def transition(func):
    """Run a workflow service atomically and dispatch its effects after commit.

    The wrapped function returns ``TransitionResult``. When it raises an
    authorization or workflow error, the transaction is rolled back first and
    the audit effects attached to the error are written afterwards.
    """

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            with transaction.atomic():
                result = func(*args, **kwargs)
                effects = list(result.effects)
                transaction.on_commit(lambda: dispatch_effects(effects))
        except (AuthorizationError, WorkflowError) as exc:
            audits = [effect for effect in exc.effects if isinstance(effect, Audit)]
            if audits:
                dispatch_effects(audits)
            raise
        return result

    return wrapper
