from apps.core.utils.effects import RISK_CRITICAL, RISK_HIGH, audit_effect
from apps.core.utils.exceptions import AuthorizationError, StateConflictError


def _normalize_roles(allowed_roles):
    if isinstance(allowed_roles, str):
        return {allowed_roles}
    return set(allowed_roles)


def deny(actor, message, *, event_type, entity=None, payload=None, risk_level=RISK_CRITICAL):
    details = {'attempted_by': getattr(actor, 'pk', None)}
    details.update(payload or {})
    return AuthorizationError(
        message,
        effects=[
            audit_effect(
                event_type,
                message,
                entity=entity,
                actor=actor,
                payload=details,
                risk_level=risk_level,
            )
        ],
    )


def conflict(actor, message, *, event_type, entity=None, payload=None, risk_level=RISK_HIGH):
    return StateConflictError(
        message,
        effects=[
            audit_effect(
                event_type,
                message,
                entity=entity,
                actor=actor,
                payload=payload,
                risk_level=risk_level,
            )
        ],
    )


def require_role(actor, allowed_roles, message, *, event_type, entity=None):
    if actor is None or not getattr(actor, 'is_authenticated', False):
        raise deny(actor, message, event_type=event_type, entity=entity)
    if actor.role not in _normalize_roles(allowed_roles):
        raise deny(actor, message, event_type=event_type, entity=entity, payload={'role': actor.role})


def is_assigned_caseworker(actor, beneficiary):
    return bool(
        actor
        and actor.role == 'caseworker'
        and beneficiary is not None
        and beneficiary.caseworker_id == actor.pk
    )


def is_facility_finance(actor, beneficiary):
    return bool(
        actor
        and actor.role == 'finance'
        and beneficiary is not None
        and actor.facility_id
        and actor.facility_id == beneficiary.facility_id
    )


def is_facility_director(actor, beneficiary):
    if not actor or actor.role != 'director' or beneficiary is None or not beneficiary.facility_id:
        return False
    return beneficiary.facility.is_owned_by(actor)
