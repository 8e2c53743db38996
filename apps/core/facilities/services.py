from django.core.exceptions import ValidationError
from django.db import transaction

from .models import Facility


def staff_ids_for_role(facility, role):
    if facility is None:
        return []
    return list(
        facility.members.filter(role=role, is_active=True).values_list('id', flat=True)
    )


@transaction.atomic
def assign_director(*, facility: Facility, director):
    if director.role != 'director':
        raise ValidationError('Only director accounts can own a facility.')
    if director.facility_id and director.facility_id != facility.id:
        raise ValidationError('Director already belongs to another facility.')

    facility.director = director
    facility.save(update_fields=['director'])
    if director.facility_id != facility.id:
        director.facility = facility
        director.save(update_fields=['facility'])
    return facility
