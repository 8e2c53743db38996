from django.db import models


class FacilityQuerySet(models.QuerySet):
    """Rows owned by a facility; accepts a ``Facility`` or its primary key."""

    def for_facility(self, facility):
        if facility is None:
            return self.none()
        return self.filter(facility_id=getattr(facility, 'pk', facility))


FacilityManager = models.Manager.from_queryset(FacilityQuerySet)
