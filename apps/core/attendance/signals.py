from django.dispatch import Signal

# Sent with beneficiary, year and month whenever an attendance record is
# created or changed, inside the transaction that changed it.
attendance_changed = Signal()
