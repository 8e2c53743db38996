from django.contrib import admin

from .models import AttendanceRecord


@admin.register(AttendanceRecord)
class AttendanceRecordAdmin(admin.ModelAdmin):
    list_display = ('beneficiary', 'date', 'day_of_week', 'status', 'recorded_by')
    list_filter = ('status', 'day_of_week', 'year', 'month')
    search_fields = ('beneficiary__username', 'beneficiary__first_name', 'beneficiary__last_name')
    readonly_fields = ('day_of_week', 'year', 'month', 'created_at', 'updated_at')
