from django.contrib import admin

from .models import EnrollmentVerification


@admin.register(EnrollmentVerification)
class EnrollmentVerificationAdmin(admin.ModelAdmin):
    list_display = ('beneficiary', 'enrollment_date', 'is_scholar', 'status', 'reviewed_by', 'created_at')
    list_filter = ('status', 'is_scholar')
    search_fields = ('beneficiary__username', 'beneficiary__first_name', 'beneficiary__last_name')
