from django.contrib import admin

from .models import AidRequest


@admin.register(AidRequest)
class AidRequestAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'beneficiary',
        'facility',
        'fund_type',
        'amount',
        'year',
        'month',
        'state',
        'created_at',
    )
    list_filter = ('facility', 'fund_type', 'state', 'rejected_at_level')
    search_fields = ('beneficiary__username', 'beneficiary__first_name', 'beneficiary__last_name', 'purpose')
    readonly_fields = (
        'caseworker_decision',
        'caseworker_decided_by',
        'caseworker_decided_at',
        'finance_decision',
        'finance_decided_by',
        'finance_decided_at',
        'director_decision',
        'director_decided_by',
        'director_decided_at',
        'created_at',
        'updated_at',
    )
