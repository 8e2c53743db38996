from django.contrib import admin

from .models import Disbursement


@admin.register(Disbursement)
class DisbursementAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'aid_request',
        'facility',
        'amount',
        'status',
        'liquidated_amount',
        'remaining_to_liquidate',
        'fully_liquidated',
    )
    list_filter = ('facility', 'status', 'fully_liquidated')
    search_fields = ('aid_request__beneficiary__username', 'notes')
    readonly_fields = (
        'finance_disbursed_by',
        'finance_disbursed_at',
        'caseworker_received_by',
        'caseworker_received_at',
        'caseworker_disbursed_by',
        'caseworker_disbursed_at',
        'beneficiary_received_by',
        'beneficiary_received_at',
        'created_at',
        'updated_at',
    )
