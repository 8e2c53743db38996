from django.contrib import admin

from .models import FundAllocation


@admin.register(FundAllocation)
class FundAllocationAdmin(admin.ModelAdmin):
    list_display = (
        'sponsor_name',
        'facility',
        'fund_type',
        'allocated_amount',
        'utilized_amount',
        'remaining_amount',
        'is_active',
    )
    list_filter = ('facility', 'fund_type', 'is_active')
    search_fields = ('sponsor_name', 'description')
    readonly_fields = ('remaining_amount', 'created_at', 'updated_at')
