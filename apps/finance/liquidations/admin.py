from django.contrib import admin

from .models import Liquidation, LiquidationReceipt


class LiquidationReceiptInline(admin.TabularInline):
    model = LiquidationReceipt
    extra = 0
    readonly_fields = ('amount', 'receipt_date', 'receipt_number', 'file_reference', 'uploaded_by', 'created_at')


@admin.register(Liquidation)
class LiquidationAdmin(admin.ModelAdmin):
    list_display = (
        'id',
        'disbursement',
        'facility',
        'status',
        'total_disbursed_amount',
        'total_receipt_amount',
        'remaining_amount',
        'is_complete',
    )
    list_filter = ('facility', 'status', 'rejected_at_level')
    readonly_fields = ('total_receipt_amount', 'remaining_amount', 'is_complete', 'completed_at', 'submitted_at')
    inlines = [LiquidationReceiptInline]


@admin.register(LiquidationReceipt)
class LiquidationReceiptAdmin(admin.ModelAdmin):
    list_display = ('liquidation', 'amount', 'receipt_date', 'receipt_number')
    search_fields = ('receipt_number', 'description')
