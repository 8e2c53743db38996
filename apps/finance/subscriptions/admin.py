from django.contrib import admin

from .models import Subscription, SubscriptionPlan, SubscriptionTransaction


@admin.register(SubscriptionPlan)
class SubscriptionPlanAdmin(admin.ModelAdmin):
    list_display = ('name', 'price', 'duration_in_months', 'duration_in_days', 'is_archived')
    list_filter = ('is_archived',)


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    list_display = ('user', 'plan', 'start_date', 'end_date', 'status')
    list_filter = ('status', 'plan')
    search_fields = ('user__username',)


@admin.register(SubscriptionTransaction)
class SubscriptionTransactionAdmin(admin.ModelAdmin):
    list_display = ('payment_intent_id', 'user', 'new_plan', 'amount_paid', 'status', 'transaction_date')
    list_filter = ('status', 'payment_method')
    search_fields = ('payment_intent_id', 'provider_txn_id', 'user__username')
    readonly_fields = ('transaction_date',)
