from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as DjangoUserAdmin

from .models import AuditLog, User


@admin.register(User)
class UserAdmin(DjangoUserAdmin):
    list_display = ('username', 'email', 'role', 'facility', 'caseworker', 'is_scholar', 'is_active')
    list_filter = ('role', 'facility', 'is_scholar', 'is_active')
    fieldsets = DjangoUserAdmin.fieldsets + (
        ('Aid roles', {'fields': ('role', 'facility', 'caseworker', 'is_scholar', 'phone')}),
    )
    add_fieldsets = DjangoUserAdmin.add_fieldsets + (
        ('Aid roles', {'fields': ('role', 'facility', 'caseworker')}),
    )


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ('event_type', 'risk_level', 'user', 'facility', 'entity_type', 'entity_id', 'created_at')
    list_filter = ('risk_level', 'facility', 'event_type')
    search_fields = ('event_type', 'description', 'entity_id')
    readonly_fields = ('created_at',)
