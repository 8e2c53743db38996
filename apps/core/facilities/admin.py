from django.contrib import admin

from .models import Facility


@admin.register(Facility)
class FacilityAdmin(admin.ModelAdmin):
    list_display = ('name', 'code', 'director', 'is_active', 'created_at')
    list_filter = ('is_active',)
    search_fields = ('name', 'code', 'email')
