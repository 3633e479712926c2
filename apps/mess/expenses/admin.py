from django.contrib import admin

from .models import MiscellaneousExpense


@admin.register(MiscellaneousExpense)
class MiscellaneousExpenseAdmin(admin.ModelAdmin):
    list_display = ('date', 'description', 'amount', 'budget_cycle', 'added_by')
    list_filter = ('budget_cycle',)
    search_fields = ('description',)
    date_hierarchy = 'date'

    def has_change_permission(self, request, obj=None):
        if obj is not None and obj.is_locked:
            return False
        return super().has_change_permission(request, obj)

    def has_delete_permission(self, request, obj=None):
        if obj is not None and obj.is_locked:
            return False
        return super().has_delete_permission(request, obj)
