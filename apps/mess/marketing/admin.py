from django.contrib import admin

from .models import Bill, BillItem, MarketingTask


@admin.register(MarketingTask)
class MarketingTaskAdmin(admin.ModelAdmin):
    list_display = ('date', 'status', 'money_given', 'created_by', 'completed_at')
    list_filter = ('status',)
    filter_horizontal = ('assigned_students',)
    date_hierarchy = 'date'


class BillItemInline(admin.TabularInline):
    model = BillItem
    extra = 0
    can_delete = False
    readonly_fields = ('item_code', 'label', 'amount')


@admin.register(Bill)
class BillAdmin(admin.ModelAdmin):
    list_display = ('date', 'marketing_task', 'submitted_by', 'total_bill_amount', 'money_returned')
    search_fields = ('description', 'submitted_by__username')
    inlines = [BillItemInline]

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
