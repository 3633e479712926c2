from django.contrib import admin

from .models import BudgetCycle, Payment

PAYMENT_LOCKED_FIELDS = ('user', 'budget_cycle', 'amount_paid', 'amount_returned')


class PaymentInline(admin.TabularInline):
    model = Payment
    extra = 0
    can_delete = False
    fields = ('user', 'amount_paid', 'amount_returned', 'reference', 'paid_at')
    readonly_fields = ('amount_returned', 'paid_at')

    def get_readonly_fields(self, request, obj=None):
        # obj is the parent cycle.
        if obj is not None and obj.is_finalized:
            return self.fields
        return super().get_readonly_fields(request, obj)

    def has_add_permission(self, request, obj=None):
        if obj is not None and obj.is_finalized:
            return False
        return super().has_add_permission(request, obj)

    def has_change_permission(self, request, obj=None):
        if obj is not None and obj.is_finalized:
            return False
        return super().has_change_permission(request, obj)


@admin.register(BudgetCycle)
class BudgetCycleAdmin(admin.ModelAdmin):
    list_display = ('month', 'year', 'start_date', 'end_date', 'payment_deadline', 'is_finalized', 'per_head_cost')
    list_filter = ('is_finalized', 'year')
    readonly_fields = ('is_finalized', 'total_expenditure', 'per_head_cost', 'finalized_at', 'finalized_by')
    inlines = [PaymentInline]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('user', 'budget_cycle', 'amount_paid', 'amount_returned', 'paid_at')
    list_filter = ('budget_cycle',)
    search_fields = ('user__username', 'user__email', 'reference')
    readonly_fields = ('amount_returned',)

    def get_readonly_fields(self, request, obj=None):
        if obj is not None:
            return PAYMENT_LOCKED_FIELDS
        return super().get_readonly_fields(request, obj)

    def formfield_for_foreignkey(self, db_field, request, **kwargs):
        if db_field.name == 'budget_cycle':
            kwargs['queryset'] = BudgetCycle.objects.open()
        return super().formfield_for_foreignkey(db_field, request, **kwargs)

    def has_delete_permission(self, request, obj=None):
        return False
