from django.conf import settings
from django.db import models
from django.db.models import Q

from apps.core.utils.managers import DatedQuerySet
from apps.mess.budget.models import BudgetCycle


class MiscellaneousExpenseQuerySet(DatedQuerySet):
    def for_cycle(self, cycle):
        """Expenses linked to the cycle plus unlinked ones dated inside its window."""
        return self.filter(
            Q(budget_cycle=cycle)
            | Q(budget_cycle__isnull=True, date__gte=cycle.start_date, date__lte=cycle.end_date)
        )

    def unlinked(self):
        return self.filter(budget_cycle__isnull=True)


class MiscellaneousExpense(models.Model):
    description = models.CharField(max_length=255)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    date = models.DateField()
    budget_cycle = models.ForeignKey(
        BudgetCycle,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name='misc_expenses',
    )
    added_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='misc_expenses',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = MiscellaneousExpenseQuerySet.as_manager()

    class Meta:
        ordering = ['-date', '-id']
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name='misc_expense_amount_positive'),
        ]
        indexes = [
            models.Index(fields=['budget_cycle', 'date']),
        ]

    @property
    def is_locked(self):
        return bool(self.budget_cycle_id) and self.budget_cycle.is_finalized

    def __str__(self):
        return f"{self.description} ({self.date}): {self.amount}"
