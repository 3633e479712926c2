import calendar
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q


class FinancialRecordModel(models.Model):
    class Meta:
        abstract = True

    def delete(self, *args, **kwargs):
        raise ValidationError('Financial records cannot be deleted.')


class BudgetCycleQuerySet(models.QuerySet):
    def for_month(self, month, year):
        return self.filter(month=month, year=year)

    def open(self):
        return self.filter(is_finalized=False)

    def finalized(self):
        return self.filter(is_finalized=True)

    def covering(self, day):
        return self.filter(start_date__lte=day, end_date__gte=day)


class BudgetCycle(models.Model):
    LOCKED_FIELDS = ('is_finalized', 'total_expenditure', 'per_head_cost')

    month = models.PositiveSmallIntegerField()
    year = models.PositiveSmallIntegerField()
    start_date = models.DateField()
    end_date = models.DateField()
    payment_deadline = models.DateField()

    is_finalized = models.BooleanField(default=False)
    total_expenditure = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    per_head_cost = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    finalized_at = models.DateTimeField(null=True, blank=True)
    finalized_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='finalized_budget_cycles',
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_budget_cycles',
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = BudgetCycleQuerySet.as_manager()

    class Meta:
        ordering = ['-year', '-month']
        constraints = [
            models.UniqueConstraint(fields=['month', 'year'], name='unique_budget_cycle_month_year'),
            models.CheckConstraint(
                condition=Q(end_date__gte=F('start_date')),
                name='budget_cycle_end_after_start',
            ),
            models.CheckConstraint(
                condition=Q(month__gte=1) & Q(month__lte=12),
                name='budget_cycle_valid_month',
            ),
        ]
        indexes = [
            models.Index(fields=['is_finalized']),
            models.Index(fields=['start_date', 'end_date']),
        ]

    def clean(self):
        super().clean()
        if self.month is not None and not 1 <= self.month <= 12:
            raise ValidationError({'month': 'Month must be between 1 and 12.'})
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValidationError({'end_date': 'End date must not be before start date.'})

    def save(self, *args, **kwargs):
        if self.pk:
            previous = BudgetCycle.objects.filter(pk=self.pk).values(*self.LOCKED_FIELDS).first()
            if previous and previous['is_finalized']:
                for field in self.LOCKED_FIELDS:
                    if getattr(self, field) != previous[field]:
                        raise ValidationError('Finalized budget cycles cannot be changed.')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.is_finalized:
            raise ValidationError('Finalized budget cycles cannot be deleted.')
        return super().delete(*args, **kwargs)

    @property
    def label(self):
        return f"{calendar.month_name[self.month]} {self.year}"

    def contains(self, value):
        return self.start_date <= value <= self.end_date

    def __str__(self):
        state = 'finalized' if self.is_finalized else 'open'
        return f"{self.label} ({state})"


def _as_stored(value):
    if value is None or isinstance(value, int):
        return value
    return Decimal(str(value))


class Payment(FinancialRecordModel):
    LOCKED_FIELDS = ('user_id', 'budget_cycle_id', 'amount_paid')

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='mess_payments',
    )
    budget_cycle = models.ForeignKey(
        BudgetCycle,
        on_delete=models.PROTECT,
        related_name='payments',
    )
    amount_paid = models.DecimalField(max_digits=12, decimal_places=2)
    amount_returned = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    reference = models.CharField(max_length=120, blank=True)
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='recorded_mess_payments',
    )
    paid_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['budget_cycle', 'user__first_name', 'id']
        constraints = [
            models.UniqueConstraint(fields=['user', 'budget_cycle'], name='unique_payment_per_user_cycle'),
            models.CheckConstraint(condition=Q(amount_paid__gt=0), name='payment_amount_positive'),
        ]

    def clean(self):
        super().clean()
        if self._state.adding and self.budget_cycle_id and self.budget_cycle.is_finalized:
            raise ValidationError({'budget_cycle': 'Payments cannot be added to a finalized budget cycle.'})

    def save(self, *args, **kwargs):
        previous = None
        if self.pk:
            previous = Payment.objects.filter(pk=self.pk).values(*self.LOCKED_FIELDS, 'amount_returned').first()

        if previous is None:
            if BudgetCycle.objects.filter(pk=self.budget_cycle_id, is_finalized=True).exists():
                raise ValidationError('Payments cannot be added to a finalized budget cycle.')
        else:
            for field in self.LOCKED_FIELDS:
                if _as_stored(getattr(self, field)) != _as_stored(previous[field]):
                    raise ValidationError('Payment amount, boarder and cycle cannot be changed.')
            if previous['amount_returned'] is not None and (
                _as_stored(self.amount_returned) != _as_stored(previous['amount_returned'])
            ):
                raise ValidationError('Settled payments cannot be changed.')
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.user} - {self.budget_cycle.label}: {self.amount_paid}"
