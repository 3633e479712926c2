from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q

from apps.core.utils.managers import DatedManager, DatedQuerySet


class MarketingTask(models.Model):
    STATUS_ASSIGNED = 'ASSIGNED'
    STATUS_BILL_SUBMITTED = 'BILL_SUBMITTED'
    STATUS_COMPLETED = 'COMPLETED'
    STATUS_CHOICES = (
        (STATUS_ASSIGNED, 'Assigned'),
        (STATUS_BILL_SUBMITTED, 'Bill Submitted'),
        (STATUS_COMPLETED, 'Completed'),
    )
    STUDENTS_PER_TASK = 2

    date = models.DateField(unique=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ASSIGNED)
    money_given = models.DecimalField(max_digits=12, decimal_places=2)
    assigned_students = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        related_name='marketing_tasks',
    )
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='created_marketing_tasks',
    )
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = DatedManager()

    class Meta:
        ordering = ['-date', '-id']
        constraints = [
            models.CheckConstraint(condition=Q(money_given__gt=0), name='marketing_task_money_positive'),
        ]
        indexes = [
            models.Index(fields=['status', 'date']),
        ]

    def clean(self):
        super().clean()
        if self.money_given is not None and self.money_given <= 0:
            raise ValidationError({'money_given': 'Money given must be a positive number.'})

    def is_assigned_to(self, user):
        return self.assigned_students.filter(pk=user.pk).exists()

    def __str__(self):
        return f"Marketing {self.date} ({self.status})"


class BillQuerySet(DatedQuerySet):
    date_field = 'marketing_task__date'


class Bill(models.Model):
    marketing_task = models.OneToOneField(
        MarketingTask,
        on_delete=models.PROTECT,
        related_name='bill',
    )
    submitted_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='submitted_bills',
    )
    date = models.DateField()
    marketing_total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    grocery_total = models.DecimalField(max_digits=12, decimal_places=2, default=0)
    total_bill_amount = models.DecimalField(max_digits=12, decimal_places=2)
    amount_given = models.DecimalField(max_digits=12, decimal_places=2)
    money_returned = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    description = models.TextField(blank=True)
    receipt_url = models.URLField(max_length=500, blank=True)
    submitted_at = models.DateTimeField(auto_now_add=True)

    objects = BillQuerySet.as_manager()

    class Meta:
        ordering = ['-submitted_at', '-id']
        constraints = [
            models.CheckConstraint(condition=Q(total_bill_amount__gte=0), name='bill_total_non_negative'),
            models.CheckConstraint(condition=Q(grocery_total__gte=0), name='bill_grocery_non_negative'),
            models.CheckConstraint(condition=Q(marketing_total__gte=0), name='bill_marketing_non_negative'),
        ]

    def save(self, *args, **kwargs):
        if self.pk and Bill.objects.filter(pk=self.pk).exists():
            raise ValidationError('Submitted bills cannot be changed.')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValidationError('Submitted bills cannot be deleted.')

    def __str__(self):
        return f"Bill {self.date}: {self.total_bill_amount}"


class BillItem(models.Model):
    bill = models.ForeignKey(
        Bill,
        on_delete=models.CASCADE,
        related_name='items',
    )
    item_code = models.CharField(max_length=40)
    label = models.CharField(max_length=120)
    amount = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ['id']
        constraints = [
            models.CheckConstraint(condition=Q(amount__gte=0), name='bill_item_amount_non_negative'),
        ]

    def __str__(self):
        return f"{self.label}: {self.amount}"
