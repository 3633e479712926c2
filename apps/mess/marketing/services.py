from __future__ import annotations

import logging
from decimal import Decimal, ROUND_HALF_UP

from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied
from django.db import IntegrityError, transaction
from django.db.models import Count
from django.utils import timezone

from apps.core.utils.exceptions import ConflictError, InvalidStateError, NotFoundError
from apps.mess.budget.models import BudgetCycle

from .models import Bill, BillItem, MarketingTask

logger = logging.getLogger(__name__)


def _to_decimal(value) -> Decimal:
    return Decimal(str(value or '0'))


def _quantize(value) -> Decimal:
    return _to_decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def get_task(task_id) -> MarketingTask:
    task = MarketingTask.objects.filter(pk=task_id).first()
    if task is None:
        raise NotFoundError('Marketing task not found.')
    return task


def can_view_task(task: MarketingTask, user) -> bool:
    return user.is_mess_admin or task.is_assigned_to(user)


def _ensure_cycle_open(*days):
    for day in days:
        if BudgetCycle.objects.finalized().covering(day).exists():
            raise ConflictError('Budget cycle for this date is already finalized.')


def assign_marketing_task(*, date, student_ids, money_given, created_by=None) -> MarketingTask:
    unique_ids = {int(student_id) for student_id in student_ids}
    if len(student_ids) != MarketingTask.STUDENTS_PER_TASK or len(unique_ids) != MarketingTask.STUDENTS_PER_TASK:
        raise InvalidStateError('Exactly 2 students must be assigned to a marketing task.')

    money_given = _quantize(money_given)
    if money_given <= 0:
        raise InvalidStateError('Money given must be a positive number.')

    students = list(get_user_model().objects.filter(pk__in=unique_ids, is_active=True))
    if len(students) != MarketingTask.STUDENTS_PER_TASK:
        raise NotFoundError('One or more students not found.')

    _ensure_cycle_open(date)
    if MarketingTask.objects.filter(date=date).exists():
        raise ConflictError('A marketing task already exists for this date.')

    try:
        with transaction.atomic():
            task = MarketingTask.objects.create(
                date=date,
                money_given=money_given,
                created_by=created_by,
            )
            task.assigned_students.set(students)
    except IntegrityError as exc:
        raise ConflictError('A marketing task already exists for this date.') from exc

    logger.info('Assigned marketing task %s on %s', task.pk, task.date)
    return task


def update_marketing_task(*, task: MarketingTask, money_given) -> MarketingTask:
    if task.status != MarketingTask.STATUS_ASSIGNED:
        raise InvalidStateError('Only tasks in ASSIGNED status can be updated.')

    money_given = _quantize(money_given)
    if money_given <= 0:
        raise InvalidStateError('Money given must be a positive number.')

    task.money_given = money_given
    task.save(update_fields=['money_given', 'updated_at'])
    return task


@transaction.atomic
def delete_marketing_task(*, task: MarketingTask):
    locked = MarketingTask.objects.select_for_update().get(pk=task.pk)
    if locked.status != MarketingTask.STATUS_ASSIGNED or Bill.objects.filter(marketing_task=locked).exists():
        raise InvalidStateError('Only tasks in ASSIGNED status can be deleted.')
    locked.delete()
    logger.info('Deleted marketing task %s', task.pk)


def submit_bill(
    *,
    task: MarketingTask,
    submitted_by,
    date,
    total_bill_amount,
    amount_given,
    marketing_total=0,
    grocery_total=0,
    money_returned=None,
    description='',
    receipt_url='',
    items=(),
) -> Bill:
    if not (submitted_by.is_mess_admin or task.is_assigned_to(submitted_by)):
        raise PermissionDenied('You are not assigned to this task or lack permission.')

    amounts = [total_bill_amount, amount_given, marketing_total, grocery_total]
    amounts.extend(item['amount'] for item in items)
    if any(_to_decimal(amount) < 0 for amount in amounts):
        raise InvalidStateError('Bill amounts cannot be negative.')

    with transaction.atomic():
        locked = MarketingTask.objects.select_for_update().get(pk=task.pk)
        if Bill.objects.filter(marketing_task=locked).exists():
            raise ConflictError('A bill already exists for this marketing task.')
        if locked.status != MarketingTask.STATUS_ASSIGNED:
            raise InvalidStateError(f"Task is not in ASSIGNED state (current: {locked.status}).")
        _ensure_cycle_open(locked.date, date)

        if money_returned is None:
            money_returned = _to_decimal(amount_given) - _to_decimal(total_bill_amount)

        bill = Bill.objects.create(
            marketing_task=locked,
            submitted_by=submitted_by,
            date=date,
            marketing_total=_quantize(marketing_total),
            grocery_total=_quantize(grocery_total),
            total_bill_amount=_quantize(total_bill_amount),
            amount_given=_quantize(amount_given),
            money_returned=_quantize(money_returned),
            description=description or '',
            receipt_url=receipt_url or '',
        )
        BillItem.objects.bulk_create([
            BillItem(
                bill=bill,
                item_code=item['item_code'],
                label=item['label'],
                amount=_quantize(item['amount']),
            )
            for item in items
        ])

        locked.status = MarketingTask.STATUS_BILL_SUBMITTED
        locked.save(update_fields=['status', 'updated_at'])

    task.status = locked.status
    logger.info('Bill %s submitted for marketing task %s', bill.pk, task.pk)
    return bill


@transaction.atomic
def complete_marketing_task(*, task: MarketingTask, money_return_received: bool) -> MarketingTask:
    locked = MarketingTask.objects.select_for_update().get(pk=task.pk)
    if not Bill.objects.filter(marketing_task=locked).exists():
        raise InvalidStateError('No bill has been submitted for this marketing task.')
    if locked.status == MarketingTask.STATUS_COMPLETED:
        raise ConflictError('Marketing task is already completed.')
    if not money_return_received:
        raise InvalidStateError('Money return must be received before marking as complete.')

    locked.status = MarketingTask.STATUS_COMPLETED
    locked.completed_at = timezone.now()
    locked.save(update_fields=['status', 'completed_at', 'updated_at'])
    logger.info('Marketing task %s completed', locked.pk)
    return locked


def marketing_duty_summary():
    return (
        get_user_model().objects
        .annotate(marketing_task_count=Count('marketing_tasks'))
        .order_by('first_name', 'username')
    )
