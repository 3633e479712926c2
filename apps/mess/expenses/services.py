import logging

from django.db import transaction

from apps.core.utils.exceptions import ConflictError, InvalidStateError, NotFoundError
from apps.mess.budget.models import BudgetCycle

from .models import MiscellaneousExpense

logger = logging.getLogger(__name__)

LOCKED_MESSAGE = 'Expenses of a finalized budget cycle cannot be changed.'


def get_expense(expense_id) -> MiscellaneousExpense:
    expense = MiscellaneousExpense.objects.select_related('budget_cycle').filter(pk=expense_id).first()
    if expense is None:
        raise NotFoundError('Miscellaneous expense not found.')
    return expense


def _resolve_cycle(budget_cycle_id):
    if budget_cycle_id is None:
        return None
    cycle = BudgetCycle.objects.filter(pk=budget_cycle_id).first()
    if cycle is None:
        raise NotFoundError('Budget cycle not found.')
    if cycle.is_finalized:
        raise ConflictError(LOCKED_MESSAGE)
    return cycle


def _check_window(cycle, expense_date):
    if cycle is not None and not cycle.contains(expense_date):
        raise InvalidStateError('Expense date must fall inside the budget cycle window.')


def create_expense(*, description, amount, date, budget_cycle_id=None, added_by=None) -> MiscellaneousExpense:
    if amount is None or amount <= 0:
        raise InvalidStateError('Amount must be a positive number.')

    cycle = _resolve_cycle(budget_cycle_id)
    _check_window(cycle, date)

    expense = MiscellaneousExpense.objects.create(
        description=description,
        amount=amount,
        date=date,
        budget_cycle=cycle,
        added_by=added_by,
    )
    logger.info('Added miscellaneous expense %s of %s on %s', expense.pk, expense.amount, expense.date)
    return expense


@transaction.atomic
def update_expense(*, expense: MiscellaneousExpense, **changes) -> MiscellaneousExpense:
    locked = MiscellaneousExpense.objects.select_for_update().select_related('budget_cycle').get(pk=expense.pk)
    if locked.is_locked:
        raise ConflictError(LOCKED_MESSAGE)

    if 'amount' in changes and (changes['amount'] is None or changes['amount'] <= 0):
        raise InvalidStateError('Amount must be a positive number.')
    if 'budget_cycle_id' in changes:
        locked.budget_cycle = _resolve_cycle(changes.pop('budget_cycle_id'))

    for field, value in changes.items():
        setattr(locked, field, value)
    _check_window(locked.budget_cycle, locked.date)

    locked.save()
    return locked


@transaction.atomic
def delete_expense(*, expense: MiscellaneousExpense):
    locked = MiscellaneousExpense.objects.select_for_update().select_related('budget_cycle').get(pk=expense.pk)
    if locked.is_locked:
        raise ConflictError(LOCKED_MESSAGE)
    locked.delete()
    logger.info('Deleted miscellaneous expense %s', expense.pk)
