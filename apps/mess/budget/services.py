from __future__ import annotations

import calendar
import logging
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from io import BytesIO

from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import IntegrityError, transaction
from django.db.models import Sum
from django.utils import timezone
from PIL import Image, ImageDraw

from apps.core.utils.exceptions import ConflictError, InvalidStateError, NotFoundError
from apps.mess.expenses.models import MiscellaneousExpense
from apps.mess.marketing.models import Bill

from .models import BudgetCycle, Payment

logger = logging.getLogger(__name__)


def _to_decimal(value) -> Decimal:
    return Decimal(str(value or '0'))


def _quantize(value) -> Decimal:
    return _to_decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def _sum_amount(queryset, field_name='amount') -> Decimal:
    value = queryset.aggregate(total=Sum(field_name)).get('total')
    return _to_decimal(value)


def _cycle_window(month: int, year: int):
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def get_cycle(cycle_id) -> BudgetCycle:
    cycle = BudgetCycle.objects.filter(pk=cycle_id).first()
    if cycle is None:
        raise NotFoundError('Budget cycle not found.')
    return cycle


def get_current_cycle(today=None) -> BudgetCycle:
    today = today or timezone.localdate()
    cycle = BudgetCycle.objects.for_month(today.month, today.year).first()
    if cycle is None:
        raise NotFoundError('No active budget cycle found for the current month.')
    return cycle


@transaction.atomic
def create_budget_cycle(*, month: int, year: int, created_by=None, payment_deadline=None) -> BudgetCycle:
    if not 1 <= month <= 12:
        raise InvalidStateError('Month must be between 1 and 12.')

    if BudgetCycle.objects.for_month(month, year).exists():
        raise ConflictError(f"A budget cycle already exists for {calendar.month_name[month]} {year}.")

    start_date, end_date = _cycle_window(month, year)
    if payment_deadline is None:
        deadline_day = min(settings.MESS_PAYMENT_DEADLINE_DAY, end_date.day)
        payment_deadline = date(year, month, deadline_day)
    elif not start_date <= payment_deadline <= end_date:
        raise InvalidStateError('Payment deadline must fall inside the cycle month.')

    cycle = BudgetCycle(
        month=month,
        year=year,
        start_date=start_date,
        end_date=end_date,
        payment_deadline=payment_deadline,
        created_by=created_by,
    )
    cycle.full_clean(validate_unique=False, validate_constraints=False)
    cycle.save()
    logger.info('Created budget cycle %s', cycle.label)
    return cycle


def _cycle_bills(cycle: BudgetCycle):
    # Every bill in the window counts, whatever the task status.
    return Bill.objects.within_cycle(cycle)


def _cycle_misc_expenses(cycle: BudgetCycle):
    return MiscellaneousExpense.objects.for_cycle(cycle)


def aggregate_cycle_expenditure(cycle: BudgetCycle) -> dict:
    bills_total = _quantize(_sum_amount(_cycle_bills(cycle), field_name='total_bill_amount'))
    misc_total = _quantize(_sum_amount(_cycle_misc_expenses(cycle)))
    return {
        'bills_total': bills_total,
        'misc_total': misc_total,
        'total_expenditure': _quantize(bills_total + misc_total),
    }


def compute_per_head_cost(total_expenditure, student_count: int) -> Decimal:
    if student_count <= 0:
        raise InvalidStateError('No students have paid for this cycle.')

    total = _to_decimal(total_expenditure)
    if total < 0:
        raise InvalidStateError('Total expenditure cannot be negative.')

    return _quantize(total / Decimal(student_count))


def finalize_budget_cycle(*, cycle_id, finalized_by=None) -> BudgetCycle:
    """Lock a cycle's numbers and back-fill the refund/due of every payment.

    Runs as a single transaction. The cycle row is locked and the finalized
    flag is flipped with a conditional update, so of two concurrent calls only
    one can succeed; the other raises ConflictError.
    """
    with transaction.atomic():
        cycle = BudgetCycle.objects.select_for_update().filter(pk=cycle_id).first()
        if cycle is None:
            raise NotFoundError('Budget cycle not found.')
        if cycle.is_finalized:
            logger.warning('Rejected finalize of already finalized cycle %s', cycle.pk)
            raise ConflictError('Budget cycle is already finalized.')

        payments = list(Payment.objects.select_for_update().filter(budget_cycle=cycle))
        student_count = len(payments)
        if student_count == 0:
            logger.warning('Rejected finalize of cycle %s without payments', cycle.pk)
            raise InvalidStateError('No students have paid for this cycle.')

        totals = aggregate_cycle_expenditure(cycle)
        per_head_cost = compute_per_head_cost(totals['total_expenditure'], student_count)

        updated = BudgetCycle.objects.filter(pk=cycle.pk, is_finalized=False).update(
            is_finalized=True,
            total_expenditure=totals['total_expenditure'],
            per_head_cost=per_head_cost,
            finalized_at=timezone.now(),
            finalized_by=finalized_by,
            updated_at=timezone.now(),
        )
        if updated != 1:
            raise ConflictError('Budget cycle is already finalized.')

        for payment in payments:
            payment.amount_returned = _quantize(payment.amount_paid - per_head_cost)
            payment.save(update_fields=['amount_returned', 'updated_at'])

        linked = MiscellaneousExpense.objects.unlinked().within_cycle(cycle).update(
            budget_cycle=cycle,
            updated_at=timezone.now(),
        )

    cycle.refresh_from_db()
    logger.info(
        'Finalized cycle %s: total=%s students=%s per_head=%s linked_expenses=%s',
        cycle.label,
        cycle.total_expenditure,
        student_count,
        cycle.per_head_cost,
        linked,
    )
    return cycle


def record_payment(*, user, cycle: BudgetCycle, amount_paid, reference='', recorded_by=None) -> Payment:
    amount = _quantize(amount_paid)
    if amount <= 0:
        raise InvalidStateError('Payment amount must be greater than zero.')

    try:
        with transaction.atomic():
            locked_cycle = BudgetCycle.objects.select_for_update().get(pk=cycle.pk)
            if locked_cycle.is_finalized:
                raise ConflictError('Budget cycle is already finalized.')
            if Payment.objects.filter(user=user, budget_cycle=locked_cycle).exists():
                raise ConflictError('You have already paid for this cycle.')

            payment = Payment.objects.create(
                user=user,
                budget_cycle=locked_cycle,
                amount_paid=amount,
                reference=(reference or '')[:120],
                recorded_by=recorded_by,
            )
    except IntegrityError as exc:
        raise ConflictError('You have already paid for this cycle.') from exc

    logger.info('Recorded payment of %s by user %s for %s', amount, user.pk, cycle.label)
    return payment


def pay_current_cycle(*, user, today=None) -> Payment:
    today = today or timezone.localdate()
    cycle = get_current_cycle(today)
    if today > cycle.payment_deadline:
        raise InvalidStateError('Payment deadline has passed.')

    return record_payment(
        user=user,
        cycle=cycle,
        amount_paid=settings.MESS_CYCLE_FEE,
        recorded_by=user,
    )


def confirm_gateway_payment(*, user_id, cycle_id, amount_paid, reference, recorded_by=None) -> Payment:
    """Apply a payment-gateway confirmation to its one Payment record.

    Creates the payment when the gateway reports it first; when the record
    already exists only its reference is attached, never its amount.

    The gateway handshake itself (payment intents, webhooks and signature
    verification) happens outside this service. This only records a
    confirmation the Mess Manager relays after the gateway has settled.
    """
    user = get_user_model().objects.filter(pk=user_id).first()
    if user is None:
        raise NotFoundError('User not found.')
    cycle = get_cycle(cycle_id)

    existing = Payment.objects.filter(user=user, budget_cycle=cycle).first()
    if existing is None:
        return record_payment(
            user=user,
            cycle=cycle,
            amount_paid=amount_paid,
            reference=reference,
            recorded_by=recorded_by,
        )

    if existing.reference and existing.reference != reference:
        raise ConflictError('Payment already confirmed with a different reference.')
    if existing.reference != reference:
        existing.reference = (reference or '')[:120]
        existing.save(update_fields=['reference', 'updated_at'])
    return existing


def refund_or_due(payment: Payment | None, cycle: BudgetCycle):
    if payment is None or not cycle.is_finalized or cycle.per_head_cost is None:
        return None
    return _quantize(payment.amount_paid - cycle.per_head_cost)


def budget_overview(cycle: BudgetCycle) -> list[dict]:
    boarders = get_user_model().objects.boarders().order_by('first_name', 'username')
    payment_map = {
        payment.user_id: payment
        for payment in Payment.objects.filter(budget_cycle=cycle)
    }

    rows = []
    for boarder in boarders:
        payment = payment_map.get(boarder.id)
        amount_paid = payment.amount_paid if payment else Decimal('0.00')
        amount_to_be_returned = None
        if cycle.is_finalized and cycle.per_head_cost is not None:
            amount_to_be_returned = _quantize(amount_paid - cycle.per_head_cost)

        rows.append({
            'user': boarder,
            'payment': payment,
            'amount_paid': _quantize(amount_paid),
            'amount_to_be_returned': amount_to_be_returned,
        })
    return rows


def boarder_status(*, user, cycle: BudgetCycle) -> dict:
    payment = Payment.objects.filter(user=user, budget_cycle=cycle).first()
    return {
        'has_paid': payment is not None,
        'payment': payment,
        'cycle': cycle,
        'per_head_cost': cycle.per_head_cost,
        'refund_or_due': refund_or_due(payment, cycle),
    }


def image_to_pdf_bytes(images):
    if not images:
        return b''
    rgb_images = [img.convert('RGB') for img in images]
    output = BytesIO()
    rgb_images[0].save(output, format='PDF', save_all=True, append_images=rgb_images[1:])
    return output.getvalue()


def build_settlement_statement_image(payment: Payment):
    width = 1240
    height = 1754
    page = Image.new('RGB', (width, height), color='white')
    draw = ImageDraw.Draw(page)

    cycle = payment.budget_cycle
    user = payment.user

    draw.rectangle((30, 30, width - 30, height - 30), outline='black', width=3)
    draw.text((60, 60), f"Hostel Mess - Settlement Statement ({cycle.label})", fill='black')
    draw.text((60, 110), f"Boarder: {user.display_name}", fill='black')
    draw.text((60, 150), f"Room: {user.room_number or '-'}", fill='black')
    draw.text((60, 190), f"Cycle: {cycle.start_date} to {cycle.end_date}", fill='black')
    draw.text((60, 230), f"Payment Date: {timezone.localtime(payment.paid_at).strftime('%Y-%m-%d %H:%M')}", fill='black')
    draw.text((60, 270), f"Reference: {payment.reference or '-'}", fill='black')

    y = 350
    draw.line((60, y, width - 60, y), fill='black')
    y += 30
    draw.text((60, y), f"Amount Paid: {_quantize(payment.amount_paid)}", fill='black')
    y += 36

    if cycle.is_finalized:
        balance = refund_or_due(payment, cycle)
        draw.text((60, y), f"Total Expenditure: {cycle.total_expenditure}", fill='black')
        y += 36
        draw.text((60, y), f"Per-Head Cost: {cycle.per_head_cost}", fill='black')
        y += 36
        if balance >= 0:
            draw.text((60, y), f"Refund Due To Boarder: {balance}", fill='black')
        else:
            draw.text((60, y), f"Amount Owed By Boarder: {-balance}", fill='black')
    else:
        draw.text((60, y), 'STATUS: CYCLE OPEN (settlement pending)', fill='black')

    return page


def generate_settlement_statement_pdf(payment: Payment) -> bytes:
    image = build_settlement_statement_image(payment)
    return image_to_pdf_bytes([image])
