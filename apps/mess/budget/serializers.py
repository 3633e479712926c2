from apps.core.users.serializers import serialize_user


def serialize_cycle(cycle, include_payments=False):
    data = {
        'id': cycle.id,
        'month': cycle.month,
        'year': cycle.year,
        'label': cycle.label,
        'start_date': cycle.start_date,
        'end_date': cycle.end_date,
        'payment_deadline': cycle.payment_deadline,
        'is_finalized': cycle.is_finalized,
        'total_expenditure': cycle.total_expenditure,
        'per_head_cost': cycle.per_head_cost,
        'finalized_at': cycle.finalized_at,
    }
    if include_payments:
        payments = cycle.payments.select_related('user').order_by('user__first_name', 'id')
        data['payments'] = [serialize_payment(payment, include_user=True) for payment in payments]
    return data


def serialize_payment(payment, include_user=False):
    data = {
        'id': payment.id,
        'user_id': payment.user_id,
        'budget_cycle_id': payment.budget_cycle_id,
        'amount_paid': payment.amount_paid,
        'amount_returned': payment.amount_returned,
        'reference': payment.reference,
        'paid_at': payment.paid_at,
    }
    if include_user:
        data['user'] = serialize_user(payment.user)
    return data
