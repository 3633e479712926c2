from apps.core.users.serializers import serialize_user


def serialize_bill_item(item):
    return {
        'id': item.id,
        'item_code': item.item_code,
        'label': item.label,
        'amount': str(item.amount),
    }


def serialize_bill(bill, include_task=False):
    data = {
        'id': bill.id,
        'marketing_task_id': bill.marketing_task_id,
        'submitted_by': serialize_user(bill.submitted_by),
        'date': bill.date.isoformat(),
        'marketing_total': str(bill.marketing_total),
        'grocery_total': str(bill.grocery_total),
        'total_bill_amount': str(bill.total_bill_amount),
        'amount_given': str(bill.amount_given),
        'money_returned': str(bill.money_returned) if bill.money_returned is not None else None,
        'description': bill.description,
        'receipt_url': bill.receipt_url,
        'submitted_at': bill.submitted_at.isoformat(),
        'items': [serialize_bill_item(item) for item in bill.items.all()],
    }
    if include_task:
        data['marketing_task'] = serialize_task(bill.marketing_task)
    return data


def serialize_task(task):
    return {
        'id': task.id,
        'date': task.date.isoformat(),
        'status': task.status,
        'money_given': str(task.money_given),
        'assigned_students': [serialize_user(student) for student in task.assigned_students.all()],
        'created_by': task.created_by_id,
        'completed_at': task.completed_at.isoformat() if task.completed_at else None,
        'has_bill': hasattr(task, 'bill'),
    }
