def serialize_expense(expense):
    return {
        'id': expense.id,
        'description': expense.description,
        'amount': str(expense.amount),
        'date': expense.date.isoformat(),
        'budget_cycle_id': expense.budget_cycle_id,
        'added_by': expense.added_by_id,
        'created_at': expense.created_at.isoformat(),
    }
