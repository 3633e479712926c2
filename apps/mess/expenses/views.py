from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied, ValidationError
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import role_required
from apps.core.utils.api import form_error_response, parse_json_body, service_error_response
from apps.core.utils.exceptions import NotFoundError
from apps.mess.budget.services import get_cycle

from .forms import MiscellaneousExpenseForm, MiscellaneousExpenseUpdateForm
from .models import MiscellaneousExpense
from .serializers import serialize_expense
from .services import create_expense, delete_expense, get_expense, update_expense

User = get_user_model()


@require_http_methods(['GET', 'POST'])
@role_required(User.ADMIN_ROLES)
def expense_list(request):
    try:
        if request.method == 'POST':
            if request.user.role != User.ROLE_MESS_MANAGER:
                raise PermissionDenied('You do not have permission to access this resource')
            form = MiscellaneousExpenseForm(parse_json_body(request))
            if not form.is_valid():
                return form_error_response(form)
            expense = create_expense(added_by=request.user, **form.cleaned_data)
        else:
            expenses = MiscellaneousExpense.objects.all()
            cycle_id = request.GET.get('cycle')
            if cycle_id:
                if not cycle_id.isdigit():
                    raise NotFoundError('Budget cycle not found.')
                expenses = expenses.for_cycle(get_cycle(int(cycle_id)))
            return JsonResponse({'expenses': [serialize_expense(expense) for expense in expenses]})
    except (ValidationError, PermissionDenied) as exc:
        return service_error_response(exc)

    log_audit_event(
        request=request,
        action='expenses.created',
        target=expense,
        details=f"Amount={expense.amount}, Date={expense.date}",
    )
    return JsonResponse(serialize_expense(expense), status=201)


@require_http_methods(['PATCH', 'DELETE'])
@role_required(User.ROLE_MESS_MANAGER)
def expense_detail(request, expense_id):
    try:
        expense = get_expense(expense_id)
        if request.method == 'DELETE':
            delete_expense(expense=expense)
            log_audit_event(
                request=request,
                action='expenses.deleted',
                target=expense,
                details=f"Amount={expense.amount}, Date={expense.date}",
            )
            return JsonResponse({'message': 'Expense deleted successfully.'})

        form = MiscellaneousExpenseUpdateForm(parse_json_body(request))
        if not form.is_valid():
            return form_error_response(form)
        expense = update_expense(expense=expense, **form.changes())
    except ValidationError as exc:
        return service_error_response(exc)

    log_audit_event(
        request=request,
        action='expenses.updated',
        target=expense,
        details=f"Amount={expense.amount}, Date={expense.date}",
    )
    return JsonResponse(serialize_expense(expense))
