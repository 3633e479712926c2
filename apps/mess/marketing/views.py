from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied, ValidationError
from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import login_required_json, role_required
from apps.core.utils.api import form_error_response, json_error, parse_json_body, service_error_response
from apps.core.utils.exceptions import NotFoundError
from apps.mess.budget.services import get_cycle

from .forms import BillSubmitForm, MarketingTaskAssignForm, MarketingTaskCompleteForm, MarketingTaskUpdateForm
from .models import Bill, MarketingTask
from .serializers import serialize_bill, serialize_task
from .services import (
    assign_marketing_task,
    can_view_task,
    complete_marketing_task,
    delete_marketing_task,
    get_task,
    submit_bill,
    update_marketing_task,
)

User = get_user_model()


def _task_queryset():
    return MarketingTask.objects.select_related('created_by').prefetch_related('assigned_students')


def _bill_queryset():
    return Bill.objects.select_related('submitted_by', 'marketing_task').prefetch_related('items')


@require_GET
@role_required(User.ADMIN_ROLES)
def task_list(request):
    tasks = _task_queryset()
    status = request.GET.get('status')
    if status:
        tasks = tasks.filter(status=status)
    cycle_id = request.GET.get('cycle')
    if cycle_id:
        try:
            if not cycle_id.isdigit():
                raise NotFoundError('Budget cycle not found.')
            tasks = tasks.within_cycle(get_cycle(int(cycle_id)))
        except ValidationError as exc:
            return service_error_response(exc)
    return JsonResponse({'tasks': [serialize_task(task) for task in tasks]})


@require_GET
@login_required_json
def my_tasks(request):
    tasks = _task_queryset().filter(assigned_students=request.user)
    return JsonResponse({'tasks': [serialize_task(task) for task in tasks]})


@require_POST
@role_required(User.ROLE_MESS_MANAGER)
def task_assign(request):
    try:
        form = MarketingTaskAssignForm(parse_json_body(request))
        if not form.is_valid():
            return form_error_response(form)
        task = assign_marketing_task(
            date=form.cleaned_data['date'],
            student_ids=form.cleaned_data['student_ids'],
            money_given=form.cleaned_data['money_given'],
            created_by=request.user,
        )
    except ValidationError as exc:
        return service_error_response(exc)

    log_audit_event(
        request=request,
        action='marketing.task_assigned',
        target=task,
        details=f"Date={task.date}, MoneyGiven={task.money_given}",
    )
    return JsonResponse(serialize_task(task), status=201)


@require_http_methods(['GET', 'PATCH', 'DELETE'])
@login_required_json
def task_detail(request, task_id):
    try:
        task = get_task(task_id)
        if request.method == 'GET':
            if not can_view_task(task, request.user):
                raise PermissionDenied('You do not have permission to view this task.')
            return JsonResponse(serialize_task(task))

        if request.user.role != User.ROLE_MESS_MANAGER:
            raise PermissionDenied('You do not have permission to access this resource')

        if request.method == 'DELETE':
            delete_marketing_task(task=task)
            log_audit_event(
                request=request,
                action='marketing.task_deleted',
                target=task,
                details=f"Date={task.date}",
            )
            return JsonResponse({'message': 'Marketing task deleted successfully.'})

        form = MarketingTaskUpdateForm(parse_json_body(request))
        if not form.is_valid():
            return form_error_response(form)
        task = update_marketing_task(task=task, money_given=form.cleaned_data['money_given'])
    except (ValidationError, PermissionDenied) as exc:
        return service_error_response(exc)

    log_audit_event(
        request=request,
        action='marketing.task_updated',
        target=task,
        details=f"MoneyGiven={task.money_given}",
    )
    return JsonResponse(serialize_task(task))


@require_http_methods(['PATCH'])
@role_required(User.ROLE_MESS_MANAGER)
def task_complete(request, task_id):
    try:
        task = get_task(task_id)
        form = MarketingTaskCompleteForm(parse_json_body(request))
        if not form.is_valid():
            return form_error_response(form)
        task = complete_marketing_task(
            task=task,
            money_return_received=form.cleaned_data['money_return_received'],
        )
    except ValidationError as exc:
        return service_error_response(exc)

    log_audit_event(
        request=request,
        action='marketing.task_completed',
        target=task,
        details=f"Date={task.date}",
    )
    return JsonResponse(serialize_task(task))


@require_http_methods(['GET', 'POST'])
@login_required_json
def task_bill(request, task_id):
    try:
        task = get_task(task_id)
        if request.method == 'GET':
            if not can_view_task(task, request.user):
                raise PermissionDenied('You do not have permission to view this bill.')
            bill = _bill_queryset().filter(marketing_task=task).first()
            if bill is None:
                raise NotFoundError('No bill has been submitted for this marketing task.')
            return JsonResponse(serialize_bill(bill))

        form = BillSubmitForm(parse_json_body(request))
        if not form.is_valid():
            return form_error_response(form)
        bill = submit_bill(task=task, submitted_by=request.user, **form.cleaned_data)
    except (ValidationError, PermissionDenied) as exc:
        return service_error_response(exc)

    log_audit_event(
        request=request,
        action='marketing.bill_submitted',
        target=bill,
        details=f"Task={task.pk}, Total={bill.total_bill_amount}",
    )
    return JsonResponse(serialize_bill(bill), status=201)


@require_GET
@role_required(User.ADMIN_ROLES)
def bill_list(request):
    bills = _bill_queryset()
    return JsonResponse({'bills': [serialize_bill(bill, include_task=True) for bill in bills]})


@require_GET
@login_required_json
def bill_detail(request, bill_id):
    bill = _bill_queryset().filter(pk=bill_id).first()
    if bill is None:
        return json_error('Bill not found.', status=404)
    if not can_view_task(bill.marketing_task, request.user):
        return json_error('You do not have permission to view this bill.', status=403)
    return JsonResponse(serialize_bill(bill, include_task=True))
