from django.contrib.auth import get_user_model
from django.core.exceptions import PermissionDenied, ValidationError
from django.http import HttpResponse, JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import login_required_json, role_required
from apps.core.users.serializers import serialize_user
from apps.core.utils.api import form_error_response, parse_json_body, service_error_response
from apps.core.utils.exceptions import NotFoundError

from .forms import BudgetCycleForm, PaymentConfirmationForm, PaymentRecordForm
from .models import BudgetCycle, Payment
from .serializers import serialize_cycle, serialize_payment
from .services import (
    boarder_status,
    budget_overview,
    confirm_gateway_payment,
    create_budget_cycle,
    finalize_budget_cycle,
    generate_settlement_statement_pdf,
    get_current_cycle,
    get_cycle,
    pay_current_cycle,
    record_payment,
)

User = get_user_model()


def _resolve_cycle(request):
    cycle_id = request.GET.get('cycle')
    if cycle_id:
        if not str(cycle_id).isdigit():
            raise NotFoundError('Budget cycle not found.')
        return get_cycle(int(cycle_id))
    return get_current_cycle()


@require_http_methods(['GET', 'POST'])
@role_required(User.ADMIN_ROLES)
def cycle_list(request):
    if request.method == 'POST':
        try:
            form = BudgetCycleForm(parse_json_body(request))
            if not form.is_valid():
                return form_error_response(form)
            cycle = create_budget_cycle(
                month=form.cleaned_data['month'],
                year=form.cleaned_data['year'],
                payment_deadline=form.cleaned_data['payment_deadline'],
                created_by=request.user,
            )
        except ValidationError as exc:
            return service_error_response(exc)

        log_audit_event(
            request=request,
            action='budget.cycle_created',
            target=cycle,
            details=f"Cycle={cycle.label}",
        )
        return JsonResponse(serialize_cycle(cycle), status=201)

    cycles = BudgetCycle.objects.all()
    state = request.GET.get('state')
    if state == 'open':
        cycles = cycles.open()
    elif state == 'finalized':
        cycles = cycles.finalized()
    return JsonResponse({'cycles': [serialize_cycle(cycle) for cycle in cycles]})


@require_GET
@login_required_json
def cycle_current(request):
    try:
        cycle = get_current_cycle()
    except ValidationError as exc:
        return service_error_response(exc)
    return JsonResponse(serialize_cycle(cycle))


@require_GET
@login_required_json
def cycle_detail(request, cycle_id):
    try:
        cycle = get_cycle(cycle_id)
    except ValidationError as exc:
        return service_error_response(exc)
    return JsonResponse(serialize_cycle(cycle, include_payments=True))


@require_POST
@role_required(User.ROLE_MESS_MANAGER)
def cycle_finalize(request, cycle_id):
    try:
        cycle = finalize_budget_cycle(cycle_id=cycle_id, finalized_by=request.user)
    except ValidationError as exc:
        return service_error_response(exc)

    log_audit_event(
        request=request,
        action='budget.cycle_finalized',
        target=cycle,
        details=f"Total={cycle.total_expenditure}, PerHead={cycle.per_head_cost}",
    )
    return JsonResponse(serialize_cycle(cycle, include_payments=True))


@require_POST
@role_required(User.ROLE_MESS_MANAGER)
def cycle_record_payment(request, cycle_id):
    try:
        cycle = get_cycle(cycle_id)
        form = PaymentRecordForm(parse_json_body(request))
        if not form.is_valid():
            return form_error_response(form)
        payment = record_payment(
            user=form.cleaned_data['user'],
            cycle=cycle,
            amount_paid=form.cleaned_data['amount_paid'],
            reference=form.cleaned_data['reference'],
            recorded_by=request.user,
        )
    except ValidationError as exc:
        return service_error_response(exc)

    log_audit_event(
        request=request,
        action='budget.payment_recorded',
        target=payment,
        details=f"User={payment.user_id}, Amount={payment.amount_paid}",
    )
    return JsonResponse(serialize_payment(payment), status=201)


@require_POST
@role_required(User.ROLE_BOARDER)
def pay(request):
    try:
        payment = pay_current_cycle(user=request.user)
    except ValidationError as exc:
        return service_error_response(exc)

    log_audit_event(
        request=request,
        action='budget.payment_made',
        target=payment,
        details=f"Amount={payment.amount_paid}",
    )
    return JsonResponse(serialize_payment(payment), status=201)


@require_POST
@role_required(User.ROLE_MESS_MANAGER)
def payment_confirmation(request):
    try:
        form = PaymentConfirmationForm(parse_json_body(request))
        if not form.is_valid():
            return form_error_response(form)
        payment = confirm_gateway_payment(
            user_id=form.cleaned_data['user_id'],
            cycle_id=form.cleaned_data['budget_cycle_id'],
            amount_paid=form.cleaned_data['amount_paid'],
            reference=form.cleaned_data['reference'],
            recorded_by=request.user,
        )
    except ValidationError as exc:
        return service_error_response(exc)

    log_audit_event(
        request=request,
        action='budget.payment_confirmed',
        target=payment,
        details=f"Reference={payment.reference}",
    )
    return JsonResponse(serialize_payment(payment))


@require_GET
@role_required(User.ADMIN_ROLES)
def overview(request):
    try:
        cycle = _resolve_cycle(request)
    except ValidationError as exc:
        return service_error_response(exc)

    rows = [
        {
            'user_id': row['user'].id,
            'user': serialize_user(row['user']),
            'amount_paid': row['amount_paid'],
            'amount_to_be_returned': row['amount_to_be_returned'],
        }
        for row in budget_overview(cycle)
    ]
    return JsonResponse({'cycle': serialize_cycle(cycle), 'rows': rows})


@require_GET
@login_required_json
def my_status(request):
    try:
        cycle = _resolve_cycle(request)
    except ValidationError as exc:
        return service_error_response(exc)

    status = boarder_status(user=request.user, cycle=cycle)
    payment = status['payment']
    return JsonResponse({
        'has_paid': status['has_paid'],
        'payment': serialize_payment(payment) if payment else None,
        'current_cycle': serialize_cycle(cycle),
        'per_head_cost': status['per_head_cost'],
        'refund_or_due': status['refund_or_due'],
    })


@require_GET
@login_required_json
def settlement_statement(request, cycle_id):
    user_id = request.GET.get('user')
    try:
        cycle = get_cycle(cycle_id)
        if user_id and str(user_id) != str(request.user.id):
            if not request.user.is_mess_admin:
                raise PermissionDenied('You do not have permission to view this statement.')
            if not str(user_id).isdigit():
                raise NotFoundError('User not found.')
            payment = Payment.objects.filter(budget_cycle=cycle, user_id=user_id).select_related('user').first()
        else:
            payment = Payment.objects.filter(budget_cycle=cycle, user=request.user).select_related('user').first()
        if payment is None:
            raise NotFoundError('No payment found for this cycle.')
    except (ValidationError, PermissionDenied) as exc:
        return service_error_response(exc)

    response = HttpResponse(generate_settlement_statement_pdf(payment), content_type='application/pdf')
    response['Content-Disposition'] = (
        f'inline; filename="settlement-{cycle.year}-{cycle.month:02d}-{payment.user_id}.pdf"'
    )
    return response
