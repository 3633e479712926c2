import logging

from django.contrib.auth import authenticate, get_user_model, login, logout
from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.views.decorators.csrf import ensure_csrf_cookie
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import login_required_json, role_required
from apps.core.users.forms import LoginForm, RegistrationForm, RoleAssignForm
from apps.core.users.serializers import serialize_user
from apps.core.utils.api import form_error_response, json_error, parse_json_body, service_error_response
from apps.mess.marketing.services import marketing_duty_summary

logger = logging.getLogger(__name__)

User = get_user_model()


@require_POST
def register(request):
    try:
        form = RegistrationForm(parse_json_body(request))
    except ValidationError as exc:
        return service_error_response(exc)

    if not form.is_valid():
        if form.has_error('email', code='duplicate'):
            return json_error(form.errors['email'][0], status=409)
        return form_error_response(form)

    user = form.save()
    log_audit_event(
        request=request,
        action='user.registered',
        target=user,
        details=f"Email={user.email}",
        user=user,
    )
    return JsonResponse(serialize_user(user), status=201)


@require_POST
@ensure_csrf_cookie
def login_view(request):
    try:
        form = LoginForm(parse_json_body(request))
    except ValidationError as exc:
        return service_error_response(exc)
    if not form.is_valid():
        return form_error_response(form)

    identifier = form.cleaned_data['email'].strip()
    account = User.objects.filter(email__iexact=identifier).first()
    username = account.username if account else identifier
    user = authenticate(request, username=username, password=form.cleaned_data['password'])
    if user is None:
        logger.info('Failed login attempt for %s', identifier)
        return json_error('Invalid credentials.', status=401)

    login(request, user)
    return JsonResponse(serialize_user(user))


@require_POST
def logout_view(request):
    logout(request)
    return JsonResponse({'message': 'Logged out.'})


@require_GET
@ensure_csrf_cookie
@login_required_json
def me(request):
    return JsonResponse(serialize_user(request.user))


@require_GET
@role_required(User.ADMIN_ROLES)
def user_list(request):
    users = User.objects.filter(is_active=True)
    role = request.GET.get('role')
    if role:
        users = users.filter(role=role)
    return JsonResponse({'users': [serialize_user(user) for user in users]})


@require_http_methods(['PATCH'])
@role_required(User.ROLE_GENERAL_SECRETARY)
def assign_role(request, user_id):
    target = User.objects.filter(pk=user_id).first()
    if target is None:
        return json_error('User not found.', status=404)

    try:
        form = RoleAssignForm(parse_json_body(request))
    except ValidationError as exc:
        return service_error_response(exc)
    if not form.is_valid():
        return form_error_response(form)

    if target.is_superuser and form.cleaned_data['role'] != User.ROLE_GENERAL_SECRETARY:
        return json_error('Superuser accounts must stay General Secretary.', status=400)

    previous_role = target.role
    target.role = form.cleaned_data['role']
    target.save(update_fields=['role'])
    log_audit_event(
        request=request,
        action='user.role_assigned',
        target=target,
        details=f"From={previous_role}, To={target.role}",
    )
    return JsonResponse(serialize_user(target))


@require_GET
@role_required(User.ADMIN_ROLES)
def marketing_summary(request):
    rows = [
        {
            'user': serialize_user(user),
            'marketing_task_count': user.marketing_task_count,
        }
        for user in marketing_duty_summary().filter(is_active=True)
    ]
    return JsonResponse({'summary': rows})
