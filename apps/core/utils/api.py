import json
import logging

from django.core.exceptions import PermissionDenied
from django.http import JsonResponse

from apps.core.utils.exceptions import ServiceError

logger = logging.getLogger(__name__)


class MalformedBody(ServiceError):
    pass


def json_error(message, status=400, **extra):
    payload = {'error': message}
    payload.update(extra)
    return JsonResponse(payload, status=status)


def parse_json_body(request):
    if not request.body:
        return {}
    try:
        payload = json.loads(request.body)
    except (TypeError, ValueError) as exc:
        raise MalformedBody('Invalid request body format.') from exc
    if not isinstance(payload, dict):
        raise MalformedBody('Request body must be a JSON object.')
    return payload


def form_error_response(form):
    errors = {
        field: [str(message) for message in messages]
        for field, messages in form.errors.items()
    }
    first = next(iter(errors.values()), ['Validation failed.'])[0]
    return json_error(first, status=400, details=errors)


def service_error_response(exc):
    if isinstance(exc, PermissionDenied):
        return json_error(str(exc) or 'You do not have permission to access this resource.', status=403)

    status = getattr(exc, 'status_code', 400)
    message = '; '.join(exc.messages)
    logger.info('Request rejected (%s): %s', status, message)
    return json_error(message, status=status)
