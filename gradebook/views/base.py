import json
import logging
from functools import wraps

from django.core.exceptions import PermissionDenied, ValidationError
from django.http import Http404, JsonResponse

from accounts.permissions import Actor

from ..exceptions import (
    ConcurrencyConflict, ConfigurationError, InvalidTransition, PersistenceError,
)

logger = logging.getLogger(__name__)

# Exception class -> (HTTP status, error code)
ERROR_RESPONSES = (
    (PermissionDenied, 403, 'permission_denied'),
    (Http404, 404, 'not_found'),
    (ValidationError, 400, 'validation_error'),
    (ConfigurationError, 400, 'configuration_error'),
    (InvalidTransition, 400, 'invalid_transition'),
    (ConcurrencyConflict, 409, 'concurrency_conflict'),
    (PersistenceError, 503, 'persistence_error'),
)


def get_actor(request):
    return Actor.from_user(request.user)


def get_school(request):
    """
    The school a request acts on: the user's own school, or for a super
    admin the ``school`` parameter.
    """
    from schools.models import School

    user = request.user
    if user.school_id:
        return user.school
    school_id = request.GET.get('school') or request.POST.get('school')
    if not school_id:
        raise ValidationError({'school': ['This field is required.']})
    try:
        return School.objects.get(pk=school_id)
    except (School.DoesNotExist, ValueError):
        raise ValidationError({'school': ['Unknown school.']})


def parse_json_body(request):
    """JSON request bodies, falling back to form data."""
    if request.content_type == 'application/json':
        try:
            return json.loads(request.body or b'{}')
        except json.JSONDecodeError:
            raise ValidationError({'body': ['Invalid JSON.']})
    return request.POST.dict()


def error_response(exc):
    for exc_class, status, code in ERROR_RESPONSES:
        if isinstance(exc, exc_class):
            if isinstance(exc, ValidationError):
                message = exc.message_dict if hasattr(exc, 'error_dict') else exc.messages
            else:
                message = str(exc) or code.replace('_', ' ').capitalize()
            return JsonResponse({'code': code, 'message': message}, status=status)
    raise exc


def json_errors(view_func):
    """Turn gradebook and permission errors into JSON {code, message} responses."""
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        try:
            return view_func(request, *args, **kwargs)
        except tuple(exc_class for exc_class, _, _ in ERROR_RESPONSES) as exc:
            if isinstance(exc, (PersistenceError, ConcurrencyConflict)):
                logger.error(f"{view_func.__name__} failed: {exc}")
            else:
                logger.warning(f"{view_func.__name__} rejected: {exc}")
            return error_response(exc)
    return wrapper
