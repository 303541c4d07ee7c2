import logging
import uuid

from django.contrib.auth.decorators import login_required
from django.core.exceptions import ValidationError
from django.http import JsonResponse
from django.shortcuts import get_object_or_404
from django.views.decorators.http import require_GET, require_POST

from academics.models import Class
from accounts.permissions import require_report_manager
from core.models import Term
from students.models import Student

from .base import get_actor, get_school, json_errors, parse_json_body
from ..models import ReportCardVersion
from ..publication import publish, publish_bulk
from ..snapshots import ReportCardBuilder

logger = logging.getLogger(__name__)


def _decimal(value):
    return str(value) if value is not None else None


def serialize_version(version, include_subjects=False):
    data = {
        'id': str(version.pk),
        'student_id': version.student_id,
        'term_id': version.term_id,
        'version_number': version.version_number,
        'status': version.status,
        'generated_at': version.generated_at.isoformat(),
        'generation_batch': str(version.generation_batch) if version.generation_batch else None,
        'content_hash': version.content_hash,
        'total_score': _decimal(version.total_score),
        'total_marks': _decimal(version.total_marks),
        'average_percentage': _decimal(version.average_percentage),
        'mean_points': _decimal(version.mean_points),
        'overall_grade': version.overall_grade,
        'ranking_method': version.ranking_method,
        'ranking_basis': version.ranking_basis,
        'ranking_subject_count': version.ranking_subject_count,
        'ranking_incomplete': version.ranking_incomplete,
        'incomplete_reasons': version.incomplete_reasons,
        'position_in_class': version.position_in_class,
        'class_size': version.class_size,
        'stream': version.stream,
        'position_in_stream': version.position_in_stream,
        'stream_size': version.stream_size,
        'days_present': version.days_present,
        'days_absent': version.days_absent,
        'attendance_percentage': _decimal(version.attendance_percentage),
        'released_at': version.released_at.isoformat() if version.released_at else None,
    }
    if include_subjects:
        data['marks_snapshot'] = version.marks_snapshot
    return data


def _parse_id(value, field_name):
    if value in (None, ''):
        raise ValidationError({field_name: ['This field is required.']})
    if isinstance(value, bool):
        raise ValidationError({field_name: ['Enter a whole number.']})
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError({field_name: ['Enter a whole number.']})


def _get_term(school, term_id):
    return get_object_or_404(
        Term.objects.select_related('academic_year'),
        pk=_parse_id(term_id, 'term'), academic_year__school=school,
    )


def _get_class(school, class_id):
    return get_object_or_404(Class, pk=_parse_id(class_id, 'class'), school=school)


@login_required
@require_GET
@json_errors
def report_list(request):
    """Report card versions of a class for a term."""
    school = get_school(request)
    require_report_manager(get_actor(request), school.pk)
    term = _get_term(school, request.GET.get('term'))
    class_obj = _get_class(school, request.GET.get('class'))

    versions = ReportCardVersion.objects.for_term(term).for_class(class_obj)
    status = request.GET.get('status')
    if status:
        if status not in ReportCardVersion.Status.values:
            raise ValidationError({'status': [f"Unknown status '{status}'."]})
        versions = versions.filter(status=status)
    if request.GET.get('current') == '1':
        versions = versions.current()
    versions = versions.order_by('student__admission_number', '-version_number')

    return JsonResponse({'results': [serialize_version(version) for version in versions]})


@login_required
@require_POST
@json_errors
def generate_class(request):
    """Generate report cards for a whole class now."""
    school = get_school(request)
    data = parse_json_body(request)
    term = _get_term(school, data.get('term'))
    class_obj = _get_class(school, data.get('class'))

    builder = ReportCardBuilder(school, term, get_actor(request))
    result = builder.generate_for_class(class_obj)
    return JsonResponse({
        'generated': len(result.created),
        'results': [serialize_version(version) for version in result.created],
    }, status=201)


@login_required
@require_POST
@json_errors
def generate_class_async(request):
    """Queue report card generation for a class."""
    from ..tasks import generate_class_report_cards

    school = get_school(request)
    actor = get_actor(request)
    require_report_manager(actor, school.pk)
    data = parse_json_body(request)
    term = _get_term(school, data.get('term'))
    class_obj = _get_class(school, data.get('class'))

    batch_id = uuid.uuid4()
    task = generate_class_report_cards.delay(
        term_id=term.pk,
        class_id=class_obj.pk,
        actor_id=actor.user_id,
        batch_id=str(batch_id),
    )
    logger.info(f"Queued report card generation for class {class_obj.pk} term {term.pk} (batch {batch_id})")
    return JsonResponse({'task_id': task.id, 'batch_id': str(batch_id)}, status=202)


@login_required
@require_POST
@json_errors
def generate_student(request, student_id):
    """Generate a report card for one student."""
    school = get_school(request)
    data = parse_json_body(request)
    term = _get_term(school, data.get('term'))
    student = get_object_or_404(
        Student.objects.select_related('current_class'), pk=student_id, school=school
    )

    version = ReportCardBuilder(school, term, get_actor(request)).generate(student)
    return JsonResponse(serialize_version(version, include_subjects=True), status=201)


@login_required
@require_GET
@json_errors
def report_detail(request, pk):
    school = get_school(request)
    require_report_manager(get_actor(request), school.pk)
    version = get_object_or_404(ReportCardVersion, pk=pk, school=school)
    return JsonResponse(serialize_version(version, include_subjects=True))


@login_required
@require_POST
@json_errors
def publish_version(request, pk):
    """Release one draft report card."""
    school = get_school(request)
    version = get_object_or_404(ReportCardVersion, pk=pk, school=school)
    version = publish(version, get_actor(request))
    return JsonResponse(serialize_version(version))


@login_required
@require_POST
@json_errors
def publish_class(request):
    """Release every draft report card of a class for a term."""
    school = get_school(request)
    data = parse_json_body(request)
    term = _get_term(school, data.get('term'))
    class_obj = _get_class(school, data.get('class'))

    result = publish_bulk(term, class_obj, get_actor(request))
    return JsonResponse({
        'published': [str(version.pk) for version in result.published],
        'failed': [{'id': str(version_id), 'message': message} for version_id, message in result.failed],
    })
