from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods

from accounts.permissions import require_report_manager
from core.models import AuditLog

from .base import get_actor, get_school, json_errors, parse_json_body
from .. import config
from ..results_settings import get_results_settings, update_results_settings


def _decimal(value):
    return str(value) if value is not None else None


def serialize_results_settings(bundle):
    settings_obj = bundle.settings
    data = {
        'settings': None,
        'grade_scale': None,
        'bands': [
            {
                'letter_grade': band.letter_grade,
                'min_score': _decimal(band.min_score),
                'max_score': _decimal(band.max_score),
                'points': _decimal(band.points),
                'sort_order': band.sort_order,
            }
            for band in bundle.bands
        ],
        'profiles': [
            {
                'subject': profile.subject_id,
                'subject_code': profile.subject.code,
                'cat_weight': _decimal(profile.cat_weight),
                'exam_weight': _decimal(profile.exam_weight),
                'excluded_from_ranking': profile.excluded_from_ranking,
            }
            for profile in bundle.profiles
        ],
    }
    if settings_obj is not None:
        data['settings'] = {
            'ranking_method': settings_obj.ranking_method,
            'ranking_n': settings_obj.ranking_n,
            'ranking_basis': settings_obj.ranking_basis,
            'min_total_subjects': settings_obj.min_total_subjects,
            'max_total_subjects': settings_obj.max_total_subjects,
            'min_sciences': settings_obj.min_sciences,
            'max_humanities': settings_obj.max_humanities,
            'excluded_subject_codes': settings_obj.excluded_subject_codes,
            'cat_weight': _decimal(settings_obj.cat_weight),
            'exam_weight': _decimal(settings_obj.exam_weight),
            'updated_at': settings_obj.updated_at.isoformat() if settings_obj.updated_at else None,
        }
    if bundle.grade_scale is not None:
        data['grade_scale'] = {'id': bundle.grade_scale.pk, 'name': bundle.grade_scale.name}
    return data


def recent_changes(school):
    entries = AuditLog.objects.filter(
        school=school, action='schools_results_settings:update'
    ).select_related('user').order_by('-created_at')[:config.AUDIT_LOG_DISPLAY_LIMIT]
    return [
        {
            'at': entry.created_at.isoformat(),
            'by': entry.user.email if entry.user else None,
            'changes': entry.changes,
        }
        for entry in entries
    ]


@login_required
@require_http_methods(['GET', 'POST'])
@json_errors
def results_settings(request):
    """Read (GET) or update (POST) the school's results settings."""
    school = get_school(request)
    actor = get_actor(request)

    if request.method == 'POST':
        bundle = update_results_settings(school, actor, parse_json_body(request))
    else:
        require_report_manager(actor, school.pk)
        bundle = get_results_settings(school)
    data = serialize_results_settings(bundle)
    data['history'] = recent_changes(school)
    return JsonResponse(data)
