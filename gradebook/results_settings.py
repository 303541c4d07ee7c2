"""
School results settings: defaults, reads and validated updates.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import transaction
from django.forms.models import model_to_dict

from accounts.permissions import require_settings_manager
from core.audit import record_audit

from . import config
from .exceptions import ConfigurationError
from .forms import GradeBandForm, ResultsSettingsForm, SubjectResultsProfileForm
from .grading import GradeBandSpec, validate_bands
from .models import GradeBand, GradeScale, SchoolResultsSettings, SubjectResultsProfile

logger = logging.getLogger(__name__)

# (letter, min, max, points), best first
KCSE_BANDS = [
    ('A', '80.00', '100.00', 12),
    ('A-', '75.00', '79.99', 11),
    ('B+', '70.00', '74.99', 10),
    ('B', '65.00', '69.99', 9),
    ('B-', '60.00', '64.99', 8),
    ('C+', '55.00', '59.99', 7),
    ('C', '50.00', '54.99', 6),
    ('C-', '45.00', '49.99', 5),
    ('D+', '40.00', '44.99', 4),
    ('D', '35.00', '39.99', 3),
    ('D-', '30.00', '34.99', 2),
    ('E', '0.00', '29.99', 1),
]

SETTINGS_FIELDS = ResultsSettingsForm.Meta.fields


@dataclass
class ResultsSettingsBundle:
    settings: SchoolResultsSettings | None
    grade_scale: GradeScale | None
    bands: list = field(default_factory=list)
    profiles: list = field(default_factory=list)


def default_settings_values():
    return {
        'ranking_method': config.DEFAULT_RANKING_METHOD,
        'ranking_basis': config.DEFAULT_RANKING_BASIS,
        'ranking_n': config.DEFAULT_RANKING_N,
        'min_total_subjects': config.DEFAULT_MIN_TOTAL_SUBJECTS,
        'max_total_subjects': config.DEFAULT_MAX_TOTAL_SUBJECTS,
        'min_sciences': config.DEFAULT_MIN_SCIENCES,
        'max_humanities': config.DEFAULT_MAX_HUMANITIES,
        'excluded_subject_codes': list(config.DEFAULT_EXCLUDED_SUBJECT_CODES),
        'cat_weight': Decimal(str(config.DEFAULT_CAT_WEIGHT)),
        'exam_weight': Decimal(str(config.DEFAULT_EXAM_WEIGHT)),
    }


def ensure_default_results_settings(school, updated_by=None):
    """
    Create the school's results settings and default KCSE grade scale if
    they do not exist yet. Existing configuration is left alone.
    """
    with transaction.atomic():
        defaults = default_settings_values()
        defaults['updated_by'] = updated_by
        results_settings, created = SchoolResultsSettings.objects.get_or_create(
            school=school, defaults=defaults
        )
        if created:
            logger.info(f"Created default results settings for school {school.pk}")

        if not GradeScale.objects.filter(school=school, is_default=True).exists():
            scale, _ = GradeScale.objects.get_or_create(
                school=school,
                name=config.DEFAULT_GRADE_SCALE_NAME,
            )
            scale.is_default = True
            scale.save()
            if not scale.bands.exists():
                GradeBand.objects.bulk_create([
                    GradeBand(
                        grade_scale=scale,
                        letter_grade=letter,
                        min_score=Decimal(min_score),
                        max_score=Decimal(max_score),
                        points=Decimal(points),
                        sort_order=index,
                    )
                    for index, (letter, min_score, max_score, points) in enumerate(KCSE_BANDS, start=1)
                ])
            logger.info(f"Created default grade scale '{scale.name}' for school {school.pk}")

    return results_settings


def get_results_settings(school):
    results_settings = SchoolResultsSettings.objects.filter(school=school).first()
    scale = GradeScale.objects.filter(school=school, is_default=True).first()
    bands = list(scale.bands.order_by('sort_order')) if scale else []
    profiles = list(
        SubjectResultsProfile.objects.filter(school=school).select_related('subject').order_by('subject__code')
    )
    return ResultsSettingsBundle(
        settings=results_settings, grade_scale=scale, bands=bands, profiles=profiles
    )


def _audit_value(value):
    if isinstance(value, Decimal):
        return str(value)
    return value


def _validate_bands(rows):
    errors = []
    specs = []
    if len(rows) < 2:
        raise ValidationError({'bands': ['A grade scale needs at least two bands.']})
    for index, row in enumerate(rows):
        form = GradeBandForm(row)
        if not form.is_valid():
            errors.append(f"Band {index}: {form.errors.as_text()}")
            continue
        data = form.cleaned_data
        specs.append(GradeBandSpec(
            letter_grade=data['letter_grade'],
            min_score=data['min_score'],
            max_score=data['max_score'],
            points=data['points'],
            sort_order=data['sort_order'] if data['sort_order'] is not None else index + 1,
        ))
    if errors:
        raise ValidationError({'bands': errors})

    letters = [spec.letter_grade for spec in specs]
    if len(set(letters)) != len(letters):
        raise ValidationError({'bands': ['Letter grades must be unique.']})
    orders = [spec.sort_order for spec in specs]
    if len(set(orders)) != len(orders):
        raise ValidationError({'bands': ['Sort orders must be unique.']})
    try:
        validate_bands(specs)
    except ConfigurationError as exc:
        raise ValidationError({'bands': [exc.message]}) from exc
    return specs


def _validate_profiles(rows, school):
    cleaned = []
    seen = set()
    for index, row in enumerate(rows):
        form = SubjectResultsProfileForm(row, school=school)
        if not form.is_valid():
            raise ValidationError({'profiles': [f"Profile {index}: {form.errors.as_text()}"]})
        subject = form.cleaned_data['subject']
        if subject.pk in seen:
            raise ValidationError({'profiles': [f"Subject {subject.code} appears more than once."]})
        seen.add(subject.pk)
        cleaned.append(form.cleaned_data)
    return cleaned


def update_results_settings(school, actor, data):
    """
    Validate and apply a settings update. ``data`` may carry ``settings``
    (merged over the current values), ``bands`` (replaces the default
    scale's bands) and ``profiles`` (replaces all subject profiles).

    Raises PermissionDenied or ValidationError; nothing is written unless
    everything validates.
    """
    require_settings_manager(actor, school.pk)

    instance = SchoolResultsSettings.objects.filter(school=school).first()
    if instance is None:
        instance = SchoolResultsSettings(school=school, **default_settings_values())
    before = {name: _audit_value(value) for name, value in model_to_dict(instance, fields=SETTINGS_FIELDS).items()}

    merged = model_to_dict(instance, fields=SETTINGS_FIELDS)
    merged.update(data.get('settings') or {})
    form = ResultsSettingsForm(merged, instance=instance)
    if not form.is_valid():
        raise ValidationError(form.errors.as_data())

    band_specs = _validate_bands(data['bands']) if 'bands' in data else None
    profiles = _validate_profiles(data['profiles'], school) if 'profiles' in data else None

    with transaction.atomic():
        results_settings = form.save(commit=False)
        results_settings.updated_by_id = actor.user_id
        results_settings.save()

        if band_specs is not None:
            scale = GradeScale.objects.filter(school=school, is_default=True).first()
            if scale is None:
                scale, _ = GradeScale.objects.get_or_create(
                    school=school, name=config.DEFAULT_GRADE_SCALE_NAME
                )
                scale.is_default = True
                scale.save()
            scale.bands.all().delete()
            GradeBand.objects.bulk_create([
                GradeBand(
                    grade_scale=scale,
                    letter_grade=spec.letter_grade,
                    min_score=spec.min_score,
                    max_score=spec.max_score,
                    points=spec.points,
                    sort_order=spec.sort_order,
                )
                for spec in band_specs
            ])

        if profiles is not None:
            SubjectResultsProfile.objects.filter(school=school).delete()
            SubjectResultsProfile.objects.bulk_create([
                SubjectResultsProfile(
                    school=school,
                    subject=profile['subject'],
                    cat_weight=profile['cat_weight'],
                    exam_weight=profile['exam_weight'],
                    excluded_from_ranking=profile['excluded_from_ranking'],
                )
                for profile in profiles
            ])

        after = {
            name: _audit_value(value)
            for name, value in model_to_dict(results_settings, fields=SETTINGS_FIELDS).items()
        }
        changed = {
            name: {'from': before.get(name), 'to': after[name]}
            for name in after if before.get(name) != after[name]
        }
        record_audit(
            school_id=school.pk,
            actor_id=actor.user_id,
            action='schools_results_settings:update',
            resource_type='school_results_settings',
            resource_id=results_settings.pk,
            changes={
                'settings': changed,
                'bands_replaced': len(band_specs) if band_specs is not None else None,
                'profiles_replaced': len(profiles) if profiles is not None else None,
            },
        )

    logger.info(f"Results settings updated for school {school.pk} by user {actor.user_id}")
    return get_results_settings(school)
