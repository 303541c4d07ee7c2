"""
CAT / exam weighting for a subject.

A subject profile with both weights set overrides the school default. A
profile with only one of the two is a configuration error, never a silent
fallback.
"""
from dataclasses import dataclass
from decimal import Decimal

from .exceptions import ConfigurationError

HUNDRED = Decimal('100')


@dataclass(frozen=True)
class Weighting:
    cat_weight: Decimal
    exam_weight: Decimal

    def as_dict(self):
        return {'cat_weight': self.cat_weight, 'exam_weight': self.exam_weight}


def make_weighting(cat_weight, exam_weight, source='school default'):
    if cat_weight is None or exam_weight is None:
        raise ConfigurationError(
            f"Weighting for {source} must set both cat_weight and exam_weight",
            stage='weighting',
        )
    cat_weight = Decimal(str(cat_weight))
    exam_weight = Decimal(str(exam_weight))
    if cat_weight < 0 or exam_weight < 0:
        raise ConfigurationError(f"Weighting for {source} cannot be negative", stage='weighting')
    if cat_weight + exam_weight != HUNDRED:
        raise ConfigurationError(
            f"Weighting for {source} must sum to 100 (got {cat_weight} + {exam_weight})",
            stage='weighting',
        )
    return Weighting(cat_weight, exam_weight)


def default_weighting(results_settings):
    return make_weighting(results_settings.cat_weight, results_settings.exam_weight)


def weighting_from_profile(profile, default):
    """The profile's pair when both are set, else the default."""
    if profile is None:
        return default
    cat_weight, exam_weight = profile.cat_weight, profile.exam_weight
    if cat_weight is None and exam_weight is None:
        return default
    source = f"subject {profile.subject.code}"
    if cat_weight is None or exam_weight is None:
        raise ConfigurationError(
            f"Weighting for {source} sets only one of cat_weight/exam_weight",
            stage='weighting',
        )
    return make_weighting(cat_weight, exam_weight, source=source)


def resolve_subject_weighting(school_id, subject_id):
    """Weighting for one subject of a school."""
    from .models import SchoolResultsSettings, SubjectResultsProfile

    results_settings = SchoolResultsSettings.objects.filter(school_id=school_id).first()
    if results_settings is None:
        raise ConfigurationError('Results settings are not configured', stage='weighting')

    profile = SubjectResultsProfile.objects.filter(
        school_id=school_id, subject_id=subject_id
    ).select_related('subject').first()
    return weighting_from_profile(profile, default_weighting(results_settings))
