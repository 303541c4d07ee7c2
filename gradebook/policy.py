"""
The results policy for one generation run.

Everything that shapes a report card (grade scale, weightings, ranking rules,
assessment-type categories) is read once into a frozen ``ResultsPolicy`` and
passed to the aggregator and ranking engine. Nothing is cached between runs,
so a settings change applies to the next generation.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from types import MappingProxyType

from . import config
from .exceptions import ConfigurationError
from .grading import resolve_grade_scale
from .weighting import default_weighting, weighting_from_profile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResultsPolicy:
    school_id: int
    grade_scale: object
    default_weighting: object
    subject_weightings: MappingProxyType
    profile_exclusions: frozenset
    ranking_method: str
    ranking_basis: str
    ranking_n: int
    min_total_subjects: int
    max_total_subjects: int
    min_sciences: int
    max_humanities: int
    excluded_subject_codes: frozenset
    type_categories: MappingProxyType
    type_weights: MappingProxyType
    science_keywords: tuple = ('SCIENCE',)
    humanities_keywords: tuple = ('HUMANITIES',)

    def weighting_for(self, subject_id):
        return self.subject_weightings.get(subject_id, self.default_weighting)

    def is_excluded_from_ranking(self, subject_id, subject_code):
        if subject_id in self.profile_exclusions:
            return True
        return (subject_code or '').strip().upper() in self.excluded_subject_codes

    def is_science(self, curriculum_area):
        area = (curriculum_area or '').upper()
        return any(keyword in area for keyword in self.science_keywords)

    def is_humanities(self, curriculum_area):
        area = (curriculum_area or '').upper()
        return any(keyword in area for keyword in self.humanities_keywords)

    def as_dict(self):
        """The parts of the policy a reader needs to understand a report card."""
        return {
            'ranking_method': self.ranking_method,
            'ranking_basis': self.ranking_basis,
            'ranking_n': self.ranking_n,
            'min_total_subjects': self.min_total_subjects,
            'max_total_subjects': self.max_total_subjects,
            'min_sciences': self.min_sciences,
            'max_humanities': self.max_humanities,
            'excluded_subject_codes': sorted(self.excluded_subject_codes),
            'default_weighting': self.default_weighting.as_dict(),
            'grade_scale': self.grade_scale.as_dict(),
        }


def _normalise_keywords(keywords):
    if isinstance(keywords, str):
        keywords = (keywords,)
    return tuple(keyword.upper() for keyword in keywords)


def resolve_type_categories(school_id):
    """Map active assessment type ids to their category and relative weight."""
    from .models import AssessmentType

    categories = {}
    weights = {}
    valid = set(AssessmentType.Category.values)
    for assessment_type in AssessmentType.objects.filter(school_id=school_id, is_active=True):
        category = assessment_type.category or AssessmentType.infer_category(assessment_type.name)
        if category not in valid:
            raise ConfigurationError(
                f"Assessment type '{assessment_type.name}' has unknown category '{category}'",
                stage='policy',
            )
        if assessment_type.weight is None or assessment_type.weight <= 0:
            raise ConfigurationError(
                f"Assessment type '{assessment_type.name}' must have a positive weight",
                stage='policy',
            )
        categories[assessment_type.pk] = category
        weights[assessment_type.pk] = Decimal(str(assessment_type.weight))
    return categories, weights


def resolve_policy(school):
    """Build the ResultsPolicy for a school. Raises ConfigurationError."""
    from .models import SchoolResultsSettings, SubjectResultsProfile

    school_id = getattr(school, 'pk', school)
    results_settings = SchoolResultsSettings.objects.filter(school_id=school_id).first()
    if results_settings is None:
        raise ConfigurationError('Results settings are not configured', stage='policy')

    if results_settings.ranking_method not in SchoolResultsSettings.RankingMethod.values:
        raise ConfigurationError(
            f"Unknown ranking method '{results_settings.ranking_method}'", stage='policy'
        )
    if results_settings.ranking_basis not in SchoolResultsSettings.RankingBasis.values:
        raise ConfigurationError(
            f"Unknown ranking basis '{results_settings.ranking_basis}'", stage='policy'
        )
    if results_settings.ranking_n < 1:
        raise ConfigurationError('ranking_n must be at least 1', stage='policy')
    if results_settings.min_total_subjects > results_settings.max_total_subjects:
        raise ConfigurationError(
            'min_total_subjects cannot exceed max_total_subjects', stage='policy'
        )

    grade_scale = resolve_grade_scale(school_id)
    default = default_weighting(results_settings)

    subject_weightings = {}
    exclusions = set()
    profiles = SubjectResultsProfile.objects.filter(school_id=school_id).select_related('subject')
    for profile in profiles:
        weighting = weighting_from_profile(profile, default)
        if weighting is not default:
            subject_weightings[profile.subject_id] = weighting
        if profile.excluded_from_ranking:
            exclusions.add(profile.subject_id)

    categories, weights = resolve_type_categories(school_id)

    policy = ResultsPolicy(
        school_id=school_id,
        grade_scale=grade_scale,
        default_weighting=default,
        subject_weightings=MappingProxyType(subject_weightings),
        profile_exclusions=frozenset(exclusions),
        ranking_method=results_settings.ranking_method,
        ranking_basis=results_settings.ranking_basis,
        ranking_n=results_settings.ranking_n,
        min_total_subjects=results_settings.min_total_subjects,
        max_total_subjects=results_settings.max_total_subjects,
        min_sciences=results_settings.min_sciences,
        max_humanities=results_settings.max_humanities,
        excluded_subject_codes=frozenset(
            str(code).strip().upper() for code in (results_settings.excluded_subject_codes or [])
        ),
        type_categories=MappingProxyType(categories),
        type_weights=MappingProxyType(weights),
        science_keywords=_normalise_keywords(config.SCIENCE_AREA_KEYWORDS),
        humanities_keywords=_normalise_keywords(config.HUMANITIES_AREA_KEYWORDS),
    )
    logger.debug(
        f"Resolved results policy for school {school_id}: "
        f"{policy.ranking_method}/{policy.ranking_basis}, {len(categories)} active assessment types"
    )
    return policy
