"""
Per-subject mark aggregation.

Pure functions over preloaded marks: no queries, no side effects. The
snapshot builder loads a class mark sheet once and feeds each
student/subject slice through ``aggregate_subject``.
"""
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from .exceptions import ConfigurationError, NOT_ASSESSED

CAT_LIKE = 'CAT_LIKE'
EXAM_LIKE = 'EXAM_LIKE'

HUNDRED = Decimal('100')
TWO_PLACES = Decimal('0.01')


def quantize(value, places=TWO_PLACES):
    if value is None:
        return None
    return Decimal(value).quantize(places, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class MarkEntry:
    """One sat assessment: the student has a mark for it."""
    assessment_type_id: int
    score: Decimal
    max_score: Decimal

    @property
    def normalised(self):
        return Decimal(self.score) * HUNDRED / Decimal(self.max_score)


@dataclass(frozen=True)
class SubjectResult:
    percentage: Decimal
    grade: str
    points: Decimal
    cat_average: Decimal | None
    exam_average: Decimal | None
    weighting: object
    ambiguous_grade: bool = False


def category_average(entries, type_weights):
    """
    Average normalised scores per assessment type, then combine the type
    averages by their relative weight. Returns None when there is no data.
    """
    by_type = defaultdict(list)
    for entry in entries:
        by_type[entry.assessment_type_id].append(entry.normalised)
    if not by_type:
        return None

    weighted_sum = Decimal('0')
    total_weight = Decimal('0')
    for type_id, values in by_type.items():
        weight = type_weights.get(type_id, Decimal('1'))
        weighted_sum += (sum(values) / len(values)) * weight
        total_weight += weight
    return weighted_sum / total_weight


def combine_categories(cat_average, exam_average, weighting):
    """
    Weighted mean of the categories that have data. A missing category is
    dropped and the remaining weight renormalised to 100%.
    """
    parts = []
    if cat_average is not None:
        parts.append((cat_average, weighting.cat_weight))
    if exam_average is not None:
        parts.append((exam_average, weighting.exam_weight))
    if not parts:
        return None

    total_weight = sum(weight for _, weight in parts)
    if total_weight == 0:
        # Only zero-weighted categories have data
        return sum(average for average, _ in parts) / len(parts)
    return sum(average * weight for average, weight in parts) / total_weight


def aggregate_subject(entries, weighting, policy):
    """
    Aggregate one student's marks in one subject.

    ``entries`` are the MarkEntry rows the student sat. Entries whose
    assessment type is inactive (unknown to the policy) are ignored.
    Returns a SubjectResult, or NOT_ASSESSED when nothing was sat.
    Raises ConfigurationError for a score outside 0..max_score.
    """
    by_category = defaultdict(list)
    for entry in entries:
        category = policy.type_categories.get(entry.assessment_type_id)
        if category is None or not entry.max_score:
            continue
        if entry.score < 0 or entry.score > entry.max_score:
            raise ConfigurationError(
                f"Score {entry.score} is outside 0-{entry.max_score}", stage='aggregate'
            )
        by_category[category].append(entry)

    cat_average = category_average(by_category[CAT_LIKE], policy.type_weights)
    exam_average = category_average(by_category[EXAM_LIKE], policy.type_weights)
    combined = combine_categories(cat_average, exam_average, weighting)
    if combined is None:
        return NOT_ASSESSED

    percentage = quantize(combined)
    match = policy.grade_scale.lookup(percentage)
    return SubjectResult(
        percentage=percentage,
        grade=match.letter_grade,
        points=match.points,
        cat_average=quantize(cat_average),
        exam_average=quantize(exam_average),
        weighting=weighting,
        ambiguous_grade=match.ambiguous,
    )
