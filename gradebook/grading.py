"""
Grade scale resolution and percentage -> band lookup.

A scale is loaded once per generation run into an immutable
``GradeScaleSnapshot`` and validated eagerly, so a broken scale stops the run
before any report card is written.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal

from . import config
from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ZERO = Decimal('0')
HUNDRED = Decimal('100')


@dataclass(frozen=True)
class GradeBandSpec:
    letter_grade: str
    min_score: Decimal
    max_score: Decimal
    points: Decimal
    sort_order: int

    def contains(self, percentage):
        return self.min_score <= percentage <= self.max_score

    def as_dict(self):
        return {
            'letter_grade': self.letter_grade,
            'min_score': self.min_score,
            'max_score': self.max_score,
            'points': self.points,
            'sort_order': self.sort_order,
        }


@dataclass(frozen=True)
class GradeMatch:
    band: GradeBandSpec
    ambiguous: bool = False

    @property
    def letter_grade(self):
        return self.band.letter_grade

    @property
    def points(self):
        return self.band.points


@dataclass(frozen=True)
class GradeScaleSnapshot:
    """Bands sorted ascending by min_score."""
    name: str
    bands: tuple
    scale_id: int | None = None

    def lookup(self, percentage):
        """
        Return the band for a percentage in [0, 100].

        On a boundary shared by two bands the band with the lower sort_order
        wins and the match is flagged ambiguous. A percentage inside the step
        between two bands (e.g. 39.5 on a 0-39 / 40-49 scale) belongs to the
        lower band.
        """
        value = Decimal(str(percentage))
        if value < ZERO or value > HUNDRED:
            raise ValueError(f"Percentage {value} is outside 0-100")

        matches = [band for band in self.bands if band.contains(value)]
        if len(matches) == 1:
            return GradeMatch(matches[0])
        if matches:
            winner = min(matches, key=lambda band: band.sort_order)
            return GradeMatch(winner, ambiguous=True)

        below = [band for band in self.bands if band.max_score < value]
        if not below:
            raise ConfigurationError(f"No grade band covers {value}", stage='grade_scale')
        return GradeMatch(below[-1])

    def as_dict(self):
        return {
            'name': self.name,
            'bands': [band.as_dict() for band in self.bands],
        }


def validate_bands(bands, step=None):
    """
    Check that bands cover 0-100 exactly once and return them sorted.

    Raises ConfigurationError describing the first problem found.
    """
    if step is None:
        step = Decimal(str(config.GRADE_BAND_STEP))
    bands = sorted(bands, key=lambda band: (band.min_score, band.max_score))
    if not bands:
        raise ConfigurationError('Grade scale has no bands', stage='grade_scale')

    for band in bands:
        if band.min_score > band.max_score:
            raise ConfigurationError(
                f"Band {band.letter_grade}: min_score {band.min_score} is above max_score {band.max_score}",
                stage='grade_scale',
            )
        if band.min_score < ZERO or band.max_score > HUNDRED:
            raise ConfigurationError(
                f"Band {band.letter_grade}: bounds must lie within 0-100",
                stage='grade_scale',
            )

    if bands[0].min_score != ZERO:
        raise ConfigurationError(
            f"Lowest band {bands[0].letter_grade} must start at 0, not {bands[0].min_score}",
            stage='grade_scale',
        )
    if bands[-1].max_score != HUNDRED:
        raise ConfigurationError(
            f"Highest band {bands[-1].letter_grade} must end at 100, not {bands[-1].max_score}",
            stage='grade_scale',
        )

    for lower, upper in zip(bands, bands[1:]):
        if upper.min_score < lower.max_score or upper.min_score == lower.min_score:
            raise ConfigurationError(
                f"Bands {lower.letter_grade} and {upper.letter_grade} overlap",
                stage='grade_scale',
            )
        gap = upper.min_score - lower.max_score
        if gap > step:
            raise ConfigurationError(
                f"Gap between {lower.letter_grade} ({lower.max_score}) and "
                f"{upper.letter_grade} ({upper.min_score}) is wider than {step}",
                stage='grade_scale',
            )

    orders = [band.sort_order for band in bands]
    ascending = all(a < b for a, b in zip(orders, orders[1:]))
    descending = all(a > b for a, b in zip(orders, orders[1:]))
    if len(orders) > 1 and not (ascending or descending):
        raise ConfigurationError(
            'Band sort_order must follow min_score order',
            stage='grade_scale',
        )

    return tuple(bands)


def build_snapshot(scale):
    """Turn a GradeScale row (with its bands) into a validated snapshot."""
    bands = [
        GradeBandSpec(
            letter_grade=band.letter_grade,
            min_score=band.min_score,
            max_score=band.max_score,
            points=band.points,
            sort_order=band.sort_order,
        )
        for band in scale.bands.all()
    ]
    try:
        validated = validate_bands(bands)
    except ConfigurationError as exc:
        exc.message = f"Grade scale '{scale.name}': {exc.message}"
        raise
    return GradeScaleSnapshot(name=scale.name, bands=validated, scale_id=scale.pk)


def resolve_grade_scale(school_id):
    """Load and validate the school's default grade scale."""
    from .models import GradeScale

    scale = GradeScale.objects.filter(
        school_id=school_id, is_default=True
    ).prefetch_related('bands').first()
    if scale is None:
        raise ConfigurationError('No default grade scale is configured', stage='grade_scale')

    snapshot = build_snapshot(scale)
    logger.debug(f"Resolved grade scale '{scale.name}' with {len(snapshot.bands)} bands for school {school_id}")
    return snapshot
