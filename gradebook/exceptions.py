"""
Errors raised by the report-card engine.

Fatal errors carry the student, term and stage that failed so the caller
(view or Celery task) can report them without digging through tracebacks.
"""
from dataclasses import dataclass, field


class GradebookError(Exception):
    """Base class for fatal gradebook errors."""

    def __init__(self, message, student_id=None, term_id=None, stage=None):
        super().__init__(message)
        self.message = message
        self.student_id = student_id
        self.term_id = term_id
        self.stage = stage

    def __str__(self):
        context = []
        if self.stage:
            context.append(f"stage={self.stage}")
        if self.student_id is not None:
            context.append(f"student={self.student_id}")
        if self.term_id is not None:
            context.append(f"term={self.term_id}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class ConfigurationError(GradebookError):
    """Grade scale, weighting or results settings are missing or invalid."""


class ConcurrencyConflict(GradebookError):
    """Another writer took the version number we were about to use."""


class PersistenceError(GradebookError):
    """The store rejected a write for a reason other than a version race."""


class InvalidTransition(GradebookError):
    """A publication state change that is not allowed."""


class ConfigurationWarning(UserWarning):
    """A non-fatal configuration problem, e.g. a score on a shared band boundary."""


@dataclass(frozen=True)
class IncompleteRankingPolicy:
    """Why a student's ranking does not satisfy the school's subject rules."""
    reasons: tuple = field(default_factory=tuple)

    def __bool__(self):
        return bool(self.reasons)


class _NotAssessed:
    """Marker for a subject the student has no marks in."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return 'NOT_ASSESSED'

    def __bool__(self):
        return False

    def __reduce__(self):
        return (_NotAssessed, ())


NOT_ASSESSED = _NotAssessed()
