"""
Configuration settings for the gradebook app.

These values can be overridden in Django settings by prefixing with GRADEBOOK_.
For example, to allow a wider gap between grade bands:
    GRADEBOOK_GRADE_BAND_STEP = Decimal('0.10')

All configuration values are lazily loaded to avoid Django setup issues.
"""
from decimal import Decimal


def _get_setting(name, default):
    """Get a gradebook setting from Django settings or use default."""
    from django.conf import settings
    return getattr(settings, f'GRADEBOOK_{name}', default)


# Define defaults as constants for direct use when Django settings are not needed
_DEFAULTS = {
    # Default results settings seeded for a new school
    'DEFAULT_CAT_WEIGHT': 30,
    'DEFAULT_EXAM_WEIGHT': 70,
    'DEFAULT_RANKING_METHOD': 'BEST_N',
    'DEFAULT_RANKING_BASIS': 'POINTS',
    'DEFAULT_RANKING_N': 7,
    'DEFAULT_MIN_TOTAL_SUBJECTS': 7,
    'DEFAULT_MAX_TOTAL_SUBJECTS': 9,
    'DEFAULT_MIN_SCIENCES': 2,
    'DEFAULT_MAX_HUMANITIES': 2,
    'DEFAULT_EXCLUDED_SUBJECT_CODES': ['PE', 'ICT'],
    'DEFAULT_GRADE_SCALE_NAME': 'KCSE 12-point',

    # Largest gap between one band's max and the next band's min that still
    # counts as contiguous (integer scales such as 39 / 40)
    'GRADE_BAND_STEP': Decimal('1.00'),

    # Curriculum area keywords (case-insensitive substring match)
    'SCIENCE_AREA_KEYWORDS': ('SCIENCE',),
    'HUMANITIES_AREA_KEYWORDS': ('HUMANITIES',),

    # Report card generation
    'VERSION_ALLOCATION_RETRIES': 5,
    'ATTENDANCE_PROVIDER': 'academics.attendance.LessonAttendanceProvider',

    # Display limits
    'AUDIT_LOG_DISPLAY_LIMIT': 50,

    # Celery task settings
    'TASK_MAX_RETRIES': 3,
    'TASK_RETRY_DELAY': 60,  # seconds
    'TASK_SOFT_TIME_LIMIT': 10 * 60,
    'TASK_TIME_LIMIT': 15 * 60,
}


class _ConfigProxy:
    """
    Lazy configuration proxy that loads settings only when accessed.
    This avoids Django setup issues during module import.
    """

    def __getattr__(self, name):
        if name in _DEFAULTS:
            return _get_setting(name, _DEFAULTS[name])
        raise AttributeError(f"Unknown config setting: {name}")


# Module-level proxy object for attribute access
_config = _ConfigProxy()


def __getattr__(name):
    """Enable module-level attribute access via the config proxy."""
    return getattr(_config, name)
