"""
Attendance totals for report cards.

Any object with a ``summary(student, term)`` method returning an
``AttendanceSummary`` can stand in for the default provider; point
``GRADEBOOK_ATTENDANCE_PROVIDER`` at it.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

from django.db.models import Count, Q

from .models import AttendanceRecord

PRESENT_STATUSES = (AttendanceRecord.Status.PRESENT, AttendanceRecord.Status.LATE)
ABSENT_STATUSES = (AttendanceRecord.Status.ABSENT,)


@dataclass(frozen=True)
class AttendanceSummary:
    days_present: int
    days_absent: int
    attendance_percentage: Decimal | None


def attendance_percentage(present, absent):
    """present / (present + absent) * 100 at 2 dp; None with nothing counted."""
    counted = present + absent
    if counted == 0:
        return None
    value = Decimal(present) * 100 / Decimal(counted)
    return value.quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


class LessonAttendanceProvider:
    """Counts lesson-level records of the term. Excused records are ignored."""

    def summary(self, student, term):
        totals = AttendanceRecord.objects.filter(
            student=student,
            session__term=term,
        ).aggregate(
            present=Count('id', filter=Q(status__in=PRESENT_STATUSES)),
            absent=Count('id', filter=Q(status__in=ABSENT_STATUSES)),
        )
        present = totals['present'] or 0
        absent = totals['absent'] or 0
        return AttendanceSummary(
            days_present=present,
            days_absent=absent,
            attendance_percentage=attendance_percentage(present, absent),
        )
