from django.db import models
from django.utils import timezone
from django.utils.translation import gettext_lazy as _


class Class(models.Model):
    """
    Represents a class/classroom grouping of students, e.g. "Form 3 East".
    Streams inside a class are carried on the student record.
    """
    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='classes'
    )
    name = models.CharField(
        max_length=50,
        help_text="e.g., Form 3 East"
    )
    grade_level = models.PositiveSmallIntegerField(
        help_text="1, 2, 3, etc."
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['grade_level', 'name']
        verbose_name = "Class"
        verbose_name_plural = "Classes"
        unique_together = ['school', 'name']

    def __str__(self):
        return self.name


class Subject(models.Model):
    """
    Represents a subject taught at the school.
    Subjects can be compulsory or elective.
    """
    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='subjects'
    )
    code = models.CharField(
        max_length=20,
        help_text="e.g., MAT, ENG, CHE"
    )
    name = models.CharField(
        max_length=100,
        help_text="e.g., Mathematics, English Language, Chemistry"
    )
    curriculum_area = models.CharField(
        max_length=100,
        blank=True,
        help_text="e.g., STEM - Pure Sciences, Social - Humanities"
    )
    is_compulsory = models.BooleanField(
        default=True,
        help_text="Compulsory subjects are taken by every student"
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-is_compulsory', 'name']
        verbose_name = "Subject"
        verbose_name_plural = "Subjects"
        unique_together = ['school', 'code']

    def __str__(self):
        return self.name


class StudentSubjectEnrollment(models.Model):
    """
    The subjects a student takes in a term.
    Only ACTIVE enrollments appear on a report card.
    """
    class Status(models.TextChoices):
        ACTIVE = 'ACTIVE', _('Active')
        DROPPED = 'DROPPED', _('Dropped')

    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='subject_enrollments'
    )
    term = models.ForeignKey(
        'core.Term',
        on_delete=models.CASCADE,
        related_name='subject_enrollments'
    )
    student = models.ForeignKey(
        'students.Student',
        on_delete=models.CASCADE,
        related_name='subject_enrollments'
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='enrollments'
    )
    is_compulsory = models.BooleanField(default=True)
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.ACTIVE
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = ['term', 'student', 'subject']
        verbose_name = "Subject Enrollment"
        verbose_name_plural = "Subject Enrollments"

    def __str__(self):
        return f"{self.student} - {self.subject.code} ({self.term})"


class AttendanceSession(models.Model):
    """A lesson (or daily register) taken for a class on a date."""
    class_assigned = models.ForeignKey(Class, on_delete=models.CASCADE, related_name='attendance_sessions')
    term = models.ForeignKey('core.Term', on_delete=models.CASCADE, related_name='attendance_sessions')
    date = models.DateField(default=timezone.now)
    # Null for a daily register
    subject = models.ForeignKey(
        Subject,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='attendance_sessions'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-date']

    def __str__(self):
        return f"{self.class_assigned} - {self.date}"


class AttendanceRecord(models.Model):
    class Status(models.TextChoices):
        PRESENT = 'PRESENT', 'Present'
        ABSENT = 'ABSENT', 'Absent'
        LATE = 'LATE', 'Late'
        EXCUSED = 'EXCUSED', 'Excused'

    session = models.ForeignKey(AttendanceSession, on_delete=models.CASCADE, related_name='records')
    student = models.ForeignKey('students.Student', on_delete=models.CASCADE, related_name='attendance_records')
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PRESENT)
    remarks = models.CharField(max_length=100, blank=True)

    class Meta:
        unique_together = ['session', 'student']
