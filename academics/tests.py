from datetime import date
from decimal import Decimal

from django.db import IntegrityError
from django.test import TestCase

from core.models import AcademicYear, Term
from schools.models import School
from students.models import Student
from .attendance import LessonAttendanceProvider, attendance_percentage
from .models import AttendanceRecord, AttendanceSession, Class, StudentSubjectEnrollment, Subject


class AcademicsTestCase(TestCase):
    """Shared school, class, term and student."""

    def setUp(self):
        self.school = School.objects.create(name='Kibo High', code='KHS')
        self.klass = Class.objects.create(school=self.school, name='Form 2', grade_level=2)
        year = AcademicYear.objects.create(
            school=self.school, name='2025',
            start_date=date(2025, 1, 6), end_date=date(2025, 11, 28),
        )
        self.term = Term.objects.create(
            academic_year=year, name='Term 1', term_number=1,
            start_date=date(2025, 1, 6), end_date=date(2025, 4, 4),
        )
        self.student = Student.objects.create(
            school=self.school, first_name='Amina', last_name='Hassan',
            admission_number='2025/001', current_class=self.klass,
        )
        self.subject = Subject.objects.create(
            school=self.school, code='CHE', name='Chemistry', curriculum_area='STEM - Pure Sciences',
        )


class SubjectModelTests(AcademicsTestCase):

    def test_code_unique_per_school(self):
        with self.assertRaises(IntegrityError):
            Subject.objects.create(school=self.school, code='CHE', name='Chemistry II')

    def test_same_code_other_school(self):
        other = School.objects.create(name='Other High', code='OHS')
        Subject.objects.create(school=other, code='CHE', name='Chemistry')
        self.assertEqual(Subject.objects.filter(code='CHE').count(), 2)


class StudentSubjectEnrollmentModelTests(AcademicsTestCase):

    def test_enroll(self):
        enrollment = StudentSubjectEnrollment.objects.create(
            school=self.school, term=self.term, student=self.student, subject=self.subject,
        )
        self.assertEqual(enrollment.status, StudentSubjectEnrollment.Status.ACTIVE)

    def test_no_duplicate_enrollment(self):
        StudentSubjectEnrollment.objects.create(
            school=self.school, term=self.term, student=self.student, subject=self.subject,
        )
        with self.assertRaises(IntegrityError):
            StudentSubjectEnrollment.objects.create(
                school=self.school, term=self.term, student=self.student, subject=self.subject,
            )


class AttendanceTests(AcademicsTestCase):

    def mark(self, day, status):
        session = AttendanceSession.objects.create(
            class_assigned=self.klass, term=self.term, date=date(2025, 2, day),
        )
        return AttendanceRecord.objects.create(session=session, student=self.student, status=status)

    def test_percentage(self):
        self.assertEqual(attendance_percentage(2, 1), Decimal('66.67'))
        self.assertEqual(attendance_percentage(5, 0), Decimal('100.00'))
        self.assertIsNone(attendance_percentage(0, 0))

    def test_summary_counts_late_as_present(self):
        self.mark(3, AttendanceRecord.Status.PRESENT)
        self.mark(4, AttendanceRecord.Status.LATE)
        self.mark(5, AttendanceRecord.Status.ABSENT)
        self.mark(6, AttendanceRecord.Status.EXCUSED)

        summary = LessonAttendanceProvider().summary(self.student, self.term)
        self.assertEqual(summary.days_present, 2)
        self.assertEqual(summary.days_absent, 1)
        self.assertEqual(summary.attendance_percentage, Decimal('66.67'))

    def test_summary_without_records(self):
        summary = LessonAttendanceProvider().summary(self.student, self.term)
        self.assertEqual(summary.days_present, 0)
        self.assertIsNone(summary.attendance_percentage)

    def test_other_term_ignored(self):
        term2 = Term.objects.create(
            academic_year=self.term.academic_year, name='Term 2', term_number=2,
            start_date=date(2025, 4, 28), end_date=date(2025, 8, 1),
        )
        self.mark(3, AttendanceRecord.Status.PRESENT)
        summary = LessonAttendanceProvider().summary(self.student, term2)
        self.assertEqual(summary.days_present, 0)
