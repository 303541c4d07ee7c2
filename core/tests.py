from datetime import date

from django.db import IntegrityError
from django.test import TestCase

from schools.models import School
from .audit import record_audit
from .models import AcademicYear, AuditLog, Term


class AcademicYearModelTests(TestCase):

    def setUp(self):
        self.school = School.objects.create(name='Kibo High', code='KHS')
        self.year = AcademicYear.objects.create(
            school=self.school,
            name='2025',
            start_date=date(2025, 1, 6),
            end_date=date(2025, 11, 28),
            is_current=True,
        )

    def test_only_one_current(self):
        new_year = AcademicYear.objects.create(
            school=self.school,
            name='2026',
            start_date=date(2026, 1, 5),
            end_date=date(2026, 11, 27),
            is_current=True,
        )
        self.year.refresh_from_db()
        self.assertFalse(self.year.is_current)
        self.assertEqual(AcademicYear.get_current(self.school), new_year)

    def test_current_is_per_school(self):
        other = School.objects.create(name='Other High', code='OHS')
        AcademicYear.objects.create(
            school=other, name='2025',
            start_date=date(2025, 1, 6), end_date=date(2025, 11, 28), is_current=True,
        )
        self.year.refresh_from_db()
        self.assertTrue(self.year.is_current)

    def test_get_current_none(self):
        other = School.objects.create(name='Other High', code='OHS')
        self.assertIsNone(AcademicYear.get_current(other))


class TermModelTests(TestCase):

    def setUp(self):
        self.school = School.objects.create(name='Kibo High', code='KHS')
        self.year = AcademicYear.objects.create(
            school=self.school, name='2025',
            start_date=date(2025, 1, 6), end_date=date(2025, 11, 28),
        )
        self.term = Term.objects.create(
            academic_year=self.year, name='Term 1', term_number=1,
            start_date=date(2025, 1, 6), end_date=date(2025, 4, 4), is_current=True,
        )

    def test_school_id(self):
        self.assertEqual(self.term.school_id, self.school.pk)

    def test_only_one_current_term(self):
        term2 = Term.objects.create(
            academic_year=self.year, name='Term 2', term_number=2,
            start_date=date(2025, 4, 28), end_date=date(2025, 8, 1), is_current=True,
        )
        self.term.refresh_from_db()
        self.assertFalse(self.term.is_current)
        self.assertEqual(Term.get_current(self.school), term2)

    def test_unique_together_academic_year_term_number(self):
        with self.assertRaises(IntegrityError):
            Term.objects.create(
                academic_year=self.year, name='Duplicate', term_number=1,
                start_date=date(2025, 1, 6), end_date=date(2025, 4, 4),
            )


class AuditTests(TestCase):

    def test_record_audit(self):
        school = School.objects.create(name='Kibo High', code='KHS')
        entry = record_audit(
            school_id=school.pk,
            actor_id=None,
            action='report_card:publish',
            resource_type='report_card_version',
            resource_id=42,
            changes={'status': {'from': 'DRAFT', 'to': 'RELEASED'}},
        )
        self.assertEqual(entry.resource_id, '42')
        self.assertEqual(AuditLog.objects.get().changes['status']['to'], 'RELEASED')
