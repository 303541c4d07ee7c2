"""
Management command to seed default results settings and the KCSE 12-point
grade scale for schools.

Usage:
    # A single school
    python manage.py seed_results_defaults --school DEMO

    # Every active school
    python manage.py seed_results_defaults
"""
from django.core.management.base import BaseCommand, CommandError

from gradebook.models import AssessmentType
from gradebook.results_settings import ensure_default_results_settings
from schools.models import School

# (name, weight, max_score)
DEFAULT_ASSESSMENT_TYPES = [
    ('CAT 1', 1, 30),
    ('CAT 2', 1, 30),
    ('End of Term Exam', 1, 100),
]


class Command(BaseCommand):
    help = 'Seed default results settings, grade scale and assessment types'

    def add_arguments(self, parser):
        parser.add_argument(
            '--school',
            type=str,
            help='Code of the school to seed (defaults to every active school)',
        )
        parser.add_argument(
            '--skip-assessment-types',
            action='store_true',
            help='Only seed results settings and the grade scale',
        )

    def handle(self, *args, **options):
        code = options.get('school')
        if code:
            schools = School.objects.filter(code__iexact=code)
            if not schools.exists():
                raise CommandError(f"No school with code '{code}'")
        else:
            schools = School.objects.filter(is_active=True)

        for school in schools:
            ensure_default_results_settings(school)
            if not options['skip_assessment_types']:
                self.create_assessment_types(school)
            self.stdout.write(f'  Seeded {school.name}')

        self.stdout.write(self.style.SUCCESS('Successfully seeded results defaults'))

    def create_assessment_types(self, school):
        for name, weight, max_score in DEFAULT_ASSESSMENT_TYPES:
            AssessmentType.objects.get_or_create(
                school=school,
                name=name,
                defaults={'weight': weight, 'max_score': max_score},
            )
