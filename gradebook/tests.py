import json
import threading
import uuid
from datetime import date
from decimal import Decimal
from io import StringIO
from types import MappingProxyType
from unittest import mock

from celery.exceptions import Retry
from django.core.exceptions import PermissionDenied, ValidationError
from django.core.management import call_command
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase
from django.urls import reverse

from academics.models import (
    AttendanceRecord, AttendanceSession, Class, StudentSubjectEnrollment, Subject,
)
from accounts.models import User
from accounts.permissions import Actor
from core.models import AcademicYear, AuditLog, Term
from schools.models import School
from students.models import Student

from . import config
from .aggregation import (
    CAT_LIKE, EXAM_LIKE, MarkEntry, SubjectResult, aggregate_subject,
    category_average, combine_categories,
)
from .exceptions import (
    ConcurrencyConflict, ConfigurationError, ConfigurationWarning, InvalidTransition, NOT_ASSESSED,
    PersistenceError,
)
from .forms import ResultsSettingsForm
from .grading import (
    GradeBandSpec, GradeScaleSnapshot, build_snapshot, resolve_grade_scale, validate_bands,
)
from .models import (
    Assessment, AssessmentType, GradeBand, GradeScale, ReportCardVersion,
    ReportCardVersionSubject, SchoolResultsSettings, StudentMark, SubjectResultsProfile,
)
from .policy import ResultsPolicy, resolve_policy
from .publication import can_regenerate, publish, publish_bulk
from .ranking import (
    ALL_TAKEN, BEST_N, PERCENTAGE, POINTS, RankedSubject, StudentResults,
    assign_positions, rank_streams, rank_students, score_student, subject_positions,
)
from .results_settings import (
    KCSE_BANDS, ensure_default_results_settings, get_results_settings, update_results_settings,
)
from .snapshots import ReportCardBuilder, canonical_json, content_hash
from .tasks import generate_class_report_cards
from .weighting import (
    Weighting, make_weighting, resolve_subject_weighting, weighting_from_profile,
)

CAT_TYPE = 1
EXAM_TYPE = 2


def band(letter, low, high, points, order):
    return GradeBandSpec(letter, Decimal(low), Decimal(high), Decimal(points), order)


def kcse_scale():
    bands = [
        band(letter, low, high, points, order)
        for order, (letter, low, high, points) in enumerate(KCSE_BANDS, start=1)
    ]
    return GradeScaleSnapshot(name='KCSE', bands=validate_bands(bands))


def simple_scale():
    """[0-39:E][40-59:D][60-74:C][75-100:A]"""
    return GradeScaleSnapshot(name='Simple', bands=validate_bands([
        band('E', '0', '39', 1, 4),
        band('D', '40', '59', 2, 3),
        band('C', '60', '74', 3, 2),
        band('A', '75', '100', 4, 1),
    ]))


def make_policy(**overrides):
    values = {
        'school_id': 1,
        'grade_scale': kcse_scale(),
        'default_weighting': Weighting(Decimal('30'), Decimal('70')),
        'subject_weightings': MappingProxyType({}),
        'profile_exclusions': frozenset(),
        'ranking_method': BEST_N,
        'ranking_basis': POINTS,
        'ranking_n': 7,
        'min_total_subjects': 7,
        'max_total_subjects': 9,
        'min_sciences': 2,
        'max_humanities': 2,
        'excluded_subject_codes': frozenset({'PE', 'ICT'}),
        'type_categories': MappingProxyType({CAT_TYPE: CAT_LIKE, EXAM_TYPE: EXAM_LIKE}),
        'type_weights': MappingProxyType({CAT_TYPE: Decimal('1'), EXAM_TYPE: Decimal('1')}),
    }
    values.update(overrides)
    return ResultsPolicy(**values)


def ranked(subject_id, code, area, percentage, points):
    result = SubjectResult(
        percentage=Decimal(percentage),
        grade='-',
        points=Decimal(points),
        cat_average=None,
        exam_average=None,
        weighting=None,
    )
    return RankedSubject(subject_id=subject_id, code=code, curriculum_area=area, result=result)


# Nine subjects with known points, best first
NINE_SUBJECTS = [
    (1, 'MAT', 'Mathematics', '85', 12),
    (2, 'PHY', 'Sciences', '77', 11),
    (3, 'CHE', 'Sciences', '72', 10),
    (4, 'BIO', 'Sciences', '67', 9),
    (5, 'ENG', 'Languages', '62', 8),
    (6, 'KIS', 'Languages', '57', 7),
    (7, 'HIS', 'Humanities', '52', 6),
    (8, 'GEO', 'Humanities', '47', 5),
    (9, 'CRE', 'Religious Education', '42', 4),
]


def nine_subject_student(admission_number='A001', student_id=1, extra=()):
    subjects = [ranked(*row) for row in NINE_SUBJECTS] + list(extra)
    return StudentResults(
        student_id=student_id, admission_number=admission_number, subjects=tuple(subjects)
    )


class GradeScaleValidationTest(TestCase):
    """Tests for grade band validation."""

    def test_kcse_bands_are_valid(self):
        scale = kcse_scale()
        self.assertEqual(len(scale.bands), 12)
        self.assertEqual(scale.bands[0].letter_grade, 'E')
        self.assertEqual(scale.bands[-1].letter_grade, 'A')

    def test_must_start_at_zero(self):
        with self.assertRaises(ConfigurationError):
            validate_bands([band('E', '10', '49', 1, 2), band('A', '50', '100', 2, 1)])

    def test_must_end_at_hundred(self):
        with self.assertRaises(ConfigurationError):
            validate_bands([band('E', '0', '49', 1, 2), band('A', '50', '99', 2, 1)])

    def test_overlap_rejected(self):
        with self.assertRaises(ConfigurationError) as ctx:
            validate_bands([band('E', '0', '60', 1, 2), band('A', '50', '100', 2, 1)])
        self.assertIn('overlap', ctx.exception.message)

    def test_gap_wider_than_step_rejected(self):
        with self.assertRaises(ConfigurationError):
            validate_bands([band('E', '0', '40', 1, 2), band('A', '45', '100', 2, 1)])

    def test_min_above_max_rejected(self):
        with self.assertRaises(ConfigurationError):
            validate_bands([band('E', '50', '0', 1, 2), band('A', '50', '100', 2, 1)])

    def test_empty_scale_rejected(self):
        with self.assertRaises(ConfigurationError):
            validate_bands([])

    def test_every_percentage_maps_to_one_band(self):
        for scale in (kcse_scale(), simple_scale()):
            with self.subTest(scale=scale.name):
                for hundredths in range(0, 10001):
                    value = Decimal(hundredths) / 100
                    match = scale.lookup(value)
                    self.assertFalse(match.ambiguous, value)
                    covering = [
                        band for band in scale.bands
                        if band.min_score <= value and (
                            band.max_score >= value
                            or all(other.min_score > value for other in scale.bands
                                   if other.min_score > band.min_score)
                        )
                    ]
                    self.assertEqual(len(covering), 1, value)
                    self.assertEqual(match.letter_grade, covering[0].letter_grade, value)


class GradeLookupTest(TestCase):
    """Tests for percentage -> band lookup."""

    def setUp(self):
        self.scale = simple_scale()

    def test_inside_band(self):
        self.assertEqual(self.scale.lookup(Decimal('74.00')).letter_grade, 'C')
        self.assertEqual(self.scale.lookup(Decimal('75')).letter_grade, 'A')
        self.assertEqual(self.scale.lookup(Decimal('0')).letter_grade, 'E')
        self.assertEqual(self.scale.lookup(Decimal('100')).letter_grade, 'A')

    def test_step_gap_belongs_to_lower_band(self):
        match = self.scale.lookup(Decimal('39.50'))
        self.assertEqual(match.letter_grade, 'E')
        self.assertFalse(match.ambiguous)

    def test_out_of_range(self):
        with self.assertRaises(ValueError):
            self.scale.lookup(Decimal('100.01'))
        with self.assertRaises(ValueError):
            self.scale.lookup(Decimal('-1'))

    def test_shared_boundary_is_ambiguous(self):
        scale = GradeScaleSnapshot(name='Shared', bands=validate_bands([
            band('E', '0', '50', 1, 2),
            band('A', '50', '100', 2, 1),
        ]))
        match = scale.lookup(Decimal('50'))
        self.assertEqual(match.letter_grade, 'A')
        self.assertTrue(match.ambiguous)
        self.assertFalse(scale.lookup(Decimal('49')).ambiguous)


class WeightingTest(TestCase):
    """Tests for CAT/exam weighting."""

    def setUp(self):
        self.school = School.objects.create(name='Kibo High', code='KHS')
        self.subject = Subject.objects.create(school=self.school, code='MAT', name='Mathematics')
        self.default = Weighting(Decimal('30'), Decimal('70'))

    def test_must_sum_to_hundred(self):
        with self.assertRaises(ConfigurationError):
            make_weighting(40, 50)
        weighting = make_weighting('40', '60')
        self.assertEqual(weighting.cat_weight, Decimal('40'))

    def test_negative_rejected(self):
        with self.assertRaises(ConfigurationError):
            make_weighting(-10, 110)

    def test_profile_without_weights_uses_default(self):
        profile = SubjectResultsProfile.objects.create(school=self.school, subject=self.subject)
        self.assertIs(weighting_from_profile(profile, self.default), self.default)
        self.assertIs(weighting_from_profile(None, self.default), self.default)

    def test_profile_override(self):
        profile = SubjectResultsProfile.objects.create(
            school=self.school, subject=self.subject,
            cat_weight=Decimal('50'), exam_weight=Decimal('50'),
        )
        weighting = weighting_from_profile(profile, self.default)
        self.assertEqual(weighting, Weighting(Decimal('50'), Decimal('50')))

    def test_half_configured_profile_is_an_error(self):
        profile = SubjectResultsProfile.objects.create(
            school=self.school, subject=self.subject, cat_weight=Decimal('50'),
        )
        with self.assertRaises(ConfigurationError) as ctx:
            weighting_from_profile(profile, self.default)
        self.assertIn('MAT', ctx.exception.message)

    def test_resolve_subject_weighting(self):
        with self.assertRaises(ConfigurationError):
            resolve_subject_weighting(self.school.pk, self.subject.pk)
        ensure_default_results_settings(self.school)
        weighting = resolve_subject_weighting(self.school.pk, self.subject.pk)
        self.assertEqual(weighting, Weighting(Decimal('30'), Decimal('70')))


class AggregationTest(TestCase):
    """Tests for per-subject aggregation."""

    def setUp(self):
        self.policy = make_policy(grade_scale=simple_scale())

    def test_weighted_example(self):
        entries = [
            MarkEntry(CAT_TYPE, Decimal('40'), Decimal('50')),
            MarkEntry(EXAM_TYPE, Decimal('70'), Decimal('100')),
        ]
        result = aggregate_subject(entries, Weighting(Decimal('40'), Decimal('60')), self.policy)
        self.assertEqual(result.cat_average, Decimal('80.00'))
        self.assertEqual(result.exam_average, Decimal('70.00'))
        self.assertEqual(result.percentage, Decimal('74.00'))
        self.assertEqual(result.grade, 'C')
        self.assertEqual(result.points, Decimal('3'))

    def test_cat_only_renormalises(self):
        entries = [MarkEntry(CAT_TYPE, Decimal('16'), Decimal('20'))]
        result = aggregate_subject(entries, Weighting(Decimal('30'), Decimal('70')), self.policy)
        self.assertEqual(result.percentage, Decimal('80.00'))
        self.assertIsNone(result.exam_average)
        self.assertEqual(result.grade, 'A')

    def test_nothing_sat_is_not_assessed(self):
        result = aggregate_subject([], Weighting(Decimal('30'), Decimal('70')), self.policy)
        self.assertIs(result, NOT_ASSESSED)
        self.assertFalse(result)

    def test_inactive_type_ignored(self):
        entries = [
            MarkEntry(CAT_TYPE, Decimal('50'), Decimal('100')),
            MarkEntry(99, Decimal('100'), Decimal('100')),
        ]
        result = aggregate_subject(entries, Weighting(Decimal('30'), Decimal('70')), self.policy)
        self.assertEqual(result.percentage, Decimal('50.00'))

    def test_types_combined_by_relative_weight(self):
        weights = {1: Decimal('1'), 3: Decimal('3')}
        entries = [
            MarkEntry(1, Decimal('60'), Decimal('100')),
            MarkEntry(3, Decimal('80'), Decimal('100')),
            MarkEntry(3, Decimal('100'), Decimal('100')),
        ]
        self.assertEqual(category_average(entries, weights), Decimal('82.5'))
        self.assertIsNone(category_average([], weights))

    def test_zero_weighted_category_alone(self):
        weighting = make_weighting(0, 100)
        self.assertEqual(combine_categories(Decimal('64'), None, weighting), Decimal('64'))
        self.assertEqual(combine_categories(Decimal('64'), Decimal('50'), weighting), Decimal('50'))
        self.assertIsNone(combine_categories(None, None, weighting))

    def test_half_up_rounding(self):
        entries = [MarkEntry(CAT_TYPE, Decimal('2'), Decimal('3'))]
        result = aggregate_subject(entries, Weighting(Decimal('30'), Decimal('70')), self.policy)
        self.assertEqual(result.percentage, Decimal('66.67'))

    def test_score_outside_max_rejected(self):
        weighting = Weighting(Decimal('30'), Decimal('70'))
        for score in ('130', '-1'):
            with self.subTest(score=score):
                entries = [MarkEntry(EXAM_TYPE, Decimal(score), Decimal('100'))]
                with self.assertRaises(ConfigurationError) as ctx:
                    aggregate_subject(entries, weighting, self.policy)
                self.assertEqual(ctx.exception.stage, 'aggregate')


class RankingTest(TestCase):
    """Tests for subject selection and class positions."""

    def test_best_n_picks_highest_points(self):
        pe = ranked(10, 'PE', 'Physical Education', '95', 12)
        entry = score_student(nine_subject_student(extra=[pe]), make_policy())
        self.assertEqual(entry.total_score, Decimal('63.00'))
        self.assertEqual(entry.subject_count, 7)
        self.assertEqual(set(entry.selected_subject_ids), {1, 2, 3, 4, 5, 6, 7})
        self.assertNotIn(10, entry.eligible_subject_ids)
        self.assertEqual(entry.total_marks, Decimal('472.00'))
        self.assertEqual(entry.average_percentage, Decimal('67.43'))
        self.assertEqual(entry.mean_points, Decimal('9.000'))
        self.assertFalse(entry.incomplete)

    def test_all_taken_sums_every_eligible_subject(self):
        entry = score_student(nine_subject_student(), make_policy(ranking_method=ALL_TAKEN))
        self.assertEqual(entry.total_score, Decimal('72.00'))
        self.assertEqual(entry.subject_count, 9)

    def test_percentage_basis(self):
        policy = make_policy(ranking_basis=PERCENTAGE)
        entry = score_student(nine_subject_student(), policy)
        self.assertEqual(entry.total_score, entry.total_marks)

    def test_too_few_subjects_flagged_not_dropped(self):
        student = StudentResults(
            student_id=1, admission_number='A001',
            subjects=tuple(ranked(*row) for row in NINE_SUBJECTS[:5]),
        )
        other = nine_subject_student(admission_number='A002', student_id=2)
        result = rank_students([student, other], make_policy())
        entry = result.entry_for(1)
        self.assertTrue(entry.incomplete)
        self.assertEqual(entry.subject_count, 5)
        self.assertEqual(entry.position, 2)
        self.assertEqual(result.class_size, 2)
        self.assertTrue(any('at least 7' in reason for reason in entry.incomplete_reasons))

    def test_science_and_humanities_rules(self):
        subjects = [
            ranked(1, 'MAT', 'Mathematics', '80', 12),
            ranked(2, 'PHY', 'Sciences', '70', 10),
            ranked(3, 'HIS', 'Humanities', '60', 8),
            ranked(4, 'GEO', 'Humanities', '60', 8),
            ranked(5, 'CRE', 'Humanities', '60', 8),
        ]
        student = StudentResults(student_id=1, admission_number='A001', subjects=tuple(subjects))
        entry = score_student(student, make_policy(ranking_method=ALL_TAKEN))
        reasons = ' '.join(entry.incomplete_reasons)
        self.assertIn('science', reasons)
        self.assertIn('humanities', reasons)
        self.assertEqual(entry.total_score, Decimal('46.00'))

    def test_not_assessed_subjects_do_not_count(self):
        subjects = (
            ranked(1, 'MAT', 'Mathematics', '80', 12),
            RankedSubject(2, 'PHY', 'Sciences', NOT_ASSESSED),
        )
        student = StudentResults(student_id=1, admission_number='A001', subjects=subjects)
        entry = score_student(student, make_policy(ranking_n=2, min_total_subjects=1, min_sciences=0))
        self.assertEqual(entry.eligible_subject_ids, (1,))
        self.assertEqual(entry.total_score, Decimal('12.00'))

    def test_positions_are_unique_and_contiguous(self):
        students = [
            nine_subject_student(admission_number='B002', student_id=2),
            nine_subject_student(admission_number='B001', student_id=1),
            StudentResults(
                student_id=3, admission_number='B000',
                subjects=tuple(ranked(*row) for row in NINE_SUBJECTS[2:]),
            ),
        ]
        result = rank_students(students, make_policy())
        self.assertEqual([entry.position for entry in result.entries], [1, 2, 3])
        self.assertEqual(result.entry_for(1).position, 1)
        self.assertEqual(result.entry_for(2).position, 2)
        self.assertEqual(result.entry_for(3).position, 3)

    def test_mean_points_breaks_total_ties(self):
        policy = make_policy(ranking_n=3, min_total_subjects=1, min_sciences=0)
        three = StudentResults(student_id=1, admission_number='C001', subjects=(
            ranked(1, 'MAT', '', '50', 8),
            ranked(2, 'ENG', '', '50', 6),
            ranked(3, 'KIS', '', '50', 6),
        ))
        two = StudentResults(student_id=2, admission_number='C002', subjects=(
            ranked(1, 'MAT', '', '80', 10),
            ranked(2, 'ENG', '', '80', 10),
        ))
        result = rank_students([three, two], policy)
        self.assertEqual(result.entry_for(2).position, 1)
        self.assertEqual(result.entry_for(1).position, 2)

    def test_assign_positions_shares_equal_keys(self):
        policy = make_policy()
        entry = score_student(nine_subject_student(), policy)
        ranked_entries = assign_positions([entry, entry])
        self.assertEqual([item.position for item in ranked_entries], [1, 1])

    def test_statistics(self):
        students = [
            nine_subject_student(admission_number='A001', student_id=1),
            StudentResults(
                student_id=2, admission_number='A002',
                subjects=tuple(ranked(*row) for row in NINE_SUBJECTS[2:]),
            ),
        ]
        result = rank_students(students, make_policy())
        # 63 and 10+9+8+7+6+5+4 = 49
        self.assertEqual(result.highest_total, Decimal('63.00'))
        self.assertEqual(result.lowest_total, Decimal('49.00'))
        self.assertEqual(result.mean_total, Decimal('56.00'))
        self.assertEqual(rank_students([], make_policy()).class_size, 0)

    def test_streams_ranked_separately(self):
        east = StudentResults(1, 'A001', tuple(ranked(*row) for row in NINE_SUBJECTS), stream='East')
        west = StudentResults(2, 'A002', tuple(ranked(*row) for row in NINE_SUBJECTS[1:]), stream='West')
        none = StudentResults(3, 'A003', tuple(ranked(*row) for row in NINE_SUBJECTS), stream='')
        streams = rank_streams([east, west, none], make_policy())
        self.assertEqual(set(streams), {'East', 'West'})
        self.assertEqual(streams['West'].entry_for(2).position, 1)
        self.assertEqual(streams['West'].class_size, 1)

    def test_subject_positions_share_ties(self):
        students = [
            StudentResults(1, 'A001', (ranked(1, 'MAT', '', '80', 12),)),
            StudentResults(2, 'A002', (ranked(1, 'MAT', '', '80', 12),)),
            StudentResults(3, 'A003', (ranked(1, 'MAT', '', '70', 10),)),
        ]
        positions = subject_positions(students)
        self.assertEqual(positions[(1, 1)], 1)
        self.assertEqual(positions[(1, 2)], 1)
        self.assertEqual(positions[(1, 3)], 3)


class ContentHashTest(TestCase):

    def test_canonical_json_ignores_key_order(self):
        self.assertEqual(canonical_json({'b': 1, 'a': 2}), canonical_json({'a': 2, 'b': 1}))
        self.assertEqual(content_hash({'b': 1, 'a': 2}), content_hash({'a': 2, 'b': 1}))
        self.assertNotEqual(content_hash({'a': 1}), content_hash({'a': 2}))


class GradebookFixtureMixin:
    """
    One class of three students with MAT, ENG, HIS and PE:

    alice (A001, East): MAT 80/90, ENG 70/60, HIS 50/50, PE 90/90
    bob   (A002, West): MAT 60/60, ENG 80/80, HIS 70/70
    carol (A003, East): MAT CAT 40 only, ENG nothing, HIS 30/30
    """

    def create_fixtures(self):
        self.school = School.objects.create(name='Kibo High', code='KHS')
        self.admin = User.objects.create_school_admin('admin@kibo.test', 'pass1234', school=self.school)
        self.head = User.objects.create_head_teacher('head@kibo.test', 'pass1234', school=self.school)
        self.teacher = User.objects.create_teacher('teacher@kibo.test', 'pass1234', school=self.school)
        self.actor = Actor.from_user(self.admin)

        self.year = AcademicYear.objects.create(
            school=self.school, name='2025',
            start_date=date(2025, 1, 6), end_date=date(2025, 11, 28), is_current=True,
        )
        self.term = Term.objects.create(
            academic_year=self.year, name='Term 1', term_number=1,
            start_date=date(2025, 1, 6), end_date=date(2025, 4, 4), is_current=True,
        )

        ensure_default_results_settings(self.school)
        SchoolResultsSettings.objects.filter(school=self.school).update(
            ranking_n=3, min_total_subjects=3, max_total_subjects=5, min_sciences=1,
        )

        self.klass = Class.objects.create(school=self.school, name='Form 4', grade_level=4)
        self.cat_type = AssessmentType.objects.create(school=self.school, name='CAT 1')
        self.exam_type = AssessmentType.objects.create(school=self.school, name='End of Term Exam')

        self.subjects = {
            code: Subject.objects.create(school=self.school, code=code, name=name, curriculum_area=area)
            for code, name, area in [
                ('MAT', 'Mathematics', 'STEM - Pure Sciences'),
                ('ENG', 'English', 'Languages'),
                ('HIS', 'History', 'Social - Humanities'),
                ('PE', 'Physical Education', 'Physical Education'),
            ]
        }
        self.assessments = {}
        for code, subject in self.subjects.items():
            for key, assessment_type in (('cat', self.cat_type), ('exam', self.exam_type)):
                self.assessments[(code, key)] = Assessment.objects.create(
                    class_assigned=self.klass, subject=subject, assessment_type=assessment_type,
                    term=self.term, title=f"{assessment_type.name} {code}", max_score=Decimal('100'),
                )

        self.alice = self.make_student('A001', 'Alice', 'Wanjiru', 'East')
        self.bob = self.make_student('A002', 'Bob', 'Otieno', 'West')
        self.carol = self.make_student('A003', 'Carol', 'Achieng', 'East')

        self.record(self.alice, 'MAT', 80, 90)
        self.record(self.alice, 'ENG', 70, 60)
        self.record(self.alice, 'HIS', 50, 50)
        self.record(self.alice, 'PE', 90, 90)
        self.record(self.bob, 'MAT', 60, 60)
        self.record(self.bob, 'ENG', 80, 80)
        self.record(self.bob, 'HIS', 70, 70)
        self.record(self.carol, 'MAT', cat=40)
        self.record(self.carol, 'HIS', 30, 30)

    def make_student(self, admission_number, first_name, last_name, stream=''):
        student = Student.objects.create(
            school=self.school, first_name=first_name, last_name=last_name,
            admission_number=admission_number, current_class=self.klass, stream=stream,
        )
        for subject in self.subjects.values():
            StudentSubjectEnrollment.objects.create(
                school=self.school, term=self.term, student=student, subject=subject,
            )
        return student

    def record(self, student, code, cat=None, exam=None):
        for key, score in (('cat', cat), ('exam', exam)):
            if score is not None:
                StudentMark.objects.update_or_create(
                    student=student, assessment=self.assessments[(code, key)],
                    defaults={'score': Decimal(score)},
                )

    def builder(self, user=None):
        actor = Actor.from_user(user) if user else self.actor
        return ReportCardBuilder(self.school, self.term, actor)

    def latest(self, student):
        return ReportCardVersion.objects.current_for(student, self.term)


class PolicyResolutionTest(GradebookFixtureMixin, TestCase):

    def setUp(self):
        self.create_fixtures()

    def test_resolve_policy(self):
        policy = resolve_policy(self.school)
        self.assertEqual(policy.ranking_method, BEST_N)
        self.assertEqual(policy.ranking_n, 3)
        self.assertEqual(policy.type_categories[self.cat_type.pk], CAT_LIKE)
        self.assertEqual(policy.type_categories[self.exam_type.pk], EXAM_LIKE)
        self.assertTrue(policy.is_excluded_from_ranking(None, 'pe'))
        self.assertTrue(policy.is_science('STEM - Pure Sciences'))
        self.assertTrue(policy.is_humanities('Social - Humanities'))

    def test_inactive_types_left_out(self):
        self.exam_type.is_active = False
        self.exam_type.save()
        policy = resolve_policy(self.school)
        self.assertNotIn(self.exam_type.pk, policy.type_categories)

    def test_profile_exclusion(self):
        SubjectResultsProfile.objects.create(
            school=self.school, subject=self.subjects['ENG'], excluded_from_ranking=True,
        )
        policy = resolve_policy(self.school)
        self.assertTrue(policy.is_excluded_from_ranking(self.subjects['ENG'].pk, 'ENG'))

    def test_missing_settings(self):
        SchoolResultsSettings.objects.filter(school=self.school).delete()
        with self.assertRaises(ConfigurationError):
            resolve_policy(self.school)

    def test_missing_default_scale(self):
        GradeScale.objects.filter(school=self.school).update(is_default=False)
        with self.assertRaises(ConfigurationError):
            resolve_grade_scale(self.school.pk)

    def test_broken_scale_named_in_error(self):
        scale = GradeScale.objects.get(school=self.school, is_default=True)
        scale.bands.filter(letter_grade='E').delete()
        with self.assertRaises(ConfigurationError) as ctx:
            build_snapshot(scale)
        self.assertIn(scale.name, ctx.exception.message)

    def test_infer_category(self):
        self.assertEqual(AssessmentType.infer_category('End of Term Exam'), AssessmentType.Category.EXAM_LIKE)
        self.assertEqual(AssessmentType.infer_category('CAT 2'), AssessmentType.Category.CAT_LIKE)

    def test_single_default_scale(self):
        other = GradeScale.objects.create(school=self.school, name='Other', is_default=True)
        defaults = GradeScale.objects.filter(school=self.school, is_default=True)
        self.assertEqual(list(defaults), [other])


class StudentMarkModelTest(GradebookFixtureMixin, TestCase):

    def setUp(self):
        self.create_fixtures()

    def test_score_above_max_invalid(self):
        mark = StudentMark(student=self.alice, assessment=self.assessments[('MAT', 'cat')], score=Decimal('101'))
        with self.assertRaises(ValidationError):
            mark.clean()

    def test_negative_score_invalid(self):
        mark = StudentMark(student=self.alice, assessment=self.assessments[('MAT', 'cat')], score=Decimal('-1'))
        with self.assertRaises(ValidationError):
            mark.clean()


class ReportCardGenerationTest(GradebookFixtureMixin, TestCase):
    """Tests for snapshot generation and versioning."""

    def setUp(self):
        self.create_fixtures()

    def test_generate_for_class(self):
        result = self.builder().generate_for_class(self.klass)
        self.assertEqual(len(result.created), 3)
        self.assertEqual(ReportCardVersion.objects.count(), 3)

        alice = self.latest(self.alice)
        self.assertEqual(alice.version_number, 1)
        self.assertEqual(alice.status, ReportCardVersion.Status.DRAFT)
        # MAT 87 (A, 12) + ENG 63 (B-, 8) + HIS 50 (C, 6)
        self.assertEqual(alice.total_score, Decimal('26.00'))
        self.assertEqual(alice.average_percentage, Decimal('66.67'))
        self.assertEqual(alice.mean_points, Decimal('8.667'))
        self.assertEqual(alice.overall_grade, 'B')
        self.assertEqual(alice.position_in_class, 2)
        self.assertEqual(alice.class_size, 3)
        self.assertEqual(alice.position_in_stream, 1)
        self.assertEqual(alice.stream_size, 2)
        self.assertFalse(alice.ranking_incomplete)
        self.assertEqual(alice.generated_by, self.admin)

        bob = self.latest(self.bob)
        self.assertEqual(bob.total_score, Decimal('30.00'))
        self.assertEqual(bob.position_in_class, 1)
        self.assertEqual(bob.position_in_stream, 1)
        self.assertEqual(bob.stream_size, 1)

        carol = self.latest(self.carol)
        self.assertEqual(carol.position_in_class, 3)
        self.assertEqual(carol.position_in_stream, 2)
        self.assertTrue(carol.ranking_incomplete)
        self.assertTrue(carol.incomplete_reasons)

    def test_subject_lines(self):
        self.builder().generate_for_class(self.klass)
        alice = self.latest(self.alice)
        lines = {line.subject_code: line for line in alice.subjects.all()}
        self.assertEqual(set(lines), {'MAT', 'ENG', 'HIS', 'PE'})

        self.assertEqual(lines['MAT'].percentage, Decimal('87.00'))
        self.assertEqual(lines['MAT'].grade, 'A')
        self.assertEqual(lines['MAT'].cat_weight, Decimal('30.00'))
        self.assertEqual(lines['MAT'].position_in_subject, 1)
        self.assertTrue(lines['MAT'].selected_for_ranking)

        self.assertTrue(lines['PE'].assessed)
        self.assertFalse(lines['PE'].included_for_ranking)
        self.assertFalse(lines['PE'].selected_for_ranking)

        carol_lines = {line.subject_code: line for line in self.latest(self.carol).subjects.all()}
        self.assertFalse(carol_lines['ENG'].assessed)
        self.assertIsNone(carol_lines['ENG'].percentage)
        self.assertEqual(carol_lines['ENG'].grade, '')
        # CAT only, renormalised
        self.assertEqual(carol_lines['MAT'].percentage, Decimal('40.00'))
        self.assertIsNone(carol_lines['MAT'].exam_average)

    def test_dropped_enrollment_left_out(self):
        StudentSubjectEnrollment.objects.filter(
            student=self.bob, subject=self.subjects['PE']
        ).update(status=StudentSubjectEnrollment.Status.DROPPED)
        self.builder().generate_for_class(self.klass)
        codes = set(self.latest(self.bob).subjects.values_list('subject_code', flat=True))
        self.assertNotIn('PE', codes)

    def test_subject_profile_weighting(self):
        SubjectResultsProfile.objects.create(
            school=self.school, subject=self.subjects['MAT'],
            cat_weight=Decimal('50'), exam_weight=Decimal('50'),
        )
        self.builder().generate_for_class(self.klass)
        line = self.latest(self.alice).subjects.get(subject_code='MAT')
        self.assertEqual(line.percentage, Decimal('85.00'))
        self.assertEqual(line.cat_weight, Decimal('50.00'))

    def test_snapshot_contents(self):
        self.builder().generate_for_class(self.klass)
        snapshot = self.latest(self.alice).marks_snapshot
        self.assertEqual(snapshot['student']['admission_number'], 'A001')
        self.assertEqual(snapshot['term']['name'], 'Term 1')
        self.assertEqual(snapshot['totals']['total_score'], '26.00')
        self.assertEqual(snapshot['ranking']['position_in_class'], 2)
        self.assertEqual(snapshot['class_statistics']['class_size'], 3)
        self.assertEqual(len(snapshot['policy']['grade_scale']['bands']), 12)
        self.assertEqual(len(snapshot['subjects']), 4)
        self.assertEqual(self.latest(self.alice).content_hash, content_hash(snapshot))

    def test_attendance(self):
        statuses = [
            AttendanceRecord.Status.PRESENT,
            AttendanceRecord.Status.PRESENT,
            AttendanceRecord.Status.PRESENT,
            AttendanceRecord.Status.LATE,
            AttendanceRecord.Status.ABSENT,
            AttendanceRecord.Status.EXCUSED,
        ]
        for day, status in enumerate(statuses, start=6):
            session = AttendanceSession.objects.create(
                class_assigned=self.klass, term=self.term, date=date(2025, 1, day),
            )
            AttendanceRecord.objects.create(session=session, student=self.alice, status=status)

        self.builder().generate_for_class(self.klass)
        alice = self.latest(self.alice)
        self.assertEqual(alice.days_present, 4)
        self.assertEqual(alice.days_absent, 1)
        self.assertEqual(alice.attendance_percentage, Decimal('80.00'))
        self.assertIsNone(self.latest(self.bob).attendance_percentage)

    def test_regenerate_appends_version_with_same_hash(self):
        self.builder().generate_for_class(self.klass)
        first = self.latest(self.alice)
        self.builder().generate_for_class(self.klass)
        second = self.latest(self.alice)

        self.assertEqual(second.version_number, 2)
        self.assertNotEqual(first.pk, second.pk)
        self.assertEqual(first.content_hash, second.content_hash)
        self.assertEqual(first.marks_snapshot, second.marks_snapshot)
        self.assertEqual(ReportCardVersion.objects.filter(student=self.alice).count(), 2)

    def test_score_change_changes_hash(self):
        self.builder().generate_for_class(self.klass)
        first = self.latest(self.alice)
        self.record(self.alice, 'HIS', exam=80)
        self.builder().generate_for_class(self.klass)
        second = self.latest(self.alice)
        self.assertNotEqual(first.content_hash, second.content_hash)

    def test_released_version_untouched_by_regeneration(self):
        self.builder().generate_for_class(self.klass)
        released = publish(self.latest(self.alice), self.actor)
        self.record(self.alice, 'MAT', exam=20)

        self.builder().generate_for_class(self.klass)
        released.refresh_from_db()
        self.assertEqual(released.status, ReportCardVersion.Status.RELEASED)
        self.assertEqual(released.subjects.get(subject_code='MAT').percentage, Decimal('87.00'))

        latest = self.latest(self.alice)
        self.assertEqual(latest.version_number, 2)
        self.assertEqual(latest.status, ReportCardVersion.Status.DRAFT)
        self.assertNotEqual(latest.content_hash, released.content_hash)

    def test_versions_are_immutable(self):
        self.builder().generate_for_class(self.klass)
        version = self.latest(self.alice)
        version.total_score = Decimal('99')
        with self.assertRaises(InvalidTransition):
            version.save()
        with self.assertRaises(InvalidTransition):
            version.save(update_fields=['total_score'])

    def test_generate_single_student(self):
        version = self.builder().generate(self.bob)
        self.assertEqual(version.student, self.bob)
        self.assertEqual(version.class_size, 3)
        self.assertEqual(ReportCardVersion.objects.count(), 1)

    def test_student_without_class(self):
        loner = Student.objects.create(
            school=self.school, first_name='Dan', last_name='Kip', admission_number='A009',
        )
        with self.assertRaises(ConfigurationError):
            self.builder().generate(loner)

    def test_batch_is_resumable(self):
        batch_id = uuid.uuid4()
        first = self.builder().generate_for_class(self.klass, batch_id=batch_id)
        second = self.builder().generate_for_class(self.klass, batch_id=batch_id)
        self.assertEqual(len(first.created), 3)
        self.assertEqual(second.created, [])
        self.assertEqual(len(second.skipped), 3)
        self.assertEqual(ReportCardVersion.objects.count(), 3)

    def test_audit_recorded(self):
        self.builder().generate_for_class(self.klass)
        entries = AuditLog.objects.filter(action='report_card:generate')
        self.assertEqual(entries.count(), 3)
        entry = entries.get(resource_id=str(self.latest(self.alice).pk))
        self.assertEqual(entry.user, self.admin)
        self.assertEqual(entry.changes['version_number'], 1)

    def test_teacher_cannot_generate(self):
        with self.assertRaises(PermissionDenied):
            self.builder(self.teacher).generate_for_class(self.klass)
        self.assertEqual(ReportCardVersion.objects.count(), 0)

    def test_head_teacher_can_generate(self):
        result = self.builder(self.head).generate_for_class(self.klass)
        self.assertEqual(len(result.created), 3)

    def test_other_school_class_rejected(self):
        other = School.objects.create(name='Other High', code='OHS')
        other_class = Class.objects.create(school=other, name='Form 4', grade_level=4)
        with self.assertRaises(PermissionDenied):
            self.builder().generate_for_class(other_class)

    def test_broken_scale_stops_generation(self):
        GradeBand.objects.filter(grade_scale__school=self.school, letter_grade='E').delete()
        with self.assertRaises(ConfigurationError):
            self.builder().generate_for_class(self.klass)
        self.assertEqual(ReportCardVersion.objects.count(), 0)

    def test_score_above_max_stops_generation(self):
        # update() skips StudentMark.clean
        StudentMark.objects.filter(
            student=self.bob, assessment=self.assessments[('ENG', 'exam')]
        ).update(score=Decimal('130'))
        with self.assertRaises(ConfigurationError) as ctx:
            self.builder().generate_for_class(self.klass)
        self.assertEqual(ctx.exception.stage, 'aggregate')
        self.assertEqual(ctx.exception.student_id, self.bob.pk)
        self.assertEqual(ctx.exception.term_id, self.term.pk)
        self.assertEqual(ReportCardVersion.objects.count(), 0)

    def test_shared_boundary_warning_recorded(self):
        scale = GradeScale.objects.get(school=self.school, is_default=True)
        scale.bands.all().delete()
        GradeBand.objects.create(
            grade_scale=scale, letter_grade='E', min_score=Decimal('0'),
            max_score=Decimal('50'), points=Decimal('1'), sort_order=2,
        )
        GradeBand.objects.create(
            grade_scale=scale, letter_grade='A', min_score=Decimal('50'),
            max_score=Decimal('100'), points=Decimal('2'), sort_order=1,
        )

        # Alice scores exactly 50 in HIS
        with self.assertWarns(ConfigurationWarning):
            self.builder().generate(self.alice)

        version = self.latest(self.alice)
        self.assertEqual(version.marks_snapshot['warnings'], [
            'HIS: 50.00 sits on a shared grade boundary, graded A',
        ])
        his = version.subjects.get(subject=self.subjects['HIS'])
        self.assertEqual(his.grade, 'A')

    def test_version_race_is_retried(self):
        self.builder().generate_for_class(self.klass)
        with mock.patch.object(ReportCardBuilder, '_next_version_number', side_effect=[1, 2]) as allocate:
            version = self.builder().generate(self.alice)
        self.assertEqual(allocate.call_count, 2)
        self.assertEqual(version.version_number, 2)

    def test_version_race_gives_up(self):
        self.builder().generate_for_class(self.klass)
        with mock.patch.object(ReportCardBuilder, '_next_version_number', return_value=1) as allocate:
            with self.assertRaises(ConcurrencyConflict):
                self.builder().generate(self.alice)
        self.assertEqual(allocate.call_count, config.VERSION_ALLOCATION_RETRIES)
        self.assertEqual(ReportCardVersion.objects.filter(student=self.alice).count(), 1)

    def test_store_failure_leaves_nothing(self):
        with mock.patch.object(
            ReportCardVersionSubject.objects, 'bulk_create', side_effect=DatabaseError('disk full')
        ):
            with self.assertRaises(PersistenceError) as ctx:
                self.builder().generate(self.alice)
        self.assertEqual(ctx.exception.student_id, self.alice.pk)
        self.assertEqual(ReportCardVersion.objects.count(), 0)

    def test_current_queryset(self):
        self.builder().generate_for_class(self.klass)
        self.builder().generate(self.alice)
        current = ReportCardVersion.objects.for_term(self.term).for_class(self.klass).current()
        self.assertEqual(current.count(), 3)
        self.assertEqual(current.get(student=self.alice).version_number, 2)


class ConcurrentGenerationTest(GradebookFixtureMixin, TransactionTestCase):

    def setUp(self):
        if connection.vendor == 'sqlite' and connection.is_in_memory_db():
            self.skipTest('Threads cannot share an in-memory SQLite database')
        self.create_fixtures()

    def test_parallel_generation_allocates_every_version(self):
        numbers = []
        errors = []

        def worker():
            try:
                version = self.builder().generate(self.alice)
                numbers.append(version.version_number)
            except Exception as exc:
                errors.append(exc)
            finally:
                connection.close()

        threads = [threading.Thread(target=worker) for _ in range(20)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(errors, [])
        self.assertEqual(sorted(numbers), list(range(1, 21)))


class PublicationTest(GradebookFixtureMixin, TestCase):
    """Tests for DRAFT -> RELEASED."""

    def setUp(self):
        self.create_fixtures()
        self.builder().generate_for_class(self.klass)

    def test_publish(self):
        version = self.latest(self.alice)
        self.assertTrue(can_regenerate(version))
        publish(version, self.actor)
        version.refresh_from_db()
        self.assertEqual(version.status, ReportCardVersion.Status.RELEASED)
        self.assertIsNotNone(version.released_at)
        self.assertEqual(version.released_by, self.admin)
        self.assertFalse(can_regenerate(version))
        self.assertTrue(AuditLog.objects.filter(
            action='report_card:publish', resource_id=str(version.pk)
        ).exists())

    def test_publish_twice(self):
        version = self.latest(self.alice)
        publish(version, self.actor)
        with self.assertRaises(InvalidTransition):
            publish(version, self.actor)

    def test_teacher_cannot_publish(self):
        with self.assertRaises(PermissionDenied):
            publish(self.latest(self.alice), Actor.from_user(self.teacher))
        self.assertEqual(self.latest(self.alice).status, ReportCardVersion.Status.DRAFT)

    def test_publish_bulk(self):
        publish(self.latest(self.bob), self.actor)
        result = publish_bulk(self.term, self.klass, self.actor)
        self.assertEqual(len(result.published), 2)
        self.assertEqual(result.failed, [])
        self.assertFalse(ReportCardVersion.objects.drafts().exists())


class ResultsSettingsTest(GradebookFixtureMixin, TestCase):
    """Tests for reading and updating results settings."""

    def setUp(self):
        self.create_fixtures()

    def test_defaults_are_idempotent(self):
        ensure_default_results_settings(self.school)
        bundle = get_results_settings(self.school)
        self.assertEqual(len(bundle.bands), 12)
        self.assertEqual(bundle.bands[0].letter_grade, 'A')
        self.assertEqual(bundle.grade_scale.name, config.DEFAULT_GRADE_SCALE_NAME)
        self.assertEqual(SchoolResultsSettings.objects.filter(school=self.school).count(), 1)

    def test_update_settings(self):
        bundle = update_results_settings(self.school, self.actor, {
            'settings': {'ranking_n': 4, 'excluded_subject_codes': ['pe', 'cre']},
        })
        self.assertEqual(bundle.settings.ranking_n, 4)
        self.assertEqual(bundle.settings.excluded_subject_codes, ['PE', 'CRE'])
        self.assertEqual(bundle.settings.updated_by, self.admin)

        audit = AuditLog.objects.get(action='schools_results_settings:update')
        self.assertEqual(audit.changes['settings']['ranking_n'], {'from': 3, 'to': 4})

    def test_head_teacher_cannot_update(self):
        with self.assertRaises(PermissionDenied):
            update_results_settings(self.school, Actor.from_user(self.head), {'settings': {'ranking_n': 4}})

    def test_weights_must_sum_to_hundred(self):
        with self.assertRaises(ValidationError):
            update_results_settings(self.school, self.actor, {
                'settings': {'cat_weight': '40', 'exam_weight': '50'},
            })
        settings_obj = SchoolResultsSettings.objects.get(school=self.school)
        self.assertEqual(settings_obj.cat_weight, Decimal('30.00'))
        self.assertFalse(AuditLog.objects.filter(action='schools_results_settings:update').exists())

    def test_replace_bands(self):
        bands = [
            {'letter_grade': 'E', 'min_score': '0', 'max_score': '39', 'points': '1', 'sort_order': 4},
            {'letter_grade': 'D', 'min_score': '40', 'max_score': '59', 'points': '2', 'sort_order': 3},
            {'letter_grade': 'C', 'min_score': '60', 'max_score': '74', 'points': '3', 'sort_order': 2},
            {'letter_grade': 'A', 'min_score': '75', 'max_score': '100', 'points': '4', 'sort_order': 1},
        ]
        bundle = update_results_settings(self.school, self.actor, {'bands': bands})
        self.assertEqual([item.letter_grade for item in bundle.bands], ['A', 'C', 'D', 'E'])
        self.assertEqual(resolve_grade_scale(self.school.pk).lookup(Decimal('74')).letter_grade, 'C')

    def test_bad_bands_rejected(self):
        bands = [
            {'letter_grade': 'E', 'min_score': '0', 'max_score': '30', 'points': '1', 'sort_order': 2},
            {'letter_grade': 'A', 'min_score': '50', 'max_score': '100', 'points': '2', 'sort_order': 1},
        ]
        with self.assertRaises(ValidationError) as ctx:
            update_results_settings(self.school, self.actor, {'bands': bands})
        self.assertIn('bands', ctx.exception.message_dict)
        self.assertEqual(len(get_results_settings(self.school).bands), 12)

    def test_profiles(self):
        profile = {'subject': self.subjects['MAT'].pk, 'cat_weight': '40', 'exam_weight': '60'}
        bundle = update_results_settings(self.school, self.actor, {'profiles': [profile]})
        self.assertEqual(len(bundle.profiles), 1)
        self.assertEqual(bundle.profiles[0].cat_weight, Decimal('40.00'))

        with self.assertRaises(ValidationError):
            update_results_settings(self.school, self.actor, {
                'profiles': [{'subject': self.subjects['MAT'].pk, 'cat_weight': '40'}],
            })

    def test_seed_command(self):
        other = School.objects.create(name='Other High', code='OHS')
        call_command('seed_results_defaults', '--school', 'ohs', stdout=StringIO())
        self.assertTrue(SchoolResultsSettings.objects.filter(school=other).exists())
        self.assertTrue(GradeScale.objects.filter(school=other, is_default=True).exists())
        self.assertEqual(AssessmentType.objects.filter(school=other).count(), 3)

    def test_settings_form_rejects_min_above_max(self):
        form = ResultsSettingsForm(data={
            'ranking_method': 'BEST_N', 'ranking_n': 7, 'ranking_basis': 'POINTS',
            'min_total_subjects': 9, 'max_total_subjects': 7,
            'min_sciences': 2, 'max_humanities': 2,
            'excluded_subject_codes': '[]', 'cat_weight': '30', 'exam_weight': '70',
        })
        self.assertFalse(form.is_valid())


class ReportViewsTest(GradebookFixtureMixin, TestCase):
    """Tests for the JSON endpoints."""

    def setUp(self):
        self.create_fixtures()
        self.client.force_login(self.admin)

    def post_json(self, url, data):
        return self.client.post(url, data=json.dumps(data), content_type='application/json')

    def test_generate_class(self):
        response = self.post_json(reverse('gradebook:generate_class'), {
            'term': self.term.pk, 'class': self.klass.pk,
        })
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['generated'], 3)

    def test_teacher_forbidden(self):
        self.client.force_login(self.teacher)
        response = self.post_json(reverse('gradebook:generate_class'), {
            'term': self.term.pk, 'class': self.klass.pk,
        })
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()['code'], 'permission_denied')

    def test_missing_term(self):
        response = self.post_json(reverse('gradebook:generate_class'), {'class': self.klass.pk})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'validation_error')

    def test_non_numeric_ids(self):
        response = self.post_json(reverse('gradebook:generate_class'), {
            'term': 'abc', 'class': self.klass.pk,
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'validation_error')
        self.assertIn('term', response.json()['message'])

        response = self.client.get(reverse('gradebook:report_list'), {
            'term': self.term.pk, 'class': 'x1',
        })
        self.assertEqual(response.status_code, 400)
        self.assertIn('class', response.json()['message'])

    def test_bad_mark_returns_json_error(self):
        StudentMark.objects.filter(
            student=self.alice, assessment=self.assessments[('MAT', 'exam')]
        ).update(score=Decimal('130'))
        response = self.post_json(reverse('gradebook:generate_class'), {
            'term': self.term.pk, 'class': self.klass.pk,
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'configuration_error')

    def test_generate_student_and_publish(self):
        response = self.post_json(
            reverse('gradebook:generate_student', args=[self.alice.pk]), {'term': self.term.pk}
        )
        self.assertEqual(response.status_code, 201)
        version_id = response.json()['id']
        self.assertIn('marks_snapshot', response.json())

        url = reverse('gradebook:publish_version', args=[version_id])
        response = self.client.post(url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'RELEASED')

        response = self.client.post(url)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['code'], 'invalid_transition')

    def test_report_list(self):
        self.builder().generate_for_class(self.klass)
        self.builder().generate(self.alice)
        url = reverse('gradebook:report_list')

        response = self.client.get(url, {'term': self.term.pk, 'class': self.klass.pk})
        self.assertEqual(len(response.json()['results']), 4)

        response = self.client.get(url, {'term': self.term.pk, 'class': self.klass.pk, 'current': '1'})
        self.assertEqual(len(response.json()['results']), 3)

        response = self.client.get(url, {'term': self.term.pk, 'class': self.klass.pk, 'status': 'NOPE'})
        self.assertEqual(response.status_code, 400)

    def test_report_detail_other_school(self):
        self.builder().generate_for_class(self.klass)
        version = self.latest(self.alice)
        other = School.objects.create(name='Other High', code='OHS')
        outsider = User.objects.create_school_admin('admin@other.test', 'pass1234', school=other)
        self.client.force_login(outsider)
        response = self.client.get(reverse('gradebook:report_detail', args=[version.pk]))
        self.assertEqual(response.status_code, 404)

    def test_publish_class(self):
        self.builder().generate_for_class(self.klass)
        response = self.post_json(reverse('gradebook:publish_class'), {
            'term': self.term.pk, 'class': self.klass.pk,
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()['published']), 3)

    def test_generate_async_queues_task(self):
        with mock.patch('gradebook.tasks.generate_class_report_cards.delay') as delay:
            delay.return_value.id = 'task-1'
            response = self.post_json(reverse('gradebook:generate_class_async'), {
                'term': self.term.pk, 'class': self.klass.pk,
            })
        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.json()['task_id'], 'task-1')
        kwargs = delay.call_args.kwargs
        self.assertEqual(kwargs['class_id'], self.klass.pk)
        self.assertEqual(kwargs['batch_id'], response.json()['batch_id'])

    def test_results_settings_get_and_post(self):
        url = reverse('gradebook:results_settings')
        response = self.client.get(url)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()['bands']), 12)

        response = self.post_json(url, {'settings': {'ranking_method': 'ALL_TAKEN'}})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['settings']['ranking_method'], 'ALL_TAKEN')
        self.assertEqual(len(response.json()['history']), 1)

        response = self.post_json(url, {'settings': {'ranking_n': 20}})
        self.assertEqual(response.status_code, 400)


class GenerateClassTaskTest(GradebookFixtureMixin, TestCase):
    """Tests for the Celery task."""

    def setUp(self):
        self.create_fixtures()

    def test_generates_class(self):
        result = generate_class_report_cards.run(
            term_id=self.term.pk, class_id=self.klass.pk, actor_id=self.admin.pk,
        )
        self.assertTrue(result['success'])
        self.assertEqual(result['generated'], 3)
        self.assertEqual(len(result['version_ids']), 3)

    def test_rerun_of_batch_skips(self):
        batch_id = str(uuid.uuid4())
        generate_class_report_cards.run(
            term_id=self.term.pk, class_id=self.klass.pk, actor_id=self.admin.pk, batch_id=batch_id,
        )
        result = generate_class_report_cards.run(
            term_id=self.term.pk, class_id=self.klass.pk, actor_id=self.admin.pk, batch_id=batch_id,
        )
        self.assertEqual(result['generated'], 0)
        self.assertEqual(result['skipped'], 3)

    def test_missing_term(self):
        result = generate_class_report_cards.run(
            term_id=999999, class_id=self.klass.pk, actor_id=self.admin.pk,
        )
        self.assertFalse(result['success'])

    def test_conflict_is_retried_with_same_batch(self):
        batch_id = str(uuid.uuid4())
        conflict = ConcurrencyConflict('taken', stage='persist')
        with mock.patch.object(ReportCardBuilder, 'generate_for_class', side_effect=conflict), \
                mock.patch.object(generate_class_report_cards, 'retry', side_effect=Retry()) as retry:
            with self.assertRaises(Retry):
                generate_class_report_cards.run(
                    term_id=self.term.pk, class_id=self.klass.pk,
                    actor_id=self.admin.pk, batch_id=batch_id,
                )
        self.assertIs(retry.call_args.kwargs['exc'], conflict)
        self.assertEqual(retry.call_args.kwargs['kwargs']['batch_id'], batch_id)
