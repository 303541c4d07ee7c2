"""
Report card snapshot generation.

A generation run for a class:

1. authorises the actor and resolves the results policy once;
2. reads the class mark sheet in a single query, so every student is
   ranked against the same marks;
3. aggregates every enrolled subject of every student and ranks the class
   and each stream;
4. persists one new ReportCardVersion per student, each in its own short
   transaction that locks the student row while the version number is
   allocated.

Snapshots exclude version number, timestamps and actor, so regenerating
without score changes gives the same content and content_hash.
"""
import hashlib
import json
import logging
import uuid
import warnings
from collections import defaultdict
from dataclasses import dataclass, field

from django.core.exceptions import PermissionDenied
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import Max
from django.utils.module_loading import import_string

from academics.models import StudentSubjectEnrollment
from accounts.permissions import require_report_manager
from core.audit import record_audit
from students.models import Student

from . import config
from .aggregation import MarkEntry, aggregate_subject
from .exceptions import (
    ConcurrencyConflict, ConfigurationError, ConfigurationWarning,
    GradebookError, NOT_ASSESSED, PersistenceError,
)
from .models import ReportCardVersion, ReportCardVersionSubject, StudentMark
from .policy import resolve_policy
from .ranking import (
    RankedSubject, StudentResults, rank_streams, rank_students, subject_positions,
)

logger = logging.getLogger(__name__)


def load_attendance_provider():
    return import_string(config.ATTENDANCE_PROVIDER)()


def canonical_json(data):
    """Stable JSON text: sorted keys, no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(',', ':'), ensure_ascii=False)


def content_hash(data):
    return hashlib.sha256(canonical_json(data).encode('utf-8')).hexdigest()


def _jsonable(value):
    """Decimals become strings so the stored snapshot hashes the same way."""
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, dict):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return str(value)


@dataclass
class ClassSheet:
    """Everything the computation needs, read once per run."""
    students: list
    enrollments: dict          # student_id -> [StudentSubjectEnrollment]
    marks: dict                # (student_id, subject_id) -> [MarkEntry]


@dataclass
class ComputedCard:
    student: object
    lines: list
    entry: object
    class_ranking: object
    stream_ranking: object
    warnings: list = field(default_factory=list)
    attendance: object = None
    overall_grade: str = ''


@dataclass
class BatchResult:
    batch_id: uuid.UUID | None
    created: list = field(default_factory=list)
    skipped: list = field(default_factory=list)

    @property
    def versions(self):
        return list(self.created)


class ReportCardBuilder:
    """Builds and persists report card versions for one school and term."""

    def __init__(self, school, term, actor, attendance_provider=None):
        self.school = school
        self.term = term
        self.actor = actor
        self.attendance_provider = attendance_provider or load_attendance_provider()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate(self, student):
        """Generate a new version for one student, ranked against their class."""
        if student.current_class_id is None:
            raise ConfigurationError(
                'Student has no current class to be ranked in',
                student_id=student.pk, term_id=self.term.pk, stage='load',
            )
        result = self.generate_for_class(student.current_class, student_ids=[student.pk])
        if not result.created:
            raise ConfigurationError(
                'Student is not an active member of their class',
                student_id=student.pk, term_id=self.term.pk, stage='load',
            )
        return result.created[0]

    def generate_for_class(self, class_obj, batch_id=None, student_ids=None):
        """
        Generate versions for a class. ``student_ids`` limits which students
        are persisted; the whole class is still ranked. With ``batch_id``,
        students that already have a version from that batch are skipped.
        """
        require_report_manager(self.actor, self.school.pk)
        if class_obj.school_id != self.school.pk or self.term.academic_year.school_id != self.school.pk:
            raise PermissionDenied('Class and term must belong to your school.')

        logger.info(
            f"Generating report cards for class {class_obj.pk} term {self.term.pk} "
            f"(batch {batch_id}) by user {self.actor.user_id}"
        )
        policy = self._resolve_policy()
        sheet = self._load_class_sheet(class_obj)
        computed = self._compute(sheet, policy)

        wanted = set(student_ids) if student_ids is not None else None
        result = BatchResult(batch_id=batch_id)
        for card in computed:
            if wanted is not None and card.student.pk not in wanted:
                continue
            snapshot = self._assemble_snapshot(card, class_obj, policy)
            version, created = self._persist(card, snapshot, class_obj, policy, batch_id)
            if created:
                result.created.append(version)
            else:
                result.skipped.append(card.student.pk)

        logger.info(
            f"Report cards for class {class_obj.pk} term {self.term.pk}: "
            f"{len(result.created)} generated, {len(result.skipped)} skipped"
        )
        return result

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _resolve_policy(self):
        try:
            return resolve_policy(self.school)
        except GradebookError as exc:
            exc.term_id = self.term.pk
            logger.error(f"Cannot generate report cards: {exc}")
            raise

    def _load_class_sheet(self, class_obj):
        """
        Roster, enrollments and marks for the class.

        The three reads share a transaction but not a snapshot: at READ
        COMMITTED a commit can land between them. Marks come from one
        statement and are limited to the roster read first, so the ranking
        never mixes mark sheets from two points in time.
        """
        with transaction.atomic():
            students = list(
                Student.objects.filter(
                    school=self.school, current_class=class_obj, is_active=True
                ).order_by('admission_number')
            )
            enrollments = defaultdict(list)
            enrollment_qs = StudentSubjectEnrollment.objects.filter(
                term=self.term,
                student__in=students,
                status=StudentSubjectEnrollment.Status.ACTIVE,
            ).select_related('subject').order_by('subject__code')
            for enrollment in enrollment_qs:
                enrollments[enrollment.student_id].append(enrollment)

            # One read of the whole class mark sheet
            marks = defaultdict(list)
            rows = StudentMark.objects.filter(
                assessment__class_assigned=class_obj,
                assessment__term=self.term,
                student__in=students,
            ).values_list(
                'student_id', 'assessment__subject_id',
                'assessment__assessment_type_id', 'assessment__max_score', 'score',
            )
            for student_id, subject_id, type_id, max_score, score in rows:
                marks[(student_id, subject_id)].append(
                    MarkEntry(assessment_type_id=type_id, score=score, max_score=max_score)
                )

        return ClassSheet(students=students, enrollments=enrollments, marks=marks)

    # ------------------------------------------------------------------
    # Computation
    # ------------------------------------------------------------------

    def _compute(self, sheet, policy):
        results = []
        warnings_by_student = defaultdict(list)
        for student in sheet.students:
            subjects = []
            for enrollment in sheet.enrollments.get(student.pk, []):
                subject = enrollment.subject
                try:
                    result = aggregate_subject(
                        sheet.marks.get((student.pk, subject.pk), []),
                        policy.weighting_for(subject.pk),
                        policy,
                    )
                except GradebookError as exc:
                    exc.student_id = student.pk
                    exc.term_id = self.term.pk
                    exc.stage = exc.stage or 'aggregate'
                    logger.error(f"Aggregation failed: {exc}")
                    raise
                if result is not NOT_ASSESSED and result.ambiguous_grade:
                    message = (
                        f"{subject.code}: {result.percentage} sits on a shared grade boundary, "
                        f"graded {result.grade}"
                    )
                    warnings_by_student[student.pk].append(message)
                    self._warn(message, student)
                subjects.append((enrollment, RankedSubject(
                    subject_id=subject.pk,
                    code=subject.code,
                    curriculum_area=subject.curriculum_area,
                    result=result,
                )))
            results.append((student, subjects))

        ranked_students = [
            StudentResults(
                student_id=student.pk,
                admission_number=student.admission_number,
                subjects=tuple(ranked for _, ranked in subjects),
                stream=student.stream,
            )
            for student, subjects in results
        ]
        class_ranking = rank_students(ranked_students, policy)
        stream_rankings = rank_streams(ranked_students, policy)
        positions = subject_positions(ranked_students)

        cards = []
        for student, subjects in results:
            entry = class_ranking.entry_for(student.pk)
            stream_ranking = stream_rankings.get((student.stream or '').strip())
            lines = [
                self._line(enrollment, ranked, entry, positions, policy, student)
                for enrollment, ranked in subjects
            ]
            cards.append(ComputedCard(
                student=student,
                lines=lines,
                entry=entry,
                class_ranking=class_ranking,
                stream_ranking=stream_ranking,
                warnings=warnings_by_student[student.pk],
            ))
        return cards

    def _warn(self, message, student):
        logger.warning(f"Student {student.pk} term {self.term.pk}: {message}")
        warnings.warn(message, ConfigurationWarning, stacklevel=3)

    def _line(self, enrollment, ranked, entry, positions, policy, student):
        subject = enrollment.subject
        weighting = policy.weighting_for(subject.pk)
        line = {
            'subject_id': subject.pk,
            'subject_code': subject.code,
            'subject_name': subject.name,
            'curriculum_area': subject.curriculum_area,
            'is_compulsory': enrollment.is_compulsory,
            'assessed': ranked.assessed,
            'cat_weight': weighting.cat_weight,
            'exam_weight': weighting.exam_weight,
            'cat_average': None,
            'exam_average': None,
            'percentage': None,
            'grade': '',
            'points': None,
            'included_for_ranking': subject.pk in entry.eligible_subject_ids,
            'selected_for_ranking': subject.pk in entry.selected_subject_ids,
            'position_in_subject': positions.get((subject.pk, student.pk)),
        }
        if ranked.assessed:
            result = ranked.result
            line.update({
                'cat_average': result.cat_average,
                'exam_average': result.exam_average,
                'percentage': result.percentage,
                'grade': result.grade,
                'points': result.points,
            })
        return line

    def _overall_grade(self, card, policy):
        if card.entry.average_percentage is None:
            return ''
        match = policy.grade_scale.lookup(card.entry.average_percentage)
        if match.ambiguous:
            message = (
                f"overall average {card.entry.average_percentage} sits on a shared grade boundary, "
                f"graded {match.letter_grade}"
            )
            card.warnings.append(message)
            self._warn(message, card.student)
        return match.letter_grade

    def _assemble_snapshot(self, card, class_obj, policy):
        student = card.student
        entry = card.entry
        stream = (student.stream or '').strip()
        stream_entry = card.stream_ranking.entry_for(student.pk) if card.stream_ranking else None
        attendance = self.attendance_provider.summary(student, self.term)
        overall_grade = self._overall_grade(card, policy)
        card.attendance = attendance
        card.overall_grade = overall_grade

        snapshot = {
            'student': {
                'id': student.pk,
                'admission_number': student.admission_number,
                'name': student.full_name,
                'class': class_obj.name,
                'stream': stream,
            },
            'term': {
                'id': self.term.pk,
                'name': self.term.name,
                'academic_year': self.term.academic_year.name,
            },
            'policy': policy.as_dict(),
            'subjects': card.lines,
            'totals': {
                'total_score': entry.total_score,
                'total_marks': entry.total_marks,
                'average_percentage': entry.average_percentage,
                'mean_points': entry.mean_points,
                'overall_grade': overall_grade,
            },
            'ranking': {
                'subject_count': entry.subject_count,
                'incomplete': entry.incomplete,
                'incomplete_reasons': list(entry.incomplete_reasons),
                'position_in_class': entry.position,
                'class_size': card.class_ranking.class_size,
                'stream': stream,
                'position_in_stream': stream_entry.position if stream_entry else None,
                'stream_size': card.stream_ranking.class_size if card.stream_ranking else None,
            },
            'class_statistics': card.class_ranking.statistics(),
            'attendance': {
                'days_present': attendance.days_present,
                'days_absent': attendance.days_absent,
                'attendance_percentage': attendance.attendance_percentage,
            },
            'warnings': sorted(card.warnings),
        }
        return _jsonable(snapshot)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _next_version_number(self, student):
        latest = ReportCardVersion.objects.filter(
            student=student, term=self.term
        ).aggregate(latest=Max('version_number'))['latest']
        return (latest or 0) + 1

    def _persist(self, card, snapshot, class_obj, policy, batch_id):
        student = card.student
        attempts = max(1, int(config.VERSION_ALLOCATION_RETRIES))
        for attempt in range(1, attempts + 1):
            try:
                return self._write_version(card, snapshot, class_obj, policy, batch_id)
            except ConcurrencyConflict as exc:
                if attempt == attempts:
                    logger.error(f"Giving up after {attempts} attempts: {exc}")
                    raise
                logger.warning(f"{exc}; retrying (attempt {attempt + 1} of {attempts})")
            except (IntegrityError, DatabaseError) as exc:
                logger.error(
                    f"Failed to store report card for student {student.pk} term {self.term.pk}: {exc}"
                )
                raise PersistenceError(
                    f"Could not store report card: {exc}",
                    student_id=student.pk, term_id=self.term.pk, stage='persist',
                ) from exc

    def _write_version(self, card, snapshot, class_obj, policy, batch_id):
        student = card.student
        with transaction.atomic():
            # Serialises version allocation per student
            Student.objects.select_for_update().filter(pk=student.pk).first()

            if batch_id is not None:
                existing = ReportCardVersion.objects.filter(
                    student=student, term=self.term, generation_batch=batch_id
                ).first()
                if existing is not None:
                    logger.info(f"Student {student.pk} already has a version from batch {batch_id}")
                    return existing, False

            version_number = self._next_version_number(student)
            ranking = snapshot['ranking']
            attendance = card.attendance
            try:
                with transaction.atomic():
                    version = ReportCardVersion.objects.create(
                        school=self.school,
                        student=student,
                        term=self.term,
                        version_number=version_number,
                        status=ReportCardVersion.Status.DRAFT,
                        generated_by_id=self.actor.user_id,
                        generation_batch=batch_id,
                        class_name=class_obj.name,
                        marks_snapshot=snapshot,
                        content_hash=content_hash(snapshot),
                        total_score=card.entry.total_score,
                        total_marks=card.entry.total_marks,
                        average_percentage=card.entry.average_percentage,
                        mean_points=card.entry.mean_points,
                        overall_grade=card.overall_grade,
                        ranking_method=policy.ranking_method,
                        ranking_basis=policy.ranking_basis,
                        ranking_subject_count=card.entry.subject_count,
                        ranking_incomplete=card.entry.incomplete,
                        incomplete_reasons=list(card.entry.incomplete_reasons),
                        position_in_class=ranking['position_in_class'],
                        class_size=ranking['class_size'],
                        stream=ranking['stream'],
                        position_in_stream=ranking['position_in_stream'],
                        stream_size=ranking['stream_size'],
                        days_present=attendance.days_present,
                        days_absent=attendance.days_absent,
                        attendance_percentage=attendance.attendance_percentage,
                    )
            except IntegrityError as exc:
                if ReportCardVersion.objects.filter(
                    student=student, term=self.term, version_number=version_number
                ).exists():
                    raise ConcurrencyConflict(
                        f"Version {version_number} was taken by a concurrent generation",
                        student_id=student.pk, term_id=self.term.pk, stage='persist',
                    ) from exc
                raise

            ReportCardVersionSubject.objects.bulk_create([
                ReportCardVersionSubject(
                    version=version,
                    subject_id=line['subject_id'],
                    subject_code=line['subject_code'],
                    subject_name=line['subject_name'],
                    curriculum_area=line['curriculum_area'],
                    is_compulsory=line['is_compulsory'],
                    assessed=line['assessed'],
                    cat_average=line['cat_average'],
                    exam_average=line['exam_average'],
                    cat_weight=line['cat_weight'],
                    exam_weight=line['exam_weight'],
                    percentage=line['percentage'],
                    grade=line['grade'],
                    points=line['points'],
                    included_for_ranking=line['included_for_ranking'],
                    selected_for_ranking=line['selected_for_ranking'],
                    position_in_subject=line['position_in_subject'],
                )
                for line in card.lines
            ])

            record_audit(
                school_id=self.school.pk,
                actor_id=self.actor.user_id,
                action='report_card:generate',
                resource_type='report_card_version',
                resource_id=version.pk,
                changes={
                    'student_id': student.pk,
                    'term_id': self.term.pk,
                    'version_number': version_number,
                    'content_hash': version.content_hash,
                    'generation_batch': str(batch_id) if batch_id else None,
                },
            )

        logger.info(
            f"Generated report card v{version_number} for student {student.pk} term {self.term.pk}"
        )
        return version, True


def new_batch_id():
    return uuid.uuid4()
