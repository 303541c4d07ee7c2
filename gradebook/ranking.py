"""
Class and stream ranking.

Students are never dropped from a ranking. When a student's subjects do not
satisfy the school's rules they are ranked on what they have and flagged
incomplete with the reasons.
"""
from collections import defaultdict
from dataclasses import dataclass, field, replace
from decimal import Decimal, ROUND_HALF_UP

from .exceptions import IncompleteRankingPolicy, NOT_ASSESSED

BEST_N = 'BEST_N'
ALL_TAKEN = 'ALL_TAKEN'
POINTS = 'POINTS'
PERCENTAGE = 'PERCENTAGE'

TWO_PLACES = Decimal('0.01')
THREE_PLACES = Decimal('0.001')


def _q(value, places=TWO_PLACES):
    if value is None:
        return None
    return Decimal(value).quantize(places, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class RankedSubject:
    subject_id: int
    code: str
    curriculum_area: str
    result: object  # SubjectResult or NOT_ASSESSED

    @property
    def assessed(self):
        return self.result is not NOT_ASSESSED


@dataclass(frozen=True)
class StudentResults:
    student_id: int
    admission_number: str
    subjects: tuple
    stream: str = ''


@dataclass(frozen=True)
class RankingEntry:
    student_id: int
    admission_number: str
    total_score: Decimal
    mean_points: Decimal | None
    average_percentage: Decimal | None
    total_marks: Decimal
    subject_count: int
    selected_subject_ids: tuple
    eligible_subject_ids: tuple
    incomplete_reasons: tuple = ()
    position: int = 0

    @property
    def incomplete(self):
        return bool(self.incomplete_reasons)

    def sort_key(self):
        return (-self.total_score, -(self.mean_points or Decimal('0')), self.admission_number)


@dataclass(frozen=True)
class RankingResult:
    entries: tuple
    class_size: int
    mean_total: Decimal | None = None
    highest_total: Decimal | None = None
    lowest_total: Decimal | None = None
    mean_points: Decimal | None = None
    _by_student: dict = field(default_factory=dict, repr=False, compare=False)

    def entry_for(self, student_id):
        return self._by_student.get(student_id)

    def statistics(self):
        return {
            'class_size': self.class_size,
            'mean_total': self.mean_total,
            'highest_total': self.highest_total,
            'lowest_total': self.lowest_total,
            'mean_points': self.mean_points,
        }


def eligible_subjects(student, policy):
    """Assessed subjects that count towards ranking."""
    return [
        subject for subject in student.subjects
        if subject.assessed and not policy.is_excluded_from_ranking(subject.subject_id, subject.code)
    ]


def _selection_key(subject, basis):
    result = subject.result
    if basis == PERCENTAGE:
        return (-result.percentage, -result.points, subject.code)
    return (-result.points, -result.percentage, subject.code)


def select_subjects(eligible, policy):
    """
    Pick the subjects a student is ranked on.

    Returns (selected, IncompleteRankingPolicy).
    """
    reasons = []
    count = len(eligible)

    if policy.ranking_method == BEST_N:
        if count < policy.min_total_subjects:
            reasons.append(
                f"{count} eligible subjects, at least {policy.min_total_subjects} required"
            )
        if count > policy.max_total_subjects:
            reasons.append(
                f"{count} eligible subjects, at most {policy.max_total_subjects} allowed"
            )
        if count < policy.ranking_n:
            reasons.append(
                f"only {count} eligible subjects for best {policy.ranking_n}"
            )
        ordered = sorted(eligible, key=lambda subject: _selection_key(subject, policy.ranking_basis))
        selected = ordered[:policy.ranking_n]
    else:
        selected = sorted(eligible, key=lambda subject: subject.code)

    sciences = sum(1 for subject in eligible if policy.is_science(subject.curriculum_area))
    humanities = sum(1 for subject in eligible if policy.is_humanities(subject.curriculum_area))
    if sciences < policy.min_sciences:
        reasons.append(f"{sciences} science subjects, at least {policy.min_sciences} required")
    if humanities > policy.max_humanities:
        reasons.append(f"{humanities} humanities subjects, at most {policy.max_humanities} allowed")

    return selected, IncompleteRankingPolicy(tuple(reasons))


def score_student(student, policy):
    """Totals for one student, before positions are assigned."""
    eligible = eligible_subjects(student, policy)
    selected, incomplete = select_subjects(eligible, policy)

    points = [subject.result.points for subject in selected]
    percentages = [subject.result.percentage for subject in selected]
    total_marks = sum(percentages, Decimal('0'))
    if policy.ranking_basis == PERCENTAGE:
        total_score = total_marks
    else:
        total_score = sum(points, Decimal('0'))

    count = len(selected)
    return RankingEntry(
        student_id=student.student_id,
        admission_number=student.admission_number,
        total_score=_q(total_score),
        mean_points=_q(sum(points) / count, THREE_PLACES) if count else None,
        average_percentage=_q(total_marks / count) if count else None,
        total_marks=_q(total_marks),
        subject_count=count,
        selected_subject_ids=tuple(subject.subject_id for subject in selected),
        eligible_subject_ids=tuple(subject.subject_id for subject in eligible),
        incomplete_reasons=incomplete.reasons,
    )


def assign_positions(entries):
    """
    Sort by (total desc, mean points desc, admission number asc) and give
    each entry 1 + the number of entries strictly ahead of it.
    """
    ordered = sorted(entries, key=lambda entry: entry.sort_key())
    ranked = []
    previous_key = None
    position = 0
    for index, entry in enumerate(ordered):
        key = entry.sort_key()
        if key != previous_key:
            position = index + 1
            previous_key = key
        ranked.append(replace(entry, position=position))
    return ranked


def rank_students(students, policy):
    """Rank a group of students (a class or a stream)."""
    entries = assign_positions([score_student(student, policy) for student in students])
    if not entries:
        return RankingResult(entries=(), class_size=0)

    totals = [entry.total_score for entry in entries]
    mean_points = [entry.mean_points for entry in entries if entry.mean_points is not None]
    return RankingResult(
        entries=tuple(entries),
        class_size=len(entries),
        mean_total=_q(sum(totals) / len(totals)),
        highest_total=max(totals),
        lowest_total=min(totals),
        mean_points=_q(sum(mean_points) / len(mean_points), THREE_PLACES) if mean_points else None,
        _by_student={entry.student_id: entry for entry in entries},
    )


def rank_streams(students, policy):
    """Rank each non-blank stream separately. Returns {stream: RankingResult}."""
    groups = defaultdict(list)
    for student in students:
        stream = (student.stream or '').strip()
        if stream:
            groups[stream].append(student)
    return {stream: rank_students(members, policy) for stream, members in groups.items()}


def subject_positions(students):
    """
    Position of each assessed student within each subject, best percentage
    first; equal percentages share a position.

    Returns {(subject_id, student_id): position}.
    """
    by_subject = defaultdict(list)
    for student in students:
        for subject in student.subjects:
            if subject.assessed:
                by_subject[subject.subject_id].append((subject.result.percentage, student.student_id))

    positions = {}
    for subject_id, rows in by_subject.items():
        rows.sort(key=lambda row: -row[0])
        previous = None
        position = 0
        for index, (percentage, student_id) in enumerate(rows):
            if percentage != previous:
                position = index + 1
                previous = percentage
            positions[(subject_id, student_id)] = position
    return positions
