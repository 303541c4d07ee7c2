import uuid
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator, MaxValueValidator
from django.db import models
from django.db.models import OuterRef, Subquery
from django.utils import timezone

from academics.models import Class, Subject
from core.models import Term
from students.models import Student

from .exceptions import InvalidTransition


class GradeScale(models.Model):
    """A school's grading scale (e.g. KCSE 12-point). One is the default."""
    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='grade_scales'
    )
    name = models.CharField(
        max_length=100,
        help_text='Name of the scale (e.g., KCSE 12-point)'
    )
    is_default = models.BooleanField(
        default=False,
        help_text='The scale used when generating report cards'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        # Ensure only one default scale per school
        if self.is_default:
            GradeScale.objects.filter(
                school_id=self.school_id, is_default=True
            ).exclude(pk=self.pk).update(is_default=False)
        super().save(*args, **kwargs)

    class Meta:
        db_table = 'grade_scale'
        ordering = ['school', 'name']
        verbose_name = 'Grade Scale'
        verbose_name_plural = 'Grade Scales'
        unique_together = ['school', 'name']


class GradeBand(models.Model):
    """A grade within a scale (e.g., B+ = 70-74.99, 10 points)"""
    grade_scale = models.ForeignKey(
        GradeScale,
        on_delete=models.CASCADE,
        related_name='bands'
    )
    min_score = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text='Minimum percentage for this grade (inclusive)'
    )
    max_score = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text='Maximum percentage for this grade (inclusive)'
    )
    letter_grade = models.CharField(
        max_length=5,
        help_text='Grade label (e.g., A, B+, C-)'
    )
    points = models.DecimalField(
        max_digits=4,
        decimal_places=2,
        validators=[MinValueValidator(0)],
        help_text='Points awarded for this grade (higher is better)'
    )
    sort_order = models.PositiveSmallIntegerField(
        default=0,
        help_text='Display order (lower numbers appear first)'
    )

    def __str__(self):
        return f"{self.letter_grade} ({self.min_score}-{self.max_score}%)"

    def clean(self):
        """Validate that min <= max"""
        if self.min_score is not None and self.max_score is not None:
            if self.min_score > self.max_score:
                raise ValidationError('Minimum score cannot be greater than maximum score')

    class Meta:
        db_table = 'grade_band'
        ordering = ['grade_scale', 'sort_order']
        verbose_name = 'Grade Band'
        verbose_name_plural = 'Grade Bands'
        unique_together = [
            ['grade_scale', 'letter_grade'],
            ['grade_scale', 'sort_order'],
        ]


class AssessmentType(models.Model):
    """
    School-wide assessment types, e.g. CAT 1, Mid-Term, End of Term Exam.
    Each type belongs to exactly one category.
    """
    class Category(models.TextChoices):
        CAT_LIKE = 'CAT_LIKE', 'Continuous Assessment'
        EXAM_LIKE = 'EXAM_LIKE', 'Examination'

    EXAM_KEYWORDS = ('EXAM', 'END', 'TERM')

    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='assessment_types'
    )
    name = models.CharField(
        max_length=100,
        help_text='Type name (e.g., CAT 1, End of Term Exam)'
    )
    category = models.CharField(
        max_length=10,
        choices=Category.choices,
        blank=True,
        help_text='Left blank, inferred from the name'
    )
    weight = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        default=Decimal('1.00'),
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text='Relative weight among active types of the same category'
    )
    max_score = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        default=Decimal('100.00'),
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text='Default maximum score for assessments of this type'
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return self.name

    @classmethod
    def infer_category(cls, name):
        """Names mentioning EXAM, END or TERM are exam-like; anything else is a CAT."""
        upper = (name or '').upper()
        if any(keyword in upper for keyword in cls.EXAM_KEYWORDS):
            return cls.Category.EXAM_LIKE
        return cls.Category.CAT_LIKE

    def save(self, *args, **kwargs):
        if not self.category:
            self.category = self.infer_category(self.name)
        super().save(*args, **kwargs)

    class Meta:
        db_table = 'assessment_type'
        ordering = ['school', 'name']
        verbose_name = 'Assessment Type'
        verbose_name_plural = 'Assessment Types'
        unique_together = ['school', 'name']


class Assessment(models.Model):
    """
    An individual assessment given to a class in a subject during a term.
    e.g., CAT 1 Mathematics, End of Term Chemistry
    """
    class_assigned = models.ForeignKey(
        Class,
        on_delete=models.CASCADE,
        related_name='assessments',
        db_index=True
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='assessments',
        db_index=True
    )
    teacher = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='assessments'
    )
    assessment_type = models.ForeignKey(
        AssessmentType,
        on_delete=models.PROTECT,
        related_name='assessments'
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='assessments',
        db_index=True
    )
    title = models.CharField(
        max_length=100,
        help_text='Assessment title (e.g., CAT 1)'
    )
    max_score = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text='Maximum score available for this assessment'
    )
    assessment_date = models.DateField(
        null=True,
        blank=True,
        help_text='Date of the assessment (optional)'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.subject.name} - {self.title}"

    class Meta:
        db_table = 'assessment'
        ordering = ['term', 'subject', 'assessment_date', 'title']
        verbose_name = 'Assessment'
        verbose_name_plural = 'Assessments'
        indexes = [
            models.Index(fields=['class_assigned', 'term'], name='assessment_class_term_idx'),
        ]


class StudentMark(models.Model):
    """Student score for an individual assessment"""
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='marks',
        db_index=True
    )
    assessment = models.ForeignKey(
        Assessment,
        on_delete=models.CASCADE,
        related_name='marks',
        db_index=True
    )
    score = models.DecimalField(
        max_digits=6,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0'))],
        help_text='Score earned on this assessment'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.student} - {self.assessment.title}: {self.score}/{self.assessment.max_score}"

    def clean(self):
        """Validate that score stays within 0..max_score"""
        if self.score is None:
            return
        if self.score < 0:
            raise ValidationError('Score cannot be negative')
        if self.score > self.assessment.max_score:
            raise ValidationError(
                f'Score ({self.score}) cannot exceed maximum score ({self.assessment.max_score})'
            )

    class Meta:
        db_table = 'student_mark'
        ordering = ['student', 'assessment']
        verbose_name = 'Student Mark'
        verbose_name_plural = 'Student Marks'
        unique_together = ['student', 'assessment']
        constraints = [
            models.CheckConstraint(condition=models.Q(score__gte=0), name='student_mark_score_non_negative'),
        ]


class SchoolResultsSettings(models.Model):
    """How a school weights, grades and ranks its results."""
    class RankingMethod(models.TextChoices):
        BEST_N = 'BEST_N', 'Best N subjects'
        ALL_TAKEN = 'ALL_TAKEN', 'All subjects taken'

    class RankingBasis(models.TextChoices):
        POINTS = 'POINTS', 'Points'
        PERCENTAGE = 'PERCENTAGE', 'Percentage'

    school = models.OneToOneField(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='results_settings'
    )
    ranking_method = models.CharField(
        max_length=10,
        choices=RankingMethod.choices,
        default=RankingMethod.BEST_N
    )
    ranking_n = models.PositiveSmallIntegerField(
        default=7,
        validators=[MinValueValidator(1), MaxValueValidator(12)],
        help_text='Number of subjects counted under Best N'
    )
    ranking_basis = models.CharField(
        max_length=10,
        choices=RankingBasis.choices,
        default=RankingBasis.POINTS,
        help_text='What is summed into the ranking total'
    )
    min_total_subjects = models.PositiveSmallIntegerField(default=7)
    max_total_subjects = models.PositiveSmallIntegerField(default=9)
    min_sciences = models.PositiveSmallIntegerField(default=2)
    max_humanities = models.PositiveSmallIntegerField(default=2)
    excluded_subject_codes = models.JSONField(
        default=list,
        blank=True,
        help_text='Subject codes never counted for ranking (e.g., PE, ICT)'
    )
    cat_weight = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal('30.00'),
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text='Default CAT weight (%)'
    )
    exam_weight = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        default=Decimal('70.00'),
        validators=[MinValueValidator(0), MaxValueValidator(100)],
        help_text='Default exam weight (%)'
    )
    updated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"Results settings - {self.school}"

    class Meta:
        db_table = 'school_results_settings'
        verbose_name = 'School Results Settings'
        verbose_name_plural = 'School Results Settings'


class SubjectResultsProfile(models.Model):
    """
    Per-subject overrides. Weights are both set or both empty; a half-set
    pair is reported when results are generated.
    """
    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='subject_results_profiles'
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='results_profiles'
    )
    cat_weight = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    exam_weight = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    excluded_from_ranking = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self):
        return f"{self.subject} profile"

    class Meta:
        db_table = 'subject_results_profile'
        verbose_name = 'Subject Results Profile'
        verbose_name_plural = 'Subject Results Profiles'
        unique_together = ['school', 'subject']


class ReportCardVersionQuerySet(models.QuerySet):

    def for_term(self, term):
        return self.filter(term=term)

    def for_class(self, class_obj):
        return self.filter(student__current_class=class_obj)

    def drafts(self):
        return self.filter(status=ReportCardVersion.Status.DRAFT)

    def current(self):
        """Only the highest version of each student+term."""
        latest = ReportCardVersion.objects.filter(
            student=OuterRef('student'),
            term=OuterRef('term'),
        ).order_by('-version_number').values('version_number')[:1]
        return self.filter(version_number=Subquery(latest))

    def current_for(self, student, term):
        return self.filter(student=student, term=term).order_by('-version_number').first()


class ReportCardVersion(models.Model):
    """
    One immutable report card for a student and term. Regenerating appends a
    new version; only the publication fields change after creation.
    """
    class Status(models.TextChoices):
        DRAFT = 'DRAFT', 'Draft'
        RELEASED = 'RELEASED', 'Released'

    PUBLICATION_FIELDS = frozenset({'status', 'released_at', 'released_by'})

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='report_card_versions'
    )
    student = models.ForeignKey(
        Student,
        on_delete=models.CASCADE,
        related_name='report_card_versions'
    )
    term = models.ForeignKey(
        Term,
        on_delete=models.CASCADE,
        related_name='report_card_versions'
    )
    version_number = models.PositiveIntegerField()
    status = models.CharField(
        max_length=10,
        choices=Status.choices,
        default=Status.DRAFT
    )

    # Generation
    generated_at = models.DateTimeField(default=timezone.now)
    generated_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='generated_report_cards'
    )
    generation_batch = models.UUIDField(null=True, blank=True, db_index=True)
    class_name = models.CharField(max_length=50, blank=True)

    # Snapshot
    marks_snapshot = models.JSONField(default=dict)
    content_hash = models.CharField(max_length=64)

    # Totals
    total_score = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    total_marks = models.DecimalField(max_digits=8, decimal_places=2, null=True, blank=True)
    average_percentage = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    mean_points = models.DecimalField(max_digits=6, decimal_places=3, null=True, blank=True)
    overall_grade = models.CharField(max_length=5, blank=True)

    # Ranking
    ranking_method = models.CharField(max_length=10, choices=SchoolResultsSettings.RankingMethod.choices)
    ranking_basis = models.CharField(max_length=10, choices=SchoolResultsSettings.RankingBasis.choices)
    ranking_subject_count = models.PositiveSmallIntegerField(default=0)
    ranking_incomplete = models.BooleanField(default=False)
    incomplete_reasons = models.JSONField(default=list, blank=True)
    position_in_class = models.PositiveIntegerField(null=True, blank=True)
    class_size = models.PositiveIntegerField(default=0)
    stream = models.CharField(max_length=50, blank=True)
    position_in_stream = models.PositiveIntegerField(null=True, blank=True)
    stream_size = models.PositiveIntegerField(null=True, blank=True)

    # Attendance
    days_present = models.PositiveIntegerField(default=0)
    days_absent = models.PositiveIntegerField(default=0)
    attendance_percentage = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)

    # Publication
    released_at = models.DateTimeField(null=True, blank=True)
    released_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='released_report_cards'
    )

    objects = ReportCardVersionQuerySet.as_manager()

    def __str__(self):
        return f"{self.student} - {self.term} v{self.version_number}"

    @property
    def is_draft(self):
        return self.status == self.Status.DRAFT

    def save(self, *args, **kwargs):
        if not self._state.adding:
            update_fields = kwargs.get('update_fields')
            if update_fields is None:
                raise InvalidTransition(
                    'Saved report card versions only accept publication updates; pass update_fields',
                    student_id=self.student_id, term_id=self.term_id, stage='save',
                )
            frozen = set(update_fields) - self.PUBLICATION_FIELDS
            if frozen:
                raise InvalidTransition(
                    f"Report card versions are immutable; cannot change {', '.join(sorted(frozen))}",
                    student_id=self.student_id, term_id=self.term_id, stage='save',
                )
        super().save(*args, **kwargs)

    class Meta:
        db_table = 'report_card_version'
        ordering = ['student', 'term', '-version_number']
        verbose_name = 'Report Card Version'
        verbose_name_plural = 'Report Card Versions'
        constraints = [
            models.UniqueConstraint(
                fields=['student', 'term', 'version_number'],
                name='unique_report_card_version',
            ),
        ]
        indexes = [
            models.Index(fields=['term', 'status'], name='report_card_term_status_idx'),
        ]


class ReportCardVersionSubject(models.Model):
    """A subject line on a report card, copied at generation time."""
    version = models.ForeignKey(
        ReportCardVersion,
        on_delete=models.CASCADE,
        related_name='subjects'
    )
    subject = models.ForeignKey(
        Subject,
        on_delete=models.SET_NULL,
        null=True,
        related_name='report_card_lines'
    )
    subject_code = models.CharField(max_length=20)
    subject_name = models.CharField(max_length=100)
    curriculum_area = models.CharField(max_length=100, blank=True)
    is_compulsory = models.BooleanField(default=True)
    assessed = models.BooleanField(default=True)
    cat_average = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    exam_average = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    cat_weight = models.DecimalField(max_digits=5, decimal_places=2)
    exam_weight = models.DecimalField(max_digits=5, decimal_places=2)
    percentage = models.DecimalField(max_digits=5, decimal_places=2, null=True, blank=True)
    grade = models.CharField(max_length=5, blank=True)
    points = models.DecimalField(max_digits=4, decimal_places=2, null=True, blank=True)
    included_for_ranking = models.BooleanField(default=False)
    selected_for_ranking = models.BooleanField(default=False)
    position_in_subject = models.PositiveIntegerField(null=True, blank=True)

    def __str__(self):
        return f"{self.subject_code}: {self.grade or '-'}"

    class Meta:
        db_table = 'report_card_version_subject'
        ordering = ['version', 'subject_code']
        verbose_name = 'Report Card Subject'
        verbose_name_plural = 'Report Card Subjects'
        unique_together = ['version', 'subject']
