from django.contrib import admin

from .models import (
    Assessment, AssessmentType, GradeBand, GradeScale, ReportCardVersion,
    ReportCardVersionSubject, SchoolResultsSettings, StudentMark, SubjectResultsProfile,
)


class GradeBandInline(admin.TabularInline):
    model = GradeBand
    extra = 0
    ordering = ('sort_order',)


@admin.register(GradeScale)
class GradeScaleAdmin(admin.ModelAdmin):
    list_display = ('name', 'school', 'is_default')
    list_filter = ('school',)
    inlines = [GradeBandInline]


@admin.register(AssessmentType)
class AssessmentTypeAdmin(admin.ModelAdmin):
    list_display = ('name', 'school', 'category', 'weight', 'max_score', 'is_active')
    list_filter = ('school', 'category', 'is_active')


@admin.register(Assessment)
class AssessmentAdmin(admin.ModelAdmin):
    list_display = ('title', 'class_assigned', 'subject', 'assessment_type', 'term', 'max_score')
    list_filter = ('term', 'assessment_type')
    search_fields = ('title',)


@admin.register(StudentMark)
class StudentMarkAdmin(admin.ModelAdmin):
    list_display = ('student', 'assessment', 'score')
    raw_id_fields = ('student', 'assessment')


@admin.register(SchoolResultsSettings)
class SchoolResultsSettingsAdmin(admin.ModelAdmin):
    list_display = ('school', 'ranking_method', 'ranking_n', 'ranking_basis', 'cat_weight', 'exam_weight')
    readonly_fields = ('updated_by', 'updated_at')


@admin.register(SubjectResultsProfile)
class SubjectResultsProfileAdmin(admin.ModelAdmin):
    list_display = ('subject', 'school', 'cat_weight', 'exam_weight', 'excluded_from_ranking')
    list_filter = ('school', 'excluded_from_ranking')


class ReportCardVersionSubjectInline(admin.TabularInline):
    model = ReportCardVersionSubject
    extra = 0
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(ReportCardVersion)
class ReportCardVersionAdmin(admin.ModelAdmin):
    """Versions are written by the generator only; the admin is read-only."""
    list_display = (
        'student', 'term', 'version_number', 'status',
        'average_percentage', 'overall_grade', 'position_in_class', 'generated_at',
    )
    list_filter = ('status', 'term', 'school')
    search_fields = ('student__admission_number', 'student__last_name')
    inlines = [ReportCardVersionSubjectInline]

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
