from django.contrib import admin

from .models import AttendanceRecord, AttendanceSession, Class, StudentSubjectEnrollment, Subject


@admin.register(Class)
class ClassAdmin(admin.ModelAdmin):
    list_display = ('name', 'school', 'grade_level', 'is_active')
    list_filter = ('school', 'grade_level', 'is_active')


@admin.register(Subject)
class SubjectAdmin(admin.ModelAdmin):
    list_display = ('code', 'name', 'school', 'curriculum_area', 'is_compulsory', 'is_active')
    list_filter = ('school', 'is_compulsory', 'is_active')
    search_fields = ('code', 'name')


@admin.register(StudentSubjectEnrollment)
class StudentSubjectEnrollmentAdmin(admin.ModelAdmin):
    list_display = ('student', 'subject', 'term', 'is_compulsory', 'status')
    list_filter = ('school', 'term', 'status')


class AttendanceRecordInline(admin.TabularInline):
    model = AttendanceRecord
    extra = 0


@admin.register(AttendanceSession)
class AttendanceSessionAdmin(admin.ModelAdmin):
    list_display = ('class_assigned', 'term', 'date', 'subject')
    list_filter = ('term',)
    inlines = [AttendanceRecordInline]
