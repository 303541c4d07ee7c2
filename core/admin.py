from django.contrib import admin

from .models import AcademicYear, AuditLog, Term


class TermInline(admin.TabularInline):
    model = Term
    extra = 0


@admin.register(AcademicYear)
class AcademicYearAdmin(admin.ModelAdmin):
    list_display = ('name', 'school', 'start_date', 'end_date', 'is_current')
    list_filter = ('school', 'is_current')
    inlines = [TermInline]


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ('created_at', 'school', 'user', 'action', 'resource_type', 'resource_id')
    list_filter = ('school', 'action')
    search_fields = ('resource_id',)
    readonly_fields = ('school', 'user', 'action', 'resource_type', 'resource_id', 'changes', 'created_at')

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False
