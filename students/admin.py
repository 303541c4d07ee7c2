from django.contrib import admin

from .models import Student


@admin.register(Student)
class StudentAdmin(admin.ModelAdmin):
    list_display = ('admission_number', 'first_name', 'last_name', 'current_class', 'stream', 'status')
    list_filter = ('school', 'current_class', 'stream', 'status')
    search_fields = ('admission_number', 'first_name', 'last_name')
