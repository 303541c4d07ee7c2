from django.conf import settings
from django.db import models


class AcademicYear(models.Model):
    """
    Represents an academic year (e.g., 2024/2025).
    Each school has its own academic years.
    """
    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='academic_years'
    )
    name = models.CharField(
        max_length=50,
        help_text="e.g., 2024/2025 Academic Year"
    )
    start_date = models.DateField()
    end_date = models.DateField()
    is_current = models.BooleanField(
        default=False,
        help_text="Only one academic year can be current at a time"
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['-start_date']
        verbose_name = "Academic Year"
        verbose_name_plural = "Academic Years"

    def __str__(self):
        return self.name

    def save(self, *args, **kwargs):
        # Ensure only one academic year is current per school
        if self.is_current:
            AcademicYear.objects.filter(
                school_id=self.school_id, is_current=True
            ).exclude(pk=self.pk).update(is_current=False)
        super().save(*args, **kwargs)

    @classmethod
    def get_current(cls, school):
        """Get the school's current academic year."""
        return cls.objects.filter(school=school, is_current=True).first()


class Term(models.Model):
    """
    Represents a term within an academic year.
    """
    PERIOD_NUMBER_CHOICES = [
        (1, 'First'),
        (2, 'Second'),
        (3, 'Third'),
        (4, 'Fourth'),
    ]

    academic_year = models.ForeignKey(
        AcademicYear,
        on_delete=models.CASCADE,
        related_name='terms'
    )
    name = models.CharField(
        max_length=50,
        help_text="e.g., First Term"
    )
    term_number = models.PositiveSmallIntegerField(
        choices=PERIOD_NUMBER_CHOICES,
        default=1,
        verbose_name="Period Number"
    )
    start_date = models.DateField()
    end_date = models.DateField()
    is_current = models.BooleanField(
        default=False,
        help_text="Only one term can be current at a time"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['academic_year', 'term_number']
        verbose_name = "Term"
        verbose_name_plural = "Terms"
        unique_together = ['academic_year', 'term_number']

    def __str__(self):
        return f"{self.name} - {self.academic_year.name}"

    @property
    def school_id(self):
        return self.academic_year.school_id

    def save(self, *args, **kwargs):
        # Ensure only one term is current per school
        if self.is_current:
            Term.objects.filter(
                academic_year__school_id=self.academic_year.school_id,
                is_current=True,
            ).exclude(pk=self.pk).update(is_current=False)
        super().save(*args, **kwargs)

    @classmethod
    def get_current(cls, school):
        """Get the school's current term."""
        return cls.objects.filter(
            academic_year__school=school, is_current=True
        ).select_related('academic_year').first()


class AuditLog(models.Model):
    """
    Append-only record of meaningful actions (settings changes, report
    generation and publication). Tracks who did what and when.
    """
    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='audit_logs'
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='audit_logs'
    )
    action = models.CharField(
        max_length=60,
        help_text="e.g. report_card:generate"
    )
    resource_type = models.CharField(max_length=60)
    # Stored as text so UUID and integer keys both fit
    resource_id = models.CharField(max_length=64)
    changes = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Audit Log'
        verbose_name_plural = 'Audit Logs'
        indexes = [
            models.Index(fields=['school', 'action'], name='core_auditl_school__a1e0d2_idx'),
            models.Index(fields=['resource_type', 'resource_id'], name='core_auditl_resourc_5c7b3f_idx'),
        ]

    def __str__(self):
        return f"{self.action} {self.resource_type}:{self.resource_id}"
