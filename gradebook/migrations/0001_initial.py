import uuid
from decimal import Decimal

import django.core.validators
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('schools', '0001_initial'),
        ('core', '0001_initial'),
        ('academics', '0001_initial'),
        ('students', '0001_initial'),
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name='GradeScale',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='Name of the scale (e.g., KCSE 12-point)', max_length=100)),
                ('is_default', models.BooleanField(default=False, help_text='The scale used when generating report cards')),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='grade_scales', to='schools.school')),
            ],
            options={
                'verbose_name': 'Grade Scale',
                'verbose_name_plural': 'Grade Scales',
                'db_table': 'grade_scale',
                'ordering': ['school', 'name'],
                'unique_together': {('school', 'name')},
            },
        ),
        migrations.CreateModel(
            name='GradeBand',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('min_score', models.DecimalField(decimal_places=2, help_text='Minimum percentage for this grade (inclusive)', max_digits=5, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('max_score', models.DecimalField(decimal_places=2, help_text='Maximum percentage for this grade (inclusive)', max_digits=5, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('letter_grade', models.CharField(help_text='Grade label (e.g., A, B+, C-)', max_length=5)),
                ('points', models.DecimalField(decimal_places=2, help_text='Points awarded for this grade (higher is better)', max_digits=4, validators=[django.core.validators.MinValueValidator(0)])),
                ('sort_order', models.PositiveSmallIntegerField(default=0, help_text='Display order (lower numbers appear first)')),
                ('grade_scale', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='bands', to='gradebook.gradescale')),
            ],
            options={
                'verbose_name': 'Grade Band',
                'verbose_name_plural': 'Grade Bands',
                'db_table': 'grade_band',
                'ordering': ['grade_scale', 'sort_order'],
                'unique_together': {('grade_scale', 'letter_grade'), ('grade_scale', 'sort_order')},
            },
        ),
        migrations.CreateModel(
            name='AssessmentType',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(help_text='Type name (e.g., CAT 1, End of Term Exam)', max_length=100)),
                ('category', models.CharField(blank=True, choices=[('CAT_LIKE', 'Continuous Assessment'), ('EXAM_LIKE', 'Examination')], help_text='Left blank, inferred from the name', max_length=10)),
                ('weight', models.DecimalField(decimal_places=2, default=Decimal('1.00'), help_text='Relative weight among active types of the same category', max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('max_score', models.DecimalField(decimal_places=2, default=Decimal('100.00'), help_text='Default maximum score for assessments of this type', max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='assessment_types', to='schools.school')),
            ],
            options={
                'verbose_name': 'Assessment Type',
                'verbose_name_plural': 'Assessment Types',
                'db_table': 'assessment_type',
                'ordering': ['school', 'name'],
                'unique_together': {('school', 'name')},
            },
        ),
        migrations.CreateModel(
            name='Assessment',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('title', models.CharField(help_text='Assessment title (e.g., CAT 1)', max_length=100)),
                ('max_score', models.DecimalField(decimal_places=2, help_text='Maximum score available for this assessment', max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0.01'))])),
                ('assessment_date', models.DateField(blank=True, help_text='Date of the assessment (optional)', null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('assessment_type', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='assessments', to='gradebook.assessmenttype')),
                ('class_assigned', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='assessments', to='academics.class')),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='assessments', to='academics.subject')),
                ('teacher', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='assessments', to=settings.AUTH_USER_MODEL)),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='assessments', to='core.term')),
            ],
            options={
                'verbose_name': 'Assessment',
                'verbose_name_plural': 'Assessments',
                'db_table': 'assessment',
                'ordering': ['term', 'subject', 'assessment_date', 'title'],
                'indexes': [models.Index(fields=['class_assigned', 'term'], name='assessment_class_term_idx')],
            },
        ),
        migrations.CreateModel(
            name='StudentMark',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('score', models.DecimalField(decimal_places=2, help_text='Score earned on this assessment', max_digits=6, validators=[django.core.validators.MinValueValidator(Decimal('0'))])),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('assessment', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='marks', to='gradebook.assessment')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='marks', to='students.student')),
            ],
            options={
                'verbose_name': 'Student Mark',
                'verbose_name_plural': 'Student Marks',
                'db_table': 'student_mark',
                'ordering': ['student', 'assessment'],
                'unique_together': {('student', 'assessment')},
            },
        ),
        migrations.CreateModel(
            name='SchoolResultsSettings',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('ranking_method', models.CharField(choices=[('BEST_N', 'Best N subjects'), ('ALL_TAKEN', 'All subjects taken')], default='BEST_N', max_length=10)),
                ('ranking_n', models.PositiveSmallIntegerField(default=7, help_text='Number of subjects counted under Best N', validators=[django.core.validators.MinValueValidator(1), django.core.validators.MaxValueValidator(12)])),
                ('ranking_basis', models.CharField(choices=[('POINTS', 'Points'), ('PERCENTAGE', 'Percentage')], default='POINTS', help_text='What is summed into the ranking total', max_length=10)),
                ('min_total_subjects', models.PositiveSmallIntegerField(default=7)),
                ('max_total_subjects', models.PositiveSmallIntegerField(default=9)),
                ('min_sciences', models.PositiveSmallIntegerField(default=2)),
                ('max_humanities', models.PositiveSmallIntegerField(default=2)),
                ('excluded_subject_codes', models.JSONField(blank=True, default=list, help_text='Subject codes never counted for ranking (e.g., PE, ICT)')),
                ('cat_weight', models.DecimalField(decimal_places=2, default=Decimal('30.00'), help_text='Default CAT weight (%)', max_digits=5, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('exam_weight', models.DecimalField(decimal_places=2, default=Decimal('70.00'), help_text='Default exam weight (%)', max_digits=5, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('school', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='results_settings', to='schools.school')),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'verbose_name': 'School Results Settings',
                'verbose_name_plural': 'School Results Settings',
                'db_table': 'school_results_settings',
            },
        ),
        migrations.CreateModel(
            name='SubjectResultsProfile',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('cat_weight', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('exam_weight', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True, validators=[django.core.validators.MinValueValidator(0), django.core.validators.MaxValueValidator(100)])),
                ('excluded_from_ranking', models.BooleanField(default=False)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subject_results_profiles', to='schools.school')),
                ('subject', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='results_profiles', to='academics.subject')),
            ],
            options={
                'verbose_name': 'Subject Results Profile',
                'verbose_name_plural': 'Subject Results Profiles',
                'db_table': 'subject_results_profile',
                'unique_together': {('school', 'subject')},
            },
        ),
        migrations.CreateModel(
            name='ReportCardVersion',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('version_number', models.PositiveIntegerField()),
                ('status', models.CharField(choices=[('DRAFT', 'Draft'), ('RELEASED', 'Released')], default='DRAFT', max_length=10)),
                ('generated_at', models.DateTimeField(default=django.utils.timezone.now)),
                ('generation_batch', models.UUIDField(blank=True, db_index=True, null=True)),
                ('class_name', models.CharField(blank=True, max_length=50)),
                ('marks_snapshot', models.JSONField(default=dict)),
                ('content_hash', models.CharField(max_length=64)),
                ('total_score', models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ('total_marks', models.DecimalField(blank=True, decimal_places=2, max_digits=8, null=True)),
                ('average_percentage', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('mean_points', models.DecimalField(blank=True, decimal_places=3, max_digits=6, null=True)),
                ('overall_grade', models.CharField(blank=True, max_length=5)),
                ('ranking_method', models.CharField(choices=[('BEST_N', 'Best N subjects'), ('ALL_TAKEN', 'All subjects taken')], max_length=10)),
                ('ranking_basis', models.CharField(choices=[('POINTS', 'Points'), ('PERCENTAGE', 'Percentage')], max_length=10)),
                ('ranking_subject_count', models.PositiveSmallIntegerField(default=0)),
                ('ranking_incomplete', models.BooleanField(default=False)),
                ('incomplete_reasons', models.JSONField(blank=True, default=list)),
                ('position_in_class', models.PositiveIntegerField(blank=True, null=True)),
                ('class_size', models.PositiveIntegerField(default=0)),
                ('stream', models.CharField(blank=True, max_length=50)),
                ('position_in_stream', models.PositiveIntegerField(blank=True, null=True)),
                ('stream_size', models.PositiveIntegerField(blank=True, null=True)),
                ('days_present', models.PositiveIntegerField(default=0)),
                ('days_absent', models.PositiveIntegerField(default=0)),
                ('attendance_percentage', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('released_at', models.DateTimeField(blank=True, null=True)),
                ('generated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='generated_report_cards', to=settings.AUTH_USER_MODEL)),
                ('released_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='released_report_cards', to=settings.AUTH_USER_MODEL)),
                ('school', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='report_card_versions', to='schools.school')),
                ('student', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='report_card_versions', to='students.student')),
                ('term', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='report_card_versions', to='core.term')),
            ],
            options={
                'verbose_name': 'Report Card Version',
                'verbose_name_plural': 'Report Card Versions',
                'db_table': 'report_card_version',
                'ordering': ['student', 'term', '-version_number'],
                'indexes': [models.Index(fields=['term', 'status'], name='report_card_term_status_idx')],
                'constraints': [models.UniqueConstraint(fields=('student', 'term', 'version_number'), name='unique_report_card_version')],
            },
        ),
        migrations.CreateModel(
            name='ReportCardVersionSubject',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('subject_code', models.CharField(max_length=20)),
                ('subject_name', models.CharField(max_length=100)),
                ('curriculum_area', models.CharField(blank=True, max_length=100)),
                ('is_compulsory', models.BooleanField(default=True)),
                ('assessed', models.BooleanField(default=True)),
                ('cat_average', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('exam_average', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('cat_weight', models.DecimalField(decimal_places=2, max_digits=5)),
                ('exam_weight', models.DecimalField(decimal_places=2, max_digits=5)),
                ('percentage', models.DecimalField(blank=True, decimal_places=2, max_digits=5, null=True)),
                ('grade', models.CharField(blank=True, max_length=5)),
                ('points', models.DecimalField(blank=True, decimal_places=2, max_digits=4, null=True)),
                ('included_for_ranking', models.BooleanField(default=False)),
                ('selected_for_ranking', models.BooleanField(default=False)),
                ('position_in_subject', models.PositiveIntegerField(blank=True, null=True)),
                ('subject', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='report_card_lines', to='academics.subject')),
                ('version', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='subjects', to='gradebook.reportcardversion')),
            ],
            options={
                'verbose_name': 'Report Card Subject',
                'verbose_name_plural': 'Report Card Subjects',
                'db_table': 'report_card_version_subject',
                'ordering': ['version', 'subject_code'],
                'unique_together': {('version', 'subject')},
            },
        ),
    ]
