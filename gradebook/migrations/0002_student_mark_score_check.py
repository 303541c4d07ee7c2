from django.db import migrations, models


class Migration(migrations.Migration):

    dependencies = [
        ('gradebook', '0001_initial'),
    ]

    operations = [
        migrations.AddConstraint(
            model_name='studentmark',
            constraint=models.CheckConstraint(
                condition=models.Q(score__gte=0), name='student_mark_score_non_negative'
            ),
        ),
    ]
