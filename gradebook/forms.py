from decimal import Decimal

from django import forms

from academics.models import Subject
from .models import SchoolResultsSettings


class ResultsSettingsForm(forms.ModelForm):
    """Validates a school's ranking rules and default weights."""
    excluded_subject_codes = forms.JSONField(required=False)

    class Meta:
        model = SchoolResultsSettings
        fields = [
            'ranking_method', 'ranking_n', 'ranking_basis',
            'min_total_subjects', 'max_total_subjects',
            'min_sciences', 'max_humanities',
            'excluded_subject_codes', 'cat_weight', 'exam_weight',
        ]

    def clean_ranking_n(self):
        ranking_n = self.cleaned_data.get('ranking_n')
        if ranking_n is not None and not 1 <= ranking_n <= 12:
            raise forms.ValidationError('Ranking N must be between 1 and 12.')
        return ranking_n

    def clean_excluded_subject_codes(self):
        codes = self.cleaned_data.get('excluded_subject_codes') or []
        if isinstance(codes, str):
            codes = codes.split(',')
        if not isinstance(codes, (list, tuple)):
            raise forms.ValidationError('Enter a list of subject codes.')
        cleaned = []
        for code in codes:
            code = str(code).strip().upper()
            if code and code not in cleaned:
                cleaned.append(code)
        return cleaned

    def clean(self):
        cleaned_data = super().clean()
        min_total = cleaned_data.get('min_total_subjects')
        max_total = cleaned_data.get('max_total_subjects')
        cat_weight = cleaned_data.get('cat_weight')
        exam_weight = cleaned_data.get('exam_weight')

        if min_total is not None and max_total is not None and max_total < min_total:
            raise forms.ValidationError('Maximum subjects cannot be less than minimum subjects.')

        if cat_weight is not None and exam_weight is not None:
            if cat_weight + exam_weight != Decimal('100'):
                raise forms.ValidationError('CAT and exam weights must add up to 100.')

        return cleaned_data


class GradeBandForm(forms.Form):
    """One band of a grade scale."""
    letter_grade = forms.CharField(max_length=5)
    min_score = forms.DecimalField(max_digits=5, decimal_places=2)
    max_score = forms.DecimalField(max_digits=5, decimal_places=2)
    points = forms.DecimalField(max_digits=4, decimal_places=2, min_value=Decimal('0'))
    sort_order = forms.IntegerField(required=False, min_value=0)

    def clean_letter_grade(self):
        letter = self.cleaned_data.get('letter_grade', '').strip()
        if not letter:
            raise forms.ValidationError('Letter grade is required.')
        return letter

    def clean(self):
        cleaned_data = super().clean()
        min_score = cleaned_data.get('min_score')
        max_score = cleaned_data.get('max_score')

        if min_score is not None and max_score is not None:
            if min_score > max_score:
                raise forms.ValidationError('Minimum score cannot be greater than maximum score.')
            if min_score < 0 or max_score > 100:
                raise forms.ValidationError('Scores must be between 0 and 100.')

        return cleaned_data


class SubjectResultsProfileForm(forms.Form):
    """Per-subject weighting override and ranking exclusion."""
    subject = forms.ModelChoiceField(queryset=Subject.objects.none())
    cat_weight = forms.DecimalField(
        required=False, max_digits=5, decimal_places=2,
        min_value=Decimal('0'), max_value=Decimal('100'),
    )
    exam_weight = forms.DecimalField(
        required=False, max_digits=5, decimal_places=2,
        min_value=Decimal('0'), max_value=Decimal('100'),
    )
    excluded_from_ranking = forms.BooleanField(required=False)

    def __init__(self, *args, school=None, **kwargs):
        super().__init__(*args, **kwargs)
        if school is not None:
            self.fields['subject'].queryset = Subject.objects.filter(school=school)

    def clean(self):
        cleaned_data = super().clean()
        cat_weight = cleaned_data.get('cat_weight')
        exam_weight = cleaned_data.get('exam_weight')

        if (cat_weight is None) != (exam_weight is None):
            raise forms.ValidationError('Set both CAT and exam weights, or neither.')
        if cat_weight is not None and cat_weight + exam_weight != Decimal('100'):
            raise forms.ValidationError('CAT and exam weights must add up to 100.')

        return cleaned_data
