from decimal import Decimal

from django import forms

EDITABLE_FIELDS = ('description', 'amount', 'date', 'budget_cycle_id')


class MiscellaneousExpenseForm(forms.Form):
    description = forms.CharField(max_length=255)
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    date = forms.DateField()
    budget_cycle_id = forms.IntegerField(min_value=1, required=False)


class MiscellaneousExpenseUpdateForm(MiscellaneousExpenseForm):
    """Partial update: only the keys present in the body are validated and applied."""

    def __init__(self, data=None, *args, **kwargs):
        super().__init__(data, *args, **kwargs)
        self.provided = [field for field in EDITABLE_FIELDS if field in (data or {})]
        for name, field in self.fields.items():
            if name not in self.provided:
                field.required = False

    def changes(self):
        return {field: self.cleaned_data[field] for field in self.provided}
