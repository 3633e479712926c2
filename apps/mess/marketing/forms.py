from decimal import Decimal

from django import forms


class MarketingTaskAssignForm(forms.Form):
    date = forms.DateField()
    money_given = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))

    def __init__(self, data=None, *args, **kwargs):
        super().__init__(data, *args, **kwargs)
        self.student_ids = (data or {}).get('student_ids')

    def clean(self):
        cleaned_data = super().clean()
        student_ids = self.student_ids
        if not isinstance(student_ids, list) or not all(
            isinstance(student_id, int) and not isinstance(student_id, bool) for student_id in student_ids
        ):
            self.add_error(None, 'student_ids must be a list of user ids.')
        else:
            cleaned_data['student_ids'] = student_ids
        return cleaned_data


class MarketingTaskUpdateForm(forms.Form):
    money_given = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))


class MarketingTaskCompleteForm(forms.Form):
    money_return_received = forms.BooleanField(required=False)


class BillItemForm(forms.Form):
    item_code = forms.CharField(max_length=40)
    label = forms.CharField(max_length=120)
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'))


class BillSubmitForm(forms.Form):
    date = forms.DateField()
    marketing_total = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    grocery_total = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    total_bill_amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'))
    amount_given = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'))
    money_returned = forms.DecimalField(max_digits=12, decimal_places=2, required=False)
    description = forms.CharField(required=False)
    receipt_url = forms.URLField(max_length=500, required=False)

    def __init__(self, data=None, *args, **kwargs):
        super().__init__(data, *args, **kwargs)
        self.raw_items = (data or {}).get('items') or []

    def clean(self):
        cleaned_data = super().clean()
        if not isinstance(self.raw_items, list):
            self.add_error(None, 'items must be a list.')
            return cleaned_data

        items = []
        for index, raw_item in enumerate(self.raw_items):
            item_form = BillItemForm(raw_item if isinstance(raw_item, dict) else {})
            if not item_form.is_valid():
                self.add_error(None, f"Item {index + 1} is invalid: {item_form.errors.as_text()}")
                continue
            items.append(item_form.cleaned_data)
        cleaned_data['items'] = items
        return cleaned_data
