from decimal import Decimal

from django import forms
from django.contrib.auth import get_user_model

User = get_user_model()


class BudgetCycleForm(forms.Form):
    month = forms.IntegerField(min_value=1, max_value=12)
    year = forms.IntegerField(min_value=2000, max_value=2100)
    payment_deadline = forms.DateField(required=False)


class PaymentRecordForm(forms.Form):
    user = forms.ModelChoiceField(queryset=User.objects.filter(is_active=True))
    amount_paid = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    reference = forms.CharField(max_length=120, required=False)


class PaymentConfirmationForm(forms.Form):
    user_id = forms.IntegerField(min_value=1)
    budget_cycle_id = forms.IntegerField(min_value=1)
    amount_paid = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    reference = forms.CharField(max_length=120)
