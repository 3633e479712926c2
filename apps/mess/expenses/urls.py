from django.urls import path

from .views import expense_detail, expense_list

urlpatterns = [
    path('', expense_list, name='misc_expense_list'),
    path('<int:expense_id>/', expense_detail, name='misc_expense_detail'),
]
