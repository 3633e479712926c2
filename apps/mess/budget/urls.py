from django.urls import path

from .views import (
    cycle_current,
    cycle_detail,
    cycle_finalize,
    cycle_list,
    cycle_record_payment,
    my_status,
    overview,
    pay,
    payment_confirmation,
    settlement_statement,
)

urlpatterns = [
    path('cycles/', cycle_list, name='budget_cycle_list'),
    path('cycles/current/', cycle_current, name='budget_cycle_current'),
    path('cycles/<int:cycle_id>/', cycle_detail, name='budget_cycle_detail'),
    path('cycles/<int:cycle_id>/finish/', cycle_finalize, name='budget_cycle_finalize'),
    path('cycles/<int:cycle_id>/payments/', cycle_record_payment, name='budget_cycle_record_payment'),
    path('cycles/<int:cycle_id>/statement/', settlement_statement, name='budget_settlement_statement'),
    path('overview/', overview, name='budget_overview'),
    path('my-status/', my_status, name='budget_my_status'),
    path('pay/', pay, name='budget_pay'),
    path('payment-confirmation/', payment_confirmation, name='budget_payment_confirmation'),
]
