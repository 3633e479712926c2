from django.urls import path

from .views import my_tasks, task_assign, task_bill, task_complete, task_detail, task_list

urlpatterns = [
    path('all/', task_list, name='marketing_task_list'),
    path('my-tasks/', my_tasks, name='marketing_my_tasks'),
    path('assign/', task_assign, name='marketing_task_assign'),
    path('<int:task_id>/', task_detail, name='marketing_task_detail'),
    path('<int:task_id>/complete/', task_complete, name='marketing_task_complete'),
    path('<int:task_id>/bill/', task_bill, name='marketing_task_bill'),
]
