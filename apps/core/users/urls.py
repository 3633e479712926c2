from django.urls import path

from .views import assign_role, login_view, logout_view, marketing_summary, me, register, user_list

urlpatterns = [
    path('auth/register/', register, name='auth_register'),
    path('auth/login/', login_view, name='auth_login'),
    path('auth/logout/', logout_view, name='auth_logout'),
    path('users/', user_list, name='user_list'),
    path('users/me/', me, name='user_me'),
    path('users/marketing-summary/', marketing_summary, name='user_marketing_summary'),
    path('users/<int:user_id>/assign-role/', assign_role, name='user_assign_role'),
]
