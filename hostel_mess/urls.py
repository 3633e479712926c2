from django.contrib import admin
from django.urls import path, include

urlpatterns = [
    path('admin/', admin.site.urls),

    path('', include('apps.core.users.urls')),
    path('budget/', include('apps.mess.budget.urls')),
    path('marketing/', include('apps.mess.marketing.urls')),
    path('bills/', include('apps.mess.marketing.bill_urls')),
    path('misc-expenses/', include('apps.mess.expenses.urls')),
]
