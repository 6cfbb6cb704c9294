"""
URL configuration for the SRP pipeline.
"""

from django.urls import path

from core.srp import views

app_name = 'srp'

urlpatterns = [
    path('cron/process-mail/', views.cron_process_mail, name='cron_process_mail'),
]
