from django.apps import AppConfig


class SrpConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'core.srp'
    label = 'srp'
    verbose_name = 'Ship Replacement'
