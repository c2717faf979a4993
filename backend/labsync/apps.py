from django.apps import AppConfig


class LabsyncConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'labsync'
    verbose_name = 'Lab sync'
