import os
from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('labsync')

# every CELERY_* setting in Django settings, including the beat schedule
app.config_from_object('django.conf:settings', namespace='CELERY')

app.autodiscover_tasks()
