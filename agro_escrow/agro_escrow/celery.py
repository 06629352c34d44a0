import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'agro_escrow.settings')

app = Celery('agro_escrow')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks()
