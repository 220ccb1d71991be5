"""
Celery configuration for Django project
"""
import os
from celery import Celery

# Set default Django settings
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'chsync.settings')

app = Celery('chsync')

# Load config from Django settings with CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks from all installed apps
app.autodiscover_tasks()

# Exports are long running; keep them off the default queue
app.conf.task_routes = {
    'exporter.tasks.*': {'queue': 'export'},
}
