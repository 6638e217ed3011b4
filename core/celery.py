from celery import Celery
from celery.schedules import crontab
import os

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'core.settings')

app = Celery('RemoteSync')
app.config_from_object('django.conf:settings', namespace='CELERY')

# Celery Beat Schedule
app.conf.beat_schedule = {
    # === CORE SYNC PROCESSING ===
    'process-sync-queue': {
        'task': 'RemoteSync.tasks.process_sync_queue_task',
        'schedule': crontab(),  # Every minute
    },

    # === MAINTENANCE & CLEANUP ===
    'cleanup-stuck-items': {
        'task': 'RemoteSync.maintenanceUtils.cleanup_stuck_processing_items',
        'schedule': crontab(minute='*/15'),  # Every 15 minutes
    },
    'cleanup-old-records': {
        'task': 'RemoteSync.maintenanceUtils.cleanup_sync_tasks',
        'schedule': crontab(minute=30, hour=3),  # Daily at 03:30
    },
}


app.autodiscover_tasks()
