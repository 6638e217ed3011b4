from django.apps import AppConfig


class RemoteSyncConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'RemoteSync'

    def ready(self):
        """Register Celery tasks and optionally start the in-process sync loop"""
        import logging
        logger = logging.getLogger(__name__)

        # Import task modules for Celery registration
        import RemoteSync.tasks  # noqa: F401
        import RemoteSync.maintenanceUtils  # noqa: F401

        from django.db import DatabaseError
        from .tasksUtils import get_sync_setting, get_sync_service
        if not get_sync_setting('AUTOSTART'):
            return

        try:
            get_sync_service().start()
        except (ValueError, DatabaseError) as e:
            logger.error(f"Remote sync autostart skipped: {e}")
