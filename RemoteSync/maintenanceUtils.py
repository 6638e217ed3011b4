from celery import shared_task
from django.utils import timezone
from datetime import timedelta
import logging

from .exceptions import QueueStorageError
from .models import SyncLog
from .queueManager import SyncQueueManager
from .tasksUtils import get_sync_setting

logger = logging.getLogger(__name__)

# INFO/DEBUG log rows are kept this long; WARNING/ERROR rows are never pruned here
LOG_RETENTION_DAYS = 30


# ============================================================================
# MAINTENANCE AND UTILITY TASKS
# ============================================================================

@shared_task
def cleanup_sync_tasks(days_old=None):
    """
    Clean up old completed queue rows and sync logs to prevent database bloat.

    This maintenance task:
    1. Removes completed queue rows older than COMPLETED_RETENTION_DAYS
    2. Removes INFO and DEBUG sync logs older than 30 days
    3. Preserves error logs for troubleshooting

    Returns:
        dict: Cleanup statistics
    """
    if days_old is None:
        days_old = get_sync_setting('COMPLETED_RETENTION_DAYS')

    try:
        deleted_queue = SyncQueueManager().cleanup_old_operations(days_old)
    except QueueStorageError as e:
        logger.error(f"Cleanup task failed: {e}")
        return {'error': str(e)}

    cutoff_date = timezone.now() - timedelta(days=LOG_RETENTION_DAYS)
    deleted_logs, _ = SyncLog.objects.filter(
        timestamp__lt=cutoff_date,
        level__in=['INFO', 'DEBUG'],
    ).delete()

    logger.info(f"Cleanup completed: {deleted_logs} logs, {deleted_queue} queue items")
    return {
        'logs_deleted': deleted_logs,
        'queue_items_deleted': deleted_queue,
    }


@shared_task
def cleanup_stuck_processing_items(older_than_seconds=None):
    """Return rows left in processing by a dead batch to pending"""
    queue = SyncQueueManager()
    try:
        reset_count = queue.reset_stuck_processing(older_than_seconds)
        metrics = queue.get_metrics()
    except QueueStorageError as e:
        logger.error(f"Stuck item cleanup failed: {e}")
        return {'error': str(e)}

    # Pending for over a day usually means the remote store has been refusing writes
    if metrics.oldest_pending_age_seconds and metrics.oldest_pending_age_seconds > 24 * 3600:
        logger.warning(
            f"Oldest pending operation has waited {int(metrics.oldest_pending_age_seconds)}s"
        )

    results = {
        'stuck_items_reset': reset_count,
        'pending': metrics.pending,
        'abandoned': metrics.abandoned,
    }
    logger.info(f"Stuck item cleanup completed: {results}")
    return results
