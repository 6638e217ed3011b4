"""
Celery tasks that drive the sync engine from a worker process.

The tasks handle:
- Draining one batch of the sync queue into the remote store
- Connection health checks against the remote store
- Re-queuing operations an operator marked for another attempt

Batches run through the process-wide BackgroundSyncService, so a beat-driven
batch and an in-process loop in the same worker never overlap. Rows are
claimed atomically in the queue, so separate worker processes never claim
the same row either.
"""

from celery import shared_task
import logging

from .exceptions import BatchInProgress, NoNetwork, QueueStorageError
from .queueManager import SyncQueueManager
from .remoteClient import RemoteStoreClient
from .tasksUtils import get_sync_service

logger = logging.getLogger(__name__)


# ============================================================================
# MAIN SYNC TASKS
# ============================================================================

@shared_task(bind=True, max_retries=3)
def process_sync_queue_task(self):
    """
    Process one batch from the sync queue.

    This task:
    1. Checks remote store availability (nothing is claimed when it is down)
    2. Processes up to BATCH_SIZE queued operations
    3. Retries the task itself when the queue storage fails

    Returns:
        dict: Batch results (processed, succeeded, failed, skipped, duration_ms, errors)
    """
    sync_service = get_sync_service()
    try:
        result = sync_service.sync_now()
        logger.info(
            f"Processed {result.processed} operations: {result.succeeded} succeeded, {result.failed} failed"
        )
        return result.to_dict()

    except NoNetwork:
        logger.warning("Remote store not available, skipping sync")
        return {'error': 'Remote store not available', 'processed': 0, 'succeeded': 0, 'failed': 0}
    except BatchInProgress:
        logger.info("A sync batch is already running in this process, skipping")
        return {'skipped': 'Batch already in progress', 'processed': 0, 'succeeded': 0, 'failed': 0}
    except QueueStorageError as e:
        logger.error(f"Sync queue storage failed: {e}")
        raise self.retry(countdown=60, exc=e)


@shared_task
def requeue_abandoned_task(operation_ids):
    """
    Give abandoned operations another round of attempts.

    Args:
        operation_ids (list): queue ids to requeue

    Returns:
        dict: ids that were requeued and ids that were not abandoned
    """
    queue = SyncQueueManager()
    requeued, skipped = [], []
    for operation_id in operation_ids:
        if queue.requeue(operation_id):
            requeued.append(operation_id)
        else:
            skipped.append(operation_id)

    logger.info(f"Requeued {len(requeued)} abandoned operations, {len(skipped)} were not abandoned")
    return {'requeued': requeued, 'skipped': skipped}


# ============================================================================
# TESTING AND VALIDATION TASKS
# ============================================================================

@shared_task
def test_remote_connection_task(config_name='default'):
    """
    Test connectivity to the remote store.

    Returns:
        dict: Connection test results
    """
    try:
        client = RemoteStoreClient.from_config(config_name)
    except ValueError as e:
        logger.error(f"Remote store connection test failed: {e}")
        return {'status': 'error', 'message': str(e)}

    result = client.test_connection()
    if result['connected']:
        logger.info("Remote store connection successful")
        return {'status': 'success', 'message': 'Remote store is available', 'base_url': result['base_url']}

    logger.warning(f"Remote store connection failed: {result['status']}")
    return {'status': 'failed', 'message': result['status'], 'base_url': result['base_url']}
