import logging
from datetime import timedelta
from typing import Dict, List, Optional, Any, Iterable, Set, Tuple

from django.db import DatabaseError, transaction
from django.db.models import Avg, Count, Min, Q
from django.utils import timezone

from .exceptions import OperationNotFound, QueueStorageError
from .models import SyncQueue, SyncLog
from .syncTypes import QueueMetrics, SyncOperation
from .tasksUtils import get_sync_setting, split_dependency

logger = logging.getLogger(__name__)

OUTSTANDING_STATUSES = (SyncQueue.STATUS_PENDING, SyncQueue.STATUS_PROCESSING)


def compute_backoff(retry_count: int, base_delay: float, max_delay: float) -> float:
    """Capped exponential backoff in seconds for the given retry count (1-based)."""
    if retry_count <= 0:
        return 0.0
    return min(base_delay * (2 ** (retry_count - 1)), max_delay)


class SyncQueueManager:
    """Manager for sync queue operations

    Items move Pending -> Processing -> Completed | Pending (retry) | Abandoned.
    Completed and Abandoned are terminal: later mark_* calls leave them alone.
    Every database failure is surfaced as QueueStorageError.
    """

    def __init__(self, max_retries: int = None, retry_base_delay: float = None,
                 retry_max_delay: float = None):
        self.max_retries = max_retries if max_retries is not None else get_sync_setting('MAX_RETRIES')
        self.retry_base_delay = (retry_base_delay if retry_base_delay is not None
                                 else get_sync_setting('RETRY_BASE_DELAY'))
        self.retry_max_delay = (retry_max_delay if retry_max_delay is not None
                                else get_sync_setting('RETRY_MAX_DELAY'))

    # ========================================================================
    # CORE QUEUE CONTRACT
    # ========================================================================

    def enqueue(self, operation: SyncOperation) -> int:
        """Persist an operation as Pending and return its queue id"""
        try:
            item = SyncQueue.objects.create(
                operation_type=operation.operation_type,
                entity_type=operation.entity_type,
                entity_id=operation.entity_id,
                data=operation.data,
                dependencies=list(operation.dependencies),
                timestamp_utc=operation.timestamp_utc,
                max_retries=self.max_retries,
            )
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to enqueue {operation.label}: {e}") from e

        logger.debug(f"Enqueued {operation.label} as queue item {item.id}")
        return item.id

    def dequeue_batch(self, limit: int = 10) -> List[SyncOperation]:
        """
        Claim up to `limit` Pending items and move them to Processing.

        Each item is claimed with a conditional UPDATE on its Pending status, so
        two concurrent callers can never both claim the same row. Items whose
        retry backoff has not elapsed, or that depend on an entity with an
        outstanding queue item, are left for a later batch. Eligible rows are
        read page by page in queue order until `limit` items are claimed or the
        eligible rows run out, so blocked items never hide claimable ones.

        Returns:
            list: claimed operations in (timestamp_utc, id) order; empty when
            there is no work.
        """
        if limit <= 0:
            return []

        now = timezone.now()
        page_size = max(limit * 5, 50)
        claimed = []
        try:
            with transaction.atomic():
                eligible = SyncQueue.objects.filter(
                    status=SyncQueue.STATUS_PENDING, scheduled_at__lte=now
                ).order_by('timestamp_utc', 'id')
                last = None

                while len(claimed) < limit:
                    page = eligible
                    if last is not None:
                        page = page.filter(
                            Q(timestamp_utc__gt=last.timestamp_utc) |
                            Q(timestamp_utc=last.timestamp_utc, id__gt=last.id)
                        )
                    candidates = list(page.select_for_update(skip_locked=True)[:page_size])
                    if not candidates:
                        break
                    last = candidates[-1]
                    blocked = self._outstanding_entities(candidates)

                    for item in candidates:
                        if len(claimed) >= limit:
                            break
                        if self._is_blocked(item, blocked):
                            logger.debug(f"Queue item {item.id} waits for an outstanding dependency")
                            continue

                        updated = SyncQueue.objects.filter(
                            pk=item.pk, status=SyncQueue.STATUS_PENDING
                        ).update(
                            status=SyncQueue.STATUS_PROCESSING,
                            last_attempt_at=now,
                            updated_at=now,
                        )
                        if updated:
                            claimed.append(item)

                    if len(candidates) < page_size:
                        break
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to dequeue batch: {e}") from e

        return [SyncOperation.from_queue_item(item) for item in claimed]

    def mark_completed(self, operation_id: int) -> str:
        """Mark an operation as completed; returns the resulting status"""
        try:
            with transaction.atomic():
                item = self._get_locked(operation_id)
                if item.is_terminal:
                    logger.warning(f"Ignoring completion of queue item {operation_id}: already {item.status}")
                    return item.status

                now = timezone.now()
                item.status = SyncQueue.STATUS_COMPLETED
                item.completed_at = now
                item.error_message = None
                item.save(update_fields=['status', 'completed_at', 'error_message', 'updated_at'])
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to mark operation {operation_id} completed: {e}") from e

        return item.status

    def mark_failed(self, operation_id: int, error: str) -> str:
        """
        Record a failed attempt.

        Increments the retry count. Once it reaches the item's max_retries the
        item is Abandoned, otherwise it returns to Pending and becomes
        claimable again after the backoff delay.

        Returns:
            str: the resulting status ('pending' or 'abandoned', or the
            unchanged terminal status)
        """
        try:
            with transaction.atomic():
                item = self._get_locked(operation_id)
                if item.is_terminal:
                    logger.warning(f"Ignoring failure of queue item {operation_id}: already {item.status}")
                    return item.status

                now = timezone.now()
                item.retry_count += 1
                item.error_message = error
                if not item.can_retry():
                    item.status = SyncQueue.STATUS_ABANDONED
                    self._log_event(item, 'ERROR',
                                    f"Abandoned after {item.retry_count} attempts: {error}")
                    logger.error(f"Queue item {operation_id} abandoned after {item.retry_count} attempts: {error}")
                else:
                    delay = compute_backoff(item.retry_count, self.retry_base_delay, self.retry_max_delay)
                    item.status = SyncQueue.STATUS_PENDING
                    item.scheduled_at = now + timedelta(seconds=delay)
                    self._log_event(item, 'WARNING', f"Attempt {item.retry_count} failed: {error}",
                                    {'retry_in_seconds': delay})
                    logger.warning(
                        f"Queue item {operation_id} failed (attempt {item.retry_count}/{item.max_retries}), "
                        f"retrying in {delay:.0f}s: {error}"
                    )
                item.save(update_fields=['status', 'retry_count', 'error_message', 'scheduled_at', 'updated_at'])
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to mark operation {operation_id} failed: {e}") from e

        return item.status

    # ========================================================================
    # OPERATOR / MAINTENANCE
    # ========================================================================

    def mark_abandoned(self, operation_id: int, reason: str) -> str:
        """Abandon a non-terminal item without spending its retry budget"""
        try:
            with transaction.atomic():
                item = self._get_locked(operation_id)
                if item.is_terminal:
                    return item.status

                item.status = SyncQueue.STATUS_ABANDONED
                item.error_message = reason
                item.save(update_fields=['status', 'error_message', 'updated_at'])
                self._log_event(item, 'ERROR', f"Abandoned: {reason}")
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to abandon operation {operation_id}: {e}") from e

        logger.error(f"Queue item {operation_id} abandoned: {reason}")
        return item.status

    def requeue(self, operation_id: int) -> bool:
        """Manual intervention: put an abandoned item back to Pending with a fresh retry budget"""
        try:
            with transaction.atomic():
                item = self._get_locked(operation_id)
                if item.status != SyncQueue.STATUS_ABANDONED:
                    return False

                item.status = SyncQueue.STATUS_PENDING
                item.retry_count = 0
                item.error_message = None
                item.scheduled_at = timezone.now()
                item.save(update_fields=['status', 'retry_count', 'error_message', 'scheduled_at', 'updated_at'])
                self._log_event(item, 'INFO', "Requeued manually")
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to requeue operation {operation_id}: {e}") from e

        logger.info(f"Queue item {operation_id} requeued")
        return True

    def reset_stuck_processing(self, older_than_seconds: float = None) -> int:
        """Return Processing items whose batch died back to Pending"""
        if older_than_seconds is None:
            older_than_seconds = get_sync_setting('STUCK_PROCESSING_AFTER')
        now = timezone.now()
        cutoff = now - timedelta(seconds=older_than_seconds)
        try:
            count = SyncQueue.objects.filter(
                status=SyncQueue.STATUS_PROCESSING,
                last_attempt_at__lt=cutoff,
            ).update(status=SyncQueue.STATUS_PENDING, scheduled_at=now, updated_at=now)
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to reset stuck items: {e}") from e

        if count:
            logger.warning(f"Reset {count} stuck processing items to pending")
        return count

    def cleanup_old_operations(self, days_old: int = None) -> int:
        """Delete completed items older than `days_old` days"""
        if days_old is None:
            days_old = get_sync_setting('COMPLETED_RETENTION_DAYS')
        cutoff = timezone.now() - timedelta(days=days_old)
        try:
            _, deleted_by_model = SyncQueue.objects.filter(
                status=SyncQueue.STATUS_COMPLETED,
                updated_at__lt=cutoff,
            ).delete()
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to clean up old operations: {e}") from e
        # The total also counts cascaded log rows
        return deleted_by_model.get(SyncQueue._meta.label, 0)

    # ========================================================================
    # READS
    # ========================================================================

    def get_operation(self, operation_id: int) -> SyncQueue:
        try:
            return SyncQueue.objects.get(pk=operation_id)
        except SyncQueue.DoesNotExist:
            raise OperationNotFound(operation_id)
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to load operation {operation_id}: {e}") from e

    def get_operations_for_entity(self, entity_id: str, entity_type: str) -> List[SyncQueue]:
        try:
            return list(
                SyncQueue.objects.filter(entity_id=entity_id, entity_type=entity_type)
                .order_by('-timestamp_utc', '-id')
            )
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to load operations for {entity_type} {entity_id}: {e}") from e

    def get_metrics(self) -> QueueMetrics:
        """Get queue metrics for monitoring"""
        try:
            counts = SyncQueue.objects.aggregate(
                pending=Count('id', filter=Q(status=SyncQueue.STATUS_PENDING)),
                processing=Count('id', filter=Q(status=SyncQueue.STATUS_PROCESSING)),
                completed=Count('id', filter=Q(status=SyncQueue.STATUS_COMPLETED)),
                failed=Count('id', filter=Q(status=SyncQueue.STATUS_PENDING, retry_count__gt=0)),
                abandoned=Count('id', filter=Q(status=SyncQueue.STATUS_ABANDONED)),
                total=Count('id'),
            )
            oldest = SyncQueue.objects.filter(
                status=SyncQueue.STATUS_PENDING
            ).aggregate(oldest=Min('timestamp_utc'))['oldest']
            average = SyncQueue.objects.filter(
                Q(status=SyncQueue.STATUS_ABANDONED) |
                Q(status=SyncQueue.STATUS_PENDING, retry_count__gt=0)
            ).aggregate(average=Avg('retry_count'))['average']
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to compute queue metrics: {e}") from e

        oldest_age = None
        if oldest is not None:
            oldest_age = max((timezone.now() - oldest).total_seconds(), 0.0)

        return QueueMetrics(
            oldest_pending_age_seconds=oldest_age,
            average_retry_count=float(average or 0.0),
            **counts
        )

    def get_statistics(self) -> Dict[str, Any]:
        """Get queue statistics, overall and by entity type"""
        stats = self.get_metrics().to_dict()

        stats['by_entity_type'] = {}
        try:
            rows = SyncQueue.objects.values('entity_type', 'status').annotate(count=Count('id'))
            for entity_type, _ in SyncQueue.ENTITY_TYPES:
                stats['by_entity_type'][entity_type] = {
                    status: 0 for status, _ in SyncQueue.STATUS_CHOICES
                }
            for row in rows:
                type_stats = stats['by_entity_type'].setdefault(row['entity_type'], {})
                type_stats[row['status']] = row['count']
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to compute queue statistics: {e}") from e

        for type_stats in stats['by_entity_type'].values():
            type_stats['total'] = sum(type_stats.values())
        return stats

    def log_event(self, operation_id: int, level: str, message: str, details: Dict = None):
        """Attach a SyncLog entry to a queue item"""
        try:
            SyncLog.objects.create(
                queue_item_id=operation_id,
                level=level,
                message=message,
                details=details or {},
            )
        except DatabaseError as e:
            raise QueueStorageError(f"Failed to log event for operation {operation_id}: {e}") from e

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _get_locked(self, operation_id: int) -> SyncQueue:
        try:
            return SyncQueue.objects.select_for_update().get(pk=operation_id)
        except SyncQueue.DoesNotExist:
            raise OperationNotFound(operation_id)

    def _log_event(self, item: SyncQueue, level: str, message: str, details: Dict = None):
        SyncLog.objects.create(queue_item=item, level=level, message=message, details=details or {})

    @staticmethod
    def _dependency_keys(item: SyncQueue) -> Set[Tuple[str, str]]:
        """(entity_type, entity_id) pairs the item depends on, excluding itself"""
        keys = set()
        for dependency in item.dependencies or ():
            key = split_dependency(dependency, item.entity_type)
            if key != (item.entity_type, item.entity_id):
                keys.add(key)
        return keys

    def _outstanding_entities(self, candidates: Iterable[SyncQueue]) -> Set[Tuple[str, str]]:
        """Dependency (entity_type, entity_id) pairs that still have Pending/Processing items"""
        wanted = set()
        for item in candidates:
            wanted |= self._dependency_keys(item)

        if not wanted:
            return set()

        outstanding = SyncQueue.objects.filter(
            entity_id__in={entity_id for _, entity_id in wanted},
            status__in=OUTSTANDING_STATUSES,
        ).values_list('entity_type', 'entity_id')
        return wanted & set(outstanding)

    def _is_blocked(self, item: SyncQueue, blocked: Set[Tuple[str, str]]) -> bool:
        return not self._dependency_keys(item).isdisjoint(blocked)
