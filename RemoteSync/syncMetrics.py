import threading
from dataclasses import dataclass, replace
from typing import Optional

from .syncTypes import QueueMetrics, SyncResult


@dataclass
class SyncMetricsSnapshot:
    pending_operations: int = 0
    processing_operations: int = 0
    completed_operations: int = 0
    failed_operations: int = 0
    abandoned_operations: int = 0
    total_operations: int = 0
    oldest_pending_age_seconds: Optional[float] = None
    average_retry_count: float = 0.0
    batches: int = 0
    batch_errors: int = 0
    last_batch_duration_ms: int = 0


class SyncMetrics:
    """
    Process-wide counters for display.

    completed/failed accumulate across batches; the other fields are
    point-in-time values copied from the queue. The queue stays the source of
    truth, this is only a cache. All mutation happens under one lock and
    readers get a copy.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._metrics = SyncMetricsSnapshot()

    def record_sync_result(self, result: SyncResult):
        with self._lock:
            self._metrics.completed_operations += result.succeeded
            self._metrics.failed_operations += result.failed
            self._metrics.processing_operations = 0
            self._metrics.batches += 1
            self._metrics.last_batch_duration_ms = result.duration_ms

    def record_sync_error(self):
        with self._lock:
            self._metrics.batch_errors += 1
            self._metrics.processing_operations = 0

    def update_processing_count(self, count: int):
        with self._lock:
            self._metrics.processing_operations = count

    def update_from_queue(self, queue_metrics: QueueMetrics):
        with self._lock:
            self._metrics.pending_operations = queue_metrics.pending
            self._metrics.abandoned_operations = queue_metrics.abandoned
            self._metrics.total_operations = queue_metrics.total
            self._metrics.oldest_pending_age_seconds = queue_metrics.oldest_pending_age_seconds
            self._metrics.average_retry_count = queue_metrics.average_retry_count

    def snapshot(self) -> SyncMetricsSnapshot:
        with self._lock:
            return replace(self._metrics)
