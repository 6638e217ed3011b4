import logging
import threading
import time
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict

from django.db import close_old_connections
from django.utils import timezone

from .conflictResolver import ActionKind, ConflictResolutionAction, ConflictResolver
from .exceptions import (
    AlreadyRunning,
    BatchInProgress,
    DependencyMissing,
    NoNetwork,
    QueueStorageError,
    RemoteConflict,
    RemoteNotFound,
    SyncError,
)
from .syncMetrics import SyncMetrics
from .syncTypes import SyncOperation, SyncResult, SyncStatus
from .tasksUtils import split_dependency

logger = logging.getLogger(__name__)

# Per-operation outcomes
APPLIED = 'applied'
SKIPPED = 'skipped'
NEEDS_MANUAL = 'needs_manual'

MANUAL_RESOLUTION_REASON = "Manual conflict resolution required"


class BackgroundSyncService:
    """
    Drains the sync queue into the remote store.

    A daemon thread owns the timer and hands every tick to a single-worker
    executor, so the timer thread never blocks on network or database calls.
    `_batch_lock` guarantees that at most one batch is in flight, whether it
    came from the timer or from `sync_now()`. `_state_lock` guards the running
    flag, last sync time, network flag and the recent-errors ring; callers
    only ever receive copies.
    """

    def __init__(self, queue, client, resolver: ConflictResolver = None,
                 metrics: SyncMetrics = None, interval: float = 30, batch_size: int = 10,
                 max_recent_errors: int = 5):
        self.queue = queue
        self.client = client
        self.resolver = resolver or ConflictResolver()
        self.metrics = metrics or SyncMetrics()
        self.interval = interval
        self.batch_size = batch_size

        self._batch_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._loop_thread = None
        self._executor = None

        self._running = False
        self._last_sync = None
        self._network_available = False
        self._recent_errors = deque(maxlen=max_recent_errors)

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    @property
    def is_running(self) -> bool:
        with self._state_lock:
            return self._running

    @property
    def batch_in_progress(self) -> bool:
        return self._batch_lock.locked()

    def start(self):
        """Start the periodic loop; raises AlreadyRunning if it is already started"""
        with self._state_lock:
            if self._running:
                raise AlreadyRunning()

            self._running = True
            self._stop_event = threading.Event()
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='remote-sync-batch')
            self._loop_thread = threading.Thread(
                target=self._run_loop,
                args=(self._stop_event, self._executor),
                name='remote-sync-loop',
                daemon=True,
            )
            self._loop_thread.start()

        logger.info(f"Background sync started (interval {self.interval}s, batch size {self.batch_size})")

    def stop(self):
        """
        Stop the periodic loop.

        A batch already in flight is allowed to finish; no further ticks are
        scheduled afterwards. Calling stop() on a stopped service is a no-op.
        """
        with self._state_lock:
            if not self._running:
                return
            self._running = False
            self._stop_event.set()
            loop_thread, executor = self._loop_thread, self._executor
            self._loop_thread = None
            self._executor = None

        loop_thread.join()
        executor.shutdown(wait=True)
        logger.info("Background sync stopped")

    def _run_loop(self, stop_event: threading.Event, executor: ThreadPoolExecutor):
        while True:
            if self.batch_in_progress:
                logger.debug("Previous sync batch still running, skipping tick")
            else:
                executor.submit(self._run_tick)

            if stop_event.wait(self.interval):
                break

    def _run_tick(self):
        if not self._batch_lock.acquire(blocking=False):
            return

        close_old_connections()
        try:
            if not self._check_network_connectivity():
                logger.info("Remote store not reachable, skipping sync tick")
                return

            result = self._process_sync_batch()
            if result.processed:
                logger.info(
                    f"Sync batch: {result.processed} processed, {result.succeeded} succeeded, "
                    f"{result.failed} failed in {result.duration_ms}ms"
                )
        except QueueStorageError as e:
            logger.error(f"Sync batch aborted by queue storage failure: {e}")
            self._record_batch_error(e)
        except Exception as e:
            # Nobody waits on the timer thread; keep the loop alive and surface the error in status
            logger.exception(f"Unexpected error in sync tick: {e}")
            self._record_batch_error(e)
        finally:
            self._batch_lock.release()
            close_old_connections()

    # ========================================================================
    # PUBLIC ENTRY POINTS
    # ========================================================================

    def sync_now(self) -> SyncResult:
        """
        Run exactly one batch in the calling thread.

        Raises:
            BatchInProgress: another batch (timer or manual) is in flight
            NoNetwork: the health check failed; nothing was claimed
            QueueStorageError: the queue failed mid-batch
        """
        if not self._batch_lock.acquire(blocking=False):
            raise BatchInProgress()

        try:
            if not self._check_network_connectivity():
                raise NoNetwork()

            try:
                return self._process_sync_batch()
            except QueueStorageError as e:
                self._record_batch_error(e)
                raise
        finally:
            self._batch_lock.release()

    def get_status(self, check_network: bool = True) -> SyncStatus:
        """Build a status snapshot from the queue's counts plus the service state"""
        if check_network:
            self._check_network_connectivity()

        with self._state_lock:
            is_running = self._running
            last_sync = self._last_sync
            network_available = self._network_available
            recent_errors = list(self._recent_errors)

        try:
            queue_metrics = self.queue.get_metrics()
            self.metrics.update_from_queue(queue_metrics)
            pending = queue_metrics.pending
            failed = queue_metrics.failed + queue_metrics.abandoned
            abandoned = queue_metrics.abandoned
            total = queue_metrics.total
        except QueueStorageError as e:
            logger.error(f"Queue unavailable for status, using cached metrics: {e}")
            cached = self.metrics.snapshot()
            pending = cached.pending_operations
            failed = cached.failed_operations
            abandoned = cached.abandoned_operations
            total = cached.total_operations
            recent_errors.append(str(e))

        return SyncStatus(
            is_running=is_running,
            last_sync_time=last_sync,
            pending_count=pending,
            failed_count=failed,
            abandoned_count=abandoned,
            total_count=total,
            network_available=network_available,
            recent_errors=recent_errors,
        )

    def get_metrics(self) -> Dict[str, Any]:
        snapshot = self.metrics.snapshot()
        with self._state_lock:
            errors = list(self._recent_errors)
        data = dict(vars(snapshot))
        data['errors'] = errors
        return data

    # ========================================================================
    # BATCH PROCESSING
    # ========================================================================

    def _check_network_connectivity(self) -> bool:
        available = self.client.check_server_availability()
        with self._state_lock:
            self._network_available = available
        return available

    def _process_sync_batch(self) -> SyncResult:
        """Process one batch; the caller must hold _batch_lock"""
        started = time.monotonic()

        operations = self.queue.dequeue_batch(self.batch_size)
        self.metrics.update_processing_count(len(operations))

        result = SyncResult(processed=len(operations))
        for operation in operations:
            try:
                outcome = self._process_operation(operation)
            except QueueStorageError:
                raise
            except Exception as e:
                error_msg = f"Failed to sync operation {operation.id}: {e}"
                # Tracebacks only for errors that are not expected remote/dependency failures
                logger.warning(error_msg, exc_info=not isinstance(e, SyncError))
                self.queue.mark_failed(operation.id, error_msg)
                result.failed += 1
                result.errors.append(error_msg)
                continue

            if outcome == NEEDS_MANUAL:
                error_msg = f"Failed to sync operation {operation.id}: {MANUAL_RESOLUTION_REASON}"
                self.queue.mark_abandoned(operation.id, MANUAL_RESOLUTION_REASON)
                result.failed += 1
                result.errors.append(error_msg)
                continue

            self.queue.mark_completed(operation.id)
            result.succeeded += 1
            if outcome == SKIPPED:
                result.skipped += 1

        result.duration_ms = int((time.monotonic() - started) * 1000)
        self._finish_batch(result)
        return result

    def _finish_batch(self, result: SyncResult):
        self.metrics.record_sync_result(result)

        with self._state_lock:
            self._last_sync = timezone.now()
            if result.fully_successful:
                self._recent_errors.clear()
            else:
                self._recent_errors.extend(result.errors)

        try:
            self.metrics.update_from_queue(self.queue.get_metrics())
        except QueueStorageError as e:
            logger.warning(f"Could not refresh queue metrics after batch: {e}")

    def _record_batch_error(self, error: Exception):
        self.metrics.record_sync_error()
        with self._state_lock:
            self._recent_errors.append(str(error))

    # ========================================================================
    # PER-OPERATION SYNC
    # ========================================================================

    def _process_operation(self, operation: SyncOperation) -> str:
        self._validate_dependencies(operation)

        payload = self._payload(operation)
        if operation.operation_type == 'create':
            return self._sync_create_operation(operation, payload)
        elif operation.operation_type == 'update':
            return self._sync_update_operation(operation, payload)
        elif operation.operation_type == 'delete':
            return self._sync_delete_operation(operation)
        else:
            raise ValueError(f"Unknown operation: {operation.operation_type}")

    def _validate_dependencies(self, operation: SyncOperation):
        for dependency in operation.dependencies:
            entity_type, entity_id = split_dependency(dependency, operation.entity_type)
            if not self.client.entity_exists(entity_type, entity_id):
                raise DependencyMissing(dependency)

    @staticmethod
    def _payload(operation: SyncOperation) -> Dict[str, Any]:
        payload = dict(operation.data)
        payload.setdefault('id', operation.entity_id)
        return payload

    def _sync_create_operation(self, operation: SyncOperation, payload: Dict[str, Any]) -> str:
        try:
            self.client.create_entity(operation.entity_type, payload)
            return APPLIED
        except RemoteConflict as conflict:
            action = self.resolver.resolve_create_conflict(operation, conflict.existing, payload)
            return self._apply_resolution('create', operation, action)

    def _sync_update_operation(self, operation: SyncOperation, payload: Dict[str, Any]) -> str:
        try:
            self.client.update_entity(operation.entity_type, operation.entity_id, payload)
            return APPLIED
        except RemoteNotFound:
            # The remote side never saw this entity
            logger.info(f"Remote {operation.entity_type} {operation.entity_id} missing, creating it instead")
            return self._sync_create_operation(operation, payload)
        except RemoteConflict as conflict:
            action = self.resolver.resolve_update_conflict(operation, conflict.existing, payload)
            return self._apply_resolution('update', operation, action)

    def _sync_delete_operation(self, operation: SyncOperation) -> str:
        try:
            self.client.delete_entity(operation.entity_type, operation.entity_id)
        except RemoteNotFound:
            logger.info(f"Remote {operation.entity_type} {operation.entity_id} already deleted")
        return APPLIED

    def _apply_resolution(self, kind: str, operation: SyncOperation,
                          action: ConflictResolutionAction) -> str:
        self.queue.log_event(
            operation.id, 'INFO',
            f"{kind.title()} conflict resolved with {action.kind.value}",
            {'strategy': self.resolver.strategy.value},
        )

        if action.kind is ActionKind.UPDATE_ENTITY:
            self.client.update_entity(operation.entity_type, operation.entity_id, action.payload)
            return APPLIED

        if action.kind is ActionKind.SKIP_OPERATION:
            logger.info(f"Skipping {kind} operation {operation.id} due to conflict resolution")
            return SKIPPED

        if action.kind is ActionKind.CREATE_ENTITY:
            self.client.create_entity(operation.entity_type, action.payload)
            return APPLIED

        if action.kind is ActionKind.DELETE_ENTITY:
            try:
                self.client.delete_entity(operation.entity_type, operation.entity_id)
            except RemoteNotFound:
                pass
            return APPLIED

        logger.warning(f"Manual conflict resolution needed for {kind} operation {operation.id}")
        return NEEDS_MANUAL
