"""Tests for the Celery tasks, maintenance tasks and settings helpers."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone

from RemoteSync import maintenanceUtils, tasks
from RemoteSync.conflictResolver import ConflictStrategy
from RemoteSync.exceptions import BatchInProgress, NoNetwork, QueueStorageError
from RemoteSync.models import SyncLog, SyncQueue
from RemoteSync.syncManager import BackgroundSyncService
from RemoteSync.syncTypes import SyncResult
from RemoteSync.tasksUtils import (
    build_sync_service,
    get_sync_service,
    get_sync_setting,
    reset_sync_service,
    split_dependency,
)


class TestProcessSyncQueueTask:
    def test_returns_batch_result(self):
        service = MagicMock()
        service.sync_now.return_value = SyncResult(processed=2, succeeded=2, duration_ms=5)

        with patch.object(tasks, 'get_sync_service', return_value=service):
            result = tasks.process_sync_queue_task()

        assert result['processed'] == 2
        assert result['succeeded'] == 2

    def test_offline_is_not_an_error(self):
        service = MagicMock()
        service.sync_now.side_effect = NoNetwork()

        with patch.object(tasks, 'get_sync_service', return_value=service):
            result = tasks.process_sync_queue_task()

        assert result['error'] == 'Remote store not available'
        assert result['processed'] == 0

    def test_batch_in_progress_is_skipped(self):
        service = MagicMock()
        service.sync_now.side_effect = BatchInProgress()

        with patch.object(tasks, 'get_sync_service', return_value=service):
            result = tasks.process_sync_queue_task()

        assert 'skipped' in result

    def test_storage_error_is_retried(self):
        service = MagicMock()
        service.sync_now.side_effect = QueueStorageError("locked")

        # Called outside a worker, Celery's retry re-raises the original error
        with patch.object(tasks, 'get_sync_service', return_value=service):
            with pytest.raises(QueueStorageError):
                tasks.process_sync_queue_task()


class TestConnectionTask:
    def test_success(self):
        client = MagicMock()
        client.test_connection.return_value = {'connected': True, 'base_url': 'https://r', 'status': 'ok'}

        with patch.object(tasks.RemoteStoreClient, 'from_config', return_value=client):
            assert tasks.test_remote_connection_task()['status'] == 'success'

    def test_not_configured(self):
        with patch.object(tasks.RemoteStoreClient, 'from_config', side_effect=ValueError("no url")):
            result = tasks.test_remote_connection_task()

        assert result == {'status': 'error', 'message': 'no url'}


@pytest.mark.django_db
class TestQueueTasks:
    def test_requeue_abandoned_task(self, queue, enqueue):
        abandoned = enqueue("c1")
        pending = enqueue("c2")
        queue.mark_abandoned(abandoned, "manual")

        result = tasks.requeue_abandoned_task([abandoned, pending])

        assert result == {'requeued': [abandoned], 'skipped': [pending]}

    def test_cleanup_sync_tasks(self, queue, enqueue):
        done = enqueue("c1")
        queue.mark_completed(done)
        queue.log_event(done, 'ERROR', "kept")
        SyncQueue.objects.filter(pk=done).update(updated_at=timezone.now() - timedelta(days=30))
        keep = enqueue("c2")
        queue.log_event(keep, 'INFO', "old info")
        queue.log_event(keep, 'ERROR', "old error")
        SyncLog.objects.filter(queue_item_id=keep).update(timestamp=timezone.now() - timedelta(days=60))

        result = maintenanceUtils.cleanup_sync_tasks()

        assert result == {'logs_deleted': 1, 'queue_items_deleted': 1}
        assert list(SyncLog.objects.values_list('message', flat=True)) == ["old error"]

    def test_cleanup_stuck_processing_items(self, queue, enqueue):
        stuck = enqueue("c1")
        queue.dequeue_batch(1)
        SyncQueue.objects.filter(pk=stuck).update(last_attempt_at=timezone.now() - timedelta(hours=2))

        result = maintenanceUtils.cleanup_stuck_processing_items()

        assert result['stuck_items_reset'] == 1
        assert result['pending'] == 1


class TestSettingsHelpers:
    def test_setting_defaults(self, settings):
        settings.REMOTE_SYNC = {'BATCH_SIZE': 25}

        assert get_sync_setting('BATCH_SIZE') == 25
        assert get_sync_setting('SYNC_INTERVAL') == 30

    @pytest.mark.parametrize("dependency,expected", [
        ("c1", ("step", "c1")),
        ("client:c1", ("client", "c1")),
        ("Client:c1", ("client", "c1")),
        ("urn:x:1", ("step", "urn:x:1")),
    ])
    def test_split_dependency(self, dependency, expected):
        assert split_dependency(dependency, "step") == expected

    @pytest.mark.django_db
    def test_build_sync_service_from_settings(self, settings):
        settings.REMOTE_STORE_URL = "https://remote.example.test"
        settings.REMOTE_SYNC = {'BATCH_SIZE': 3, 'SYNC_INTERVAL': 15, 'CONFLICT_STRATEGY': 'client_wins'}

        service = build_sync_service()

        assert isinstance(service, BackgroundSyncService)
        assert service.batch_size == 3
        assert service.interval == 15
        assert service.resolver.strategy is ConflictStrategy.CLIENT_WINS

    @pytest.mark.django_db
    def test_service_singleton(self, settings):
        settings.REMOTE_STORE_URL = "https://remote.example.test"

        first = get_sync_service()
        assert get_sync_service() is first

        reset_sync_service()
        assert get_sync_service() is not first
