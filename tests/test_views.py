"""Tests for the REST endpoints under /RemoteSync/api/remote-sync/."""

from unittest.mock import MagicMock, patch

import pytest
from rest_framework.test import APIClient

from RemoteSync.exceptions import AlreadyRunning, BatchInProgress, NoNetwork, QueueStorageError
from RemoteSync.models import SyncQueue
from RemoteSync.syncTypes import SyncResult, SyncStatus

from conftest import T0

API = "/RemoteSync/api/remote-sync"

pytestmark = pytest.mark.django_db


@pytest.fixture
def api(django_user_model):
    user = django_user_model.objects.create_user(username="operator", password="secret")
    client = APIClient()
    client.force_authenticate(user=user)
    return client


@pytest.fixture
def sync_service():
    service = MagicMock()
    with patch('RemoteSync.views.get_sync_service', return_value=service):
        yield service


class TestAuthentication:
    def test_anonymous_rejected(self):
        response = APIClient().get(f"{API}/operations/status/")
        assert response.status_code in (401, 403)


class TestOperationEndpoints:
    def test_status(self, api, sync_service):
        sync_service.get_status.return_value = SyncStatus(
            is_running=True, last_sync_time=T0, pending_count=2, failed_count=1,
            abandoned_count=0, total_count=5, network_available=True, recent_errors=["boom"],
        )

        response = api.get(f"{API}/operations/status/")

        assert response.status_code == 200
        assert response.json()['pending_count'] == 2
        assert response.json()['recent_errors'] == ["boom"]
        sync_service.get_status.assert_called_once_with(check_network=True)

    def test_status_without_network_probe(self, api, sync_service):
        sync_service.get_status.return_value = SyncStatus(False, None, 0, 0, 0, 0, False)

        api.get(f"{API}/operations/status/?check_network=false")

        sync_service.get_status.assert_called_once_with(check_network=False)

    def test_metrics(self, api, sync_service):
        sync_service.get_metrics.return_value = {'batches': 3, 'errors': []}

        response = api.get(f"{API}/operations/metrics/")

        assert response.json() == {'batches': 3, 'errors': []}

    def test_sync_now(self, api, sync_service):
        sync_service.sync_now.return_value = SyncResult(processed=1, succeeded=1, duration_ms=12)

        response = api.post(f"{API}/operations/sync_now/")

        assert response.status_code == 200
        assert response.json()['succeeded'] == 1

    @pytest.mark.parametrize("error,code", [
        (NoNetwork(), 503),
        (BatchInProgress(), 409),
        (QueueStorageError("locked"), 500),
    ])
    def test_sync_now_errors(self, api, sync_service, error, code):
        sync_service.sync_now.side_effect = error

        response = api.post(f"{API}/operations/sync_now/")

        assert response.status_code == code
        assert response.json()['error'] == str(error)

    def test_start_and_stop(self, api, sync_service):
        assert api.post(f"{API}/operations/start/").json() == {'status': 'started'}
        assert api.post(f"{API}/operations/stop/").json() == {'status': 'stopped'}
        sync_service.start.assert_called_once_with()
        sync_service.stop.assert_called_once_with()

    def test_start_when_running(self, api, sync_service):
        sync_service.start.side_effect = AlreadyRunning()

        assert api.post(f"{API}/operations/start/").status_code == 409

    def test_not_configured(self, api):
        with patch('RemoteSync.views.get_sync_service', side_effect=ValueError("no url")):
            response = api.post(f"{API}/operations/sync_now/")

        assert response.status_code == 503


class TestQueueEndpoints:
    def test_list_and_filter(self, api, queue, enqueue):
        enqueue("c1")
        done = enqueue("c2")
        queue.mark_completed(done)

        everything = api.get(f"{API}/queue/").json()
        pending = api.get(f"{API}/queue/?status=pending").json()

        assert everything['count'] == 2
        assert [row['entity_id'] for row in pending['results']] == ["c1"]

    def test_detail_includes_logs(self, api, queue, enqueue):
        item_id = enqueue("c1")
        queue.mark_failed(item_id, "boom")

        detail = api.get(f"{API}/queue/{item_id}/").json()

        assert detail['retry_count'] == 1
        assert detail['logs'][0]['level'] == 'WARNING'

    def test_statistics(self, api, enqueue):
        enqueue("c1")

        stats = api.get(f"{API}/queue/statistics/").json()

        assert stats['pending'] == 1
        assert stats['by_entity_type']['client']['total'] == 1

    def test_requeue(self, api, queue, enqueue):
        item_id = enqueue("c1")

        assert api.post(f"{API}/queue/{item_id}/requeue/").status_code == 400

        queue.mark_abandoned(item_id, "manual")
        response = api.post(f"{API}/queue/{item_id}/requeue/")

        assert response.status_code == 200
        assert SyncQueue.objects.get(pk=item_id).status == SyncQueue.STATUS_PENDING

    def test_queue_is_read_only(self, api):
        response = api.post(f"{API}/queue/", {'entity_type': 'client'}, format='json')
        assert response.status_code == 405
