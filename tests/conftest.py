"""Shared fixtures for the remote sync tests."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import requests

from RemoteSync.conflictResolver import ConflictResolver
from RemoteSync.queueManager import SyncQueueManager
from RemoteSync.remoteClient import RemoteStoreClient
from RemoteSync.syncManager import BackgroundSyncService
from RemoteSync.syncTypes import QueueMetrics, SyncOperation
from RemoteSync.tasksUtils import reset_sync_service

BASE_URL = "https://remote.example.test"
API_KEY = "test-api-key"

T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_response(status_code, body=None):
    """Build a real requests.Response carrying a JSON body (or none)."""
    response = requests.Response()
    response.status_code = status_code
    response._content = json.dumps(body).encode() if body is not None else b""
    response.headers["Content-Type"] = "application/json"
    return response


def make_operation(entity_id="c1", entity_type="client", operation_type="create",
                   data=None, dependencies=(), timestamp=None, op_id=1):
    return SyncOperation(
        id=op_id,
        entity_type=entity_type,
        entity_id=entity_id,
        operation_type=operation_type,
        data={"name": "Acme"} if data is None else data,
        dependencies=dependencies,
        timestamp_utc=timestamp or T0,
    )


@pytest.fixture(autouse=True)
def _reset_service_singleton():
    yield
    reset_sync_service()


@pytest.fixture
def session():
    """A real Session whose request method is mocked out."""
    session = requests.Session()
    session.request = MagicMock(return_value=make_response(200, []))
    return session


@pytest.fixture
def remote_client(session):
    return RemoteStoreClient(BASE_URL, API_KEY, timeout=30, health_check_timeout=10, session=session)


@pytest.fixture
def queue():
    return SyncQueueManager(max_retries=5, retry_base_delay=30, retry_max_delay=900)


@pytest.fixture
def fake_queue():
    """Queue double for service tests that must not touch the database."""
    fake = MagicMock(spec=SyncQueueManager)
    fake.dequeue_batch.return_value = []
    fake.get_metrics.return_value = QueueMetrics()
    return fake


@pytest.fixture
def fake_client():
    fake = MagicMock(spec=RemoteStoreClient)
    fake.check_server_availability.return_value = True
    fake.entity_exists.return_value = True
    return fake


@pytest.fixture
def service(fake_queue, fake_client):
    service = BackgroundSyncService(
        queue=fake_queue,
        client=fake_client,
        resolver=ConflictResolver('last_write_wins'),
        interval=0.05,
        batch_size=10,
        max_recent_errors=5,
    )
    yield service
    service.stop()


@pytest.fixture
def make_op():
    return make_operation


@pytest.fixture
def enqueue(queue):
    """Enqueue an operation and return its queue id."""
    def _enqueue(entity_id="c1", entity_type="client", operation_type="create", data=None,
                 dependencies=(), offset_seconds=0):
        return queue.enqueue(SyncOperation(
            entity_type=entity_type,
            entity_id=entity_id,
            operation_type=operation_type,
            data={"name": entity_id} if data is None else data,
            dependencies=dependencies,
            timestamp_utc=T0 + timedelta(seconds=offset_seconds),
        ))
    return _enqueue
