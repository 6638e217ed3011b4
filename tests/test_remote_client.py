"""Tests for the REST client of the remote store."""

import pytest
import requests

from RemoteSync.exceptions import (
    RemoteConflict,
    RemoteNotFound,
    RemoteServerError,
    RemoteTransportError,
)
from RemoteSync.models import RemoteStoreConfig
from RemoteSync.remoteClient import RemoteStoreClient

from conftest import API_KEY, BASE_URL, make_response

REST = f"{BASE_URL}/rest/v1"


class TestSetup:
    def test_auth_headers(self, remote_client, session):
        assert session.headers['apikey'] == API_KEY
        assert session.headers['Authorization'] == f"Bearer {API_KEY}"
        assert session.headers['Content-Type'] == 'application/json'

    def test_trailing_slash_is_stripped(self, session):
        client = RemoteStoreClient(BASE_URL + "/", API_KEY, session=session)
        assert client.rest_url == REST

    def test_missing_url_rejected(self, session):
        with pytest.raises(ValueError):
            RemoteStoreClient("", API_KEY, session=session)

    def test_table_urls(self, remote_client):
        assert remote_client.table_url('intervention') == f"{REST}/interventions"
        assert remote_client.table_url('task') == f"{REST}/tasks"

    def test_unknown_entity_type(self, remote_client):
        with pytest.raises(ValueError):
            remote_client.table_url('invoice')


class TestHealthCheck:
    def test_health_check_uses_short_timeout(self, remote_client, session):
        session.request.return_value = make_response(200, {})

        remote_client.health_check()

        session.request.assert_called_once_with('GET', f"{REST}/", timeout=10)

    def test_availability_false_on_connection_error(self, remote_client, session):
        session.request.side_effect = requests.exceptions.ConnectionError("refused")

        assert remote_client.check_server_availability() is False

    def test_availability_false_on_server_error(self, remote_client, session):
        session.request.return_value = make_response(503, {"message": "down"})

        assert remote_client.check_server_availability() is False

    def test_test_connection_reports_status(self, remote_client, session):
        session.request.return_value = make_response(200, {})
        assert remote_client.test_connection()['connected'] is True

        session.request.side_effect = requests.exceptions.Timeout()
        result = remote_client.test_connection()
        assert result['connected'] is False
        assert result['status'].startswith('Connection error')


class TestEntityExists:
    def test_exists(self, remote_client, session):
        session.request.return_value = make_response(200, [{"id": "c1"}])

        assert remote_client.entity_exists('client', 'c1') is True

        session.request.assert_called_once_with(
            'GET', f"{REST}/clients", timeout=30, params={'id': 'eq.c1', 'select': 'id'},
        )

    def test_missing(self, remote_client, session):
        session.request.return_value = make_response(200, [])
        assert remote_client.entity_exists('client', 'c1') is False

    def test_404_means_missing(self, remote_client, session):
        session.request.return_value = make_response(404)
        assert remote_client.entity_exists('client', 'c1') is False

    def test_server_error(self, remote_client, session):
        session.request.return_value = make_response(500, {"message": "secret internals"})

        with pytest.raises(RemoteServerError) as exc_info:
            remote_client.entity_exists('client', 'c1')

        assert exc_info.value.status_code == 500
        assert "secret internals" not in str(exc_info.value)


class TestCreate:
    def test_create(self, remote_client, session):
        session.request.return_value = make_response(201)

        remote_client.create_entity('client', {'id': 'c1', 'name': 'Acme'})

        session.request.assert_called_once_with(
            'POST', f"{REST}/clients", timeout=30,
            json={'id': 'c1', 'name': 'Acme'},
            headers={'Prefer': 'return=minimal'},
        )

    def test_conflict_carries_existing_row(self, remote_client, session):
        existing = {'id': 'c1', 'name': 'Remote', 'updated_at': '2024-03-01T13:00:00Z'}
        session.request.return_value = make_response(409, [existing])

        with pytest.raises(RemoteConflict) as exc_info:
            remote_client.create_entity('client', {'id': 'c1'})

        assert exc_info.value.existing == existing

    def test_conflict_with_unparseable_body(self, remote_client, session):
        response = make_response(409)
        response._content = b"duplicate key"
        session.request.return_value = response

        with pytest.raises(RemoteConflict) as exc_info:
            remote_client.create_entity('client', {'id': 'c1'})

        assert exc_info.value.existing == {}

    def test_timeout_is_transport_error(self, remote_client, session):
        session.request.side_effect = requests.exceptions.Timeout()

        with pytest.raises(RemoteTransportError):
            remote_client.create_entity('client', {'id': 'c1'})


class TestUpdateDelete:
    def test_update(self, remote_client, session):
        session.request.return_value = make_response(200, [{'id': 'i1'}])

        remote_client.update_entity('intervention', 'i1', {'title': 'New'})

        session.request.assert_called_once_with(
            'PATCH', f"{REST}/interventions", timeout=30,
            params={'id': 'eq.i1'},
            json={'title': 'New'},
            headers={'Prefer': 'return=representation'},
        )

    def test_update_matching_no_row_is_not_found(self, remote_client, session):
        session.request.return_value = make_response(200, [])

        with pytest.raises(RemoteNotFound):
            remote_client.update_entity('intervention', 'i1', {'title': 'New'})

    def test_update_404_is_not_found(self, remote_client, session):
        session.request.return_value = make_response(404)

        with pytest.raises(RemoteNotFound):
            remote_client.update_entity('intervention', 'i1', {'title': 'New'})

    def test_update_conflict(self, remote_client, session):
        session.request.return_value = make_response(409, {'id': 'i1', 'updated_at': '2024-03-01T13:00:00Z'})

        with pytest.raises(RemoteConflict) as exc_info:
            remote_client.update_entity('intervention', 'i1', {'title': 'New'})

        assert exc_info.value.existing['id'] == 'i1'

    def test_delete(self, remote_client, session):
        session.request.return_value = make_response(200, [{'id': 'p1'}])

        remote_client.delete_entity('photo', 'p1')

        args, kwargs = session.request.call_args
        assert args == ('DELETE', f"{REST}/photos")
        assert kwargs['params'] == {'id': 'eq.p1'}

    def test_delete_no_content_is_success(self, remote_client, session):
        session.request.return_value = make_response(204)

        remote_client.delete_entity('photo', 'p1')

    def test_delete_missing_row(self, remote_client, session):
        session.request.return_value = make_response(200, [])

        with pytest.raises(RemoteNotFound):
            remote_client.delete_entity('photo', 'p1')


@pytest.mark.django_db
class TestFromConfig:
    def test_database_config_wins(self, settings):
        settings.REMOTE_STORE_URL = "https://settings.example.test"
        RemoteStoreConfig.objects.create(
            name='default', base_url="https://db.example.test", api_key="db-key",
            timeout=12, conflict_strategy='server_wins',
        )

        client = RemoteStoreClient.from_config()

        assert client.base_url == "https://db.example.test"
        assert client.timeout == 12
        assert client.conflict_strategy == 'server_wins'
        assert client.session.headers['apikey'] == "db-key"

    def test_falls_back_to_settings(self, settings):
        settings.REMOTE_STORE_URL = "https://settings.example.test"
        settings.REMOTE_STORE_API_KEY = "settings-key"

        client = RemoteStoreClient.from_config()

        assert client.base_url == "https://settings.example.test"
        assert client.conflict_strategy is None

    def test_inactive_config_ignored(self, settings):
        settings.REMOTE_STORE_URL = ""
        RemoteStoreConfig.objects.create(
            name='default', base_url="https://db.example.test", api_key="k", is_active=False,
        )

        with pytest.raises(ValueError):
            RemoteStoreClient.from_config()
