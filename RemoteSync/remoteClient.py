import requests
import logging
from django.conf import settings
from typing import Dict, Any, Optional

from .exceptions import (
    RemoteConflict,
    RemoteNotFound,
    RemoteServerError,
    RemoteTransportError,
)
from .models import RemoteStoreConfig
from .tasksUtils import get_sync_setting

logger = logging.getLogger(__name__)

# Entity type -> remote table
TABLE_NAMES = {
    'intervention': 'interventions',
    'step': 'steps',
    'photo': 'photos',
    'client': 'clients',
    'user': 'users',
    'task': 'tasks',
}


class RemoteStoreClient:
    """Stateless REST wrapper around the remote store (PostgREST-style API)"""

    def __init__(self, base_url: str, api_key: str, timeout: float = None,
                 health_check_timeout: float = None, conflict_strategy: str = None,
                 session: requests.Session = None):
        if not base_url:
            raise ValueError("Remote store URL not configured in settings or database")

        self.base_url = base_url.rstrip('/')
        self.api_key = api_key or ''
        self.timeout = timeout if timeout is not None else get_sync_setting('REQUEST_TIMEOUT')
        self.health_check_timeout = (health_check_timeout if health_check_timeout is not None
                                     else get_sync_setting('HEALTH_CHECK_TIMEOUT'))
        self.conflict_strategy = conflict_strategy

        self.session = session or requests.Session()
        self._setup_authentication()

    @classmethod
    def from_config(cls, config_name: str = 'default') -> 'RemoteStoreClient':
        """Build a client from the named database config, or from settings"""
        try:
            config = RemoteStoreConfig.objects.get(name=config_name, is_active=True)
            return cls(
                base_url=config.base_url or settings.REMOTE_STORE_URL,
                api_key=config.api_key or settings.REMOTE_STORE_API_KEY,
                timeout=config.timeout,
                conflict_strategy=config.conflict_strategy,
            )
        except RemoteStoreConfig.DoesNotExist:
            # If no database config, use settings
            return cls(
                base_url=getattr(settings, 'REMOTE_STORE_URL', ''),
                api_key=getattr(settings, 'REMOTE_STORE_API_KEY', ''),
            )

    def _setup_authentication(self):
        """The static API key goes out both as apikey header and bearer token"""
        self.session.headers.update({
            'apikey': self.api_key,
            'Authorization': f'Bearer {self.api_key}',
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })

    # ========================================================================
    # URLS
    # ========================================================================

    @property
    def rest_url(self) -> str:
        return f"{self.base_url}/rest/v1"

    def table_url(self, entity_type: str) -> str:
        try:
            table = TABLE_NAMES[entity_type]
        except KeyError:
            raise ValueError(f"Unknown entity type: {entity_type}")
        return f"{self.rest_url}/{table}"

    # ========================================================================
    # REMOTE OPERATIONS
    # ========================================================================

    def health_check(self):
        """Connectivity probe; raises RemoteStoreError when the store is unreachable"""
        response = self._request('GET', f"{self.rest_url}/", timeout=self.health_check_timeout)
        if not response.ok:
            raise RemoteServerError(response.status_code, response.text[:500])

    def entity_exists(self, entity_type: str, entity_id: str) -> bool:
        """Check whether a row with this id exists in the entity's table"""
        response = self._request(
            'GET', self.table_url(entity_type),
            params={'id': f'eq.{entity_id}', 'select': 'id'},
        )
        if response.status_code == 200:
            rows = self._json(response)
            return isinstance(rows, list) and len(rows) > 0
        if response.status_code == 404:
            return False
        raise RemoteServerError(response.status_code, response.text[:500])

    def create_entity(self, entity_type: str, payload: Dict[str, Any]):
        """Insert a row; raises RemoteConflict with the existing row on HTTP 409"""
        response = self._request(
            'POST', self.table_url(entity_type),
            json=payload,
            headers={'Prefer': 'return=minimal'},
        )
        if response.ok:
            return
        if response.status_code == 409:
            raise RemoteConflict(self._conflict_snapshot(response))
        raise RemoteServerError(response.status_code, response.text[:500])

    def update_entity(self, entity_type: str, entity_id: str, payload: Dict[str, Any]):
        """Patch a row by id; raises RemoteNotFound when no row matched"""
        response = self._request(
            'PATCH', self.table_url(entity_type),
            params={'id': f'eq.{entity_id}'},
            json=payload,
            headers={'Prefer': 'return=representation'},
        )
        if response.ok:
            if self._matched_nothing(response):
                raise RemoteNotFound(f"No remote {entity_type} {entity_id} to update")
            return
        if response.status_code == 404:
            raise RemoteNotFound(f"No remote {entity_type} {entity_id} to update")
        if response.status_code == 409:
            raise RemoteConflict(self._conflict_snapshot(response))
        raise RemoteServerError(response.status_code, response.text[:500])

    def delete_entity(self, entity_type: str, entity_id: str):
        """Delete a row by id; raises RemoteNotFound when no row matched"""
        response = self._request(
            'DELETE', self.table_url(entity_type),
            params={'id': f'eq.{entity_id}'},
            headers={'Prefer': 'return=representation'},
        )
        if response.ok:
            if self._matched_nothing(response):
                raise RemoteNotFound(f"No remote {entity_type} {entity_id} to delete")
            return
        if response.status_code == 404:
            raise RemoteNotFound(f"No remote {entity_type} {entity_id} to delete")
        raise RemoteServerError(response.status_code, response.text[:500])

    # ========================================================================
    # DIAGNOSTICS
    # ========================================================================

    def check_server_availability(self) -> bool:
        """
        Check if the remote store is available and responding.
        Returns True if available, False otherwise.
        """
        try:
            self.health_check()
            return True
        except RemoteTransportError as e:
            logger.warning(f"Remote store connection failed - server may be down: {e}")
            return False
        except RemoteServerError as e:
            logger.warning(f"Remote store health check failed: {e}")
            logger.debug(f"Health check response body: {e.body}")
            return False

    def test_connection(self) -> Dict[str, Any]:
        """Test connection to the remote store"""
        try:
            self.health_check()
            return {
                'connected': True,
                'base_url': self.base_url,
                'status': 'Connected successfully',
            }
        except RemoteServerError as e:
            return {'connected': False, 'base_url': self.base_url, 'status': str(e)}
        except RemoteTransportError as e:
            return {'connected': False, 'base_url': self.base_url, 'status': f'Connection error: {e}'}

    # ========================================================================
    # HELPERS
    # ========================================================================

    def _request(self, method: str, url: str, timeout: float = None, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=timeout or self.timeout, **kwargs)
        except requests.exceptions.Timeout as e:
            raise RemoteTransportError(f"Timeout calling remote store: {method} {url}") from e
        except requests.exceptions.ConnectionError as e:
            raise RemoteTransportError(f"Could not connect to remote store: {method} {url}") from e
        except requests.exceptions.RequestException as e:
            raise RemoteTransportError(f"Remote store request failed: {method} {url}") from e

    @staticmethod
    def _json(response: requests.Response) -> Optional[Any]:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            logger.debug(f"Non-JSON response body from remote store: {response.text[:200]}")
            return None

    def _matched_nothing(self, response: requests.Response) -> bool:
        # With return=representation an empty array means the id filter matched no row
        body = self._json(response)
        return isinstance(body, list) and len(body) == 0

    def _conflict_snapshot(self, response: requests.Response) -> Dict[str, Any]:
        body = self._json(response)
        if isinstance(body, list):
            body = body[0] if body else None
        if not isinstance(body, dict):
            return {}
        return body
