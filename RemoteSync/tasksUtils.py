# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

import logging
import threading
from typing import Any, Tuple

from django.conf import settings

logger = logging.getLogger(__name__)

DEFAULT_SYNC_SETTINGS = {
    'SYNC_INTERVAL': 30,
    'BATCH_SIZE': 10,
    'MAX_RETRIES': 5,
    'RETRY_BASE_DELAY': 30,
    'RETRY_MAX_DELAY': 900,
    'REQUEST_TIMEOUT': 30,
    'HEALTH_CHECK_TIMEOUT': 10,
    'CONFLICT_STRATEGY': 'last_write_wins',
    'RECENT_ERRORS': 5,
    'STUCK_PROCESSING_AFTER': 600,
    'COMPLETED_RETENTION_DAYS': 7,
    'AUTOSTART': False,
}

_service = None
_service_lock = threading.Lock()


def get_sync_setting(name: str) -> Any:
    """
    Read a key of the REMOTE_SYNC settings dict, falling back to the default.

    Args:
        name (str): key, e.g. 'BATCH_SIZE'

    Returns:
        The configured value
    """
    configured = getattr(settings, 'REMOTE_SYNC', None) or {}
    if name in configured:
        return configured[name]
    return DEFAULT_SYNC_SETTINGS[name]


def split_dependency(dependency: str, default_type: str = None) -> Tuple[str, str]:
    """
    Split a dependency reference into (entity_type, entity_id).

    Dependencies are either a bare entity id, which refers to the operation's
    own entity type, or a qualified 'entity_type:entity_id' string.

    Args:
        dependency (str): the reference stored on the operation
        default_type (str): entity type used for bare ids

    Returns:
        tuple: (entity_type or default_type, entity_id)
    """
    from .syncTypes import ENTITY_TYPES

    dependency = str(dependency).strip()
    if ':' in dependency:
        prefix, entity_id = dependency.split(':', 1)
        if prefix.lower() in ENTITY_TYPES:
            return prefix.lower(), entity_id
    return default_type, dependency


def build_sync_service(config_name: str = 'default'):
    """Build a BackgroundSyncService wired from settings and the database config"""
    from .conflictResolver import ConflictResolver, ConflictStrategy
    from .queueManager import SyncQueueManager
    from .remoteClient import RemoteStoreClient
    from .syncManager import BackgroundSyncService

    client = RemoteStoreClient.from_config(config_name)
    strategy = client.conflict_strategy or get_sync_setting('CONFLICT_STRATEGY')

    return BackgroundSyncService(
        queue=SyncQueueManager(),
        client=client,
        resolver=ConflictResolver(ConflictStrategy.from_name(strategy)),
        interval=get_sync_setting('SYNC_INTERVAL'),
        batch_size=get_sync_setting('BATCH_SIZE'),
        max_recent_errors=get_sync_setting('RECENT_ERRORS'),
    )


def get_sync_service():
    """Return the process-wide sync service, building it on first use"""
    global _service
    with _service_lock:
        if _service is None:
            _service = build_sync_service()
            logger.info("Remote sync service initialised")
        return _service


def reset_sync_service():
    """Stop and drop the process-wide service (used on shutdown and in tests)"""
    global _service
    with _service_lock:
        service, _service = _service, None
    if service is not None:
        service.stop()
