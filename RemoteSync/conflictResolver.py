"""
Conflict resolution for writes the remote store refused with HTTP 409.

The resolver is a pure decision function: it never talks to the remote store,
it only turns (operation, remote snapshot) into an action that the sync
service executes.
"""

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any, Dict, Optional

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .syncTypes import SyncOperation

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=dt_timezone.utc)

# Remote columns that carry the row's last-modified time, in lookup order
REMOTE_TIMESTAMP_FIELDS = ('updated_at',)


class ConflictStrategy(enum.Enum):
    LAST_WRITE_WINS = 'last_write_wins'
    CLIENT_WINS = 'client_wins'
    SERVER_WINS = 'server_wins'
    MANUAL = 'manual'

    @classmethod
    def from_name(cls, name) -> 'ConflictStrategy':
        if isinstance(name, cls):
            return name
        try:
            return cls(str(name).lower())
        except ValueError:
            raise ValueError(f"Unknown conflict strategy: {name}")


class ActionKind(enum.Enum):
    UPDATE_ENTITY = 'update_entity'
    SKIP_OPERATION = 'skip_operation'
    CREATE_ENTITY = 'create_entity'
    DELETE_ENTITY = 'delete_entity'
    MANUAL_RESOLUTION_NEEDED = 'manual_resolution_needed'


@dataclass(frozen=True)
class ConflictResolutionAction:
    """Transient decision, consumed immediately by the sync service"""
    kind: ActionKind
    payload: Optional[Dict[str, Any]] = field(default=None)

    @classmethod
    def update(cls, payload):
        return cls(ActionKind.UPDATE_ENTITY, dict(payload))

    @classmethod
    def skip(cls):
        return cls(ActionKind.SKIP_OPERATION)

    @classmethod
    def create(cls, payload):
        return cls(ActionKind.CREATE_ENTITY, dict(payload))

    @classmethod
    def delete(cls):
        return cls(ActionKind.DELETE_ENTITY)

    @classmethod
    def manual(cls):
        return cls(ActionKind.MANUAL_RESOLUTION_NEEDED)


def remote_updated_at(remote_snapshot: Optional[Dict[str, Any]]) -> datetime:
    """
    Extract the remote row's last-modified time.

    Missing or unparseable values count as the epoch, so any local write wins
    against a row that carries no timestamp. Naive values are taken as UTC.
    """
    if not isinstance(remote_snapshot, dict):
        return EPOCH

    for field_name in REMOTE_TIMESTAMP_FIELDS:
        value = remote_snapshot.get(field_name)
        if isinstance(value, datetime):
            parsed = value
        elif isinstance(value, str):
            try:
                parsed = parse_datetime(value.strip())
            except ValueError:
                parsed = None
        else:
            parsed = None

        if parsed is not None:
            if timezone.is_naive(parsed):
                parsed = timezone.make_aware(parsed, dt_timezone.utc)
            return parsed
    return EPOCH


class ConflictResolver:
    """Decides what to do with a refused write, using one strategy chosen at construction"""

    def __init__(self, strategy=ConflictStrategy.LAST_WRITE_WINS):
        self.strategy = ConflictStrategy.from_name(strategy)

    def resolve_create_conflict(self, operation: SyncOperation,
                                remote_snapshot: Dict[str, Any], payload: Dict[str, Any] = None
                                ) -> ConflictResolutionAction:
        """Resolve a create refused because the row already exists remotely.

        An UPDATE_ENTITY result means: overwrite the row that already exists.
        """
        return self._resolve('create', operation, remote_snapshot, payload)

    def resolve_update_conflict(self, operation: SyncOperation,
                                remote_snapshot: Dict[str, Any], payload: Dict[str, Any] = None
                                ) -> ConflictResolutionAction:
        """Resolve an update refused because the remote row changed underneath us"""
        return self._resolve('update', operation, remote_snapshot, payload)

    def _resolve(self, kind, operation, remote_snapshot, payload):
        payload = operation.data if payload is None else payload

        if self.strategy is ConflictStrategy.CLIENT_WINS:
            return ConflictResolutionAction.update(payload)
        if self.strategy is ConflictStrategy.SERVER_WINS:
            return ConflictResolutionAction.skip()

        # LAST_WRITE_WINS, and MANUAL which has no human path yet and falls back to it
        return self._last_write_wins(kind, operation, remote_snapshot, payload)

    def _last_write_wins(self, kind, operation, remote_snapshot, payload):
        remote_time = remote_updated_at(remote_snapshot)

        # Ties keep the remote state
        if operation.timestamp_utc > remote_time:
            logger.info(
                f"Resolving {kind} conflict (last-write-wins): operation {operation.id} is newer "
                f"({operation.timestamp_utc.isoformat()} > {remote_time.isoformat()}), overwriting remote"
            )
            return ConflictResolutionAction.update(payload)

        logger.info(
            f"Resolving {kind} conflict (last-write-wins): remote {operation.entity_type} "
            f"{operation.entity_id} is as new or newer, skipping operation {operation.id}"
        )
        return ConflictResolutionAction.skip()
