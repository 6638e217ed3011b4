"""
Plain value types passed between the queue, the service and the API layer.

`SyncOperation` is the unit of work; the rest are read-only projections that
are rebuilt on every request and never persisted.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from django.utils import timezone

ENTITY_TYPES = ('intervention', 'step', 'photo', 'client', 'user', 'task')
OPERATION_TYPES = ('create', 'update', 'delete')


@dataclass(frozen=True)
class SyncOperation:
    """One queued intent to replicate a local create/update/delete remotely."""
    entity_type: str
    entity_id: str
    operation_type: str
    data: Dict[str, Any] = field(default_factory=dict)
    dependencies: Tuple[str, ...] = ()
    timestamp_utc: datetime = field(default_factory=timezone.now)
    id: Optional[int] = None

    def __post_init__(self):
        if self.entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown entity type: {self.entity_type}")
        if self.operation_type not in OPERATION_TYPES:
            raise ValueError(f"Unknown operation type: {self.operation_type}")
        if timezone.is_naive(self.timestamp_utc):
            raise ValueError("timestamp_utc must be timezone-aware")
        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, 'dependencies', tuple(self.dependencies or ()))
        object.__setattr__(self, 'data', dict(self.data or {}))

    @classmethod
    def from_queue_item(cls, item) -> 'SyncOperation':
        return cls(
            id=item.id,
            entity_type=item.entity_type,
            entity_id=item.entity_id,
            operation_type=item.operation_type,
            data=item.data or {},
            dependencies=tuple(item.dependencies or ()),
            timestamp_utc=item.timestamp_utc,
        )

    @property
    def label(self) -> str:
        return f"{self.operation_type} {self.entity_type} {self.entity_id}"


@dataclass
class QueueMetrics:
    """Authoritative counts computed from the queue table."""
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    abandoned: int = 0
    total: int = 0
    oldest_pending_age_seconds: Optional[float] = None
    average_retry_count: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncResult:
    """Outcome of one batch."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    duration_ms: int = 0
    errors: List[str] = field(default_factory=list)

    @property
    def fully_successful(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SyncStatus:
    """Snapshot exposed to the status endpoint."""
    is_running: bool
    last_sync_time: Optional[datetime]
    pending_count: int
    failed_count: int
    abandoned_count: int
    total_count: int
    network_available: bool
    recent_errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        if self.last_sync_time:
            data['last_sync_time'] = self.last_sync_time.isoformat()
        return data
