"""Remote sync exceptions."""


class SyncError(Exception):
    """Base exception for remote sync errors."""

    pass


# ============================================================================
# QUEUE ERRORS
# ============================================================================

class QueueStorageError(SyncError):
    """Raised when the sync queue storage cannot be read or written."""

    pass


class OperationNotFound(SyncError):
    """Raised when a queue item id does not exist."""

    def __init__(self, operation_id):
        super().__init__(f"Operation not found: {operation_id}")
        self.operation_id = operation_id


# ============================================================================
# SERVICE ERRORS
# ============================================================================

class AlreadyRunning(SyncError):
    """Raised when the background service is started twice."""

    def __init__(self, message: str = "Sync service already running"):
        super().__init__(message)


class BatchInProgress(AlreadyRunning):
    """Raised when a sync is requested while another batch is in flight."""

    def __init__(self, message: str = "A sync batch is already in progress"):
        super().__init__(message)


class NoNetwork(SyncError):
    """Raised when the remote store health check fails before a sync."""

    def __init__(self, message: str = "No network connectivity"):
        super().__init__(message)


class DependencyMissing(SyncError):
    """Raised when a dependency of an operation does not exist remotely yet."""

    def __init__(self, dependency_id: str):
        super().__init__(f"Dependency missing: {dependency_id}")
        self.dependency_id = dependency_id


# ============================================================================
# REMOTE STORE ERRORS
# ============================================================================

class RemoteStoreError(SyncError):
    """Base exception for remote store responses the engine must handle."""

    pass


class RemoteTransportError(RemoteStoreError):
    """Raised when the remote store cannot be reached (connection, timeout)."""

    pass


class RemoteConflict(RemoteStoreError):
    """Raised on HTTP 409, carries the remote's current snapshot."""

    def __init__(self, existing: dict = None):
        super().__init__("Remote store reported a conflict")
        self.existing = existing or {}


class RemoteNotFound(RemoteStoreError):
    """Raised when the remote entity does not exist."""

    def __init__(self, message: str = "Remote entity not found"):
        super().__init__(message)


class RemoteServerError(RemoteStoreError):
    """Raised on any other non-2xx response.

    The response body is kept on the exception for debug logging only and is
    never part of the message, so it cannot leak into status reporting.
    """

    def __init__(self, status_code: int, body: str = ''):
        super().__init__(f"Remote store returned HTTP {status_code}")
        self.status_code = status_code
        self.body = body
