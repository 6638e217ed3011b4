# models.py

from django.db import models
from django.utils import timezone


class RemoteStoreConfig(models.Model):
    """Configuration for the remote store connection"""
    CONFLICT_STRATEGIES = [
        ('last_write_wins', 'Last Write Wins'),
        ('client_wins', 'Client Wins'),
        ('server_wins', 'Server Wins'),
        ('manual', 'Manual'),
    ]

    name = models.CharField(max_length=100, unique=True)
    base_url = models.URLField(help_text="Remote store base URL (without /rest/v1)")
    api_key = models.CharField(max_length=500, help_text="Static API key, sent as apikey and bearer token")
    timeout = models.IntegerField(default=30, help_text="Request timeout in seconds")
    conflict_strategy = models.CharField(max_length=20, choices=CONFLICT_STRATEGIES,
                                         default='last_write_wins')
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Remote Store Configuration"
        verbose_name_plural = "Remote Store Configurations"

    def __str__(self):
        return f"{self.name} - {self.base_url}"


class SyncQueue(models.Model):
    """Durable log of local mutations waiting to be replicated remotely"""
    STATUS_PENDING = 'pending'
    STATUS_PROCESSING = 'processing'
    STATUS_COMPLETED = 'completed'
    STATUS_ABANDONED = 'abandoned'

    STATUS_CHOICES = [
        (STATUS_PENDING, 'Pending'),
        (STATUS_PROCESSING, 'Processing'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_ABANDONED, 'Abandoned'),
    ]
    TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_ABANDONED)

    OPERATION_CREATE = 'create'
    OPERATION_UPDATE = 'update'
    OPERATION_DELETE = 'delete'

    OPERATION_CHOICES = [
        (OPERATION_CREATE, 'Create'),
        (OPERATION_UPDATE, 'Update'),
        (OPERATION_DELETE, 'Delete'),
    ]

    ENTITY_TYPES = [
        ('intervention', 'Intervention'),
        ('step', 'Step'),
        ('photo', 'Photo'),
        ('client', 'Client'),
        ('user', 'User'),
        ('task', 'Task'),
    ]

    # Operation payload (immutable once enqueued)
    id = models.AutoField(primary_key=True)
    operation_type = models.CharField(max_length=10, choices=OPERATION_CHOICES)
    entity_type = models.CharField(max_length=20, choices=ENTITY_TYPES)
    entity_id = models.CharField(max_length=100)
    data = models.JSONField(default=dict, blank=True, help_text="Entity snapshot sent to the remote store")
    dependencies = models.JSONField(default=list, blank=True,
                                    help_text="Entity ids that must exist remotely first")
    timestamp_utc = models.DateTimeField(help_text="Local mutation time, the local write clock")

    # Status tracking (queue-managed)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_PENDING)
    retry_count = models.IntegerField(default=0)
    max_retries = models.IntegerField(default=5)
    error_message = models.TextField(blank=True, null=True)
    scheduled_at = models.DateTimeField(default=timezone.now,
                                        help_text="Earliest time the item may be claimed")
    last_attempt_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    # Timestamps
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'sync_queue'
        ordering = ['timestamp_utc', 'id']
        indexes = [
            models.Index(fields=['status', 'created_at'], name='idx_sync_queue_status_created'),
            models.Index(fields=['entity_type', 'entity_id', 'created_at'],
                         name='idx_sync_queue_entity_created'),
        ]
        verbose_name = "Sync Queue Item"
        verbose_name_plural = "Sync Queue Items"

    def __str__(self):
        return f"{self.operation_type} {self.entity_type} {self.entity_id} - {self.status}"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def can_retry(self):
        return self.retry_count < self.max_retries and not self.is_terminal


class SyncLog(models.Model):
    """Detailed logging for sync operations"""
    queue_item = models.ForeignKey(SyncQueue, on_delete=models.CASCADE, related_name='logs')
    level = models.CharField(max_length=10, choices=[
        ('DEBUG', 'Debug'),
        ('INFO', 'Info'),
        ('WARNING', 'Warning'),
        ('ERROR', 'Error'),
    ], default='INFO')
    message = models.TextField()
    details = models.JSONField(default=dict, blank=True)
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-timestamp']
        verbose_name = "Sync Log"
        verbose_name_plural = "Sync Logs"
