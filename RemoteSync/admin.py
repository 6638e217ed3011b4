from django.contrib import admin
from django.contrib import messages
from django.utils.html import format_html

from .exceptions import QueueStorageError
from .models import RemoteStoreConfig, SyncQueue, SyncLog
from .queueManager import SyncQueueManager
from .remoteClient import RemoteStoreClient
from .tasks import process_sync_queue_task


@admin.register(RemoteStoreConfig)
class RemoteStoreConfigAdmin(admin.ModelAdmin):
    list_display = ['name', 'base_url', 'conflict_strategy', 'is_active', 'connection_status']
    list_filter = ['conflict_strategy', 'is_active']
    search_fields = ['name', 'base_url']
    readonly_fields = ['created_at', 'updated_at']

    actions = ['test_connection']

    def connection_status(self, obj):
        if obj.is_active:
            return format_html('<span style="color: green;">●</span> Active')
        return format_html('<span style="color: red;">●</span> Inactive')
    connection_status.short_description = 'Status'

    def test_connection(self, request, queryset):
        results = []
        for config in queryset:
            try:
                result = RemoteStoreClient.from_config(config.name).test_connection()
            except ValueError as e:
                results.append(f"{config.name}: Error - {e}")
                continue
            if result['connected']:
                results.append(f"{config.name}: Connected")
            else:
                results.append(f"{config.name}: Failed - {result['status']}")

        messages.info(request, "\n".join(results))
    test_connection.short_description = "Test remote store connection"


class SyncLogInline(admin.TabularInline):
    model = SyncLog
    extra = 0
    can_delete = False
    readonly_fields = ['level', 'message', 'details', 'timestamp']


@admin.register(SyncQueue)
class SyncQueueAdmin(admin.ModelAdmin):
    list_display = ['id', 'operation_type', 'entity_type', 'entity_id', 'status', 'retry_count',
                    'timestamp_utc', 'scheduled_at']
    list_filter = ['entity_type', 'status', 'operation_type', 'created_at']
    search_fields = ['entity_type', 'entity_id', 'error_message']
    readonly_fields = ['created_at', 'updated_at', 'completed_at', 'last_attempt_at']
    inlines = [SyncLogInline]

    actions = ['requeue_items', 'abandon_items', 'process_batch']

    def requeue_items(self, request, queryset):
        queue = SyncQueueManager()
        try:
            count = sum(1 for item in queryset.filter(status=SyncQueue.STATUS_ABANDONED)
                        if queue.requeue(item.id))
        except QueueStorageError as e:
            messages.error(request, f"Requeue failed: {e}")
            return
        messages.success(request, f"Requeued {count} items")
    requeue_items.short_description = "Requeue selected abandoned items"

    def abandon_items(self, request, queryset):
        queue = SyncQueueManager()
        count = 0
        try:
            for item in queryset.filter(status=SyncQueue.STATUS_PENDING):
                queue.mark_abandoned(item.id, f"Abandoned from admin by {request.user}")
                count += 1
        except QueueStorageError as e:
            messages.error(request, f"Abandon failed: {e}")
            return
        messages.success(request, f"Abandoned {count} items")
    abandon_items.short_description = "Abandon selected pending items"

    def process_batch(self, request, queryset):
        pending_count = queryset.filter(status=SyncQueue.STATUS_PENDING).count()
        if pending_count > 0:
            process_sync_queue_task.delay()
            messages.success(request, "Started processing the next sync batch")
        else:
            messages.warning(request, "No pending items to process")
    process_batch.short_description = "Process next sync batch"


@admin.register(SyncLog)
class SyncLogAdmin(admin.ModelAdmin):
    list_display = ['queue_item', 'level', 'message_preview', 'timestamp']
    list_filter = ['level', 'timestamp']
    search_fields = ['message', 'queue_item__entity_type', 'queue_item__entity_id']
    readonly_fields = ['timestamp']

    def message_preview(self, obj):
        return obj.message[:100] + "..." if len(obj.message) > 100 else obj.message
    message_preview.short_description = 'Message'
