import time

from django.core.management.base import BaseCommand, CommandError

from RemoteSync.exceptions import AlreadyRunning, NoNetwork, OperationNotFound, QueueStorageError
from RemoteSync.queueManager import SyncQueueManager
from RemoteSync.remoteClient import RemoteStoreClient
from RemoteSync.tasksUtils import build_sync_service


class Command(BaseCommand):
    help = 'Remote Sync Management Command'

    def add_arguments(self, parser):
        parser.add_argument(
            '--action',
            choices=['process', 'run', 'stats', 'test-connection', 'cleanup', 'reset-stuck', 'requeue'],
            required=True,
            help='Action to perform'
        )
        parser.add_argument(
            '--config',
            default='default',
            help='Remote store config name'
        )
        parser.add_argument(
            '--days',
            type=int,
            help='Retention in days for cleanup'
        )
        parser.add_argument(
            '--ids',
            nargs='+',
            type=int,
            help='Queue ids for requeue'
        )

    def handle(self, *args, **options):
        action = options['action']

        try:
            if action == 'process':
                self._process(options)
            elif action == 'run':
                self._run(options)
            elif action == 'stats':
                self._stats()
            elif action == 'test-connection':
                self._test_connection(options)
            elif action == 'cleanup':
                deleted = SyncQueueManager().cleanup_old_operations(options['days'])
                self.stdout.write(self.style.SUCCESS(f"Deleted {deleted} completed items"))
            elif action == 'reset-stuck':
                count = SyncQueueManager().reset_stuck_processing()
                self.stdout.write(self.style.SUCCESS(f"Reset {count} stuck items to pending"))
            elif action == 'requeue':
                self._requeue(options)
        except QueueStorageError as e:
            raise CommandError(f"Sync queue unavailable: {e}")
        except (OperationNotFound, ValueError) as e:
            raise CommandError(str(e))

    def _process(self, options):
        self.stdout.write('Processing one sync batch...')
        service = build_sync_service(options['config'])
        try:
            result = service.sync_now()
        except NoNetwork as e:
            raise CommandError(str(e))

        self.stdout.write(
            self.style.SUCCESS(
                f"Processed {result.processed} items: "
                f"{result.succeeded} succeeded, {result.failed} failed, {result.skipped} skipped"
            )
        )
        for error in result.errors:
            self.stdout.write(self.style.WARNING(f"  {error}"))

    def _run(self, options):
        service = build_sync_service(options['config'])
        try:
            service.start()
        except AlreadyRunning as e:
            raise CommandError(str(e))

        self.stdout.write(
            self.style.SUCCESS(f"Sync loop running every {service.interval}s, press Ctrl+C to stop")
        )
        try:
            while service.is_running:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stdout.write('Stopping, waiting for the current batch to finish...')
        finally:
            service.stop()

    def _stats(self):
        stats = SyncQueueManager().get_statistics()
        self.stdout.write('\n=== SYNC QUEUE STATISTICS ===')
        self.stdout.write(f"Total: {stats['total']}")
        self.stdout.write(f"Pending: {stats['pending']}")
        self.stdout.write(f"Processing: {stats['processing']}")
        self.stdout.write(f"Completed: {stats['completed']}")
        self.stdout.write(f"Awaiting retry: {stats['failed']}")
        self.stdout.write(f"Abandoned: {stats['abandoned']}")
        if stats['oldest_pending_age_seconds'] is not None:
            self.stdout.write(f"Oldest pending: {int(stats['oldest_pending_age_seconds'])}s")

        self.stdout.write('\n=== BY ENTITY TYPE ===')
        for entity_type, type_stats in stats['by_entity_type'].items():
            if type_stats['total'] > 0:
                self.stdout.write(
                    f"{entity_type}: {type_stats['total']} "
                    f"(P:{type_stats.get('pending', 0)}, C:{type_stats.get('completed', 0)}, "
                    f"A:{type_stats.get('abandoned', 0)})"
                )

    def _test_connection(self, options):
        result = RemoteStoreClient.from_config(options['config']).test_connection()
        if result['connected']:
            self.stdout.write(self.style.SUCCESS(f"✓ Connected to remote store at {result['base_url']}"))
        else:
            self.stdout.write(self.style.ERROR(f"✗ Connection failed: {result['status']}"))

    def _requeue(self, options):
        if not options['ids']:
            raise CommandError('--ids is required for requeue')

        queue = SyncQueueManager()
        for operation_id in options['ids']:
            if queue.requeue(operation_id):
                self.stdout.write(self.style.SUCCESS(f"Requeued {operation_id}"))
            else:
                self.stdout.write(self.style.WARNING(f"{operation_id} is not abandoned, skipped"))
