import logging

from rest_framework import viewsets, status
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from .exceptions import AlreadyRunning, NoNetwork, OperationNotFound, QueueStorageError
from .models import RemoteStoreConfig, SyncQueue
from .queueManager import SyncQueueManager
from .remoteClient import RemoteStoreClient
from .serializers import RemoteStoreConfigSerializer, SyncQueueDetailSerializer, SyncQueueSerializer
from .tasksUtils import get_sync_service

logger = logging.getLogger(__name__)


def sync_error_response(error):
    """Map engine errors onto HTTP responses"""
    if isinstance(error, NoNetwork):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(error, AlreadyRunning):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, OperationNotFound):
        code = status.HTTP_404_NOT_FOUND
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return Response({'error': str(error)}, status=code)


class RemoteStoreConfigViewSet(viewsets.ModelViewSet):
    queryset = RemoteStoreConfig.objects.all()
    serializer_class = RemoteStoreConfigSerializer
    permission_classes = [IsAuthenticated]

    @action(detail=True, methods=['post'])
    def test_connection(self, request, pk=None):
        """Test connection to the remote store"""
        config = self.get_object()
        try:
            client = RemoteStoreClient.from_config(config.name)
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(client.test_connection())


class SyncQueueViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = SyncQueue.objects.all()
    permission_classes = [IsAuthenticated]

    def get_serializer_class(self):
        if self.action == 'retrieve':
            return SyncQueueDetailSerializer
        return SyncQueueSerializer

    def get_queryset(self):
        queryset = super().get_queryset()
        for field in ('status', 'entity_type', 'entity_id', 'operation_type'):
            value = self.request.query_params.get(field)
            if value:
                queryset = queryset.filter(**{field: value})
        return queryset

    @action(detail=False, methods=['get'])
    def statistics(self, request):
        """Get queue statistics"""
        try:
            stats = SyncQueueManager().get_statistics()
        except QueueStorageError as e:
            return sync_error_response(e)
        return Response(stats)

    @action(detail=True, methods=['post'])
    def requeue(self, request, pk=None):
        """Requeue an abandoned item"""
        queue_item = self.get_object()
        try:
            requeued = SyncQueueManager().requeue(queue_item.id)
        except QueueStorageError as e:
            return sync_error_response(e)

        if requeued:
            return Response({'status': 'requeued'})
        return Response(
            {'error': 'Only abandoned items can be requeued'},
            status=status.HTTP_400_BAD_REQUEST
        )


class SyncOperationViewSet(viewsets.ViewSet):
    permission_classes = [IsAuthenticated]

    @action(detail=False, methods=['get'])
    def status(self, request):
        """Get sync status"""
        check_network = request.query_params.get('check_network', 'true').lower() != 'false'
        try:
            sync_status = get_sync_service().get_status(check_network=check_network)
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        return Response(sync_status.to_dict())

    @action(detail=False, methods=['get'])
    def metrics(self, request):
        """Get the in-process sync counters"""
        try:
            return Response(get_sync_service().get_metrics())
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)

    @action(detail=False, methods=['post'])
    def sync_now(self, request):
        """Run one batch immediately"""
        try:
            result = get_sync_service().sync_now()
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        except (NoNetwork, AlreadyRunning, QueueStorageError) as e:
            logger.warning(f"Manual sync rejected: {e}")
            return sync_error_response(e)
        return Response(result.to_dict())

    @action(detail=False, methods=['post'])
    def start(self, request):
        """Start the in-process sync loop"""
        try:
            get_sync_service().start()
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        except AlreadyRunning as e:
            return sync_error_response(e)
        return Response({'status': 'started'})

    @action(detail=False, methods=['post'])
    def stop(self, request):
        """Stop the in-process sync loop, letting an in-flight batch finish"""
        try:
            get_sync_service().stop()
        except ValueError as e:
            return Response({'error': str(e)}, status=status.HTTP_503_SERVICE_UNAVAILABLE)
        return Response({'status': 'stopped'})
