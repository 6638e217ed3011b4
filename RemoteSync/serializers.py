from rest_framework import serializers
from .models import RemoteStoreConfig, SyncQueue, SyncLog


class RemoteStoreConfigSerializer(serializers.ModelSerializer):
    class Meta:
        model = RemoteStoreConfig
        fields = '__all__'
        extra_kwargs = {'api_key': {'write_only': True}}


class SyncLogSerializer(serializers.ModelSerializer):
    class Meta:
        model = SyncLog
        fields = ['id', 'level', 'message', 'details', 'timestamp']


class SyncQueueSerializer(serializers.ModelSerializer):
    class Meta:
        model = SyncQueue
        fields = '__all__'


class SyncQueueDetailSerializer(SyncQueueSerializer):
    logs = SyncLogSerializer(many=True, read_only=True)
