# RemoteSync/urls.py
from django.urls import path, include
from rest_framework.routers import DefaultRouter
from . import views

# DRF Router for API endpoints
router = DefaultRouter()
router.register(r'configs', views.RemoteStoreConfigViewSet)
router.register(r'queue', views.SyncQueueViewSet)
router.register(r'operations', views.SyncOperationViewSet, basename='sync-operations')

urlpatterns = [
    path('api/remote-sync/', include(router.urls)),
]
