from django.urls import include, path
from rest_framework.routers import DefaultRouter
from rest_framework_simplejwt.views import TokenRefreshView

from .views import (
    AuthViewSet,
    CategoryViewSet,
    NotificationViewSet,
    ProjectViewSet,
    SubtaskViewSet,
    TaskViewSet,
    UserGroupViewSet,
    UserViewSet,
    health,
    preferences,
)

router = DefaultRouter()
router.register(r"auth", AuthViewSet, basename="auth")
router.register(r"tasks", TaskViewSet, basename="tasks")
router.register(r"subtasks", SubtaskViewSet, basename="subtasks")
router.register(r"projects", ProjectViewSet, basename="projects")
router.register(r"categories", CategoryViewSet, basename="categories")
router.register(r"groups", UserGroupViewSet, basename="groups")
router.register(r"users", UserViewSet, basename="users")
router.register(r"notifications", NotificationViewSet, basename="notifications")

urlpatterns = [
    path("health/", health, name="Health"),
    path("preferences/", preferences, name="preferences"),
    path("auth/refresh/", TokenRefreshView.as_view(), name="token-refresh"),
    path("", include(router.urls)),
]
