from __future__ import annotations

import logging

from django.contrib.auth import authenticate, get_user_model
from django.db.models import Prefetch, Q
from drf_yasg import openapi
from drf_yasg.utils import swagger_auto_schema
from rest_framework import filters, mixins, status, viewsets
from rest_framework.decorators import action, api_view, permission_classes
from rest_framework.permissions import AllowAny
from rest_framework.response import Response
from rest_framework_simplejwt.tokens import RefreshToken

from . import administration, services
from .filters import ProjectFilter, TaskFilter
from .models import Category, Project, ProjectMembership, Task, TaskAssignee, TaskMember, UserGroup
from .permissions import IsActiveUser, IsAdminOrReadOnly
from .serializers import (
    AuditLogSerializer,
    CategorySerializer,
    CategoryUpdateSerializer,
    GroupIdSerializer,
    LoginSerializer,
    NotificationSerializer,
    ProjectCreateSerializer,
    ProjectMembershipCreateSerializer,
    ProjectMembershipSerializer,
    ProjectSerializer,
    ProjectUpdateSerializer,
    SubtaskCreateSerializer,
    SubtaskSerializer,
    SubtaskUpdateSerializer,
    TaskDetailSerializer,
    TaskSerializer,
    TaskWriteSerializer,
    UserGroupSerializer,
    UserGroupWriteSerializer,
    UserIdSerializer,
    UserIdsSerializer,
    UserInviteSerializer,
    UserPreferenceSerializer,
    UserPublicSerializer,
    UserRoleSerializer,
)
from .visibility import Principal, visible_projects, visible_tasks

logger = logging.getLogger(__name__)
User = get_user_model()

SEARCH_LIMIT = 20


@swagger_auto_schema(method="get", operation_summary="Health check", tags=["health"])
@api_view(["GET"])
@permission_classes([AllowAny])
# PUBLIC_INTERFACE
def health(request):
    """Simple health check endpoint."""
    return Response({"message": "Server is up!"})


@swagger_auto_schema(method="get", responses={200: UserPreferenceSerializer}, tags=["preferences"])
@swagger_auto_schema(method="patch", request_body=UserPreferenceSerializer, tags=["preferences"])
@api_view(["GET", "PATCH"])
@permission_classes([IsActiveUser])
# PUBLIC_INTERFACE
def preferences(request):
    """Read or partially update the caller's UI preferences."""
    if request.method == "GET":
        return Response(services.get_preferences(actor=request.user))
    serializer = UserPreferenceSerializer(data=request.data, partial=True)
    serializer.is_valid(raise_exception=True)
    return Response(services.save_preferences(actor=request.user, **serializer.validated_data))


class AuthViewSet(viewsets.ViewSet):
    """Authentication endpoints: password login issuing JWTs, and the current user."""

    permission_classes = [AllowAny]

    @swagger_auto_schema(
        request_body=LoginSerializer,
        responses={200: "Tokens", 401: "Invalid credentials"},
        operation_summary="Login user",
        tags=["auth"],
    )
    @action(detail=False, methods=["post"], url_path="login")
    # PUBLIC_INTERFACE
    def login(self, request):
        """Login with username/password and return JWT tokens."""
        serializer = LoginSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        user = authenticate(
            request=request,
            username=serializer.validated_data["username"],
            password=serializer.validated_data["password"],
        )
        if not user:
            logger.info("Failed login for username %r", serializer.validated_data["username"])
            return Response({"detail": "Invalid credentials."}, status=status.HTTP_401_UNAUTHORIZED)

        refresh = RefreshToken.for_user(user)
        return Response(
            {
                "user": UserPublicSerializer(user).data,
                "refresh": str(refresh),
                "access": str(refresh.access_token),
            }
        )

    @swagger_auto_schema(responses={200: UserPublicSerializer}, operation_summary="Current user", tags=["auth"])
    @action(detail=False, methods=["get"], url_path="me", permission_classes=[IsActiveUser])
    # PUBLIC_INTERFACE
    def me(self, request):
        return Response(UserPublicSerializer(request.user).data)


class TaskViewSet(viewsets.ModelViewSet):
    """Tasks. Every read and write is bounded by the caller's visibility."""

    lookup_value_regex = r"\d+"
    serializer_class = TaskSerializer
    permission_classes = [IsActiveUser]
    filterset_class = TaskFilter
    ordering_fields = ["created_at", "updated_at", "due_date", "priority", "status"]
    ordering = ["-updated_at"]

    @staticmethod
    def _base_queryset():
        return Task.objects.select_related("created_by", "assignee", "category").prefetch_related(
            Prefetch("additional_assignees", queryset=TaskAssignee.objects.select_related("user")),
            Prefetch("members", queryset=TaskMember.objects.select_related("user")),
            "group_assignments__group",
        )

    def get_queryset(self):
        return visible_tasks(Principal.from_user(self.request.user), self._base_queryset())

    def get_serializer_class(self):
        if self.action == "retrieve":
            return TaskDetailSerializer
        return TaskSerializer

    def _detail(self, task_id, status_code=status.HTTP_200_OK):
        task = self.get_queryset().filter(pk=task_id).first()
        if task is None:
            # The write removed the caller's own access to the task.
            return Response(status=status.HTTP_204_NO_CONTENT)
        return Response(TaskDetailSerializer(task).data, status=status_code)

    @swagger_auto_schema(request_body=TaskWriteSerializer, responses={201: TaskDetailSerializer}, tags=["tasks"])
    # PUBLIC_INTERFACE
    def create(self, request, *args, **kwargs):
        """Create a task. The caller becomes its creator."""
        serializer = TaskWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        task = services.create_task(actor=request.user, **serializer.validated_data)
        return self._detail(task.pk, status.HTTP_201_CREATED)

    @swagger_auto_schema(request_body=TaskWriteSerializer, responses={200: TaskDetailSerializer}, tags=["tasks"])
    # PUBLIC_INTERFACE
    def update(self, request, *args, **kwargs):
        """Edit task fields. Each changed field is written to the audit trail."""
        serializer = TaskWriteSerializer(data=request.data, partial=kwargs.pop("partial", False))
        serializer.is_valid(raise_exception=True)
        task = services.update_task(actor=request.user, task_id=kwargs["pk"], changes=dict(serializer.validated_data))
        return self._detail(task.pk)

    # PUBLIC_INTERFACE
    def destroy(self, request, *args, **kwargs):
        services.delete_task(actor=request.user, task_id=kwargs["pk"])
        return Response(status=status.HTTP_204_NO_CONTENT)

    @swagger_auto_schema(
        manual_parameters=[openapi.Parameter("q", openapi.IN_QUERY, type=openapi.TYPE_STRING)],
        responses={200: TaskSerializer(many=True)},
        operation_summary="Search visible tasks",
        tags=["tasks"],
    )
    @action(detail=False, methods=["get"], url_path="search")
    # PUBLIC_INTERFACE
    def search(self, request):
        """Search title and description of visible tasks, most recently updated first."""
        query = request.query_params.get("q", "").strip()
        queryset = self.get_queryset()
        if query:
            queryset = queryset.filter(Q(title__icontains=query) | Q(description__icontains=query))
        tasks = queryset.order_by("-updated_at")[:SEARCH_LIMIT]
        return Response(TaskSerializer(tasks, many=True).data)

    @swagger_auto_schema(responses={200: AuditLogSerializer(many=True)}, operation_summary="Task audit trail", tags=["tasks"])
    @action(detail=True, methods=["get"], url_path="audit")
    # PUBLIC_INTERFACE
    def audit(self, request, pk=None):
        task = self.get_object()
        logs = task.audit_logs.select_related("actor").order_by("-created_at", "-id")
        return Response(AuditLogSerializer(logs, many=True).data)

    @swagger_auto_schema(request_body=UserIdsSerializer, operation_summary="Add assignees", tags=["tasks"])
    @action(detail=True, methods=["post"], url_path="assignees")
    # PUBLIC_INTERFACE
    def add_assignees(self, request, pk=None):
        """Add additional assignees; each new one is notified."""
        serializer = UserIdsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        services.add_task_assignees(actor=request.user, task_id=pk, users=serializer.validated_data["users"])
        return self._detail(pk)

    @swagger_auto_schema(operation_summary="Remove an assignee", tags=["tasks"])
    @action(detail=True, methods=["delete"], url_path=r"assignees/(?P<user_id>\d+)")
    # PUBLIC_INTERFACE
    def remove_assignee(self, request, pk=None, user_id=None):
        services.remove_task_assignee(actor=request.user, task_id=pk, user_id=int(user_id))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @swagger_auto_schema(request_body=UserIdSerializer, operation_summary="Add collaborator", tags=["tasks"])
    @action(detail=True, methods=["post"], url_path="members")
    # PUBLIC_INTERFACE
    def add_member(self, request, pk=None):
        serializer = UserIdSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, created = services.add_task_member(actor=request.user, task_id=pk, user=serializer.validated_data["user"])
        return self._detail(pk, status.HTTP_201_CREATED if created else status.HTTP_200_OK)

    @swagger_auto_schema(operation_summary="Remove collaborator", tags=["tasks"])
    @action(detail=True, methods=["delete"], url_path=r"members/(?P<user_id>\d+)")
    # PUBLIC_INTERFACE
    def remove_member(self, request, pk=None, user_id=None):
        services.remove_task_member(actor=request.user, task_id=pk, user_id=int(user_id))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @swagger_auto_schema(request_body=GroupIdSerializer, operation_summary="Assign to group", tags=["tasks"])
    @action(detail=True, methods=["post"], url_path="groups")
    # PUBLIC_INTERFACE
    def assign_group(self, request, pk=None):
        serializer = GroupIdSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, created = services.assign_task_group(actor=request.user, task_id=pk, group=serializer.validated_data["group"])
        return self._detail(pk, status.HTTP_201_CREATED if created else status.HTTP_200_OK)

    @swagger_auto_schema(operation_summary="Unassign group", tags=["tasks"])
    @action(detail=True, methods=["delete"], url_path=r"groups/(?P<group_id>\d+)")
    # PUBLIC_INTERFACE
    def unassign_group(self, request, pk=None, group_id=None):
        services.unassign_task_group(actor=request.user, task_id=pk, group_id=int(group_id))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @swagger_auto_schema(request_body=SubtaskCreateSerializer, responses={201: SubtaskSerializer}, tags=["tasks"])
    @action(detail=True, methods=["post"], url_path="subtasks")
    # PUBLIC_INTERFACE
    def add_subtask(self, request, pk=None):
        serializer = SubtaskCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        subtask = services.create_subtask(actor=request.user, task_id=pk, title=serializer.validated_data["title"])
        return Response(SubtaskSerializer(subtask).data, status=status.HTTP_201_CREATED)


class SubtaskViewSet(viewsets.ViewSet):
    """Toggle or delete a subtask; access follows its parent task."""

    lookup_value_regex = r"\d+"
    permission_classes = [IsActiveUser]

    @swagger_auto_schema(request_body=SubtaskUpdateSerializer, responses={200: SubtaskSerializer}, tags=["tasks"])
    # PUBLIC_INTERFACE
    def partial_update(self, request, pk=None):
        serializer = SubtaskUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        subtask = services.set_subtask_completed(
            actor=request.user, subtask_id=pk, completed=serializer.validated_data["completed"]
        )
        return Response(SubtaskSerializer(subtask).data)

    # PUBLIC_INTERFACE
    def destroy(self, request, pk=None):
        services.delete_subtask(actor=request.user, subtask_id=pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class ProjectViewSet(viewsets.ModelViewSet):
    """Projects and rocks. Listing returns only projects visible to the caller."""

    lookup_value_regex = r"\d+"
    serializer_class = ProjectSerializer
    permission_classes = [IsActiveUser]
    filterset_class = ProjectFilter
    ordering_fields = ["created_at", "title", "rock_number", "quarter"]
    ordering = ["owner_id", "rock_number", "id"]

    @staticmethod
    def _base_queryset():
        return Project.objects.select_related("owner").prefetch_related(
            Prefetch("memberships", queryset=ProjectMembership.objects.select_related("user").order_by("created_at"))
        )

    def get_queryset(self):
        return visible_projects(Principal.from_user(self.request.user), self._base_queryset())

    def _detail(self, project_id, status_code=status.HTTP_200_OK):
        project = self._base_queryset().get(pk=project_id)
        return Response(ProjectSerializer(project).data, status=status_code)

    @swagger_auto_schema(request_body=ProjectCreateSerializer, responses={201: ProjectSerializer}, tags=["projects"])
    # PUBLIC_INTERFACE
    def create(self, request, *args, **kwargs):
        """Create a project; the caller and the owner become owner-role members."""
        serializer = ProjectCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        project = services.create_project(actor=request.user, **serializer.validated_data)
        return self._detail(project.pk, status.HTTP_201_CREATED)

    @swagger_auto_schema(request_body=ProjectUpdateSerializer, responses={200: ProjectSerializer}, tags=["projects"])
    # PUBLIC_INTERFACE
    def update(self, request, *args, **kwargs):
        """Update a project (owners and admins only)."""
        serializer = ProjectUpdateSerializer(data=request.data, partial=kwargs.pop("partial", False))
        serializer.is_valid(raise_exception=True)
        project = services.update_project(
            actor=request.user, project_id=kwargs["pk"], changes=dict(serializer.validated_data)
        )
        return self._detail(project.pk)

    # PUBLIC_INTERFACE
    def destroy(self, request, *args, **kwargs):
        services.delete_project(actor=request.user, project_id=kwargs["pk"])
        return Response(status=status.HTTP_204_NO_CONTENT)

    @swagger_auto_schema(operation_summary="Quarters in use", tags=["projects"])
    @action(detail=False, methods=["get"], url_path="quarters")
    # PUBLIC_INTERFACE
    def quarters(self, request):
        return Response(services.project_quarters(actor=request.user))

    @swagger_auto_schema(operation_summary="List project members", tags=["projects"])
    @action(detail=True, methods=["get"], url_path="members")
    # PUBLIC_INTERFACE
    def members(self, request, pk=None):
        """List memberships for a project."""
        project = self.get_object()
        memberships = project.memberships.select_related("user").order_by("created_at")
        return Response(ProjectMembershipSerializer(memberships, many=True).data)

    @members.mapping.post
    @swagger_auto_schema(
        request_body=ProjectMembershipCreateSerializer,
        operation_summary="Add project member",
        tags=["projects"],
    )
    # PUBLIC_INTERFACE
    def add_member(self, request, pk=None):
        """Add a user to the project (project owner or admin)."""
        serializer = ProjectMembershipCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        membership, created = services.add_project_member(
            actor=request.user,
            project_id=pk,
            user=serializer.validated_data["user"],
            role=serializer.validated_data["role"],
        )
        return Response(
            ProjectMembershipSerializer(membership).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    @swagger_auto_schema(operation_summary="Remove project member", tags=["projects"])
    @action(detail=True, methods=["delete"], url_path=r"members/(?P<user_id>\d+)")
    # PUBLIC_INTERFACE
    def remove_member(self, request, pk=None, user_id=None):
        services.remove_project_member(actor=request.user, project_id=pk, user_id=int(user_id))
        return Response(status=status.HTTP_204_NO_CONTENT)


class CategoryViewSet(viewsets.ModelViewSet):
    """Board categories. Anyone may read; admins manage."""

    serializer_class = CategorySerializer
    permission_classes = [IsAdminOrReadOnly]
    pagination_class = None
    queryset = Category.objects.all()

    @swagger_auto_schema(request_body=CategorySerializer, responses={201: CategorySerializer}, tags=["categories"])
    # PUBLIC_INTERFACE
    def create(self, request, *args, **kwargs):
        serializer = CategorySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        category = administration.create_category(
            actor=request.user,
            name=serializer.validated_data["name"],
            display_name=serializer.validated_data["display_name"],
            color=serializer.validated_data.get("color"),
        )
        return Response(CategorySerializer(category).data, status=status.HTTP_201_CREATED)

    @swagger_auto_schema(request_body=CategoryUpdateSerializer, responses={200: CategorySerializer}, tags=["categories"])
    # PUBLIC_INTERFACE
    def update(self, request, *args, **kwargs):
        """Rename a category or change its color. The name key is immutable."""
        serializer = CategoryUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        category = self.get_object()
        if "display_name" in serializer.validated_data:
            category = administration.rename_category(
                actor=request.user, category_id=category.pk, display_name=serializer.validated_data["display_name"]
            )
        if "color" in serializer.validated_data:
            category = administration.update_category_color(
                actor=request.user, category_id=category.pk, color=serializer.validated_data["color"]
            )
        return Response(CategorySerializer(category).data)

    @swagger_auto_schema(
        manual_parameters=[openapi.Parameter("fallback", openapi.IN_QUERY, type=openapi.TYPE_STRING)],
        tags=["categories"],
    )
    # PUBLIC_INTERFACE
    def destroy(self, request, *args, **kwargs):
        """Delete a category after moving its tasks to the fallback category."""
        administration.delete_category(
            actor=request.user,
            category_id=kwargs["pk"],
            fallback_name=request.query_params.get("fallback") or None,
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


class UserGroupViewSet(viewsets.ModelViewSet):
    """User groups. Admins and managers manage groups; only admins delete them."""

    serializer_class = UserGroupSerializer
    permission_classes = [IsActiveUser]
    pagination_class = None
    queryset = UserGroup.objects.select_related("created_by").order_by("name")

    @swagger_auto_schema(request_body=UserGroupWriteSerializer, responses={201: UserGroupSerializer}, tags=["groups"])
    # PUBLIC_INTERFACE
    def create(self, request, *args, **kwargs):
        serializer = UserGroupWriteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        group = administration.create_group(actor=request.user, **serializer.validated_data)
        return Response(UserGroupSerializer(group).data, status=status.HTTP_201_CREATED)

    @swagger_auto_schema(request_body=UserGroupWriteSerializer, responses={200: UserGroupSerializer}, tags=["groups"])
    # PUBLIC_INTERFACE
    def update(self, request, *args, **kwargs):
        serializer = UserGroupWriteSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        changes = dict(serializer.validated_data)
        changes.pop("members", None)
        group = administration.update_group(actor=request.user, group_id=kwargs["pk"], **changes)
        return Response(UserGroupSerializer(group).data)

    # PUBLIC_INTERFACE
    def destroy(self, request, *args, **kwargs):
        administration.delete_group(actor=request.user, group_id=kwargs["pk"])
        return Response(status=status.HTTP_204_NO_CONTENT)

    @swagger_auto_schema(request_body=UserIdSerializer, operation_summary="Add group member", tags=["groups"])
    @action(detail=True, methods=["post"], url_path="members")
    # PUBLIC_INTERFACE
    def add_member(self, request, pk=None):
        serializer = UserIdSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, created = administration.add_group_member(
            actor=request.user, group_id=pk, user=serializer.validated_data["user"]
        )
        group = self.get_object()
        return Response(
            UserGroupSerializer(group).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    @swagger_auto_schema(operation_summary="Remove group member", tags=["groups"])
    @action(detail=True, methods=["delete"], url_path=r"members/(?P<user_id>\d+)")
    # PUBLIC_INTERFACE
    def remove_member(self, request, pk=None, user_id=None):
        administration.remove_group_member(actor=request.user, group_id=pk, user_id=int(user_id))
        return Response(status=status.HTTP_204_NO_CONTENT)


class UserViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    mixins.CreateModelMixin,
    mixins.DestroyModelMixin,
    viewsets.GenericViewSet,
):
    """Team directory. Inviting, role changes and removal are admin actions."""

    serializer_class = UserPublicSerializer
    permission_classes = [IsActiveUser]
    filter_backends = [filters.SearchFilter, filters.OrderingFilter]
    search_fields = ["name", "email", "username"]
    ordering_fields = ["name", "email"]
    ordering = ["email"]
    queryset = User.objects.filter(is_active=True)
    lookup_value_regex = r"\d+"

    @swagger_auto_schema(request_body=UserInviteSerializer, responses={201: UserPublicSerializer}, tags=["users"])
    # PUBLIC_INTERFACE
    def create(self, request, *args, **kwargs):
        """Invite a user (admin only)."""
        serializer = UserInviteSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = administration.invite_user(actor=request.user, **serializer.validated_data)
        return Response(UserPublicSerializer(user).data, status=status.HTTP_201_CREATED)

    # PUBLIC_INTERFACE
    def destroy(self, request, *args, **kwargs):
        """Remove a user (admin only). Their tasks stay; assignments are cleared."""
        administration.remove_user(actor=request.user, user_id=int(kwargs["pk"]))
        return Response(status=status.HTTP_204_NO_CONTENT)

    @swagger_auto_schema(request_body=UserRoleSerializer, responses={200: UserPublicSerializer}, tags=["users"])
    @action(detail=True, methods=["patch"], url_path="role")
    # PUBLIC_INTERFACE
    def role(self, request, pk=None):
        serializer = UserRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        user = administration.update_user_role(
            actor=request.user, user_id=int(pk), role=serializer.validated_data["role"]
        )
        return Response(UserPublicSerializer(user).data)


class NotificationViewSet(viewsets.ViewSet):
    """The caller's own notifications."""

    lookup_value_regex = r"\d+"
    permission_classes = [IsActiveUser]

    @swagger_auto_schema(responses={200: NotificationSerializer(many=True)}, tags=["notifications"])
    # PUBLIC_INTERFACE
    def list(self, request):
        notifications = services.list_notifications(actor=request.user)
        return Response(NotificationSerializer(notifications, many=True).data)

    @swagger_auto_schema(operation_summary="Mark notification read", tags=["notifications"])
    @action(detail=True, methods=["post"], url_path="read")
    # PUBLIC_INTERFACE
    def read(self, request, pk=None):
        services.mark_notification_read(actor=request.user, notification_id=pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @swagger_auto_schema(operation_summary="Mark all notifications read", tags=["notifications"])
    @action(detail=False, methods=["post"], url_path="read-all")
    # PUBLIC_INTERFACE
    def read_all(self, request):
        updated = services.mark_all_notifications_read(actor=request.user)
        return Response({"updated": updated})
