from __future__ import annotations

from django.contrib.auth import get_user_model
from rest_framework import serializers

from .models import (
    AuditLog,
    Category,
    Notification,
    Project,
    ProjectMembership,
    Subtask,
    Task,
    TaskAssignee,
    TaskGroupAssignment,
    TaskMember,
    UserGroup,
    UserPreference,
)

User = get_user_model()


def _active_users():
    return User.objects.filter(is_active=True)


class UserPublicSerializer(serializers.ModelSerializer):
    """A minimal user representation safe for API exposure."""

    class Meta:
        model = User
        fields = ["id", "username", "email", "name", "role"]


class LoginSerializer(serializers.Serializer):
    """Login payload."""
    username = serializers.CharField()
    password = serializers.CharField(write_only=True)


class UserInviteSerializer(serializers.Serializer):
    email = serializers.EmailField()
    name = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")
    role = serializers.ChoiceField(choices=User.Role.choices, default=User.Role.MEMBER)


class UserRoleSerializer(serializers.Serializer):
    role = serializers.ChoiceField(choices=User.Role.choices)


class UserIdSerializer(serializers.Serializer):
    user_id = serializers.PrimaryKeyRelatedField(
        queryset=_active_users(),
        source="user",
        error_messages={"does_not_exist": "User not found."},
    )


class UserIdsSerializer(serializers.Serializer):
    user_ids = serializers.PrimaryKeyRelatedField(
        queryset=_active_users(),
        many=True,
        source="users",
        error_messages={"does_not_exist": "User not found."},
    )


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "name", "display_name", "color", "sort_order", "created_at"]
        read_only_fields = ["id", "sort_order", "created_at"]


class CategoryUpdateSerializer(serializers.Serializer):
    display_name = serializers.CharField(max_length=100, required=False)
    color = serializers.CharField(max_length=100, required=False)


class ProjectMembershipSerializer(serializers.ModelSerializer):
    user = UserPublicSerializer(read_only=True)

    class Meta:
        model = ProjectMembership
        fields = ["id", "project", "user", "role", "created_at", "updated_at"]
        read_only_fields = ["project"]


class ProjectMembershipCreateSerializer(serializers.Serializer):
    """Add a member by user id."""
    user_id = serializers.PrimaryKeyRelatedField(
        queryset=_active_users(),
        source="user",
        error_messages={"does_not_exist": "User not found."},
    )
    role = serializers.ChoiceField(choices=ProjectMembership.Role.choices, default=ProjectMembership.Role.MEMBER)


class ProjectSerializer(serializers.ModelSerializer):
    owner = UserPublicSerializer(read_only=True)
    members = ProjectMembershipSerializer(source="memberships", many=True, read_only=True)

    class Meta:
        model = Project
        fields = [
            "id",
            "title",
            "description",
            "owner",
            "quarter",
            "rock_number",
            "status",
            "progress",
            "notes",
            "kind",
            "visibility",
            "members",
            "created_at",
            "updated_at",
        ]


class ProjectCreateSerializer(serializers.ModelSerializer):
    owner_id = serializers.PrimaryKeyRelatedField(
        queryset=_active_users(),
        source="owner",
        allow_null=True,
        required=False,
        error_messages={"does_not_exist": "Owner user not found."},
    )
    rock_number = serializers.IntegerField(min_value=1, required=False, allow_null=True)

    class Meta:
        model = Project
        fields = ["title", "description", "owner_id", "quarter", "rock_number", "kind", "visibility"]
        validators = []


class ProjectUpdateSerializer(serializers.ModelSerializer):
    """Fields an owner may change after creation."""
    owner_id = serializers.PrimaryKeyRelatedField(
        queryset=_active_users(),
        source="owner",
        required=False,
        error_messages={"does_not_exist": "Owner user not found."},
    )

    class Meta:
        model = Project
        fields = ["title", "description", "status", "progress", "notes", "owner_id", "visibility"]
        validators = []


class TaskAssigneeSerializer(serializers.ModelSerializer):
    user = UserPublicSerializer(read_only=True)

    class Meta:
        model = TaskAssignee
        fields = ["user", "assigned_by", "assigned_at"]


class TaskMemberSerializer(serializers.ModelSerializer):
    user = UserPublicSerializer(read_only=True)

    class Meta:
        model = TaskMember
        fields = ["user", "added_by", "added_at"]


class TaskGroupAssignmentSerializer(serializers.ModelSerializer):
    name = serializers.CharField(source="group.name", read_only=True)

    class Meta:
        model = TaskGroupAssignment
        fields = ["group", "name", "assigned_at"]


class SubtaskSerializer(serializers.ModelSerializer):
    class Meta:
        model = Subtask
        fields = ["id", "task", "title", "completed", "sort_order", "created_at"]
        read_only_fields = ["id", "task", "sort_order", "created_at"]


class AuditLogSerializer(serializers.ModelSerializer):
    actor = UserPublicSerializer(read_only=True)

    class Meta:
        model = AuditLog
        fields = ["id", "task", "actor", "action", "old_value", "new_value", "created_at"]


class TaskSerializer(serializers.ModelSerializer):
    created_by = UserPublicSerializer(read_only=True)
    assignee = UserPublicSerializer(read_only=True)
    category = serializers.SlugRelatedField(slug_field="name", read_only=True)
    additional_assignees = TaskAssigneeSerializer(many=True, read_only=True)
    members = TaskMemberSerializer(many=True, read_only=True)
    groups = TaskGroupAssignmentSerializer(source="group_assignments", many=True, read_only=True)

    class Meta:
        model = Task
        fields = [
            "id",
            "title",
            "description",
            "priority",
            "due_date",
            "status",
            "category",
            "created_by",
            "assignee",
            "visibility",
            "project",
            "additional_assignees",
            "members",
            "groups",
            "created_at",
            "updated_at",
        ]


class TaskDetailSerializer(TaskSerializer):
    subtasks = SubtaskSerializer(many=True, read_only=True)
    audit_logs = serializers.SerializerMethodField()

    class Meta(TaskSerializer.Meta):
        fields = TaskSerializer.Meta.fields + ["subtasks", "audit_logs"]

    def get_audit_logs(self, obj: Task) -> list[dict]:
        logs = obj.audit_logs.select_related("actor").order_by("-created_at", "-id")
        return AuditLogSerializer(logs, many=True).data


class TaskWriteSerializer(serializers.Serializer):
    """Create/update payload. On update only the supplied fields change."""
    title = serializers.CharField(max_length=250)
    description = serializers.CharField(required=False, allow_blank=True)
    priority = serializers.ChoiceField(choices=Task.Priority.choices, required=False)
    due_date = serializers.DateField(required=False, allow_null=True)
    status = serializers.ChoiceField(choices=Task.Status.choices, required=False)
    visibility = serializers.ChoiceField(choices=Task.Visibility.choices, required=False)
    category = serializers.SlugRelatedField(
        slug_field="name",
        queryset=Category.objects.all(),
        required=False,
        error_messages={"does_not_exist": "Category not found."},
    )
    assignee_id = serializers.PrimaryKeyRelatedField(
        queryset=_active_users(),
        source="assignee",
        required=False,
        allow_null=True,
        error_messages={"does_not_exist": "Assignee user not found."},
    )
    project_id = serializers.PrimaryKeyRelatedField(
        queryset=Project.objects.all(),
        source="project",
        required=False,
        allow_null=True,
        error_messages={"does_not_exist": "Project not found."},
    )
    additional_assignee_ids = serializers.PrimaryKeyRelatedField(
        queryset=_active_users(),
        source="additional_assignees",
        many=True,
        required=False,
        error_messages={"does_not_exist": "User not found."},
    )
    group_ids = serializers.PrimaryKeyRelatedField(
        queryset=UserGroup.objects.all(),
        source="groups",
        many=True,
        required=False,
        error_messages={"does_not_exist": "Group not found."},
    )

    def validate(self, attrs):
        if self.partial:
            for field in ("additional_assignees", "groups"):
                if field in attrs:
                    raise serializers.ValidationError(
                        {field: "Use the dedicated task endpoints to change this list."}
                    )
        return attrs


class SubtaskCreateSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=250)


class SubtaskUpdateSerializer(serializers.Serializer):
    completed = serializers.BooleanField()


class GroupIdSerializer(serializers.Serializer):
    group_id = serializers.PrimaryKeyRelatedField(
        queryset=UserGroup.objects.all(),
        source="group",
        error_messages={"does_not_exist": "Group not found."},
    )


class UserGroupSerializer(serializers.ModelSerializer):
    created_by = UserPublicSerializer(read_only=True)
    members = serializers.SerializerMethodField()

    class Meta:
        model = UserGroup
        fields = ["id", "name", "description", "color", "created_by", "members", "created_at", "updated_at"]

    def get_members(self, obj: UserGroup) -> list[dict]:
        users = [membership.user for membership in obj.memberships.select_related("user").order_by("added_at")]
        return UserPublicSerializer(users, many=True).data


class UserGroupWriteSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    description = serializers.CharField(required=False, allow_blank=True)
    color = serializers.CharField(max_length=100, required=False)
    member_ids = serializers.PrimaryKeyRelatedField(
        queryset=_active_users(),
        source="members",
        many=True,
        required=False,
        error_messages={"does_not_exist": "User not found."},
    )


class NotificationSerializer(serializers.ModelSerializer):
    task_title = serializers.CharField(source="task.title", read_only=True, default=None)

    class Meta:
        model = Notification
        fields = ["id", "task", "task_title", "type", "message", "read", "created_at"]


class UserPreferenceSerializer(serializers.Serializer):
    theme = serializers.ChoiceField(choices=UserPreference.Theme.choices, required=False)
    sidebar_collapsed = serializers.BooleanField(required=False)
    hints_enabled = serializers.BooleanField(required=False)
