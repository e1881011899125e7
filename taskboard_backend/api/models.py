from __future__ import annotations

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.db.models.functions import Coalesce
from django.utils import timezone


class TimeStampedModel(models.Model):
    """Abstract base model that adds created/updated timestamps."""
    created_at = models.DateTimeField(default=timezone.now, db_index=True)
    updated_at = models.DateTimeField(auto_now=True, db_index=True)

    class Meta:
        abstract = True


class User(AbstractUser):
    """Application user. Role orders administrative privilege only."""
    class Role(models.TextChoices):
        ADMIN = "admin", "Admin"
        MANAGER = "manager", "Manager"
        MEMBER = "member", "Member"

    email = models.EmailField(unique=True)
    name = models.CharField(max_length=200, blank=True)
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.MEMBER)

    def __str__(self) -> str:
        return f"User({self.id}): {self.email}"

    @property
    def role_rank(self) -> int:
        return ROLE_RANK.get(self.role, 0)

    @property
    def display_name(self) -> str:
        return self.name or self.username or self.email


ROLE_RANK = {
    User.Role.MEMBER: 1,
    User.Role.MANAGER: 2,
    User.Role.ADMIN: 3,
}


class Category(TimeStampedModel):
    """A board column grouping for tasks, keyed by name."""
    name = models.CharField(max_length=100, unique=True)
    display_name = models.CharField(max_length=100)
    color = models.CharField(max_length=100, default="bg-slate-50 border-slate-200")
    sort_order = models.IntegerField(default=0)

    class Meta:
        ordering = ["sort_order", "name"]

    def __str__(self) -> str:
        return f"Category({self.id}): {self.name}"


class Project(TimeStampedModel):
    """A project or quarterly rock."""
    class Status(models.TextChoices):
        NOT_STARTED = "not_started", "Not started"
        ON_TRACK = "on_track", "On track"
        AT_RISK = "at_risk", "At risk"
        OFF_TRACK = "off_track", "Off track"
        COMPLETE = "complete", "Complete"

    class Kind(models.TextChoices):
        ROCK = "rock", "Rock"
        PROJECT = "project", "Project"

    class Visibility(models.TextChoices):
        PRIVATE = "private", "Private"
        MEMBERS = "members", "Members"
        PUBLIC = "public", "Public"

    title = models.CharField(max_length=250)
    description = models.TextField(blank=True)
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="projects_owned",
    )
    quarter = models.CharField(max_length=20, null=True, blank=True)
    rock_number = models.PositiveIntegerField(default=0)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.NOT_STARTED)
    progress = models.PositiveSmallIntegerField(
        default=0, validators=[MinValueValidator(0), MaxValueValidator(100)]
    )
    notes = models.TextField(blank=True)
    kind = models.CharField(max_length=20, choices=Kind.choices, default=Kind.PROJECT)
    visibility = models.CharField(max_length=20, choices=Visibility.choices, default=Visibility.MEMBERS)

    class Meta:
        constraints = [
            # Unowned projects share one sequence per quarter.
            models.UniqueConstraint(
                Coalesce("owner", models.Value(0), output_field=models.BigIntegerField()),
                "quarter",
                "rock_number",
                condition=models.Q(quarter__isnull=False),
                name="unique_rock_number_per_owner_quarter",
            ),
        ]
        indexes = [
            models.Index(fields=["quarter"], name="project_quarter_idx"),
            models.Index(fields=["owner", "rock_number"], name="project_owner_rock_idx"),
        ]

    def __str__(self) -> str:
        return f"Project({self.id}): {self.title}"


class ProjectMembership(TimeStampedModel):
    """A user's membership in a project, including their role."""
    class Role(models.TextChoices):
        OWNER = "owner", "Owner"
        MEMBER = "member", "Member"
        VIEWER = "viewer", "Viewer"

    project = models.ForeignKey(Project, on_delete=models.CASCADE, related_name="memberships")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="project_memberships",
    )
    role = models.CharField(max_length=20, choices=Role.choices, default=Role.MEMBER)

    class Meta:
        unique_together = ("project", "user")
        indexes = [
            models.Index(fields=["user"], name="projmember_user_idx"),
        ]

    def __str__(self) -> str:
        return f"ProjectMembership(project={self.project_id}, user={self.user_id}, role={self.role})"


class Task(TimeStampedModel):
    """A card on the board."""
    class Status(models.TextChoices):
        BACKLOG = "Backlog", "Backlog"
        DOING = "Doing", "Doing"
        BLOCKED = "Blocked", "Blocked"
        DONE = "Done", "Done"

    class Priority(models.TextChoices):
        LOW = "low", "Low"
        MEDIUM = "medium", "Medium"
        HIGH = "high", "High"

    class Visibility(models.TextChoices):
        PRIVATE = "private", "Private"
        PROJECT = "project", "Project members"
        PUBLIC = "public", "Public"

    title = models.CharField(max_length=250)
    description = models.TextField(blank=True)
    priority = models.CharField(max_length=10, choices=Priority.choices, default=Priority.MEDIUM)
    due_date = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.BACKLOG)
    category = models.ForeignKey(Category, on_delete=models.PROTECT, related_name="tasks")

    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="tasks_created",
    )
    assignee = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="tasks_assigned",
    )
    visibility = models.CharField(max_length=20, choices=Visibility.choices, default=Visibility.PRIVATE)
    project = models.ForeignKey(
        Project,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="tasks",
    )

    class Meta:
        indexes = [
            models.Index(fields=["status"], name="task_status_idx"),
            models.Index(fields=["assignee"], name="task_assignee_idx"),
            models.Index(fields=["created_by"], name="task_created_by_idx"),
            models.Index(fields=["visibility", "project"], name="task_visibility_project_idx"),
            models.Index(fields=["due_date"], name="task_due_date_idx"),
        ]

    def __str__(self) -> str:
        return f"Task({self.id}): {self.title}"


class TaskAssignee(models.Model):
    """An additional assignee beyond the primary one."""
    task = models.ForeignKey(Task, on_delete=models.CASCADE, related_name="additional_assignees")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="additional_assignments",
    )
    assigned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="+",
    )
    assigned_at = models.DateTimeField(default=timezone.now)

    class Meta:
        unique_together = ("task", "user")
        indexes = [
            models.Index(fields=["user"], name="taskassignee_user_idx"),
        ]

    def __str__(self) -> str:
        return f"TaskAssignee(task={self.task_id}, user={self.user_id})"


class TaskMember(models.Model):
    """A collaborator who may view the task without being assigned."""
    task = models.ForeignKey(Task, on_delete=models.CASCADE, related_name="members")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="task_memberships",
    )
    added_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="+",
    )
    added_at = models.DateTimeField(default=timezone.now)

    class Meta:
        unique_together = ("task", "user")
        indexes = [
            models.Index(fields=["user"], name="taskmember_user_idx"),
        ]

    def __str__(self) -> str:
        return f"TaskMember(task={self.task_id}, user={self.user_id})"


class UserGroup(TimeStampedModel):
    """A named set of users that tasks can be assigned to."""
    name = models.CharField(max_length=200, unique=True)
    description = models.TextField(blank=True)
    color = models.CharField(max_length=100, default="bg-slate-50 border-slate-200")
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="groups_created",
    )

    def __str__(self) -> str:
        return f"UserGroup({self.id}): {self.name}"


class UserGroupMembership(models.Model):
    group = models.ForeignKey(UserGroup, on_delete=models.CASCADE, related_name="memberships")
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="group_memberships",
    )
    added_at = models.DateTimeField(default=timezone.now)

    class Meta:
        unique_together = ("group", "user")

    def __str__(self) -> str:
        return f"UserGroupMembership(group={self.group_id}, user={self.user_id})"


class TaskGroupAssignment(models.Model):
    task = models.ForeignKey(Task, on_delete=models.CASCADE, related_name="group_assignments")
    group = models.ForeignKey(UserGroup, on_delete=models.CASCADE, related_name="task_assignments")
    assigned_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        related_name="+",
    )
    assigned_at = models.DateTimeField(default=timezone.now)

    class Meta:
        unique_together = ("task", "group")

    def __str__(self) -> str:
        return f"TaskGroupAssignment(task={self.task_id}, group={self.group_id})"


class Subtask(TimeStampedModel):
    """A checklist item on a task."""
    task = models.ForeignKey(Task, on_delete=models.CASCADE, related_name="subtasks")
    title = models.CharField(max_length=250)
    completed = models.BooleanField(default=False)
    sort_order = models.IntegerField(default=0)

    class Meta:
        ordering = ["sort_order", "id"]

    def __str__(self) -> str:
        return f"Subtask({self.id}) on Task({self.task_id})"


class AuditLog(models.Model):
    """An append-only change record for a task."""
    class Action(models.TextChoices):
        CREATED = "created", "Created"
        ASSIGNMENT_CHANGED = "assignment_changed", "Assignment changed"
        ASSIGNEE_ADDED = "assignee_added", "Assignee added"
        ASSIGNEE_REMOVED = "assignee_removed", "Assignee removed"
        CATEGORY_CHANGED = "category_changed", "Category changed"
        STATUS_CHANGED = "status_changed", "Status changed"
        PRIORITY_CHANGED = "priority_changed", "Priority changed"
        DUE_DATE_CHANGED = "due_date_changed", "Due date changed"
        TITLE_CHANGED = "title_changed", "Title changed"
        DESCRIPTION_CHANGED = "description_changed", "Description changed"
        VISIBILITY_CHANGED = "visibility_changed", "Visibility changed"
        PROJECT_CHANGED = "project_changed", "Project changed"

    task = models.ForeignKey(Task, on_delete=models.CASCADE, related_name="audit_logs")
    actor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="audit_logs",
    )
    action = models.CharField(max_length=50, choices=Action.choices)
    old_value = models.TextField(null=True, blank=True)
    new_value = models.TextField(null=True, blank=True)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        indexes = [
            models.Index(fields=["task", "created_at"], name="auditlog_task_created_idx"),
        ]

    def __str__(self) -> str:
        return f"AuditLog({self.id}): {self.action}"


class Notification(models.Model):
    """An in-app notification for a single recipient."""
    class Type(models.TextChoices):
        ASSIGNMENT = "assignment", "Assignment"
        REASSIGNMENT = "reassignment", "Reassignment"
        STATUS_CHANGE = "status_change", "Status change"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="notifications",
    )
    task = models.ForeignKey(Task, on_delete=models.CASCADE, null=True, blank=True, related_name="notifications")
    type = models.CharField(max_length=20, choices=Type.choices)
    message = models.TextField()
    read = models.BooleanField(default=False)
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        indexes = [
            models.Index(fields=["user", "read"], name="notification_user_read_idx"),
        ]

    def __str__(self) -> str:
        return f"Notification({self.id}) for User({self.user_id})"


class UserPreference(models.Model):
    class Theme(models.TextChoices):
        LIGHT = "light", "Light"
        DARK = "dark", "Dark"
        SYSTEM = "system", "System"

    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="preferences",
    )
    theme = models.CharField(max_length=10, choices=Theme.choices, default=Theme.SYSTEM)
    sidebar_collapsed = models.BooleanField(default=False)
    hints_enabled = models.BooleanField(default=True)
    updated_at = models.DateTimeField(auto_now=True)

    def __str__(self) -> str:
        return f"UserPreference(user={self.user_id})"
