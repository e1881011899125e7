from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import (
    AuditLog,
    Category,
    Notification,
    Project,
    ProjectMembership,
    Subtask,
    Task,
    TaskAssignee,
    TaskMember,
    User,
    UserGroup,
    UserGroupMembership,
)


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ("id", "username", "email", "name", "role", "is_active")
    list_filter = ("role", "is_active")
    search_fields = ("username", "email", "name")
    fieldsets = BaseUserAdmin.fieldsets + (("Taskboard", {"fields": ("name", "role")}),)


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "display_name", "sort_order")
    ordering = ("sort_order",)


class ProjectMembershipInline(admin.TabularInline):
    model = ProjectMembership
    extra = 0
    raw_id_fields = ("user",)


@admin.register(Project)
class ProjectAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "owner", "quarter", "rock_number", "kind", "status", "visibility")
    search_fields = ("title", "description", "owner__email")
    list_filter = ("kind", "status", "visibility", "quarter")
    inlines = [ProjectMembershipInline]


class TaskAssigneeInline(admin.TabularInline):
    model = TaskAssignee
    fk_name = "task"
    extra = 0
    raw_id_fields = ("user", "assigned_by")


class TaskMemberInline(admin.TabularInline):
    model = TaskMember
    fk_name = "task"
    extra = 0
    raw_id_fields = ("user", "added_by")


class SubtaskInline(admin.TabularInline):
    model = Subtask
    extra = 0


@admin.register(Task)
class TaskAdmin(admin.ModelAdmin):
    list_display = ("id", "title", "status", "priority", "category", "visibility", "assignee", "created_by", "due_date")
    search_fields = ("title", "description", "created_by__email")
    list_filter = ("status", "priority", "visibility", "category")
    raw_id_fields = ("created_by", "assignee", "project")
    inlines = [TaskAssigneeInline, TaskMemberInline, SubtaskInline]
    ordering = ("-updated_at",)


class UserGroupMembershipInline(admin.TabularInline):
    model = UserGroupMembership
    extra = 0
    raw_id_fields = ("user",)


@admin.register(UserGroup)
class UserGroupAdmin(admin.ModelAdmin):
    list_display = ("id", "name", "created_by", "created_at")
    search_fields = ("name", "description")
    inlines = [UserGroupMembershipInline]


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    list_display = ("id", "task", "actor", "action", "created_at")
    list_filter = ("action", "created_at")
    search_fields = ("task__title", "actor__email")
    ordering = ("-created_at",)


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "type", "read", "created_at")
    list_filter = ("type", "read")
