"""Authorization checks that run before any write.

Every helper here either returns quietly or raises a DRF exception; callers
invoke them before touching the database so a rejected request leaves no
partial writes behind.
"""
from __future__ import annotations

import logging

from rest_framework.exceptions import NotAuthenticated, NotFound, PermissionDenied
from rest_framework.permissions import BasePermission

from .conf import get_setting
from .models import Project, ProjectMembership, Task, TaskAssignee, User
from .visibility import Principal, visible_projects, visible_tasks

logger = logging.getLogger(__name__)

TASK_POLICIES = ("visible", "involved", "creator")


# PUBLIC_INTERFACE
def require_principal(user) -> Principal:
    """Resolve the request user into a principal, rejecting anonymous users."""
    principal = Principal.from_user(user)
    if not principal.is_authenticated:
        raise NotAuthenticated()
    return principal


# PUBLIC_INTERFACE
def get_visible_task_or_404(principal: Principal, task_id, queryset=None) -> Task:
    """Fetch a task the principal can see. Hidden and missing look the same."""
    task = visible_tasks(principal, queryset).filter(pk=task_id).first()
    if task is None:
        raise NotFound("Task not found.")
    return task


# PUBLIC_INTERFACE
def get_visible_project_or_404(principal: Principal, project_id, queryset=None) -> Project:
    project = visible_projects(principal, queryset).filter(pk=project_id).first()
    if project is None:
        raise NotFound("Project not found.")
    return project


def _is_involved(principal: Principal, task: Task) -> bool:
    if principal.user_id in (task.created_by_id, task.assignee_id):
        return True
    return TaskAssignee.objects.filter(task=task, user_id=principal.user_id).exists()


def _task_policy_allows(policy: str, principal: Principal, task: Task) -> bool:
    if principal.is_admin:
        return True
    if policy == "visible":
        # The caller already resolved the task through the visibility filter.
        return True
    if policy == "involved":
        return principal.role == User.Role.MANAGER or _is_involved(principal, task)
    if policy == "creator":
        return task.created_by_id == principal.user_id
    logger.error("Unknown task policy %r; denying", policy)
    return False


# PUBLIC_INTERFACE
def ensure_can_edit_task(principal: Principal, task: Task) -> None:
    """Gate field edits, reassignment and sub-resource changes on a visible task."""
    if not _task_policy_allows(get_setting("TASK_EDIT_POLICY"), principal, task):
        logger.warning("User %s denied edit on task %s", principal.user_id, task.pk)
        raise PermissionDenied("You are not allowed to edit this task.")


# PUBLIC_INTERFACE
def ensure_can_delete_task(principal: Principal, task: Task) -> None:
    if not _task_policy_allows(get_setting("TASK_DELETE_POLICY"), principal, task):
        logger.warning("User %s denied delete on task %s", principal.user_id, task.pk)
        raise PermissionDenied("Only the task creator or an admin can delete this task.")


# PUBLIC_INTERFACE
def can_manage_project(principal: Principal, project: Project) -> bool:
    """Admins, the project owner, and owner-role members may change a project."""
    if principal.is_admin:
        return True
    if not principal.is_authenticated:
        return False
    if project.owner_id is not None and project.owner_id == principal.user_id:
        return True
    return ProjectMembership.objects.filter(
        project=project,
        user_id=principal.user_id,
        role=ProjectMembership.Role.OWNER,
    ).exists()


# PUBLIC_INTERFACE
def ensure_can_manage_project(
    principal: Principal,
    project: Project,
    message: str = "Only project owners or admins can update this project.",
) -> None:
    if not can_manage_project(principal, project):
        logger.warning("User %s denied change on project %s", principal.user_id, project.pk)
        raise PermissionDenied(message)


# PUBLIC_INTERFACE
def require_admin(principal: Principal) -> None:
    if not principal.is_admin:
        raise PermissionDenied("Admin access required.")


# PUBLIC_INTERFACE
def require_group_manager(principal: Principal, message: str = "Only admins and managers can manage groups.") -> None:
    if principal.role not in {User.Role.ADMIN, User.Role.MANAGER}:
        raise PermissionDenied(message)


# PUBLIC_INTERFACE
def ensure_not_self(principal: Principal, target_user_id: int, message: str) -> None:
    if principal.user_id == target_user_id:
        raise PermissionDenied(message)


class IsActiveUser(BasePermission):
    """Allows access only to authenticated, active users."""

    message = "Authentication required."

    def has_permission(self, request, view) -> bool:
        return Principal.from_user(request.user).is_authenticated


class IsAdminRole(BasePermission):
    """Allows access only to users holding the admin role."""

    message = "Admin access required."

    def has_permission(self, request, view) -> bool:
        return Principal.from_user(request.user).is_admin


class IsAdminOrReadOnly(BasePermission):
    """Any active user may read; only admins may write."""

    message = "Admin access required."

    def has_permission(self, request, view) -> bool:
        principal = Principal.from_user(request.user)
        if request.method in ("GET", "HEAD", "OPTIONS"):
            return principal.is_authenticated
        return principal.is_admin
