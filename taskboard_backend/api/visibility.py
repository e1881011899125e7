"""Row-level visibility for tasks and projects.

A task is visible to a user when at least one entry of the grant catalog
matches. Admins bypass the catalog entirely; an empty principal matches
nothing. The same ``Q`` expression backs both list filtering and single-task
checks, so a task can never be reachable in one and hidden in the other.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from django.core.exceptions import ImproperlyConfigured
from django.db.models import Q, QuerySet

from .models import Project, ProjectMembership, Task, TaskAssignee, TaskMember, User

NOTHING = Q(pk__in=[])


@dataclass(frozen=True)
class Principal:
    user_id: int | None
    role: str | None

    @classmethod
    def from_user(cls, user) -> "Principal":
        if not user or not getattr(user, "is_authenticated", False) or not user.is_active:
            return cls(None, None)
        return cls(user.pk, user.role)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def is_admin(self) -> bool:
        return self.is_authenticated and self.role == User.Role.ADMIN


@dataclass(frozen=True)
class TaskGrant:
    """One independent way a user can be granted sight of a task."""
    name: str
    clause: Callable[[int], Q]


def _member_project_ids(user_id: int) -> QuerySet:
    return ProjectMembership.objects.filter(user_id=user_id).values("project_id")


# Scope clauses keyed by visibility level. Every Task.Visibility member must
# appear here; private tasks are reachable only through per-user grants.
VISIBILITY_SCOPES: dict[str, Callable[[int], Q]] = {
    Task.Visibility.PUBLIC: lambda user_id: Q(visibility=Task.Visibility.PUBLIC),
    Task.Visibility.PROJECT: lambda user_id: Q(
        visibility=Task.Visibility.PROJECT,
        project__isnull=False,
        project_id__in=_member_project_ids(user_id),
    ),
    Task.Visibility.PRIVATE: lambda user_id: NOTHING,
}

_missing = set(Task.Visibility.values) - set(VISIBILITY_SCOPES)
if _missing:
    raise ImproperlyConfigured(f"No visibility scope defined for: {sorted(_missing)}")


TASK_GRANTS: tuple[TaskGrant, ...] = (
    TaskGrant("public", VISIBILITY_SCOPES[Task.Visibility.PUBLIC]),
    TaskGrant("creator", lambda user_id: Q(created_by_id=user_id)),
    TaskGrant("assignee", lambda user_id: Q(assignee_id=user_id)),
    TaskGrant(
        "additional_assignee",
        lambda user_id: Q(id__in=TaskAssignee.objects.filter(user_id=user_id).values("task_id")),
    ),
    TaskGrant(
        "collaborator",
        lambda user_id: Q(id__in=TaskMember.objects.filter(user_id=user_id).values("task_id")),
    ),
    TaskGrant("project_member", VISIBILITY_SCOPES[Task.Visibility.PROJECT]),
)


# PUBLIC_INTERFACE
def grants_for(user_id: int, grants: tuple[TaskGrant, ...] = TASK_GRANTS) -> QuerySet:
    """Return the ids of every task some grant in ``grants`` gives ``user_id``."""
    if not user_id:
        return Task.objects.none().values_list("id", flat=True)
    return Task.objects.filter(_any_grant(user_id, grants)).values_list("id", flat=True)


def _any_grant(user_id: int, grants: tuple[TaskGrant, ...]) -> Q:
    condition = NOTHING
    for grant in grants:
        condition |= grant.clause(user_id)
    return condition


# PUBLIC_INTERFACE
def visible_tasks_q(principal: Principal) -> Q:
    """Build the visibility predicate for ``principal`` as a ``Q`` object."""
    if principal.is_admin:
        return Q()
    if not principal.is_authenticated:
        return NOTHING
    return _any_grant(principal.user_id, TASK_GRANTS)


# PUBLIC_INTERFACE
def visible_tasks(principal: Principal, queryset: QuerySet | None = None) -> QuerySet:
    """Filter ``queryset`` (all tasks by default) down to what ``principal`` may see."""
    if queryset is None:
        queryset = Task.objects.all()
    if not principal.is_authenticated:
        return queryset.none()
    return queryset.filter(visible_tasks_q(principal))


# PUBLIC_INTERFACE
def can_access_task(principal: Principal, task_id) -> bool:
    """Point check: is ``task_id`` among the tasks visible to ``principal``."""
    if task_id is None:
        return False
    return visible_tasks(principal).filter(pk=task_id).exists()


# PUBLIC_INTERFACE
def visible_projects_q(principal: Principal) -> Q:
    """Projects: admins see all; others see public, owned, or joined projects."""
    if principal.is_admin:
        return Q()
    if not principal.is_authenticated:
        return NOTHING
    return (
        Q(visibility=Project.Visibility.PUBLIC)
        | Q(owner_id=principal.user_id)
        | Q(id__in=_member_project_ids(principal.user_id))
    )


# PUBLIC_INTERFACE
def visible_projects(principal: Principal, queryset: QuerySet | None = None) -> QuerySet:
    if queryset is None:
        queryset = Project.objects.all()
    if not principal.is_authenticated:
        return queryset.none()
    return queryset.filter(visible_projects_q(principal))


# PUBLIC_INTERFACE
def can_view_project(principal: Principal, project_id) -> bool:
    if project_id is None:
        return False
    return visible_projects(principal).filter(pk=project_id).exists()
