from __future__ import annotations

import logging
from functools import partial
from typing import Any, Iterable

from django.db import IntegrityError, transaction
from django.db.models import Max
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError

from .conf import get_setting
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
    User,
    UserGroup,
    UserPreference,
)
from .notifications import send_assignment_email
from .permissions import (
    ensure_can_delete_task,
    ensure_can_edit_task,
    ensure_can_manage_project,
    get_visible_project_or_404,
    get_visible_task_or_404,
    require_principal,
)
from .visibility import Principal, can_view_project, visible_projects

logger = logging.getLogger(__name__)

# Task fields an update may touch, with the audit action recorded per change.
TASK_FIELD_ACTIONS: dict[str, str] = {
    "title": AuditLog.Action.TITLE_CHANGED,
    "description": AuditLog.Action.DESCRIPTION_CHANGED,
    "assignee": AuditLog.Action.ASSIGNMENT_CHANGED,
    "category": AuditLog.Action.CATEGORY_CHANGED,
    "status": AuditLog.Action.STATUS_CHANGED,
    "priority": AuditLog.Action.PRIORITY_CHANGED,
    "due_date": AuditLog.Action.DUE_DATE_CHANGED,
    "visibility": AuditLog.Action.VISIBILITY_CHANGED,
    "project": AuditLog.Action.PROJECT_CHANGED,
}

RELATED_TASK_FIELDS = {"assignee", "category", "project"}

PREFERENCE_DEFAULTS: dict[str, Any] = {
    "theme": UserPreference.Theme.SYSTEM,
    "sidebar_collapsed": False,
    "hints_enabled": True,
}


def _record_audit(task: Task, actor: User, action: str, old_value=None, new_value=None) -> AuditLog:
    return AuditLog.objects.create(
        task=task,
        actor=actor,
        action=action,
        old_value=old_value,
        new_value=new_value,
        created_at=timezone.now(),
    )


def _notify_assignment(task: Task, actor: User, recipient: User, *, reassigned: bool) -> Notification:
    """Enqueue the in-app notification and schedule the email after commit."""
    verb = "reassigned" if reassigned else "assigned"
    notification = Notification.objects.create(
        user=recipient,
        task=task,
        type=Notification.Type.REASSIGNMENT if reassigned else Notification.Type.ASSIGNMENT,
        message=f'{actor.display_name} {verb} "{task.title}" to you',
    )
    transaction.on_commit(
        partial(
            send_assignment_email,
            to=recipient.email,
            assignee_name=recipient.display_name or "there",
            task_title=task.title,
            actor_name=actor.display_name,
            task_id=task.pk,
        )
    )
    return notification


def _default_category() -> Category:
    category = Category.objects.filter(name=get_setting("DEFAULT_CATEGORY")).first()
    if category is None:
        category = Category.objects.order_by("sort_order", "name").first()
    if category is None:
        raise ValidationError({"category": "No categories are configured."})
    return category


def _ensure_project_visible(principal: Principal, project: Project | None) -> None:
    if project is not None and not can_view_project(principal, project.pk):
        raise ValidationError({"project_id": "Project not found."})


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

# PUBLIC_INTERFACE
def create_task(
    *,
    actor: User,
    title: str,
    description: str = "",
    priority: str = Task.Priority.MEDIUM,
    due_date=None,
    assignee: User | None = None,
    category: Category | None = None,
    status: str = Task.Status.BACKLOG,
    visibility: str = Task.Visibility.PRIVATE,
    project: Project | None = None,
    additional_assignees: Iterable[User] = (),
    groups: Iterable[UserGroup] = (),
) -> Task:
    """Create a task owned by ``actor`` along with its audit row and notifications."""
    principal = require_principal(actor)
    _ensure_project_visible(principal, project)
    category = category or _default_category()

    with transaction.atomic():
        task = Task.objects.create(
            title=title,
            description=description,
            priority=priority,
            due_date=due_date,
            assignee=assignee,
            category=category,
            status=status,
            created_by=actor,
            visibility=visibility,
            project=project,
        )
        _record_audit(task, actor, AuditLog.Action.CREATED, new_value=title)

        if assignee is not None:
            _notify_assignment(task, actor, assignee, reassigned=False)

        for user in additional_assignees:
            if assignee is not None and user.pk == assignee.pk:
                continue
            _, created = TaskAssignee.objects.get_or_create(task=task, user=user, defaults={"assigned_by": actor})
            if created:
                _notify_assignment(task, actor, user, reassigned=False)

        for group in groups:
            TaskGroupAssignment.objects.get_or_create(task=task, group=group, defaults={"assigned_by": actor})

    logger.info("User %s created task %s", actor.pk, task.pk)
    return task


def _field_key(field: str, value):
    if field in RELATED_TASK_FIELDS:
        return value.pk if value is not None else None
    return value


def _audit_text(field: str, value) -> str | None:
    if value is None:
        return None
    if field == "category":
        return value.name
    if field in RELATED_TASK_FIELDS:
        return str(value.pk)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


# PUBLIC_INTERFACE
def update_task(*, actor: User, task_id: int, changes: dict[str, Any]) -> Task:
    """Apply ``changes`` to a task, auditing each changed field once.

    When the primary assignee changes to a user, exactly one notification goes
    to the new assignee. The previous assignee is never notified.
    """
    unknown = set(changes) - set(TASK_FIELD_ACTIONS)
    if unknown:
        raise ValidationError({field: "This field cannot be updated." for field in sorted(unknown)})

    principal = require_principal(actor)
    task = get_visible_task_or_404(principal, task_id, Task.objects.select_related("assignee", "category", "project"))
    ensure_can_edit_task(principal, task)
    if changes.get("project") is not None and changes["project"].pk != task.project_id:
        _ensure_project_visible(principal, changes["project"])

    diffs: list[tuple[str, Any, Any]] = []
    for field, new in changes.items():
        old = getattr(task, field)
        if _field_key(field, old) != _field_key(field, new):
            diffs.append((field, old, new))
    if not diffs:
        return task

    previous_assignee_id = task.assignee_id
    with transaction.atomic():
        for field, _, new in diffs:
            setattr(task, field, new)
        task.save(update_fields=[field for field, _, _ in diffs] + ["updated_at"])

        for field, old, new in diffs:
            _record_audit(task, actor, TASK_FIELD_ACTIONS[field], _audit_text(field, old), _audit_text(field, new))

        if "assignee" in changes and task.assignee is not None and task.assignee_id != previous_assignee_id:
            promoted, _ = TaskAssignee.objects.filter(task=task, user=task.assignee).delete()
            if promoted:
                _record_audit(task, actor, AuditLog.Action.ASSIGNEE_REMOVED, old_value=str(task.assignee_id))
            _notify_assignment(task, actor, task.assignee, reassigned=previous_assignee_id is not None)

    logger.info("User %s updated task %s fields=%s", actor.pk, task.pk, [field for field, _, _ in diffs])
    return task


# PUBLIC_INTERFACE
def delete_task(*, actor: User, task_id: int) -> None:
    """Hard-delete a task; assignees, members, subtasks and audit rows cascade."""
    principal = require_principal(actor)
    task = get_visible_task_or_404(principal, task_id)
    ensure_can_delete_task(principal, task)
    with transaction.atomic():
        task.delete()
    logger.info("User %s deleted task %s", actor.pk, task_id)


# PUBLIC_INTERFACE
def add_task_assignees(*, actor: User, task_id: int, users: Iterable[User]) -> list[TaskAssignee]:
    """Add additional assignees, skipping the primary assignee and existing rows."""
    principal = require_principal(actor)
    task = get_visible_task_or_404(principal, task_id)
    ensure_can_edit_task(principal, task)

    added: list[TaskAssignee] = []
    with transaction.atomic():
        for user in users:
            if user.pk == task.assignee_id:
                continue
            row, created = TaskAssignee.objects.get_or_create(task=task, user=user, defaults={"assigned_by": actor})
            if not created:
                continue
            added.append(row)
            _record_audit(task, actor, AuditLog.Action.ASSIGNEE_ADDED, new_value=str(user.pk))
            _notify_assignment(task, actor, user, reassigned=False)
    return added


# PUBLIC_INTERFACE
def remove_task_assignee(*, actor: User, task_id: int, user_id: int) -> bool:
    principal = require_principal(actor)
    task = get_visible_task_or_404(principal, task_id)
    ensure_can_edit_task(principal, task)
    with transaction.atomic():
        deleted, _ = TaskAssignee.objects.filter(task=task, user_id=user_id).delete()
        if deleted:
            _record_audit(task, actor, AuditLog.Action.ASSIGNEE_REMOVED, old_value=str(user_id))
    return bool(deleted)


# PUBLIC_INTERFACE
def add_task_member(*, actor: User, task_id: int, user: User) -> tuple[TaskMember, bool]:
    principal = require_principal(actor)
    task = get_visible_task_or_404(principal, task_id)
    ensure_can_edit_task(principal, task)
    return TaskMember.objects.get_or_create(task=task, user=user, defaults={"added_by": actor})


# PUBLIC_INTERFACE
def remove_task_member(*, actor: User, task_id: int, user_id: int) -> bool:
    principal = require_principal(actor)
    task = get_visible_task_or_404(principal, task_id)
    ensure_can_edit_task(principal, task)
    deleted, _ = TaskMember.objects.filter(task=task, user_id=user_id).delete()
    return bool(deleted)


# PUBLIC_INTERFACE
def assign_task_group(*, actor: User, task_id: int, group: UserGroup) -> tuple[TaskGroupAssignment, bool]:
    """Attach a group to a task. Group assignment does not grant visibility."""
    principal = require_principal(actor)
    task = get_visible_task_or_404(principal, task_id)
    ensure_can_edit_task(principal, task)
    return TaskGroupAssignment.objects.get_or_create(task=task, group=group, defaults={"assigned_by": actor})


# PUBLIC_INTERFACE
def unassign_task_group(*, actor: User, task_id: int, group_id: int) -> bool:
    principal = require_principal(actor)
    task = get_visible_task_or_404(principal, task_id)
    ensure_can_edit_task(principal, task)
    deleted, _ = TaskGroupAssignment.objects.filter(task=task, group_id=group_id).delete()
    return bool(deleted)


# ---------------------------------------------------------------------------
# Subtasks
# ---------------------------------------------------------------------------

# PUBLIC_INTERFACE
def create_subtask(*, actor: User, task_id: int, title: str) -> Subtask:
    principal = require_principal(actor)
    task = get_visible_task_or_404(principal, task_id)
    ensure_can_edit_task(principal, task)
    with transaction.atomic():
        current = Subtask.objects.filter(task=task).aggregate(top=Max("sort_order"))["top"]
        next_order = 0 if current is None else current + 1
        return Subtask.objects.create(task=task, title=title, sort_order=next_order)


def _get_subtask_for_edit(principal: Principal, subtask_id: int) -> Subtask:
    subtask = Subtask.objects.filter(pk=subtask_id).first()
    if subtask is None:
        raise NotFound("Subtask not found.")
    try:
        task = get_visible_task_or_404(principal, subtask.task_id)
    except NotFound:
        raise NotFound("Subtask not found.")
    ensure_can_edit_task(principal, task)
    return subtask


# PUBLIC_INTERFACE
def set_subtask_completed(*, actor: User, subtask_id: int, completed: bool) -> Subtask:
    principal = require_principal(actor)
    subtask = _get_subtask_for_edit(principal, subtask_id)
    subtask.completed = completed
    subtask.save(update_fields=["completed", "updated_at"])
    return subtask


# PUBLIC_INTERFACE
def delete_subtask(*, actor: User, subtask_id: int) -> None:
    principal = require_principal(actor)
    subtask = _get_subtask_for_edit(principal, subtask_id)
    subtask.delete()


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------

# PUBLIC_INTERFACE
def next_rock_number(owner: User | None, quarter: str) -> int:
    """Next sequence number within (owner, quarter): count + 1, bumped past any taken number."""
    existing = Project.objects.filter(owner=owner, quarter=quarter)
    taken = set(existing.values_list("rock_number", flat=True))
    number = existing.count() + 1
    while number in taken:
        number += 1
    return number


# PUBLIC_INTERFACE
def create_project(
    *,
    actor: User,
    title: str,
    description: str = "",
    owner: User | None = None,
    quarter: str | None = None,
    rock_number: int | None = None,
    kind: str = Project.Kind.PROJECT,
    visibility: str = Project.Visibility.MEMBERS,
) -> Project:
    """Create a project; the creator and the owner both become owner-role members.

    Sequence numbers are allocated inside the insert transaction and protected
    by a unique constraint, so a concurrent collision is retried rather than
    duplicated.
    """
    require_principal(actor)
    quarter = quarter or None
    if rock_number and quarter and Project.objects.filter(owner=owner, quarter=quarter, rock_number=rock_number).exists():
        raise ValidationError({"rock_number": "This rock number is already used for that owner and quarter."})
    attempts = max(1, int(get_setting("ROCK_NUMBER_RETRIES")))

    for attempt in range(1, attempts + 1):
        try:
            with transaction.atomic():
                number = rock_number or (next_rock_number(owner, quarter) if quarter else 0)
                project = Project.objects.create(
                    title=title,
                    description=description,
                    owner=owner,
                    quarter=quarter,
                    rock_number=number,
                    kind=kind,
                    visibility=visibility,
                )
                ProjectMembership.objects.create(project=project, user=actor, role=ProjectMembership.Role.OWNER)
                if owner is not None and owner.pk != actor.pk:
                    ProjectMembership.objects.create(project=project, user=owner, role=ProjectMembership.Role.OWNER)
        except IntegrityError:
            if rock_number:
                raise ValidationError({"rock_number": "This rock number is already used for that owner and quarter."})
            logger.warning(
                "Rock number collision owner=%s quarter=%s attempt=%d",
                owner.pk if owner else None,
                quarter,
                attempt,
            )
            continue
        logger.info("User %s created project %s (%s #%s)", actor.pk, project.pk, quarter, number)
        return project

    raise ValidationError({"rock_number": "Could not allocate a rock number, please retry."})


# PUBLIC_INTERFACE
def update_project(*, actor: User, project_id: int, changes: dict[str, Any]) -> Project:
    """Apply ``changes`` to a project.

    Handing a quarter-bound project to a new owner moves it to the end of the
    new owner's sequence for that quarter.
    """
    principal = require_principal(actor)
    project = get_visible_project_or_404(principal, project_id)
    ensure_can_manage_project(principal, project)
    new_owner = changes.get("owner")
    owner_changed = "owner" in changes and getattr(new_owner, "pk", None) != project.owner_id

    try:
        with transaction.atomic():
            for field, value in changes.items():
                setattr(project, field, value)
            if owner_changed and project.quarter:
                project.rock_number = next_rock_number(new_owner, project.quarter)
            project.save()
            if new_owner is not None:
                ProjectMembership.objects.update_or_create(
                    project=project,
                    user=new_owner,
                    defaults={"role": ProjectMembership.Role.OWNER},
                )
    except IntegrityError:
        logger.warning("Rock number collision moving project %s to owner %s", project_id, getattr(new_owner, "pk", None))
        raise ValidationError({"rock_number": "This rock number is already used for that owner and quarter."})

    logger.info("User %s updated project %s fields=%s", actor.pk, project.pk, sorted(changes))
    return project


# PUBLIC_INTERFACE
def delete_project(*, actor: User, project_id: int) -> None:
    principal = require_principal(actor)
    project = get_visible_project_or_404(principal, project_id)
    ensure_can_manage_project(principal, project, "Only the project owner or an admin can delete this project.")
    with transaction.atomic():
        project.delete()
    logger.info("User %s deleted project %s", actor.pk, project_id)


# PUBLIC_INTERFACE
def add_project_member(
    *, actor: User, project_id: int, user: User, role: str = ProjectMembership.Role.MEMBER
) -> tuple[ProjectMembership, bool]:
    principal = require_principal(actor)
    project = get_visible_project_or_404(principal, project_id)
    ensure_can_manage_project(principal, project, "Only project owners or admins can add members.")
    return ProjectMembership.objects.get_or_create(project=project, user=user, defaults={"role": role})


# PUBLIC_INTERFACE
def remove_project_member(*, actor: User, project_id: int, user_id: int) -> bool:
    principal = require_principal(actor)
    project = get_visible_project_or_404(principal, project_id)
    ensure_can_manage_project(principal, project, "Only project owners or admins can remove members.")
    deleted, _ = ProjectMembership.objects.filter(project=project, user_id=user_id).delete()
    return bool(deleted)


# PUBLIC_INTERFACE
def project_quarters(*, actor: User) -> list[str]:
    """Distinct quarter labels of visible projects, newest first."""
    principal = require_principal(actor)
    quarters = (
        visible_projects(principal)
        .exclude(quarter__isnull=True)
        .exclude(quarter="")
        .values_list("quarter", flat=True)
        .distinct()
    )
    return sorted(set(quarters), reverse=True)


# ---------------------------------------------------------------------------
# Notifications and preferences
# ---------------------------------------------------------------------------

# PUBLIC_INTERFACE
def list_notifications(*, actor: User, limit: int = 20):
    require_principal(actor)
    return Notification.objects.filter(user=actor).select_related("task").order_by("-created_at", "-id")[:limit]


# PUBLIC_INTERFACE
def mark_notification_read(*, actor: User, notification_id: int) -> None:
    require_principal(actor)
    updated = Notification.objects.filter(pk=notification_id, user=actor).update(read=True)
    if not updated:
        raise NotFound("Notification not found.")


# PUBLIC_INTERFACE
def mark_all_notifications_read(*, actor: User) -> int:
    require_principal(actor)
    return Notification.objects.filter(user=actor, read=False).update(read=True)


# PUBLIC_INTERFACE
def get_preferences(*, actor: User) -> dict[str, Any]:
    """Saved preferences for ``actor``, or the defaults when nothing is saved."""
    require_principal(actor)
    row = UserPreference.objects.filter(user=actor).first()
    if row is None:
        return dict(PREFERENCE_DEFAULTS)
    return {field: getattr(row, field) for field in PREFERENCE_DEFAULTS}


# PUBLIC_INTERFACE
def save_preferences(*, actor: User, **data) -> dict[str, Any]:
    require_principal(actor)
    unknown = set(data) - set(PREFERENCE_DEFAULTS)
    if unknown:
        raise ValidationError({field: "Unknown preference." for field in sorted(unknown)})
    UserPreference.objects.update_or_create(user=actor, defaults=data)
    return get_preferences(actor=actor)
