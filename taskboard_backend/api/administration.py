"""User, category and group administration."""
from __future__ import annotations

import logging
from typing import Iterable

from django.db import transaction
from django.db.models import Max
from django.utils import timezone
from rest_framework.exceptions import NotFound, ValidationError
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken, OutstandingToken

from .conf import get_setting
from .models import (
    Category,
    Notification,
    ProjectMembership,
    Task,
    TaskAssignee,
    TaskGroupAssignment,
    TaskMember,
    User,
    UserGroup,
    UserGroupMembership,
    UserPreference,
)
from .permissions import ensure_not_self, require_admin, require_group_manager, require_principal

logger = logging.getLogger(__name__)


def _get_active_user(user_id: int) -> User:
    user = User.objects.filter(pk=user_id, is_active=True).first()
    if user is None:
        raise NotFound("User not found.")
    return user


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

# PUBLIC_INTERFACE
def provision_user(*, email: str, name: str = "") -> User:
    """Return the user for a verified identity, creating it on first sight."""
    email = email.strip().lower()
    user = User.objects.filter(email__iexact=email).first()
    if user is not None:
        return user
    user = User(username=email, email=email, name=name, role=User.Role.MEMBER)
    user.set_unusable_password()
    user.save()
    logger.info("Provisioned user %s for %s", user.pk, email)
    return user


# PUBLIC_INTERFACE
def invite_user(*, actor: User, email: str, name: str = "", role: str = User.Role.MEMBER) -> User:
    """Create (or reactivate a removed) account ahead of its first sign-in."""
    require_admin(require_principal(actor))
    email = email.strip().lower()

    existing = User.objects.filter(email__iexact=email).first()
    if existing is not None and existing.is_active:
        raise ValidationError({"email": "User with this email already exists."})

    if existing is not None:
        existing.is_active = True
        existing.name = name or existing.name
        existing.role = role
        existing.save(update_fields=["is_active", "name", "role"])
        logger.info("User %s reactivated account %s", actor.pk, existing.pk)
        return existing

    user = User(username=email, email=email, name=name, role=role)
    user.set_unusable_password()
    user.save()
    logger.info("User %s invited %s as %s", actor.pk, email, role)
    return user


# PUBLIC_INTERFACE
def update_user_role(*, actor: User, user_id: int, role: str) -> User:
    principal = require_principal(actor)
    ensure_not_self(principal, user_id, "Cannot change your own role.")
    require_admin(principal)
    if role not in User.Role.values:
        raise ValidationError({"role": f"Unknown role '{role}'."})

    target = _get_active_user(user_id)
    target.role = role
    target.save(update_fields=["role"])
    logger.info("User %s set role of %s to %s", actor.pk, target.pk, role)
    return target


# PUBLIC_INTERFACE
def remove_user(*, actor: User, user_id: int) -> None:
    """Remove an account without touching the tasks it created.

    The row is deactivated rather than deleted so authored tasks and audit
    history keep their creator. Assignments, memberships, notifications,
    preferences and refresh tokens are dropped.
    """
    principal = require_principal(actor)
    ensure_not_self(principal, user_id, "Cannot remove yourself.")
    require_admin(principal)
    target = _get_active_user(user_id)

    with transaction.atomic():
        unassigned = Task.objects.filter(assignee=target).update(assignee=None, updated_at=timezone.now())
        TaskAssignee.objects.filter(user=target).delete()
        TaskMember.objects.filter(user=target).delete()
        ProjectMembership.objects.filter(user=target).delete()
        UserGroupMembership.objects.filter(user=target).delete()
        Notification.objects.filter(user=target).delete()
        UserPreference.objects.filter(user=target).delete()
        for token in OutstandingToken.objects.filter(user=target):
            BlacklistedToken.objects.get_or_create(token=token)

        target.is_active = False
        target.save(update_fields=["is_active"])

    logger.info("User %s removed user %s (%d tasks unassigned)", actor.pk, target.pk, unassigned)


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------

def _get_category(category_id: int) -> Category:
    category = Category.objects.filter(pk=category_id).first()
    if category is None:
        raise NotFound("Category not found.")
    return category


# PUBLIC_INTERFACE
def create_category(*, actor: User, name: str, display_name: str, color: str | None = None) -> Category:
    require_admin(require_principal(actor))
    if Category.objects.filter(name=name).exists():
        raise ValidationError({"name": "Category with this name already exists."})
    top = Category.objects.aggregate(top=Max("sort_order"))["top"] or 0
    fields = {"name": name, "display_name": display_name, "sort_order": top + 1}
    if color:
        fields["color"] = color
    return Category.objects.create(**fields)


# PUBLIC_INTERFACE
def rename_category(*, actor: User, category_id: int, display_name: str) -> Category:
    require_admin(require_principal(actor))
    category = _get_category(category_id)
    category.display_name = display_name
    category.save(update_fields=["display_name", "updated_at"])
    return category


# PUBLIC_INTERFACE
def update_category_color(*, actor: User, category_id: int, color: str) -> Category:
    require_admin(require_principal(actor))
    category = _get_category(category_id)
    category.color = color
    category.save(update_fields=["color", "updated_at"])
    return category


# PUBLIC_INTERFACE
def delete_category(*, actor: User, category_id: int, fallback_name: str | None = None) -> int:
    """Delete a category, moving its tasks to ``fallback_name`` first.

    Fails without writing anything when the fallback does not exist or is the
    category being deleted. Returns the number of tasks moved.
    """
    require_admin(require_principal(actor))
    category = _get_category(category_id)
    fallback_name = fallback_name or get_setting("FALLBACK_CATEGORY")
    fallback = Category.objects.filter(name=fallback_name).exclude(pk=category.pk).first()
    if fallback is None:
        raise ValidationError({"fallback": f"Fallback category '{fallback_name}' does not exist."})

    with transaction.atomic():
        moved = Task.objects.filter(category=category).update(category=fallback, updated_at=timezone.now())
        category.delete()

    logger.info("User %s deleted category %s; %d tasks moved to %s", actor.pk, category.name, moved, fallback.name)
    return moved


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------

def _get_group(group_id: int) -> UserGroup:
    group = UserGroup.objects.filter(pk=group_id).first()
    if group is None:
        raise NotFound("Group not found.")
    return group


# PUBLIC_INTERFACE
def create_group(
    *,
    actor: User,
    name: str,
    description: str = "",
    color: str | None = None,
    members: Iterable[User] = (),
) -> UserGroup:
    require_group_manager(require_principal(actor), "Only admins and managers can create groups.")
    if UserGroup.objects.filter(name=name).exists():
        raise ValidationError({"name": "Group with this name already exists."})

    fields = {"name": name, "description": description, "created_by": actor}
    if color:
        fields["color"] = color
    with transaction.atomic():
        group = UserGroup.objects.create(**fields)
        for user in members:
            UserGroupMembership.objects.get_or_create(group=group, user=user)
    logger.info("User %s created group %s", actor.pk, group.pk)
    return group


# PUBLIC_INTERFACE
def update_group(*, actor: User, group_id: int, **changes) -> UserGroup:
    require_group_manager(require_principal(actor), "Only admins and managers can update groups.")
    group = _get_group(group_id)
    if "name" in changes and UserGroup.objects.filter(name=changes["name"]).exclude(pk=group.pk).exists():
        raise ValidationError({"name": "Group with this name already exists."})
    for field, value in changes.items():
        setattr(group, field, value)
    group.save()
    return group


# PUBLIC_INTERFACE
def delete_group(*, actor: User, group_id: int) -> None:
    """Delete a group and detach it from every task in one transaction."""
    principal = require_principal(actor)
    require_admin(principal)
    group = _get_group(group_id)
    with transaction.atomic():
        detached, _ = TaskGroupAssignment.objects.filter(group=group).delete()
        group.delete()
    logger.info("User %s deleted group %s (%d task assignments detached)", actor.pk, group_id, detached)


# PUBLIC_INTERFACE
def add_group_member(*, actor: User, group_id: int, user: User) -> tuple[UserGroupMembership, bool]:
    require_group_manager(require_principal(actor), "Only admins and managers can manage group members.")
    group = _get_group(group_id)
    return UserGroupMembership.objects.get_or_create(group=group, user=user)


# PUBLIC_INTERFACE
def remove_group_member(*, actor: User, group_id: int, user_id: int) -> bool:
    require_group_manager(require_principal(actor), "Only admins and managers can manage group members.")
    group = _get_group(group_id)
    deleted, _ = UserGroupMembership.objects.filter(group=group, user_id=user_id).delete()
    return bool(deleted)
