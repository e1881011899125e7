from __future__ import annotations

import pytest
from rest_framework_simplejwt.token_blacklist.models import BlacklistedToken
from rest_framework_simplejwt.tokens import RefreshToken

from api.models import (
    Category,
    Notification,
    ProjectMembership,
    Task,
    TaskAssignee,
    TaskGroupAssignment,
    User,
    UserGroup,
    UserGroupMembership,
)

pytestmark = pytest.mark.django_db


# --- Categories ------------------------------------------------------------


def test_deleting_category_moves_tasks_to_fallback(admin, alice, client_for, make_task):
    marketing = client_for(admin).post(
        "/api/categories/", {"name": "Marketing", "display_name": "Marketing"}, format="json"
    )
    assert marketing.status_code == 201
    category = Category.objects.get(name="Marketing")
    tasks = [make_task(alice, category=category) for _ in range(3)]

    response = client_for(admin).delete(f"/api/categories/{category.pk}/")

    assert response.status_code == 204
    assert not Category.objects.filter(name="Marketing").exists()
    other = Category.objects.get(name="Other")
    assert set(Task.objects.filter(pk__in=[t.pk for t in tasks]).values_list("category_id", flat=True)) == {other.pk}


def test_explicit_fallback_is_used(admin, alice, client_for, make_task, operations):
    finance = Category.objects.get(name="Finance")
    task = make_task(alice, category=operations)

    response = client_for(admin).delete(f"/api/categories/{operations.pk}/?fallback=Finance")

    assert response.status_code == 204
    task.refresh_from_db()
    assert task.category == finance


@pytest.mark.parametrize("fallback", ["Nowhere", "Operations"])
def test_missing_or_self_fallback_aborts_deletion(fallback, admin, alice, client_for, make_task, operations):
    task = make_task(alice, category=operations)

    response = client_for(admin).delete(f"/api/categories/{operations.pk}/?fallback={fallback}")

    assert response.status_code == 400
    assert Category.objects.filter(pk=operations.pk).exists()
    task.refresh_from_db()
    assert task.category_id == operations.pk


def test_categories_are_readable_by_all_but_managed_by_admins(admin, alice, client_for):
    listed = client_for(alice).get("/api/categories/")
    assert [c["name"] for c in listed.data] == ["Sales", "ProductDev", "Operations", "Finance", "Other"]

    assert client_for(alice).post("/api/categories/", {"name": "X", "display_name": "X"}, format="json").status_code == 403

    other = Category.objects.get(name="Other")
    renamed = client_for(admin).patch(
        f"/api/categories/{other.pk}/", {"display_name": "Misc", "color": "bg-red-50"}, format="json"
    )
    assert renamed.status_code == 200
    assert (renamed.data["name"], renamed.data["display_name"], renamed.data["color"]) == ("Other", "Misc", "bg-red-50")


# --- Users -----------------------------------------------------------------


def test_member_cannot_change_own_role(alice, client_for):
    response = client_for(alice).patch(f"/api/users/{alice.pk}/role/", {"role": "admin"}, format="json")

    assert response.status_code == 403
    assert response.data["detail"] == "Cannot change your own role."
    alice.refresh_from_db()
    assert alice.role == User.Role.MEMBER


def test_admin_cannot_demote_or_remove_self(admin, client_for):
    client = client_for(admin)

    assert client.patch(f"/api/users/{admin.pk}/role/", {"role": "member"}, format="json").status_code == 403
    removed = client.delete(f"/api/users/{admin.pk}/")
    assert removed.status_code == 403
    assert removed.data["detail"] == "Cannot remove yourself."
    admin.refresh_from_db()
    assert admin.role == User.Role.ADMIN
    assert admin.is_active


def test_admin_changes_another_users_role(admin, bob, manager, client_for):
    response = client_for(admin).patch(f"/api/users/{bob.pk}/role/", {"role": "manager"}, format="json")

    assert response.status_code == 200
    assert response.data["role"] == "manager"
    assert client_for(manager).patch(f"/api/users/{bob.pk}/role/", {"role": "member"}, format="json").status_code == 403


def test_invite_user(admin, alice, client_for):
    client = client_for(admin)

    created = client.post("/api/users/", {"email": "New.Hire@Example.com", "name": "Nia"}, format="json")
    assert created.status_code == 201
    assert created.data["email"] == "new.hire@example.com"
    assert created.data["role"] == "member"

    duplicate = client.post("/api/users/", {"email": "new.hire@example.com"}, format="json")
    assert duplicate.status_code == 400
    assert "already exists" in str(duplicate.data["email"])

    assert client_for(alice).post("/api/users/", {"email": "x@example.com"}, format="json").status_code == 403


def test_remove_user_keeps_authored_work(admin, alice, bob, client_for, make_task, make_project):
    authored = make_task(bob, title="Bob's task")
    assigned = make_task(alice, assignee=bob)
    TaskAssignee.objects.create(task=make_task(alice), user=bob)
    project = make_project(owner=alice, members={bob: ProjectMembership.Role.MEMBER})
    group = UserGroup.objects.create(name="Crew", created_by=admin)
    UserGroupMembership.objects.create(group=group, user=bob)
    Notification.objects.create(user=bob, task=assigned, type=Notification.Type.ASSIGNMENT, message="hi")
    refresh = RefreshToken.for_user(bob)

    response = client_for(admin).delete(f"/api/users/{bob.pk}/")

    assert response.status_code == 204
    bob.refresh_from_db()
    assert not bob.is_active
    assert Task.objects.get(pk=authored.pk).created_by_id == bob.pk
    assert Task.objects.get(pk=assigned.pk).assignee is None
    assert not TaskAssignee.objects.filter(user=bob).exists()
    assert not ProjectMembership.objects.filter(project=project, user=bob).exists()
    assert not UserGroupMembership.objects.filter(user=bob).exists()
    assert not Notification.objects.filter(user=bob).exists()
    assert BlacklistedToken.objects.filter(token__jti=refresh["jti"]).exists()
    assert bob.pk not in {u["id"] for u in client_for(admin).get("/api/users/").data["results"]}


def test_removed_user_can_be_invited_back(admin, bob, client_for):
    client = client_for(admin)
    client.delete(f"/api/users/{bob.pk}/")

    response = client.post("/api/users/", {"email": bob.email, "role": "manager"}, format="json")

    assert response.status_code == 201
    bob.refresh_from_db()
    assert bob.is_active
    assert bob.role == User.Role.MANAGER


def test_removed_user_loses_api_access(admin, bob, client_for):
    client_for(admin).delete(f"/api/users/{bob.pk}/")
    bob.refresh_from_db()

    assert client_for(bob).get("/api/tasks/").status_code in (401, 403)


# --- Groups ----------------------------------------------------------------


def test_managers_create_groups_members_cannot(manager, alice, bob, client_for):
    created = client_for(manager).post(
        "/api/groups/", {"name": "Harvest crew", "member_ids": [alice.pk, bob.pk]}, format="json"
    )
    assert created.status_code == 201
    assert {m["id"] for m in created.data["members"]} == {alice.pk, bob.pk}

    denied = client_for(alice).post("/api/groups/", {"name": "Rogue"}, format="json")
    assert denied.status_code == 403

    duplicate = client_for(manager).post("/api/groups/", {"name": "Harvest crew"}, format="json")
    assert duplicate.status_code == 400


def test_group_membership_endpoints(manager, alice, bob, client_for):
    group = UserGroup.objects.create(name="Drivers", created_by=manager)
    client = client_for(manager)

    assert client.post(f"/api/groups/{group.pk}/members/", {"user_id": bob.pk}, format="json").status_code == 201
    assert client_for(alice).post(f"/api/groups/{group.pk}/members/", {"user_id": alice.pk}, format="json").status_code == 403
    assert client.delete(f"/api/groups/{group.pk}/members/{bob.pk}/").status_code == 204
    assert not group.memberships.exists()

    renamed = client.patch(f"/api/groups/{group.pk}/", {"description": "Delivery routes"}, format="json")
    assert renamed.status_code == 200
    assert renamed.data["description"] == "Delivery routes"


def test_only_admins_delete_groups_and_assignments_go_with_them(admin, manager, alice, client_for, make_task):
    group = UserGroup.objects.create(name="Packers", created_by=manager)
    task = make_task(alice)
    TaskGroupAssignment.objects.create(task=task, group=group)

    assert client_for(manager).delete(f"/api/groups/{group.pk}/").status_code == 403
    assert client_for(admin).delete(f"/api/groups/{group.pk}/").status_code == 204

    assert not UserGroup.objects.exists()
    assert not TaskGroupAssignment.objects.exists()
    assert Task.objects.filter(pk=task.pk).exists()
