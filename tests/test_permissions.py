from __future__ import annotations

import pytest
from rest_framework.exceptions import PermissionDenied

from api.models import AuditLog, Project, ProjectMembership, Task
from api.permissions import can_manage_project, ensure_can_edit_task
from api.visibility import Principal

pytestmark = pytest.mark.django_db


# --- Project ownership gate ------------------------------------------------


def test_plain_member_can_view_but_not_update_project(alice, client_for, make_project):
    project = make_project(owner=None, members={alice: ProjectMembership.Role.MEMBER})
    client = client_for(alice)

    assert client.get(f"/api/projects/{project.pk}/").status_code == 200

    response = client.patch(f"/api/projects/{project.pk}/", {"status": "at_risk"}, format="json")

    assert response.status_code == 403
    assert response.data["detail"] == "Only project owners or admins can update this project."
    project.refresh_from_db()
    assert project.status == Project.Status.NOT_STARTED


@pytest.mark.parametrize("role", [ProjectMembership.Role.MEMBER, ProjectMembership.Role.VIEWER])
def test_non_owner_roles_cannot_change_or_delete(role, alice, bob, client_for, make_project):
    project = make_project(owner=alice, members={bob: role})
    client = client_for(bob)

    assert client.patch(f"/api/projects/{project.pk}/", {"title": "Renamed"}, format="json").status_code == 403
    assert client.delete(f"/api/projects/{project.pk}/").status_code == 403
    assert Project.objects.filter(pk=project.pk, title="Website relaunch").exists()


def test_outsider_on_public_project_is_forbidden(alice, bob, client_for, make_project):
    project = make_project(owner=alice, visibility=Project.Visibility.PUBLIC)

    response = client_for(bob).patch(f"/api/projects/{project.pk}/", {"title": "Mine now"}, format="json")

    assert response.status_code == 403


def test_outsider_on_hidden_project_gets_not_found(alice, bob, client_for, make_project):
    project = make_project(owner=alice)

    assert client_for(bob).patch(f"/api/projects/{project.pk}/", {"title": "x"}, format="json").status_code == 404
    assert client_for(bob).delete(f"/api/projects/{project.pk}/").status_code == 404


def test_owner_field_owner_role_member_and_admin_may_update(admin, alice, bob, carol, client_for, make_project):
    project = make_project(owner=alice, members={bob: ProjectMembership.Role.OWNER})

    for user, progress in ((alice, 10), (bob, 20), (admin, 30)):
        response = client_for(user).patch(f"/api/projects/{project.pk}/", {"progress": progress}, format="json")
        assert response.status_code == 200, user.username
        assert response.data["progress"] == progress

    assert not can_manage_project(Principal.from_user(carol), project)


def test_project_progress_is_bounded(alice, client_for, make_project):
    project = make_project(owner=alice)

    response = client_for(alice).patch(f"/api/projects/{project.pk}/", {"progress": 150}, format="json")

    assert response.status_code == 400


# --- Task policies ---------------------------------------------------------


def test_any_viewer_may_edit_a_visible_task_by_default(alice, bob, client_for, make_task):
    task = make_task(alice, visibility=Task.Visibility.PUBLIC)

    response = client_for(bob).patch(f"/api/tasks/{task.pk}/", {"status": "Doing"}, format="json")

    assert response.status_code == 200
    assert response.data["status"] == "Doing"


def test_only_creator_or_admin_may_delete_by_default(admin, alice, bob, client_for, make_task):
    first = make_task(alice, visibility=Task.Visibility.PUBLIC)
    second = make_task(alice, visibility=Task.Visibility.PUBLIC)

    denied = client_for(bob).delete(f"/api/tasks/{first.pk}/")
    assert denied.status_code == 403
    assert denied.data["detail"] == "Only the task creator or an admin can delete this task."

    assert client_for(alice).delete(f"/api/tasks/{first.pk}/").status_code == 204
    assert client_for(admin).delete(f"/api/tasks/{second.pk}/").status_code == 204
    assert not Task.objects.exists()


def test_visible_delete_policy_allows_any_viewer(settings, alice, bob, client_for, make_task):
    settings.TASKBOARD = {"TASK_DELETE_POLICY": "visible"}
    task = make_task(alice, visibility=Task.Visibility.PUBLIC)

    assert client_for(bob).delete(f"/api/tasks/{task.pk}/").status_code == 204


def test_involved_edit_policy(settings, alice, bob, carol, manager, client_for, make_task):
    settings.TASKBOARD = {"TASK_EDIT_POLICY": "involved"}
    task = make_task(alice, visibility=Task.Visibility.PUBLIC, assignee=carol)

    def patch(user):
        return client_for(user).patch(f"/api/tasks/{task.pk}/", {"priority": "high"}, format="json")

    assert patch(bob).status_code == 403
    assert patch(carol).status_code == 200
    assert patch(manager).status_code == 200
    assert patch(alice).status_code == 200


def test_rejected_edit_writes_nothing(settings, alice, bob, client_for, make_task):
    settings.TASKBOARD = {"TASK_EDIT_POLICY": "creator"}
    task = make_task(alice, visibility=Task.Visibility.PUBLIC)

    response = client_for(bob).patch(f"/api/tasks/{task.pk}/", {"title": "Hijacked"}, format="json")

    assert response.status_code == 403
    task.refresh_from_db()
    assert task.title == "Quarterly report"
    assert not AuditLog.objects.filter(task=task).exists()


def test_unknown_policy_denies_everyone_but_admins(settings, admin, alice, make_task):
    settings.TASKBOARD = {"TASK_EDIT_POLICY": "whoever"}
    task = make_task(alice)

    with pytest.raises(PermissionDenied):
        ensure_can_edit_task(Principal.from_user(alice), task)
    ensure_can_edit_task(Principal.from_user(admin), task)


def test_hidden_task_mutations_look_like_missing_ones(alice, bob, client_for, make_task):
    task = make_task(alice)
    client = client_for(bob)

    hidden = client.patch(f"/api/tasks/{task.pk}/", {"title": "x"}, format="json")
    missing = client.patch("/api/tasks/999999/", {"title": "x"}, format="json")

    assert hidden.status_code == missing.status_code == 404
    assert hidden.data == missing.data
    assert client.delete(f"/api/tasks/{task.pk}/").status_code == 404
    assert client.get(f"/api/tasks/{task.pk}/").status_code == 404


@pytest.mark.parametrize(
    "method,url",
    [
        ("get", "/api/tasks/abc/"),
        ("patch", "/api/tasks/abc/"),
        ("delete", "/api/tasks/abc/"),
        ("patch", "/api/projects/abc/"),
        ("delete", "/api/projects/abc/"),
        ("patch", "/api/subtasks/abc/"),
        ("delete", "/api/subtasks/abc/"),
    ],
)
def test_non_numeric_ids_are_not_found(method, url, alice, client_for):
    response = getattr(client_for(alice), method)(url, {"title": "x", "completed": True}, format="json")

    assert response.status_code == 404
