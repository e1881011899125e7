from __future__ import annotations

import pytest
from django.contrib.auth.models import AnonymousUser

from api import services
from api.models import Project, ProjectMembership, Task, TaskAssignee, TaskGroupAssignment, TaskMember, UserGroup
from api.visibility import (
    NOTHING,
    VISIBILITY_SCOPES,
    Principal,
    can_access_task,
    can_view_project,
    grants_for,
    visible_projects,
    visible_tasks,
    visible_tasks_q,
)

pytestmark = pytest.mark.django_db


def visible_ids(user) -> set[int]:
    return set(visible_tasks(Principal.from_user(user)).values_list("id", flat=True))


def sees(user, task) -> bool:
    return can_access_task(Principal.from_user(user), task.pk)


# --- Task rules ------------------------------------------------------------


def test_private_task_without_grants_is_hidden(alice, bob, make_task):
    task = make_task(alice)

    assert not sees(bob, task)
    assert task.pk not in visible_ids(bob)


def test_admin_sees_every_task(admin, alice, bob, make_task, make_project):
    tasks = [
        make_task(alice),
        make_task(bob, visibility=Task.Visibility.PROJECT),
        make_task(bob, visibility=Task.Visibility.PROJECT, project=make_project(owner=bob)),
        make_task(alice, visibility=Task.Visibility.PUBLIC),
    ]

    assert visible_ids(admin) == {t.pk for t in tasks}
    assert all(sees(admin, t) for t in tasks)
    assert visible_tasks_q(Principal.from_user(admin)).children == []


def test_bulk_and_point_checks_agree(admin, alice, bob, carol, manager, make_task, make_project):
    project = make_project(owner=alice, members={bob: ProjectMembership.Role.VIEWER})
    tasks = [
        make_task(alice),
        make_task(alice, assignee=bob),
        make_task(alice, visibility=Task.Visibility.PUBLIC),
        make_task(alice, visibility=Task.Visibility.PROJECT, project=project),
        make_task(alice, visibility=Task.Visibility.PROJECT),
        make_task(carol),
    ]
    TaskAssignee.objects.create(task=tasks[5], user=bob)
    TaskMember.objects.create(task=tasks[0], user=carol)

    for user in (admin, alice, bob, carol, manager):
        bulk = visible_ids(user)
        for task in tasks:
            assert sees(user, task) == (task.pk in bulk), (user.username, task.pk)


def test_grant_catalog_matches_bulk_filter(alice, bob, make_task):
    mine = make_task(bob)
    assigned = make_task(alice, assignee=bob)
    make_task(alice)

    assert set(grants_for(bob.pk)) == visible_ids(bob) == {mine.pk, assigned.pk}
    assert list(grants_for(None)) == []


def _make_creator(task, user):
    Task.objects.filter(pk=task.pk).update(created_by=user)


def _make_assignee(task, user):
    Task.objects.filter(pk=task.pk).update(assignee=user)


def _make_additional_assignee(task, user):
    TaskAssignee.objects.create(task=task, user=user)


def _make_collaborator(task, user):
    TaskMember.objects.create(task=task, user=user)


def _make_project_member(task, user):
    project = Project.objects.create(title="Ops")
    ProjectMembership.objects.create(project=project, user=user)
    Task.objects.filter(pk=task.pk).update(project=project, visibility=Task.Visibility.PROJECT)


def _make_public(task, user):
    Task.objects.filter(pk=task.pk).update(visibility=Task.Visibility.PUBLIC)


@pytest.mark.parametrize(
    "grant",
    [
        _make_creator,
        _make_assignee,
        _make_additional_assignee,
        _make_collaborator,
        _make_project_member,
        _make_public,
    ],
)
def test_each_grant_makes_task_visible(grant, alice, bob, make_task):
    task = make_task(alice)
    assert not sees(bob, task)

    grant(task, bob)

    assert sees(bob, task)
    assert task.pk in visible_ids(bob)


def test_adding_grants_never_hides_a_task(alice, bob, make_task):
    task = make_task(alice, visibility=Task.Visibility.PUBLIC)
    for grant in (_make_assignee, _make_additional_assignee, _make_collaborator):
        grant(task, bob)
        assert sees(bob, task), grant.__name__


def test_public_task_becomes_visible_on_the_board(alice, bob, client_for, ids_of):
    created = client_for(alice).post("/api/tasks/", {"title": "Draft pricing page"}, format="json")
    assert created.status_code == 201
    task_id = created.data["id"]
    assert created.data["visibility"] == Task.Visibility.PRIVATE

    assert task_id not in ids_of(client_for(bob).get("/api/tasks/"))

    patched = client_for(alice).patch(f"/api/tasks/{task_id}/", {"visibility": "public"}, format="json")
    assert patched.status_code == 200

    assert task_id in ids_of(client_for(bob).get("/api/tasks/"))


def test_removing_additional_assignee_revokes_sight(alice, bob, carol, make_user, make_task):
    u1, u2, u3 = bob, carol, make_user(username="dave")
    task = make_task(alice, assignee=u1)
    TaskAssignee.objects.create(task=task, user=u2)

    assert not sees(u3, task)
    assert sees(u2, task)

    services.remove_task_assignee(actor=alice, task_id=task.pk, user_id=u2.pk)

    assert not sees(u2, task)
    assert sees(u1, task)


def test_project_scope_requires_project_and_membership(alice, bob, carol, make_task, make_project):
    project = make_project(owner=alice, members={bob: ProjectMembership.Role.MEMBER})
    scoped = make_task(alice, visibility=Task.Visibility.PROJECT, project=project)
    orphan = make_task(alice, visibility=Task.Visibility.PROJECT)
    private_in_project = make_task(alice, project=project)

    assert sees(bob, scoped)
    assert not sees(carol, scoped)
    assert not sees(bob, orphan)
    assert not sees(bob, private_in_project)
    assert sees(alice, orphan)


def test_group_assignment_does_not_grant_visibility(alice, bob, manager, make_task):
    group = UserGroup.objects.create(name="Field crew", created_by=manager)
    group.memberships.create(user=bob)
    task = make_task(alice)
    TaskGroupAssignment.objects.create(task=task, group=group)

    assert not sees(bob, task)


def test_unknown_visibility_value_fails_closed(alice, bob, make_task, make_project):
    project = make_project(owner=alice, members={bob: ProjectMembership.Role.MEMBER})
    task = make_task(alice, project=project)
    Task.objects.filter(pk=task.pk).update(visibility="everyone")

    assert not sees(bob, task)
    assert sees(alice, task)


def test_every_visibility_level_has_a_scope():
    assert set(VISIBILITY_SCOPES) == set(Task.Visibility.values)


def test_anonymous_and_inactive_principals_see_nothing(alice, bob, make_task):
    make_task(alice, visibility=Task.Visibility.PUBLIC)
    bob.is_active = False
    bob.save()

    for user in (AnonymousUser(), None, bob):
        principal = Principal.from_user(user)
        assert not principal.is_authenticated
        assert visible_tasks_q(principal) == NOTHING
        assert not visible_tasks(principal).exists()


def test_unauthenticated_board_request_is_rejected(client_for):
    response = client_for().get("/api/tasks/")
    assert response.status_code == 401


# --- Project rules ---------------------------------------------------------


def test_project_visibility_rules(admin, alice, bob, carol, make_project):
    private = make_project(owner=alice, visibility=Project.Visibility.PRIVATE)
    members = make_project(owner=alice, members={bob: ProjectMembership.Role.VIEWER})
    public = make_project(owner=None, visibility=Project.Visibility.PUBLIC)

    def ids(user):
        return set(visible_projects(Principal.from_user(user)).values_list("id", flat=True))

    assert ids(admin) == {private.pk, members.pk, public.pk}
    assert ids(alice) == {private.pk, members.pk, public.pk}
    assert ids(bob) == {members.pk, public.pk}
    assert ids(carol) == {public.pk}
    assert not can_view_project(Principal.from_user(carol), private.pk)
    assert not can_view_project(Principal(None, None), public.pk)
