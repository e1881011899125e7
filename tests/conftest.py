"""Pytest fixtures for the taskboard API."""
from __future__ import annotations

import itertools

import pytest
from rest_framework.test import APIClient

from api.models import Category, Project, ProjectMembership, Task, User

PASSWORD = "correct-horse-42"


@pytest.fixture()
def make_user(db):
    counter = itertools.count(1)

    def _make(role: str = User.Role.MEMBER, username: str | None = None, **extra) -> User:
        username = username or f"user{next(counter)}"
        return User.objects.create_user(
            username=username,
            email=f"{username}@example.com",
            password=PASSWORD,
            name=extra.pop("name", username.title()),
            role=role,
            **extra,
        )

    return _make


@pytest.fixture()
def admin(make_user) -> User:
    return make_user(User.Role.ADMIN, username="root")


@pytest.fixture()
def manager(make_user) -> User:
    return make_user(User.Role.MANAGER, username="morgan")


@pytest.fixture()
def alice(make_user) -> User:
    return make_user(username="alice")


@pytest.fixture()
def bob(make_user) -> User:
    return make_user(username="bob")


@pytest.fixture()
def carol(make_user) -> User:
    return make_user(username="carol")


@pytest.fixture()
def operations(db) -> Category:
    # Seeded by the 0002 data migration.
    return Category.objects.get(name="Operations")


@pytest.fixture()
def make_task(db, operations):
    def _make(created_by: User, **fields) -> Task:
        fields.setdefault("title", "Quarterly report")
        fields.setdefault("category", operations)
        return Task.objects.create(created_by=created_by, **fields)

    return _make


@pytest.fixture()
def make_project(db):
    def _make(owner: User | None = None, members: dict | None = None, **fields) -> Project:
        fields.setdefault("title", "Website relaunch")
        project = Project.objects.create(owner=owner, **fields)
        for user, role in (members or {}).items():
            ProjectMembership.objects.create(project=project, user=user, role=role)
        return project

    return _make


@pytest.fixture()
def client_for():
    def _client(user: User | None = None) -> APIClient:
        client = APIClient()
        if user is not None:
            client.force_authenticate(user=user)
        return client

    return _client


@pytest.fixture()
def ids_of():
    """Ids in a list response, paginated or not."""

    def _ids(response) -> set[int]:
        data = response.data
        rows = data["results"] if isinstance(data, dict) and "results" in data else data
        return {row["id"] for row in rows}

    return _ids
