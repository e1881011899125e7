from __future__ import annotations

import pytest

from api.models import Notification, UserPreference

pytestmark = pytest.mark.django_db


def notify(user, task=None, message="ping"):
    return Notification.objects.create(user=user, task=task, type=Notification.Type.ASSIGNMENT, message=message)


def test_list_shows_only_own_latest_twenty(alice, bob, client_for):
    for i in range(25):
        notify(alice, message=f"n{i}")
    notify(bob)

    response = client_for(alice).get("/api/notifications/")

    assert response.status_code == 200
    assert len(response.data) == 20
    assert response.data[0]["message"] == "n24"
    assert all(row["message"] != "ping" for row in response.data)


def test_notification_includes_task_title(alice, make_task, client_for):
    notify(alice, task=make_task(alice, title="Fence repair"))

    response = client_for(alice).get("/api/notifications/")

    assert response.data[0]["task_title"] == "Fence repair"


def test_mark_read_is_limited_to_owner(alice, bob, client_for):
    mine = notify(alice)
    theirs = notify(bob)
    client = client_for(alice)

    assert client.post(f"/api/notifications/{mine.pk}/read/").status_code == 204
    assert client.post(f"/api/notifications/{theirs.pk}/read/").status_code == 404

    mine.refresh_from_db()
    theirs.refresh_from_db()
    assert mine.read is True
    assert theirs.read is False


def test_mark_all_read(alice, bob, client_for):
    notify(alice)
    notify(alice)
    notify(bob)

    response = client_for(alice).post("/api/notifications/read-all/")

    assert response.data == {"updated": 2}
    assert Notification.objects.filter(read=False).count() == 1


def test_preferences_default_then_saved(alice, client_for):
    client = client_for(alice)

    assert client.get("/api/preferences/").data == {
        "theme": "system",
        "sidebar_collapsed": False,
        "hints_enabled": True,
    }

    saved = client.patch("/api/preferences/", {"theme": "dark"}, format="json")
    assert saved.status_code == 200
    assert saved.data["theme"] == "dark"

    client.patch("/api/preferences/", {"sidebar_collapsed": True}, format="json")
    row = UserPreference.objects.get(user=alice)
    assert (row.theme, row.sidebar_collapsed, row.hints_enabled) == ("dark", True, True)


def test_invalid_theme_is_rejected(alice, client_for):
    response = client_for(alice).patch("/api/preferences/", {"theme": "neon"}, format="json")

    assert response.status_code == 400
    assert not UserPreference.objects.exists()
