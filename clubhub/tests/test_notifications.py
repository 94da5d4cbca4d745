import pytest

from clubhub.services.notifications import render_notification
from clubhub.utils.clock import shift_iso, utcnow
from clubhub.utils.errors import NotFoundError, ValidationError


@pytest.fixture
def notifications(services):
    return services.notifications


def _old(db, user_id, ntype="system", **delta):
    return db.insert("notifications", {"user_id": user_id, "type": ntype, "payload": {}, "priority": "MEDIUM",
                                       "title": "Old", "message": "Old", "is_read": False,
                                       "created_at": shift_iso(utcnow(), **delta)})


def test_render_uses_payload_and_defaults():
    title, message = render_notification("role_assigned", {"role": "Secretary", "club_name": "Chess"})
    assert title == "New Role Assigned"
    assert message == "You've been assigned as Secretary in Chess"

    _, message = render_notification("completion_reminder", {"event_title": "Hackathon", "missing": ["photos", "report"]})
    assert message == "Hackathon still needs photos, report. Deadline: "

    title, message = render_notification("something_new", {"message": "hi"})
    assert (title, message) == ("Something New", "hi")


class TestDedup:
    def test_same_type_within_window_is_reused(self, notifications, db):
        first = notifications.create("u1", "event_published", {"event_title": "Talk"})
        second = notifications.create("u1", "event_published", {"event_title": "Talk"})
        assert first["id"] == second["id"]
        assert db.count("notifications") == 1

    def test_role_assigned_compares_role(self, notifications, db):
        notifications.create("u1", "role_assigned", {"role": "member"})
        notifications.create("u1", "role_assigned", {"role": "secretary"})
        notifications.create("u1", "role_assigned", {"role": "member"})
        assert db.count("notifications") == 2

    def test_outside_window_creates_new(self, notifications, db):
        _old(db, "u1", "system", hours=-2)
        notifications.create("u1", "system", {"message": "again"})
        assert db.count("notifications") == 2

    def test_other_user_is_independent(self, notifications, db):
        notifications.create("u1", "system")
        notifications.create("u2", "system")
        assert db.count("notifications") == 2


def test_unknown_priority_falls_back_to_medium(notifications):
    assert notifications.create("u1", "system", priority="CRITICAL")["priority"] == "MEDIUM"


def test_notify_many_skips_blanks_and_failures(notifications, db, monkeypatch):
    original = notifications.create

    def flaky(user_id, *args, **kwargs):
        if user_id == "broken":
            raise RuntimeError("write failed")
        return original(user_id, *args, **kwargs)

    monkeypatch.setattr(notifications, "create", flaky)
    sent = notifications.notify_many(["u1", None, "u1", "broken", "u2"], "system", {"message": "hello"})
    assert sent == 2
    assert db.count("notifications") == 2


class TestInbox:
    def test_list_hides_old_notifications(self, notifications, db):
        _old(db, "u1", days=-40)
        notifications.create("u1", "system")

        recent = notifications.list("u1")
        assert recent["total"] == 1
        assert recent["has_older"] is True

        everything = notifications.list("u1", include_older=True)
        assert everything["total"] == 2
        assert everything["has_older"] is False

    def test_filters(self, notifications):
        notifications.create("u1", "system", priority="HIGH")
        notifications.create("u1", "event_started")
        assert notifications.list("u1", priority="HIGH")["total"] == 1
        assert notifications.list("u1", ntype="event_started")["total"] == 1

    def test_mark_read_and_counts(self, notifications):
        first = notifications.create("u1", "system")
        notifications.create("u1", "event_started")
        assert notifications.count_unread("u1") == 2

        assert notifications.mark_read("u1", first["id"])["is_read"] is True
        assert notifications.count_unread("u1") == 1
        assert notifications.list("u1", is_read=False)["total"] == 1

        assert notifications.mark_all_read("u1") == 1
        assert notifications.count_unread("u1") == 0

    def test_cannot_touch_another_users_notification(self, notifications):
        notif = notifications.create("u1", "system")
        with pytest.raises(NotFoundError):
            notifications.mark_read("u2", notif["id"])


class TestBroadcast:
    def test_reaches_audience_except_suspended(self, notifications, db, factory):
        student = factory.user()
        suspended = factory.user(status="suspended")
        coordinator = factory.user("coordinator")

        assert notifications.broadcast("Fest", "Annual fest on Friday", audience="student") == 1
        assert notifications.count_unread(student["id"]) == 1
        assert notifications.count_unread(suspended["id"]) == 0
        assert notifications.count_unread(coordinator["id"]) == 0

        stored = db.find_one("notifications", [("user_id", "==", student["id"])])
        assert stored["title"] == "Fest"
        assert stored["type"] == "announcement"

    def test_all_audience(self, notifications, factory):
        factory.user()
        factory.user("admin")
        assert notifications.broadcast("Hi", "Hello everyone") == 2

    def test_invalid_audience(self, notifications):
        with pytest.raises(ValidationError):
            notifications.broadcast("Hi", "Hello", audience="alumni")


class TestApi:
    def test_inbox_endpoints(self, client, login, factory, notifications):
        user = login(factory.user())
        notif = notifications.create(user["id"], "system", {"message": "Welcome"})

        resp = client.get("/api/notifications")
        assert resp.status_code == 200
        assert resp.get_json()["notifications"][0]["message"] == "Welcome"

        assert client.get("/api/notifications/unread-count").get_json()["count"] == 1
        assert client.patch(f"/api/notifications/{notif['id']}/read").status_code == 200
        assert client.get("/api/notifications/unread-count").get_json()["count"] == 0

    def test_requires_login(self, client):
        assert client.get("/api/notifications").status_code == 401

    def test_broadcast_is_admin_only_and_audited(self, client, login, factory, db):
        factory.user()
        login(factory.user())
        assert client.post("/api/notifications/broadcast", json={"title": "T", "message": "M"}).status_code == 403

        login(factory.user("admin"))
        resp = client.post("/api/notifications/broadcast", json={"title": "T", "message": "M", "audience": "student"})
        assert resp.status_code == 200
        assert resp.get_json()["sent"] == 2
        assert db.find_one("audit_logs", [("action", "==", "NOTIFICATION_BROADCAST")])
