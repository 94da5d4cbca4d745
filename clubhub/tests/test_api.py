import csv
from io import StringIO


def _rows(resp):
    return list(csv.reader(StringIO(resp.get_data(as_text=True))))


class TestClubsApi:
    def test_admin_creates_club(self, client, login, factory, db):
        login(factory.user("admin"))
        coordinator = factory.user("coordinator")
        president = factory.user()
        resp = client.post("/api/clubs", json={"name": "Photography", "description": "Cameras and light",
                                               "category": "arts", "coordinator_id": coordinator["id"],
                                               "president_id": president["id"]})
        assert resp.status_code == 201
        club = resp.get_json()["club"]
        assert db.get_membership(club["id"], president["id"])["role"] == "president"

    def test_student_cannot_create_club(self, client, login, factory):
        login(factory.user())
        resp = client.post("/api/clubs", json={"name": "Nope"})
        assert resp.status_code == 403
        assert resp.get_json()["success"] is False

    def test_anonymous_listing_and_stats(self, client, factory):
        factory.club(name="Debate", president=factory.user())
        factory.club(name="Gone", status="archived")

        body = client.get("/api/clubs").get_json()
        assert [c["name"] for c in body["clubs"]] == ["Debate"]

        stats = client.get("/api/public/stats").get_json()["stats"]
        assert stats["active_clubs"] == 1

    def test_members_need_login(self, client, factory):
        club = factory.club()
        assert client.post(f"/api/clubs/{club['id']}/members", json={"user_id": "x"}).status_code == 401

    def test_president_adds_and_lists_members(self, client, login, factory):
        president = factory.user()
        club = factory.club(president=president)
        student = factory.user()
        login(president)

        resp = client.post(f"/api/clubs/{club['id']}/members", json={"user_id": student["id"], "role": "core"})
        assert resp.status_code == 201
        assert resp.get_json()["membership"]["role"] == "core"

        members = client.get(f"/api/clubs/{club['id']}/members").get_json()
        assert members["total"] == 2

    def test_members_export(self, client, login, factory):
        president = factory.user(department="ECE", year=3)
        club = factory.club(president=president)
        factory.member(club, factory.user())
        login(president)

        resp = client.get(f"/api/clubs/{club['id']}/members/export")
        assert resp.status_code == 200
        assert resp.headers["Content-Type"] == "text/csv; charset=utf-8"
        assert resp.headers["Content-Disposition"].startswith("attachment;")
        rows = _rows(resp)
        assert rows[0] == ["roll_number", "name", "email", "department", "year", "role", "joined_at"]
        assert rows[1][:6] == [president["roll_number"], president["name"], president["email"], "ECE", "3",
                               "president"]
        assert len(rows) == 3

    def test_plain_member_cannot_export(self, client, login, factory):
        member = factory.user()
        club = factory.club()
        factory.member(club, member)
        login(member)
        assert client.get(f"/api/clubs/{club['id']}/members/export").status_code == 403

    def test_leave(self, client, login, factory, db):
        member = factory.user()
        club = factory.club()
        factory.member(club, member)
        login(member)
        assert client.post(f"/api/clubs/{club['id']}/leave").status_code == 200
        assert db.get_membership(club["id"], member["id"]) is None

    def test_leave_requires_membership(self, client, login, factory):
        club = factory.club()
        login(factory.user())
        assert client.post(f"/api/clubs/{club['id']}/leave").status_code == 403

    def test_core_team_demotes_to_member(self, client, login, factory, db):
        club = factory.club()
        secretary = factory.user()
        factory.member(club, secretary, "secretary")
        core = factory.member(club, factory.user(), "core")
        login(secretary)

        resp = client.patch(f"/api/clubs/{club['id']}/members/{core['id']}", json={"role": "member"})
        assert resp.status_code == 200
        assert db.get("memberships", core["id"])["role"] == "member"

        resp = client.patch(f"/api/clubs/{club['id']}/members/{core['id']}", json={"role": "treasurer"})
        assert resp.status_code == 403

    def test_settings_requires_president(self, client, login, factory):
        president = factory.user()
        member = factory.user()
        club = factory.club(president=president)
        factory.member(club, member)

        login(member)
        assert client.patch(f"/api/clubs/{club['id']}/settings", json={"description": "x"}).status_code == 403

        login(president)
        resp = client.patch(f"/api/clubs/{club['id']}/settings", json={"name": "Brand New Name"})
        assert resp.status_code == 200
        assert resp.get_json()["message"] == "Changes submitted for coordinator approval"

    def test_only_assigned_coordinator_approves_settings(self, client, login, factory):
        coordinator = factory.user("coordinator")
        club = factory.club(coordinator=coordinator, pending_settings={"name": "Next Name"})

        login(factory.user("coordinator"))
        assert client.post(f"/api/clubs/{club['id']}/settings/approve").status_code == 403

        login(coordinator)
        resp = client.post(f"/api/clubs/{club['id']}/settings/approve")
        assert resp.status_code == 200
        assert resp.get_json()["club"]["name"] == "Next Name"

    def test_unknown_club(self, client):
        resp = client.get("/api/clubs/missing")
        assert resp.status_code == 404
        assert resp.get_json() == {"success": False, "error": "Club not found"}


class TestEventsApi:
    def _setup(self, factory):
        coordinator = factory.user("coordinator")
        president = factory.user()
        member = factory.user()
        club = factory.club(coordinator=coordinator, president=president)
        factory.member(club, member)
        return coordinator, president, member, club

    def test_submit_and_approve(self, client, login, factory, db):
        coordinator, president, member, club = self._setup(factory)
        event = factory.event(club)

        login(member)
        resp = client.patch(f"/api/events/{event['id']}/status", json={"action": "submit"})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Only the organizing club's core team can do this"

        login(president)
        resp = client.patch(f"/api/events/{event['id']}/status", json={"action": "submit"})
        assert resp.status_code == 200
        assert resp.get_json()["event"]["status"] == "pending_coordinator"

        login(member)
        assert client.patch(f"/api/events/{event['id']}/status", json={"action": "approve"}).status_code == 403

        login(coordinator)
        resp = client.patch(f"/api/events/{event['id']}/status", json={"action": "approve"})
        assert resp.status_code == 200
        assert resp.get_json()["event"]["status"] == "published"
        assert db.find_one("notifications", [("user_id", "==", member["id"]), ("type", "==", "event_published")])

    def test_invalid_transition(self, client, login, factory):
        _, president, _, club = self._setup(factory)
        event = factory.event(club, status="published")
        login(president)
        resp = client.patch(f"/api/events/{event['id']}/status", json={"action": "submit"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Invalid action/state"

    def test_rsvp_and_attendance_export(self, client, login, factory):
        _, president, member, club = self._setup(factory)
        event = factory.event(club, status="published", title="Robot Wars")

        login(member)
        assert client.post(f"/api/events/{event['id']}/rsvp").status_code == 200
        assert client.get(f"/api/events/{event['id']}/attendance/export").status_code == 403

        login(president)
        resp = client.get(f"/api/events/{event['id']}/attendance/export")
        assert resp.status_code == 200
        assert 'filename="robot_wars_attendance.csv"' in resp.headers["Content-Disposition"]
        rows = _rows(resp)
        assert rows[0] == ["roll_number", "name", "email", "type", "status", "timestamp"]
        assert rows[1][:5] == [member["roll_number"], member["name"], member["email"], "audience", "rsvp"]

    def test_rsvp_closed_event(self, client, login, factory):
        _, _, member, club = self._setup(factory)
        event = factory.event(club, status="draft")
        login(member)
        assert client.post(f"/api/events/{event['id']}/rsvp").status_code == 400

    def test_override_needs_coordinator(self, client, login, factory):
        _, president, _, club = self._setup(factory)
        event = factory.event(club, status="published")
        login(president)
        resp = client.post(f"/api/events/{event['id']}/override", json={"action": "cancel", "reason": "Venue flooded"})
        assert resp.status_code == 403
