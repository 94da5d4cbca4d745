from clubhub.tests.conftest import PASSWORD


def _register(client, **overrides):
    payload = {"email": "Asha@Example.edu", "name": "Asha Rao", "password": "longenough1",
               "roll_number": "22bd1a0501", "department": "CSE", "year": 2}
    payload.update(overrides)
    return client.post("/api/auth/register", json=payload)


class TestAuth:
    def test_register_logs_in(self, client, db):
        resp = _register(client)
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["success"] is True
        assert body["user"]["email"] == "asha@example.edu"
        assert body["user"]["roll_number"] == "22BD1A0501"
        assert body["user"]["role"] == "student"
        assert "password_hash" not in body["user"]

        me = client.get("/api/auth/me").get_json()
        assert me["user"]["id"] == body["user"]["id"]
        assert me["user"]["club_count"] == 0
        assert db.find_one("audit_logs", [("action", "==", "USER_REGISTER")])

    def test_register_duplicate_email(self, client):
        assert _register(client).status_code == 201
        resp = _register(client, roll_number="22BD1A0502")
        assert resp.status_code == 409
        assert resp.get_json() == {"success": False, "error": "Email already registered"}

    def test_register_validation(self, client):
        assert _register(client, roll_number="12345").status_code == 400
        assert _register(client, password="short").status_code == 400
        assert _register(client, email="not-an-email").status_code == 400
        assert _register(client, year=7).status_code == 400
        assert _register(client, roll_number=2201).status_code == 400

    def test_login(self, client, factory, db):
        user = factory.user()
        resp = client.post("/api/auth/login", json={"email": user["email"], "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.get_json()["user"]["id"] == user["id"]
        assert db.get_user(user["id"])["last_login_at"]

    def test_login_failures(self, client, factory):
        user = factory.user()
        assert client.post("/api/auth/login", json={"email": user["email"], "password": "wrong"}).status_code == 401
        assert client.post("/api/auth/login", json={"email": "nobody@example.edu", "password": PASSWORD}).status_code == 401

        suspended = factory.user(status="suspended")
        resp = client.post("/api/auth/login", json={"email": suspended["email"], "password": PASSWORD})
        assert resp.status_code == 403
        assert resp.get_json()["error"] == "Account suspended"

    def test_logout(self, client, login, factory):
        login(factory.user())
        assert client.get("/api/auth/me").status_code == 200
        client.post("/api/auth/logout")
        assert client.get("/api/auth/me").status_code == 401

    def test_suspended_session_is_dropped(self, client, login, factory, db):
        user = login(factory.user())
        db.update("users", user["id"], {"status": "suspended"})
        assert client.get("/api/users/me").status_code == 401


class TestSelfService:
    def test_update_profile(self, client, login, factory, db):
        user = login(factory.user())
        resp = client.put("/api/users/me", json={"name": "New Name", "year": 3})
        assert resp.status_code == 200
        assert db.get_user(user["id"])["name"] == "New Name"
        assert client.put("/api/users/me", json={}).status_code == 400

    def test_change_password(self, client, login, factory):
        user = login(factory.user())
        resp = client.put("/api/users/me/password", json={"old_password": "nope", "new_password": "brandnew123"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "Old password is incorrect"

        resp = client.put("/api/users/me/password", json={"old_password": PASSWORD, "new_password": "brandnew123"})
        assert resp.status_code == 200
        client.post("/api/auth/logout")
        login_resp = client.post("/api/auth/login", json={"email": user["email"], "password": "brandnew123"})
        assert login_resp.status_code == 200

    def test_my_clubs(self, client, login, factory):
        user = login(factory.user())
        club = factory.club()
        factory.member(club, user, "secretary")
        factory.club(status="archived")

        clubs = client.get("/api/users/me/clubs").get_json()["clubs"]
        assert [(c["club"]["id"], c["role"]) for c in clubs] == [(club["id"], "secretary")]
        assert client.get("/api/users/me/clubs?role=president").get_json()["clubs"] == []

    def test_coordinator_sees_coordinated_clubs(self, client, login, factory):
        coordinator = login(factory.user("coordinator"))
        club = factory.club(coordinator=coordinator)
        clubs = client.get("/api/users/me/clubs").get_json()["clubs"]
        assert clubs[0]["club"]["id"] == club["id"]
        assert clubs[0]["role"] == "coordinator"


class TestAdministration:
    def test_promotion_removes_memberships(self, client, login, factory, db):
        admin = login(factory.user("admin"))
        student = factory.user()
        factory.member(factory.club(), student, "treasurer")

        resp = client.patch(f"/api/users/{student['id']}/role", json={"role": "coordinator"})
        assert resp.status_code == 200
        assert resp.get_json()["user"]["role"] == "coordinator"
        assert db.user_memberships(student["id"]) == []

        removed = db.find_one("audit_logs", [("action", "==", "MEMBERSHIPS_REMOVED")])
        assert [m["role"] for m in removed["old_value"]] == ["treasurer"]
        change = db.find_one("audit_logs", [("action", "==", "ROLE_CHANGE")])
        assert change["user_id"] == admin["id"]
        assert change["severity"] == "HIGH"
        assert db.find_one("notifications", [("user_id", "==", student["id"]), ("type", "==", "global_role_changed")])

    def test_role_change_guards(self, client, login, factory):
        admin = login(factory.user("admin"))
        assert client.patch(f"/api/users/{admin['id']}/role", json={"role": "student"}).status_code == 400
        assert client.patch(f"/api/users/{factory.user()['id']}/role", json={"role": "king"}).status_code == 400
        assert client.patch("/api/users/missing/role", json={"role": "admin"}).status_code == 404

        coordinator = factory.user("coordinator")
        factory.club(coordinator=coordinator)
        resp = client.patch(f"/api/users/{coordinator['id']}/role", json={"role": "student"})
        assert resp.status_code == 400
        assert "coordinates clubs" in resp.get_json()["error"]

    def test_only_admin_changes_roles(self, client, login, factory):
        login(factory.user("coordinator"))
        resp = client.patch(f"/api/users/{factory.user()['id']}/role", json={"role": "admin"})
        assert resp.status_code == 403
        assert resp.get_json()["success"] is False

    def test_coordinator_lists_students_only(self, client, login, factory):
        login(factory.user("coordinator"))
        factory.user()
        factory.user("admin")
        body = client.get("/api/users?role=admin").get_json()
        assert body["total"] == 1
        assert body["users"][0]["role"] == "student"
        assert all("password_hash" not in u for u in body["users"])

    def test_admin_list_and_search(self, client, login, factory):
        login(factory.user("admin"))
        target = factory.user(name="Zara Iqbal")
        factory.user()
        body = client.get("/api/users?search=zara").get_json()
        assert [u["id"] for u in body["users"]] == [target["id"]]

    def test_students_cannot_list_users(self, client, login, factory):
        login(factory.user())
        assert client.get("/api/users").status_code == 403

    def test_suspend(self, client, login, factory, db):
        admin = login(factory.user("admin"))
        student = factory.user()
        assert client.post(f"/api/users/{student['id']}/suspend").status_code == 200
        assert db.get_user(student["id"])["status"] == "suspended"
        assert client.post(f"/api/users/{admin['id']}/suspend").status_code == 400

    def test_delete_user(self, client, login, factory, db):
        login(factory.user("admin"))
        student = factory.user()
        factory.member(factory.club(), student)

        assert client.delete(f"/api/users/{student['id']}").status_code == 200
        assert db.get_user(student["id"]) is None
        assert db.user_memberships(student["id"]) == []

        coordinator = factory.user("coordinator")
        factory.club(coordinator=coordinator)
        assert client.delete(f"/api/users/{coordinator['id']}").status_code == 400


def test_unknown_route_returns_json(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert resp.get_json() == {"success": False, "error": "Not Found"}


def test_create_admin_command(app, db):
    runner = app.test_cli_runner()
    result = runner.invoke(args=["create-admin", "root@example.edu", "Root Admin", "--password", "supersecret1"])
    assert result.exit_code == 0
    assert "Admin root@example.edu created" in result.output
    user = db.get_user_by_email("root@example.edu")
    assert user["role"] == "admin"
    assert db.find_one("audit_logs", [("action", "==", "ADMIN_BOOTSTRAP")])["ip"] == "cli"
