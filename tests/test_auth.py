import server
from security import sign_token


def test_register_buyer_returns_user_and_token(client):
    res = client.post("/api/auth/register", json={
        "email": "Ana@Example.com", "username": "ana", "password": "pw12345",
    })
    assert res.status_code == 201
    body = res.get_json()
    assert body["user"]["email"] == "ana@example.com"
    assert body["user"]["role"] == "buyer"
    assert "password_hash" not in body["user"]
    assert "salt" not in body["user"]
    assert body["token"]


def test_register_requires_fields(client):
    res = client.post("/api/auth/register", json={"email": "a@b.c", "password": "x"})
    assert res.status_code == 400


def test_register_rejects_unknown_role(client):
    res = client.post("/api/auth/register", json={
        "email": "a@b.c", "username": "a", "password": "x", "role": "superuser",
    })
    assert res.status_code == 400


def test_register_refuses_staff_self_signup(client):
    res = client.post("/api/auth/register", json={
        "email": "m@b.c", "username": "m", "password": "x", "role": "mod",
    })
    assert res.status_code == 403


def test_register_second_admin_conflicts_when_staff_signup_allowed(app, client, admin):
    app.config["ALLOW_STAFF_SIGNUP"] = True
    res = client.post("/api/auth/register", json={
        "email": "other@b.c", "username": "other", "password": "x", "role": "admin",
    })
    assert res.status_code == 409
    assert res.get_json()["error"] == "Only one admin account is allowed"


def test_register_duplicate_email(client, buyer):
    res = client.post("/api/auth/register", json={
        "email": buyer["email"], "username": "someone-else", "password": "x",
    })
    assert res.status_code == 409


def test_login_success_and_wrong_password(client, buyer):
    ok = client.post("/api/auth/login", json={"email": buyer["email"].upper(), "password": "secret123"})
    assert ok.status_code == 200
    assert ok.get_json()["user"]["id"] == buyer["id"]
    assert ok.get_json()["user"]["status"] == "active"

    bad = client.post("/api/auth/login", json={"email": buyer["email"], "password": "nope"})
    assert bad.status_code == 401
    assert bad.get_json()["error"] == "Invalid email or password"


def test_login_unknown_email(client):
    res = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "x"})
    assert res.status_code == 401


def test_login_blocked_for_banned_and_suspended(client, make_user):
    banned = make_user("banned", status="banned")
    suspended = make_user("paused", status="suspended")
    res = client.post("/api/auth/login", json={"email": banned["email"], "password": "secret123"})
    assert res.status_code == 403
    assert res.get_json()["error"] == "Your account has been banned"
    res = client.post("/api/auth/login", json={"email": suspended["email"], "password": "secret123"})
    assert res.status_code == 403
    assert res.get_json()["error"] == "Your account has been suspended"


def test_me_by_id(client, buyer):
    assert client.get(f"/api/auth/me/{buyer['id']}").get_json()["user"]["username"] == "shopper"
    assert client.get("/api/auth/me/9999").status_code == 404


def test_me_with_bearer_token(client, buyer):
    token = sign_token({"role": "user", "user_id": buyer["id"]})
    res = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 200
    assert res.get_json()["user"]["id"] == buyer["id"]


def test_forged_token_rejected(client, buyer):
    token = sign_token({"role": "user", "user_id": buyer["id"]}, secret="someone-elses-key")
    res = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401


def test_user_id_header_can_be_disabled(app, client, buyer, auth):
    app.config["TRUST_USER_ID_HEADER"] = False
    assert client.get("/api/auth/me", headers=auth(buyer)).status_code == 401


def test_missing_and_unknown_identity(client):
    assert client.get("/api/orders").status_code == 401
    res = client.get("/api/orders", headers={"X-User-Id": "424242"})
    assert res.status_code == 401
    assert res.get_json()["error"] == "User not found"


def test_banned_user_blocked_from_protected_routes(client, make_user, auth):
    banned = make_user("banned", status="banned")
    res = client.get("/api/orders", headers=auth(banned))
    assert res.status_code == 403
    assert res.get_json()["error"] == "Account is banned"


def test_admin_routes_require_admin(client, mod, buyer, auth):
    assert client.get("/api/admin/users", headers=auth(buyer)).status_code == 403
    res = client.get("/api/admin/users", headers=auth(mod))
    assert res.status_code == 403
    assert res.get_json()["error"] == "Admin access required"


def test_admin_lists_and_creates_users(client, admin, auth):
    res = client.post("/api/admin/users", headers=auth(admin), json={
        "email": "new@example.com", "username": "newmod", "password": "pw", "role": "mod",
    })
    assert res.status_code == 201
    assert res.get_json()["user"]["role"] == "mod"

    bad = client.post("/api/admin/users", headers=auth(admin), json={
        "email": "x@example.com", "username": "x", "password": "pw", "role": "admin",
    })
    assert bad.status_code == 400

    users = client.get("/api/admin/users", headers=auth(admin)).get_json()["users"]
    assert [u["username"] for u in users] == ["boss", "newmod"]
    assert all(u["status"] == "active" for u in users)


def test_admin_changes_role_and_status(client, admin, buyer, auth):
    res = client.patch(f"/api/admin/users/{buyer['id']}/role", headers=auth(admin), json={"role": "mod"})
    assert res.status_code == 200
    assert res.get_json()["user"]["role"] == "mod"

    res = client.patch(f"/api/admin/users/{buyer['id']}/status", headers=auth(admin), json={"status": "suspended"})
    assert res.get_json()["user"]["status"] == "suspended"

    assert client.patch(f"/api/admin/users/{buyer['id']}/role", headers=auth(admin),
                        json={"role": "admin"}).status_code == 400
    assert client.patch(f"/api/admin/users/{buyer['id']}/status", headers=auth(admin),
                        json={"status": "deleted"}).status_code == 400


def test_first_admin_is_immutable(client, admin, auth):
    res = client.patch(f"/api/admin/users/{admin['id']}/role", headers=auth(admin), json={"role": "buyer"})
    assert res.status_code == 403
    res = client.patch(f"/api/admin/users/{admin['id']}/status", headers=auth(admin), json={"status": "banned"})
    assert res.status_code == 403


def test_role_change_unknown_user(client, admin, auth):
    res = client.patch("/api/admin/users/999/role", headers=auth(admin), json={"role": "mod"})
    assert res.status_code == 404


def test_me_unexpected_failure_answers_json_500(monkeypatch, client, buyer, auth):
    real_jsonify = server.jsonify

    def failing_for_user(*args, **kwargs):
        if args and isinstance(args[0], dict) and "user" in args[0]:
            raise RuntimeError("serializer exploded")
        return real_jsonify(*args, **kwargs)

    monkeypatch.setattr(server, "jsonify", failing_for_user)
    res = client.get("/api/auth/me", headers=auth(buyer))
    assert res.status_code == 500
    assert res.get_json() == {"error": "Failed to get user"}
