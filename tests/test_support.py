import pytest


@pytest.fixture
def thread(client, buyer, auth):
    res = client.post("/api/support/threads", headers=auth(buyer), json={"subject": "Wrong size"})
    assert res.status_code == 201
    return res.get_json()["thread"]


def test_buyer_opens_thread_and_messages(client, buyer, thread, auth):
    assert thread["assigned_to"] is None
    assert client.post("/api/support/threads", headers=auth(buyer), json={"subject": "  "}).status_code == 400

    res = client.post(f"/api/support/threads/{thread['id']}/messages", headers=auth(buyer),
                      json={"content": "It's too small"})
    assert res.status_code == 201
    assert [m["sender_role"] for m in res.get_json()["messages"]] == ["user"]

    listed = client.get("/api/support/threads", headers=auth(buyer)).get_json()["threads"]
    assert [t["subject"] for t in listed] == ["Wrong size"]

    res = client.get(f"/api/support/threads/{thread['id']}/messages", headers=auth(buyer))
    assert res.get_json()["thread"]["id"] == thread["id"]
    assert res.get_json()["messages"][0]["content"] == "It's too small"


def test_buyer_cannot_read_someone_elses_thread(client, make_user, thread, auth):
    other = make_user("nosy")
    assert client.get(f"/api/support/threads/{thread['id']}/messages", headers=auth(other)).status_code == 403
    assert client.get("/api/support/threads/999/messages", headers=auth(other)).status_code == 404
    assert client.post(f"/api/support/threads/{thread['id']}/messages", headers=auth(other),
                       json={"content": "hi"}).status_code == 403


def test_empty_message_rejected(client, buyer, admin, thread, auth):
    assert client.post(f"/api/support/threads/{thread['id']}/messages", headers=auth(buyer),
                       json={"content": ""}).status_code == 400
    assert client.post(f"/api/admin/support/threads/{thread['id']}/messages", headers=auth(admin),
                       json={}).status_code == 400


def test_admin_sees_buyer_threads_with_user_info(client, store, admin, mod, thread, auth):
    store.create_thread(mod["id"], "Staff chatter")
    threads = client.get("/api/admin/support/threads", headers=auth(admin)).get_json()["threads"]
    assert [t["id"] for t in threads] == [thread["id"]]
    assert threads[0]["user"]["username"] == "shopper"
    assert threads[0]["assigned_to_user"] is None


def test_mod_claims_thread_on_open(client, mod, make_user, thread, auth):
    other_mod = make_user("othermod", role="mod")

    res = client.get(f"/api/admin/support/threads/{thread['id']}/messages", headers=auth(mod))
    assert res.status_code == 200
    assert res.get_json()["thread"]["assigned_to"] == mod["id"]
    assert res.get_json()["thread"]["assigned_to_user"]["username"] == "moddy"

    res = client.get(f"/api/admin/support/threads/{thread['id']}/messages", headers=auth(other_mod))
    assert res.status_code == 403
    assert client.get("/api/admin/support/threads", headers=auth(other_mod)).get_json()["threads"] == []
    assert len(client.get("/api/admin/support/threads", headers=auth(mod)).get_json()["threads"]) == 1


def test_admin_opening_thread_does_not_claim(client, admin, thread, auth):
    res = client.get(f"/api/admin/support/threads/{thread['id']}/messages", headers=auth(admin))
    assert res.get_json()["thread"]["assigned_to"] is None


def test_staff_reply_rules(client, admin, mod, make_user, thread, auth):
    other_mod = make_user("othermod", role="mod")
    client.get(f"/api/admin/support/threads/{thread['id']}/messages", headers=auth(mod))

    res = client.post(f"/api/admin/support/threads/{thread['id']}/messages", headers=auth(mod),
                      json={"content": "We'll swap it"})
    assert res.status_code == 201
    assert res.get_json()["messages"][-1]["sender_role"] == "admin"
    assert res.get_json()["messages"][-1]["sender_id"] == mod["id"]

    assert client.post(f"/api/admin/support/threads/{thread['id']}/messages", headers=auth(other_mod),
                       json={"content": "me too"}).status_code == 403
    assert client.post(f"/api/admin/support/threads/{thread['id']}/messages", headers=auth(admin),
                       json={"content": "admin here"}).status_code == 201


def test_threads_of_staff_customers_are_off_limits(client, store, admin, mod, auth):
    staff_thread = store.create_thread(mod["id"], "Internal")
    res = client.get(f"/api/admin/support/threads/{staff_thread['id']}/messages", headers=auth(admin))
    assert res.status_code == 403
    assert client.get("/api/admin/support/threads/999/messages", headers=auth(admin)).status_code == 404
    res = client.patch(f"/api/admin/support/threads/{staff_thread['id']}/assign", headers=auth(admin),
                       json={"assigned_to": mod["id"]})
    assert res.status_code == 403


def test_admin_assigns_only_to_moderators(client, admin, mod, buyer, thread, auth):
    url = f"/api/admin/support/threads/{thread['id']}/assign"
    assert client.patch(url, headers=auth(admin), json={"assigned_to": buyer["id"]}).status_code == 400
    assert client.patch(url, headers=auth(admin), json={"assigned_to": "nobody"}).status_code == 400

    res = client.patch(url, headers=auth(admin), json={"assigned_to": mod["id"]})
    assert res.status_code == 200
    assert res.get_json()["thread"]["assigned_to_user"]["id"] == mod["id"]

    res = client.patch(url, headers=auth(admin), json={"assigned_to": None})
    assert res.get_json()["thread"]["assigned_to"] is None


def test_mod_assignment_rules(client, mod, make_user, thread, auth):
    other_mod = make_user("othermod", role="mod")
    url = f"/api/admin/support/threads/{thread['id']}/assign"

    assert client.patch(url, headers=auth(mod), json={"assigned_to": other_mod["id"]}).status_code == 403
    assert client.patch(url, headers=auth(mod), json={"assigned_to": None}).status_code == 403

    assert client.patch(url, headers=auth(mod), json={"assigned_to": mod["id"]}).status_code == 200
    res = client.patch(url, headers=auth(other_mod), json={"assigned_to": other_mod["id"]})
    assert res.status_code == 400
    assert res.get_json()["error"] == "Thread is already assigned"

    assert client.patch(url, headers=auth(other_mod), json={"assigned_to": None}).status_code == 403
    res = client.patch(url, headers=auth(mod), json={"assigned_to": None})
    assert res.status_code == 200
    assert res.get_json()["thread"]["assigned_to"] is None


def test_buyer_cannot_use_staff_support(client, buyer, thread, auth):
    assert client.get("/api/admin/support/threads", headers=auth(buyer)).status_code == 403
