import unittest

from constants import DEFAULT_THREAD_ID
from server_init import create_app


def _settings(**overrides):
    settings = {
        "storage_backend": "memory",
        "socketio_async_mode": "threading",
        "secret_key": "test-secret",
        "jwt_secret": "test-jwt-secret-with-enough-length-for-hs256",
        "jwt_cookie_csrf_protect": True,
        "max_message_length": 2000,
    }
    settings.update(overrides)
    return settings


class ApiTestCase(unittest.TestCase):
    def setUp(self):
        self.app, self.socketio = create_app(_settings())
        self.app.testing = True
        self.client = self.app.test_client(use_cookies=False)

    def tearDown(self):
        self.app.config["CHATTERBOX_SERVICES"].store.close()

    def signup(self, username):
        resp = self.client.post(
            "/api/signup",
            json={"username": username, "email": f"{username}@example.com", "password": "correct horse"},
        )
        self.assertEqual(resp.status_code, 201, resp.get_json())
        body = resp.get_json()
        return body["user"], {"Authorization": f"Bearer {body['access_token']}"}

    def socket_for(self, headers=None):
        sock = self.socketio.test_client(self.app, headers=headers)
        self.assertTrue(sock.is_connected())
        self.addCleanup(lambda: sock.is_connected() and sock.disconnect())
        return sock

    @staticmethod
    def events(sock, name):
        return [pkt["args"][0] for pkt in sock.get_received() if pkt["name"] == name]


class AuthApiTests(ApiTestCase):
    def test_signup_login_and_profile(self):
        user, headers = self.signup("alice")
        self.assertEqual(len(user["handle"]), 8)
        self.assertNotIn("email", user)

        me = self.client.get("/api/me", headers=headers).get_json()
        self.assertEqual(me["email"], "alice@example.com")

        resp = self.client.patch("/api/me", json={"display_name": "Alice A.", "name_color": "#12abEF"}, headers=headers)
        self.assertEqual(resp.status_code, 200)
        profile = self.client.get(f"/api/users/@{user['handle']}").get_json()
        self.assertEqual(profile["display_name"], "Alice A.")

        self.assertEqual(self.client.post("/api/login", json={"username": "alice", "password": "nope nope"}).status_code, 401)
        cookie_client = self.app.test_client()
        resp = cookie_client.post("/api/login", json={"username": "ALICE", "password": "correct horse"})
        self.assertEqual(resp.status_code, 200)
        self.assertTrue(any("chatterbox_access=" in h for h in resp.headers.getlist("Set-Cookie")))
        # Reads authenticate from the cookie alone.
        self.assertEqual(cookie_client.get("/api/me").get_json()["username"], "alice")

    def test_signup_conflicts_and_validation(self):
        self.signup("alice")
        resp = self.client.post("/api/signup", json={"username": "alice", "email": "x@example.com", "password": "longenough"})
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.get_json()["error"], "username_taken")
        resp = self.client.post("/api/signup", json={"username": "a", "email": "bad", "password": "short"})
        self.assertEqual(resp.status_code, 400)

    def test_authentication_required_for_writes_only(self):
        self.assertEqual(self.client.get("/api/threads").status_code, 200)
        self.assertEqual(self.client.get(f"/api/threads/{DEFAULT_THREAD_ID}/messages").status_code, 200)
        resp = self.client.post("/api/threads", json={"title": "x"})
        self.assertEqual(resp.status_code, 401)
        self.assertEqual(resp.get_json()["error"], "unauthenticated")
        self.assertEqual(self.client.get("/api/friends").status_code, 401)
        bad = {"Authorization": "Bearer not-a-token"}
        self.assertEqual(self.client.get("/api/dm/channels", headers=bad).status_code, 401)


class ThreadApiTests(ApiTestCase):
    def test_thread_lifecycle_with_realtime(self):
        _, owner = self.signup("owner")
        _, guest = self.signup("guest")

        thread = self.client.post("/api/threads", json={"title": "Movies"}, headers=owner).get_json()
        room = f"thread:{thread['id']}"
        listener = self.socket_for()  # anonymous
        self.assertEqual(listener.emit("join", {"room": room}, callback=True), {"success": True, "room": room})

        resp = self.client.post(f"/api/threads/{thread['id']}/messages", json={"content": "first!"}, headers=guest)
        self.assertEqual(resp.status_code, 201)
        msg = resp.get_json()
        self.assertEqual(self.events(listener, "message-posted"), [msg])

        resp = self.client.patch(
            f"/api/threads/{thread['id']}/messages/{msg['id']}", json={"content": "edited"}, headers=owner
        )
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["error"], "not_message_owner")

        self.client.patch(f"/api/threads/{thread['id']}/messages/{msg['id']}", json={"content": "edited"}, headers=guest)
        edits = self.client.get(f"/api/threads/{thread['id']}/messages/{msg['id']}/edits", headers=owner).get_json()
        self.assertEqual([e["content"] for e in edits["edits"]], ["first!"])
        self.assertEqual(self.events(listener, "message-edited")[0]["content"], "edited")

        resp = self.client.delete(f"/api/threads/{thread['id']}", headers=guest)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(self.client.delete(f"/api/threads/{thread['id']}", headers=owner).status_code, 200)
        self.assertEqual(self.client.get(f"/api/threads/{thread['id']}/messages").status_code, 404)

    def test_join_unknown_room(self):
        sock = self.socket_for()
        self.assertEqual(sock.emit("join", {"room": "thread:999"}, callback=True)["error"], "thread_not_found")
        self.assertEqual(sock.emit("join", {"room": "lobby"}, callback=True)["error"], "invalid_room")

    def test_post_over_socket(self):
        _, headers = self.signup("writer")
        sock = self.socket_for(headers)
        room = f"thread:{DEFAULT_THREAD_ID}"
        sock.emit("join", {"room": room}, callback=True)
        ack = sock.emit("send_message", {"thread_id": DEFAULT_THREAD_ID, "content": "via socket"}, callback=True)
        self.assertTrue(ack["success"])
        self.assertEqual(self.events(sock, "message-posted")[0]["id"], ack["message"]["id"])

        anon = self.socket_for()
        ack = anon.emit("send_message", {"thread_id": DEFAULT_THREAD_ID, "content": "who am i"}, callback=True)
        self.assertEqual(ack, {"success": False, "error": "unauthenticated", "message": "Authentication required"})


class MalformedInputApiTests(ApiTestCase):
    def test_wrongly_typed_http_bodies_are_bad_requests(self):
        for body, reason in (
            ({"username": "alice", "email": "a@example.com", "password": 123456789}, "invalid_password"),
            ({"username": 42, "email": "a@example.com", "password": "longenough"}, "invalid_username"),
        ):
            resp = self.client.post("/api/signup", json=body)
            self.assertEqual(resp.status_code, 400)
            self.assertEqual(resp.get_json()["error"], reason)
        resp = self.client.post("/api/login", json={"username": "alice", "password": ["x"]})
        self.assertEqual(resp.status_code, 400)

        _, headers = self.signup("owner")
        resp = self.client.post("/api/threads", json={"title": "x", "flags": ["spam_check"]}, headers=headers)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.get_json()["error"], "invalid_flag")
        resp = self.client.post("/api/threads", json=["not", "an", "object"], headers=headers)
        self.assertEqual(resp.get_json()["error"], "invalid_body")

    def test_socket_payload_must_be_an_object(self):
        _, headers = self.signup("writer")
        sock = self.socket_for(headers)
        self.assertEqual(sock.emit("join", "thread:1", callback=True)["error"], "invalid_body")
        self.assertEqual(sock.emit("leave", ["thread:1"], callback=True)["error"], "invalid_body")
        ack = sock.emit("send_message", "hello", callback=True)
        self.assertEqual(ack["error"], "invalid_body")
        ack = sock.emit("send_dm_message", [1, "hi"], callback=True)
        self.assertEqual(ack["error"], "invalid_body")

    def test_socket_ids_must_be_integers(self):
        _, headers = self.signup("writer")
        sock = self.socket_for(headers)
        for bad in (True, 1.9, "one"):
            ack = sock.emit("send_message", {"thread_id": bad, "content": "hi"}, callback=True)
            self.assertEqual(ack["error"], "invalid_thread_id", bad)
        ack = sock.emit("send_message", {"content": "hi"}, callback=True)
        self.assertEqual(ack["error"], "missing_thread_id")
        ack = sock.emit("send_message", {"thread_id": DEFAULT_THREAD_ID, "content": "hi", "parent_id": False}, callback=True)
        self.assertEqual(ack["error"], "invalid_parent_id")
        ack = sock.emit("send_message", {"thread_id": float(DEFAULT_THREAD_ID), "content": "hi"}, callback=True)
        self.assertTrue(ack["success"])
        self.assertEqual(self.client.get(f"/api/threads/{DEFAULT_THREAD_ID}/messages").get_json()["messages"][0]["content"], "hi")


class DirectMessageScenarioTests(ApiTestCase):
    def test_friend_dm_block_scenario(self):
        alice, a_headers = self.signup("alice")
        bob, b_headers = self.signup("bob")
        _, c_headers = self.signup("carol")

        resp = self.client.post("/api/dm/channels", json={"user": "bob"}, headers=a_headers)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["error"], "not_friends")

        req = self.client.post("/api/friends/requests", json={"user": "bob"}, headers=a_headers)
        self.assertEqual(req.status_code, 201)
        incoming = self.client.get("/api/friends/requests/incoming", headers=b_headers).get_json()["requests"]
        self.assertEqual([r["user"]["username"] for r in incoming], ["alice"])
        resp = self.client.post(f"/api/friends/requests/{req.get_json()['id']}/approve", headers=b_headers)
        self.assertEqual(resp.status_code, 200)

        resp = self.client.post("/api/dm/channels", json={"user": bob["handle"]}, headers=a_headers)
        self.assertEqual(resp.status_code, 201)
        channel_id = resp.get_json()["channel_id"]
        again = self.client.post("/api/dm/channels", json={"user": "alice"}, headers=b_headers)
        self.assertEqual((again.status_code, again.get_json()["channel_id"]), (200, channel_id))

        room = f"dm:{channel_id}"
        bob_sock = self.socket_for(b_headers)
        self.assertTrue(bob_sock.emit("join", {"room": room}, callback=True)["success"])
        carol_sock = self.socket_for(c_headers)
        self.assertEqual(carol_sock.emit("join", {"room": room}, callback=True)["error"], "not_channel_participant")
        anon_sock = self.socket_for()
        self.assertEqual(anon_sock.emit("join", {"room": room}, callback=True)["error"], "unauthenticated")

        resp = self.client.post(f"/api/dm/channels/{channel_id}/messages", json={"content": "hi bob"}, headers=a_headers)
        self.assertEqual(resp.status_code, 201)
        pushed = self.events(bob_sock, "dm-message-posted")
        self.assertEqual(len(pushed), 1)
        self.assertEqual(pushed[0]["content"], "hi bob")
        self.assertEqual(pushed[0]["sender"]["id"], alice["id"])
        self.assertEqual(self.events(carol_sock, "dm-message-posted"), [])

        self.assertEqual(self.client.get(f"/api/dm/channels/{channel_id}/messages", headers=c_headers).status_code, 403)
        channels = self.client.get("/api/dm/channels", headers=b_headers).get_json()["channels"]
        self.assertEqual(channels[0]["last_message"]["content"], "hi bob")

        self.assertEqual(self.client.post("/api/blocks", json={"user": "alice"}, headers=b_headers).status_code, 201)
        self.assertEqual(self.client.get("/api/friends", headers=a_headers).get_json()["friends"], [])
        resp = self.client.post(f"/api/dm/channels/{channel_id}/messages", json={"content": "still there?"}, headers=a_headers)
        self.assertEqual(resp.status_code, 403)
        self.assertEqual(resp.get_json()["error"], "blocked")
        self.assertEqual(self.events(bob_sock, "dm-message-posted"), [])

        self.assertEqual(self.client.delete("/api/blocks/alice", headers=b_headers).status_code, 200)
        self.assertEqual(self.client.delete("/api/blocks/alice", headers=b_headers).status_code, 404)


if __name__ == "__main__":
    unittest.main()
