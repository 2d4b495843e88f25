"""Tests for the chat rooms and users HTTP API."""
import pytest

ROOM = 1


class TestAuthentication:

    def test_health_is_public(self, api_client):
        assert api_client.get("/health").json() == {"status": "ok"}

    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer nope"}, {"Authorization": "Basic x"}])
    def test_requires_bearer_token(self, api_client, headers):
        response = api_client.get("/api/chatrooms", headers=headers)
        assert response.status_code == 401


class TestChatRooms:

    def test_list_rooms_with_counts(self, api_client, auth_headers, seeded_storage):
        seeded_storage.add_message(ROOM, "bob", "hi alice")
        seeded_storage.add_message(ROOM, "alice", "hi bob")

        rooms = api_client.get("/api/chatrooms", headers=auth_headers("alice")).json()

        assert len(rooms) == 1
        room = rooms[0]
        assert room["name"] == "General"
        assert room["messageCount"] == 2
        assert room["unreadCount"] == 1
        assert room["lastMessage"] == "hi bob"
        assert sorted(u["id"] for u in room["users"]) == ["alice", "bob"]

    def test_get_room_status_codes(self, api_client, auth_headers):
        assert api_client.get(f"/api/chatrooms/{ROOM}", headers=auth_headers("alice")).status_code == 200
        assert api_client.get(f"/api/chatrooms/{ROOM}", headers=auth_headers("carol")).status_code == 403
        assert api_client.get("/api/chatrooms/999", headers=auth_headers("alice")).status_code == 404

    def test_create_room(self, api_client, auth_headers):
        response = api_client.post(
            "/api/chatrooms",
            json={"name": "Launch", "userIds": ["carol", "ghost"]},
            headers=auth_headers("bob"),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["name"] == "Launch"
        assert sorted(u["id"] for u in body["users"]) == ["bob", "carol"]

    def test_create_room_requires_name(self, api_client, auth_headers):
        response = api_client.post("/api/chatrooms", json={"name": ""}, headers=auth_headers("bob"))
        assert response.status_code == 422

    def test_create_room_rejects_blank_name(self, api_client, auth_headers, seeded_storage):
        response = api_client.post("/api/chatrooms", json={"name": "   "}, headers=auth_headers("bob"))

        assert response.status_code == 422
        assert seeded_storage.rooms_for_user("bob") == [ROOM]

    def test_create_room_trims_name(self, api_client, auth_headers):
        response = api_client.post("/api/chatrooms", json={"name": "  Launch  "}, headers=auth_headers("bob"))

        assert response.status_code == 201
        assert response.json()["name"] == "Launch"

    def test_add_and_remove_user(self, api_client, auth_headers, seeded_storage):
        add = api_client.post(f"/api/chatrooms/{ROOM}/users", json={"userId": "carol"}, headers=auth_headers("alice"))
        assert add.status_code == 204
        assert seeded_storage.is_room_member("carol", ROOM)

        remove = api_client.delete(f"/api/chatrooms/{ROOM}/users/carol", headers=auth_headers("carol"))
        assert remove.status_code == 204
        assert not seeded_storage.is_room_member("carol", ROOM)

    def test_non_member_cannot_add_users(self, api_client, auth_headers):
        response = api_client.post(f"/api/chatrooms/{ROOM}/users", json={"userId": "carol"}, headers=auth_headers("carol"))
        assert response.status_code == 403

    def test_add_unknown_user(self, api_client, auth_headers):
        response = api_client.post(f"/api/chatrooms/{ROOM}/users", json={"userId": "ghost"}, headers=auth_headers("alice"))
        assert response.status_code == 404

    def test_mark_room_read(self, api_client, auth_headers, seeded_storage):
        seeded_storage.add_message(ROOM, "bob", "one")
        seeded_storage.add_message(ROOM, "bob", "two")

        response = api_client.post(f"/api/chatrooms/{ROOM}/read", headers=auth_headers("alice"))

        assert response.status_code == 204
        assert seeded_storage.room_summaries("alice")[0].unread_count == 0


class TestMessages:

    def test_paginated_history_with_read_status(self, api_client, auth_headers, seeded_storage):
        for i in range(3):
            seeded_storage.add_message(ROOM, "bob", f"m{i}")

        page1 = api_client.get(
            f"/api/chatrooms/{ROOM}/messages", params={"page": 1, "pageSize": 2}, headers=auth_headers("alice")
        ).json()
        page2 = api_client.get(
            f"/api/chatrooms/{ROOM}/messages", params={"page": 2, "pageSize": 2}, headers=auth_headers("alice")
        ).json()

        assert [m["content"] for m in page1["messages"]] == ["m1", "m2"]
        assert page1["hasMore"] is True
        assert [m["content"] for m in page2["messages"]] == ["m0"]
        assert page2["hasMore"] is False
        assert all(m["isRead"] is False for m in page1["messages"])

    def test_history_requires_membership(self, api_client, auth_headers):
        response = api_client.get(f"/api/chatrooms/{ROOM}/messages", headers=auth_headers("carol"))
        assert response.status_code == 403

    def test_page_size_bounds(self, api_client, auth_headers):
        response = api_client.get(
            f"/api/chatrooms/{ROOM}/messages", params={"pageSize": 1000}, headers=auth_headers("alice")
        )
        assert response.status_code == 422


class TestUsers:

    def test_list_and_get_users(self, api_client, auth_headers):
        users = api_client.get("/api/users", headers=auth_headers("alice")).json()
        assert [u["id"] for u in users] == ["alice", "bob", "carol"]

        bob = api_client.get("/api/users/bob", headers=auth_headers("alice")).json()
        assert bob["fullName"] == "Bob Jones"

        assert api_client.get("/api/users/ghost", headers=auth_headers("alice")).status_code == 404

    def test_first_request_registers_caller(self, api_client, auth_headers):
        api_client.get("/api/chatrooms", headers=auth_headers("dave"))

        dave = api_client.get("/api/users/dave", headers=auth_headers("alice"))
        assert dave.status_code == 200
