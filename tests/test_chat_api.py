# mypy: ignore-errors
"""Integration tests for the chat REST and WebSocket endpoints."""

from datetime import UTC, datetime, timedelta

import pytest
from starlette.websockets import WebSocketDisconnect

from clientdesk.core.security import create_access_token
from clientdesk.services.errors import PersistenceError

T0 = datetime(2025, 3, 5, 9, 0, tzinfo=UTC)


def _messages_url(client_id):
    return f"/api/v1/chat/{client_id}/messages"


class TestSendMessage:
    def test_client_sends_message(self, client, seeded, client_headers):
        response = client.post(
            _messages_url(seeded.client_id),
            json={"message": "  Hello  "},
            headers=client_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Hello"
        assert body["is_from_client"] is True
        assert body["is_read"] is False
        assert body["sender_id"] == seeded.client_user_id
        assert body["sender_name"] == seeded.client_user_name

    def test_admin_sends_attachment_only(self, client, seeded, admin_headers):
        response = client.post(
            _messages_url(seeded.client_id),
            json={"attachment_url": "http://test/storage/x.pdf", "attachment_type": "file"},
            headers=admin_headers,
        )

        assert response.status_code == 201
        assert response.json()["is_from_client"] is False
        assert response.json()["attachment_type"] == "file"

    def test_blank_message_is_a_noop(self, client, seeded, client_headers, chat_services):
        response = client.post(
            _messages_url(seeded.client_id),
            json={"message": "   "},
            headers=client_headers,
        )

        assert response.status_code == 204
        history = client.get(_messages_url(seeded.client_id), headers=client_headers)
        assert history.json() == []

    def test_persistence_failure_is_503(self, client, seeded, client_headers, chat_services, mocker):
        mocker.patch.object(
            chat_services.store, "send_message", side_effect=PersistenceError("db down")
        )

        response = client.post(
            _messages_url(seeded.client_id),
            json={"message": "Hi"},
            headers=client_headers,
        )

        assert response.status_code == 503


class TestAccess:
    def test_missing_token(self, client, seeded):
        response = client.get(_messages_url(seeded.client_id))
        assert response.status_code in {401, 403}

    def test_invalid_token(self, client, seeded):
        response = client.get(
            _messages_url(seeded.client_id), headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401

    def test_token_for_unknown_profile(self, client, seeded):
        headers = {"Authorization": f"Bearer {create_access_token('ghost')}"}
        response = client.get(_messages_url(seeded.client_id), headers=headers)
        assert response.status_code == 401

    def test_client_cannot_open_another_conversation(self, client, seeded, client_headers):
        response = client.get(_messages_url(seeded.other_client_id), headers=client_headers)
        assert response.status_code == 403

    def test_admin_unknown_client_is_404(self, client, seeded, admin_headers):
        response = client.get(_messages_url("does-not-exist"), headers=admin_headers)
        assert response.status_code == 404


class TestHistory:
    def test_history_is_ordered_named_and_marked_read(
        self, client, seeded, admin_headers, add_message
    ):
        add_message(seeded.client_id, seeded.admin_id, is_from_client=False,
                    created_at=T0 + timedelta(minutes=1), message="reply")
        add_message(seeded.client_id, seeded.client_user_id, is_from_client=True,
                    created_at=T0, message="question")

        response = client.get(_messages_url(seeded.client_id), headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert [m["message"] for m in body] == ["question", "reply"]
        assert [m["sender_name"] for m in body] == [seeded.client_user_name, seeded.admin_name]

        again = client.get(_messages_url(seeded.client_id), headers=admin_headers).json()
        assert [m["is_read"] for m in again] == [True, False]

    def test_history_can_be_read_without_marking(
        self, client, seeded, admin_headers, add_message
    ):
        add_message(seeded.client_id, seeded.client_user_id, is_from_client=True,
                    created_at=T0, message="question")

        client.get(
            _messages_url(seeded.client_id), params={"mark_read": "false"}, headers=admin_headers
        )
        body = client.get(
            _messages_url(seeded.client_id), params={"mark_read": "false"}, headers=admin_headers
        ).json()

        assert body[0]["is_read"] is False

    def test_transcript(self, client, seeded, client_headers, add_message):
        empty = client.get(
            f"/api/v1/chat/{seeded.client_id}/transcript", headers=client_headers
        ).json()
        assert empty["days"] == []
        assert empty["empty_message"]

        add_message(seeded.client_id, seeded.client_user_id, is_from_client=True,
                    created_at=T0, message="mine")
        add_message(seeded.client_id, seeded.admin_id, is_from_client=False,
                    created_at=T0 + timedelta(days=1), message="theirs")

        transcript = client.get(
            f"/api/v1/chat/{seeded.client_id}/transcript", headers=client_headers
        ).json()

        assert transcript["client_id"] == seeded.client_id
        assert [day["date"] for day in transcript["days"]] == ["2025-03-05", "2025-03-06"]
        mine = transcript["days"][0]["messages"][0]
        theirs = transcript["days"][1]["messages"][0]
        assert mine["is_current_user"] is True
        assert theirs["is_current_user"] is False
        assert theirs["avatar_initial"] == "A"


class TestConversations:
    def test_admin_lists_conversations(self, client, seeded, admin_headers, add_message):
        add_message(seeded.other_client_id, seeded.other_user_id, is_from_client=True,
                    created_at=T0, message="help")

        response = client.get("/api/v1/chat/conversations", headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert [c["client_id"] for c in body] == [seeded.other_client_id, seeded.client_id]
        assert body[0]["unread_count"] == 1
        assert body[0]["last_message"] == "help"

    def test_clients_cannot_list_conversations(self, client, seeded, client_headers):
        response = client.get("/api/v1/chat/conversations", headers=client_headers)
        assert response.status_code == 403


class TestAttachments:
    def test_upload_image(self, client, seeded, client_headers, tmp_path):
        response = client.post(
            f"/api/v1/chat/{seeded.client_id}/attachments",
            files={"file": ("photo.JPG", b"\xff\xd8\xff", "image/jpeg")},
            headers=client_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["type"] == "image"
        assert body["path"].startswith(f"client-attachments/{seeded.client_id}/")
        assert body["path"].endswith(".jpg")
        assert body["url"].endswith(body["path"])
        assert (tmp_path / "storage" / "chat-attachments" / body["path"]).exists()

    def test_upload_empty_file(self, client, seeded, admin_headers):
        response = client.post(
            f"/api/v1/chat/{seeded.client_id}/attachments",
            files={"file": ("empty.txt", b"", "text/plain")},
            headers=admin_headers,
        )
        assert response.status_code == 400

    def test_upload_storage_failure(self, client, seeded, admin_headers, chat_services, mocker):
        from clientdesk.services.errors import UploadError

        mocker.patch.object(chat_services.uploader, "upload", side_effect=UploadError("s3 down"))

        response = client.post(
            f"/api/v1/chat/{seeded.client_id}/attachments",
            files={"file": ("a.pdf", b"%PDF", "application/pdf")},
            headers=admin_headers,
        )
        assert response.status_code == 502


class TestMarkRead:
    def test_recipient_marks_message_read(
        self, client, seeded, admin_headers, client_headers, add_message
    ):
        row = add_message(seeded.client_id, seeded.client_user_id, is_from_client=True,
                          created_at=T0, message="question")
        url = f"/api/v1/chat/messages/{row.id}/read"

        assert client.put(url, headers=client_headers).status_code == 403
        assert client.put(url, headers=admin_headers).json() == {"status": "marked_as_read"}
        assert client.put(url, headers=admin_headers).json() == {"status": "already_read"}

    def test_unknown_or_foreign_message_is_404(
        self, client, seeded, admin_headers, client_headers, add_message
    ):
        row = add_message(seeded.other_client_id, seeded.admin_id, is_from_client=False,
                          created_at=T0, message="private")

        assert client.put("/api/v1/chat/messages/missing/read",
                          headers=admin_headers).status_code == 404
        assert client.put(f"/api/v1/chat/messages/{row.id}/read",
                          headers=client_headers).status_code == 404


class TestConversationStream:
    def _ws_url(self, client_id, user_id):
        return f"/api/v1/chat/{client_id}/ws?token={create_access_token(user_id)}"

    def test_history_then_live_messages(self, client, seeded, client_headers, add_message):
        add_message(seeded.client_id, seeded.client_user_id, is_from_client=True,
                    created_at=T0, message="earlier")

        with client.websocket_connect(self._ws_url(seeded.client_id, seeded.admin_id)) as ws:
            history = ws.receive_json()
            assert history["type"] == "history"
            assert history["subscribed"] is True
            assert [m["text"] for m in history["messages"]] == ["earlier"]
            assert history["messages"][0]["is_read"] is True

            response = client.post(
                _messages_url(seeded.client_id),
                json={"message": "live one"},
                headers=client_headers,
            )
            assert response.status_code == 201

            live = ws.receive_json()
            assert live["type"] == "message"
            assert live["after_id"] == history["messages"][0]["id"]
            assert live["message"]["id"] == response.json()["id"]
            assert live["message"]["sender_name"] == seeded.client_user_name
            assert live["message"]["is_read"] is True
            assert live["message"]["is_current_user"] is False

            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

            ws.send_json({"type": "bogus"})
            assert ws.receive_json()["type"] == "error"

    def test_resubscribe_sends_fresh_history(self, client, seeded, add_message):
        with client.websocket_connect(
            self._ws_url(seeded.client_id, seeded.client_user_id)
        ) as ws:
            assert ws.receive_json()["messages"] == []
            add_message(seeded.client_id, seeded.admin_id, is_from_client=False,
                        created_at=T0, message="while away")

            ws.send_json({"type": "resubscribe"})
            history = ws.receive_json()

            assert history["type"] == "history"
            assert [m["text"] for m in history["messages"]] == ["while away"]

    def test_dropped_feed_sends_notice(self, client, seeded, backend):
        with client.websocket_connect(self._ws_url(seeded.client_id, seeded.admin_id)) as ws:
            ws.receive_json()
            client.portal.call(backend.broker.disconnect)

            notice = ws.receive_json()

            assert notice["type"] == "notice"
            assert "Reconnect" in notice["detail"]

    @pytest.mark.parametrize("token_owner", ["bad-token", "other"])
    def test_unauthorised_socket_is_closed(self, client, seeded, token_owner):
        if token_owner == "other":
            url = self._ws_url(seeded.client_id, seeded.other_user_id)
        else:
            url = f"/api/v1/chat/{seeded.client_id}/ws?token=bad-token"

        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect(url) as ws:
                ws.receive_json()

        assert exc_info.value.code == 1008
