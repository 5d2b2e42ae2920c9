"""
Worker Protocol Tests
Tagged request/response validation at the page boundary.
"""

import pytest

from core.errors import WorkerProtocolError
from core.protocol import (
    FetchHtmlRequest,
    FetchHtmlResponse,
    ListChatsRequest,
    ListChatsResponse,
    SendMessageRequest,
    parse_worker_message,
    parse_worker_request,
    parse_worker_response,
)


@pytest.mark.protocol
class TestRequests:
    """Requests serialize to the camelCase wire shape."""

    def test_send_message_wire_shape(self):
        request = SendMessageRequest(chat_id="42", text="Добрый день")
        assert request.to_wire() == {"type": "send-message", "chatId": "42", "text": "Добрый день"}

    def test_parse_dispatches_on_type(self):
        assert isinstance(parse_worker_request({"type": "fetch-html", "url": "https://hh.ru/resume/ab"}), FetchHtmlRequest)
        assert isinstance(parse_worker_request({"type": "list-chats"}), ListChatsRequest)
        parsed = parse_worker_request({"type": "send-message", "chatId": "1", "text": "x"})
        assert parsed.chat_id == "1"

    def test_unknown_request_type_rejected(self):
        with pytest.raises(WorkerProtocolError):
            parse_worker_request({"type": "delete-everything"})

    def test_missing_field_rejected(self):
        with pytest.raises(WorkerProtocolError):
            parse_worker_request({"type": "send-message", "chatId": "1"})


@pytest.mark.protocol
class TestResponses:
    """Replies are validated against the request that produced them."""

    def test_fetch_html_response(self):
        response = parse_worker_response("fetch-html", {"success": True, "html": "<p>cv</p>"})
        assert isinstance(response, FetchHtmlResponse)
        assert response.html == "<p>cv</p>"

    def test_failure_response_carries_error(self):
        response = parse_worker_response("send-message", {"success": False, "error": "Send button not found"})
        assert response.success is False
        assert response.error == "Send button not found"

    def test_list_chats_response(self):
        response = parse_worker_response("list-chats", {
            "success": True,
            "chats": [{"chatId": "7", "name": "Ivan", "url": "https://hh.ru/chat/7", "isActive": True}],
        })
        assert isinstance(response, ListChatsResponse)
        assert response.chats[0].chat_id == "7"
        assert response.chats[0].is_active is True

    @pytest.mark.parametrize("payload", [None, "ok", 42, []])
    def test_non_object_reply_rejected(self, payload):
        with pytest.raises(WorkerProtocolError):
            parse_worker_response("fetch-html", payload)

    def test_reply_without_success_rejected(self):
        with pytest.raises(WorkerProtocolError):
            parse_worker_response("fetch-html", {"html": "<p></p>"})

    def test_unknown_request_type(self):
        with pytest.raises(WorkerProtocolError):
            parse_worker_response("screenshot", {"success": True})


@pytest.mark.protocol
class TestAnnouncements:
    """Only ``ready`` may arrive unsolicited."""

    def test_ready_announcement(self):
        announcement = parse_worker_message({"type": "ready", "chatId": "99"})
        assert announcement.chat_id == "99"

    @pytest.mark.parametrize("payload", [
        {"type": "CONTENT_SCRIPT_READY", "chatId": "1"},
        {"chatId": "1"},
        {"type": "ready"},
        "ready",
    ])
    def test_invalid_messages_rejected(self, payload):
        with pytest.raises(WorkerProtocolError):
            parse_worker_message(payload)
