"""
Operator API Tests
The HTTP surface wired to fake tabs and a fake registry.
"""

import pytest
from fastapi.testclient import TestClient

from conftest import FakeRegistry, FakeTabSurface, make_links
from api.config import config
from api.main import create_app
from core.batch_extractor import ExtractorConfig, ResumeBatchExtractor
from core.send_orchestrator import MessageSendOrchestrator, SendOrchestratorConfig


@pytest.fixture
def fakes():
    surface = FakeTabSurface()
    registry = FakeRegistry(make_links("a1", "b2", "https://hh.ru/vacancy/1"))
    orchestrator = MessageSendOrchestrator(surface, SendOrchestratorConfig(
        inter_task_delay_seconds=0.0,
        load_timeout_seconds=0.1,
    ))
    extractor = ResumeBatchExtractor(surface, registry, ExtractorConfig(
        link_delay_seconds=0.0,
        load_timeout_seconds=0.1,
        worker_timeout_seconds=0.5,
    ))
    return surface, registry, orchestrator, extractor


@pytest.fixture
def client(fakes):
    surface, registry, orchestrator, extractor = fakes
    app = create_app(orchestrator=orchestrator, extractor=extractor, surface=surface, registry=registry)
    with TestClient(app) as test_client:
        yield test_client


@pytest.mark.api
class TestHealth:

    def test_ping(self, client):
        body = client.get("/health").json()
        assert body["success"] is True
        assert body["message"] == "pong"
        assert "timestamp" in body


@pytest.mark.api
class TestSendChat:
    """Send requests are acknowledged immediately."""

    def test_accepted(self, client, fakes):
        _, _, orchestrator, _ = fakes
        response = client.post("/chats/send", json={
            "chatId": "123",
            "messageText": "Добрый день!",
            "mode": "background-tab",
        })

        assert response.status_code == 200
        assert response.json()["accepted"] is True
        assert response.json()["taskId"].startswith("msg_")
        assert orchestrator.stats["enqueued"] == 1

    def test_default_mode_is_current_tab(self, client, fakes):
        surface = fakes[0]
        assert client.post("/chats/send", json={"chatId": "1", "messageText": "hi"}).status_code == 200
        assert not surface.ops("create_tab")

    @pytest.mark.parametrize("body", [
        {"chatId": "1", "messageText": "hi", "mode": "new-window"},
        {"messageText": "hi"},
        {"chatId": "1", "messageText": ""},
    ])
    def test_invalid_requests_rejected(self, client, body):
        assert client.post("/chats/send", json=body).status_code == 422


@pytest.mark.api
class TestExtraction:
    """Extraction runs return the batch outcome."""

    def test_run_batch(self, client, fakes):
        _, registry, _, _ = fakes
        response = client.post("/extract/run", json={"count": 3})

        assert response.status_code == 200
        outcome = response.json()
        assert outcome["requestedCount"] == 3
        assert outcome["processedCount"] == 3
        assert outcome["succeededCount"] == 2
        assert outcome["failedCount"] == 1
        assert outcome["errorSamples"][0]["url"] == "https://hh.ru/vacancy/1"
        assert set(registry.saved) == {"a1", "b2"}

    def test_default_count(self, client):
        response = client.post("/extract/run")
        assert response.json()["requestedCount"] == config.EXTRACT_DEFAULT_COUNT

    def test_per_link_strategy_override(self, client, fakes):
        surface = fakes[0]
        response = client.post("/extract/run", json={"count": 2, "strategy": "per-link"})

        assert response.json()["succeededCount"] == 2
        assert len(surface.ops("create_tab")) == 2

    def test_registry_unavailable_is_502(self, client, fakes):
        _, registry, _, _ = fakes
        registry.fail_listing = True

        response = client.post("/extract/run", json={"count": 3})

        assert response.status_code == 502
        assert "Registry unavailable" in response.json()["detail"]

    def test_non_positive_count_rejected(self, client):
        assert client.post("/extract/run", json={"count": 0}).status_code == 422


@pytest.mark.api
class TestChatList:
    """Visible chats come from the worker in the active tab."""

    @staticmethod
    def with_chats(surface):
        def handler(tab_id, request):
            if request["type"] == "list-chats":
                return {"success": True, "chats": [
                    {"chatId": "10", "name": "Анна", "url": "https://hh.ru/chat/10", "isActive": True},
                    {"chatId": "11", "name": "Олег", "url": "https://hh.ru/chat/11"},
                ]}
            return {"success": True}
        surface.worker_handler = handler

    def test_visible_chats(self, client, fakes):
        surface = fakes[0]
        self.with_chats(surface)

        chats = client.get("/chats/visible").json()["chats"]

        assert [c["chatId"] for c in chats] == ["10", "11"]
        assert chats[0]["isActive"] is True
        assert surface.ops("send_to_worker")[0][1] == 1

    def test_no_active_tab_is_409(self, client, fakes):
        fakes[0].active_tab = None
        assert client.get("/chats/visible").status_code == 409

    def test_worker_failure_is_502(self, client, fakes):
        fakes[0].worker_handler = lambda tab_id, req: {"success": False, "error": "Chat list not found"}
        response = client.get("/chats/visible")
        assert response.status_code == 502
        assert "Chat list not found" in response.json()["detail"]

    def test_sync_pushes_to_registry(self, client, fakes):
        surface, registry, _, _ = fakes
        self.with_chats(surface)

        response = client.post("/chats/sync")

        assert response.json() == {"found": 2, "upserted": 2}
        assert [chat.chat_id for chat in registry.chats] == ["10", "11"]
