"""
Registry client tests against a stub aiohttp server.
"""

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from api.registry_client import RegistryClient
from core.errors import RegistryError, RegistryUnavailableError
from core.models import ChatEntry


class StubRegistry:
    """Minimal Registry recording the bodies it receives."""

    def __init__(self):
        self.requests = []
        self.fail_status = None

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self.health)
        app.router.add_get("/links/unprocessed", self.unprocessed)
        app.router.add_post("/links/{link_id}/processed", self.processed)
        app.router.add_post("/resource/html", self.record)
        app.router.add_post("/chats/bulk", self.chats)
        return app

    async def health(self, request):
        return web.json_response({"status": "running"})

    async def unprocessed(self, request):
        self.requests.append(("unprocessed", dict(request.query)))
        if self.fail_status:
            return web.json_response({"detail": "database is locked"}, status=self.fail_status)
        return web.json_response({"links": [
            {"id": 1, "url": "https://hh.ru/resume/a1", "title": "CV", "processed": False},
            {"id": 2, "url": "https://hh.ru/resume/b2", "processed": False},
        ]})

    async def processed(self, request):
        link_id = int(request.match_info["link_id"])
        self.requests.append(("processed", link_id, await request.json()))
        if link_id == 404:
            return web.json_response({"detail": "Link 404 not found"}, status=404)
        return web.json_response({"id": link_id, "processed": True})

    async def record(self, request):
        self.requests.append(("html", await request.json()))
        return web.json_response({"created": True})

    async def chats(self, request):
        body = await request.json()
        self.requests.append(("chats", body))
        return web.json_response({"upserted": len(body["chats"])})


@pytest_asyncio.fixture
async def stub():
    registry = StubRegistry()
    server = TestServer(registry.app())
    await server.start_server()
    registry.base_url = str(server.make_url(""))
    yield registry
    await server.close()


@pytest.mark.api
class TestRegistryClient:

    @pytest.mark.asyncio
    async def test_list_unprocessed_links(self, stub):
        async with RegistryClient(stub.base_url) as client:
            links = await client.list_unprocessed_links(2)

        assert [link.id for link in links] == [1, 2]
        assert links[0].url == "https://hh.ru/resume/a1"
        assert stub.requests == [("unprocessed", {"limit": "2"})]

    @pytest.mark.asyncio
    async def test_mark_processed_with_and_without_error(self, stub):
        async with RegistryClient(stub.base_url) as client:
            await client.mark_processed(1)
            await client.mark_processed(2, error="Invalid resume URL")

        assert stub.requests == [
            ("processed", 1, {}),
            ("processed", 2, {"error": "Invalid resume URL"}),
        ]

    @pytest.mark.asyncio
    async def test_upsert_html_uses_camel_case(self, stub):
        async with RegistryClient(stub.base_url) as client:
            await client.upsert_html("a1", "https://hh.ru/resume/a1", "<p>cv</p>")

        assert stub.requests == [("html", {
            "resourceId": "a1",
            "sourceUrl": "https://hh.ru/resume/a1",
            "htmlContent": "<p>cv</p>",
        })]

    @pytest.mark.asyncio
    async def test_upsert_chats(self, stub):
        async with RegistryClient(stub.base_url) as client:
            count = await client.upsert_chats([ChatEntry(chat_id="5", name="Olga")])

        assert count == 1
        assert stub.requests[0][1]["chats"][0]["chatId"] == "5"

    @pytest.mark.asyncio
    async def test_error_status_raises_registry_error(self, stub):
        stub.fail_status = 500
        async with RegistryClient(stub.base_url) as client:
            with pytest.raises(RegistryError) as exc_info:
                await client.list_unprocessed_links(5)

        assert exc_info.value.status == 500
        assert "database is locked" in str(exc_info.value)
        assert not isinstance(exc_info.value, RegistryUnavailableError)

    @pytest.mark.asyncio
    async def test_unknown_link_raises_with_404(self, stub):
        async with RegistryClient(stub.base_url) as client:
            with pytest.raises(RegistryError) as exc_info:
                await client.mark_processed(404)
        assert exc_info.value.status == 404

    @pytest.mark.asyncio
    async def test_health(self, stub):
        async with RegistryClient(stub.base_url) as client:
            assert await client.health() is True

    @pytest.mark.asyncio
    async def test_unreachable_registry(self, unused_tcp_port):
        async with RegistryClient(f"http://127.0.0.1:{unused_tcp_port}", timeout_seconds=2) as client:
            with pytest.raises(RegistryUnavailableError):
                await client.list_unprocessed_links(5)
            assert await client.health() is False
