"""
Integration Tests for Upstream Client
=====================================

Integration tests for the aiohttp transport and the dispatcher against a
local aiohttp server standing in for the label rendering service.
"""

import asyncio
from typing import Any, Dict, List

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from zpl_render.core.errors import RetryableUpstreamError, TransientNetworkError
from zpl_render.core.upstream.cache import RenderCache
from zpl_render.core.upstream.client import UpstreamClient
from zpl_render.core.upstream.dispatcher import UpstreamDispatcher
from zpl_render.core.upstream.gate import ConcurrencyGate
from zpl_render.models.schemas import OutputFormat, RenderRequest

from tests.utils.helpers import make_pdf
from tests.utils.mocks import RecordingSleep

PDF = make_pdf(width=288, height=432)


class LabelService:
    """Minimal label rendering service with scriptable failures."""

    def __init__(self):
        self.requests: List[Dict[str, Any]] = []
        self.failures: List[int] = []
        self.delay = 0.0

    async def render(self, request: web.Request) -> web.Response:
        self.requests.append(
            {
                "path": request.path,
                "body": await request.text(),
                "headers": dict(request.headers),
            }
        )
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.failures:
            status = self.failures.pop(0)
            return web.Response(status=status, text="slow down", headers={"Retry-After": "1"})
        return web.Response(body=PDF, content_type="application/pdf")

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/v1/printers/{dpmm}/labels/{size}/{orientation}", self.render)
        app.router.add_post("/v1/printers/{dpmm}/labels/{size}/{orientation}/{index}", self.render)
        return app


@pytest_asyncio.fixture
async def label_service():
    service = LabelService()
    server = TestServer(service.app())
    await server.start_server()
    service.base_url = str(server.make_url("/")).rstrip("/")
    try:
        yield service
    finally:
        await server.close()


@pytest_asyncio.fixture
async def upstream_client():
    client = UpstreamClient(timeout=2.0, connect_timeout=1.0)
    try:
        yield client
    finally:
        await client.close()


class TestUpstreamClient:
    """Test the aiohttp transport."""

    @pytest.mark.asyncio
    async def test_post_returns_body_and_headers(self, label_service, upstream_client):
        url = f"{label_service.base_url}/v1/printers/8dpmm/labels/4x6/0"

        response = await upstream_client.post(url, "^XA^XZ", {"Accept": "application/pdf"})

        assert response.ok
        assert response.body == PDF
        assert response.headers["Content-Type"].startswith("application/pdf")
        assert label_service.requests[0]["body"] == "^XA^XZ"
        assert label_service.requests[0]["headers"]["Accept"] == "application/pdf"

    @pytest.mark.asyncio
    async def test_error_status_is_returned_not_raised(self, label_service, upstream_client):
        label_service.failures = [429]
        url = f"{label_service.base_url}/v1/printers/8dpmm/labels/4x6/0"

        response = await upstream_client.post(url, "^XA^XZ", {})

        assert response.status == 429
        assert response.text == "slow down"
        assert response.headers["Retry-After"] == "1"

    @pytest.mark.asyncio
    async def test_connection_failure(self, upstream_client):
        with pytest.raises(TransientNetworkError):
            await upstream_client.post("http://127.0.0.1:1/v1/printers", "^XA^XZ", {})

    @pytest.mark.asyncio
    async def test_slow_upstream_times_out(self, label_service):
        label_service.delay = 0.5
        client = UpstreamClient(timeout=0.1)
        try:
            with pytest.raises(RetryableUpstreamError):
                await client.post(
                    f"{label_service.base_url}/v1/printers/8dpmm/labels/4x6/0", "^XA^XZ", {}
                )
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_session_is_recreated_after_close(self, label_service, upstream_client):
        url = f"{label_service.base_url}/v1/printers/8dpmm/labels/4x6/0"
        await upstream_client.post(url, "^XA^XZ", {})
        await upstream_client.close()

        response = await upstream_client.post(url, "^XA^XZ", {})

        assert response.ok


class TestDispatcherOverHttp:
    """Test retries end to end over real HTTP."""

    @pytest.mark.asyncio
    async def test_retry_then_success(self, label_service, upstream_client):
        label_service.failures = [503, 429]
        sleep = RecordingSleep()
        dispatcher = UpstreamDispatcher(
            endpoints=[label_service.base_url],
            client=upstream_client,
            cache=RenderCache(),
            gate=ConcurrencyGate(2),
            sleep=sleep,
            rng=lambda: 0.0,
        )
        request = RenderRequest(zpl="^XA^FDLABEL1^FS^XZ", dpi=300, orientation=90)

        result = await dispatcher.dispatch(request, OutputFormat.DOCUMENT)

        assert result == PDF
        assert [r["path"] for r in label_service.requests] == [
            "/v1/printers/12dpmm/labels/4x6/1"
        ] * 3
        assert sleep.delays == [1.0, 1.0]
        assert label_service.requests[0]["headers"]["X-API-Instance"] == "Render-Instance-1"
