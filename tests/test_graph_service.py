import httpx
import pytest

from ro_sync.core.errors import GraphAPIError, RateLimitedError
from ro_sync.services.graph_service import GraphClient


def _client(handler):
    return GraphClient(
        "token-1",
        base_url="https://graph.example/v1.0",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_request_sends_bearer_token_and_decodes_json():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        return httpx.Response(200, json={"id": "abc"})

    async with _client(handler) as client:
        body = await client.get("/me/messages")

    assert body == {"id": "abc"}
    assert seen == {"auth": "Bearer token-1", "path": "/v1.0/me/messages"}


@pytest.mark.asyncio
async def test_empty_body_decodes_to_empty_dict():
    async with _client(lambda request: httpx.Response(202)) as client:
        assert await client.post("/me/sendMail", json_body={}) == {}


@pytest.mark.asyncio
async def test_429_raises_rate_limited_with_retry_after():
    def handler(request):
        return httpx.Response(429, headers={"Retry-After": "12"})

    async with _client(handler) as client:
        with pytest.raises(RateLimitedError) as exc_info:
            await client.get("/me")

    assert exc_info.value.retry_after == 12


@pytest.mark.asyncio
async def test_error_status_raises_graph_api_error_with_message():
    def handler(request):
        return httpx.Response(404, json={"error": {"code": "ItemNotFound", "message": "Worksheet missing"}})

    async with _client(handler) as client:
        with pytest.raises(GraphAPIError) as exc_info:
            await client.get("/workbook/worksheets/Nope")

    assert exc_info.value.status_code == 404
    assert exc_info.value.message == "Worksheet missing"
