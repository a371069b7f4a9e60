"""
Unit tests for the Bulletin HTTP client.
"""

import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from bulletin_client.client import BulletinClient
from shared.config import BaseConfig
from shared.errors import MutationFailed, NotFoundError, StoreUnavailable, ValidationError


def make_client(handler, **kwargs):
    return BulletinClient("http://bulletin.test", transport=httpx.MockTransport(handler), **kwargs)


class TestBulletinClient:
    """Test cases for BulletinClient."""

    @pytest.mark.asyncio
    async def test_get_posts_sends_user_header(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["user"] = request.headers.get("X-User-Id")
            return httpx.Response(200, json={"posts": [{"id": 1, "is_liked": True, "likes": 1}]})

        posts = await make_client(handler, user_id=2).get_posts()

        assert posts == [{"id": 1, "is_liked": True, "likes": 1}]
        assert seen == {"path": "/posts", "user": "2"}

    @pytest.mark.asyncio
    async def test_add_message_posts_json(self):
        def handler(request):
            assert request.method == "POST"
            assert json.loads(request.content) == {"text": "hi"}
            return httpx.Response(201, json={"id": 4, "text": "hi"})

        assert await make_client(handler).add_message("hi") == {"id": 4, "text": "hi"}

    @pytest.mark.asyncio
    async def test_archive_path(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"links": [], "news": []})

        client = make_client(handler)
        await client.get_archive()
        await client.get_archive("2024")
        await client.get_archive("2024", "05")

        assert paths == ["/archive", "/archive/2024", "/archive/2024/05"]

    @pytest.mark.asyncio
    async def test_rejected_write_is_mutation_failed(self):
        def handler(request):
            return httpx.Response(409, json={"code": "MUTATION_FAILED", "message": "Constraint violation", "details": {}})

        with pytest.raises(MutationFailed) as exc_info:
            await make_client(handler).toggle_like(999)

        assert exc_info.value.message == "Constraint violation"
        assert exc_info.value.details["status_code"] == 409

    @pytest.mark.asyncio
    async def test_missing_row_is_not_found(self):
        def handler(request):
            return httpx.Response(404, json={"code": "NOT_FOUND", "message": "Post 9 not found"})

        with pytest.raises(NotFoundError):
            await make_client(handler).toggle_like(9)

    @pytest.mark.asyncio
    async def test_rejected_read_is_validation_error(self):
        def handler(request):
            return httpx.Response(400, json={"code": "VALIDATION_ERROR", "message": "Invalid filter"})

        with pytest.raises(ValidationError):
            await make_client(handler).get_archive("1999")

    @pytest.mark.asyncio
    async def test_server_error_on_write_is_store_unavailable(self):
        def handler(request):
            return httpx.Response(503, text="down")

        with pytest.raises(StoreUnavailable) as exc_info:
            await make_client(handler).toggle_like(1)

        assert exc_info.value.details == {"status_code": 503}

    @pytest.mark.asyncio
    async def test_connection_error_is_store_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(StoreUnavailable):
            await make_client(handler).toggle_like(1)

    @pytest.mark.asyncio
    async def test_reads_retried_on_store_unavailable(self):
        responses = [httpx.Response(503), httpx.Response(200, json={"messages": [], "total": 0})]

        def handler(request):
            return responses.pop(0)

        with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
            messages = await make_client(handler).get_messages()

        assert messages == []
        sleep.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reads_give_up_after_max_attempts(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        with patch("shared.retry.asyncio.sleep", new_callable=AsyncMock):
            with pytest.raises(StoreUnavailable):
                await make_client(handler).get_posts()

        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_writes_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        with pytest.raises(StoreUnavailable):
            await make_client(handler).add_message("hi")

        assert len(calls) == 1

    def test_from_config(self):
        config = BaseConfig(service_url="http://bulletin.internal:8000/", request_timeout=2.5, default_user_id=7)

        client = BulletinClient.from_config(config)

        assert client.base_url == "http://bulletin.internal:8000"
        assert client.timeout == 2.5
        assert client.user_id == 7
