"""
Integration tests for core/meli_client.py against httpx.MockTransport.
"""
import pytest
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx

from core.dates import resolve_preset
from core.exceptions import MeliDataError, RateLimitError, TransientFetchError
from core.meli_client import MeliClient
from core.observability import correlation_context

from conftest import RecordingSleep, json_transport

BASE_URL = "https://api.test"


def _client(handler, sleep=None, **kwargs) -> MeliClient:
    return MeliClient(
        base_url=BASE_URL,
        client_id="123",
        client_secret="secret",
        sleep=sleep or RecordingSleep(),
        transport=json_transport(handler),
        **kwargs
    )


class TestRequest:
    """Tests for MeliClient.request."""

    @pytest.mark.asyncio
    async def test_success(self):
        seen = []

        def handler(request):
            seen.append(request)
            return 200, {"results": [], "paging": {"total": 0}}

        async with _client(handler) as client:
            data = await client.search_orders("tok", {"seller": "1", "q": None})

        assert data == {"results": [], "paging": {"total": 0}}
        request = seen[0]
        assert request.url.path == "/orders/search"
        assert request.url.params["seller"] == "1"
        assert "q" not in request.url.params
        assert request.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_rate_limit_retries_then_fails(self):
        """Three 429s in a row are retried after 1s, 2s and 4s; no fourth retry."""
        sleep = RecordingSleep()
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, json={"message": "too many requests"}, headers={"Retry-After": "2"})

        async with _client(handler, sleep=sleep, max_retries=3) as client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.get("/users/me", token="tok")

        assert sleep.delays == [1.0, 2.0, 4.0]
        assert len(calls) == 4
        assert exc_info.value.retry_after == 2

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self):
        sleep = RecordingSleep()
        responses = iter([(500, {"error": "boom"}), (200, {"id": 1})])

        async with _client(lambda request: next(responses), sleep=sleep) as client:
            data = await client.get("/users/me", token="tok")

        assert data == {"id": 1}
        assert sleep.delays == [1.0]

    @pytest.mark.asyncio
    async def test_non_2xx_raises_transient_with_status(self):
        async with _client(lambda request: (404, {"error": "not_found"}), max_retries=0) as client:
            with pytest.raises(TransientFetchError) as exc_info:
                await client.get("/items/MLA1")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_network_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler, max_retries=0) as client:
            with pytest.raises(TransientFetchError) as exc_info:
                await client.get("/users/me")
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>", headers={"Content-Type": "text/html"})

        async with _client(handler) as client:
            with pytest.raises(MeliDataError):
                await client.get("/users/me")

    @pytest.mark.asyncio
    async def test_empty_body(self):
        async with _client(lambda request: httpx.Response(200)) as client:
            assert await client.get("/users/me") == {}

    @pytest.mark.asyncio
    async def test_forwards_correlation_id(self):
        seen = []

        def handler(request):
            seen.append(request.headers.get("X-Request-ID"))
            return 200, {}

        async with _client(handler) as client:
            with correlation_context("req-42"):
                await client.get("/users/me")

        assert seen == ["req-42"]


class TestOAuthCalls:
    """Tests for the OAuth helpers."""

    @pytest.mark.asyncio
    async def test_exchange_code_form(self):
        seen = []

        def handler(request):
            seen.append(request)
            return 200, {"access_token": "a", "refresh_token": "r", "user_id": 99, "expires_in": 21600}

        async with _client(handler) as client:
            payload = await client.exchange_code("CODE", "https://app/callback")

        assert payload["user_id"] == 99
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/oauth/token"
        body = request.content.decode()
        assert "grant_type=authorization_code" in body
        assert "code=CODE" in body
        assert "client_id=123" in body

    @pytest.mark.asyncio
    async def test_token_calls_are_not_retried(self):
        """Token endpoints get a single attempt."""
        sleep = RecordingSleep()
        calls = []

        def handler(request):
            calls.append(request)
            return 500, {"error": "server_error"}

        async with _client(handler, sleep=sleep) as client:
            with pytest.raises(TransientFetchError):
                await client.refresh_token("r")

        assert len(calls) == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_revoke(self):
        seen = []

        def handler(request):
            seen.append(request)
            return 200, {}

        async with _client(handler) as client:
            await client.revoke_token("a")

        assert seen[0].url.path == "/oauth/revoke"
        assert seen[0].url.params["access_token"] == "a"


class TestVisits:
    """Tests for get_user_visits."""

    @pytest.mark.asyncio
    async def test_window_params(self):
        seen = []
        window = resolve_preset(
            "today", now=datetime(2024, 5, 15, tzinfo=ZoneInfo("America/Argentina/Buenos_Aires"))
        )

        def handler(request):
            seen.append(request)
            return 200, {"total_visits": 10}

        async with _client(handler) as client:
            await client.get_user_visits("tok", "99", window)

        assert seen[0].url.path == "/users/99/items_visits"
        assert seen[0].url.params["date_from"] == window.from_iso
        assert seen[0].url.params["date_to"] == window.to_iso
