"""Tests for the Helius enhanced history client."""

from __future__ import annotations

import httpx
import pytest

from agentledger.errors import TransportFailure
from agentledger.indexer import HeliusClient


def _client(handler) -> HeliusClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HeliusClient("secret-key", "https://api-devnet.helius.xyz/", client=http)


class TestListTransactions:
    @pytest.mark.asyncio
    async def test_request_shape(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=[{"signature": "a"}, {"signature": "b"}])

        page = await _client(handler).list_transactions("Addr111", limit=30, before="zzz")

        assert page == [{"signature": "a"}, {"signature": "b"}]
        url = seen[0].url
        assert url.path == "/v0/addresses/Addr111/transactions"
        assert url.host == "api-devnet.helius.xyz"
        assert url.params["api-key"] == "secret-key"
        assert url.params["limit"] == "30"
        assert url.params["before"] == "zzz"

    @pytest.mark.asyncio
    async def test_limit_clamped(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.params["limit"])
            return httpx.Response(200, json=[])

        client = _client(handler)
        await client.list_transactions("Addr", limit=500)
        await client.list_transactions("Addr", limit=0)

        assert seen == ["100", "1"]

    @pytest.mark.asyncio
    async def test_no_cursor_param_on_first_page(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.params)
            return httpx.Response(200, json=[])

        await _client(handler).list_transactions("Addr")
        assert "before" not in seen[0]

    @pytest.mark.asyncio
    async def test_rate_limited(self) -> None:
        client = _client(lambda request: httpx.Response(429))
        with pytest.raises(TransportFailure) as exc_info:
            await client.list_transactions("Addr")
        assert exc_info.value.rate_limited
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        client = _client(lambda request: httpx.Response(500, text="boom"))
        with pytest.raises(TransportFailure, match="HTTP 500"):
            await client.list_transactions("Addr")

    @pytest.mark.asyncio
    async def test_unexpected_shape(self) -> None:
        client = _client(lambda request: httpx.Response(200, json={"error": "nope"}))
        with pytest.raises(TransportFailure, match="unexpected shape"):
            await client.list_transactions("Addr")

    @pytest.mark.asyncio
    async def test_connection_error_hides_api_key(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError(f"cannot reach {request.url}", request=request)

        with pytest.raises(TransportFailure) as exc_info:
            await _client(handler).list_transactions("Addr")
        assert "secret-key" not in str(exc_info.value)
