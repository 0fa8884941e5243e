"""
Helius enhanced transaction history client.

Pages through ``/v0/addresses/{address}/transactions`` newest first, using
the last signature of the previous page as the ``before`` cursor. Only the
listing is used; full parsed detail is still fetched from the ledger RPC so
both history strategies decode exactly the same shape.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from agentledger.errors import TransportFailure

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class IndexingClient(Protocol):
    """Cursor-paginated transaction listing for an address."""

    async def list_transactions(
        self, address: str, *, limit: int = MAX_PAGE_SIZE, before: Optional[str] = None
    ) -> List[Dict[str, Any]]: ...


class HeliusClient:
    """Minimal async client for the Helius enhanced transactions API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.helius.xyz",
        *,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def list_transactions(
        self,
        address: str,
        *,
        limit: int = MAX_PAGE_SIZE,
        before: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Return one page of transactions (newest first)."""
        params: Dict[str, Any] = {
            "api-key": self._api_key,
            "limit": max(1, min(limit, MAX_PAGE_SIZE)),
        }
        if before:
            params["before"] = before

        url = f"{self.base_url}/v0/addresses/{address}/transactions"
        logger.debug("helius list_transactions limit=%s before=%s", params["limit"], before)
        try:
            response = await self._get_client().get(url, params=params)
        except httpx.TimeoutException as e:
            raise TransportFailure("Helius request timed out", method="list_transactions") from e
        except httpx.RequestError as e:
            # str(e) can embed the request URL, which carries the API key
            raise TransportFailure(
                f"Helius request failed: {type(e).__name__}", method="list_transactions"
            ) from e

        if response.is_error:
            raise TransportFailure(
                f"Helius API error: HTTP {response.status_code}",
                method="list_transactions",
                status_code=response.status_code,
                rate_limited=response.status_code == 429,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise TransportFailure("Helius API returned malformed JSON", method="list_transactions") from e
        if not isinstance(body, list):
            raise TransportFailure("Helius API returned an unexpected shape", method="list_transactions")
        return body


__all__ = [
    "MAX_PAGE_SIZE",
    "IndexingClient",
    "HeliusClient",
]
