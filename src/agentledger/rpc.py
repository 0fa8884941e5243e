"""
Async Solana JSON-RPC client.

Only the handful of methods agentledger needs. Every failure (network,
HTTP status, JSON-RPC error object, malformed body) is raised as
TransportFailure; "not found" is a normal ``None`` result.
"""
from __future__ import annotations

import asyncio
import base64
import itertools
import logging
import time
from typing import Any, Dict, List, Optional, Protocol

import httpx

from agentledger.errors import TransportFailure

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


class LedgerClient(Protocol):
    """Network boundary for submit / fetch / list against the ledger."""

    async def get_latest_blockhash(self) -> str: ...

    async def send_transaction(self, wire: bytes) -> str: ...

    async def confirm_transaction(
        self, signature: str, *, timeout: float = 60.0, poll_interval: float = 1.0
    ) -> int: ...

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]: ...

    async def get_signatures_for_address(
        self, address: str, *, limit: int = 1000, before: Optional[str] = None
    ) -> List[Dict[str, Any]]: ...

    async def get_balance(self, address: str) -> int: ...

    async def request_airdrop(self, address: str, lamports: int) -> str: ...


def _is_rate_limit(message: str) -> bool:
    msg = message.lower()
    return "rate limit" in msg or "too many requests" in msg


class SolanaRpcClient:
    """JSON-RPC 2.0 client over a shared httpx.AsyncClient."""

    def __init__(
        self,
        url: str,
        *,
        commitment: str = "confirmed",
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.commitment = commitment
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "SolanaRpcClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Issue one JSON-RPC request and return its ``result``."""
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }
        logger.debug("rpc %s", method)
        try:
            response = await self._get_client().post(self.url, json=payload)
        except httpx.TimeoutException as e:
            raise TransportFailure(f"{method} timed out", method=method) from e
        except httpx.RequestError as e:
            raise TransportFailure(f"{method} request failed: {type(e).__name__}", method=method) from e

        if response.status_code == 429:
            raise TransportFailure(
                f"{method}: rate limited (HTTP 429)",
                method=method,
                status_code=429,
                rate_limited=True,
            )
        if response.is_error:
            raise TransportFailure(
                f"{method}: HTTP {response.status_code}: {response.text[:200]}",
                method=method,
                status_code=response.status_code,
                rate_limited=_is_rate_limit(response.text),
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransportFailure(f"{method}: malformed JSON response", method=method) from e
        if not isinstance(body, dict):
            raise TransportFailure(f"{method}: malformed JSON-RPC response", method=method)

        error = body.get("error")
        if error:
            if isinstance(error, dict):
                message = str(error.get("message", error))
                code = error.get("code")
            else:
                message, code = str(error), None
            raise TransportFailure(
                f"{method}: {message}",
                method=method,
                rate_limited=code == 429 or _is_rate_limit(message),
            )
        if "result" not in body:
            raise TransportFailure(f"{method}: response has no result", method=method)
        return body["result"]

    async def _value(self, method: str, params: List[Any]) -> Any:
        result = await self.call(method, params)
        try:
            return result["value"]
        except (KeyError, TypeError):
            raise TransportFailure(f"{method}: unexpected result shape", method=method) from None

    # ------------------------------------------------------------------
    # Submit
    # ------------------------------------------------------------------

    async def get_latest_blockhash(self) -> str:
        value = await self._value("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            return value["blockhash"]
        except (KeyError, TypeError):
            raise TransportFailure("getLatestBlockhash: unexpected result shape") from None

    async def send_transaction(self, wire: bytes) -> str:
        encoded = base64.b64encode(wire).decode("ascii")
        result = await self.call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "preflightCommitment": self.commitment}],
        )
        if not isinstance(result, str):
            raise TransportFailure("sendTransaction: unexpected result shape")
        return result

    async def get_signature_statuses(self, signatures: List[str]) -> List[Optional[Dict[str, Any]]]:
        value = await self._value("getSignatureStatuses", [signatures])
        if not isinstance(value, list):
            raise TransportFailure("getSignatureStatuses: unexpected result shape")
        return value

    async def confirm_transaction(
        self,
        signature: str,
        *,
        timeout: float = 60.0,
        poll_interval: float = 1.0,
    ) -> int:
        """Poll until the transaction reaches our commitment. Returns its slot."""
        target = _COMMITMENT_RANK.get(self.commitment, 1)
        deadline = time.monotonic() + timeout
        while True:
            statuses = await self.get_signature_statuses([signature])
            status = statuses[0] if statuses else None
            if status:
                if status.get("err"):
                    raise TransportFailure(
                        f"Transaction {signature} failed: {status['err']}",
                        method="getSignatureStatuses",
                    )
                level = _COMMITMENT_RANK.get(status.get("confirmationStatus") or "", -1)
                if level >= target:
                    return int(status.get("slot") or 0)
            if time.monotonic() >= deadline:
                raise TransportFailure(
                    f"Transaction {signature} not confirmed within {timeout:.0f}s",
                    method="getSignatureStatuses",
                )
            await asyncio.sleep(poll_interval)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        # getTransaction does not accept "processed"
        commitment = "confirmed" if self.commitment == "processed" else self.commitment
        return await self.call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "jsonParsed",
                    "commitment": commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )

    async def get_signatures_for_address(
        self,
        address: str,
        *,
        limit: int = 1000,
        before: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        opts: Dict[str, Any] = {"limit": limit}
        if before:
            opts["before"] = before
        if self.commitment != "processed":
            opts["commitment"] = self.commitment
        result = await self.call("getSignaturesForAddress", [address, opts])
        if not isinstance(result, list):
            raise TransportFailure("getSignaturesForAddress: unexpected result shape")
        return result

    async def get_balance(self, address: str) -> int:
        return int(await self._value("getBalance", [address, {"commitment": self.commitment}]))

    async def request_airdrop(self, address: str, lamports: int) -> str:
        result = await self.call("requestAirdrop", [address, lamports])
        if not isinstance(result, str):
            raise TransportFailure("requestAirdrop: unexpected result shape")
        return result


__all__ = [
    "LAMPORTS_PER_SOL",
    "LedgerClient",
    "SolanaRpcClient",
]
