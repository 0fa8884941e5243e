"""
History reconciliation: turn a wallet's transaction history into audit
entries.

Two strategies, chosen once when the reconciler is built:

  RpcHistory      getSignaturesForAddress in oversampled pages, paged by
                  ``before`` cursor, + getTransaction per signature,
                  sequentially.
  IndexedHistory  Helius enhanced listing, paged by ``before`` cursor, with
                  detail fetches fanned out in chunks of ``concurrency``.

Both yield the same candidates, and each candidate ends up as one of:
fetch-failed, decode-failed, decoded-invalid or filtered (all dropped
silently), or kept. Individual failures are never retried within a call.
Only a failure of the listing itself surfaces, as TransportFailure. When the
indexed strategy raises it, the reconciler runs RpcHistory once for that
call.

Oversampling sizes each listing page for the share of unrelated
transactions. Both strategies keep paging until the cap is reached or the
listing runs out, so a record behind any number of unrelated transactions
is still found. ``before_signature`` resumes a scan from a known entry.
"""
from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Sized

from pydantic import BaseModel, ConfigDict, Field, field_validator

from agentledger.config import explorer_url
from agentledger.errors import TransportFailure
from agentledger.extract import extract_memo
from agentledger.indexer import MAX_PAGE_SIZE, IndexingClient
from agentledger.keystore import decode_address
from agentledger.memo import MemoPayload
from agentledger.rpc import LedgerClient

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 50
MAX_SIGNATURES = 1000
DEFAULT_OVERSAMPLE = 4
FETCH_CONCURRENCY = 10
PAGE_MULTIPLIER = 3


def to_unix_seconds(value: Any) -> Optional[int]:
    """Normalise a time bound: Unix seconds, datetime, or ISO-8601 string.

    Naive datetimes are taken as UTC.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError("time bound must not be a boolean")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"time bound must be finite: {value!r}")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
        return to_unix_seconds(datetime.fromisoformat(text.replace("Z", "+00:00")))
    raise ValueError(f"Unsupported time bound: {value!r}")


def _within(t: int, lower: Optional[int], upper: Optional[int]) -> bool:
    if lower is not None and t < lower:
        return False
    if upper is not None and t > upper:
        return False
    return True


class QueryOptions(BaseModel):
    """Filters for a history query.

    ``after``/``before`` bound the record's own ``ts``;
    ``confirmed_after``/``confirmed_before`` bound the ledger block time.
    All bounds are inclusive.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    agent_id: Optional[str] = None
    action: Optional[str] = None
    after: Optional[int] = None
    before: Optional[int] = None
    confirmed_after: Optional[int] = None
    confirmed_before: Optional[int] = None
    limit: int = Field(default=DEFAULT_LIMIT, ge=1, le=MAX_SIGNATURES)
    before_signature: Optional[str] = None

    @field_validator("after", "before", "confirmed_after", "confirmed_before", mode="before")
    @classmethod
    def _normalise_time(cls, value: Any) -> Optional[int]:
        return to_unix_seconds(value)

    @property
    def has_confirmation_bounds(self) -> bool:
        return self.confirmed_after is not None or self.confirmed_before is not None

    def allows_block_time(self, block_time: Optional[int]) -> bool:
        """Confirmation-time check. Unknown block time fails any bound."""
        if not self.has_confirmation_bounds:
            return True
        if block_time is None:
            return False
        return _within(block_time, self.confirmed_after, self.confirmed_before)

    def matches(self, memo: MemoPayload, block_time: Optional[int]) -> bool:
        if self.agent_id is not None and memo.agent != self.agent_id:
            return False
        if self.action is not None and memo.action != self.action:
            return False
        if not _within(memo.ts, self.after, self.before):
            return False
        return self.allows_block_time(block_time)


@dataclass
class LogEntry:
    """A verified record plus its on-chain provenance."""

    signature: str
    slot: int
    memo: MemoPayload
    explorer_url: str
    block_time: Optional[int] = None
    verified: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "signature": self.signature,
            "slot": self.slot,
            "block_time": self.block_time,
            "memo": self.memo.to_dict(),
            "verified": self.verified,
            "explorer_url": self.explorer_url,
        }


@dataclass
class Candidate:
    """One listed transaction, with its parsed detail if the fetch worked."""

    signature: str
    slot: int
    block_time: Optional[int]
    tx: Optional[Dict[str, Any]]

    def to_entry(self, options: QueryOptions, network: str) -> Optional[LogEntry]:
        if self.tx is None:
            return None
        block_time = self.tx.get("blockTime")
        if block_time is None:
            block_time = self.block_time
        slot = self.tx.get("slot") or self.slot
        scan = extract_memo(self.tx)
        if scan.memo is None:
            logger.debug("skip %s: %s", self.signature, scan.reason)
            return None
        if not options.matches(scan.memo, block_time):
            return None
        return LogEntry(
            signature=self.signature,
            slot=int(slot),
            memo=scan.memo,
            explorer_url=explorer_url(self.signature, network),
            block_time=block_time,
        )


async def _fetch_detail(client: LedgerClient, signature: str) -> Optional[Dict[str, Any]]:
    try:
        tx = await client.get_transaction(signature)
    except TransportFailure as e:
        logger.debug("skip %s: fetch failed: %s", signature, e)
        return None
    if tx is None:
        logger.debug("skip %s: transaction not available", signature)
    return tx if isinstance(tx, dict) else None


class HistoryStrategy:
    """Shared collection loop; subclasses provide ``iter_candidates``."""

    name = "base"

    def __init__(self, client: LedgerClient, *, network: str = "devnet"):
        self.client = client
        self.network = network

    def iter_candidates(
        self, address: str, options: QueryOptions, found: Sized = ()
    ) -> AsyncIterator[Candidate]:
        """Yield candidates newest first. ``found`` holds the entries kept so far."""
        raise NotImplementedError

    async def query(self, address: str, options: QueryOptions) -> List[LogEntry]:
        entries: List[LogEntry] = []
        candidates = self.iter_candidates(address, options, entries)
        try:
            async for candidate in candidates:
                entry = candidate.to_entry(options, self.network)
                if entry is None:
                    continue
                entries.append(entry)
                if len(entries) >= options.limit:
                    break
        finally:
            await candidates.aclose()

        # Listing order is already newest first; the sort is stable.
        entries.sort(key=lambda e: e.slot, reverse=True)
        return entries


class RpcHistory(HistoryStrategy):
    """Baseline strategy using only the ledger RPC."""

    name = "rpc"

    def __init__(
        self,
        client: LedgerClient,
        *,
        network: str = "devnet",
        oversample: int = DEFAULT_OVERSAMPLE,
    ):
        super().__init__(client, network=network)
        self.oversample = oversample

    async def iter_candidates(
        self, address: str, options: QueryOptions, found: Sized = ()
    ) -> AsyncIterator[Candidate]:
        page_size = min(options.limit * self.oversample, MAX_SIGNATURES)
        cursor = options.before_signature
        while True:
            infos = await self.client.get_signatures_for_address(
                address, limit=page_size, before=cursor
            )
            if not infos:
                return
            cursor = infos[-1].get("signature") if isinstance(infos[-1], dict) else None

            for info in infos:
                if not isinstance(info, dict) or not info.get("signature"):
                    continue
                if info.get("err"):
                    continue
                block_time = info.get("blockTime")
                if not options.allows_block_time(block_time):
                    continue
                signature = info["signature"]
                tx = await _fetch_detail(self.client, signature)
                yield Candidate(signature, int(info.get("slot") or 0), block_time, tx)

            if len(infos) < page_size or not cursor:
                return


class IndexedHistory(HistoryStrategy):
    """Enhanced strategy: indexing API listing + bounded concurrent fetches."""

    name = "indexed"

    def __init__(
        self,
        client: LedgerClient,
        indexer: IndexingClient,
        *,
        network: str = "devnet",
        concurrency: int = FETCH_CONCURRENCY,
    ):
        super().__init__(client, network=network)
        self.indexer = indexer
        self.concurrency = max(1, concurrency)

    async def iter_candidates(
        self, address: str, options: QueryOptions, found: Sized = ()
    ) -> AsyncIterator[Candidate]:
        cursor = options.before_signature
        while True:
            remaining = max(1, options.limit - len(found))
            page_size = min(MAX_PAGE_SIZE, remaining * PAGE_MULTIPLIER)
            page = await self.indexer.list_transactions(address, limit=page_size, before=cursor)
            if not page:
                return
            cursor = page[-1].get("signature") if isinstance(page[-1], dict) else None

            items = [
                item
                for item in page
                if isinstance(item, dict)
                and item.get("signature")
                and not item.get("transactionError")
                and options.allows_block_time(item.get("timestamp"))
            ]
            for i in range(0, len(items), self.concurrency):
                chunk = items[i:i + self.concurrency]
                txs = await asyncio.gather(
                    *(_fetch_detail(self.client, item["signature"]) for item in chunk)
                )
                for item, tx in zip(chunk, txs):
                    yield Candidate(
                        item["signature"],
                        int(item.get("slot") or 0),
                        item.get("timestamp"),
                        tx,
                    )

            if len(page) < page_size or not cursor:
                return


class HistoryReconciler:
    """Runs the configured strategy, with a one-shot fallback to RPC."""

    def __init__(
        self,
        client: LedgerClient,
        *,
        indexer: Optional[IndexingClient] = None,
        network: str = "devnet",
        oversample: int = DEFAULT_OVERSAMPLE,
        concurrency: int = FETCH_CONCURRENCY,
    ):
        self.baseline = RpcHistory(client, network=network, oversample=oversample)
        self.enhanced: Optional[IndexedHistory] = None
        if indexer is not None:
            self.enhanced = IndexedHistory(
                client, indexer, network=network, concurrency=concurrency
            )

    @property
    def strategy(self) -> str:
        return self.enhanced.name if self.enhanced is not None else self.baseline.name

    async def query(self, address: str, options: Optional[QueryOptions] = None) -> List[LogEntry]:
        """Return at most ``options.limit`` entries, newest first.

        Raises:
            ConfigurationError: ``address`` is not a valid wallet address
            TransportFailure: the history listing failed
        """
        decode_address(address)
        options = options or QueryOptions()

        if self.enhanced is not None:
            try:
                return await self.enhanced.query(address, options)
            except TransportFailure as e:
                logger.warning("Indexed history failed (%s); falling back to RPC history", e)
        return await self.baseline.query(address, options)


__all__ = [
    "DEFAULT_LIMIT",
    "FETCH_CONCURRENCY",
    "QueryOptions",
    "LogEntry",
    "Candidate",
    "HistoryStrategy",
    "RpcHistory",
    "IndexedHistory",
    "HistoryReconciler",
    "to_unix_seconds",
]
