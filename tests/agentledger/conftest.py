"""Shared fixtures: an in-memory ledger that speaks the LedgerClient protocol."""

from __future__ import annotations

import copy
import hashlib
import itertools
from typing import Any, Dict, List, Optional, Set, Tuple

import base58
import pytest

from agentledger.config import LedgerConfig
from agentledger.errors import TransportFailure
from agentledger.keystore import Keypair
from agentledger.ledger import AgentLedger
from agentledger.transaction import MEMO_PROGRAM_ID, transaction_signature

BLOCKHASH = base58.b58encode(bytes([7]) * 32).decode("ascii")
BASE_BLOCK_TIME = 1_700_000_000


def make_signature(seed: Any) -> str:
    """Deterministic, well-formed transaction signature."""
    return base58.b58encode(hashlib.sha512(str(seed).encode()).digest()).decode("ascii")


def _read_length(buf: bytes, i: int) -> Tuple[int, int]:
    value = shift = 0
    while True:
        byte = buf[i]
        i += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, i
        shift += 7


def parse_memo_wire(wire: bytes) -> Tuple[List[bytes], bytes]:
    """Return (account keys, memo bytes) from a single-memo transaction."""
    n, i = _read_length(wire, 0)
    i += 64 * n + 3
    m, i = _read_length(wire, i)
    accounts = [wire[i + 32 * k:i + 32 * (k + 1)] for k in range(m)]
    i += 32 * m + 32
    _, i = _read_length(wire, i)
    i += 1
    na, i = _read_length(wire, i)
    i += na
    size, i = _read_length(wire, i)
    return accounts, wire[i:i + size]


def memo_transaction(memo: str, *, slot: int, block_time: Optional[int] = None, raw: bool = False) -> Dict[str, Any]:
    """jsonParsed-shaped transaction with one memo instruction."""
    if raw:
        ix = {
            "programId": MEMO_PROGRAM_ID,
            "accounts": [],
            "data": base58.b58encode(memo.encode("utf-8")).decode("ascii"),
        }
    else:
        ix = {"program": "spl-memo", "programId": MEMO_PROGRAM_ID, "parsed": memo}
    return {
        "slot": slot,
        "blockTime": block_time,
        "meta": {"err": None, "innerInstructions": [], "logMessages": []},
        "transaction": {"message": {"instructions": [ix]}},
    }


class FakeLedgerClient:
    """In-memory ledger. History per address is kept newest first."""

    def __init__(self) -> None:
        self.slot = 1000
        self.transactions: Dict[str, Dict[str, Any]] = {}
        self.history: Dict[str, List[Dict[str, Any]]] = {}
        self.balances: Dict[str, int] = {}
        self.sent: List[bytes] = []
        self.calls: List[Tuple[str, Any]] = []
        self.failures: Dict[str, TransportFailure] = {}
        self.broken_signatures: Set[str] = set()
        self._counter = itertools.count(1)

    def _enter(self, method: str, arg: Any = None) -> None:
        self.calls.append((method, arg))
        if method in self.failures:
            raise self.failures[method]

    def methods(self) -> List[str]:
        return [name for name, _ in self.calls]

    def add_transaction(
        self,
        address: str,
        tx: Dict[str, Any],
        *,
        signature: Optional[str] = None,
        err: Any = None,
    ) -> str:
        sig = signature or make_signature(next(self._counter))
        self.slot += 1
        tx = dict(tx, slot=self.slot)
        self.transactions[sig] = tx
        self.history.setdefault(address, []).insert(0, {
            "signature": sig,
            "slot": self.slot,
            "blockTime": tx.get("blockTime"),
            "err": err,
        })
        return sig

    def add_memo(self, address: str, memo: str, *, block_time: Optional[int] = None, raw: bool = False) -> str:
        if block_time is None:
            block_time = BASE_BLOCK_TIME + self.slot
        return self.add_transaction(
            address, memo_transaction(memo, slot=0, block_time=block_time, raw=raw)
        )

    # -- LedgerClient ---------------------------------------------------

    async def get_latest_blockhash(self) -> str:
        self._enter("getLatestBlockhash")
        return BLOCKHASH

    async def send_transaction(self, wire: bytes) -> str:
        self._enter("sendTransaction", wire)
        self.sent.append(wire)
        accounts, memo = parse_memo_wire(wire)
        sig = transaction_signature(wire)
        fee_payer = base58.b58encode(accounts[0]).decode("ascii")
        self.add_memo(fee_payer, memo.decode("utf-8"))
        # add_memo assigns its own signature; re-key under the real one
        entry = self.history[fee_payer][0]
        self.transactions[sig] = self.transactions.pop(entry["signature"])
        entry["signature"] = sig
        return sig

    async def confirm_transaction(self, signature: str, *, timeout: float = 60.0, poll_interval: float = 1.0) -> int:
        self._enter("confirmTransaction", signature)
        return self.transactions[signature]["slot"]

    async def get_transaction(self, signature: str) -> Optional[Dict[str, Any]]:
        self._enter("getTransaction", signature)
        if signature in self.broken_signatures:
            raise TransportFailure(f"getTransaction: {signature} unavailable", method="getTransaction")
        tx = self.transactions.get(signature)
        return copy.deepcopy(tx) if tx is not None else None

    async def get_signatures_for_address(
        self, address: str, *, limit: int = 1000, before: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        self._enter("getSignaturesForAddress", {"address": address, "limit": limit, "before": before})
        items = self.history.get(address, [])
        if before:
            sigs = [i["signature"] for i in items]
            items = items[sigs.index(before) + 1:] if before in sigs else []
        return [dict(i) for i in items[:limit]]

    async def get_balance(self, address: str) -> int:
        self._enter("getBalance", address)
        return self.balances.get(address, 0)

    async def request_airdrop(self, address: str, lamports: int) -> str:
        self._enter("requestAirdrop", lamports)
        sig = make_signature(f"airdrop-{next(self._counter)}")
        self.balances[address] = self.balances.get(address, 0) + lamports
        self.transactions[sig] = {"slot": self.slot}
        return sig


class FakeIndexer:
    """IndexingClient backed by a FakeLedgerClient's history."""

    def __init__(self, ledger: FakeLedgerClient) -> None:
        self.ledger = ledger
        self.calls: List[Dict[str, Any]] = []
        self.failure: Optional[TransportFailure] = None

    async def list_transactions(
        self, address: str, *, limit: int = 100, before: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        self.calls.append({"address": address, "limit": limit, "before": before})
        if self.failure is not None:
            raise self.failure
        items = self.ledger.history.get(address, [])
        if before:
            sigs = [i["signature"] for i in items]
            items = items[sigs.index(before) + 1:] if before in sigs else []
        return [
            {
                "signature": i["signature"],
                "slot": i["slot"],
                "timestamp": i["blockTime"],
                "transactionError": i["err"],
            }
            for i in items[:limit]
        ]


@pytest.fixture
def keypair() -> Keypair:
    return Keypair.from_bytes(bytes(range(32)))


@pytest.fixture
def other_keypair() -> Keypair:
    return Keypair.from_bytes(bytes(range(32, 64)))


@pytest.fixture
def config() -> LedgerConfig:
    return LedgerConfig(agent_id="test-agent")


@pytest.fixture
def fake_client() -> FakeLedgerClient:
    return FakeLedgerClient()


@pytest.fixture
def fake_indexer(fake_client: FakeLedgerClient) -> FakeIndexer:
    return FakeIndexer(fake_client)


@pytest.fixture
def ledger(config: LedgerConfig, keypair: Keypair, fake_client: FakeLedgerClient) -> AgentLedger:
    return AgentLedger(config, keypair, client=fake_client)


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Run in an empty directory with no agentledger environment variables."""
    for var in (
        "AGENT_ID", "SOLANA_NETWORK", "SOLANA_RPC_URL", "HELIUS_API_KEY",
        "AGENT_WALLET_PATH", "AGENT_PRIVATE_KEY", "WALLET_SECRET_KEY", "AGENTLEDGER_CONFIG",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def sig():
    """Factory for deterministic signatures: ``sig("a")``."""
    return make_signature


@pytest.fixture
def memo_tx():
    """Factory for jsonParsed memo transactions."""
    return memo_transaction


@pytest.fixture
def wire_memo():
    """Parse (account keys, memo bytes) out of built transaction bytes."""
    return parse_memo_wire


@pytest.fixture
def fake_client_factory():
    """The FakeLedgerClient class, for tests that need a second ledger."""
    return FakeLedgerClient
