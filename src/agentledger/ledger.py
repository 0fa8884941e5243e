"""
AgentLedger: log AI agent actions as memos on Solana, then query and
verify them.

Each instance holds its own config, wallet and HTTP clients; there is no
process-wide default. ``log`` and ``verify`` return result objects instead
of raising. Configuration misuse (bad address, airdrop on mainnet, ...)
raises ConfigurationError before any network call.

Usage::

    from agentledger import AgentLedger, LedgerConfig, Keypair

    config = LedgerConfig(agent_id="my-trading-bot-v1")
    async with AgentLedger(config, Keypair.from_file("wallet.json")) as ledger:
        result = await ledger.log("decision:buy", {"asset": "SOL", "amount": 10})
        print(result.explorer_url)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import ValidationError

from agentledger.config import (
    DEFAULT_RPC_URLS,
    LedgerConfig,
    load_config,
    load_wallet,
    read_environment,
)
from agentledger.errors import (
    ConfigurationError,
    PayloadTooLarge,
    TransactionTooLarge,
    TransportFailure,
)
from agentledger.history import HistoryReconciler, LogEntry, QueryOptions
from agentledger.indexer import HeliusClient, IndexingClient
from agentledger.keystore import Keypair
from agentledger.memo import MemoPayload, encode_memo
from agentledger.rpc import LAMPORTS_PER_SOL, LedgerClient, SolanaRpcClient
from agentledger.transaction import (
    build_memo_transaction,
    check_transaction_size,
    transaction_signature,
    unique_signers,
)
from agentledger.verifier import VerifyResult, verify_signature

logger = logging.getLogger(__name__)


@dataclass
class LogResult:
    """Outcome of ``AgentLedger.log``."""

    success: bool
    signature: Optional[str] = None
    explorer_url: Optional[str] = None
    slot: Optional[int] = None
    memo: Optional[MemoPayload] = None
    size: Optional[int] = None
    submitted_at: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "success": self.success,
            "signature": self.signature,
            "explorer_url": self.explorer_url,
            "slot": self.slot,
            "memo": self.memo.to_dict() if self.memo is not None else None,
            "size": self.size,
            "submitted_at": self.submitted_at,
        }
        if not self.success:
            d["error"] = self.error
            d["error_code"] = self.error_code
        return d


class AgentLedger:
    """Audit trail for one agent identity and one wallet."""

    def __init__(
        self,
        config: LedgerConfig,
        keypair: Keypair,
        *,
        client: Optional[LedgerClient] = None,
        indexer: Optional[IndexingClient] = None,
    ):
        self.config = config
        self.keypair = keypair
        self._owned: List[Any] = []

        if client is None:
            client = SolanaRpcClient(
                config.effective_rpc_url,
                commitment=config.commitment,
                timeout=config.timeout,
            )
            self._owned.append(client)
        if indexer is None and config.helius_api_key is not None:
            indexer = HeliusClient(
                config.helius_api_key.get_secret_value(),
                config.indexer_url,
                timeout=config.timeout,
            )
            self._owned.append(indexer)

        self.client = client
        self.indexer = indexer
        self.history = HistoryReconciler(
            client,
            indexer=indexer,
            network=config.network,
            oversample=config.oversample,
            concurrency=config.fetch_concurrency,
        )

    @classmethod
    def from_env(
        cls,
        config_path: Optional[Union[str, Path]] = None,
        *,
        environ: Optional[Mapping[str, str]] = None,
        load_env_file: bool = True,
        **overrides: Any,
    ) -> "AgentLedger":
        """Build from agentledger.json / environment variables (and .env)."""
        env = read_environment(environ, load_env_file=load_env_file)
        config = load_config(config_path, environ=env, **overrides)
        return cls(config, load_wallet(config, environ=env))

    @property
    def agent_id(self) -> str:
        return self.config.agent_id

    @property
    def network(self) -> str:
        return self.config.network

    @property
    def wallet_address(self) -> str:
        return self.keypair.address

    @property
    def strategy(self) -> str:
        """History strategy in use: "indexed" or "rpc"."""
        return self.history.strategy

    async def aclose(self) -> None:
        """Close HTTP clients this instance created (injected ones are left open)."""
        for owned in self._owned:
            await owned.aclose()
        self._owned.clear()

    async def __aenter__(self) -> "AgentLedger":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # log / query / verify
    # ------------------------------------------------------------------

    async def log(
        self,
        action: str,
        data: Optional[Mapping[str, Any]] = None,
        *,
        additional_signers: Sequence[Keypair] = (),
    ) -> LogResult:
        """Write one audit record on-chain.

        An oversized payload, or a memo that with its co-signers no longer
        fits one transaction packet, fails before any network call; shrink
        ``data`` and retry. Co-signers in ``additional_signers`` sign the
        same memo.

        Once the transaction is signed its signature is known, so a failed
        result after that point carries it even if submission errored; the
        transaction may still land and can be checked with ``verify``.
        """
        try:
            encoded = encode_memo(self.agent_id, action, data)
        except PayloadTooLarge as e:
            return LogResult(success=False, size=e.size, error=str(e), error_code=e.code)

        signers = unique_signers(self.keypair, additional_signers)
        try:
            check_transaction_size(encoded.size, len(signers))
        except TransactionTooLarge as e:
            return LogResult(
                success=False,
                memo=encoded.payload,
                size=encoded.size,
                error=str(e),
                error_code=e.code,
            )

        submitted_at = datetime.now(timezone.utc).isoformat()
        signature: Optional[str] = None
        try:
            blockhash = await self.client.get_latest_blockhash()
            wire = build_memo_transaction(encoded.raw, blockhash, signers[0], signers[1:])
            signature = transaction_signature(wire)
            await self.client.send_transaction(wire)
            slot = await self.client.confirm_transaction(
                signature, timeout=self.config.confirm_timeout
            )
        except TransportFailure as e:
            logger.warning("log %r failed: %s", action, e)
            return LogResult(
                success=False,
                signature=signature,
                explorer_url=self.config.explorer_url(signature) if signature else None,
                memo=encoded.payload,
                size=encoded.size,
                submitted_at=submitted_at,
                error=str(e),
                error_code=e.code,
            )

        logger.info("logged %r for %s: %s (slot %s)", action, self.agent_id, signature, slot)
        return LogResult(
            success=True,
            signature=signature,
            explorer_url=self.config.explorer_url(signature),
            slot=slot,
            memo=encoded.payload,
            size=encoded.size,
            submitted_at=submitted_at,
        )

    async def query(
        self,
        address: Optional[str] = None,
        options: Optional[QueryOptions] = None,
        **filters: Any,
    ) -> List[LogEntry]:
        """Audit entries for ``address`` (default: this wallet), newest first.

        Filters are QueryOptions fields, given either as ``options`` or as
        keyword arguments. Raises TransportFailure only if history listing
        fails outright.
        """
        if options is None:
            try:
                options = QueryOptions(**filters)
            except ValidationError as e:
                raise ConfigurationError(f"Invalid query options: {e}") from e
        elif filters:
            raise ConfigurationError("Pass either options or keyword filters, not both")
        return await self.history.query(address or self.wallet_address, options)

    async def verify(self, signature: str) -> VerifyResult:
        """Structural check of one transaction. Never raises."""
        return await verify_signature(self.client, signature, network=self.network)

    # ------------------------------------------------------------------
    # Wallet conveniences
    # ------------------------------------------------------------------

    async def get_balance(self) -> float:
        """Wallet balance in SOL."""
        lamports = await self.client.get_balance(self.wallet_address)
        return lamports / LAMPORTS_PER_SOL

    def _public_devnet_client(self) -> SolanaRpcClient:
        return SolanaRpcClient(
            DEFAULT_RPC_URLS["devnet"],
            commitment=self.config.commitment,
            timeout=self.config.timeout,
        )

    async def _airdrop(self, client: LedgerClient, lamports: int) -> str:
        signature = await client.request_airdrop(self.wallet_address, lamports)
        await client.confirm_transaction(signature, timeout=self.config.confirm_timeout)
        return signature

    async def request_airdrop(self, sol: float = 0.5) -> str:
        """Request devnet SOL. Falls back to the public devnet RPC when a
        private endpoint rate-limits the faucet."""
        if self.network != "devnet":
            raise ConfigurationError("Airdrop only available on devnet")
        lamports = int(sol * LAMPORTS_PER_SOL)
        if lamports <= 0:
            raise ConfigurationError(f"Airdrop amount must be positive: {sol}")

        try:
            return await self._airdrop(self.client, lamports)
        except TransportFailure as e:
            if not e.rate_limited or self.config.effective_rpc_url == DEFAULT_RPC_URLS["devnet"]:
                raise
            logger.warning("Airdrop rate limited (%s); retrying on public devnet RPC", e)

        fallback = self._public_devnet_client()
        try:
            return await self._airdrop(fallback, lamports)
        finally:
            await fallback.aclose()


__all__ = [
    "AgentLedger",
    "LogResult",
]
