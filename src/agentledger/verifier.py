"""
Single-transaction verification.

Verification is structural: the transaction exists and carries a memo that
decodes to a valid record of the supported version. It does NOT check that
the record's ``agent`` matches the signing wallet, nor the record against
any external source of truth. ``agent`` is advisory metadata; any wallet
can claim any agent id.

Outcomes (never raised):
  - E_NOT_FOUND        malformed signature, or no such transaction
  - E_DECODE_MISMATCH  transaction has no valid record in any memo
  - E_TRANSPORT        the RPC call failed
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

from agentledger.config import explorer_url
from agentledger.errors import E_DECODE_MISMATCH, E_NOT_FOUND, E_TRANSPORT, TransportFailure
from agentledger.extract import extract_memo
from agentledger.keystore import is_signature
from agentledger.memo import MemoPayload
from agentledger.rpc import LedgerClient


@dataclass
class VerifyResult:
    """Result of verifying one transaction signature."""

    valid: bool
    signature: str
    explorer_url: str
    memo: Optional[MemoPayload] = None
    block_time: Optional[int] = None
    slot: Optional[int] = None
    reason: Optional[str] = None
    reason_code: Optional[str] = None
    inspected: int = 0
    inspected_bytes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "valid": self.valid,
            "signature": self.signature,
            "explorer_url": self.explorer_url,
            "block_time": self.block_time,
            "slot": self.slot,
        }
        if self.valid and self.memo is not None:
            d["memo"] = self.memo.to_dict()
        else:
            d["reason"] = self.reason
            d["reason_code"] = self.reason_code
            d["inspected"] = self.inspected
            d["inspected_bytes"] = self.inspected_bytes
        return d


async def verify_signature(
    client: LedgerClient,
    signature: str,
    *,
    network: str = "devnet",
) -> VerifyResult:
    """Fetch ``signature`` and classify its memo."""
    url = explorer_url(signature, network)

    if not is_signature(signature):
        return VerifyResult(
            valid=False,
            signature=signature,
            explorer_url=url,
            reason="Not a valid transaction signature",
            reason_code=E_NOT_FOUND,
        )

    try:
        tx = await client.get_transaction(signature)
    except TransportFailure as e:
        return VerifyResult(
            valid=False,
            signature=signature,
            explorer_url=url,
            reason=f"RPC error: {e}",
            reason_code=E_TRANSPORT,
        )

    if not isinstance(tx, dict) or not tx:
        return VerifyResult(
            valid=False,
            signature=signature,
            explorer_url=url,
            reason="Transaction not found on-chain",
            reason_code=E_NOT_FOUND,
        )

    block_time = tx.get("blockTime")
    slot = tx.get("slot")
    scan = extract_memo(tx)

    if scan.memo is None:
        return VerifyResult(
            valid=False,
            signature=signature,
            explorer_url=url,
            block_time=block_time,
            slot=slot,
            reason=(
                "Transaction does not contain a valid AgentLedger memo payload "
                f"({scan.inspected} memo candidate(s), {scan.inspected_bytes} bytes inspected"
                + (f"; last error: {scan.reason}" if scan.reason else "")
                + ")"
            ),
            reason_code=E_DECODE_MISMATCH,
            inspected=scan.inspected,
            inspected_bytes=scan.inspected_bytes,
        )

    return VerifyResult(
        valid=True,
        signature=signature,
        explorer_url=url,
        memo=scan.memo,
        block_time=block_time,
        slot=slot,
        inspected=scan.inspected,
        inspected_bytes=scan.inspected_bytes,
    )


__all__ = [
    "VerifyResult",
    "verify_signature",
]
