"""
Error taxonomy for agentledger.

Exceptions are raised where a caller can act on them (oversized payloads,
transport failures, configuration misuse). Reason codes are the stable
strings carried by LogResult / VerifyResult and the CLI ``--json`` output.
"""
from __future__ import annotations

from typing import Optional

# ---------------------------------------------------------------------------
# Reason codes
# ---------------------------------------------------------------------------

E_PAYLOAD_TOO_LARGE = "E_PAYLOAD_TOO_LARGE"
E_TRANSPORT = "E_TRANSPORT"
E_DECODE_MISMATCH = "E_DECODE_MISMATCH"
E_NOT_FOUND = "E_NOT_FOUND"
E_CONFIG = "E_CONFIG"


class AgentLedgerError(Exception):
    """Base class for all agentledger errors."""

    code = "E_AGENTLEDGER"


class PayloadTooLarge(AgentLedgerError):
    """Encoded memo exceeds the byte ceiling. Never truncated."""

    code = E_PAYLOAD_TOO_LARGE

    def __init__(self, size: int, max_size: int):
        self.size = size
        self.max_size = max_size
        super().__init__(
            f"Memo payload exceeds {max_size}-byte limit ({size} bytes). "
            "Reduce data size or summarise metadata."
        )


EncodingTooLarge = PayloadTooLarge


class TransactionTooLarge(PayloadTooLarge):
    """Signed transaction would exceed the network packet limit."""

    def __init__(self, size: int, max_size: int):
        self.size = size
        self.max_size = max_size
        AgentLedgerError.__init__(
            self,
            f"Transaction is {size} bytes, over the {max_size}-byte packet limit. "
            "Reduce data size or the number of co-signers."
        )


class TransportFailure(AgentLedgerError):
    """A ledger RPC or indexing API call failed."""

    code = E_TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        method: Optional[str] = None,
        status_code: Optional[int] = None,
        rate_limited: bool = False,
    ):
        self.method = method
        self.status_code = status_code
        self.rate_limited = rate_limited
        super().__init__(message)


class DecodeMismatch(AgentLedgerError):
    """Payload is not a valid record of this schema ("not ours")."""

    code = E_DECODE_MISMATCH


class ConfigurationError(AgentLedgerError):
    """Invalid key material, address, network or config file."""

    code = E_CONFIG


__all__ = [
    "E_PAYLOAD_TOO_LARGE",
    "E_TRANSPORT",
    "E_DECODE_MISMATCH",
    "E_NOT_FOUND",
    "E_CONFIG",
    "AgentLedgerError",
    "PayloadTooLarge",
    "EncodingTooLarge",
    "TransactionTooLarge",
    "TransportFailure",
    "DecodeMismatch",
    "ConfigurationError",
]
