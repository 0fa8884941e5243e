"""
AgentLedger: on-chain audit trail for AI agents.

- Log agent actions as compact JSON memos on Solana
- Query a wallet's history back into verified audit entries
- Verify that a single transaction carries a valid record
- Audit any async action with the ``audited`` decorator
"""

__version__ = "0.3.0"

from .config import LedgerConfig, load_config
from .errors import (
    AgentLedgerError,
    ConfigurationError,
    DecodeMismatch,
    EncodingTooLarge,
    PayloadTooLarge,
    TransactionTooLarge,
    TransportFailure,
)
from .history import LogEntry, QueryOptions
from .keystore import Keypair
from .ledger import AgentLedger, LogResult
from .memo import MAX_MEMO_BYTES, MemoPayload, decode_memo, encode_memo
from .middleware import audited
from .schema import is_valid_memo
from .verifier import VerifyResult

__all__ = [
    "__version__",
    "AgentLedger",
    "LogResult",
    "LedgerConfig",
    "load_config",
    "Keypair",
    "QueryOptions",
    "LogEntry",
    "VerifyResult",
    "MemoPayload",
    "MAX_MEMO_BYTES",
    "encode_memo",
    "decode_memo",
    "is_valid_memo",
    "audited",
    "AgentLedgerError",
    "ConfigurationError",
    "DecodeMismatch",
    "EncodingTooLarge",
    "PayloadTooLarge",
    "TransactionTooLarge",
    "TransportFailure",
]
