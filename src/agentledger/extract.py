"""
Pull memo candidates out of a ``jsonParsed`` transaction.

Memo bytes show up in several shapes depending on how the node parsed the
transaction. They are tried in this order:

  1. parsed instruction: ``{"program": "spl-memo", "parsed": "<text>"}``
  2. raw instruction:    ``{"programId": "Memo...", "data": "<base58>"}``
  3. either form inside ``meta.innerInstructions`` (memo via CPI)
  4. ``meta.logMessages``: ``Program log: Memo (len N): "<escaped text>"``,
     only when no instruction carried a memo

Malformed shapes yield nothing; they never raise.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional

import base58

from agentledger.errors import DecodeMismatch
from agentledger.memo import MemoPayload, decode_memo_strict
from agentledger.transaction import MEMO_PROGRAM_IDS

_LOG_MEMO_RE = re.compile(r'^Program log: Memo \(len \d+\): "(.*)"$')
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}


@dataclass
class MemoScan:
    """Outcome of scanning one transaction for our memo."""

    memo: Optional[MemoPayload] = None
    inspected: int = 0
    inspected_bytes: int = 0
    reason: Optional[str] = None


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _unescape_log(text: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), text)


def _instruction_memo(ix: Any) -> Optional[bytes]:
    if not isinstance(ix, dict):
        return None
    parsed = ix.get("parsed")
    if ix.get("program") == "spl-memo" and isinstance(parsed, str):
        return parsed.encode("utf-8")
    data = ix.get("data")
    if ix.get("programId") in MEMO_PROGRAM_IDS and isinstance(data, str):
        try:
            return base58.b58decode(data)
        except ValueError:
            return None
    return None


def memo_candidates(tx: Any) -> Iterator[bytes]:
    """Yield raw memo bytes found in ``tx``, in priority order."""
    tx = _as_dict(tx)
    message = _as_dict(_as_dict(tx.get("transaction")).get("message"))
    meta = _as_dict(tx.get("meta"))

    found = False
    for ix in _as_list(message.get("instructions")):
        raw = _instruction_memo(ix)
        if raw is not None:
            found = True
            yield raw

    for inner in _as_list(meta.get("innerInstructions")):
        for ix in _as_list(_as_dict(inner).get("instructions")):
            raw = _instruction_memo(ix)
            if raw is not None:
                found = True
                yield raw

    if found:
        return
    for line in _as_list(meta.get("logMessages")):
        if not isinstance(line, str):
            continue
        match = _LOG_MEMO_RE.match(line)
        if match:
            yield _unescape_log(match.group(1)).encode("utf-8")


def extract_memo(tx: Any) -> MemoScan:
    """Return the first valid memo in ``tx`` plus what was inspected."""
    scan = MemoScan()
    for raw in memo_candidates(tx):
        scan.inspected += 1
        scan.inspected_bytes += len(raw)
        try:
            scan.memo = decode_memo_strict(raw)
            scan.reason = None
            return scan
        except DecodeMismatch as e:
            scan.reason = str(e)
    if scan.inspected == 0:
        scan.reason = "No memo instruction in transaction"
    return scan


__all__ = [
    "MemoScan",
    "memo_candidates",
    "extract_memo",
]
