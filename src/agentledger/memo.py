"""
Memo payload codec.

Builds the versioned record, serializes it to compact JSON and enforces the
byte ceiling of the memo field. Decoding tolerates anything: the ledger is
full of unrelated memo traffic, so a decode failure is an ordinary outcome.

Wire format (keys in this order, ``data`` omitted when empty)::

    {"v":"1","agent":"my-bot","action":"decision:buy","ts":1739300000,"data":{...}}
"""
from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict

from agentledger.errors import DecodeMismatch, PayloadTooLarge
from agentledger.schema import MEMO_VERSION, memo_errors

# Practical ceiling for a single-instruction memo transaction, well under
# the 1232-byte packet limit once signatures and account keys are added.
MAX_MEMO_BYTES = 566


class MemoPayload(BaseModel):
    """Decoded audit record as stored in the memo field."""

    model_config = ConfigDict(frozen=True, extra="allow")

    v: Literal["1"] = MEMO_VERSION
    agent: str
    action: str
    ts: int
    data: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


@dataclass(frozen=True)
class EncodedMemo:
    """A memo ready for submission."""

    payload: MemoPayload
    text: str
    raw: bytes

    @property
    def size(self) -> int:
        return len(self.raw)


def build_memo_payload(
    agent_id: str,
    action: str,
    data: Optional[Mapping[str, Any]] = None,
    *,
    ts: Optional[int] = None,
) -> Dict[str, Any]:
    """Build the record dict. ``ts`` defaults to the current Unix second."""
    payload: Dict[str, Any] = {
        "v": MEMO_VERSION,
        "agent": agent_id,
        "action": action,
        "ts": int(time.time()) if ts is None else ts,
    }
    if data:
        payload["data"] = dict(data)
    return payload


def serialize_memo(payload: Mapping[str, Any]) -> str:
    """Compact JSON text. Raises ValueError for NaN/Infinity."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def validate_memo_size(text: str, max_bytes: int = MAX_MEMO_BYTES) -> int:
    """Return the UTF-8 size of ``text`` or raise PayloadTooLarge."""
    size = len(text.encode("utf-8"))
    if size > max_bytes:
        raise PayloadTooLarge(size, max_bytes)
    return size


def encode_memo(
    agent_id: str,
    action: str,
    data: Optional[Mapping[str, Any]] = None,
    *,
    ts: Optional[int] = None,
    max_bytes: int = MAX_MEMO_BYTES,
) -> EncodedMemo:
    """Encode a record for the memo field.

    Raises:
        ValueError: the record would not pass validation (e.g. empty agent id)
        TypeError: ``data`` is not JSON-serializable
        PayloadTooLarge: encoded size exceeds ``max_bytes``
    """
    payload = build_memo_payload(agent_id, action, data, ts=ts)
    errors = memo_errors(payload)
    if errors:
        raise ValueError("; ".join(errors))

    text = serialize_memo(payload)
    validate_memo_size(text, max_bytes)
    return EncodedMemo(
        payload=MemoPayload.model_validate(payload),
        text=text,
        raw=text.encode("utf-8"),
    )


def decode_memo_strict(raw: Union[bytes, str]) -> MemoPayload:
    """Decode memo bytes/text, raising DecodeMismatch with the reason."""
    if isinstance(raw, (bytes, bytearray)):
        try:
            text = bytes(raw).decode("utf-8")
        except UnicodeDecodeError:
            raise DecodeMismatch("Memo is not valid UTF-8") from None
    else:
        text = raw

    try:
        candidate = json.loads(text)
    except ValueError:
        raise DecodeMismatch("Memo is not JSON") from None

    errors = memo_errors(candidate)
    if errors:
        raise DecodeMismatch("; ".join(errors))
    return MemoPayload.model_validate(candidate)


def decode_memo(raw: Union[bytes, str]) -> Optional[MemoPayload]:
    """Decode memo bytes/text. Returns None if it is not one of ours."""
    try:
        return decode_memo_strict(raw)
    except DecodeMismatch:
        return None


__all__ = [
    "MAX_MEMO_BYTES",
    "MemoPayload",
    "EncodedMemo",
    "build_memo_payload",
    "serialize_memo",
    "validate_memo_size",
    "encode_memo",
    "decode_memo",
    "decode_memo_strict",
]
