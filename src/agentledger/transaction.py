"""
Legacy Solana transaction carrying a single SPL Memo instruction.

Layout (all signers first, memo program last):

    accounts:  [fee_payer (signer, writable), co-signers (signer, readonly)..., memo program]
    header:    [num_signers, num_signers - 1, 1]
    instruction: program=memo, accounts=all signers, data=memo bytes

The memo program checks that every listed account signed, so co-signers
(multi-agent logs) are attested on-chain alongside the fee payer.
"""
from __future__ import annotations

from typing import List, Sequence

import base58

from agentledger.errors import TransactionTooLarge
from agentledger.keystore import Keypair

MEMO_PROGRAM_ID = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"
MEMO_V1_PROGRAM_ID = "Memo1UhkJRfHyvLMcVucJwxXeuD728EqVrDxQDJq9N8"
MEMO_PROGRAM_IDS = frozenset({MEMO_PROGRAM_ID, MEMO_V1_PROGRAM_ID})

PACKET_DATA_SIZE = 1232
SIGNATURE_SIZE = 64
PUBKEY_SIZE = 32


def encode_length(n: int) -> bytes:
    """Solana compact-u16 (shortvec) length prefix."""
    if n < 0 or n > 0xFFFF:
        raise ValueError(f"Length out of range for compact-u16: {n}")
    out = bytearray()
    while True:
        byte = n & 0x7F
        n >>= 7
        if n:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def unique_signers(fee_payer: Keypair, cosigners: Sequence[Keypair] = ()) -> List[Keypair]:
    """Fee payer first, then co-signers in order, duplicates dropped."""
    signers = [fee_payer]
    seen = {fee_payer.public_key}
    for kp in cosigners:
        if kp.public_key not in seen:
            seen.add(kp.public_key)
            signers.append(kp)
    return signers


def memo_transaction_size(memo_len: int, num_signers: int) -> int:
    """Wire size of a signed memo transaction, computed without building it."""
    n = num_signers
    message = (
        3
        + len(encode_length(n + 1)) + PUBKEY_SIZE * (n + 1)
        + PUBKEY_SIZE
        + len(encode_length(1)) + 1
        + len(encode_length(n)) + n
        + len(encode_length(memo_len)) + memo_len
    )
    return len(encode_length(n)) + SIGNATURE_SIZE * n + message


def check_transaction_size(memo_len: int, num_signers: int) -> int:
    """Return the wire size, or raise TransactionTooLarge over the packet limit."""
    size = memo_transaction_size(memo_len, num_signers)
    if size > PACKET_DATA_SIZE:
        raise TransactionTooLarge(size, PACKET_DATA_SIZE)
    return size


def build_memo_message(
    memo: bytes,
    recent_blockhash: str,
    signers: Sequence[Keypair],
) -> bytes:
    """Serialize the message that every signer signs."""
    blockhash = base58.b58decode(recent_blockhash)
    if len(blockhash) != 32:
        raise ValueError(f"Invalid recent blockhash: {recent_blockhash!r}")

    n = len(signers)
    accounts = [kp.public_key for kp in signers] + [base58.b58decode(MEMO_PROGRAM_ID)]

    msg = bytearray([n, n - 1, 1])
    msg += encode_length(len(accounts))
    for key in accounts:
        msg += key
    msg += blockhash

    msg += encode_length(1)
    msg.append(len(accounts) - 1)
    msg += encode_length(n)
    msg += bytes(range(n))
    msg += encode_length(len(memo))
    msg += memo
    return bytes(msg)


def build_memo_transaction(
    memo: bytes,
    recent_blockhash: str,
    fee_payer: Keypair,
    cosigners: Sequence[Keypair] = (),
) -> bytes:
    """Build and sign a memo transaction, returning its wire bytes.

    Raises:
        TransactionTooLarge: the signed transaction exceeds PACKET_DATA_SIZE
    """
    signers = unique_signers(fee_payer, cosigners)
    check_transaction_size(len(memo), len(signers))
    message = build_memo_message(memo, recent_blockhash, signers)

    wire = bytearray(encode_length(len(signers)))
    for kp in signers:
        wire += kp.sign(message)
    wire += message
    return bytes(wire)


def transaction_signature(wire: bytes) -> str:
    """The transaction id: base58 of the fee payer's signature."""
    # One-byte length prefix holds for fewer than 128 signers.
    return base58.b58encode(wire[1:65]).decode("ascii")


__all__ = [
    "MEMO_PROGRAM_ID",
    "MEMO_V1_PROGRAM_ID",
    "MEMO_PROGRAM_IDS",
    "PACKET_DATA_SIZE",
    "encode_length",
    "unique_signers",
    "memo_transaction_size",
    "check_transaction_size",
    "build_memo_message",
    "build_memo_transaction",
    "transaction_signature",
]
