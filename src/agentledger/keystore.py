"""
Ed25519 key material for agent wallets.

Accepts the two formats Solana tooling produces:
  - JSON byte array (``solana-keygen`` output): ``[12, 34, ...]``
  - base58 string

32 bytes is a seed; 64 bytes is seed + public key (the public half must
match the seed).
"""
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import List, Optional, Union

import base58
from nacl.signing import SigningKey

from agentledger.errors import ConfigurationError

SEED_LENGTH = 32
SECRET_KEY_LENGTH = 64
PUBKEY_LENGTH = 32
SIGNATURE_LENGTH = 64


class Keypair:
    """An agent wallet: Ed25519 signing key plus its base58 address."""

    def __init__(self, signing_key: SigningKey):
        self._signing_key = signing_key

    @classmethod
    def generate(cls) -> "Keypair":
        return cls(SigningKey.generate())

    @classmethod
    def from_bytes(cls, secret: bytes) -> "Keypair":
        """Build from a 32-byte seed or a 64-byte secret key."""
        secret = bytes(secret)
        if len(secret) == SEED_LENGTH:
            return cls(SigningKey(secret))
        if len(secret) == SECRET_KEY_LENGTH:
            kp = cls(SigningKey(secret[:SEED_LENGTH]))
            if kp.public_key != secret[SEED_LENGTH:]:
                raise ConfigurationError("Secret key public half does not match its seed")
            return kp
        raise ConfigurationError(
            f"Invalid private key length: {len(secret)} (expected 32 or 64)"
        )

    @classmethod
    def from_string(cls, raw: str) -> "Keypair":
        """Parse a JSON byte array or a base58 secret key."""
        return cls.from_bytes(parse_secret_key(raw))

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Keypair":
        p = Path(path).expanduser()
        try:
            raw = p.read_text()
        except OSError as e:
            raise ConfigurationError(f"Cannot read wallet file {p}: {e}") from e
        return cls.from_string(raw)

    @property
    def public_key(self) -> bytes:
        return self._signing_key.verify_key.encode()

    @property
    def address(self) -> str:
        return base58.b58encode(self.public_key).decode("ascii")

    @property
    def secret_key(self) -> bytes:
        """64-byte seed + public key, the Solana CLI layout."""
        return self._signing_key.encode() + self.public_key

    def sign(self, message: bytes) -> bytes:
        """Sign and return the raw 64-byte signature."""
        return self._signing_key.sign(message).signature

    def to_json(self) -> str:
        return json.dumps(list(self.secret_key))

    def save(self, path: Union[str, Path]) -> Path:
        """Write the keypair as a JSON byte array readable only by the owner."""
        p = Path(path).expanduser()
        p.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(p), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(self.to_json())
        return p

    def __repr__(self) -> str:
        return f"Keypair(address={self.address!r})"


def generate_keypair() -> Keypair:
    """Fresh random wallet."""
    return Keypair.generate()


def write_keypair(keypair: Keypair, path: Union[str, Path]) -> Path:
    """Write ``keypair`` in Solana CLI format; refuses to overwrite."""
    p = Path(path).expanduser()
    if p.exists():
        raise ConfigurationError(f"Refusing to overwrite existing wallet file: {p}")
    return keypair.save(p)


def parse_secret_key(raw: str) -> bytes:
    """Decode a JSON byte array or base58 string into raw key bytes."""
    raw = raw.strip()
    if not raw:
        raise ConfigurationError("Private key is empty")

    if raw.startswith("["):
        try:
            values: List[int] = json.loads(raw)
            return bytes(values)
        except (ValueError, TypeError) as e:
            raise ConfigurationError("Private key is not a valid JSON byte array") from e

    try:
        return base58.b58decode(raw)
    except ValueError as e:
        raise ConfigurationError("Private key is not a valid base58 string") from e


def load_keypair(
    raw: Optional[str] = None,
    path: Optional[Union[str, Path]] = None,
) -> Keypair:
    """Load the agent wallet from an inline value or a wallet file.

    The inline value wins when both are given.
    """
    if raw:
        return Keypair.from_string(raw)
    if path:
        return Keypair.from_file(path)
    raise ConfigurationError(
        "No wallet configured. Set AGENT_PRIVATE_KEY (base58 or JSON byte array) "
        "or wallet_path in agentledger.json."
    )


def decode_address(address: str) -> bytes:
    """Decode a base58 wallet address into its 32 public key bytes."""
    try:
        raw = base58.b58decode(address)
    except ValueError:
        raise ConfigurationError(f"Invalid wallet address: {address!r}") from None
    if len(raw) != PUBKEY_LENGTH:
        raise ConfigurationError(f"Invalid wallet address: {address!r}")
    return raw


def is_signature(signature: str) -> bool:
    """True if ``signature`` is base58 of exactly 64 bytes."""
    try:
        return len(base58.b58decode(signature)) == SIGNATURE_LENGTH
    except ValueError:
        return False


__all__ = [
    "Keypair",
    "generate_keypair",
    "write_keypair",
    "parse_secret_key",
    "load_keypair",
    "decode_address",
    "is_signature",
    "SEED_LENGTH",
    "SECRET_KEY_LENGTH",
]
