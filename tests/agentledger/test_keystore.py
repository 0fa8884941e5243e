"""Tests for wallet key material handling."""

from __future__ import annotations

import json
import os
import stat

import base58
import pytest

from agentledger.errors import ConfigurationError
from agentledger.keystore import (
    Keypair,
    decode_address,
    generate_keypair,
    is_signature,
    load_keypair,
    parse_secret_key,
    write_keypair,
)

SEED = bytes(range(32))


class TestKeypair:
    def test_seed_and_full_secret_agree(self) -> None:
        from_seed = Keypair.from_bytes(SEED)
        from_full = Keypair.from_bytes(from_seed.secret_key)
        assert from_seed.address == from_full.address
        assert len(from_seed.secret_key) == 64
        assert from_seed.secret_key[32:] == from_seed.public_key

    def test_mismatched_public_half(self) -> None:
        with pytest.raises(ConfigurationError, match="does not match"):
            Keypair.from_bytes(SEED + bytes(32))

    @pytest.mark.parametrize("length", [0, 31, 33, 63, 65])
    def test_bad_length(self, length: int) -> None:
        with pytest.raises(ConfigurationError, match=f"Invalid private key length: {length}"):
            Keypair.from_bytes(bytes(length))

    def test_json_array_and_base58_forms(self) -> None:
        kp = Keypair.from_bytes(SEED)
        assert Keypair.from_string(kp.to_json()).address == kp.address
        b58 = base58.b58encode(kp.secret_key).decode()
        assert Keypair.from_string(f"  {b58}\n").address == kp.address

    def test_address_is_base58_pubkey(self) -> None:
        kp = generate_keypair()
        assert base58.b58decode(kp.address) == kp.public_key
        assert decode_address(kp.address) == kp.public_key

    def test_sign_verifies(self) -> None:
        from nacl.signing import VerifyKey

        kp = Keypair.from_bytes(SEED)
        signature = kp.sign(b"message")
        assert len(signature) == 64
        VerifyKey(kp.public_key).verify(b"message", signature)

    def test_repr_hides_secret(self) -> None:
        kp = Keypair.from_bytes(SEED)
        assert kp.address in repr(kp)
        assert str(list(kp.secret_key)) not in repr(kp)


class TestFiles:
    def test_save_and_load(self, tmp_path) -> None:
        kp = Keypair.from_bytes(SEED)
        path = write_keypair(kp, tmp_path / "keys" / "wallet.json")

        assert json.loads(path.read_text()) == list(kp.secret_key)
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
        assert Keypair.from_file(path).address == kp.address

    def test_write_refuses_overwrite(self, tmp_path) -> None:
        path = tmp_path / "wallet.json"
        path.write_text("[]")
        with pytest.raises(ConfigurationError, match="Refusing to overwrite"):
            write_keypair(generate_keypair(), path)
        assert path.read_text() == "[]"

    def test_missing_file(self, tmp_path) -> None:
        with pytest.raises(ConfigurationError, match="Cannot read wallet file"):
            Keypair.from_file(tmp_path / "nope.json")


class TestParsing:
    @pytest.mark.parametrize("raw", ["", "   ", "[1, 2", "[300]", "not-base58!"])
    def test_bad_input(self, raw: str) -> None:
        with pytest.raises(ConfigurationError):
            parse_secret_key(raw)

    def test_load_keypair_precedence(self, tmp_path) -> None:
        file_kp = write_keypair(generate_keypair(), tmp_path / "w.json")
        inline = Keypair.from_bytes(SEED)

        assert load_keypair(raw=inline.to_json(), path=file_kp).address == inline.address
        assert load_keypair(path=file_kp).address == Keypair.from_file(file_kp).address

    def test_load_keypair_nothing_configured(self) -> None:
        with pytest.raises(ConfigurationError, match="No wallet configured"):
            load_keypair()


class TestAddressesAndSignatures:
    @pytest.mark.parametrize("address", ["", "abc", "0OIl", "x" * 60])
    def test_bad_addresses(self, address: str) -> None:
        with pytest.raises(ConfigurationError, match="Invalid wallet address"):
            decode_address(address)

    def test_is_signature(self, sig) -> None:
        assert is_signature(sig("a"))
        assert not is_signature("abc")
        assert not is_signature("0OIl")
        assert not is_signature(base58.b58encode(bytes(32)).decode())
