"""Tests for wastesort_core.crypto.keyring (local wallet stand-in)."""
from pathlib import Path

import nacl.exceptions
import pytest

from wastesort_core.crypto.keyring import (
    Ed25519ProofVerifier,
    LocalWallet,
    address_for,
    generate_keypair,
    generate_public_key,
    load_signing_key,
    save_signing_key,
)


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    sk, vk = generate_keypair()
    save_signing_key(sk, tmp_path / "wallet.key")
    loaded = load_signing_key(tmp_path / "wallet.key")
    assert bytes(loaded) == bytes(sk)
    assert bytes(loaded.verify_key) == bytes(vk)
    assert (tmp_path / "wallet.key").stat().st_mode & 0o777 == 0o600


def test_load_wrong_length_raises(tmp_path: Path) -> None:
    (tmp_path / "short.key").write_bytes(b"\x00" * 16)
    with pytest.raises(ValueError):
        load_signing_key(tmp_path / "short.key")


def test_address_shape() -> None:
    _, vk = generate_keypair()
    addr = address_for(vk)
    assert addr.startswith("0x") and len(addr) == 42
    int(addr, 16)


def test_session_public_keys_are_fresh() -> None:
    a, b = generate_public_key(), generate_public_key()
    assert a != b
    assert a.startswith("0x") and len(a) == 66


def test_wallet_signature_verifies(alice_wallet: LocalWallet) -> None:
    verifier = Ed25519ProofVerifier(alice_wallet.verify_key)
    verifier("hello", alice_wallet.sign_message("hello"))


def test_tampered_message_fails(alice_wallet: LocalWallet) -> None:
    verifier = Ed25519ProofVerifier(alice_wallet.verify_key)
    with pytest.raises(nacl.exceptions.BadSignatureError):
        verifier("hello!", alice_wallet.sign_message("hello"))


def test_non_hex_proof_fails(alice_wallet: LocalWallet) -> None:
    with pytest.raises(nacl.exceptions.BadSignatureError):
        Ed25519ProofVerifier(alice_wallet.verify_key)("hello", "not-hex")
