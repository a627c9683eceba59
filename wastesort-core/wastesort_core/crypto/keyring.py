"""Local Ed25519 wallet stand-in and session key material.

The real system relies on an external wallet to sign the disclosure challenge
and to verify that signature.  This module provides a local equivalent for the
CLI and tests:

- :class:`LocalWallet` signs challenge messages (the wallet side).
- :class:`Ed25519ProofVerifier` checks them (the verifier the disclosure gate
  is handed; the gate itself never inspects signatures).

Key storage format: a raw 32-byte Ed25519 seed (PyNaCl native), mode 0600.
"""
import hashlib
from pathlib import Path

import nacl.exceptions
import nacl.public
import nacl.signing


# ---------------------------------------------------------------------------
# Key generation
# ---------------------------------------------------------------------------


def generate_keypair() -> tuple[nacl.signing.SigningKey, nacl.signing.VerifyKey]:
    """Generate a fresh Ed25519 keypair."""
    sk = nacl.signing.SigningKey.generate()
    return sk, sk.verify_key


def generate_public_key() -> str:
    """Return fresh session public-key material as ``0x``-prefixed hex.

    This is the ``publickey`` field of the disclosure challenge; the matching
    private half is discarded.
    """
    return "0x" + bytes(nacl.public.PrivateKey.generate().public_key).hex()


def address_for(vk: nacl.signing.VerifyKey) -> str:
    """Derive an address-like identity (``0x`` + 40 hex chars) from *vk*."""
    return "0x" + hashlib.sha256(bytes(vk)).hexdigest()[-40:]


# ---------------------------------------------------------------------------
# Key persistence
# ---------------------------------------------------------------------------


def save_signing_key(sk: nacl.signing.SigningKey, path: Path) -> None:
    """Write raw 32-byte signing key seed to *path* with mode 0600."""
    path.write_bytes(bytes(sk))
    path.chmod(0o600)


def load_signing_key(path: Path) -> nacl.signing.SigningKey:
    """Load a signing key from a 32-byte seed file."""
    raw = path.read_bytes()
    if len(raw) != 32:
        raise ValueError(f"Signing key file must be 32 bytes, got {len(raw)}: {path}")
    return nacl.signing.SigningKey(raw)


# ---------------------------------------------------------------------------
# Wallet side
# ---------------------------------------------------------------------------


class LocalWallet:
    """Signs challenge messages with a local Ed25519 key.

    Parameters
    ----------
    signing_key:
        The holder's key.  ``address`` is derived from its verify key.
    """

    def __init__(self, signing_key: nacl.signing.SigningKey) -> None:
        self._sk = signing_key
        self.address = address_for(signing_key.verify_key)

    @property
    def verify_key(self) -> nacl.signing.VerifyKey:
        return self._sk.verify_key

    def sign_message(self, message: str) -> str:
        """Sign the UTF-8 bytes of *message*; return the hex signature."""
        return self._sk.sign(message.encode("utf-8")).signature.hex()


# ---------------------------------------------------------------------------
# Verifier side
# ---------------------------------------------------------------------------


class Ed25519ProofVerifier:
    """Proof verifier for signatures produced by :class:`LocalWallet`.

    Calling the instance verifies; it returns ``None`` on success.

    Raises
    ------
    nacl.exceptions.BadSignatureError
        If *proof* is not valid hex or does not verify against *message*.
    """

    def __init__(self, verify_key: nacl.signing.VerifyKey) -> None:
        self._vk = verify_key

    def __call__(self, message: str, proof: str) -> None:
        try:
            sig_bytes = bytes.fromhex(proof)
        except ValueError as exc:
            raise nacl.exceptions.BadSignatureError(f"proof is not valid hex: {exc}") from exc
        self._vk.verify(message.encode("utf-8"), sig_bytes)
