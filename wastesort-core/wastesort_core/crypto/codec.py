"""Confidentiality codecs: the seal/unseal pair applied to record payloads.

A codec stands in for a homomorphic-encryption engine.  The ledger logic only
relies on two things:

- ``unseal(seal(x)) == x`` for every byte string ``x``.
- ``seal`` output is ASCII-safe, because it is embedded in the JSON record
  wire format.

Only the disclosure gate may call ``unseal``.
"""
import base64
import binascii
from typing import Protocol

import nacl.encoding
import nacl.exceptions
import nacl.secret
import nacl.utils


class CodecError(ValueError):
    """Raised when a sealed payload cannot be unsealed."""


class Codec(Protocol):
    def seal(self, plain: bytes) -> bytes: ...

    def unseal(self, sealed: bytes) -> bytes: ...


# ---------------------------------------------------------------------------
# Simulated FHE (default)
# ---------------------------------------------------------------------------

_FHE_PREFIX = b"FHE-"


class FheSimCodec:
    """Reversible ``FHE-<base64>`` encoding.  No confidentiality whatsoever."""

    def seal(self, plain: bytes) -> bytes:
        return _FHE_PREFIX + base64.b64encode(plain)

    def unseal(self, sealed: bytes) -> bytes:
        """Decode a sealed payload.

        Payloads without the ``FHE-`` prefix were stored in plaintext by early
        clients and are returned unchanged.
        """
        if not sealed.startswith(_FHE_PREFIX):
            return sealed
        try:
            return base64.b64decode(sealed[len(_FHE_PREFIX):], validate=True)
        except binascii.Error as exc:
            raise CodecError(f"Sealed payload is not valid base64: {exc}") from exc


# ---------------------------------------------------------------------------
# Real symmetric encryption
# ---------------------------------------------------------------------------


class SecretBoxCodec:
    """XSalsa20-Poly1305 via PyNaCl ``SecretBox``, base64 text on the wire.

    Parameters
    ----------
    key:
        32-byte secret key.  Use :meth:`generate_key` for a fresh one.
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != nacl.secret.SecretBox.KEY_SIZE:
            raise ValueError(
                f"SecretBox key must be {nacl.secret.SecretBox.KEY_SIZE} bytes, got {len(key)}"
            )
        self._box = nacl.secret.SecretBox(key)

    @staticmethod
    def generate_key() -> bytes:
        return nacl.utils.random(nacl.secret.SecretBox.KEY_SIZE)

    def seal(self, plain: bytes) -> bytes:
        return bytes(self._box.encrypt(plain, encoder=nacl.encoding.Base64Encoder))

    def unseal(self, sealed: bytes) -> bytes:
        try:
            return self._box.decrypt(sealed, encoder=nacl.encoding.Base64Encoder)
        except (nacl.exceptions.CryptoError, binascii.Error, ValueError) as exc:
            raise CodecError(f"SecretBox decryption failed: {exc}") from exc
