"""Thin adapter over the external key-value ledger contract.

The contract exposes only independent ``get(key)`` / ``set(key, bytes)`` calls.
Writes are durable and visible to later reads of the same key, but there is no
cross-key atomicity and no compare-and-swap.

:class:`LedgerClient` adds nothing on top: no retries, no caching.  It maps the
backend's "empty bytes" convention to ``None`` and turns transport failures into
:class:`LedgerUnavailableError`.
"""
import logging
import threading
from typing import Protocol

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class LedgerUnavailableError(RuntimeError):
    """Raised when the ledger contract cannot be reached.  Retryable later."""


class WriteFailedError(RuntimeError):
    """Raised when a single ledger write is rejected."""


# ---------------------------------------------------------------------------
# Backend contract
# ---------------------------------------------------------------------------


class LedgerBackend(Protocol):
    """What a ledger contract binding must provide.

    ``get`` returns ``b""`` for a key that was never written.
    ``set`` returns a transaction id.
    """

    def get(self, key: str) -> bytes: ...

    def set(self, key: str, value: bytes) -> str: ...

    def is_available(self) -> bool: ...


class InMemoryLedger:
    """Process-local ledger backend.  Linearizable per key, nothing more."""

    def __init__(self) -> None:
        self._data: dict[str, bytes] = {}
        self._lock = threading.Lock()
        self._tx_counter = 0

    def get(self, key: str) -> bytes:
        with self._lock:
            return self._data.get(key, b"")

    def set(self, key: str, value: bytes) -> str:
        with self._lock:
            self._data[key] = bytes(value)
            self._tx_counter += 1
            return f"mem-{self._tx_counter}"

    def is_available(self) -> bool:
        return True


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class LedgerClient:
    """Read/write access to a :class:`LedgerBackend`.

    Parameters
    ----------
    backend:
        Contract binding.  Any ``OSError`` or ``ConnectionError`` it raises is
        reported as :class:`LedgerUnavailableError`.
    """

    def __init__(self, backend: LedgerBackend) -> None:
        self._backend = backend

    def read(self, key: str) -> bytes | None:
        """Return the bytes stored at *key*, or ``None`` if absent.

        Raises
        ------
        LedgerUnavailableError
            If the backend cannot be reached.
        """
        try:
            raw = self._backend.get(key)
        except (OSError, ConnectionError) as exc:
            raise LedgerUnavailableError(f"Ledger read of {key!r} failed: {exc}") from exc
        if not raw:
            return None
        return bytes(raw)

    def write(self, key: str, value: bytes) -> str:
        """Write *value* under *key*; return the backend transaction id.

        Raises
        ------
        WriteFailedError
            If the backend rejected the write.
        LedgerUnavailableError
            If the backend cannot be reached.
        """
        if not value:
            # Empty bytes read back as "absent" on the contract.
            raise WriteFailedError(f"Refusing to write empty value to {key!r}")
        try:
            tx_id = self._backend.set(key, value)
        except WriteFailedError:
            raise
        except (OSError, ConnectionError) as exc:
            raise LedgerUnavailableError(f"Ledger write of {key!r} failed: {exc}") from exc
        logger.debug("ledger write %s -> %s (%d bytes)", key, tx_id, len(value))
        return tx_id

    def is_available(self) -> bool:
        """Probe the contract.  Transport errors count as unavailable."""
        try:
            return bool(self._backend.is_available())
        except (OSError, ConnectionError):
            logger.warning("ledger availability probe failed", exc_info=True)
            return False
