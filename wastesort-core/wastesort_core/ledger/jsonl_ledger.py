"""Append-only JSON-lines ledger backend.

Stands in for the on-chain key-value contract so several local processes can
share one ledger.  Every ``set`` appends one line; ``get`` returns the value of
the last line written for that key.  Per-key reads therefore observe the latest
completed write, and nothing is atomic across keys, which matches the contract.

Production gap: replace with a binding to the deployed contract's
``getData`` / ``setData`` calls.
"""
import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)


class JsonlLedger:
    """File-backed :class:`~wastesort_core.ledger.client.LedgerBackend`.

    Parameters
    ----------
    log_path:
        Path to the JSONL file where writes are appended.
        Created if it does not exist.
    """

    def __init__(self, log_path: Path) -> None:
        self._log_path = Path(log_path)
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        if not self._log_path.exists():
            self._log_path.touch()

    def get(self, key: str) -> bytes:
        """Return the latest value written under *key*, or ``b""``."""
        value = b""
        with self._log_path.open("rb") as f:
            for lineno, line in enumerate(f, start=1):
                try:
                    entry = json.loads(line)
                    if entry["key"] == key:
                        value = bytes.fromhex(entry["value_hex"])
                except (ValueError, KeyError, TypeError):
                    # A torn line from a crashed writer; later lines still count.
                    logger.warning("skipping malformed ledger line %d in %s", lineno, self._log_path)
        return value

    def set(self, key: str, value: bytes) -> str:
        """Append a write of *value* under *key*.

        Returns
        -------
        str
            Hex SHA-256 of the appended line (pseudo transaction id).
        """
        entry = {
            "key": key,
            "value_hex": bytes(value).hex(),
            "_ledger_ts": datetime.now(timezone.utc).isoformat(),
        }
        line = json.dumps(entry, sort_keys=True, separators=(",", ":")) + "\n"
        line_bytes = line.encode("utf-8")

        # Single write() in append mode so concurrent processes do not interleave.
        with self._log_path.open("ab") as f:
            f.write(line_bytes)

        return hashlib.sha256(line_bytes).hexdigest()

    def is_available(self) -> bool:
        return self._log_path.exists()
