"""Per-record storage on the ledger (one key per record)."""
import logging
from typing import Iterable

from wastesort_core.ledger.client import LedgerClient
from wastesort_core.records.model import (
    CorruptRecordError,
    Record,
    Status,
    deserialize_record,
    dump_json,
    parse_wire,
    serialize_record,
)

logger = logging.getLogger(__name__)

RECORD_KEY_PREFIX = "record_"


def record_key(record_id: str) -> str:
    return f"{RECORD_KEY_PREFIX}{record_id}"


class RecordStore:
    """CRUD over record bodies.

    Payloads arrive already sealed; this class never sees plaintext.

    Parameters
    ----------
    ledger:
        Ledger client used for every read and write.
    """

    def __init__(self, ledger: LedgerClient) -> None:
        self._ledger = ledger

    def put(self, record: Record) -> str:
        """Write *record* under its key; return the ledger transaction id.

        Raises
        ------
        WriteFailedError, LedgerUnavailableError
            Propagated from the ledger client.
        """
        return self._ledger.write(record_key(record.id), serialize_record(record))

    def get(self, record_id: str) -> Record | None:
        """Return the record, or ``None`` if nothing is stored for *record_id*.

        Raises
        ------
        CorruptRecordError
            If the stored bytes do not parse.
        LedgerUnavailableError
            Propagated from the ledger client.
        """
        raw = self._ledger.read(record_key(record_id))
        if raw is None:
            return None
        return deserialize_record(record_id, raw)

    def get_many(self, record_ids: Iterable[str]) -> list[Record]:
        """Fetch several records, skipping absent and corrupt ones.

        A corrupt entry is logged and skipped; it never aborts the batch.
        """
        records: list[Record] = []
        for record_id in record_ids:
            try:
                record = self.get(record_id)
            except CorruptRecordError as exc:
                logger.warning("skipping corrupt record %s: %s", record_id, exc)
                continue
            if record is None:
                # Indexed before its body became visible, or body never landed.
                logger.info("indexed record %s has no body yet", record_id)
                continue
            records.append(record)
        return records

    def set_status(self, record_id: str, status: Status) -> None:
        """Rewrite only the ``status`` field of the stored record.

        Every other stored field, including ones this version does not know
        about, is written back unchanged.  Two concurrent calls for the same id
        are last-write-wins; re-read afterwards to confirm what was applied.

        Raises
        ------
        KeyError
            If no record is stored for *record_id*.
        CorruptRecordError
            If the stored bytes do not parse.
        """
        key = record_key(record_id)
        raw = self._ledger.read(key)
        if raw is None:
            raise KeyError(f"No record stored for {record_id!r}")
        data = parse_wire(raw)
        data["status"] = Status(status).value
        self._ledger.write(key, dump_json(data))
