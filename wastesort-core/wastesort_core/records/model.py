"""Waste record data model and its ledger wire format.

Record wire format (UTF-8 JSON stored at ``record_<id>``)::

    {"data": "<sealed payload>", "timestamp": <int seconds>,
     "owner": "<address>", "category": "<Category>", "status": "<Status>"}

The field names are the ones the deployed web client has always written, so
existing ledger entries stay readable.  A missing ``status`` reads as
``pending``.  Duplicate JSON keys are rejected, as is anything failing
:data:`RECORD_SCHEMA`.
"""
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any

import jsonschema


class CorruptRecordError(ValueError):
    """Raised when stored bytes do not parse as a record."""


class Category(str, Enum):
    PLASTIC = "Plastic"
    PAPER = "Paper"
    GLASS = "Glass"
    METAL = "Metal"
    ORGANIC = "Organic"
    HAZARDOUS = "Hazardous"


class Status(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not Status.PENDING


@dataclass(frozen=True)
class Record:
    """One waste record as held on the ledger."""

    id: str
    sealed_payload: bytes
    owner: str
    category: Category
    created_at: int
    status: Status = Status.PENDING

    def is_owned_by(self, account: str) -> bool:
        """Addresses compare case-insensitively (checksummed vs lower hex)."""
        return self.owner.lower() == account.lower()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

RECORD_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["data", "timestamp", "owner", "category"],
    "properties": {
        "data": {"type": "string"},
        "timestamp": {"type": "integer", "minimum": 0},
        "owner": {"type": "string", "minLength": 1},
        "category": {"enum": [c.value for c in Category]},
        "status": {"enum": [s.value for s in Status]},
    },
}

ID_LIST_SCHEMA: dict[str, Any] = {
    "type": "array",
    "items": {"type": "string", "minLength": 1},
}


# ---------------------------------------------------------------------------
# Strict JSON parsing
# ---------------------------------------------------------------------------


def _reject_duplicate_keys(pairs: list[tuple[str, Any]]) -> dict[str, Any]:
    """``object_pairs_hook`` for :func:`json.loads` that rejects duplicate keys."""
    d: dict[str, Any] = {}
    for k, v in pairs:
        if k in d:
            raise CorruptRecordError(f"Duplicate JSON key: {k!r}")
        d[k] = v
    return d


def load_json(raw: bytes) -> Any:
    """Decode UTF-8 JSON strictly.

    Raises
    ------
    CorruptRecordError
        On invalid UTF-8, invalid JSON or duplicate keys.
    """
    try:
        return json.loads(raw.decode("utf-8"), object_pairs_hook=_reject_duplicate_keys)
    except UnicodeDecodeError as exc:
        raise CorruptRecordError(f"Not UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise CorruptRecordError(f"Invalid JSON: {exc}") from exc


def dump_json(obj: Any) -> bytes:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=True).encode("utf-8")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def record_to_wire(record: Record) -> dict[str, Any]:
    return {
        "data": record.sealed_payload.decode("ascii"),
        "timestamp": record.created_at,
        "owner": record.owner,
        "category": record.category.value,
        "status": record.status.value,
    }


def serialize_record(record: Record) -> bytes:
    return dump_json(record_to_wire(record))


def parse_wire(raw: bytes) -> dict[str, Any]:
    """Parse and schema-check stored record bytes, returning the raw dict.

    Raises
    ------
    CorruptRecordError
        If the bytes are not a valid record envelope.
    """
    data = load_json(raw)
    try:
        jsonschema.validate(instance=data, schema=RECORD_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise CorruptRecordError(f"Record schema validation failed: {exc.message}") from exc
    return data


def deserialize_record(record_id: str, raw: bytes) -> Record:
    """Build a :class:`Record` from the bytes stored for *record_id*.

    Raises
    ------
    CorruptRecordError
        If the bytes are not a valid record envelope.
    """
    data = parse_wire(raw)
    try:
        sealed = data["data"].encode("ascii")
    except UnicodeEncodeError as exc:
        raise CorruptRecordError(f"Sealed payload is not ASCII: {exc}") from exc
    return Record(
        id=record_id,
        sealed_payload=sealed,
        owner=data["owner"],
        category=Category(data["category"]),
        created_at=data["timestamp"],
        status=Status(data.get("status", Status.PENDING.value)),
    )


# ---------------------------------------------------------------------------
# Id lists (index, journals, owner registry)
# ---------------------------------------------------------------------------


def parse_id_list(raw: bytes) -> list[str]:
    """Parse a JSON array of id strings.

    Raises
    ------
    CorruptRecordError
        If the bytes are not a JSON array of non-empty strings.
    """
    data = load_json(raw)
    try:
        jsonschema.validate(instance=data, schema=ID_LIST_SCHEMA)
    except jsonschema.ValidationError as exc:
        raise CorruptRecordError(f"Id list schema validation failed: {exc.message}") from exc
    return data


def serialize_id_list(ids: list[str]) -> bytes:
    return dump_json(list(ids))


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------


def summarize(records: list[Record]) -> dict[str, Any]:
    """Dashboard counters: total, per status and per category (zeros included)."""
    by_status = {s.value: 0 for s in Status}
    by_category = {c.value: 0 for c in Category}
    for r in records:
        by_status[r.status.value] += 1
        by_category[r.category.value] += 1
    return {"total": len(records), "by_status": by_status, "by_category": by_category}
