"""Record status state machine with owner-only transitions.

::

    pending --advance(processed)--> processed   (terminal)
    pending --advance(rejected)---> rejected    (terminal)
"""
import logging

from wastesort_core.records.model import Record, Status
from wastesort_core.records.store import RecordStore

logger = logging.getLogger(__name__)


class RecordNotFoundError(KeyError):
    """Raised when no record is stored for the requested id."""


class NotAuthorizedError(PermissionError):
    """Raised when someone other than the record owner tries to advance it."""


class InvalidTransitionError(ValueError):
    """Raised for a transition the state machine does not allow."""


_ALLOWED_TARGETS = frozenset({Status.PROCESSED, Status.REJECTED})


class WorkflowEngine:
    """Applies status transitions through a :class:`RecordStore`."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    def advance(self, record_id: str, target: Status | str, caller: str) -> Record:
        """Move *record_id* from ``pending`` to *target* on behalf of *caller*.

        The sealed payload is never touched.  The record is re-read after the
        write and the re-read value is returned, so a concurrent last-write-wins
        overwrite shows up in the result.

        Raises
        ------
        RecordNotFoundError
            If the record does not exist.
        NotAuthorizedError
            If *caller* is not the record owner.
        InvalidTransitionError
            If the record is not pending or *target* is not terminal.
        CorruptRecordError
            If the stored record does not parse.
        """
        record = self._store.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Record not found: {record_id!r}")
        if not record.is_owned_by(caller):
            raise NotAuthorizedError(f"{caller!r} is not the owner of record {record_id!r}")

        try:
            target = Status(target)
        except ValueError as exc:
            raise InvalidTransitionError(f"Unknown status {target!r}") from exc
        if target not in _ALLOWED_TARGETS:
            raise InvalidTransitionError(f"Cannot advance a record to {target.value!r}")
        if record.status.is_terminal:
            raise InvalidTransitionError(
                f"Record {record_id!r} is already {record.status.value}; "
                f"cannot move it to {target.value}"
            )

        self._store.set_status(record_id, target)

        applied = self._store.get(record_id)
        if applied is None:
            raise RecordNotFoundError(f"Record {record_id!r} vanished after status write")
        if applied.status is not target:
            logger.warning(
                "record %s: wrote %s but read back %s (concurrent transition)",
                record_id,
                target.value,
                applied.status.value,
            )
        return applied
