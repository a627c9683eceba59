"""Ledger session: the four user-facing operations over the shared ledger.

:class:`LedgerSession` composes the record store, index manager, workflow
engine and disclosure gate.  Who is calling (account, chain, session key
material) is never held by the session itself; it arrives with every call as a
:class:`SessionContext`, so several identities can share one session object.

Every operation reports ``pending`` and then ``success`` or ``failed`` (with a
human-readable reason) to each registered observer.  Observers receive
:class:`~wastesort_core.audit.events_sqlite.AuditEvent` objects, so an
:class:`~wastesort_core.audit.events_sqlite.AuditLog` can be registered
directly.
"""
import logging
import secrets
import string
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator

from wastesort_core.audit.events_sqlite import (
    PHASE_FAILED,
    PHASE_PENDING,
    PHASE_SUCCESS,
    AuditEvent,
)
from wastesort_core.config import LedgerConfig
from wastesort_core.crypto.codec import Codec
from wastesort_core.crypto.keyring import generate_public_key
from wastesort_core.disclosure.gate import (
    DEFAULT_DURATION_DAYS,
    ChallengeParams,
    DisclosureGate,
    ProofVerifier,
    build_challenge,
)
from wastesort_core.ledger.client import LedgerClient, LedgerUnavailableError
from wastesort_core.records.index import IndexManager
from wastesort_core.records.model import Category, Record, Status
from wastesort_core.records.store import RecordStore
from wastesort_core.util.deadline import Deadline
from wastesort_core.workflow.engine import RecordNotFoundError, WorkflowEngine

logger = logging.getLogger(__name__)

Observer = Callable[[AuditEvent], None]

_ID_ALPHABET = string.digits + string.ascii_lowercase


def new_record_id(now: float | None = None) -> str:
    """``<unix-ms>-<7 random base36 chars>``, e.g. ``1718000000000-k3j9x0a``."""
    millis = int((time.time() if now is None else now) * 1000)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(7))
    return f"{millis}-{suffix}"


@dataclass(frozen=True)
class SessionContext:
    """Identity and chain parameters of one connected caller."""

    account: str
    contract_address: str
    chain_id: int
    public_key: str = field(default_factory=generate_public_key)
    start_timestamp: int = field(default_factory=lambda: int(time.time()))
    duration_days: int = DEFAULT_DURATION_DAYS

    @classmethod
    def for_account(cls, account: str, config: LedgerConfig) -> "SessionContext":
        return cls(
            account=account,
            contract_address=config.contract_address,
            chain_id=config.chain_id,
        )

    def challenge_params(self) -> ChallengeParams:
        return ChallengeParams(
            public_key=self.public_key,
            contract_address=self.contract_address,
            chain_id=self.chain_id,
            start_timestamp=self.start_timestamp,
            duration_days=self.duration_days,
        )


class _Operation:
    """Mutable handle yielded by :meth:`LedgerSession._tracked`."""

    def __init__(self, operation: str, account: str | None, record_id: str | None) -> None:
        self.operation = operation
        self.operation_id = str(uuid.uuid4())
        self.account = account
        self.record_id = record_id
        self.success_message = ""


def _failure_reason(prefix: str, exc: BaseException) -> str:
    text = str(exc) or type(exc).__name__
    if "user rejected" in text.lower():
        return "Transaction rejected by user"
    return f"{prefix}: {text}"


class LedgerSession:
    """Orchestrates list / submit / advance / disclose.

    Parameters
    ----------
    ledger:
        Ledger client shared by all components.
    codec:
        Confidentiality codec for sealing on submit and unsealing on disclose.
    verifier:
        External capability-proof verifier handed to the disclosure gate.
    index_retries, reconcile_limit:
        Passed to :class:`IndexManager`.
    decrypt_latency:
        Passed to :class:`DisclosureGate`.
    submit_timeout, disclose_timeout:
        Default hard timeouts in seconds (``None`` = unbounded).
    observers:
        Lifecycle observers.
    clock:
        Returns the current time in seconds; used for ids and ``created_at``.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        codec: Codec,
        verifier: ProofVerifier,
        *,
        index_retries: int = 3,
        reconcile_limit: int = 256,
        decrypt_latency: float = 0.0,
        submit_timeout: float | None = None,
        disclose_timeout: float | None = None,
        observers: tuple[Observer, ...] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._ledger = ledger
        self._codec = codec
        self._store = RecordStore(ledger)
        self._index = IndexManager(ledger, max_retries=index_retries, reconcile_limit=reconcile_limit)
        self._workflow = WorkflowEngine(self._store)
        self._gate = DisclosureGate(codec, verifier, decrypt_latency=decrypt_latency)
        self._submit_timeout = submit_timeout
        self._disclose_timeout = disclose_timeout
        self._observers: list[Observer] = list(observers)
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig,
        ledger: LedgerClient,
        codec: Codec,
        verifier: ProofVerifier,
        observers: tuple[Observer, ...] = (),
    ) -> "LedgerSession":
        return cls(
            ledger,
            codec,
            verifier,
            index_retries=config.index_retries,
            reconcile_limit=config.reconcile_limit,
            decrypt_latency=config.decrypt_latency,
            submit_timeout=config.submit_timeout,
            disclose_timeout=config.disclose_timeout,
            observers=observers,
        )

    def add_observer(self, observer: Observer) -> None:
        self._observers.append(observer)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def list_records(self, ctx: SessionContext | None = None) -> list[Record]:
        """Return all readable records, newest first.

        Corrupt or body-less entries are skipped.  When *ctx* is given, the
        caller's own journal is always reconciled, so their acknowledged
        submissions are visible even if the shared index lost them.

        Raises
        ------
        LedgerUnavailableError
            If the ledger contract is not reachable.
        """
        account = ctx.account if ctx else None
        with self._tracked("list", account, "Loading records...", "Failed to load records") as op:
            if not self._ledger.is_available():
                raise LedgerUnavailableError("Ledger contract is not available")
            owners = (account,) if account else ()
            records = self._store.get_many(self._index.list_ids(owners))
            records.sort(key=lambda r: r.created_at, reverse=True)
            op.success_message = f"Loaded {len(records)} record(s)"
        return records

    def submit_record(
        self,
        ctx: SessionContext,
        category: Category | str,
        payload: bytes | str,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Seal *payload*, store it as a new pending record, and index it.

        Returns
        -------
        str
            The new record id.

        Raises
        ------
        ValueError
            If *category* is not a known category.
        WriteFailedError, IndexConflictError, LedgerUnavailableError
            From the write path.
        OperationTimedOutError, OperationCancelledError
            If the deadline fires; the record may or may not be on the ledger.
        """
        with self._tracked(
            "submit", ctx.account, "Encrypting waste data with FHE...", "Submission failed"
        ) as op:
            category = Category(category)
            plain = payload.encode("utf-8") if isinstance(payload, str) else bytes(payload)
            deadline = Deadline(
                timeout if timeout is not None else self._submit_timeout,
                cancel_event,
                label="submit",
            )
            op.record_id = new_record_id(self._clock())
            deadline.run(self._submit, ctx, op.record_id, category, plain, deadline)
            op.success_message = "Encrypted waste data submitted securely!"
        return op.record_id

    def advance_status(self, ctx: SessionContext, record_id: str, target: Status | str) -> Record:
        """Move a pending record owned by ``ctx.account`` to *target*.

        Returns
        -------
        Record
            The record as re-read after the write.

        Raises
        ------
        RecordNotFoundError, NotAuthorizedError, InvalidTransitionError
            Workflow rule violations (never retried).
        """
        rejecting = str(getattr(target, "value", target)) == Status.REJECTED.value
        with self._tracked(
            "advance",
            ctx.account,
            "Processing encrypted waste data with FHE...",
            "Rejection failed" if rejecting else "Processing failed",
            record_id=record_id,
        ) as op:
            record = self._workflow.advance(record_id, target, ctx.account)
            op.success_message = (
                "FHE rejection completed successfully!"
                if rejecting
                else "FHE processing completed successfully!"
            )
        return record

    def challenge(self, ctx: SessionContext) -> str:
        """Return the message the caller's wallet must sign to disclose."""
        return build_challenge(ctx.challenge_params())

    def disclose(
        self,
        ctx: SessionContext,
        record_id: str,
        proof: str,
        *,
        timeout: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> bytes:
        """Return the plaintext payload of *record_id* given a capability proof.

        Raises
        ------
        RecordNotFoundError
            If the record does not exist.
        DisclosureDeniedError
            If the proof was rejected.
        OperationTimedOutError, OperationCancelledError
            If the deadline fires.
        """
        with self._tracked(
            "disclose", ctx.account, "Decrypting with FHE...", "Decryption failed", record_id=record_id
        ) as op:
            deadline = Deadline(
                timeout if timeout is not None else self._disclose_timeout,
                cancel_event,
                label="disclose",
            )
            plain = deadline.run(self._disclose, ctx, record_id, proof, deadline)
            op.success_message = "Record decrypted"
        return plain

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _submit(
        self,
        ctx: SessionContext,
        record_id: str,
        category: Category,
        plain: bytes,
        deadline: Deadline,
    ) -> None:
        record = Record(
            id=record_id,
            sealed_payload=self._codec.seal(plain),
            owner=ctx.account,
            category=category,
            created_at=int(self._clock()),
        )
        deadline.check()
        self._store.put(record)
        deadline.check()
        self._index.append_id(record_id, ctx.account)
        logger.info("submitted record %s for %s", record_id, ctx.account)

    def _disclose(self, ctx: SessionContext, record_id: str, proof: str, deadline: Deadline) -> bytes:
        record = self._store.get(record_id)
        if record is None:
            raise RecordNotFoundError(f"Record not found: {record_id!r}")
        return self._gate.disclose(record, ctx.challenge_params(), proof, deadline)

    @contextmanager
    def _tracked(
        self,
        operation: str,
        account: str | None,
        pending_message: str,
        failure_prefix: str,
        record_id: str | None = None,
    ) -> Iterator[_Operation]:
        op = _Operation(operation, account, record_id)
        self._notify(op, PHASE_PENDING, pending_message)
        try:
            yield op
        except Exception as exc:
            reason = _failure_reason(failure_prefix, exc)
            logger.warning("%s %s failed: %s", operation, op.operation_id, reason)
            self._notify(op, PHASE_FAILED, reason, {"error": type(exc).__name__})
            raise
        self._notify(op, PHASE_SUCCESS, op.success_message)

    def _notify(
        self,
        op: _Operation,
        phase: str,
        message: str,
        details: dict[str, str] | None = None,
    ) -> None:
        event = AuditEvent(
            event_type=phase,
            operation=op.operation,
            operation_id=op.operation_id,
            account=op.account,
            record_id=op.record_id,
            message=message,
            details=details,
        )
        for observer in self._observers:
            try:
                observer(event)
            except Exception:
                # A broken observer must not change the outcome of the ledger operation.
                logger.exception("lifecycle observer %r failed on %s", observer, phase)
