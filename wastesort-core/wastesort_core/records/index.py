"""Shared record index with conflict-safe appends.

The ledger has no compare-and-swap, so the naive "read list, append, write
list" loses ids whenever two submitters interleave.  Appends therefore go
through three keys:

1. **Owner journal** (``record_journal_<owner>``).  The id is first merged into
   a key that only its owner's submissions write, so it cannot be lost there.
2. **Owner slot** (``record_owner_slot_<n>``).  Each owner claims one slot so
   readers can find its journal.  A slot is only ever written while empty, and
   empty writes are refused by the ledger client, so filled slots always form
   a prefix ``0..k``.  Readers scan until the first empty slot.  No slot holds
   a list, so a stale writer cannot drop other owners with it.
3. **Shared index** (``record_keys``).  Optimistic merge: write the union,
   re-read, and retry with the union of everything seen when a concurrent
   writer dropped our ids.  Exhausting the retries raises
   :class:`IndexConflictError`.

:meth:`IndexManager.list_ids` folds journaled ids that the shared index lost
back in and rewrites the index opportunistically, so a stale overwrite of
``record_keys`` hides nothing from any reader.

Two owners claiming the same empty slot at once is the one remaining race:
the later write wins.  :meth:`IndexManager.append_id` re-checks its slot after
the index merge and claims a fresh one if it was taken.  Should the competing
write land later still, the owner's next submission or listing re-registers
it; until then only readers naming that owner see its ids.
"""
import logging
from typing import Iterable

from wastesort_core.ledger.client import LedgerClient, LedgerUnavailableError, WriteFailedError
from wastesort_core.records.model import CorruptRecordError, parse_id_list, serialize_id_list

logger = logging.getLogger(__name__)

INDEX_KEY = "record_keys"
JOURNAL_KEY_PREFIX = "record_journal_"
OWNER_SLOT_PREFIX = "record_owner_slot_"

_DEFAULT_MAX_RETRIES = 3
_DEFAULT_RECONCILE_LIMIT = 256


class IndexConflictError(RuntimeError):
    """Raised when concurrent writers kept dropping an id past the retry budget."""


def journal_key(owner: str) -> str:
    return f"{JOURNAL_KEY_PREFIX}{owner.lower()}"


def owner_slot_key(slot: int) -> str:
    return f"{OWNER_SLOT_PREFIX}{slot}"


def _union(*sequences: Iterable[str]) -> list[str]:
    """Order-preserving union; first occurrence wins."""
    seen: set[str] = set()
    out: list[str] = []
    for seq in sequences:
        for item in seq:
            if item not in seen:
                seen.add(item)
                out.append(item)
    return out


class IndexManager:
    """Maintains the shared set of record ids.

    Parameters
    ----------
    ledger:
        Ledger client.
    max_retries:
        Write attempts per shared key before :class:`IndexConflictError`.
    reconcile_limit:
        Maximum number of owner slots scanned by one :meth:`list_ids` call.
        Owners passed explicitly are always read as well.
    """

    def __init__(
        self,
        ledger: LedgerClient,
        max_retries: int = _DEFAULT_MAX_RETRIES,
        reconcile_limit: int = _DEFAULT_RECONCILE_LIMIT,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self._ledger = ledger
        self._max_retries = max_retries
        self._reconcile_limit = reconcile_limit
        # owner -> slot it last held; only a hint, always re-read before use.
        self._slot_hint: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def list_ids(self, owners: Iterable[str] = ()) -> list[str]:
        """Return every known record id.

        The shared index is unioned with the journals of every owner found
        in the owner slots and of *owners*.  Ids missing from the shared
        index are written back, and any of *owners* without a slot is
        registered; a failed write-back is logged and does not fail the
        listing.

        Raises
        ------
        LedgerUnavailableError
            If the ledger cannot be read at all.
        """
        shared = self._read_ids(INDEX_KEY)
        explicit = [o.lower() for o in owners]
        registered = self._scan_owners()

        journaled: list[str] = []
        for owner in _union(explicit, registered):
            journaled = _union(journaled, self._read_ids(journal_key(owner)))

        shared_set = set(shared)
        registered_set = set(registered)
        missing = [i for i in journaled if i not in shared_set]
        unregistered = [o for o in explicit if o not in registered_set]
        if missing or unregistered:
            self._repair(missing, unregistered)
        return _union(shared, missing)

    def append_id(self, record_id: str, owner: str) -> None:
        """Add *record_id* (submitted by *owner*) to the index.

        Returns once the id is durable in the owner's journal, the owner
        holds a slot, and the id is verified present in the shared index.

        Raises
        ------
        IndexConflictError
            If the shared index kept losing the id across all retries.
        LedgerUnavailableError
            Propagated from the ledger client.
        """
        self._merge(journal_key(owner), [record_id])
        self._register(owner)
        self._merge(INDEX_KEY, [record_id])
        # Re-check both shared keys: a concurrent writer may have landed
        # after the first verification.
        self._register(owner)
        self._merge(INDEX_KEY, [record_id])

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_ids(self, key: str) -> list[str]:
        """Read an id list; absent or malformed content reads as empty."""
        raw = self._ledger.read(key)
        if raw is None:
            return []
        try:
            return parse_id_list(raw)
        except CorruptRecordError as exc:
            logger.warning("id list at %s is malformed, treating as empty: %s", key, exc)
            return []

    def _read_slot(self, slot: int) -> str | None:
        """Return the owner in *slot*, ``""`` if unreadable, ``None`` if empty."""
        raw = self._ledger.read(owner_slot_key(slot))
        if raw is None:
            return None
        try:
            return raw.decode("utf-8").strip().lower()
        except UnicodeDecodeError:
            logger.warning("owner slot %d is not UTF-8; skipping it", slot)
            return ""

    def _scan_owners(self) -> list[str]:
        owners: list[str] = []
        for slot in range(self._reconcile_limit):
            owner = self._read_slot(slot)
            if owner is None:
                return owners
            if owner:
                owners.append(owner)
        if self._read_slot(self._reconcile_limit) is not None:
            logger.warning(
                "more than %d owner slots are in use; reconciling only the first %d",
                self._reconcile_limit,
                self._reconcile_limit,
            )
        return owners

    def _register(self, owner: str) -> None:
        """Make sure *owner* holds an owner slot, claiming one if needed.

        Raises
        ------
        WriteFailedError
            If writing a free slot was rejected ``max_retries`` times.
        """
        owner = owner.lower()
        hint = self._slot_hint.get(owner)
        if hint is not None and self._read_slot(hint) == owner:
            return

        slot = 0
        failures = 0
        while True:
            current = self._read_slot(slot)
            if current == owner:
                self._slot_hint[owner] = slot
                return
            if current is None:
                try:
                    self._ledger.write(owner_slot_key(slot), owner.encode("utf-8"))
                except WriteFailedError as exc:
                    failures += 1
                    if failures >= self._max_retries:
                        raise
                    logger.warning("claim of owner slot %d rejected, retrying: %s", slot, exc)
                    continue
                if self._read_slot(slot) == owner:
                    self._slot_hint[owner] = slot
                    logger.debug("owner %s registered in slot %d", owner, slot)
                    return
                logger.warning("owner slot %d taken by a concurrent claim; trying the next one", slot)
            slot += 1

    def _merge(self, key: str, pending: list[str]) -> list[str]:
        """Merge *pending* into the id list at *key*, verifying by re-read."""
        last_known = self._read_ids(key)
        if set(pending) <= set(last_known):
            return last_known

        for attempt in range(1, self._max_retries + 1):
            merged = _union(last_known, pending)
            try:
                self._ledger.write(key, serialize_id_list(merged))
            except WriteFailedError as exc:
                logger.warning(
                    "write to %s rejected (attempt %d/%d): %s", key, attempt, self._max_retries, exc
                )
                last_known = _union(last_known, self._read_ids(key))
                continue

            fresh = self._read_ids(key)
            fresh_set = set(fresh)
            if all(i in fresh_set for i in pending):
                return fresh
            logger.warning(
                "concurrent writer dropped ids from %s (attempt %d/%d); merging and retrying",
                key,
                attempt,
                self._max_retries,
            )
            last_known = _union(merged, fresh)

        raise IndexConflictError(
            f"Could not merge {pending!r} into {key!r} after {self._max_retries} attempts"
        )

    def _repair(self, missing: list[str], unregistered: list[str]) -> None:
        try:
            for owner in unregistered:
                self._register(owner)
            if missing:
                logger.info("reconciling %d journaled id(s) into %s", len(missing), INDEX_KEY)
                self._merge(INDEX_KEY, missing)
        except (IndexConflictError, WriteFailedError, LedgerUnavailableError) as exc:
            logger.warning("index repair deferred to a later listing: %s", exc)
