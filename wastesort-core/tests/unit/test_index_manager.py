"""Tests for wastesort_core.records.index: conflict-safe appends.

Concurrent writers are simulated deterministically: a backend hook performs a
"concurrent" write at the exact point where it would race with ours.
"""
from typing import Callable

import pytest

from wastesort_core.ledger.client import InMemoryLedger, LedgerClient, WriteFailedError
from wastesort_core.records.index import (
    INDEX_KEY,
    IndexConflictError,
    IndexManager,
    journal_key,
    owner_slot_key,
)
from wastesort_core.records.model import parse_id_list, serialize_id_list


class HookedLedger(InMemoryLedger):
    """InMemoryLedger that calls ``after_set(key)`` after every write."""

    def __init__(self) -> None:
        super().__init__()
        self.after_set: Callable[[str], None] | None = None

    def set(self, key: str, value: bytes) -> str:
        tx = super().set(key, value)
        if self.after_set is not None:
            self.after_set(key)
        return tx


def _ids(ledger: LedgerClient, key: str) -> list[str]:
    raw = ledger.read(key)
    return parse_id_list(raw) if raw else []


# ---------------------------------------------------------------------------
# Basic behaviour
# ---------------------------------------------------------------------------


def test_empty_ledger_lists_nothing(ledger: LedgerClient) -> None:
    assert IndexManager(ledger).list_ids() == []


def test_append_then_list(ledger: LedgerClient) -> None:
    index = IndexManager(ledger)
    index.append_id("r1", "0xA")
    index.append_id("r2", "0xB")
    assert index.list_ids() == ["r1", "r2"]


def test_append_is_idempotent(ledger: LedgerClient) -> None:
    index = IndexManager(ledger)
    index.append_id("r1", "0xA")
    index.append_id("r1", "0xA")
    assert _ids(ledger, INDEX_KEY) == ["r1"]


def test_append_writes_journal_and_owner_slot(ledger: LedgerClient) -> None:
    IndexManager(ledger).append_id("r1", "0xAbC")
    assert _ids(ledger, journal_key("0xabc")) == ["r1"]
    assert ledger.read(owner_slot_key(0)) == b"0xabc"
    assert ledger.read(owner_slot_key(1)) is None


def test_owners_fill_slots_in_order(ledger: LedgerClient) -> None:
    index = IndexManager(ledger)
    index.append_id("r1", "0xA")
    index.append_id("r2", "0xB")
    index.append_id("r3", "0xA")
    assert ledger.read(owner_slot_key(0)) == b"0xa"
    assert ledger.read(owner_slot_key(1)) == b"0xb"
    assert ledger.read(owner_slot_key(2)) is None


def test_fresh_manager_finds_existing_slot(ledger: LedgerClient) -> None:
    IndexManager(ledger).append_id("r1", "0xA")
    IndexManager(ledger).append_id("r2", "0xA")
    assert ledger.read(owner_slot_key(1)) is None


@pytest.mark.parametrize("garbage", [b"{not json", b'{"ids": ["r1"]}', b"[1,2,3]"])
def test_malformed_index_degrades_to_empty(ledger: LedgerClient, garbage: bytes) -> None:
    ledger.write(INDEX_KEY, garbage)
    assert IndexManager(ledger).list_ids() == []


def test_append_over_malformed_index_repairs_it(ledger: LedgerClient) -> None:
    ledger.write(INDEX_KEY, b"{not json")
    index = IndexManager(ledger)
    index.append_id("r1", "0xA")
    assert index.list_ids() == ["r1"]


def test_rejects_zero_retries(ledger: LedgerClient) -> None:
    with pytest.raises(ValueError):
        IndexManager(ledger, max_retries=0)


# ---------------------------------------------------------------------------
# Lost-update recovery
# ---------------------------------------------------------------------------


def test_stale_overwrite_after_ack_is_recovered(ledger: LedgerClient) -> None:
    """B read the index before A appended, then writes its stale list after A returned."""
    index = IndexManager(ledger)
    index.append_id("a", "0xA")

    ledger.write(INDEX_KEY, serialize_id_list(["b"]))  # B's stale read-then-write

    assert set(index.list_ids()) == {"a", "b"}
    # The listing also repaired the shared key.
    assert set(_ids(ledger, INDEX_KEY)) == {"a", "b"}


def test_stale_submitter_overwrite_seen_by_anonymous_reader(ledger: LedgerClient) -> None:
    """B read the shared index before A appended; B's stale writes land after A returned."""
    IndexManager(ledger).append_id("a", "0xA")

    ledger.write(journal_key("0xB"), serialize_id_list(["b"]))
    ledger.write(owner_slot_key(1), b"0xb")
    ledger.write(INDEX_KEY, serialize_id_list(["b"]))

    for _ in range(3):
        assert set(IndexManager(ledger).list_ids()) == {"a", "b"}
    assert set(_ids(ledger, INDEX_KEY)) == {"a", "b"}


def test_non_owner_listing_recovers_lost_ids(ledger: LedgerClient) -> None:
    IndexManager(ledger).append_id("a", "0xA")
    IndexManager(ledger).append_id("b", "0xB")
    ledger.write(INDEX_KEY, serialize_id_list(["c"]))

    assert set(IndexManager(ledger).list_ids(owners=["0xC"])) == {"a", "b", "c"}


def test_slot_taken_after_claim_is_reclaimed() -> None:
    """B claims A's slot after A verified it; A's final re-check moves it to a free slot."""
    backend = HookedLedger()
    ledger = LedgerClient(backend)
    fired = []

    def late_claim(key: str) -> None:
        if key == INDEX_KEY and not fired:
            fired.append(key)
            InMemoryLedger.set(backend, journal_key("0xB"), serialize_id_list(["b"]))
            InMemoryLedger.set(backend, owner_slot_key(0), b"0xb")

    backend.after_set = late_claim
    IndexManager(ledger).append_id("a", "0xA")
    backend.after_set = None

    assert fired
    assert ledger.read(owner_slot_key(0)) == b"0xb"
    assert ledger.read(owner_slot_key(1)) == b"0xa"
    ledger.write(INDEX_KEY, serialize_id_list(["x"]))
    assert set(IndexManager(ledger).list_ids()) == {"a", "b", "x"}


def test_owner_listing_registers_a_lost_owner(ledger: LedgerClient) -> None:
    IndexManager(ledger).append_id("a", "0xA")
    ledger.write(owner_slot_key(0), b"0xb")
    ledger.write(INDEX_KEY, serialize_id_list(["b"]))

    assert set(IndexManager(ledger).list_ids(owners=["0xA"])) == {"a", "b"}
    assert ledger.read(owner_slot_key(1)) == b"0xa"
    assert "a" in IndexManager(ledger).list_ids()


def test_unreadable_slot_is_skipped(ledger: LedgerClient) -> None:
    ledger.write(owner_slot_key(0), b"\xff\xfe")
    IndexManager(ledger).append_id("a", "0xA")
    assert ledger.read(owner_slot_key(1)) == b"0xa"
    ledger.write(INDEX_KEY, serialize_id_list([]))
    assert IndexManager(ledger).list_ids() == ["a"]


def test_concurrent_write_between_write_and_verify_is_retried() -> None:
    backend = HookedLedger()
    ledger = LedgerClient(backend)
    clobbered = []

    def clobber_once(key: str) -> None:
        if key == INDEX_KEY and not clobbered:
            clobbered.append(key)
            backend.after_set = None
            backend.set(INDEX_KEY, serialize_id_list(["x"]))

    backend.after_set = clobber_once
    IndexManager(ledger).append_id("a", "0xA")

    assert clobbered
    assert set(_ids(ledger, INDEX_KEY)) == {"a", "x"}


def test_persistent_conflict_raises_index_conflict() -> None:
    backend = HookedLedger()
    ledger = LedgerClient(backend)

    def always_clobber(key: str) -> None:
        if key == INDEX_KEY:
            InMemoryLedger.set(backend, INDEX_KEY, serialize_id_list(["x"]))

    backend.after_set = always_clobber
    with pytest.raises(IndexConflictError):
        IndexManager(ledger, max_retries=2).append_id("a", "0xA")

    # Never silently dropped: the journal still has it and a later listing recovers it.
    assert _ids(ledger, journal_key("0xA")) == ["a"]
    backend.after_set = None
    assert "a" in IndexManager(ledger).list_ids()


def test_rejected_write_is_retried() -> None:
    class FlakyLedger(InMemoryLedger):
        failures = 1

        def set(self, key: str, value: bytes) -> str:
            if key == INDEX_KEY and self.failures:
                self.failures -= 1
                raise WriteFailedError("nonce too low")
            return super().set(key, value)

    ledger = LedgerClient(FlakyLedger())
    IndexManager(ledger).append_id("a", "0xA")
    assert _ids(ledger, INDEX_KEY) == ["a"]


def test_reconcile_limit_bounds_journal_reads(ledger: LedgerClient) -> None:
    index = IndexManager(ledger)
    for n in range(5):
        index.append_id(f"r{n}", f"0x{n}")
    ledger.write(INDEX_KEY, serialize_id_list(["r0"]))

    limited = IndexManager(ledger, reconcile_limit=2)
    assert set(limited.list_ids()) == {"r0", "r1"}
