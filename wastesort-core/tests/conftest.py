"""Shared pytest fixtures for wastesort-core tests."""
from pathlib import Path

import pytest

from wastesort_core.crypto.codec import FheSimCodec
from wastesort_core.crypto.keyring import Ed25519ProofVerifier, LocalWallet, generate_keypair
from wastesort_core.ledger.client import InMemoryLedger, LedgerClient
from wastesort_core.session import LedgerSession, SessionContext

CONTRACT_ADDRESS = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
CHAIN_ID = 11155111


# ---------------------------------------------------------------------------
# Wallet fixtures (session-scoped for speed)
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def alice_wallet() -> LocalWallet:
    """Local wallet for the first submitter."""
    sk, _ = generate_keypair()
    return LocalWallet(sk)


@pytest.fixture(scope="session")
def bob_wallet() -> LocalWallet:
    """Local wallet for a second, independent submitter."""
    sk, _ = generate_keypair()
    return LocalWallet(sk)


# ---------------------------------------------------------------------------
# Ledger fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def backend() -> InMemoryLedger:
    return InMemoryLedger()


@pytest.fixture
def ledger(backend: InMemoryLedger) -> LedgerClient:
    return LedgerClient(backend)


@pytest.fixture
def tmp_audit_db(tmp_path: Path):
    """A fresh AuditLog backed by a temp SQLite file."""
    from wastesort_core.audit.events_sqlite import AuditLog

    return AuditLog(tmp_path / "audit.db")


# ---------------------------------------------------------------------------
# Session fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_ctx():
    """Factory: account -> SessionContext on the test contract."""

    def _make(account: str) -> SessionContext:
        return SessionContext(account=account, contract_address=CONTRACT_ADDRESS, chain_id=CHAIN_ID)

    return _make


@pytest.fixture
def session(ledger: LedgerClient, alice_wallet: LocalWallet) -> LedgerSession:
    """Session whose proof verifier accepts signatures from alice's wallet."""
    return LedgerSession(ledger, FheSimCodec(), Ed25519ProofVerifier(alice_wallet.verify_key))
