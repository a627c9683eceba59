"""Command line entry point: ``wastesort``.

Operates on a local :class:`~wastesort_core.ledger.jsonl_ledger.JsonlLedger`
file so several shells can act as independent clients of one ledger.  The
caller's identity is a local Ed25519 key file (see ``wastesort keygen``).

Examples::

    wastesort keygen alice.key
    wastesort submit --key alice.key --category Plastic "sample-image-bytes"
    wastesort list
    wastesort advance --key alice.key 1718000000000-k3j9x0a processed
    wastesort disclose --key alice.key 1718000000000-k3j9x0a
"""
import argparse
import json
import sys
from pathlib import Path

from wastesort_core.audit.events_sqlite import AuditLog
from wastesort_core.config import LedgerConfig
from wastesort_core.crypto.codec import FheSimCodec
from wastesort_core.crypto.keyring import (
    Ed25519ProofVerifier,
    LocalWallet,
    generate_keypair,
    load_signing_key,
    save_signing_key,
)
from wastesort_core.ledger.client import LedgerClient
from wastesort_core.ledger.jsonl_ledger import JsonlLedger
from wastesort_core.records.model import Category, Record, Status, summarize
from wastesort_core.session import LedgerSession, SessionContext
from wastesort_core.util.logging_config import configure_logging


def _record_to_json(record: Record) -> dict:
    return {
        "id": record.id,
        "owner": record.owner,
        "category": record.category.value,
        "created_at": record.created_at,
        "status": record.status.value,
    }


def _build_session(config: LedgerConfig, wallet: LocalWallet | None) -> LedgerSession:
    ledger = LedgerClient(JsonlLedger(config.ledger_path))
    if wallet is not None:
        verifier = Ed25519ProofVerifier(wallet.verify_key)
    else:
        verifier = _no_wallet_verifier
    return LedgerSession.from_config(
        config,
        ledger,
        FheSimCodec(),
        verifier,
        observers=(AuditLog(config.audit_db),),
    )


def _no_wallet_verifier(message: str, proof: str) -> None:
    raise PermissionError("no wallet connected")


def _load_wallet(path: Path | None) -> LocalWallet | None:
    if path is None:
        return None
    return LocalWallet(load_signing_key(path))


def _require_wallet(args: argparse.Namespace) -> LocalWallet:
    return LocalWallet(load_signing_key(args.key))


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------


def cmd_keygen(args: argparse.Namespace, config: LedgerConfig) -> int:
    if args.path.exists():
        print(f"ERROR: refusing to overwrite existing key file {args.path}", file=sys.stderr)
        return 1
    sk, _ = generate_keypair()
    save_signing_key(sk, args.path)
    print(LocalWallet(sk).address)
    return 0


def cmd_list(args: argparse.Namespace, config: LedgerConfig) -> int:
    wallet = _load_wallet(args.key)
    session = _build_session(config, wallet)
    ctx = SessionContext.for_account(wallet.address, config) if wallet else None
    records = session.list_records(ctx)
    print(json.dumps([_record_to_json(r) for r in records], indent=2))
    return 0


def cmd_stats(args: argparse.Namespace, config: LedgerConfig) -> int:
    session = _build_session(config, None)
    print(json.dumps(summarize(session.list_records()), indent=2))
    return 0


def cmd_submit(args: argparse.Namespace, config: LedgerConfig) -> int:
    wallet = _require_wallet(args)
    session = _build_session(config, wallet)
    ctx = SessionContext.for_account(wallet.address, config)
    payload = args.file.read_bytes() if args.file else args.payload.encode("utf-8")
    print(session.submit_record(ctx, args.category, payload))
    return 0


def cmd_advance(args: argparse.Namespace, config: LedgerConfig) -> int:
    wallet = _require_wallet(args)
    session = _build_session(config, wallet)
    ctx = SessionContext.for_account(wallet.address, config)
    record = session.advance_status(ctx, args.record_id, args.target)
    print(json.dumps(_record_to_json(record), indent=2))
    return 0


def cmd_disclose(args: argparse.Namespace, config: LedgerConfig) -> int:
    wallet = _require_wallet(args)
    session = _build_session(config, wallet)
    ctx = SessionContext.for_account(wallet.address, config)
    proof = wallet.sign_message(session.challenge(ctx))
    plain = session.disclose(ctx, args.record_id, proof)
    sys.stdout.buffer.write(plain + b"\n")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="wastesort", description="Confidential waste record ledger.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("keygen", help="Create a local wallet key file")
    p.add_argument("path", type=Path)
    p.set_defaults(func=cmd_keygen)

    p = sub.add_parser("list", help="List records, newest first")
    p.add_argument("--key", type=Path, help="Wallet key file (also reconciles your journal)")
    p.set_defaults(func=cmd_list)

    p = sub.add_parser("stats", help="Counts per status and category")
    p.set_defaults(func=cmd_stats)

    p = sub.add_parser("submit", help="Submit a sealed record")
    p.add_argument("--key", type=Path, required=True)
    p.add_argument("--category", required=True, choices=[c.value for c in Category])
    src = p.add_mutually_exclusive_group(required=True)
    src.add_argument("payload", nargs="?", help="Payload text")
    src.add_argument("--file", type=Path, help="Read payload bytes from a file")
    p.set_defaults(func=cmd_submit)

    p = sub.add_parser("advance", help="Mark your pending record processed or rejected")
    p.add_argument("--key", type=Path, required=True)
    p.add_argument("record_id")
    p.add_argument("target", choices=[Status.PROCESSED.value, Status.REJECTED.value])
    p.set_defaults(func=cmd_advance)

    p = sub.add_parser("disclose", help="Sign the challenge and print the plaintext")
    p.add_argument("--key", type=Path, required=True)
    p.add_argument("record_id")
    p.set_defaults(func=cmd_disclose)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Entry point for the ``wastesort`` command."""
    args = build_parser().parse_args(argv)
    try:
        config = LedgerConfig.from_env()
        configure_logging(config.log_level, json_format=config.log_json)
        return args.func(args, config)
    except Exception as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
