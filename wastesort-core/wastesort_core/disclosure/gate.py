"""Consent-gated disclosure of sealed record payloads.

The caller proves possession of a capability by signing a canonical challenge
message with their wallet.  This module builds that message and decides when
unsealing may happen; it never inspects signatures itself.  The verifier is
injected and belongs to the wallet subsystem.

Challenge message (signed verbatim; any change invalidates earlier proofs)::

    publickey:<pk>
    contractAddresses:<address>
    contractsChainId:<chain id>
    startTimestamp:<unix seconds>
    durationDays:<days>
"""
import logging
from dataclasses import dataclass
from typing import Callable

from wastesort_core.crypto.codec import Codec
from wastesort_core.records.model import Record
from wastesort_core.util.deadline import Deadline

logger = logging.getLogger(__name__)

#: ``verifier(challenge, proof)`` returns on success and raises otherwise.
ProofVerifier = Callable[[str, str], None]

DEFAULT_DURATION_DAYS = 30


class DisclosureDeniedError(PermissionError):
    """Raised when the capability proof was not accepted.  Safe to retry."""


@dataclass(frozen=True)
class ChallengeParams:
    """Inputs to the disclosure challenge, fixed for a session."""

    public_key: str
    contract_address: str
    chain_id: int
    start_timestamp: int
    duration_days: int = DEFAULT_DURATION_DAYS


def build_challenge(params: ChallengeParams) -> str:
    """Return the canonical challenge message for *params*."""
    return (
        f"publickey:{params.public_key}\n"
        f"contractAddresses:{params.contract_address}\n"
        f"contractsChainId:{params.chain_id}\n"
        f"startTimestamp:{params.start_timestamp}\n"
        f"durationDays:{params.duration_days}"
    )


class DisclosureGate:
    """Releases plaintext only after the capability step succeeds.

    Parameters
    ----------
    codec:
        Codec used to unseal payloads.
    verifier:
        External proof verifier.
    decrypt_latency:
        Seconds to wait before unsealing, mimicking homomorphic decryption.
        The wait honours the caller's deadline.
    """

    def __init__(self, codec: Codec, verifier: ProofVerifier, decrypt_latency: float = 0.0) -> None:
        self._codec = codec
        self._verifier = verifier
        self._decrypt_latency = decrypt_latency

    def disclose(
        self,
        record: Record,
        params: ChallengeParams,
        proof: str,
        deadline: Deadline | None = None,
    ) -> bytes:
        """Return the plaintext of *record* if *proof* passes the verifier.

        Raises
        ------
        DisclosureDeniedError
            If the verifier rejected *proof* (``unseal`` is not called).
        OperationTimedOutError, OperationCancelledError
            If *deadline* fires.
        CodecError
            If the sealed payload cannot be unsealed.
        """
        deadline = deadline or Deadline(label="disclose")
        challenge = build_challenge(params)

        deadline.check()
        try:
            self._verifier(challenge, proof)
        except Exception as exc:
            # Any verifier failure means no consent; the reason is kept for the caller.
            logger.info("disclosure of %s denied: %s", record.id, exc)
            raise DisclosureDeniedError(f"Capability proof rejected: {exc}") from exc

        if self._decrypt_latency > 0:
            deadline.sleep(self._decrypt_latency)
        deadline.check()
        return self._codec.unseal(record.sealed_payload)
