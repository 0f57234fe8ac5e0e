"""
Proving and verification keys for the reference proving engine.

Keys are derived deterministically from the circuit artifact, so every
process that loads the same artifact verifies the same proofs. A proof is a
fixed-size transcript::

    commitment (32 bytes) || tag (32 bytes)

where ``commitment`` hides the solved witness behind a random blinding
factor and ``tag`` binds commitment, circuit hash and public fields under
the verification key.
"""

import hashlib
import hmac
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from ..errors import ProvingError
from .artifacts import CircuitArtifact

COMMITMENT_SIZE = 32
TAG_SIZE = 32
PROOF_SIZE = COMMITMENT_SIZE + TAG_SIZE

_PK_DOMAIN = b"cipherproof/proving-key/v1"
_VK_DOMAIN = b"cipherproof/verification-key/v1"
_TRANSCRIPT_DOMAIN = b"cipherproof/transcript/v1"


@dataclass(frozen=True)
class VerificationKey:
    """Verification key for one circuit."""

    key_data: bytes = field(repr=False)
    circuit_hash: str

    def get_hash(self) -> str:
        return hashlib.sha256(self.key_data).hexdigest()

    def transcript_tag(self, commitment: bytes, public_fields: Sequence[str]) -> bytes:
        mac = hmac.new(self.key_data, digestmod=hashlib.sha256)
        mac.update(_TRANSCRIPT_DOMAIN)
        mac.update(bytes.fromhex(self.circuit_hash))
        mac.update(commitment)
        mac.update(len(public_fields).to_bytes(4, "big"))
        for value in public_fields:
            mac.update(value.encode("ascii"))
        return mac.digest()

    def check(self, proof: bytes, public_fields: Sequence[str]) -> bool:
        """Constant-time check of a proof transcript."""
        if len(proof) != PROOF_SIZE:
            return False
        commitment, tag = proof[:COMMITMENT_SIZE], proof[COMMITMENT_SIZE:]
        return hmac.compare_digest(tag, self.transcript_tag(commitment, public_fields))


@dataclass(frozen=True)
class ProvingKey:
    """Proving key for one circuit."""

    key_data: bytes = field(repr=False)
    circuit_hash: str
    verification_key: VerificationKey = field(repr=False)

    def get_hash(self) -> str:
        return hashlib.sha256(self.key_data).hexdigest()

    def prove(self, assignment: bytes, public_fields: List[str]) -> bytes:
        """Build a proof transcript for a solved witness."""
        if not assignment:
            raise ProvingError("Cannot prove an empty witness assignment")
        blinding = secrets.token_bytes(32)
        commitment = hashlib.sha256(self.key_data + blinding + assignment).digest()
        return commitment + self.verification_key.transcript_tag(commitment, public_fields)


def derive_keys(artifact: CircuitArtifact) -> ProvingKey:
    """Circuit-specific key derivation from the artifact bytecode."""
    seed = hashlib.sha256(_PK_DOMAIN + artifact.bytecode).digest()
    vk = VerificationKey(
        key_data=hashlib.sha256(_VK_DOMAIN + seed).digest(),
        circuit_hash=artifact.hash,
    )
    return ProvingKey(key_data=seed, circuit_hash=artifact.hash, verification_key=vk)


def key_info(proving_key: ProvingKey) -> Dict[str, Any]:
    """Non-secret identifiers for diagnostics."""
    return {
        "circuit_hash": proving_key.circuit_hash,
        "proving_key_hash": proving_key.get_hash(),
        "verification_key_hash": proving_key.verification_key.get_hash(),
        "proof_size": PROOF_SIZE,
    }
