"""
cipherproof: zero-knowledge proofs that a ciphertext encrypts a hidden
plaintext under a hidden key.
"""

__version__ = "0.1.0"
__author__ = "cipherproof contributors"

from .errors import CipherProofError
from .zkp import (
    AlgorithmId,
    CircuitRegistry,
    PrivateInput,
    ProofArtifact,
    ProverConfig,
    PublicInput,
    PublicSignals,
    RetryingRegistry,
    handle_message,
)

__all__ = [
    "AlgorithmId",
    "CircuitRegistry",
    "RetryingRegistry",
    "ProverConfig",
    "PrivateInput",
    "PublicInput",
    "PublicSignals",
    "ProofArtifact",
    "CipherProofError",
    "handle_message",
]
