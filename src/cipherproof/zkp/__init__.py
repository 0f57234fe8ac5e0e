"""
Zero-knowledge proofs of symmetric encryption.

Proves that a public ciphertext is the AES-CTR or ChaCha20 encryption of a
private plaintext under a private key, at a given nonce and stream offset,
without revealing key or plaintext.

Components:
- Algorithm descriptor table (key, nonce and counter layout per cipher)
- Circuit artifact loader with pluggable fetchers
- Witness codec between typed inputs and circuit parameters
- Proving backends (in-process reference engines or an external operator)
- Circuit registry owning one binding per algorithm
- Retry wrapper and a message interface for transport layers
"""

from .algorithms import (
    AlgorithmDescriptor,
    AlgorithmId,
    CounterEncoding,
    build_counter_block,
    get_descriptor,
    is_supported,
    list_algorithms,
    register_algorithm,
    split_counter_block,
    unregister_algorithm,
)
from .artifacts import (
    AbiParameter,
    ArtifactFetcher,
    CircuitAbi,
    CircuitArtifact,
    CircuitArtifactLoader,
    FileSystemFetcher,
    HttpFetcher,
)
from .backends import OperatorBackend, ProvingBackend, ReferenceBackend, create_backend
from .core import (
    BindingState,
    PrivateInput,
    ProofArtifact,
    ProofRequest,
    ProverConfig,
    PublicInput,
    PublicSignals,
    RawProof,
    WitnessInput,
    WitnessTrace,
)
from .registry import CircuitBinding, CircuitRegistry
from .retry import RetryingRegistry
from .transport import GENERATE_PROOF, VERIFY_PROOF, handle_message
from .witness import WitnessCodec, from_proof_result, to_witness

__all__ = [
    # Algorithms
    "AlgorithmId",
    "AlgorithmDescriptor",
    "CounterEncoding",
    "get_descriptor",
    "is_supported",
    "list_algorithms",
    "register_algorithm",
    "unregister_algorithm",
    "build_counter_block",
    "split_counter_block",
    # Artifacts
    "AbiParameter",
    "CircuitAbi",
    "CircuitArtifact",
    "CircuitArtifactLoader",
    "ArtifactFetcher",
    "FileSystemFetcher",
    "HttpFetcher",
    # Core types
    "BindingState",
    "ProverConfig",
    "PrivateInput",
    "PublicInput",
    "ProofRequest",
    "PublicSignals",
    "WitnessInput",
    "WitnessTrace",
    "RawProof",
    "ProofArtifact",
    # Witness codec
    "WitnessCodec",
    "to_witness",
    "from_proof_result",
    # Backends
    "ProvingBackend",
    "ReferenceBackend",
    "OperatorBackend",
    "create_backend",
    # Registry
    "CircuitBinding",
    "CircuitRegistry",
    "RetryingRegistry",
    # Transport
    "GENERATE_PROOF",
    "VERIFY_PROOF",
    "handle_message",
]
