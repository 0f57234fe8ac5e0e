"""
Core types for the proof orchestration layer.

This module defines the configuration, the typed request values that
callers hand to the registry, and the records exchanged between the codec,
the proving backends and the registry.
"""

import os
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..errors import ConfigurationError, ProvingError, ValidationError
from .algorithms import (
    AlgorithmDescriptor,
    AlgorithmLike,
    CounterEncoding,
    get_descriptor,
    normalize_algorithm_id,
    split_counter_block,
)

BytesLike = Union[bytes, bytearray, memoryview, str, Sequence[int]]


class BindingState(Enum):
    """Lifecycle states of a circuit binding."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    DESTROYING = "destroying"
    DESTROYED = "destroyed"


@dataclass
class ProverConfig:
    """Configuration for the circuit registry and its backends."""

    # Backend selection
    backend_name: str = "barretenberg"
    backend_kind: str = "reference-ultrahonk"
    backend_params: Dict[str, Any] = field(default_factory=dict)
    thread_count: int = 1

    # Artifact sources; both None means the circuits shipped with the package
    artifact_root: Optional[str] = None
    artifact_base_url: Optional[str] = None
    fetch_timeout: float = 30.0

    # Limits
    max_proof_size: int = 1024 * 1024
    max_data_length: int = 16384

    # Cleanup waits this long for in-flight operations; None waits forever
    cleanup_drain_timeout: Optional[float] = None

    def validate(self) -> None:
        """Validate configuration parameters."""
        if not self.backend_name:
            raise ConfigurationError("backend_name cannot be empty", config_key="backend_name")
        if "/" in self.backend_name or "\\" in self.backend_name or ".." in self.backend_name:
            raise ConfigurationError(
                "backend_name must be a plain name",
                config_key="backend_name",
                config_value=self.backend_name,
            )
        if not self.backend_kind:
            raise ConfigurationError("backend_kind cannot be empty", config_key="backend_kind")
        if self.thread_count <= 0:
            raise ConfigurationError(
                "thread_count must be positive",
                config_key="thread_count",
                config_value=self.thread_count,
            )
        if self.fetch_timeout <= 0:
            raise ConfigurationError(
                "fetch_timeout must be positive",
                config_key="fetch_timeout",
                config_value=self.fetch_timeout,
            )
        if self.max_proof_size <= 0:
            raise ConfigurationError(
                "max_proof_size must be positive",
                config_key="max_proof_size",
                config_value=self.max_proof_size,
            )
        if self.max_data_length <= 0:
            raise ConfigurationError(
                "max_data_length must be positive",
                config_key="max_data_length",
                config_value=self.max_data_length,
            )
        if self.cleanup_drain_timeout is not None and self.cleanup_drain_timeout <= 0:
            raise ConfigurationError(
                "cleanup_drain_timeout must be positive",
                config_key="cleanup_drain_timeout",
                config_value=self.cleanup_drain_timeout,
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProverConfig":
        """Build a config from a mapping, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration keys: {', '.join(sorted(unknown))}",
                config_key=sorted(unknown)[0],
            )
        config = cls(**dict(data))
        config.validate()
        return config

    @classmethod
    def from_env(
        cls, prefix: str = "CIPHERPROOF_", environ: Optional[Mapping[str, str]] = None
    ) -> "ProverConfig":
        """Build a config from environment variables such as CIPHERPROOF_THREAD_COUNT."""
        environ = os.environ if environ is None else environ
        converters = {
            "thread_count": int,
            "fetch_timeout": float,
            "max_proof_size": int,
            "max_data_length": int,
            "cleanup_drain_timeout": float,
        }
        values: Dict[str, Any] = {}
        for name in (
            "backend_name",
            "backend_kind",
            "artifact_root",
            "artifact_base_url",
            *converters,
        ):
            raw = environ.get(prefix + name.upper())
            if raw is None or raw == "":
                continue
            try:
                values[name] = converters.get(name, str)(raw)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid value for {prefix + name.upper()}: {raw!r}",
                    config_key=name,
                    config_value=raw,
                )
        return cls.from_dict(values)


def coerce_bytes(value: BytesLike, field_name: str) -> bytes:
    """Convert the loosely typed byte shapes seen on the wire into bytes."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        text = value[2:] if value[:2].lower() == "0x" else value
        try:
            return bytes.fromhex(text)
        except ValueError:
            raise ValidationError(
                f"Field '{field_name}' is not a valid hex string",
                field=field_name,
                expected="hex string",
                actual=value[:16],
            )
    if isinstance(value, (list, tuple)):
        if not all(
            isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 0xFF
            for b in value
        ):
            raise ValidationError(
                f"Field '{field_name}' must contain byte values 0-255",
                field=field_name,
                expected="list of bytes",
            )
        return bytes(value)
    raise ValidationError(
        f"Field '{field_name}' must be bytes, a hex string or a list of ints",
        field=field_name,
        expected="bytes",
        actual=type(value).__name__,
    )


@dataclass(frozen=True)
class PrivateInput:
    """Prover-only inputs. Never logged."""

    key: bytes = field(repr=False)
    plaintext: bytes = field(repr=False)

    def __post_init__(self):
        object.__setattr__(self, "key", coerce_bytes(self.key, "key"))
        object.__setattr__(self, "plaintext", coerce_bytes(self.plaintext, "plaintext"))


@dataclass(frozen=True)
class PublicInput:
    """Inputs visible to the verifier."""

    ciphertext: bytes
    nonce: bytes
    byte_offset: int = 0

    def __post_init__(self):
        object.__setattr__(self, "ciphertext", coerce_bytes(self.ciphertext, "ciphertext"))
        object.__setattr__(self, "nonce", coerce_bytes(self.nonce, "nonce"))
        if isinstance(self.byte_offset, bool) or not isinstance(self.byte_offset, int):
            raise ValidationError(
                "Field 'byte_offset' must be an integer",
                field="byte_offset",
                expected="int",
                actual=type(self.byte_offset).__name__,
            )

    @classmethod
    def from_counter_block(
        cls,
        ciphertext: BytesLike,
        counter_block: BytesLike,
        descriptor: AlgorithmDescriptor,
    ) -> "PublicInput":
        """Build a public input from a combined ``nonce || counter`` block.

        The block counter is translated back into a byte offset relative to
        the algorithm's initial counter.
        """
        block = coerce_bytes(counter_block, "counter_block")
        nonce, counter = split_counter_block(block, descriptor.nonce_length)
        if counter < descriptor.initial_counter:
            raise ValidationError(
                f"Counter {counter} precedes the initial counter "
                f"{descriptor.initial_counter}",
                field="counter",
                expected=f">= {descriptor.initial_counter}",
                actual=counter,
            )
        offset = (counter - descriptor.initial_counter) * descriptor.block_size
        return cls(ciphertext=ciphertext, nonce=nonce, byte_offset=offset)


def _pick(data: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in data:
            return data[name]
    return None


@dataclass(frozen=True)
class ProofRequest:
    """One proof generation request."""

    algorithm_id: str
    private_input: PrivateInput
    public_input: PublicInput

    def __post_init__(self):
        object.__setattr__(self, "algorithm_id", normalize_algorithm_id(self.algorithm_id))

    @classmethod
    def from_dict(cls, algorithm_id: AlgorithmLike, inputs: Mapping[str, Any]) -> "ProofRequest":
        """Deserialize the transport shape.

        Accepted shapes::

            {"privateInput": {"key", "plaintext"},
             "publicInput": {"ciphertext", "nonceOrIV" | "iv" | "nonce", "byteOffset"}}

        or the flat form ``{"key", "plaintext", "ciphertext", "nonce", ...}``.
        Type and shape problems raise ValidationError here, before any
        engine work; lengths are checked by the witness codec.
        """
        if not isinstance(inputs, Mapping):
            raise ValidationError(
                "Proof inputs must be an object",
                field="inputs",
                expected="object",
                actual=type(inputs).__name__,
            )
        private = inputs.get("privateInput", inputs)
        public = inputs.get("publicInput", inputs)
        return cls(
            algorithm_id=algorithm_id,
            private_input=private_input_from_dict(private),
            public_input=public_input_from_dict(algorithm_id, public),
        )


def private_input_from_dict(data: Mapping[str, Any]) -> PrivateInput:
    """Parse ``{"key", "plaintext"}``; ``in`` is accepted for plaintext."""
    if not isinstance(data, Mapping):
        raise ValidationError("privateInput must be an object", field="privateInput")
    missing = [
        name
        for name, value in (
            ("key", _pick(data, "key")),
            ("plaintext", _pick(data, "plaintext", "in")),
        )
        if value is None
    ]
    if missing:
        raise ValidationError(
            f"Missing proof input fields: {', '.join(missing)}", field=missing[0]
        )
    return PrivateInput(key=_pick(data, "key"), plaintext=_pick(data, "plaintext", "in"))


def public_input_from_dict(algorithm_id: AlgorithmLike, data: Mapping[str, Any]) -> PublicInput:
    """Parse the public half of a request.

    The nonce may come as ``nonceOrIV``, ``iv`` or ``nonce``, with the
    position given by ``byteOffset`` (alias ``offsetBytes``) or by a scalar
    block ``counter``. Algorithms with the combined layout also accept a
    16-byte ``counter`` block in place of the nonce.
    """
    if not isinstance(data, Mapping):
        raise ValidationError("publicInput must be an object", field="publicInput")
    descriptor = get_descriptor(algorithm_id)

    ciphertext = _pick(data, "ciphertext", "out", "expected_ciphertext")
    if ciphertext is None:
        raise ValidationError("Missing proof input fields: ciphertext", field="ciphertext")

    nonce = _pick(data, "nonceOrIV", "iv", "nonce")
    counter = data.get("counter")
    offset = _pick(data, "byteOffset", "offsetBytes", "byte_offset")

    if nonce is None:
        if counter is None or isinstance(counter, int):
            raise ValidationError("Missing proof input fields: nonceOrIV", field="nonceOrIV")
        if descriptor.counter_encoding != CounterEncoding.COMBINED:
            raise ValidationError(
                f"{descriptor.algorithm_id} takes nonce and counter separately",
                field="counter",
                expected="integer",
            )
        return PublicInput.from_counter_block(ciphertext, counter, descriptor)

    if offset is None and counter is not None:
        if isinstance(counter, bool) or not isinstance(counter, int):
            raise ValidationError(
                "Field 'counter' must be an integer when a nonce is given",
                field="counter",
                expected="integer",
                actual=type(counter).__name__,
            )
        if counter < descriptor.initial_counter:
            raise ValidationError(
                f"Counter {counter} precedes the initial counter {descriptor.initial_counter}",
                field="counter",
                expected=f">= {descriptor.initial_counter}",
                actual=counter,
            )
        offset = (counter - descriptor.initial_counter) * descriptor.block_size

    return PublicInput(ciphertext=ciphertext, nonce=nonce, byte_offset=0 if offset is None else offset)


@dataclass(frozen=True)
class PublicSignals:
    """Public outputs of a proof, both raw and decoded."""

    fields: Tuple[str, ...]
    ciphertext: bytes
    nonce: bytes
    counter: int

    def to_list(self) -> List[str]:
        return list(self.fields)


@dataclass
class WitnessInput:
    """Circuit inputs keyed by ABI parameter name, in ABI order."""

    algorithm_id: str
    values: Dict[str, Any]
    public_fields: List[str]

    def to_abi_dict(self) -> Dict[str, Any]:
        """Noir style input map: byte arrays as lists, scalars as decimal strings."""
        return {
            name: [str(v) for v in value] if isinstance(value, list) else str(value)
            for name, value in self.values.items()
        }


@dataclass
class WitnessTrace:
    """Solved witness produced by circuit execution."""

    algorithm_id: str
    circuit_hash: str
    assignment: bytes
    public_fields: List[str]


@dataclass
class RawProof:
    """What a proving engine returns."""

    proof: bytes
    public_inputs: List[str]


@dataclass
class ProofArtifact:
    """Proof handed back to the caller. The registry keeps no reference."""

    algorithm_id: str
    proof_bytes: bytes
    public_signals: PublicSignals
    timestamp: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.proof_bytes:
            raise ProvingError("Proof bytes cannot be empty", retryable=False)

    def to_dict(self) -> Dict[str, Any]:
        """Plain data shape used in transport responses."""
        return {
            "algorithmId": self.algorithm_id,
            "proof": self.proof_bytes.hex(),
            "publicSignals": self.public_signals.to_list(),
            "timestamp": self.timestamp,
            "metadata": dict(self.metadata),
        }
