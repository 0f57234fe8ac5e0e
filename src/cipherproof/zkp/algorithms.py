"""
Algorithm descriptor table.

Static mapping from an algorithm identifier to the circuit artifact that
proves it and to the byte layout its callers use. Two counter layouts
exist:

- COMBINED (AES-CTR family): one 16-byte block holding a 12-byte nonce
  followed by a 4-byte big-endian block counter.
- SEPARATE (ChaCha20): nonce and counter are independent values.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple, Union

from ..errors import ConfigurationError, ValidationError, create_length_error

MAX_COUNTER = 0xFFFFFFFF
COUNTER_LENGTH = 4


class AlgorithmId(str, Enum):
    """Built-in algorithm identifiers."""

    AES_128_CTR = "aes-128-ctr"
    AES_256_CTR = "aes-256-ctr"
    CHACHA20 = "chacha20"

    def __str__(self) -> str:
        return self.value


class CounterEncoding(Enum):
    """How nonce and counter are laid out in caller supplied bytes."""

    COMBINED = "combined"
    SEPARATE = "separate"


@dataclass(frozen=True)
class AlgorithmDescriptor:
    """Everything the codec and loader need to know about one algorithm."""

    algorithm_id: str
    artifact_name: str
    key_length: int
    nonce_length: int
    counter_encoding: CounterEncoding
    block_size: int
    initial_counter: int = 1

    def __post_init__(self):
        if not self.algorithm_id:
            raise ConfigurationError("algorithm_id cannot be empty")
        if not self.artifact_name:
            raise ConfigurationError(
                f"Descriptor for {self.algorithm_id} has no artifact name",
                config_key="artifact_name",
            )
        for name in ("key_length", "nonce_length", "block_size"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(
                    f"Descriptor for {self.algorithm_id} has invalid {name}",
                    config_key=name,
                    config_value=getattr(self, name),
                )
        if not 0 <= self.initial_counter <= MAX_COUNTER:
            raise ConfigurationError(
                f"Descriptor for {self.algorithm_id} has invalid initial_counter",
                config_key="initial_counter",
                config_value=self.initial_counter,
            )

    @property
    def counter_block_length(self) -> int:
        """Length of the combined nonce+counter block (COMBINED layout only)."""
        return self.nonce_length + COUNTER_LENGTH


AlgorithmLike = Union[AlgorithmId, str]

_BUILTIN_DESCRIPTORS = (
    AlgorithmDescriptor(
        algorithm_id=AlgorithmId.AES_128_CTR.value,
        artifact_name="aes_128_ctr.json",
        key_length=16,
        nonce_length=12,
        counter_encoding=CounterEncoding.COMBINED,
        block_size=16,
    ),
    AlgorithmDescriptor(
        algorithm_id=AlgorithmId.AES_256_CTR.value,
        artifact_name="aes_256_ctr.json",
        key_length=32,
        nonce_length=12,
        counter_encoding=CounterEncoding.COMBINED,
        block_size=16,
    ),
    AlgorithmDescriptor(
        algorithm_id=AlgorithmId.CHACHA20.value,
        artifact_name="chacha20.json",
        key_length=32,
        nonce_length=12,
        counter_encoding=CounterEncoding.SEPARATE,
        block_size=64,
    ),
)

_descriptors: Dict[str, AlgorithmDescriptor] = {
    d.algorithm_id: d for d in _BUILTIN_DESCRIPTORS
}
_lock = threading.RLock()


def normalize_algorithm_id(algorithm_id: AlgorithmLike) -> str:
    """Return the plain string form of an algorithm identifier."""
    if isinstance(algorithm_id, AlgorithmId):
        return algorithm_id.value
    if isinstance(algorithm_id, str):
        return algorithm_id.strip().lower()
    raise ConfigurationError(
        f"Algorithm identifier must be a string, got {type(algorithm_id).__name__}",
        config_key="algorithm_id",
        config_value=algorithm_id,
    )


def get_descriptor(algorithm_id: AlgorithmLike) -> AlgorithmDescriptor:
    """Look up a descriptor. Unknown identifiers raise ConfigurationError."""
    key = normalize_algorithm_id(algorithm_id)
    with _lock:
        descriptor = _descriptors.get(key)
    if descriptor is None:
        raise ConfigurationError(
            f"Unknown algorithm '{key}'. Supported: {', '.join(list_algorithms())}",
            config_key="algorithm_id",
            config_value=key,
        )
    return descriptor


def is_supported(algorithm_id: AlgorithmLike) -> bool:
    try:
        get_descriptor(algorithm_id)
    except ConfigurationError:
        return False
    return True


def list_algorithms() -> List[str]:
    """List registered algorithm identifiers."""
    with _lock:
        return sorted(_descriptors)


def register_algorithm(descriptor: AlgorithmDescriptor, replace: bool = False) -> None:
    """Add a descriptor to the table."""
    with _lock:
        if descriptor.algorithm_id in _descriptors and not replace:
            raise ConfigurationError(
                f"Algorithm '{descriptor.algorithm_id}' is already registered",
                config_key="algorithm_id",
                config_value=descriptor.algorithm_id,
            )
        _descriptors[descriptor.algorithm_id] = descriptor


def unregister_algorithm(algorithm_id: AlgorithmLike) -> None:
    """Remove a descriptor. Built-in descriptors cannot be removed."""
    key = normalize_algorithm_id(algorithm_id)
    if key in {d.algorithm_id for d in _BUILTIN_DESCRIPTORS}:
        raise ConfigurationError(f"Cannot unregister built-in algorithm '{key}'")
    with _lock:
        _descriptors.pop(key, None)


def validate_counter(counter: int, field: str = "counter") -> int:
    """Counters are 32-bit unsigned integers."""
    if isinstance(counter, bool) or not isinstance(counter, int):
        raise ValidationError(
            f"Field '{field}' must be an integer",
            field=field,
            expected="int",
            actual=type(counter).__name__,
        )
    if counter < 0 or counter > MAX_COUNTER:
        raise ValidationError(
            f"Field '{field}' must be in [0, {MAX_COUNTER}], got {counter}",
            field=field,
            expected=f"0..{MAX_COUNTER}",
            actual=counter,
        )
    return counter


def build_counter_block(nonce: bytes, counter: int, nonce_length: int = 12) -> bytes:
    """Assemble ``nonce || counter`` with the counter big-endian."""
    if len(nonce) != nonce_length:
        raise create_length_error("nonce", nonce_length, len(nonce))
    validate_counter(counter)
    return bytes(nonce) + bytes(
        [
            (counter >> 24) & 0xFF,
            (counter >> 16) & 0xFF,
            (counter >> 8) & 0xFF,
            counter & 0xFF,
        ]
    )


def split_counter_block(block: bytes, nonce_length: int = 12) -> Tuple[bytes, int]:
    """Split a combined block into its nonce and numeric counter."""
    expected = nonce_length + COUNTER_LENGTH
    if len(block) != expected:
        raise create_length_error("counter_block", expected, len(block))
    counter_bytes = block[nonce_length:]
    counter = (
        (counter_bytes[0] << 24)
        | (counter_bytes[1] << 16)
        | (counter_bytes[2] << 8)
        | counter_bytes[3]
    )
    return bytes(block[:nonce_length]), counter


def counter_for_offset(descriptor: AlgorithmDescriptor, byte_offset: int) -> int:
    """Block counter of the first block at ``byte_offset`` in the stream."""
    if isinstance(byte_offset, bool) or not isinstance(byte_offset, int):
        raise ValidationError(
            "Field 'byte_offset' must be an integer",
            field="byte_offset",
            expected="int",
            actual=type(byte_offset).__name__,
        )
    if byte_offset < 0:
        raise ValidationError(
            f"Field 'byte_offset' must be non-negative, got {byte_offset}",
            field="byte_offset",
            expected=">= 0",
            actual=byte_offset,
        )
    if byte_offset % descriptor.block_size:
        raise ValidationError(
            f"Field 'byte_offset' must be a multiple of the "
            f"{descriptor.block_size}-byte block size, got {byte_offset}",
            field="byte_offset",
            expected=f"multiple of {descriptor.block_size}",
            actual=byte_offset,
        )
    return validate_counter(
        descriptor.initial_counter + byte_offset // descriptor.block_size
    )
